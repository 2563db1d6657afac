import asyncio
from typing import Optional, Tuple

from . import messages as m
from .errors import TfspError
from .framing import (
    DOWNLOAD_BEGIN,
    DOWNLOAD_END,
    FILE_CONTENT_BEGIN,
    FILE_CONTENT_END,
    FrameAccumulator,
    frame_upload,
    read_chunk,
    write_bytes,
)

"""
client.py: small asyncio client for the file server.

Used by the one-shot CLI in run_node and by the integration tests. It is not
a REPL; each call sends one request and waits for its reply.

Replies have no length prefix, so:
- single-line replies: read until a newline arrives
- multi-line text replies (/list, /search, /info, STATS): read until the
  server goes quiet for `settle` seconds
- /read and /download: FrameAccumulator until the END marker is seen
"""

DEFAULT_TIMEOUT = 5.0


class ClientError(TfspError):
    """Server answered with ERROR / AUTH_FAIL, or closed on us."""


class FileClient:
    def __init__(self, host: str, port: int, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.host = host
        self.port = port
        self.timeout = timeout
        self.reader: Optional[asyncio.StreamReader] = None
        self.writer: Optional[asyncio.StreamWriter] = None
        self._pending = b""

    async def connect(self) -> "FileClient":
        self.reader, self.writer = await asyncio.open_connection(self.host, self.port)
        return self

    async def close(self) -> None:
        if self.writer is not None:
            self.writer.close()
            try:
                await self.writer.wait_closed()
            except (ConnectionError, OSError):
                pass
            self.writer = None

    async def __aenter__(self) -> "FileClient":
        return await self.connect()

    async def __aexit__(self, *exc) -> None:
        await self.close()

    # --- raw I/O

    async def send_line(self, line: str) -> None:
        assert self.writer is not None, "not connected"
        await write_bytes(self.writer, (line + "\n").encode("utf-8"))

    async def send_raw(self, data: bytes) -> None:
        assert self.writer is not None, "not connected"
        await write_bytes(self.writer, data)

    async def _read(self, timeout: float) -> bytes:
        assert self.reader is not None, "not connected"
        data = await asyncio.wait_for(read_chunk(self.reader), timeout)
        if not data:
            raise ClientError("connection closed by server")
        return data

    async def read_line(self) -> str:
        """Next complete reply line."""
        while b"\n" not in self._pending:
            self._pending += await self._read(self.timeout)
        line, _, self._pending = self._pending.partition(b"\n")
        return line.decode("utf-8", errors="replace").rstrip("\r")

    async def read_until_quiet(self, settle: float = 0.2) -> str:
        """At least one chunk, then whatever arrives before `settle` of silence."""
        buf = self._pending or await self._read(self.timeout)
        self._pending = b""
        while True:
            try:
                buf += await self._read(settle)
            except asyncio.TimeoutError:
                break
        return buf.decode("utf-8", errors="replace")

    # --- protocol

    async def request(self, line: str) -> str:
        """Send one line and return the first reply line."""
        await self.send_line(line)
        return await self.read_line()

    async def authenticate(self, username: str, password: str) -> str:
        resp = await self.request(f"{m.AUTH} {username} {password}")
        if not resp.startswith(m.AUTH_OK):
            raise ClientError(resp)
        return resp

    async def command(self, line: str) -> str:
        """Send a command whose reply may span several lines."""
        await self.send_line(line)
        return await self.read_until_quiet()

    async def fetch(self, name: str, download: bool = False) -> Tuple[str, bytes]:
        """/read or /download; returns (name, content)."""
        if download:
            acc = FrameAccumulator(DOWNLOAD_BEGIN, DOWNLOAD_END)
            await self.send_line(f"/download {name}")
        else:
            acc = FrameAccumulator(FILE_CONTENT_BEGIN, FILE_CONTENT_END)
            await self.send_line(f"/read {name}")

        result = acc.feed(self._pending)
        self._pending = b""
        while result is None:
            # An ERROR instead of a file is a single line with no BEGIN.
            head = acc.pending().lstrip()
            if head.startswith(m.ERROR.encode()) and b"\n" in head:
                raise ClientError(head.split(b"\n", 1)[0].decode("utf-8", errors="replace"))
            result = acc.feed(await self._read(self.timeout))
        self._pending = acc.remainder
        return result

    async def upload(self, name: str, content: bytes) -> str:
        """/upload, wait for READY_FOR_UPLOAD, send the framed payload."""
        ready = await self.request(f"/upload {name}")
        if not ready.startswith(m.READY_FOR_UPLOAD):
            raise ClientError(ready)
        await self.send_raw(frame_upload(content))
        resp = await self.read_line()
        if not resp.startswith(m.UPLOAD_OK):
            raise ClientError(resp)
        return resp
