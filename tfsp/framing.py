import asyncio
from typing import Optional, Tuple

from .errors import PayloadTooLarge

"""
framing.py: line and sentinel framing for asyncio streams.

Protocol (simple on purpose):
- Commands and replies are UTF-8 text lines ending in "\n" ("\r\n" accepted).
- File payloads are not length-prefixed. They sit between literal marker lines:
    client -> server   CONTENT_BEGIN / CONTENT_END
    server -> client   FILE_CONTENT_BEGIN / FILE_CONTENT_END  (/read)
                       DOWNLOAD_BEGIN / DOWNLOAD_END          (/download)
- TCP may split any of this across reads, markers included, so both sides
  accumulate raw bytes until they have seen BEGIN and a later END.

Hard caps so a buggy peer can't make us allocate silly amounts of memory:
4 MiB for an upload payload, 64 KiB for a single command line.
"""

MAX_UPLOAD_SIZE = 4 * 1024 * 1024   # 4 MiB, 0 disables
MAX_LINE_SIZE = 64 * 1024
READ_CHUNK = 64 * 1024

CONTENT_BEGIN = b"CONTENT_BEGIN"
CONTENT_END = b"CONTENT_END"
FILE_CONTENT_BEGIN = b"FILE_CONTENT_BEGIN"
FILE_CONTENT_END = b"FILE_CONTENT_END"
DOWNLOAD_BEGIN = b"DOWNLOAD_BEGIN"
DOWNLOAD_END = b"DOWNLOAD_END"


# -----------------------------
# Line splitting
# -----------------------------

def split_line(buf: bytes) -> Tuple[Optional[bytes], bytes]:
    """
    Pop one complete line off the front of `buf`.

    Returns (line, rest). `line` has its terminator and any trailing CR
    removed; it is None when `buf` holds no complete line yet.
    """
    idx = buf.find(b"\n")
    if idx < 0:
        return None, buf
    return buf[:idx].rstrip(b"\r"), buf[idx + 1:]


def decode_line(raw: bytes) -> str:
    """Bytes -> trimmed text. Bad UTF-8 is replaced, not fatal."""
    return raw.decode("utf-8", errors="replace").strip()


# -----------------------------
# Upload sub-protocol (server side)
# -----------------------------

def extract_between(buf: bytes, begin: bytes, end: bytes) -> Optional[Tuple[bytes, bytes]]:
    """
    Find `begin` and a later `end` in `buf`.

    Returns (inner, remainder) where `inner` is everything strictly between
    the markers and `remainder` is whatever followed `end`. None while the
    pair is incomplete (including END seen before any BEGIN).
    """
    start = buf.find(begin)
    if start < 0:
        return None
    stop = buf.find(end, start + len(begin))
    if stop < 0:
        return None
    return buf[start + len(begin):stop], buf[stop + len(end):]


class UploadBuffer:
    """
    Accumulates raw inbound bytes for one pending upload.

    Chunks are appended verbatim (never line-split) because the payload may
    contain its own newlines or a marker may be cut in half by the transport.

    Once the cap trips the buffer switches to discarding: inbound bytes are
    dropped until CONTENT_END, so the rest of an oversized payload is never
    read as commands.
    """

    def __init__(self, target: str, max_bytes: int = MAX_UPLOAD_SIZE) -> None:
        self.target = target
        self.max_bytes = max_bytes
        self.discarding = False
        self.remainder = b""
        self._buf = bytearray()
        self._start = -1    # offset just past CONTENT_BEGIN, -1 until seen
        self._checked = 0   # bytes already searched for the next marker

    def __len__(self) -> int:
        return len(self._buf)

    def _find(self, marker: bytes, floor: int) -> int:
        # Back up by len(marker) - 1 so a marker cut across chunks is still found.
        idx = self._buf.find(marker, max(floor, self._checked - len(marker) + 1))
        if idx < 0:
            self._checked = len(self._buf)
        return idx

    def feed(self, chunk: bytes) -> Optional[bytes]:
        """
        Append a chunk. Returns the trimmed payload once both markers are in,
        otherwise None (keep waiting, send nothing).

        Raises:
            PayloadTooLarge: if the payload passes `max_bytes`. When CONTENT_END
                has not arrived yet, `discarding` is set; keep calling skip().
        """
        self._buf.extend(chunk)
        if self._start < 0:
            begin = self._find(CONTENT_BEGIN, 0)
            if begin >= 0:
                self._start = begin + len(CONTENT_BEGIN)
                self._checked = self._start
        stop = self._find(CONTENT_END, self._start) if self._start >= 0 else -1

        if stop < 0:
            if self.max_bytes and len(self._buf) > self.max_bytes:
                size = len(self._buf)
                self._overflow()
                raise PayloadTooLarge(
                    f"payload exceeds {self.max_bytes} bytes ({size} buffered without CONTENT_END)"
                )
            return None

        inner = bytes(self._buf[self._start:stop]).strip()
        self.remainder = bytes(self._buf[stop + len(CONTENT_END):])
        self._buf.clear()
        if self.max_bytes and len(inner) > self.max_bytes:
            raise PayloadTooLarge(f"payload exceeds {self.max_bytes} bytes ({len(inner)} received)")
        return inner

    def _overflow(self) -> None:
        tail = bytes(self._buf[-(len(CONTENT_END) - 1):])
        self._buf = bytearray(tail)
        self._start = -1
        self._checked = 0
        self.discarding = True

    def skip(self, chunk: bytes) -> bool:
        """
        Drop bytes of a rejected payload. True once CONTENT_END went by;
        whatever followed it is left in `remainder`.
        """
        self._buf.extend(chunk)
        stop = self._find(CONTENT_END, 0)
        if stop < 0:
            del self._buf[:-(len(CONTENT_END) - 1)]
            self._checked = len(self._buf)
            return False
        self.remainder = bytes(self._buf[stop + len(CONTENT_END):])
        self._buf.clear()
        self.discarding = False
        return True


def frame_upload(content: bytes) -> bytes:
    """Client side wrapper for an upload payload."""
    return CONTENT_BEGIN + b"\n" + content + b"\n" + CONTENT_END + b"\n"


# -----------------------------
# Read / download responses
# -----------------------------

def _frame(begin: bytes, end: bytes, name: str, content: bytes) -> bytes:
    return begin + b"\n" + name.encode("utf-8") + b"\n" + content + b"\n" + end + b"\n"


def frame_file(name: str, content: bytes) -> bytes:
    """Single-shot /read reply."""
    return _frame(FILE_CONTENT_BEGIN, FILE_CONTENT_END, name, content)


def frame_download(name: str, content: bytes) -> bytes:
    """Single-shot /download reply."""
    return _frame(DOWNLOAD_BEGIN, DOWNLOAD_END, name, content)


class FrameAccumulator:
    """
    Receiving side of frame_file()/frame_download().

    Feed it whatever the socket hands over; once the END marker of a framed
    reply has arrived, feed() returns (name, content). Text before BEGIN is
    kept in `preamble` (e.g. an ERROR line that came instead of a file).
    """

    def __init__(self, begin: bytes = FILE_CONTENT_BEGIN, end: bytes = FILE_CONTENT_END) -> None:
        self.begin = begin
        self.end = end
        self._buf = b""
        self.preamble = b""
        self.remainder = b""

    def feed(self, chunk: bytes) -> Optional[Tuple[str, bytes]]:
        self._buf += chunk
        found = extract_between(self._buf, self.begin, self.end)
        if found is None:
            return None
        inner, self.remainder = found
        self.preamble = self._buf[: self._buf.find(self.begin)]
        self._buf = b""
        # inner is "\n<name>\n<content>\n"
        body = inner[1:] if inner.startswith(b"\n") else inner
        name, _, content = body.partition(b"\n")
        if content.endswith(b"\n"):
            content = content[:-1]
        return name.decode("utf-8", errors="replace"), content

    def pending(self) -> bytes:
        return self._buf


# -----------------------------
# Stream helpers
# -----------------------------

async def read_chunk(reader: asyncio.StreamReader, n: int = READ_CHUNK) -> bytes:
    """Whatever the transport has, up to n bytes. b"" means EOF."""
    return await reader.read(n)


async def write_bytes(writer: asyncio.StreamWriter, data: bytes) -> None:
    """Write and drain; important under backpressure."""
    writer.write(data)
    await writer.drain()

