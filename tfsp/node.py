import asyncio
from typing import List, Optional

from . import messages as m
from .auth import AuthenticationGate
from .config import ServerConfig
from .dispatcher import CommandDispatcher
from .errors import CapacityExceeded, IOFailure
from .framing import decode_line, read_chunk, split_line, write_bytes
from .logutil import bind, get_logger
from .session import Session, SessionRegistry
from .stats import StatsAggregator
from .store import FileStore, MessageLog
from .watchdog import InactivityWatchdog

"""
node.py: the TCP file server (connection manager).

Per connection:
  accept -> admission check -> session + watchdog -> read loop -> cleanup

Per inbound chunk:
  reset watchdog, count bytes/message, then either
    - feed the pending upload (raw bytes, no line splitting), or
    - split into lines; AUTH gate before login, dispatcher after.

Everything runs on one asyncio loop, so one chunk is handled (and its
replies written) before the next event on any connection. Filesystem calls
are synchronous on purpose; they keep "request handled, reply sent" atomic.
"""

log = get_logger("tfsp.node")


def _peer(writer: asyncio.StreamWriter) -> str:
    peer = writer.get_extra_info("peername")
    if isinstance(peer, tuple) and len(peer) >= 2:
        return f"{peer[0]}:{peer[1]}"
    return str(peer)


class FileServer:
    """
    Owns the live-session registry, the stats tables and the per-session
    watchdogs. Create one, then `await start()` (serve forever) or
    `await listen()` (tests: bind and return).
    """

    def __init__(self, config: ServerConfig) -> None:
        self.config = config
        self.store = FileStore(config.files_dir)
        self.stats = StatsAggregator()
        self.registry = SessionRegistry(config.max_active_connections)
        self.message_log = MessageLog(config.message_log_file) if config.message_log_file else None
        self.gate = AuthenticationGate(config.users, self.stats)
        self.dispatcher = CommandDispatcher(
            self.store, self.stats, self.registry,
            message_log=self.message_log,
            max_upload_bytes=config.max_upload_bytes,
        )
        self.watchdogs = {}  # Session -> InactivityWatchdog
        self.server: Optional[asyncio.AbstractServer] = None
        self._stats_task: Optional[asyncio.Task] = None
        self._evictions: List[asyncio.Task] = []

    @property
    def port(self) -> int:
        assert self.server is not None and self.server.sockets
        return self.server.sockets[0].getsockname()[1]

    async def listen(self) -> asyncio.AbstractServer:
        """Bind and start accepting; returns the asyncio server."""
        self.store.ensure_root()
        self.server = await asyncio.start_server(self.handle_conn, self.config.host, self.config.port)
        addrs = ", ".join(str(sock.getsockname()) for sock in self.server.sockets or [])
        log.info(f"listening on {addrs}", extra={"root": str(self.store.root),
                                                 "max_conn": self.config.max_active_connections})
        if self.config.stats_log_file and self.config.stats_interval > 0:
            self._stats_task = asyncio.create_task(self._stats_loop())
        return self.server

    async def start(self) -> None:
        """Listen and serve forever."""
        server = await self.listen()
        try:
            async with server:
                await server.serve_forever()
        finally:
            await self.close()

    async def close(self) -> None:
        """Stop accepting, drop every live session, write a final stats entry."""
        if self._stats_task is not None:
            self._stats_task.cancel()
            self._stats_task = None
        if self.server is not None:
            self.server.close()
        self._write_stats()
        for session in list(self.registry):
            self.cleanup(session)
            session.writer.close()
        for task in list(self._evictions):
            task.cancel()

    # === connection lifecycle

    async def handle_conn(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        """Per-connection loop: admission, then read chunks until EOF/error."""
        address = _peer(writer)

        # Capacity is checked before any Session exists.
        try:
            session = self.registry.admit(writer, address)
        except CapacityExceeded as exc:
            log.warning("connection refused", extra={"peer": address, "reason": str(exc)})
            try:
                data = m.server_busy(self.config.max_active_connections)
                await write_bytes(writer, data)
                self.stats.record_sent(None, len(data))
            except (ConnectionError, OSError):
                pass
            writer.close()
            return

        clog = bind(log, peer=address)
        clog.info("connected", extra={"active": len(self.registry)})
        watchdog = InactivityWatchdog(self.config.inactivity_s, lambda: self._on_idle(session))
        self.watchdogs[session] = watchdog
        watchdog.start()

        try:
            while not session.closed:
                data = await read_chunk(reader)
                if not data:
                    break
                await self.on_data(session, data)
        except (ConnectionError, OSError) as exc:
            clog.info("connection error", extra={"err": str(exc)})
        except Exception:
            clog.exception("unexpected error in connection handler")
        finally:
            self.cleanup(session)
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError):
                pass
            clog.info("disconnected", extra={"user": session.username, "active": len(self.registry)})

    def cleanup(self, session: Session) -> None:
        """
        Idempotent teardown shared by close, error and inactivity:
        cancel watchdog, deregister, flush counters to the per-user table.
        """
        if session.closed:
            return
        session.closed = True
        watchdog = self.watchdogs.pop(session, None)
        if watchdog is not None:
            watchdog.cancel()
        self.registry.remove(session)
        self.stats.flush(session)

    def _on_idle(self, session: Session) -> None:
        task = asyncio.get_running_loop().create_task(self._evict(session))
        self._evictions.append(task)
        task.add_done_callback(self._evictions.remove)

    async def _evict(self, session: Session) -> None:
        if session.closed:
            return
        log.info("inactivity timeout", extra={"peer": session.address, "user": session.username})
        try:
            await self.send(session, m.inactivity_closing(self.config.inactivity_s))
        except (ConnectionError, OSError):
            pass
        self.cleanup(session)
        session.writer.close()

    # === inbound data

    async def on_data(self, session: Session, data: bytes) -> None:
        watchdog = self.watchdogs.get(session)
        if watchdog is not None:
            watchdog.reset()
        session.touch()
        self.stats.record_received(session, len(data))

        pending = data
        while pending and not session.closed:
            if session.awaiting_upload:
                reply, pending = self.dispatcher.feed_upload(session, pending)
                if reply is not None:
                    await self.send(session, reply)
                continue
            pending = await self._consume_lines(session, pending)

    async def _consume_lines(self, session: Session, data: bytes) -> bytes:
        """
        Handle complete lines from session.line_buffer + data. Returns the
        bytes that follow a line which armed an upload (they belong to the
        upload buffer), else b"".
        """
        buf = session.line_buffer + data
        session.line_buffer = b""
        if session.skip_line:
            idx = buf.find(b"\n")
            if idx < 0:
                return b""
            buf = buf[idx + 1:]
            session.skip_line = False
        limit = self.config.max_line_bytes
        while True:
            raw, rest = split_line(buf)
            if raw is None:
                if len(rest) > limit:
                    await self.send(session, m.error("Line too long."))
                    rest = b""
                    session.skip_line = True
                session.line_buffer = rest
                return b""
            buf = rest
            if len(raw) > limit:
                await self.send(session, m.error("Line too long."))
                continue
            line = decode_line(raw)
            if not line:
                continue
            if session.authenticated:
                reply = self.dispatcher.handle(session, line)
            else:
                reply = self.gate.handle(session, line)
            await self.send(session, reply)
            if session.awaiting_upload:
                return buf

    async def send(self, session: Session, data: bytes) -> None:
        """Write one reply and count it."""
        await write_bytes(session.writer, data)
        self.stats.record_sent(session, len(data))

    # === stats log

    async def _stats_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.stats_interval)
            self._write_stats()

    def _write_stats(self) -> None:
        if not self.config.stats_log_file:
            return
        try:
            self.stats.write_log(self.config.stats_log_file, self.registry)
        except IOFailure as exc:
            log.warning("stats log write failed", extra={"err": str(exc)})
