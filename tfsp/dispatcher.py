from typing import Callable, Dict, List, Optional, Tuple

from . import crypto
from . import messages as m
from .auth import Role
from .errors import InvalidTransition, PayloadTooLarge, PermissionDenied, TfspError
from .framing import MAX_UPLOAD_SIZE, UploadBuffer, frame_download, frame_file
from .logutil import get_logger
from .messages import Command
from .paths import resolve
from .session import Session, SessionRegistry
from .stats import StatsAggregator
from .store import FileStore, MessageLog

"""
dispatcher.py: everything an authenticated session can ask for.

Order of checks for one line:
  1) precondition: session must be authenticated
  2) reserved non-slash lines: STATS, then plain chat (ECHO + message log)
  3) slash commands through the Command table

Store errors (not found, traversal, I/O) are TfspError subclasses and are
turned into one `ERROR <message>` line here. Nothing in this module closes a
connection.
"""

log = get_logger("tfsp.dispatch")

Handler = Callable[["CommandDispatcher", Session, List[str]], bytes]


class CommandDispatcher:
    def __init__(
        self,
        store: FileStore,
        stats: StatsAggregator,
        registry: SessionRegistry,
        message_log: Optional[MessageLog] = None,
        max_upload_bytes: int = MAX_UPLOAD_SIZE,
    ) -> None:
        self.store = store
        self.stats = stats
        self.registry = registry
        self.message_log = message_log
        self.max_upload_bytes = max_upload_bytes

    # --- line entry point

    def handle(self, session: Session, line: str) -> bytes:
        if not session.authenticated:
            return m.error(m.NOT_AUTHENTICATED)

        if not line.startswith("/"):
            if line == m.STATS:
                return m.stats_json(self.stats.snapshot(self.registry))
            return self.chat(session, line)

        cmd, args = m.parse_command(line)
        if cmd is None:
            return m.error(f"Unknown command. Available: {m.available()}")
        try:
            return self.run(session, cmd, args)
        except TfspError as exc:
            log.info("command failed", extra={"peer": session.address, "cmd": cmd.value, "err": str(exc)})
            return m.error(str(exc))

    def run(self, session: Session, cmd: Command, args: List[str]) -> bytes:
        """Role + arity checks, then the single handler for `cmd`."""
        if cmd in m.ADMIN_ONLY and session.role != Role.ADMIN.value:
            raise PermissionDenied(f"Permission denied: {cmd.value} requires admin role.")
        if cmd in m.NEEDS_ARG and not args:
            return m.error(f"Usage: {m.USAGE[cmd]}")
        return HANDLERS[cmd](self, session, args)

    def chat(self, session: Session, line: str) -> bytes:
        if self.message_log is not None:
            try:
                self.message_log.append(session.username or "-", session.address, line)
            except TfspError as exc:
                log.warning("message log write failed", extra={"err": str(exc)})
        return m.reply(m.ECHO, line)

    # --- command handlers

    def do_list(self, session: Session, args: List[str]) -> bytes:
        target = args[0] if args else "."
        entries = self.store.list_dir(target)
        return m.reply_block(
            f"{m.LIST} {target} ({len(entries)} entries)",
            [e.render() for e in entries],
        )

    def do_read(self, session: Session, args: List[str]) -> bytes:
        name, content = self.store.read(args[0])
        return frame_file(name, content)

    def do_download(self, session: Session, args: List[str]) -> bytes:
        name, content = self.store.read(args[0])
        log.info("download", extra={"peer": session.address, "file": name, "size": len(content)})
        return frame_download(name, content)

    def do_search(self, session: Session, args: List[str]) -> bytes:
        keyword = " ".join(args)
        names = self.store.search(keyword)
        return m.reply_block(f"{m.SEARCH} {len(names)} match(es) for '{keyword}'", names)

    def do_info(self, session: Session, args: List[str]) -> bytes:
        info = self.store.stat(args[0])
        rows = [
            f"Type: {info.kind}",
            f"Size: {info.size} bytes",
            f"Created: {info.created.isoformat()}",
            f"Modified: {info.modified.isoformat()}",
        ]
        if info.sha256:
            rows.append(f"SHA256: {info.sha256}")
        return m.reply_block(f"{m.INFO} {info.name}", rows)

    def do_upload(self, session: Session, args: List[str]) -> bytes:
        name = args[0]
        if session.awaiting_upload:
            assert session.upload is not None
            return m.error(f"Already awaiting upload for {session.upload.target}.")
        # Reject a bad target now rather than after the payload arrives.
        resolve(self.store.root, name)
        session.begin_upload(UploadBuffer(name, self.max_upload_bytes))
        log.info("upload armed", extra={"peer": session.address, "file": name})
        return m.reply(m.READY_FOR_UPLOAD, f"{name}. Send CONTENT_BEGIN, the content, then CONTENT_END.")

    def do_delete(self, session: Session, args: List[str]) -> bytes:
        name = args[0]
        self.store.delete(name)
        log.info("delete", extra={"peer": session.address, "user": session.username, "file": name})
        return m.reply(m.DELETE_OK, name)

    # --- upload sub-protocol

    def feed_upload(self, session: Session, chunk: bytes) -> Tuple[Optional[bytes], bytes]:
        """
        Route a raw chunk into the pending upload.

        Returns (reply, leftover). reply is None while still waiting for
        markers. leftover holds bytes that followed CONTENT_END; the caller
        treats them as ordinary lines.

        An oversized payload is answered with one ERROR as soon as the cap
        trips; the session stays in AWAITING_UPLOAD and drops bytes until
        CONTENT_END, then goes back to AUTHENTICATED without another reply.
        """
        if not session.awaiting_upload or session.upload is None:
            raise InvalidTransition("No upload in progress.")
        buf = session.upload
        target = buf.target

        if buf.discarding:
            if not buf.skip(chunk):
                return None, b""
            session.end_upload()
            log.info("rejected upload drained", extra={"peer": session.address, "file": target})
            return None, buf.remainder

        try:
            payload = buf.feed(chunk)
        except PayloadTooLarge as exc:
            log.warning("upload rejected", extra={"peer": session.address, "file": target, "err": str(exc)})
            if buf.discarding:
                return m.error(f"Upload failed: {exc}"), b""
            session.end_upload()
            return m.error(f"Upload failed: {exc}"), buf.remainder
        if payload is None:
            return None, b""

        leftover = buf.remainder
        session.end_upload()
        try:
            self.store.write(target, payload)
        except TfspError as exc:
            log.warning("upload failed", extra={"peer": session.address, "file": target, "err": str(exc)})
            return m.error(f"Upload failed: {exc}"), leftover
        log.info("upload ok", extra={"peer": session.address, "file": target, "size": len(payload),
                                   "sha256": crypto.sha256_hex(payload)})
        return m.reply(m.UPLOAD_OK, target), leftover


HANDLERS: Dict[Command, Handler] = {
    Command.LIST: CommandDispatcher.do_list,
    Command.READ: CommandDispatcher.do_read,
    Command.DOWNLOAD: CommandDispatcher.do_download,
    Command.SEARCH: CommandDispatcher.do_search,
    Command.INFO: CommandDispatcher.do_info,
    Command.UPLOAD: CommandDispatcher.do_upload,
    Command.DELETE: CommandDispatcher.do_delete,
}

_missing = set(Command) - set(HANDLERS)
if _missing:
    raise RuntimeError(f"no handler for {sorted(c.value for c in _missing)}")
