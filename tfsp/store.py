import os
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Tuple

from . import crypto
from .errors import IOFailure, NotFound
from .paths import resolve

"""
store.py: the shared server-side file store plus the chat message log.

FileStore is a stateless wrapper over one directory tree. Every public method
goes through paths.resolve() first; there is no path that touches the disk
without it. OS level errors come back as IOFailure with the OS message so the
dispatcher can hand them to the client unchanged.
"""


@dataclass(frozen=True)
class Entry:
    name: str
    is_dir: bool

    def render(self) -> str:
        return f"[DIR] {self.name}" if self.is_dir else self.name


@dataclass(frozen=True)
class FileInfo:
    name: str
    kind: str  # "file" or "directory"
    size: int
    created: datetime
    modified: datetime
    sha256: str = ""


def _ts(epoch: float) -> datetime:
    return datetime.fromtimestamp(epoch, tz=timezone.utc)


def _created_time(st: os.stat_result) -> float:
    # st_birthtime where the platform has it, otherwise ctime.
    return getattr(st, "st_birthtime", st.st_ctime)


class FileStore:
    """list/read/write/delete/stat/search scoped to `root`."""

    def __init__(self, root) -> None:
        self.root = Path(root).resolve()

    def ensure_root(self) -> None:
        """Create the root directory on first start."""
        self.root.mkdir(parents=True, exist_ok=True)

    def _existing(self, name: str) -> Path:
        path = resolve(self.root, name)
        if not path.exists():
            raise NotFound(f"File not found: {name}")
        return path

    def list_dir(self, name: str = ".") -> List[Entry]:
        path = resolve(self.root, name)
        if not path.exists():
            raise NotFound(f"Directory not found: {name}")
        if not path.is_dir():
            raise IOFailure(f"Not a directory: {name}")
        try:
            return sorted(
                (Entry(p.name, p.is_dir()) for p in path.iterdir()),
                key=lambda e: e.name,
            )
        except OSError as exc:
            raise IOFailure(exc.strerror or str(exc)) from exc

    def read(self, name: str) -> Tuple[str, bytes]:
        """Return (basename, content) for a regular file."""
        path = self._existing(name)
        if path.is_dir():
            raise IOFailure(f"'{name}' is a directory, not a file.")
        try:
            return path.name, path.read_bytes()
        except OSError as exc:
            raise IOFailure(exc.strerror or str(exc)) from exc

    def write(self, name: str, data: bytes) -> Path:
        path = resolve(self.root, name)
        if path == self.root or path.is_dir():
            raise IOFailure(f"'{name}' is a directory, not a file.")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as exc:
            raise IOFailure(exc.strerror or str(exc)) from exc
        return path

    def delete(self, name: str) -> None:
        path = self._existing(name)
        if path.is_dir():
            raise IOFailure(f"'{name}' is a directory, not a file.")
        try:
            path.unlink()
        except OSError as exc:
            raise IOFailure(exc.strerror or str(exc)) from exc

    def stat(self, name: str) -> FileInfo:
        path = self._existing(name)
        try:
            st = path.stat()
            is_dir = path.is_dir()
            digest = "" if is_dir else crypto.sha256_file(path)
        except OSError as exc:
            raise IOFailure(exc.strerror or str(exc)) from exc
        return FileInfo(
            name=path.name,
            kind="directory" if is_dir else "file",
            size=st.st_size,
            created=_ts(_created_time(st)),
            modified=_ts(st.st_mtime),
            sha256=digest,
        )

    def search(self, keyword: str) -> List[str]:
        """Case-insensitive substring match over top-level names (not recursive)."""
        needle = keyword.lower()
        return [e.name for e in self.list_dir(".") if needle in e.name.lower()]


class MessageLog:
    """Append-only log of chat lines. One line per message, never rewritten."""

    def __init__(self, path) -> None:
        self.path = Path(path)

    def append(self, username: str, address: str, text: str) -> None:
        stamp = time.strftime("%Y-%m-%dT%H:%M:%S%z")
        # Keep one record per line even if a client smuggles a CR in.
        clean = text.replace("\r", " ").replace("\n", " ")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(f"{stamp} {username}@{address}: {clean}\n")
        except OSError as exc:
            raise IOFailure(exc.strerror or str(exc)) from exc
