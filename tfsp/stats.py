import json
import time
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from .errors import IOFailure
from .session import Counters, Session

"""
stats.py: traffic counters that outlive a single connection.

Two layers:
- global totals for the whole process (only ever go up)
- last known counters per username, written when a session ends and merged
  back in when the same user authenticates again

The server is single-threaded (one asyncio loop), so plain ints are enough;
increments happen in the same step as the read/write they measure.
"""


def _now_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%S%z")


class StatsAggregator:
    def __init__(self) -> None:
        self.total_bytes_received = 0
        self.total_bytes_sent = 0
        self._by_user: Dict[str, Counters] = {}

    # --- live accounting

    def record_received(self, session: Session, nbytes: int) -> None:
        """One inbound chunk: bytes and one message."""
        session.counters.bytes_received += nbytes
        session.counters.messages_received += 1
        self.total_bytes_received += nbytes

    def record_sent(self, session: Optional[Session], nbytes: int) -> None:
        if session is not None:
            session.counters.bytes_sent += nbytes
        self.total_bytes_sent += nbytes

    # --- per-user continuity

    def restore(self, session: Session) -> Optional[Counters]:
        """Merge the stored counters for session.username into the session."""
        if not session.username:
            return None
        saved = self._by_user.get(session.username)
        if saved is not None:
            session.counters.merge(saved)
        return saved

    def flush(self, session: Session) -> None:
        """Persist a session's counters under its username (authenticated only)."""
        if session.authenticated and session.username:
            self._by_user[session.username] = session.counters.copy()

    def user_counters(self, username: str) -> Optional[Counters]:
        saved = self._by_user.get(username)
        return saved.copy() if saved else None

    # --- reporting

    def snapshot(self, sessions: Iterable[Session]) -> Dict[str, Any]:
        live = list(sessions)
        return {
            "time": _now_iso(),
            "active_connections": len(live),
            "active_ips": sorted({s.ip for s in live}),
            "total_bytes_received": self.total_bytes_received,
            "total_bytes_sent": self.total_bytes_sent,
            "connections": [s.describe() for s in live],
        }

    def write_log(self, path, sessions: Iterable[Session]) -> Dict[str, Any]:
        """Append one snapshot to the stats log file."""
        snap = self.snapshot(sessions)
        p = Path(path)
        try:
            p.parent.mkdir(parents=True, exist_ok=True)
            with open(p, "a", encoding="utf-8") as f:
                f.write(json.dumps(snap, indent=2, default=str))
                f.write("\n")
        except OSError as exc:
            raise IOFailure(exc.strerror or str(exc)) from exc
        return snap
