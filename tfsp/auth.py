import enum
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional

from . import crypto
from . import messages as m
from .errors import AuthenticationFailure, InvalidTransition
from .logutil import get_logger
from .session import Counters, Session
from .stats import StatsAggregator

log = get_logger("tfsp.auth")


class Role(str, enum.Enum):
    ADMIN = "admin"
    READ = "read"


@dataclass(frozen=True)
class UserRecord:
    password: str
    role: Role


# Static credential table. Read-only at runtime.
DEFAULT_USERS: Dict[str, UserRecord] = {
    "admin": UserRecord("adminpass", Role.ADMIN),
    "user1": UserRecord("user1pass", Role.READ),
    "user2": UserRecord("user2pass", Role.READ),
    "user3": UserRecord("user3pass", Role.READ),
}


def load_users(path) -> Dict[str, UserRecord]:
    """
    Load a user table from JSON: {"name": {"password": "...", "role": "admin|read"}}.
    Raises ValueError on a bad role or a missing password.
    """
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    users: Dict[str, UserRecord] = {}
    for name, rec in raw.items():
        if "password" not in rec:
            raise ValueError(f"user {name!r} has no password")
        users[name] = UserRecord(str(rec["password"]), Role(rec.get("role", "read")))
    return users


class AuthenticationGate:
    """
    Handles every line a session sends before it is authenticated.

    Only `AUTH <user> <password>` moves the session forward. Failures leave
    the session unauthenticated with the socket open; there is no attempt
    limit.
    """

    def __init__(self, users: Mapping[str, UserRecord], stats: StatsAggregator) -> None:
        self.users = dict(users)
        self.stats = stats

    def verify(self, username: str, password: str) -> UserRecord:
        record = self.users.get(username)
        # Compare against something even for unknown users so both paths cost the same.
        expected = record.password if record else "\x00" * len(password)
        if not crypto.credentials_match(expected, password) or record is None:
            raise AuthenticationFailure("Invalid username or password.")
        return record

    def handle(self, session: Session, line: str) -> bytes:
        if session.authenticated:
            return m.error(f"Already authenticated as {session.username}.")

        if not m.is_auth_line(line):
            return m.error(m.NOT_AUTHENTICATED)

        creds = m.parse_auth(line)
        if creds is None:
            return m.reply(m.AUTH_FAIL, f"Usage: {m.AUTH_USAGE}")

        username, password = creds
        try:
            record = self.verify(username, password)
            session.authenticate(username, record.role.value)
        except (AuthenticationFailure, InvalidTransition) as exc:
            log.info("auth failed", extra={"peer": session.address, "user": username})
            return m.reply(m.AUTH_FAIL, str(exc))

        previous: Optional[Counters] = self.stats.restore(session)
        log.info(
            "auth ok",
            extra={"peer": session.address, "user": username, "role": session.role,
                   "resumed": previous is not None},
        )
        return m.auth_ok(username, record.role.value)
