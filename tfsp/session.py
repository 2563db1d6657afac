import enum
import time
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterator, Optional

from .errors import CapacityExceeded, InvalidTransition
from .framing import UploadBuffer

"""
session.py: per-connection state and the live-session registry.

The session is a small state machine instead of a pile of booleans:

    UNAUTHENTICATED --authenticate--> AUTHENTICATED
    AUTHENTICATED   --begin_upload--> AWAITING_UPLOAD
    AWAITING_UPLOAD --end_upload----> AUTHENTICATED

Anything else raises InvalidTransition. The role is written exactly once, by
authenticate(), and never touched again.
"""


class SessionState(enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    AWAITING_UPLOAD = "awaiting_upload"


@dataclass
class Counters:
    bytes_received: int = 0
    bytes_sent: int = 0
    messages_received: int = 0

    def merge(self, other: "Counters") -> None:
        """Additive merge (used when a user comes back)."""
        self.bytes_received += other.bytes_received
        self.bytes_sent += other.bytes_sent
        self.messages_received += other.messages_received

    def copy(self) -> "Counters":
        return Counters(**asdict(self))


class Session:
    """Server-side state for one live connection."""

    def __init__(self, writer: Any, address: str) -> None:
        self.writer = writer
        self.address = address
        self.username: Optional[str] = None
        self.role: Optional[str] = None
        self.state = SessionState.UNAUTHENTICATED
        self.counters = Counters()
        self.last_active = time.time()
        self.upload: Optional[UploadBuffer] = None
        self.line_buffer = b""
        self.skip_line = False  # drop bytes up to the next "\n" (overlong line)
        self.closed = False

    def __repr__(self) -> str:
        return f"<Session {self.username or '-'}@{self.address} {self.state.value}>"

    @property
    def authenticated(self) -> bool:
        return self.state is not SessionState.UNAUTHENTICATED

    @property
    def awaiting_upload(self) -> bool:
        return self.state is SessionState.AWAITING_UPLOAD

    @property
    def ip(self) -> str:
        return self.address.rsplit(":", 1)[0]

    def touch(self) -> None:
        self.last_active = time.time()

    # --- transitions

    def authenticate(self, username: str, role: str) -> None:
        if self.state is not SessionState.UNAUTHENTICATED:
            raise InvalidTransition(f"Already authenticated as {self.username}.")
        self.username = username
        self.role = role
        self.state = SessionState.AUTHENTICATED

    def begin_upload(self, buffer: UploadBuffer) -> None:
        if self.state is SessionState.AWAITING_UPLOAD:
            assert self.upload is not None
            raise InvalidTransition(f"Already awaiting upload for {self.upload.target}.")
        if self.state is not SessionState.AUTHENTICATED:
            raise InvalidTransition("Not authenticated.")
        self.upload = buffer
        self.state = SessionState.AWAITING_UPLOAD

    def end_upload(self) -> None:
        if self.state is not SessionState.AWAITING_UPLOAD:
            raise InvalidTransition("No upload in progress.")
        self.upload = None
        self.state = SessionState.AUTHENTICATED

    def describe(self) -> Dict[str, Any]:
        """Row for the STATS per-connection breakdown."""
        return {
            "username": self.username,
            "address": self.address,
            "role": self.role,
            "messages_received": self.counters.messages_received,
            "bytes_received": self.counters.bytes_received,
            "bytes_sent": self.counters.bytes_sent,
            "last_active": time.strftime("%Y-%m-%dT%H:%M:%S%z", time.localtime(self.last_active)),
        }


class SessionRegistry:
    """
    Live sessions, one per socket. Admission control lives here so the
    capacity check and the insert happen in the same place.
    """

    def __init__(self, max_active: int) -> None:
        self.max_active = max_active
        self._sessions: Dict[Any, Session] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[Session]:
        return iter(list(self._sessions.values()))

    def __contains__(self, session: object) -> bool:
        return isinstance(session, Session) and self._sessions.get(session.writer) is session

    def has_capacity(self) -> bool:
        return len(self._sessions) < self.max_active

    def admit(self, writer: Any, address: str) -> Session:
        """Create and register a session, or raise CapacityExceeded."""
        if not self.has_capacity():
            raise CapacityExceeded(f"maximum of {self.max_active} active connections reached")
        session = Session(writer, address)
        self._sessions[writer] = session
        return session

    def remove(self, session: Session) -> bool:
        """Deregister; True if it was still registered."""
        if self._sessions.get(session.writer) is session:
            del self._sessions[session.writer]
            return True
        return False
