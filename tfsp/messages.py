import enum
import json
from typing import Any, Dict, List, Optional, Tuple

"""
messages.py: wire literals, reply builders and the command parser.

What this module does:
- Holds every literal the server puts on the wire, so the dispatcher, the
  node and the client agree on spelling.
- Builds replies as bytes ending in "\n" (one logical reply per call).
- Parses an authenticated slash line into a closed Command enum plus args.

The command set is closed on purpose: adding one means a new enum member,
and the dispatcher refuses to import until it has a handler for it.
"""

# -----------------------
# Reply prefixes
# -----------------------
AUTH = "AUTH"
AUTH_OK = "AUTH_OK"
AUTH_FAIL = "AUTH_FAIL"
ERROR = "ERROR"
ECHO = "ECHO"
STATS = "STATS"
LIST = "LIST"
SEARCH = "SEARCH"
INFO = "INFO"
READY_FOR_UPLOAD = "READY_FOR_UPLOAD"
UPLOAD_OK = "UPLOAD_OK"
DELETE_OK = "DELETE_OK"
SERVER_BUSY = "ERROR:SERVER_BUSY"
INACTIVITY_CLOSING = "NOTICE:INACTIVITY_CLOSING"

AUTH_USAGE = "AUTH <username> <password>"
NOT_AUTHENTICATED = f"Not authenticated. Please authenticate with: {AUTH_USAGE}"


class Command(enum.Enum):
    LIST = "/list"
    READ = "/read"
    DOWNLOAD = "/download"
    SEARCH = "/search"
    INFO = "/info"
    UPLOAD = "/upload"
    DELETE = "/delete"


# Usage strings double as the "Available:" list for unknown commands.
USAGE: Dict[Command, str] = {
    Command.LIST: "/list [dir]",
    Command.READ: "/read <file>",
    Command.DOWNLOAD: "/download <file>",
    Command.SEARCH: "/search <keyword>",
    Command.INFO: "/info <file>",
    Command.UPLOAD: "/upload <file>",
    Command.DELETE: "/delete <file>",
}

# Commands only an admin may run.
ADMIN_ONLY = frozenset({Command.UPLOAD, Command.DELETE})

# Commands whose argument is mandatory.
NEEDS_ARG = frozenset(set(Command) - {Command.LIST})


def available() -> str:
    return ", ".join(USAGE[c] for c in Command) + ", STATS"


# -----------------------
# Parsing
# -----------------------

def parse_command(line: str) -> Tuple[Optional[Command], List[str]]:
    """
    Split a slash line on whitespace. The first token picks the command
    (case-insensitive); the rest are arguments. Unknown -> (None, args).
    """
    tokens = line.split()
    if not tokens:
        return None, []
    head = tokens[0].lower()
    for cmd in Command:
        if cmd.value == head:
            return cmd, tokens[1:]
    return None, tokens[1:]


def parse_auth(line: str) -> Optional[Tuple[str, str]]:
    """`AUTH <user> <pass> [...]` -> (user, pass); None if malformed."""
    tokens = line.split()
    if len(tokens) < 3 or tokens[0].upper() != AUTH:
        return None
    return tokens[1], tokens[2]


def is_auth_line(line: str) -> bool:
    tokens = line.split(maxsplit=1)
    return bool(tokens) and tokens[0].upper() == AUTH


# -----------------------
# Reply builders
# -----------------------

def reply(prefix: str, text: str = "") -> bytes:
    """One reply line: `<PREFIX> <text>\n`."""
    line = f"{prefix} {text}" if text else prefix
    return (line + "\n").encode("utf-8")


def reply_block(header: str, rows: List[str]) -> bytes:
    """Header line followed by one row per line."""
    return ("\n".join([header, *rows]) + "\n").encode("utf-8")


def error(text: str) -> bytes:
    return reply(ERROR, text)


def auth_ok(username: str, role: str) -> bytes:
    return reply(AUTH_OK, f"Welcome {username}. Role={role}")


def server_busy(limit: int) -> bytes:
    return reply(SERVER_BUSY, f"Server busy: maximum of {limit} active connections reached. Try again later.")


def inactivity_closing(seconds: float) -> bytes:
    return reply(INACTIVITY_CLOSING, f"No activity for {seconds:g} seconds. Closing connection.")


def stats_json(snapshot: Dict[str, Any]) -> bytes:
    """Multi-line JSON snapshot for STATS."""
    return (json.dumps(snapshot, indent=2, default=str) + "\n").encode("utf-8")
