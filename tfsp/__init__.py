"""
TFSP (TCP File Session Protocol): line-oriented file server over plain TCP.

Clients authenticate with AUTH, then list/read/search/inspect files in a
shared store; admins may also upload and delete. Anything that is not a
command is echoed back and kept in an append-only message log.

Run a server with `python -m tfsp.run_node --mode server`.
"""
__all__ = [
    "auth", "client", "config", "crypto", "dispatcher", "errors", "framing",
    "logutil", "messages", "node", "paths", "run_node", "session", "stats",
    "store", "watchdog",
]
