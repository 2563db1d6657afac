import argparse
import asyncio
import sys
from typing import List, Optional

from .client import ClientError, FileClient
from .config import ServerConfig
from .errors import TfspError
from .logutil import get_logger
from .node import FileServer

"""
run_node.py: single entry point for the file server and a one-shot client.

What you can do here:
- server:  run the TCP file server (env TFSP_* sets defaults, flags override)
- cli:     connect, authenticate, run one command, print the reply, exit
"""

log = get_logger("tfsp.run")


# -------------------------
# Process runners (thin wrappers)
# -------------------------

async def run_server(config: ServerConfig) -> None:
    """Build the server from config and serve forever."""
    server = FileServer(config)
    await server.start()


async def run_cli(args: argparse.Namespace) -> int:
    """
    Minimal client for scripts and smoke tests:
      list [dir] | read <file> | download <file> | search <kw> | info <file>
      upload <file> (content from stdin) | delete <file> | stats | say <text...>
    """
    host, port = args.server.rsplit(":", 1)
    async with FileClient(host, int(port), timeout=args.timeout) as client:
        await client.authenticate(args.user, args.password)

        if args.command in ("read", "download"):
            name, content = await client.fetch(args.target, download=args.command == "download")
            sys.stdout.buffer.write(content)
            if not content.endswith(b"\n"):
                sys.stdout.buffer.write(b"\n")
            return 0

        if args.command == "upload":
            content = sys.stdin.buffer.read()
            print(await client.upload(args.target, content))
            return 0

        if args.command == "stats":
            line = "STATS"
        elif args.command == "say":
            line = " ".join(args.words)
        else:
            line = f"/{args.command} {args.target or ''}".rstrip()

        reply = await client.command(line)
        sys.stdout.write(reply)
        return 1 if reply.startswith("ERROR") else 0


# -------------------------
# Argument parsing
# -------------------------

def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Quick examples:
      Server:   python -m tfsp.run_node --mode server --port 9000 --files-dir ./server_files
      List:     python -m tfsp.run_node --mode cli --server 127.0.0.1:9000 --user user1 --password user1pass list
      Upload:   echo hi | python -m tfsp.run_node --mode cli --server 127.0.0.1:9000 \
                    --user admin --password adminpass upload notes.txt
    """
    p = argparse.ArgumentParser(prog="tfsp")
    p.add_argument("--mode", choices=["server", "cli"], required=True)

    # server
    p.add_argument("--host")
    p.add_argument("--port", type=int)
    p.add_argument("--files-dir")
    p.add_argument("--max-connections", type=int)
    p.add_argument("--inactivity-ms", type=int)
    p.add_argument("--stats-log")

    # cli
    p.add_argument("--server", default="127.0.0.1:9000")
    p.add_argument("--user")
    p.add_argument("--password")
    p.add_argument("--timeout", type=float, default=5.0)

    sub = p.add_subparsers(dest="command")
    sub.required = False
    for name in ("list", "read", "download", "search", "info", "upload", "delete"):
        sp = sub.add_parser(name)
        sp.add_argument("target", nargs="?" if name == "list" else None)
    sub.add_parser("stats")
    sp = sub.add_parser("say")
    sp.add_argument("words", nargs=argparse.REMAINDER)

    return p.parse_args(argv)


def build_config(args: argparse.Namespace) -> ServerConfig:
    cfg = ServerConfig.from_env()
    if args.host:
        cfg.host = args.host
    if args.port is not None:
        cfg.port = args.port
    if args.files_dir:
        cfg.files_dir = args.files_dir
    if args.max_connections is not None:
        cfg.max_active_connections = args.max_connections
    if args.inactivity_ms is not None:
        cfg.inactivity_ms = args.inactivity_ms
    if args.stats_log:
        cfg.stats_log_file = args.stats_log
    return cfg


# -------------------------
# Main entrypoint
# -------------------------

def main(argv: Optional[List[str]] = None) -> int:
    """Dispatch into the chosen mode; keep top-level code very small."""
    args = parse_args(argv)
    if args.mode == "server":
        try:
            asyncio.run(run_server(build_config(args)))
        except KeyboardInterrupt:
            log.info("shutting down")
        return 0

    if not args.user or not args.password or not args.command:
        raise SystemExit("--user, --password and a command are required for cli mode")
    try:
        return asyncio.run(run_cli(args))
    except (ClientError, TfspError) as exc:
        print(str(exc), file=sys.stderr)
        return 1
    except (ConnectionError, OSError, asyncio.TimeoutError) as exc:
        print(f"connection failed: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
