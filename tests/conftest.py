from __future__ import annotations

import asyncio

import pytest

from tfsp.auth import DEFAULT_USERS
from tfsp.config import ServerConfig
from tfsp.node import FileServer
from tfsp.session import Session, SessionRegistry
from tfsp.stats import StatsAggregator
from tfsp.store import FileStore


class FakeWriter:
    """Stands in for a StreamWriter where only identity matters."""

    def __init__(self, name: str = "w") -> None:
        self.name = name
        self.closed = False

    def close(self) -> None:
        self.closed = True


def make_session(address: str = "127.0.0.1:50000") -> Session:
    return Session(FakeWriter(address), address)


def login(session: Session, username: str) -> Session:
    session.authenticate(username, DEFAULT_USERS[username].role.value)
    return session


async def wait_for(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


async def read_line(reader: asyncio.StreamReader, timeout: float = 2.0) -> str:
    raw = await asyncio.wait_for(reader.readline(), timeout)
    return raw.decode("utf-8").rstrip("\r\n")


async def read_eof(reader: asyncio.StreamReader, timeout: float = 2.0) -> bytes:
    return await asyncio.wait_for(reader.read(), timeout)


@pytest.fixture
def store(tmp_path):
    s = FileStore(tmp_path / "files")
    s.ensure_root()
    return s


@pytest.fixture
def stats():
    return StatsAggregator()


@pytest.fixture
def registry():
    return SessionRegistry(max_active=6)


@pytest.fixture
def config(tmp_path):
    return ServerConfig(
        host="127.0.0.1",
        port=0,
        files_dir=str(tmp_path / "files"),
        stats_log_file=str(tmp_path / "server_stats.txt"),
        message_log_file=str(tmp_path / "messages.log"),
        stats_interval=0,
    )


@pytest.fixture
def serve(config):
    """
    serve(scenario, **overrides): run `await scenario(server)` against a live
    server on 127.0.0.1:<random port>, then shut it down.
    """
    def runner(scenario, **overrides):
        for key, value in overrides.items():
            setattr(config, key, value)

        async def main():
            server = FileServer(config)
            await server.listen()
            try:
                return await scenario(server)
            finally:
                await server.close()

        return asyncio.run(main())

    return runner
