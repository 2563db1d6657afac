"""End-to-end tests against a live server on 127.0.0.1 (random port)."""
from __future__ import annotations

import asyncio
import json

from conftest import read_eof, read_line, wait_for
from tfsp.client import FileClient


async def connect(server):
    return await asyncio.open_connection("127.0.0.1", server.port)


async def send(writer, data):
    writer.write(data if isinstance(data, bytes) else (data + "\n").encode())
    await writer.drain()


def test_unauthenticated_command_rejected(serve):
    async def scenario(server):
        reader, writer = await connect(server)
        await send(writer, "/list")
        line = await read_line(reader)
        writer.close()
        return line

    assert serve(scenario) == "ERROR Not authenticated. Please authenticate with: AUTH <username> <password>"


def test_example_upload_then_read(serve):
    async def scenario(server):
        async with FileClient("127.0.0.1", server.port) as c:
            welcome = await c.authenticate("admin", "adminpass")
            ready = await c.request("/upload report.txt")
            await c.send_raw(b"CONTENT_BEGIN\nhello world\nCONTENT_END\n")
            done = await c.read_line()
            name, content = await c.fetch("report.txt")
            return welcome, ready, done, name, content

    welcome, ready, done, name, content = serve(scenario)
    assert welcome == "AUTH_OK Welcome admin. Role=admin"
    assert ready.startswith("READY_FOR_UPLOAD")
    assert done == "UPLOAD_OK report.txt"
    assert (name, content) == ("report.txt", b"hello world")


def test_upload_split_across_segments(serve):
    async def scenario(server):
        reader, writer = await connect(server)
        await send(writer, "AUTH admin adminpass")
        await read_line(reader)
        await send(writer, "/upload split.txt")
        await read_line(reader)
        for piece in (b"CONTENT_BE", b"GIN\nfirst line\nsec", b"ond line\nCONT", b"ENT_END\n"):
            await send(writer, piece)
            await asyncio.sleep(0.05)
        line = await read_line(reader)
        writer.close()
        return line, server.store.read("split.txt")[1]

    line, content = serve(scenario)
    assert line == "UPLOAD_OK split.txt"
    assert content == b"first line\nsecond line"


def test_upload_in_same_segment_as_command(serve):
    async def scenario(server):
        reader, writer = await connect(server)
        await send(writer, b"AUTH admin adminpass\n/upload one.txt\nCONTENT_BEGIN\nx y z\nCONTENT_END\n/list\n")
        lines = [await read_line(reader) for _ in range(5)]
        writer.close()
        return lines

    lines = serve(scenario)
    assert lines[0].startswith("AUTH_OK")
    assert lines[1].startswith("READY_FOR_UPLOAD one.txt")
    assert lines[2] == "UPLOAD_OK one.txt"
    assert lines[3] == "LIST . (1 entries)"
    assert lines[4] == "one.txt"


def test_read_role_cannot_upload_or_delete(serve):
    async def scenario(server):
        (server.store.root / "keep.txt").write_text("keep")
        async with FileClient("127.0.0.1", server.port) as c:
            await c.authenticate("user1", "user1pass")
            up = await c.request("/upload new.txt")
            rm = await c.request("/delete keep.txt")
        return up, rm, sorted(p.name for p in server.store.root.iterdir())

    up, rm, names = serve(scenario)
    assert up.startswith("ERROR Permission denied")
    assert rm.startswith("ERROR Permission denied")
    assert names == ["keep.txt"]


def test_busy_when_full(serve):
    async def scenario(server):
        conns = [await connect(server) for _ in range(2)]
        await wait_for(lambda: len(server.registry) == 2)
        reader, writer = await connect(server)
        line = await read_line(reader)
        tail = await read_eof(reader)
        live = len(server.registry)
        for _, w in conns:
            w.close()
        return line, tail, live

    line, tail, live = serve(scenario, max_active_connections=2)
    assert line.startswith("ERROR:SERVER_BUSY")
    assert tail == b""
    assert live == 2


def test_capacity_frees_after_disconnect(serve):
    async def scenario(server):
        _, w1 = await connect(server)
        await wait_for(lambda: len(server.registry) == 1)
        w1.close()
        await wait_for(lambda: len(server.registry) == 0)
        async with FileClient("127.0.0.1", server.port) as c:
            return await c.authenticate("user2", "user2pass")

    assert serve(scenario, max_active_connections=1).startswith("AUTH_OK")


def test_idle_connection_evicted_and_stats_kept(serve):
    async def scenario(server):
        reader, writer = await connect(server)
        await send(writer, "AUTH user1 user1pass")
        await read_line(reader)
        notice = await read_line(reader, timeout=3.0)
        await read_eof(reader, timeout=3.0)
        await wait_for(lambda: len(server.registry) == 0)
        return notice, server.stats.user_counters("user1")

    notice, saved = serve(scenario, inactivity_ms=200)
    assert notice.startswith("NOTICE:INACTIVITY_CLOSING")
    assert saved is not None
    assert saved.messages_received >= 1
    assert saved.bytes_sent > 0


def test_counters_continue_after_reconnect(serve):
    async def scenario(server):
        async with FileClient("127.0.0.1", server.port) as c:
            await c.authenticate("user3", "user3pass")
            assert await c.request("ping") == "ECHO ping"
        await wait_for(lambda: len(server.registry) == 0)
        before = server.stats.user_counters("user3")

        async with FileClient("127.0.0.1", server.port) as c:
            await c.authenticate("user3", "user3pass")
            session = next(iter(server.registry))
            after = session.counters.copy()
        return before, after

    before, after = serve(scenario)
    assert before.messages_received >= 2
    assert after.messages_received >= before.messages_received + 1
    assert after.bytes_received > before.bytes_received
    assert after.bytes_sent > before.bytes_sent


def test_stats_and_echo(serve, tmp_path):
    async def scenario(server):
        async with FileClient("127.0.0.1", server.port) as c:
            await c.authenticate("admin", "adminpass")
            echo = await c.request("hello everyone")
            snap = json.loads(await c.command("STATS"))
        return echo, snap

    echo, snap = serve(scenario)
    assert echo == "ECHO hello everyone"
    assert snap["active_connections"] == 1
    assert snap["connections"][0]["username"] == "admin"
    assert snap["connections"][0]["role"] == "admin"
    assert snap["total_bytes_received"] > 0
    assert "hello everyone" in (tmp_path / "messages.log").read_text()


def test_command_error_keeps_connection(serve):
    async def scenario(server):
        async with FileClient("127.0.0.1", server.port) as c:
            await c.authenticate("user1", "user1pass")
            err = await c.request("/read ../../etc/passwd")
            echo = await c.request("still here")
        return err, echo

    err, echo = serve(scenario)
    assert err.startswith("ERROR Access denied")
    assert echo == "ECHO still here"


def test_download_with_client(serve):
    async def scenario(server):
        server.store.write("data.bin", b"\x00\x01binary\nlines\n")
        async with FileClient("127.0.0.1", server.port) as c:
            await c.authenticate("user2", "user2pass")
            return await c.fetch("data.bin", download=True)

    assert serve(scenario) == ("data.bin", b"\x00\x01binary\nlines\n")


def test_stats_log_written_on_close(serve, tmp_path):
    async def scenario(server):
        return None

    serve(scenario)
    assert '"active_connections": 0' in (tmp_path / "server_stats.txt").read_text()


def test_stats_log_on_close_lists_live_sessions(serve, tmp_path):
    async def scenario(server):
        reader, writer = await connect(server)
        await send(writer, "AUTH user2 user2pass")
        await read_line(reader)
        return None

    serve(scenario)
    snap = json.loads((tmp_path / "server_stats.txt").read_text())
    assert snap["active_connections"] == 1
    assert snap["connections"][0]["username"] == "user2"


def test_oversized_upload_payload_never_runs_as_commands(serve, tmp_path):
    async def scenario(server):
        (server.store.root / "keep.txt").write_text("keep")
        reader, writer = await connect(server)
        await send(writer, "AUTH admin adminpass")
        await read_line(reader)
        await send(writer, "/upload big.txt")
        await read_line(reader)
        await send(writer, b"CONTENT_BEGIN\n" + b"x" * 64)
        await asyncio.sleep(0.05)
        await send(writer, b"\n/delete keep.txt\nsecret payload line\nCONTENT_END\n/list\n")
        lines = [await read_line(reader) for _ in range(3)]
        writer.close()
        return lines, sorted(p.name for p in server.store.root.iterdir())

    lines, names = serve(scenario, max_upload_bytes=32)
    assert lines[0].startswith("ERROR Upload failed: payload exceeds 32 bytes")
    assert lines[1:] == ["LIST . (1 entries)", "keep.txt"]
    assert names == ["keep.txt"]
    log_file = tmp_path / "messages.log"
    assert not log_file.exists() or "secret" not in log_file.read_text()


def test_command_split_across_reads(serve):
    async def scenario(server):
        reader, writer = await connect(server)
        for piece in (b"AUTH adm", b"in adminpass\n/li", b"st\n"):
            await send(writer, piece)
            await asyncio.sleep(0.05)
        lines = [await read_line(reader) for _ in range(2)]
        writer.close()
        return lines

    assert serve(scenario) == ["AUTH_OK Welcome admin. Role=admin", "LIST . (0 entries)"]


def test_line_too_long(serve):
    async def scenario(server):
        reader, writer = await connect(server)
        await send(writer, "AUTH user1 user1pass")
        await read_line(reader)
        await send(writer, b"x" * 100)
        first = await read_line(reader)
        await send(writer, b"tail of the long line\nping\n")
        second = await read_line(reader)
        await send(writer, b"y" * 100 + b"\nstill here\n")
        third = [await read_line(reader) for _ in range(2)]
        writer.close()
        return first, second, third

    first, second, third = serve(scenario, max_line_bytes=64)
    assert first == "ERROR Line too long."
    assert second == "ECHO ping"
    assert third == ["ERROR Line too long.", "ECHO still here"]
