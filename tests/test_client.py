import asyncio
import json
import socket

import pytest

from stratumkit.client import EthStratumClient
from stratumkit.connection import PoolConnection, Solution, StratumMode
from stratumkit.uint256 import Uint256

WAIT = 5

HEADER = "0x" + "ab" * 32
SEED = "0x" + "cd" * 32
TARGET = "0x00000000" + "ff" * 28
MIX = "0x" + "12" * 32


async def read_json(reader):
    line = await asyncio.wait_for(reader.readline(), WAIT)
    return json.loads(line)


async def write_json(writer, message):
    writer.write((json.dumps(message) + "\n").encode())
    await writer.drain()


async def wait_eof(reader):
    try:
        await asyncio.wait_for(reader.read(), WAIT)
    except (asyncio.TimeoutError, ConnectionError):
        pass


class FakePool:
    def __init__(self, script):
        self.script = script
        self.count = 0
        self.port = 0
        self.server = None

    async def _handle(self, reader, writer):
        index = self.count
        self.count += 1
        try:
            await self.script(reader, writer, index)
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError):
                pass

    async def __aenter__(self):
        self.server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self.server.sockets[0].getsockname()[1]
        return self

    async def __aexit__(self, *exc):
        self.server.close()
        try:
            await asyncio.wait_for(self.server.wait_closed(), 2)
        except asyncio.TimeoutError:
            pass


def make_connection(port, version, **kwargs):
    return PoolConnection(host="127.0.0.1", port=port, user="wallet", version=version, **kwargs)


def test_submit_hashrate_when_not_connected():
    client = EthStratumClient(make_connection(4444, StratumMode.ETHPROXY))
    assert client.submit_hashrate(100, "0x01") is False
    assert client.is_connected() is False
    assert client.is_pending() is False


@pytest.mark.asyncio
async def test_refused_connection_reports_disconnect():
    probe = socket.socket()
    probe.bind(("127.0.0.1", 0))
    port = probe.getsockname()[1]
    probe.close()

    disconnected = []
    conn = make_connection(port, StratumMode.ETHPROXY)
    client = EthStratumClient(conn, on_disconnected=lambda: disconnected.append(True))
    await client.connect()

    assert disconnected == [True]
    assert client.is_connected() is False
    assert client.is_pending() is False
    assert conn.responds is False


@pytest.mark.asyncio
async def test_ethproxy_work_and_solution():
    seen = []

    async def script(reader, writer, index):
        seen.append(await read_json(reader))
        await write_json(writer, {"id": 1, "result": True, "error": None})
        seen.append(await read_json(reader))
        await write_json(writer, {"id": 5, "result": [HEADER, SEED, TARGET], "error": None})
        seen.append(await read_json(reader))
        await write_json(writer, {"id": 40, "result": True, "error": None})
        await wait_eof(reader)

    works = []
    work_event = asyncio.Event()
    accepted = []
    accepted_event = asyncio.Event()

    def on_work(job):
        works.append(job)
        work_event.set()

    def on_accepted(delay_ms, miner_index, stale):
        accepted.append((miner_index, stale))
        accepted_event.set()

    async with FakePool(script) as pool:
        conn = make_connection(pool.port, StratumMode.ETHPROXY)
        client = EthStratumClient(conn, on_work=on_work, on_solution_accepted=on_accepted)
        await client.connect()
        await asyncio.wait_for(work_event.wait(), WAIT)

        assert client.is_connected()
        job = works[0]
        assert job.header.hex() == HEADER[2:]
        assert client.current_header == job.header

        solution = Solution(nonce=0x1234, mix_hash=Uint256.from_hex(MIX), work=job, midx=0)
        assert client.submit_solution(solution) is True
        await asyncio.wait_for(accepted_event.wait(), WAIT)
        await client.disconnect()

    assert seen[0]["method"] == "eth_submitLogin"
    assert seen[0]["params"] == ["wallet"]
    assert seen[1]["method"] == "eth_getWork"
    assert seen[2]["method"] == "eth_submitWork"
    assert seen[2]["params"][0] == "0x0000000000001234"
    assert accepted == [(0, False)]
    assert client.is_connected() is False


@pytest.mark.asyncio
async def test_hashrate_is_sent_on_the_wire():
    seen = []
    hashrate_event = asyncio.Event()

    async def script(reader, writer, index):
        seen.append(await read_json(reader))
        await write_json(writer, {"id": 1, "result": True, "error": None})
        seen.append(await read_json(reader))
        seen.append(await read_json(reader))
        hashrate_event.set()
        await wait_eof(reader)

    connected = asyncio.Event()
    async with FakePool(script) as pool:
        conn = make_connection(pool.port, StratumMode.ETHPROXY)
        client = EthStratumClient(conn, on_connected=connected.set)
        await client.connect()
        await asyncio.wait_for(connected.wait(), WAIT)
        assert client.submit_hashrate(0x10, "0xabc") is True
        await asyncio.wait_for(hashrate_event.wait(), WAIT)
        await client.disconnect()

    assert seen[2]["id"] == 9
    assert seen[2]["method"] == "eth_submitHashrate"
    assert seen[2]["params"] == ["0x00000000000000000000000000000010", "0xabc"]


@pytest.mark.asyncio
async def test_autodetection_falls_back_to_next_flavour():
    seen = []

    async def script(reader, writer, index):
        seen.append(await read_json(reader))
        if index == 0:
            await write_json(
                writer, {"id": 1, "result": None, "error": {"code": -1, "message": "unsupported"}}
            )
        else:
            await write_json(
                writer,
                {
                    "id": 1,
                    "result": [["mining.notify", "00", "EthereumStratum/1.0.0"], "080c"],
                    "error": None,
                },
            )
        await wait_eof(reader)

    connected = asyncio.Event()
    disconnected = []
    async with FakePool(script) as pool:
        conn = make_connection(pool.port, StratumMode.AUTODETECT)
        client = EthStratumClient(
            conn, on_connected=connected.set, on_disconnected=lambda: disconnected.append(True)
        )
        await client.connect()
        await asyncio.wait_for(connected.wait(), WAIT)

        assert conn.stratum_mode == StratumMode.ETHEREUMSTRATUM
        assert conn.stratum_mode_confirmed is True
        assert disconnected == []
        await client.disconnect()

    assert seen[0]["method"] == "mining.hello"
    assert seen[0]["params"]["proto"] == "EthereumStratum/2.0.0"
    assert seen[1]["method"] == "mining.subscribe"
    assert seen[1]["params"][1] == "EthereumStratum/1.0.0"
    assert disconnected == [True]
    assert conn.unrecoverable is False


@pytest.mark.asyncio
async def test_unauthorized_worker_is_unrecoverable():
    seen = []

    async def script(reader, writer, index):
        seen.append(await read_json(reader))
        await write_json(writer, {"id": 1, "jsonrpc": "2.0", "result": True, "error": None})
        seen.append(await read_json(reader))
        await write_json(writer, {"id": 3, "jsonrpc": "2.0", "result": False, "error": None})
        await wait_eof(reader)

    done = asyncio.Event()
    async with FakePool(script) as pool:
        conn = make_connection(pool.port, StratumMode.STRATUM, workername="rig1")
        client = EthStratumClient(conn, on_disconnected=done.set)
        await client.connect()
        await asyncio.wait_for(done.wait(), WAIT)

    assert seen[0]["method"] == "mining.subscribe"
    assert seen[0]["jsonrpc"] == "2.0"
    assert seen[1]["method"] == "mining.authorize"
    assert seen[1]["params"] == ["wallet.rig1", ""]
    assert conn.unrecoverable is True
    assert client.is_connected() is False
    assert pool.count == 1


@pytest.mark.asyncio
async def test_remote_close_during_authorization_marks_unrecoverable():
    async def script(reader, writer, index):
        await read_json(reader)
        await write_json(writer, {"id": 1, "jsonrpc": "2.0", "result": True, "error": None})
        await read_json(reader)

    done = asyncio.Event()
    async with FakePool(script) as pool:
        conn = make_connection(pool.port, StratumMode.STRATUM)
        client = EthStratumClient(conn, on_disconnected=done.set)
        await client.connect()
        await asyncio.wait_for(done.wait(), WAIT)

    assert conn.unrecoverable is True
    assert client.is_connected() is False
    assert client.protocol.session is None
    assert conn.duration >= 0.0