import json

import pytest

from stratumkit.connection import PoolConnection, Solution, StratumMode, WorkPackage
from stratumkit.messages import (
    authorize_request,
    encode_line,
    extranonce_subscribe_request,
    get_work_request,
    hashrate_request,
    login_request,
    noop_request,
    solution_request,
    version_reply,
)
from stratumkit.uint256 import Uint256

AGENT = "miner-1.0.0"


def make_connection(mode, workername="", port=4444):
    password = "password"
    conn = PoolConnection(
        host="pool.example.com",
        port=port,
        user="wallet",
        password=password,
        path="/rig",
        workername=workername,
    )
    conn.set_stratum_mode(mode, True)
    return conn


def make_solution(midx=0, ex_size=0):
    work = WorkPackage(
        job="job42",
        header=Uint256.from_hex("ab" * 32),
        ex_size_bytes=ex_size,
    )
    return Solution(nonce=0x00AA000000000123, mix_hash=Uint256.from_hex("cd" * 32), work=work, midx=midx)


def test_login_stratum():
    req = login_request(make_connection(StratumMode.STRATUM), AGENT)
    assert req["id"] == 1
    assert req["method"] == "mining.subscribe"
    assert req["jsonrpc"] == "2.0"
    assert req["params"] == [AGENT]


def test_login_ethproxy_with_worker():
    conn = make_connection(StratumMode.ETHPROXY, workername="rig1")
    req = login_request(conn, AGENT)
    assert req["method"] == "eth_submitLogin"
    assert req["worker"] == "rig1"
    assert req["params"] == ["wallet/rig", "password"]


def test_login_ethproxy_without_password_or_worker():
    conn = make_connection(StratumMode.ETHPROXY)
    conn.password = ""
    req = login_request(conn, AGENT)
    assert "worker" not in req
    assert req["params"] == ["wallet/rig"]


def test_login_ethereumstratum():
    req = login_request(make_connection(StratumMode.ETHEREUMSTRATUM), AGENT)
    assert req["method"] == "mining.subscribe"
    assert req["params"] == [AGENT, "EthereumStratum/1.0.0"]
    assert "jsonrpc" not in req


def test_login_ethereumstratum2_hello():
    req = login_request(make_connection(StratumMode.ETHEREUMSTRATUM2, port=4444), AGENT)
    assert req["method"] == "mining.hello"
    params = req["params"]
    assert params["agent"] == AGENT
    assert params["host"] == "pool.example.com"
    assert params["proto"] == "EthereumStratum/2.0.0"
    assert int(params["port"], 16) == 4444
    assert len(params["port"]) % 2 == 0
    assert not params["port"].startswith("0x")


def test_login_requires_selected_mode():
    conn = PoolConnection(host="pool.example.com", port=1)
    with pytest.raises(ValueError):
        login_request(conn, AGENT)


@pytest.mark.parametrize("jsonrpc", [False, True])
def test_authorize(jsonrpc):
    conn = make_connection(StratumMode.STRATUM, workername="rig1")
    req = authorize_request(conn, jsonrpc)
    assert req["id"] == 3
    assert req["method"] == "mining.authorize"
    assert req["params"] == ["wallet.rig1/rig", "password"]
    assert ("jsonrpc" in req) is jsonrpc


def test_simple_requests():
    assert extranonce_subscribe_request() == {
        "id": 2, "method": "mining.extranonce.subscribe", "params": []
    }
    assert get_work_request() == {"id": 5, "method": "eth_getWork", "params": []}
    assert noop_request() == {"id": 7, "method": "mining.noop"}


def test_hashrate_rpc_variant():
    conn = make_connection(StratumMode.ETHPROXY, workername="rig1")
    req = hashrate_request(conn, 500000, "0xabc")
    assert req["id"] == 9
    assert req["method"] == "eth_submitHashrate"
    assert req["jsonrpc"] == "2.0"
    assert req["worker"] == "rig1"
    rate_hex, ident = req["params"]
    assert ident == "0xabc"
    assert rate_hex.startswith("0x")
    assert len(rate_hex) == 34
    assert int(rate_hex, 16) == 500000


def test_hashrate_ethereumstratum2():
    conn = make_connection(StratumMode.ETHEREUMSTRATUM2)
    req = hashrate_request(conn, 500000, "0xabc", "w-123")
    assert req["method"] == "mining.hashrate"
    assert "jsonrpc" not in req
    assert int(req["params"][0], 16) == 500000
    assert req["params"][1] == "w-123"


def test_solution_stratum():
    conn = make_connection(StratumMode.STRATUM, workername="rig1")
    req = solution_request(conn, make_solution(midx=2))
    assert req["id"] == 42
    assert req["method"] == "mining.submit"
    assert req["jsonrpc"] == "2.0"
    assert req["worker"] == "rig1"
    user, job, nonce, header, mix = req["params"]
    assert user == "wallet.rig1"
    assert job == "job42"
    assert int(nonce, 16) == 0x00AA000000000123 and len(nonce) == 18
    assert header == "0x" + "ab" * 32
    assert mix == "0x" + "cd" * 32


def test_solution_ethproxy():
    req = solution_request(make_connection(StratumMode.ETHPROXY), make_solution())
    assert req["id"] == 40
    assert req["method"] == "eth_submitWork"
    assert len(req["params"]) == 3
    assert req["params"][1] == "0x" + "ab" * 32


def test_solution_ethereumstratum_strips_extranonce():
    req = solution_request(make_connection(StratumMode.ETHEREUMSTRATUM), make_solution(ex_size=2))
    assert req["params"][:2] == ["wallet", "job42"]
    assert req["params"][2] == "aa000000000123"


def test_solution_ethereumstratum2():
    req = solution_request(
        make_connection(StratumMode.ETHEREUMSTRATUM2), make_solution(ex_size=4), "w-1"
    )
    job, nonce, worker = req["params"]
    assert job == "job42"
    assert len(nonce) == 12
    assert worker == "w-1"


def test_version_reply_variants():
    assert version_reply(6, 1, AGENT) == {"id": 6, "result": AGENT, "error": None}
    assert version_reply(6, 2, AGENT) == {"id": 6, "result": AGENT, "jsonrpc": "2.0"}


def test_encode_line_is_compact_sorted():
    assert encode_line({"b": 1, "a": []}) == b'{"a":[],"b":1}\n'


def test_encode_line_round_trip():
    req = login_request(make_connection(StratumMode.ETHEREUMSTRATUM2), AGENT)
    line = encode_line(req)
    assert line.endswith(b"\n")
    assert line.count(b"\n") == 1
    assert json.loads(line) == req