"""Builders for the JSON requests and replies a miner sends to a stratum pool."""

from __future__ import annotations

import json
from typing import Any, Dict, List

from .connection import PoolConnection, Solution, StratumMode

Message = Dict[str, Any]

LOGIN_ID = 1
SUBSCRIBE_ID = 2
AUTHORIZE_ID = 3
GET_WORK_ID = 5
NOOP_ID = 7
HASHRATE_ID = 9
SOLUTION_BASE_ID = 40

ETHEREUM_STRATUM_1 = "EthereumStratum/1.0.0"
ETHEREUM_STRATUM_2 = "EthereumStratum/2.0.0"


def _compact_hex(value: int) -> str:
    """Hex digits of the minimal big-endian byte form of ``value``, no prefix."""
    if value < 0:
        raise ValueError("negative values have no compact hex form")
    length = (value.bit_length() + 7) // 8
    return value.to_bytes(length, "big").hex()


def _padded_hex(value: int, width: int, prefix: bool) -> str:
    """Hex digits of ``value`` left-padded with zeros to ``width`` characters."""
    if value < 0:
        raise ValueError("negative values have no hex form")
    text = format(value, f"0{width}x")
    return "0x" + text if prefix else text


def _mode(connection: PoolConnection) -> StratumMode:
    mode = StratumMode(connection.stratum_mode)
    if mode is StratumMode.AUTODETECT:
        raise ValueError("stratum mode has not been selected yet")
    return mode


def login_request(connection: PoolConnection, agent: str) -> Message:
    """Build the first request sent after connecting, for the selected flavour."""
    mode = _mode(connection)
    request: Message = {"id": LOGIN_ID, "method": "mining.subscribe", "params": []}
    if mode is StratumMode.STRATUM:
        request["jsonrpc"] = "2.0"
        request["params"].append(agent)
    elif mode is StratumMode.ETHPROXY:
        request["method"] = "eth_submitLogin"
        if connection.workername:
            request["worker"] = connection.workername
        request["params"].append(connection.user + connection.path)
        if connection.password:
            request["params"].append(connection.password)
    elif mode is StratumMode.ETHEREUMSTRATUM:
        request["params"].extend([agent, ETHEREUM_STRATUM_1])
    else:
        request["method"] = "mining.hello"
        request["params"] = {
            "agent": agent,
            "host": connection.host,
            "port": _compact_hex(int(connection.port) & 0xFFFFFFFF),
            "proto": ETHEREUM_STRATUM_2,
        }
    return request


def authorize_request(connection: PoolConnection, jsonrpc: bool = False) -> Message:
    """Build a ``mining.authorize`` request."""
    request: Message = {
        "id": AUTHORIZE_ID,
        "method": "mining.authorize",
        "params": [connection.user_dot_worker() + connection.path, connection.password],
    }
    if jsonrpc:
        request["jsonrpc"] = "2.0"
    return request


def extranonce_subscribe_request() -> Message:
    """Build a ``mining.extranonce.subscribe`` request."""
    return {"id": SUBSCRIBE_ID, "method": "mining.extranonce.subscribe", "params": []}


def subscribe_request() -> Message:
    """Build the ``mining.subscribe`` request that follows a successful hello."""
    return {"id": SUBSCRIBE_ID, "method": "mining.subscribe"}


def get_work_request() -> Message:
    """Build the initial ``eth_getWork`` request."""
    return {"id": GET_WORK_ID, "method": "eth_getWork", "params": []}


def noop_request() -> Message:
    """Build a ``mining.noop`` keep-alive request."""
    return {"id": NOOP_ID, "method": "mining.noop"}


def hashrate_request(
    connection: PoolConnection, rate: int, worker_id: str, session_worker_id: str = ""
) -> Message:
    """Build a hashrate report for the selected flavour."""
    params: List[str] = []
    request: Message = {"id": HASHRATE_ID, "params": params}
    if connection.stratum_mode != StratumMode.ETHEREUMSTRATUM2:
        request["jsonrpc"] = "2.0"
        if connection.workername:
            request["worker"] = connection.workername
        request["method"] = "eth_submitHashrate"
        params.append(_padded_hex(rate, 32, prefix=True))
        params.append(worker_id)
    else:
        request["method"] = "mining.hashrate"
        params.append(_compact_hex(rate))
        params.append(session_worker_id)
    return request


def solution_request(
    connection: PoolConnection, solution: Solution, session_worker_id: str = ""
) -> Message:
    """Build a solution submission; its id is 40 plus the miner index."""
    mode = _mode(connection)
    params: List[str] = []
    request: Message = {
        "id": SOLUTION_BASE_ID + solution.midx,
        "method": "mining.submit",
        "params": params,
    }
    nonce_hex = _padded_hex(solution.nonce, 16, prefix=False)
    if mode is StratumMode.STRATUM:
        request["jsonrpc"] = "2.0"
        params.extend([
            connection.user_dot_worker(),
            solution.work.job,
            "0x" + nonce_hex,
            "0x" + solution.work.header.hex(),
            "0x" + solution.mix_hash.hex(),
        ])
        if connection.workername:
            request["worker"] = connection.workername
    elif mode is StratumMode.ETHPROXY:
        request["method"] = "eth_submitWork"
        params.extend([
            "0x" + nonce_hex,
            "0x" + solution.work.header.hex(),
            "0x" + solution.mix_hash.hex(),
        ])
        if connection.workername:
            request["worker"] = connection.workername
    elif mode is StratumMode.ETHEREUMSTRATUM:
        params.extend([
            connection.user_dot_worker(),
            solution.work.job,
            nonce_hex[solution.work.ex_size_bytes:],
        ])
    else:
        params.extend([
            solution.work.job,
            nonce_hex[solution.work.ex_size_bytes:],
            session_worker_id,
        ])
    return request


def version_reply(request_id: int, rpc_version: int, agent: str) -> Message:
    """Build the reply to a ``client.get_version`` request."""
    reply: Message = {"id": request_id, "result": agent}
    if rpc_version == 1:
        reply["error"] = None
    elif rpc_version == 2:
        reply["jsonrpc"] = "2.0"
    return reply


def encode_line(message: Message) -> bytes:
    """Serialise a message as one compact JSON line with sorted keys."""
    text = json.dumps(message, sort_keys=True, separators=(",", ":"), ensure_ascii=True)
    return (text + "\n").encode("ascii")