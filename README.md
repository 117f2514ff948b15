# stratumkit

A pure-Python client for Ethereum-style mining pools that speak the stratum
family of protocols. It supports these flavours:

- **EthereumStratum/2.0.0**: `mining.hello`, `mining.subscribe` session ids, `mining.set`, `mining.noop` keep-alives and `mining.bye`
- **EthereumStratum/1.0.0**: NiceHash-style `mining.set_extranonce` and `mining.set_difficulty`
- **Eth-Proxy**: `eth_submitLogin`, `eth_getWork` and `eth_submitWork`
- **Stratum**: `mining.subscribe` and `mining.authorize`, with JSON-RPC 2.0

A `PoolConnection` can name a flavour through its `version` field. If it does
not (the default is `StratumMode.AUTODETECT`), the client tries
EthereumStratum/2.0.0 first. Each time the pool rejects a login, the client
drops to the next older flavour, down to plain Stratum. If Stratum is
rejected too, the connection is marked unrecoverable.

## Installation

```
pip install stratumkit
```

The package uses only the standard library. To run the tests, install the
`test` extra, which adds pytest and pytest-asyncio.

## Package layout

| Module | Contents |
| --- | --- |
| `stratumkit.uint256` | `BaseBlob`, `Uint160`, `Uint256` and `Uint512`: fixed-size opaque blobs with lenient `from_hex`, plus `hex`, `is_null` and `get_uint64`. Also `Uint256.nibble`, `Uint512.trim256` and `uint256_from_hex`. |
| `stratumkit.arith` | `ArithUint256`, unsigned 256-bit integers whose arithmetic wraps around. It provides `from_hex`, `hex`, `bits`, `low64` and `to_float`. Division by zero raises `UintError`. |
| `stratumkit.compact` | `decode_compact` and `encode_compact` for the compact ("bits") target format. `decode_compact` returns a `CompactValue` carrying `value`, `negative` and `overflow`. Also `arith_to_uint256` and `uint256_to_arith`. |
| `stratumkit.connection` | `PoolConnection`, `StratumMode`, `SecureLevel`, `WorkPackage`, `Solution`, `Session`, `ResponsePleas`, `process_error`, `parse_extranonce` and `ExtranonceError` |
| `stratumkit.messages` | Builders for the JSON requests sent to the pool (`login_request`, `authorize_request`, `hashrate_request`, `solution_request` and others), and `encode_line` |
| `stratumkit.notifications` | Turns `mining.notify` into `WorkPackage` objects and applies `mining.set`, `mining.set_difficulty` and `mining.set_extranonce` to a `Session` |
| `stratumkit.protocol` | `StratumProtocol`, the protocol state machine. It does no I/O of its own. |
| `stratumkit.client` | `EthStratumClient`, an asyncio TCP and TLS client built on `StratumProtocol` |

## Compact targets

```python
from stratumkit.compact import decode_compact, encode_compact

decoded = decode_compact(0x1D00FFFF)
print(decoded.value.hex())                       # 64 hex digits
print(hex(encode_compact(decoded.value, False)))  # 0x1d00ffff
```

## Driving the protocol without sockets

`StratumProtocol` does no I/O of its own, so you can test it directly or
embed it in any event loop:

1. Call `connection_made()` once the socket is up. This queues the login request.
2. Pass each chunk of received bytes to `feed()`. It returns the new `WorkPackage` if the chunk carried a job, and calls `on_work`.
3. Send whatever `drain_outgoing()` returns.
4. Call `check_timeouts(now)` about once a second, with `now` taken from the same clock as the protocol's (`time.monotonic` by default).
5. Once `disconnect_requested` is true, close the socket. `disconnect_reason` tells you why.

```python
from stratumkit.connection import PoolConnection
from stratumkit.protocol import StratumProtocol

password = "password"
conn = PoolConnection(host="pool.example.com", port=4444, user="wallet", password=password)
proto = StratumProtocol(conn, work_timeout=180, response_timeout=2)

proto.connection_made()
hello = proto.drain_outgoing()   # mining.hello, since autodetection starts at EthereumStratum/2.0.0

proto.feed(
    b'{"id":1,"result":{"proto":"EthereumStratum/2.0.0","encoding":"plain",'
    b'"resume":1,"timeout":30,"maxerrors":5,"node":"node"}}\n'
)
subscribe = proto.drain_outgoing()   # mining.subscribe
```

Use `submit_solution(solution)` and `submit_hashrate(rate, worker_id)` to
queue outgoing work:

- `submit_solution` returns `False` if the worker is not authorized.
- `submit_hashrate` returns `False` if the protocol is not connected.

## Asyncio client

```python
import asyncio
from stratumkit.client import EthStratumClient
from stratumkit.connection import PoolConnection

async def main():
    password = "password"
    conn = PoolConnection(host="pool.example.com", port=4444, user="wallet", password=password)
    client = EthStratumClient(
        conn,
        work_timeout=180,
        response_timeout=2,
        on_work=lambda work: print("job", work.job),
    )
    await client.connect()
    ...
    await client.disconnect()

asyncio.run(main())
```

`connect()` resolves the host and tries each of its addresses in turn. Each
attempt must finish within `response_timeout` seconds. Once a socket is up,
the client reads from it and runs the periodic checks every
`workloop_interval` seconds. The checks cover these cases:

- A request gets no answer within `response_timeout` seconds.
- No new job arrives within `work_timeout` seconds.

If either happens, the client disconnects.

`EthStratumClient` takes these keyword callbacks:

| Callback | Arguments |
| --- | --- |
| `on_connected` | none |
| `on_disconnected` | none |
| `on_work` | `(work_package)` |
| `on_solution_accepted` | `(delay_ms, miner_index, stale)` |
| `on_solution_rejected` | `(delay_ms, miner_index)` |

Other members:

- `is_connected()` and `is_pending()` report the connection state.
- `current_work` and `current_header` expose the last job.
- `submit_solution()` and `submit_hashrate()` send work to the pool straight away.

## TLS

Set `sec_level` on the connection to turn on TLS:

- `SecureLevel.TLS` uses TLS.
- `SecureLevel.TLS12` pins the connection to TLS 1.2.

Certificates are checked against the system's default trust store. If the
`SSL_CERT_FILE` environment variable names a file, the certificates in it are
loaded as well. Setting `SSL_NOVERIFY` turns off verification entirely. Only
do that if you accept the risk.

A failed TLS handshake marks the connection unrecoverable, because the
certificate is tied to the host name rather than to any one address.

## What it does not do

stratumkit only talks to the pool. It has these limits:

- It does not compute hashes.
- It does not check solutions locally before sending them.
- It does not manage miners or devices.
- It has no command-line program.
- It does not keep a list of pools or fail over between them. Each `EthStratumClient` serves the one `PoolConnection` it was given.