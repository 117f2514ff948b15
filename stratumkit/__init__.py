"""Ethereum stratum pool client: blobs and 256-bit arithmetic, compact targets, message builders, a protocol state machine and an asyncio client."""

__version__ = "0.1.0"
__all__ = [
    "uint256",
    "arith",
    "compact",
    "connection",
    "messages",
    "notifications",
    "protocol",
    "client",
]