"""Connection settings, session state and helpers shared by the stratum client."""

from __future__ import annotations

import re
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Callable, Deque, Mapping, Optional, Tuple

from .uint256 import Uint256


class StratumMode(IntEnum):
    """Stratum flavours, in the order autodetection walks down through them."""

    STRATUM = 0
    ETHPROXY = 1
    ETHEREUMSTRATUM = 2
    ETHEREUMSTRATUM2 = 3
    AUTODETECT = 999


class SecureLevel(Enum):
    """Transport security of a pool connection."""

    NONE = "none"
    TLS = "tls"
    TLS12 = "tls12"


class ExtranonceError(ValueError):
    """Raised when a pool hands out an unusable extranonce."""


@dataclass
class PoolConnection:
    """Where and how to reach a pool, plus what has been learnt about it."""

    host: str
    port: int
    user: str = ""
    password: str = ""
    path: str = ""
    workername: str = ""
    version: int = StratumMode.AUTODETECT
    sec_level: SecureLevel = SecureLevel.NONE
    stratum_mode: StratumMode = StratumMode.AUTODETECT
    stratum_mode_confirmed: bool = False
    unrecoverable: bool = False
    responds: bool = False
    duration: float = 0.0

    def user_dot_worker(self) -> str:
        """Return the login name, with ``.workername`` appended when set."""
        if self.workername:
            return f"{self.user}.{self.workername}"
        return self.user

    def set_stratum_mode(self, mode: int, confirmed: bool = False) -> None:
        """Select a stratum flavour and whether it is known to work."""
        self.stratum_mode = StratumMode(mode)
        self.stratum_mode_confirmed = bool(confirmed)

    def mark_unrecoverable(self) -> None:
        """Flag the connection as unusable; no retries should follow."""
        self.unrecoverable = True


@dataclass
class WorkPackage:
    """A job handed out by the pool."""

    job: str = ""
    seed: Uint256 = field(default_factory=Uint256)
    header: Uint256 = field(default_factory=Uint256)
    boundary: Uint256 = field(default_factory=Uint256)
    block_boundary: Uint256 = field(default_factory=Uint256)
    block: Optional[int] = None
    epoch: Optional[int] = None
    algo: str = "ethash"
    start_nonce: int = 0
    ex_size_bytes: int = 0

    def __bool__(self) -> bool:
        return not self.header.is_null()


@dataclass
class Solution:
    """A nonce found for a job by one of the miners."""

    nonce: int
    mix_hash: Uint256
    work: WorkPackage
    midx: int = 0


@dataclass
class Session:
    """State of one logged-in session with a pool."""

    subscribed: bool = False
    authorized: bool = False
    extra_nonce: int = 0
    extra_nonce_size_bytes: int = 0
    next_work_boundary: Uint256 = field(default_factory=Uint256)
    session_id: str = ""
    worker_id: str = ""
    timeout: int = 30
    epoch: int = 0
    algo: str = "ethash"
    first_mining_set: bool = False
    started: float = field(default_factory=time.monotonic)
    last_tx_stamp: float = field(default_factory=time.monotonic)


class ResponsePleas:
    """Timestamps of requests still waiting for a reply from the pool.

    Delays are reported in whole milliseconds, measured from the oldest
    pending request.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._times: Deque[float] = deque()
        self._count = 0
        self._older = clock()

    def __len__(self) -> int:
        return self._count

    def enqueue(self) -> None:
        """Record that a request has just been sent."""
        now = self._clock()
        if self._count == 0:
            self._older = now
        self._count += 1
        self._times.append(now)

    def dequeue(self) -> int:
        """Record a reply; return the delay in milliseconds, or 0 if none was pending."""
        delay_ms = int((self._clock() - self._older) * 1000)
        if self._times:
            self._older = self._times.popleft()
        if self._count > 0:
            self._count -= 1
            return delay_ms
        return 0

    def clear(self) -> None:
        """Forget every pending request."""
        self._count = 0
        self._times.clear()
        self._older = self._clock()

    def oldest(self) -> float:
        """Return the clock reading the current delay is measured from."""
        return self._older


def _json_to_string(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        text = format(value, ".17g")
        if not any(ch in text for ch in ".eEn"):
            text += ".0"
        return text
    raise TypeError(f"value of type {type(value).__name__} is not convertible to string")


def process_error(response: Mapping[str, Any]) -> str:
    """Render the ``error`` member of a pool reply as text."""
    error = response.get("error")
    if error is None:
        return "Unknown error"
    if isinstance(error, list):
        return "".join(_json_to_string(item) + " " for item in error)
    if isinstance(error, dict):
        return "".join(f"{key}:{_json_to_string(item)} " for key, item in error.items())
    return _json_to_string(error)


_HEX_RE = re.compile(r"(0x)?([A-Fa-f0-9]{2,})")


def parse_extranonce(enonce: str) -> Tuple[int, int]:
    """Parse an extranonce into ``(start_nonce, hex_length)``.

    The hex digits are left-aligned in a 64-bit nonce. An even number of
    hex digits, at most eight, is required.
    """
    if not enonce:
        raise ExtranonceError("Empty hex value")
    match = _HEX_RE.fullmatch(enonce)
    if match is None:
        raise ExtranonceError(f"Invalid hex value {enonce}")
    hex_part = match.group(2)
    if len(hex_part) % 2:
        raise ExtranonceError(f"Odd number of hex chars {enonce}")
    if len(hex_part) > 8:
        raise ExtranonceError(f"Too wide hex value {enonce}")
    return int(hex_part.ljust(16, "0"), 16), len(hex_part)