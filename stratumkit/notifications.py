"""Interpretation of job and session notifications pushed by a stratum pool.

Job notifications become :class:`WorkPackage` objects; session notifications
update a :class:`Session` in place.
"""

from __future__ import annotations

import logging
from fractions import Fraction
from itertools import takewhile
from typing import Any, Mapping, Optional, Sequence, Tuple

from .compact import arith_to_uint256, decode_compact
from .connection import (
    Session,
    StratumMode,
    WorkPackage,
    _json_to_string,
    parse_extranonce,
)
from .uint256 import Uint256

log = logging.getLogger(__name__)

_SPACES = " \t\n\v\f\r"
_U32 = 0xFFFFFFFF
_U64 = 0xFFFFFFFFFFFFFFFF
_U256 = (1 << 256) - 1
_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"
_MIN_DIFFICULTY = 0.0001
# Share target of difficulty 1 for ethash-style pools.
_DIFF1_TARGET = 0x00000000FFFF0000000000000000000000000000000000000000000000000000


def _item(params: Sequence[Any], index: int, default: Any = "") -> Any:
    return params[index] if index < len(params) else default


def _item_text(params: Sequence[Any], index: int) -> str:
    return _json_to_string(_item(params, index))


def _parse_prefix(text: str, base: int) -> Tuple[bool, int]:
    """Parse the leading integer of ``text`` like the C ``strto*`` family.

    Returns ``(negative, magnitude)`` and raises ValueError if no digit is found.
    ``base`` 0 picks the base from the prefix (0x: 16, 0: 8, else 10).
    """
    rest = text.lstrip(_SPACES)
    negative = False
    if rest and rest[0] in "+-":
        negative = rest[0] == "-"
        rest = rest[1:]
    has_hex_prefix = (
        rest[:2].lower() == "0x" and len(rest) > 2 and rest[2] in _DIGITS[:16] + "ABCDEF"
    )
    if base in (0, 16) and has_hex_prefix:
        rest = rest[2:]
        base = 16
    elif base == 0:
        base = 8 if rest[:1] == "0" else 10
    allowed = set(_DIGITS[:base]) | set(_DIGITS[:base].upper())
    digits = "".join(takewhile(allowed.__contains__, rest))
    if not digits:
        raise ValueError(f"no digits in {text!r}")
    return negative, int(digits, base)


def _strtoul(text: str, base: int) -> int:
    """Lenient unsigned parse: 0 when there is no number, saturating on overflow."""
    try:
        negative, value = _parse_prefix(text, base)
    except ValueError:
        return 0
    if value > _U64:
        return _U64
    return (-value) & _U64 if negative else value


def _stoul(text: str, base: int) -> int:
    """Strict unsigned parse of a leading number; raises ValueError on failure."""
    negative, value = _parse_prefix(text, base)
    if value > _U64:
        raise ValueError(f"value out of range: {text!r}")
    return (-value) & _U64 if negative else value


def _stoi(text: str, base: int) -> int:
    """Strict signed 32-bit parse of a leading number; raises ValueError on failure."""
    negative, value = _parse_prefix(text, base)
    value = -value if negative else value
    if not -(1 << 31) <= value < (1 << 31):
        raise ValueError(f"value out of range: {text!r}")
    return value


def _as_int(value: Any) -> int:
    """Read a JSON value as an integer; missing or empty values count as 0."""
    if value is None:
        return 0
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        return int(value) if value.strip(_SPACES) else 0
    raise TypeError(f"value of type {type(value).__name__} is not an integer")


def _as_float(value: Any) -> float:
    """Read a JSON value as a number."""
    if value is None:
        return 0.0
    if isinstance(value, (bool, int, float)):
        return float(value)
    raise ValueError(f"value {value!r} is not convertible to a number")


def _padded_hash(text: str) -> Uint256:
    return Uint256.from_hex("0x" + text.rjust(64, "0"))


def _fix_share_target(target: str) -> str:
    """Left-pad a short ``0x``-prefixed share target to 64 hex digits."""
    if len(target) < 2:
        raise ValueError(f"share target too short: {target!r}")
    if len(target) < 66:
        target = "0x" + "0" * (66 - len(target)) + target[2:]
    return target


def _target_from_difficulty(difficulty: float) -> Uint256:
    target = int(Fraction(_DIFF1_TARGET) / Fraction(difficulty))
    return arith_to_uint256(min(target, _U256))


def _set_extranonce(session: Session, enonce: str) -> None:
    session.extra_nonce, session.extra_nonce_size_bytes = parse_extranonce(enonce)
    log.info("Extranonce set to %s", enonce)


def job_from_stratum_notify(
    params: Any, session: Session, mode: StratumMode
) -> Optional[WorkPackage]:
    """Build a job from a ``mining.notify`` in Stratum or Eth-Proxy flavour.

    In Eth-Proxy mode ``params`` is the ``result`` array of the pool message,
    where the header hash comes first; otherwise the header follows the job id.
    EthereumStratum flavours are handed to their own parsers. Returns None
    when ``params`` is not a non-empty list.
    """
    mode = StratumMode(mode)
    if mode is StratumMode.ETHEREUMSTRATUM:
        return job_from_ethstratum1_notify(params, session)
    if mode is StratumMode.ETHEREUMSTRATUM2:
        return job_from_ethstratum2_notify(params, session)
    if not isinstance(params, list) or not params:
        return None

    index = 0 if mode is StratumMode.ETHPROXY else 1
    header = _item_text(params, index)
    seed = _item_text(params, index + 1)
    share_target = _item_text(params, index + 2)
    height = _as_int(_item(params, index + 4))
    bits = _strtoul(_item_text(params, index + 5), 16) & _U32

    block_target = arith_to_uint256(decode_compact(bits).value)
    return WorkPackage(
        job=_item_text(params, 0),
        seed=Uint256.from_hex(seed),
        header=Uint256.from_hex(header),
        boundary=Uint256.from_hex(_fix_share_target(share_target)),
        block_boundary=block_target,
        block=height,
        start_nonce=session.extra_nonce,
        ex_size_bytes=session.extra_nonce_size_bytes,
    )


def job_from_ethstratum1_notify(params: Any, session: Session) -> Optional[WorkPackage]:
    """Build a job from an EthereumStratum/1.0.0 ``mining.notify``.

    Parameters are ``[job, seed, header, height]``; the boundary comes from the
    session's last difficulty. Returns None when the seed or header is missing.
    """
    if not isinstance(params, list) or not params:
        return None
    seed = _item_text(params, 1)
    header = _item_text(params, 2)
    height = _item_text(params, 3)
    if not header or not seed:
        return None
    return WorkPackage(
        job=_item_text(params, 0),
        seed=Uint256.from_hex(seed),
        header=Uint256.from_hex(header),
        boundary=session.next_work_boundary,
        block=_strtoul(height, 0),
        start_nonce=session.extra_nonce,
        ex_size_bytes=session.extra_nonce_size_bytes,
    )


def job_from_ethstratum2_notify(params: Any, session: Session) -> WorkPackage:
    """Build a job from an EthereumStratum/2.0.0 ``mining.notify``.

    Parameters are ``[job, hex block, header, clean]``. Raises ValueError if no
    ``mining.set`` has been seen yet or the parameters are malformed.
    """
    if session is None or not session.first_mining_set:
        raise ValueError("Got mining.notify before mining.set message")
    if not isinstance(params, list) or len(params) != 4:
        raise ValueError("Got invalid mining.notify message")
    return WorkPackage(
        job=_item_text(params, 0),
        block=_stoul(_item_text(params, 1), 16),
        header=_padded_hash(_item_text(params, 2)),
        boundary=session.next_work_boundary,
        epoch=session.epoch,
        algo=session.algo,
        start_nonce=session.extra_nonce,
        ex_size_bytes=session.extra_nonce_size_bytes,
    )


def apply_mining_set(session: Session, params: Any) -> None:
    """Apply an EthereumStratum/2.0.0 ``mining.set`` to the session.

    Raises ValueError for malformed parameters and ExtranonceError when the
    extranonce is missing or invalid; other fields are applied before that.
    """
    if not isinstance(params, Mapping) or not params:
        raise ValueError("Got invalid mining.set message")
    session.first_mining_set = True
    timeout = _json_to_string(params.get("timeout", ""))
    epoch = _json_to_string(params.get("epoch", ""))
    target = _json_to_string(params.get("target", ""))

    if timeout:
        session.timeout = _stoi(timeout, 16)
    if epoch:
        session.epoch = _stoul(epoch, 16)
    if target:
        session.next_work_boundary = _padded_hash(target)
    session.algo = _json_to_string(params.get("algo", "ethash"))
    _set_extranonce(session, _json_to_string(params.get("extranonce", "")))


def apply_set_difficulty(session: Session, params: Any) -> None:
    """Apply an EthereumStratum/1.0.0 ``mining.set_difficulty`` to the session.

    The difficulty defaults to 1 and is never taken below 0.0001. Anything
    other than a list is ignored.
    """
    if not isinstance(params, list):
        return
    difficulty = max(_as_float(_item(params, 0, 1)), _MIN_DIFFICULTY)
    session.next_work_boundary = _target_from_difficulty(difficulty)


def apply_set_extranonce(session: Session, params: Any) -> None:
    """Apply a ``mining.set_extranonce``; raises ExtranonceError if it is unusable."""
    if not isinstance(params, list):
        return
    _set_extranonce(session, _item_text(params, 0))