"""The compact ("nBits") encoding of 256-bit targets and blob conversions.

A compact value is a 32-bit number laid out like a small float:
the top 8 bits are a base-256 exponent, bit 0x00800000 is a sign flag
and the low 23 bits are the mantissa.
"""

from __future__ import annotations

from dataclasses import dataclass

from .arith import ArithUint256
from .uint256 import Uint256

_SIGN_BIT = 0x00800000
_MANTISSA_MASK = 0x007FFFFF
_UINT32_MASK = 0xFFFFFFFF


@dataclass(frozen=True)
class CompactValue:
    """The result of decoding a compact number."""

    value: ArithUint256
    negative: bool = False
    overflow: bool = False


def decode_compact(compact: int) -> CompactValue:
    """Expand a 32-bit compact number into a 256-bit value with its flags."""
    if not 0 <= compact <= _UINT32_MASK:
        raise ValueError(f"compact value out of 32-bit range: {compact!r}")
    size = compact >> 24
    word = compact & _MANTISSA_MASK
    if size <= 3:
        word >>= 8 * (3 - size)
        value = ArithUint256(word)
    else:
        value = ArithUint256(word) << (8 * (size - 3))
    negative = word != 0 and bool(compact & _SIGN_BIT)
    overflow = word != 0 and (
        size > 34 or (word > 0xFF and size > 33) or (word > 0xFFFF and size > 32)
    )
    return CompactValue(value=value, negative=negative, overflow=overflow)


def encode_compact(value: ArithUint256 | int, negative: bool = False) -> int:
    """Pack a 256-bit value into its 32-bit compact form."""
    number = ArithUint256(value)
    size = (number.bits() + 7) // 8
    if size <= 3:
        compact = (number.low64() << (8 * (3 - size))) & _UINT32_MASK
    else:
        compact = (number >> (8 * (size - 3))).low64() & _UINT32_MASK
    # The sign bit is taken: shift the mantissa down and grow the exponent.
    if compact & _SIGN_BIT:
        compact >>= 8
        size += 1
    compact |= size << 24
    if negative and compact & _MANTISSA_MASK:
        compact |= _SIGN_BIT
    return compact


def arith_to_uint256(value: ArithUint256 | int) -> Uint256:
    """Convert a 256-bit integer into an opaque blob."""
    return Uint256(int(ArithUint256(value)).to_bytes(Uint256.WIDTH, "little"))


def uint256_to_arith(blob: Uint256) -> ArithUint256:
    """Convert an opaque 256-bit blob into an integer."""
    return ArithUint256(int.from_bytes(blob.data, "little"))