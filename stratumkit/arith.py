"""256-bit unsigned integers with wrap-around arithmetic."""

from __future__ import annotations

from functools import total_ordering
from typing import Iterator, Union

from .uint256 import Uint256

_BITS = 256
_MASK = (1 << _BITS) - 1
_LIMB_BITS = 32
_LIMB_MASK = (1 << _LIMB_BITS) - 1
_LIMBS = _BITS // _LIMB_BITS


class UintError(ArithmeticError):
    """Raised on invalid big-integer arithmetic such as division by zero."""


Operand = Union["ArithUint256", int]


@total_ordering
class ArithUint256:
    """An unsigned 256-bit integer; every operation wraps modulo 2**256."""

    SIZE = _BITS // 8
    __slots__ = ("_value",)

    def __init__(self, value: Operand = 0) -> None:
        if isinstance(value, ArithUint256):
            self._value = value._value
        elif isinstance(value, int) and not isinstance(value, bool):
            self._value = value & _MASK
        else:
            raise TypeError(f"cannot build ArithUint256 from {type(value).__name__}")

    @classmethod
    def from_hex(cls, text: str) -> ArithUint256:
        """Parse hex leniently, with the same rules as :meth:`Uint256.from_hex`."""
        return cls(int.from_bytes(Uint256.from_hex(text).data, "little"))

    def hex(self) -> str:
        """Return the value as 64 lower-case hex digits."""
        return format(self._value, "064x")

    def bits(self) -> int:
        """Return the position of the highest set bit plus one, or 0."""
        return self._value.bit_length()

    def low64(self) -> int:
        """Return the lowest 64 bits."""
        return self._value & 0xFFFFFFFFFFFFFFFF

    def _limbs(self) -> Iterator[int]:
        for i in range(_LIMBS):
            yield (self._value >> (_LIMB_BITS * i)) & _LIMB_MASK

    def to_float(self) -> float:
        """Return an approximate float value, summed limb by limb."""
        result = 0.0
        factor = 1.0
        for limb in self._limbs():
            result += factor * limb
            factor *= 4294967296.0
        return result

    @staticmethod
    def _coerce(other: object) -> int | None:
        if isinstance(other, ArithUint256):
            return other._value
        if isinstance(other, int) and not isinstance(other, bool):
            return other & _MASK
        return None

    def __int__(self) -> int:
        return self._value

    def __index__(self) -> int:
        return self._value

    def __bool__(self) -> bool:
        return self._value != 0

    def __hash__(self) -> int:
        return hash(self._value)

    def __eq__(self, other: object) -> bool:
        value = self._coerce(other)
        if value is None:
            return NotImplemented
        return self._value == value

    def __lt__(self, other: Operand) -> bool:
        value = self._coerce(other)
        if value is None:
            return NotImplemented
        return self._value < value

    def __add__(self, other: Operand) -> ArithUint256:
        value = self._coerce(other)
        if value is None:
            return NotImplemented
        return ArithUint256(self._value + value)

    __radd__ = __add__

    def __sub__(self, other: Operand) -> ArithUint256:
        value = self._coerce(other)
        if value is None:
            return NotImplemented
        return ArithUint256(self._value - value)

    def __rsub__(self, other: int) -> ArithUint256:
        value = self._coerce(other)
        if value is None:
            return NotImplemented
        return ArithUint256(value - self._value)

    def __mul__(self, other: Operand) -> ArithUint256:
        value = self._coerce(other)
        if value is None:
            return NotImplemented
        return ArithUint256(self._value * value)

    __rmul__ = __mul__

    def __floordiv__(self, other: Operand) -> ArithUint256:
        value = self._coerce(other)
        if value is None:
            return NotImplemented
        if value == 0:
            raise UintError("Division by zero")
        return ArithUint256(self._value // value)

    def __rfloordiv__(self, other: int) -> ArithUint256:
        value = self._coerce(other)
        if value is None:
            return NotImplemented
        if self._value == 0:
            raise UintError("Division by zero")
        return ArithUint256(value // self._value)

    def __and__(self, other: Operand) -> ArithUint256:
        value = self._coerce(other)
        if value is None:
            return NotImplemented
        return ArithUint256(self._value & value)

    __rand__ = __and__

    def __or__(self, other: Operand) -> ArithUint256:
        value = self._coerce(other)
        if value is None:
            return NotImplemented
        return ArithUint256(self._value | value)

    __ror__ = __or__

    def __xor__(self, other: Operand) -> ArithUint256:
        value = self._coerce(other)
        if value is None:
            return NotImplemented
        return ArithUint256(self._value ^ value)

    __rxor__ = __xor__

    def __lshift__(self, shift: int) -> ArithUint256:
        if shift < 0:
            raise ValueError("negative shift count")
        if shift >= _BITS:
            return ArithUint256(0)
        return ArithUint256(self._value << shift)

    def __rshift__(self, shift: int) -> ArithUint256:
        if shift < 0:
            raise ValueError("negative shift count")
        return ArithUint256(self._value >> shift)

    def __invert__(self) -> ArithUint256:
        return ArithUint256(~self._value)

    def __neg__(self) -> ArithUint256:
        return ArithUint256(-self._value)

    def __str__(self) -> str:
        return self.hex()

    def __repr__(self) -> str:
        return f"ArithUint256(0x{self.hex()})"