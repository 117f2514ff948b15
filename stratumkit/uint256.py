"""Fixed-width opaque byte blobs.

Bytes are stored least significant first; the hex form is most significant first.
"""

from __future__ import annotations

from itertools import takewhile
from typing import ClassVar

_SPACES = " \t\n\v\f\r"
_HEX_CHARS = frozenset("0123456789abcdefABCDEF")


def _leading_hex_digits(text: str) -> str:
    """Return the hex digits of ``text`` after blanks and an optional 0x prefix."""
    text = text.lstrip(_SPACES)
    if text[:1] == "0" and text[1:2] in ("x", "X"):
        text = text[2:]
    return "".join(takewhile(_HEX_CHARS.__contains__, text))


class BaseBlob:
    """An opaque blob of ``WIDTH`` bytes with no integer operations."""

    WIDTH: ClassVar[int] = 0
    __slots__ = ("_data",)

    def __init__(self, data: bytes | bytearray | None = None) -> None:
        if self.WIDTH <= 0:
            raise TypeError(f"{type(self).__name__} has no fixed width")
        if data is None:
            data = bytes(self.WIDTH)
        data = bytes(data)
        if len(data) != self.WIDTH:
            raise ValueError(
                f"{type(self).__name__} needs {self.WIDTH} bytes, got {len(data)}"
            )
        self._data = data

    @classmethod
    def from_hex(cls, text: str) -> BaseBlob:
        """Parse a hex string leniently.

        Leading blanks and a ``0x`` prefix are skipped, parsing stops at the
        first non-hex character, and only the lowest ``WIDTH`` bytes are kept.
        """
        digits = _leading_hex_digits(text)
        if len(digits) % 2:
            digits = "0" + digits
        digits = digits[-2 * cls.WIDTH:] if digits else ""
        raw = bytes.fromhex(digits)[::-1]
        return cls(raw.ljust(cls.WIDTH, b"\0"))

    @classmethod
    def from_bytes(cls, data: bytes | bytearray) -> BaseBlob:
        """Build a blob from exactly ``WIDTH`` bytes in storage order."""
        return cls(data)

    @property
    def data(self) -> bytes:
        """The raw bytes, least significant first."""
        return self._data

    def hex(self) -> str:
        """Return the lower-case hex form, most significant byte first."""
        return self._data[::-1].hex()

    def is_null(self) -> bool:
        """Return True if every byte is zero."""
        return not any(self._data)

    def get_uint64(self, pos: int) -> int:
        """Return the little-endian 64-bit word at word index ``pos``."""
        if pos < 0:
            raise IndexError("word index out of range")
        chunk = self._data[pos * 8:pos * 8 + 8]
        if len(chunk) != 8:
            raise IndexError("word index out of range")
        return int.from_bytes(chunk, "little")

    def __bytes__(self) -> bytes:
        return self._data

    def __len__(self) -> int:
        return self.WIDTH

    def __iter__(self):
        return iter(self._data)

    def __eq__(self, other: object) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        return self._data == other._data

    def __lt__(self, other: BaseBlob) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        return self._data < other._data

    def __hash__(self) -> int:
        return hash((type(self).__name__, self._data))

    def __str__(self) -> str:
        return self.hex()

    def __repr__(self) -> str:
        return f"{type(self).__name__}('{self.hex()}')"


class Uint160(BaseBlob):
    """A 160-bit opaque blob."""

    WIDTH = 20
    __slots__ = ()


class Uint256(BaseBlob):
    """A 256-bit opaque blob."""

    WIDTH = 32
    __slots__ = ()

    def nibble(self, index: int) -> int:
        """Return the nibble at ``index`` counted from the most significant end."""
        if not 0 <= index < 64:
            raise IndexError("nibble index out of range")
        index = 63 - index
        byte = self._data[index // 2]
        return byte >> 4 if index % 2 == 1 else byte & 0x0F


class Uint512(BaseBlob):
    """A 512-bit opaque blob."""

    WIDTH = 64
    __slots__ = ()

    def trim256(self) -> Uint256:
        """Return the low 256 bits as a :class:`Uint256`."""
        return Uint256(self._data[:32])


def uint256_from_hex(text: str) -> Uint256:
    """Parse ``text`` as a :class:`Uint256`."""
    return Uint256.from_hex(text)