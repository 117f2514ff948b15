import pytest

from stratumkit.arith import ArithUint256
from stratumkit.compact import (
    CompactValue,
    arith_to_uint256,
    decode_compact,
    encode_compact,
    uint256_to_arith,
)
from stratumkit.uint256 import Uint256


@pytest.mark.parametrize(
    "number, compact",
    [(0x1234560000, 0x05123456), (0xC0DE000000, 0x0600C0DE)],
)
def test_documented_examples_encode(number, compact):
    assert encode_compact(ArithUint256(number)) == compact


@pytest.mark.parametrize(
    "number, compact",
    [(0x1234560000, 0x05123456), (0xC0DE000000, 0x0600C0DE)],
)
def test_documented_examples_decode(number, compact):
    result = decode_compact(compact)
    assert result.value == number
    assert result.negative is False
    assert result.overflow is False


def test_decode_returns_compact_value():
    result = decode_compact(0x05123456)
    assert result == CompactValue(ArithUint256(0x1234560000), False, False)


def test_zero_round_trip():
    assert encode_compact(0) == 0
    assert decode_compact(0).value == 0


def test_sign_bit_sets_negative():
    result = decode_compact(0x05123456 | 0x00800000)
    assert result.negative is True
    assert encode_compact(result.value, True) == 0x05123456 | 0x00800000


def test_negative_flag_ignored_for_zero_mantissa():
    assert decode_compact(0x05800000).negative is False
    assert encode_compact(0, True) == 0


def test_huge_exponent_overflows():
    assert decode_compact(0xFF123456).overflow is True


@pytest.mark.parametrize("value", [1, 0x7F, 0x80, 0xFFFF, 0x123456, 2**200 + 12345, 2**256 - 1])
def test_decode_of_encode_never_exceeds(value):
    restored = decode_compact(encode_compact(value)).value
    assert restored <= value
    assert restored.bits() == ArithUint256(value).bits()


@pytest.mark.parametrize("value", [1, 0x7F, 0x80, 0xFF00, 0x123456 << 40])
def test_short_mantissas_round_trip_exactly(value):
    assert decode_compact(encode_compact(value)).value == value


def test_encoded_mantissa_never_has_sign_bit():
    for value in (0x80, 0x8000, 0x800000, 2**255):
        assert encode_compact(value) & 0x00800000 == 0


@pytest.mark.parametrize("bad", [-1, 2**32])
def test_decode_rejects_out_of_range(bad):
    with pytest.raises(ValueError):
        decode_compact(bad)


@pytest.mark.parametrize("value", [0, 1, 0xDEADBEEF, 2**256 - 1, 2**128 + 7])
def test_arith_blob_round_trip(value):
    blob = arith_to_uint256(ArithUint256(value))
    assert blob.hex() == ArithUint256(value).hex()
    assert uint256_to_arith(blob) == value


def test_blob_to_arith_keeps_hex():
    blob = Uint256.from_hex("0x0112e0be826d694b2e62d01511f12a6061fbaec8bc02357593e70e52ba")
    assert uint256_to_arith(blob).hex() == blob.hex()