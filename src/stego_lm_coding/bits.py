"""
Bit vector helpers.

Bit vectors are lists of ints (0 or 1), most significant bit first. Lengths do
not have to be multiples of 8 since Huffman codes are not byte-aligned.
"""

from typing import List, Sequence

from .errors import BitLengthError

BITS_PER_BYTE = 8


def bits_from_bytes(data: bytes) -> List[int]:
    """Expand every byte into 8 bits, MSB first."""
    bits: List[int] = []
    for byte in data:
        bits.extend(int(bit) for bit in format(byte, f"0{BITS_PER_BYTE}b"))
    return bits


def bytes_from_bits(bits: Sequence[int]) -> bytes:
    """Pack a bit vector into bytes.

    Raises:
        BitLengthError: If the length of ``bits`` is not a multiple of 8.
    """
    if len(bits) % BITS_PER_BYTE != 0:
        raise BitLengthError(
            f"Cannot pack {len(bits)} bits into bytes: length must be a multiple of {BITS_PER_BYTE}"
        )
    return bytes(
        int_from_bits(bits[i : i + BITS_PER_BYTE])
        for i in range(0, len(bits), BITS_PER_BYTE)
    )


def bytes_from_bits_truncated(bits: Sequence[int]) -> bytes:
    """Pack the whole bytes of a bit vector, dropping a trailing partial byte."""
    return bytes_from_bits(bits[: len(bits) - len(bits) % BITS_PER_BYTE])


def bits_from_bytes_strip_padding(data: bytes) -> List[int]:
    """Inverse of :func:`bytes_with_padding_from_bits`.

    The first byte holds the number of 0 bits prepended to the payload.
    """
    if not data:
        return []
    padding = data[0]
    if padding >= BITS_PER_BYTE:
        raise BitLengthError(f"Invalid padding length {padding}, expected 0-7")
    bits = bits_from_bytes(data[1:])
    if padding > len(bits):
        raise BitLengthError(
            f"Padding length {padding} exceeds the {len(bits)} bits that follow it"
        )
    return bits[padding:]


def bytes_with_padding_from_bits(bits: Sequence[int]) -> bytes:
    """Pack an arbitrary-length bit vector, recording the padding in a header byte.

    ``P = (8 - len(bits) % 8) % 8`` zero bits are prepended so the payload fills
    whole bytes, and a byte holding ``P`` is prepended to the result.
    """
    padding = (BITS_PER_BYTE - len(bits) % BITS_PER_BYTE) % BITS_PER_BYTE
    return bytes([padding]) + bytes_from_bits([0] * padding + list(bits))


def bits_from_int(value: int, width: int) -> List[int]:
    """Render a non-negative integer as exactly ``width`` bits, MSB first."""
    if width == 0:
        return []
    if value < 0 or value >= 1 << width:
        raise BitLengthError(f"{value} cannot be represented with {width} bits")
    return [int(bit) for bit in format(value, f"0{width}b")]


def int_from_bits(bits: Sequence[int]) -> int:
    """Interpret a bit vector as an unsigned integer, MSB first. Empty input is 0."""
    value = 0
    for bit in bits:
        value = (value << 1) | bit
    return value


def num_same_from_beg(bits1: Sequence[int], bits2: Sequence[int]) -> int:
    """Count the leading bits two equally long vectors have in common.

    Raises:
        BitLengthError: If the vectors differ in length.
    """
    if len(bits1) != len(bits2):
        raise BitLengthError(
            f"The bit vectors are of different length ({len(bits1)} != {len(bits2)})"
        )
    count = 0
    for b1, b2 in zip(bits1, bits2):
        if b1 != b2:
            break
        count += 1
    return count


def bit_string(bits: Sequence[int]) -> str:
    return "".join(map(str, bits))
