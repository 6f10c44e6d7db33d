"""
c32check encoding for Stacks addresses.

A Stacks address is ``S`` + the c32 digit of the version byte + the c32
encoding of ``hash160 || checksum`` where the checksum is the first four bytes
of ``sha256(sha256(version || hash160))``.
"""

import hashlib
from typing import Tuple

from substack_keeper.core.exceptions import AddressError


C32_ALPHABET = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
HASH160_LENGTH = 20
CHECKSUM_LENGTH = 4


def _normalize(text: str) -> str:
    return text.upper().replace("O", "0").replace("L", "1").replace("I", "1")


def c32_encode(data: bytes) -> str:
    """Encode bytes as c32, keeping one ``0`` per leading zero byte."""
    number = int.from_bytes(data, "big")
    digits = []
    while number > 0:
        number, remainder = divmod(number, 32)
        digits.append(C32_ALPHABET[remainder])

    leading_zeros = len(data) - len(data.lstrip(b"\x00"))
    return "0" * leading_zeros + "".join(reversed(digits))


def c32_decode(text: str) -> bytes:
    """Decode a c32 string produced by :func:`c32_encode`."""
    text = _normalize(text)
    number = 0
    for char in text:
        index = C32_ALPHABET.find(char)
        if index < 0:
            raise ValueError(f"Invalid c32 character: {char!r}")
        number = number * 32 + index

    leading_zeros = len(text) - len(text.lstrip("0"))
    body = number.to_bytes((number.bit_length() + 7) // 8, "big") if number else b""
    return b"\x00" * leading_zeros + body


def _checksum(version: int, payload: bytes) -> bytes:
    data = bytes([version]) + payload
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()[:CHECKSUM_LENGTH]


def c32_address(version: int, hash160: bytes) -> str:
    """Build a c32check address from a version byte and a 20-byte hash."""
    if not 0 <= version < 32:
        raise ValueError(f"Address version out of range: {version}")
    if len(hash160) != HASH160_LENGTH:
        raise ValueError("hash160 must be 20 bytes")
    return "S" + C32_ALPHABET[version] + c32_encode(hash160 + _checksum(version, hash160))


def c32_address_decode(address: str) -> Tuple[int, bytes]:
    """
    Decode a c32check address.

    Returns:
        (version, hash160)

    Raises:
        AddressError: malformed address or checksum mismatch
    """
    if len(address) < 5 or address[0] not in "Ss":
        raise AddressError(address, "must start with 'S'")

    normalized = _normalize(address[1:])
    version = C32_ALPHABET.find(normalized[0])
    if version < 0:
        raise AddressError(address, "invalid version character")

    try:
        data = c32_decode(normalized[1:])
    except ValueError as e:
        raise AddressError(address, str(e))

    expected = HASH160_LENGTH + CHECKSUM_LENGTH
    if len(data) > expected:
        raise AddressError(address, "payload too long")
    data = data.rjust(expected, b"\x00")

    hash160, checksum = data[:HASH160_LENGTH], data[HASH160_LENGTH:]
    if _checksum(version, hash160) != checksum:
        raise AddressError(address, "checksum mismatch")
    return version, hash160


def hash160(data: bytes) -> bytes:
    """RIPEMD160(SHA256(data))."""
    return hashlib.new("ripemd160", hashlib.sha256(data).digest()).digest()
