"""
Clarity value model and consensus (de)serialization.

Read-only calls and contract-call payloads exchange values in this format:
a one-byte type id followed by a big-endian body.
"""

import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Dict, List, Tuple, Union

from substack_keeper.core.exceptions import ClarityError, AddressError
from .c32 import c32_address, c32_address_decode


class ClarityType(IntEnum):
    """Clarity wire type ids."""
    INT = 0x00
    UINT = 0x01
    BUFFER = 0x02
    BOOL_TRUE = 0x03
    BOOL_FALSE = 0x04
    PRINCIPAL_STANDARD = 0x05
    PRINCIPAL_CONTRACT = 0x06
    RESPONSE_OK = 0x07
    RESPONSE_ERR = 0x08
    OPTIONAL_NONE = 0x09
    OPTIONAL_SOME = 0x0A
    LIST = 0x0B
    TUPLE = 0x0C
    STRING_ASCII = 0x0D
    STRING_UTF8 = 0x0E


INT128_MIN = -(2 ** 127)
INT128_MAX = 2 ** 127 - 1
UINT128_MAX = 2 ** 128 - 1


@dataclass(frozen=True)
class ClarityValue:
    """A node in a Clarity value tree."""
    type: ClarityType
    value: Any = None

    def serialize(self) -> bytes:
        return serialize(self)

    def to_hex(self) -> str:
        return "0x" + serialize(self).hex()


# --- constructors ---------------------------------------------------------

def int_cv(value: int) -> ClarityValue:
    if not INT128_MIN <= value <= INT128_MAX:
        raise ClarityError(f"int out of range: {value}")
    return ClarityValue(ClarityType.INT, value)


def uint_cv(value: int) -> ClarityValue:
    if not 0 <= value <= UINT128_MAX:
        raise ClarityError(f"uint out of range: {value}")
    return ClarityValue(ClarityType.UINT, value)


def bool_cv(value: bool) -> ClarityValue:
    return ClarityValue(ClarityType.BOOL_TRUE if value else ClarityType.BOOL_FALSE)


def buffer_cv(value: bytes) -> ClarityValue:
    return ClarityValue(ClarityType.BUFFER, bytes(value))


def principal_cv(principal: str) -> ClarityValue:
    """Standard principal for ``ADDR``, contract principal for ``ADDR.name``."""
    address = principal.split(".", 1)[0]
    try:
        c32_address_decode(address)
    except AddressError as e:
        raise ClarityError(e.message, e.details)

    if "." in principal:
        name = principal.split(".", 1)[1]
        if not name or len(name) > 128:
            raise ClarityError(f"Invalid contract name in principal: {principal!r}")
        return ClarityValue(ClarityType.PRINCIPAL_CONTRACT, principal)
    return ClarityValue(ClarityType.PRINCIPAL_STANDARD, principal)


def none_cv() -> ClarityValue:
    return ClarityValue(ClarityType.OPTIONAL_NONE)


def some_cv(value: ClarityValue) -> ClarityValue:
    return ClarityValue(ClarityType.OPTIONAL_SOME, value)


def ok_cv(value: ClarityValue) -> ClarityValue:
    return ClarityValue(ClarityType.RESPONSE_OK, value)


def err_cv(value: ClarityValue) -> ClarityValue:
    return ClarityValue(ClarityType.RESPONSE_ERR, value)


def list_cv(values: List[ClarityValue]) -> ClarityValue:
    return ClarityValue(ClarityType.LIST, list(values))


def tuple_cv(fields: Dict[str, ClarityValue]) -> ClarityValue:
    return ClarityValue(ClarityType.TUPLE, dict(fields))


def string_ascii_cv(value: str) -> ClarityValue:
    try:
        value.encode("ascii")
    except UnicodeEncodeError:
        raise ClarityError("string-ascii value contains non-ascii characters")
    return ClarityValue(ClarityType.STRING_ASCII, value)


def string_utf8_cv(value: str) -> ClarityValue:
    return ClarityValue(ClarityType.STRING_UTF8, value)


# --- serialization --------------------------------------------------------

def _encode_principal_body(address: str) -> bytes:
    version, hash_bytes = c32_address_decode(address)
    return bytes([version]) + hash_bytes


def _encode_name(name: str) -> bytes:
    raw = name.encode("ascii")
    if len(raw) > 128:
        raise ClarityError(f"Name too long: {name!r}")
    return bytes([len(raw)]) + raw


def serialize(cv: ClarityValue) -> bytes:
    """Serialize a Clarity value to its consensus byte form."""
    prefix = bytes([cv.type])
    t = cv.type

    if t == ClarityType.INT:
        return prefix + cv.value.to_bytes(16, "big", signed=True)
    if t == ClarityType.UINT:
        return prefix + cv.value.to_bytes(16, "big", signed=False)
    if t == ClarityType.BUFFER:
        return prefix + struct.pack(">I", len(cv.value)) + cv.value
    if t in (ClarityType.BOOL_TRUE, ClarityType.BOOL_FALSE, ClarityType.OPTIONAL_NONE):
        return prefix
    if t == ClarityType.PRINCIPAL_STANDARD:
        return prefix + _encode_principal_body(cv.value)
    if t == ClarityType.PRINCIPAL_CONTRACT:
        address, name = cv.value.split(".", 1)
        return prefix + _encode_principal_body(address) + _encode_name(name)
    if t in (ClarityType.RESPONSE_OK, ClarityType.RESPONSE_ERR, ClarityType.OPTIONAL_SOME):
        return prefix + serialize(cv.value)
    if t == ClarityType.LIST:
        return prefix + struct.pack(">I", len(cv.value)) + b"".join(serialize(v) for v in cv.value)
    if t == ClarityType.TUPLE:
        body = b"".join(
            _encode_name(key) + serialize(cv.value[key]) for key in sorted(cv.value)
        )
        return prefix + struct.pack(">I", len(cv.value)) + body
    if t == ClarityType.STRING_ASCII:
        raw = cv.value.encode("ascii")
        return prefix + struct.pack(">I", len(raw)) + raw
    if t == ClarityType.STRING_UTF8:
        raw = cv.value.encode("utf-8")
        return prefix + struct.pack(">I", len(raw)) + raw

    raise ClarityError(f"Unsupported Clarity type: {t!r}")


class _Reader:
    """Cursor over a serialized buffer."""

    def __init__(self, data: bytes):
        self.data = data
        self.offset = 0

    def read(self, size: int) -> bytes:
        end = self.offset + size
        if end > len(self.data):
            raise ClarityError(
                "Unexpected end of Clarity value",
                {"offset": self.offset, "wanted": size, "length": len(self.data)}
            )
        chunk = self.data[self.offset:end]
        self.offset = end
        return chunk

    def read_u8(self) -> int:
        return self.read(1)[0]

    def read_u32(self) -> int:
        return struct.unpack(">I", self.read(4))[0]

    def read_name(self) -> str:
        return self.read(self.read_u8()).decode("ascii")

    def read_principal(self) -> str:
        version = self.read_u8()
        return c32_address(version, self.read(20))


def _read_value(reader: _Reader) -> ClarityValue:
    type_id = reader.read_u8()
    try:
        t = ClarityType(type_id)
    except ValueError:
        raise ClarityError(f"Unknown Clarity type id: {type_id:#04x}")

    if t == ClarityType.INT:
        return ClarityValue(t, int.from_bytes(reader.read(16), "big", signed=True))
    if t == ClarityType.UINT:
        return ClarityValue(t, int.from_bytes(reader.read(16), "big", signed=False))
    if t == ClarityType.BUFFER:
        return ClarityValue(t, reader.read(reader.read_u32()))
    if t in (ClarityType.BOOL_TRUE, ClarityType.BOOL_FALSE, ClarityType.OPTIONAL_NONE):
        return ClarityValue(t)
    if t == ClarityType.PRINCIPAL_STANDARD:
        return ClarityValue(t, reader.read_principal())
    if t == ClarityType.PRINCIPAL_CONTRACT:
        address = reader.read_principal()
        return ClarityValue(t, f"{address}.{reader.read_name()}")
    if t in (ClarityType.RESPONSE_OK, ClarityType.RESPONSE_ERR, ClarityType.OPTIONAL_SOME):
        return ClarityValue(t, _read_value(reader))
    if t == ClarityType.LIST:
        count = reader.read_u32()
        return ClarityValue(t, [_read_value(reader) for _ in range(count)])
    if t == ClarityType.TUPLE:
        count = reader.read_u32()
        fields = {}
        for _ in range(count):
            name = reader.read_name()
            fields[name] = _read_value(reader)
        return ClarityValue(t, fields)
    if t == ClarityType.STRING_ASCII:
        return ClarityValue(t, reader.read(reader.read_u32()).decode("ascii"))
    # STRING_UTF8
    return ClarityValue(t, reader.read(reader.read_u32()).decode("utf-8"))


def deserialize(data: Union[bytes, str]) -> ClarityValue:
    """
    Deserialize a Clarity value from bytes or a hex string (``0x`` optional).

    Raises:
        ClarityError: malformed input or trailing bytes
    """
    if isinstance(data, str):
        text = data[2:] if data.startswith("0x") else data
        try:
            data = bytes.fromhex(text)
        except ValueError:
            raise ClarityError("Clarity hex payload is not valid hex")

    reader = _Reader(data)
    try:
        value = _read_value(reader)
    except (UnicodeDecodeError, ValueError) as e:
        raise ClarityError(f"Malformed Clarity value: {e}")
    if reader.offset != len(data):
        raise ClarityError(
            "Trailing bytes after Clarity value",
            {"consumed": reader.offset, "length": len(data)}
        )
    return value


def unwrap(cv: ClarityValue) -> Any:
    """
    Convert a Clarity value tree into Python natives.

    ``ok`` and ``some`` wrappers are stripped, ``none`` becomes ``None`` and
    tuples become dicts keyed by field name. An ``err`` response raises.
    """
    t = cv.type
    if t in (ClarityType.INT, ClarityType.UINT, ClarityType.BUFFER,
             ClarityType.PRINCIPAL_STANDARD, ClarityType.PRINCIPAL_CONTRACT,
             ClarityType.STRING_ASCII, ClarityType.STRING_UTF8):
        return cv.value
    if t == ClarityType.BOOL_TRUE:
        return True
    if t == ClarityType.BOOL_FALSE:
        return False
    if t == ClarityType.OPTIONAL_NONE:
        return None
    if t in (ClarityType.OPTIONAL_SOME, ClarityType.RESPONSE_OK):
        return unwrap(cv.value)
    if t == ClarityType.RESPONSE_ERR:
        raise ClarityError("Contract returned an err response", {"err": unwrap_err(cv.value)})
    if t == ClarityType.LIST:
        return [unwrap(v) for v in cv.value]
    # TUPLE
    return {key: unwrap(v) for key, v in cv.value.items()}


def unwrap_err(cv: ClarityValue) -> Any:
    """Best-effort native form of an err payload, for error details."""
    try:
        return unwrap(cv)
    except ClarityError:
        return repr(cv)


def charge_tuples(charges: List[Tuple[str, int]]) -> ClarityValue:
    """``(list {subscriber: principal, plan-id: uint})`` argument."""
    return list_cv([
        tuple_cv({"subscriber": principal_cv(subscriber), "plan-id": uint_cv(plan_id)})
        for subscriber, plan_id in charges
    ])
