"""
Test Clarity value serialization and unwrapping.
"""

import pytest

from substack_keeper.core.exceptions import ClarityError
from substack_keeper.services.stacks.clarity import (
    ClarityType,
    bool_cv,
    buffer_cv,
    charge_tuples,
    deserialize,
    err_cv,
    int_cv,
    list_cv,
    none_cv,
    ok_cv,
    principal_cv,
    serialize,
    some_cv,
    string_ascii_cv,
    tuple_cv,
    uint_cv,
    unwrap,
)


ADDRESS = "SP2J6ZY48GV1EZ5V2V5RB9MP66SW86PYKKNRV9EJ7"
ADDRESS_HASH = "a46ff88886c2ef9762d970b4d2c63678835bd39d"


def test_uint_serialization():
    assert uint_cv(1).to_hex() == "0x01" + "00" * 15 + "01"


def test_int_serialization_is_twos_complement():
    assert serialize(int_cv(-1)) == b"\x00" + b"\xff" * 16


def test_uint_range_checked():
    with pytest.raises(ClarityError):
        uint_cv(-1)
    with pytest.raises(ClarityError):
        uint_cv(2 ** 128)


def test_bool_and_none_are_bare_type_ids():
    assert serialize(bool_cv(True)) == b"\x03"
    assert serialize(bool_cv(False)) == b"\x04"
    assert serialize(none_cv()) == b"\x09"


def test_standard_principal_serialization():
    assert serialize(principal_cv(ADDRESS)).hex() == "05" + "16" + ADDRESS_HASH


def test_contract_principal_serialization():
    encoded = serialize(principal_cv(f"{ADDRESS}.engine")).hex()
    assert encoded == "06" + "16" + ADDRESS_HASH + "06" + b"engine".hex()


def test_principal_with_bad_checksum_rejected():
    with pytest.raises(ClarityError):
        principal_cv("SP2J6ZY48GV1EZ5V2V5RB9MP66SW86PYKKNRV9EJ8")


def test_tuple_keys_are_sorted():
    encoded = serialize(tuple_cv({"b": uint_cv(2), "a": uint_cv(1)}))
    assert encoded[:5] == b"\x0c\x00\x00\x00\x02"
    assert encoded[5:7] == b"\x01a"


def test_deserialize_accepts_hex_with_or_without_prefix():
    raw = serialize(some_cv(uint_cv(5))).hex()
    assert deserialize(raw) == deserialize("0x" + raw) == some_cv(uint_cv(5))


def test_deserialize_plan_record():
    plan = some_cv(tuple_cv({
        "merchant": principal_cv(ADDRESS),
        "amount": uint_cv(1_000_000),
        "interval-blocks": uint_cv(4320),
        "active": bool_cv(True),
        "subscriber-count": uint_cv(3),
        "name": string_ascii_cv("pro"),
    }))
    decoded = deserialize(plan.to_hex())

    assert decoded.type == ClarityType.OPTIONAL_SOME
    assert unwrap(decoded) == {
        "merchant": ADDRESS,
        "amount": 1_000_000,
        "interval-blocks": 4320,
        "active": True,
        "subscriber-count": 3,
        "name": "pro",
    }


def test_deserialize_rejects_trailing_bytes():
    with pytest.raises(ClarityError):
        deserialize(serialize(uint_cv(1)) + b"\x00")


def test_deserialize_rejects_truncated_input():
    with pytest.raises(ClarityError):
        deserialize(serialize(uint_cv(1))[:10])


def test_deserialize_rejects_unknown_type():
    with pytest.raises(ClarityError):
        deserialize("ff")


def test_unwrap_strips_ok_and_some():
    assert unwrap(ok_cv(some_cv(uint_cv(9)))) == 9
    assert unwrap(ok_cv(none_cv())) is None


def test_unwrap_err_raises():
    with pytest.raises(ClarityError) as excinfo:
        unwrap(err_cv(uint_cv(404)))
    assert excinfo.value.details["err"] == 404


def test_unwrap_list_and_buffer():
    value = list_cv([principal_cv(ADDRESS), buffer_cv(b"\x01\x02")])
    assert unwrap(deserialize(value.to_hex())) == [ADDRESS, b"\x01\x02"]


def test_charge_tuples_shape():
    value = charge_tuples([(ADDRESS, 1), (ADDRESS, 2)])
    assert value.type == ClarityType.LIST
    assert unwrap(value) == [
        {"subscriber": ADDRESS, "plan-id": 1},
        {"subscriber": ADDRESS, "plan-id": 2},
    ]
