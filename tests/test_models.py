"""
Brief: Tests for value types and record value interpretation.

Inputs:
  - None (pytest harness)

Outputs:
  - None (pytest assertions).
"""

import pytest

from ensresolve.errors import InvalidAddress, InvalidSelection
from ensresolve.models import AccountId, RecordResult, RecordSelection, RecordSet
from ensresolve.values import interpret_address_value, interpret_name_value, interpret_text_value
from fakes import VITALIK


def test_selection_dedupes_in_order() -> None:
    selection = RecordSelection(addresses=(60, 0, 60), texts=("b", "a", "b"))
    assert selection.addresses == (60, 0)
    assert selection.texts == ("b", "a")
    assert not selection.is_empty
    assert RecordSelection().is_empty


@pytest.mark.parametrize("kwargs", [{"addresses": (-1,)}, {"addresses": (True,)}, {"texts": ("",)}])
def test_selection_rejects_bad_keys(kwargs) -> None:
    with pytest.raises(InvalidSelection):
        RecordSelection(**kwargs)


def test_account_id_checksums() -> None:
    assert AccountId(1, VITALIK.lower()) == AccountId(1, VITALIK)
    assert str(AccountId(1, VITALIK)) == f"{VITALIK}@1"
    with pytest.raises(InvalidAddress):
        AccountId(1, "0x12")


def test_record_set_shape_and_dict() -> None:
    selection = RecordSelection(name=True, addresses=(60,), texts=("url",))
    out = RecordSet.unset(selection)
    assert out.matches(selection)
    assert not out.partial_failure

    out.texts["url"] = RecordResult(error="CallReverted: nope")
    assert out.partial_failure
    assert out.to_dict() == {
        "name": {"value": None},
        "addresses": {"60": {"value": None}},
        "texts": {"url": {"value": None, "error": "CallReverted: nope"}},
    }


def test_interpret_values() -> None:
    assert interpret_name_value("") is None
    assert interpret_name_value("Vitalik.eth") is None
    assert interpret_name_value("vitalik.eth") == "vitalik.eth"
    assert interpret_text_value("") is None
    assert interpret_text_value("x") == "x"


def test_interpret_address_values() -> None:
    raw = bytes.fromhex(VITALIK[2:])
    assert interpret_address_value(60, raw) == VITALIK
    assert interpret_address_value(60, VITALIK.lower()) == VITALIK
    assert interpret_address_value(60, b"\x00" * 20) is None
    assert interpret_address_value(60, b"") is None
    assert interpret_address_value(60, b"\x01" * 19) is None
    assert interpret_address_value(60, "zz") is None
    # Non-EVM coin types are returned as hex.
    assert interpret_address_value(0, b"\x00\x14\xab") == "0x0014ab"
