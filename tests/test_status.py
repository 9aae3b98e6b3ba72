"""
Unit tests for the canonical status enum and its two encodings.
"""
import pytest

from ewaste_ledger.status import (
    ItemStatus, from_chain_code, from_store_value, to_chain_code, to_store_value,
)


def test_known_chain_codes_map_exactly():
    assert from_chain_code(0) == ItemStatus.PENDING
    assert from_chain_code(1) == ItemStatus.IN_PROGRESS
    assert from_chain_code(2) == ItemStatus.COMPLETED


@pytest.mark.parametrize("code", [3, -1, 255, 2**256 - 1, None, "abc", object()])
def test_any_other_code_is_unknown_and_never_raises(code):
    assert from_chain_code(code) == ItemStatus.UNKNOWN


def test_chain_code_round_trip_for_writable_statuses():
    for status in (ItemStatus.PENDING, ItemStatus.IN_PROGRESS, ItemStatus.COMPLETED):
        assert from_chain_code(to_chain_code(status)) == status


def test_unknown_cannot_be_written_on_chain():
    with pytest.raises(ValueError):
        to_chain_code(ItemStatus.UNKNOWN)


def test_store_values_match_the_tracking_form():
    assert to_store_value(ItemStatus.IN_PROGRESS) == "In Progress"
    assert from_store_value("In Progress") == ItemStatus.IN_PROGRESS
    assert from_store_value("Completed") == ItemStatus.COMPLETED


def test_unrecognised_store_value_is_unknown():
    assert from_store_value("in progress") == ItemStatus.UNKNOWN
    with pytest.raises(ValueError):
        to_store_value(ItemStatus.UNKNOWN)
