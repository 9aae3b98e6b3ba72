"""Tests for loading the signer credential."""
import logging

from ewaste_ledger.ledger.signer import load_signer

from conftest import DEV_ADDRESS, DEV_KEY


def test_address_derived_from_key():
    signer = load_signer(DEV_KEY)
    assert signer.address == DEV_ADDRESS


def test_missing_key_disables_writes():
    assert load_signer("") is None
    assert load_signer("   ") is None
    assert load_signer(None) is None


def test_malformed_key_is_not_logged(caplog):
    with caplog.at_level(logging.ERROR, logger="ewaste.signer"):
        assert load_signer("0x1234-not-a-key") is None
    assert "not-a-key" not in caplog.text
    assert "signer key rejected" in caplog.text


def test_repr_shows_only_address():
    signer = load_signer(DEV_KEY)
    assert DEV_KEY[2:] not in repr(signer)
    assert DEV_ADDRESS in str(signer)
