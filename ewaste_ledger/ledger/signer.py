"""
ledger/signer.py - The process-wide signer credential.

The private key is loaded once from configuration and kept inside the
eth-account LocalAccount. Only the derived address is ever logged or shown.
"""
import logging
from typing import Optional

from eth_account import Account
from eth_account.signers.local import LocalAccount

log = logging.getLogger("ewaste.signer")


class Signer:
    __slots__ = ("_account",)

    def __init__(self, account: LocalAccount):
        self._account = account

    @property
    def address(self) -> str:
        return self._account.address

    def sign_transaction(self, tx: dict):
        return self._account.sign_transaction(tx)

    def __repr__(self):
        return f"Signer(address={self.address})"

    __str__ = __repr__


def load_signer(private_key: str) -> Optional[Signer]:
    """Build the signer from a hex key. Returns None when no key is configured.

    A malformed key is treated like a missing one so read-only flows keep
    working; the reason is logged without the key material.
    """
    key = (private_key or "").strip()
    if not key:
        log.info("no signer key configured - ledger writes disabled")
        return None
    try:
        account = Account.from_key(key)
    except Exception as exc:
        log.error("signer key rejected (%s) - ledger writes disabled", type(exc).__name__)
        return None
    log.info("signer loaded address=%s", account.address)
    return Signer(account)
