"""
ledger/backend.py - Backend selection and the types every backend returns.

LedgerClient drives a backend without knowing whether it talks to a real
node (web3) or to the in-memory chain (stub). Swapping backends requires
only changing LEDGER_BACKEND, not the service logic.

Backend methods are synchronous, like web3.py itself. LedgerClient runs
them in the default executor and bounds each call with a timeout.

A backend implements:
  connect(endpoint, timeout)
  load_contract(address, abi)
  is_listening() -> bool
  estimate_gas(method, args, sender) -> int
  send_transaction(method, args, signer, gas) -> tx hash (hex str)
  wait_for_receipt(tx_hash, timeout) -> Receipt
  call(method, args) -> raw return value
  get_events(event_name, from_block, filters=None) -> list[LogRecord]
      filters maps indexed argument names to required values
  close()
"""
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import requests

from .errors import DescriptorError

log = logging.getLogger("ewaste.ledger.backend")

BACKENDS = ("stub", "web3")


@dataclass(frozen=True)
class Receipt:
    status: int
    block_number: int


@dataclass(frozen=True)
class LogRecord:
    event: str
    transaction_hash: str
    block_number: int
    log_index: int
    block_timestamp: int
    args: dict[str, Any] = field(default_factory=dict)


def load_descriptor(source: str, timeout: float = 10.0) -> list:
    """Return the ABI from a descriptor file path or http(s) URL.

    Accepts a truffle artifact ({"abi": [...]}) or a bare ABI list.
    """
    try:
        if source.startswith(("http://", "https://")):
            resp = requests.get(source, timeout=timeout)
            resp.raise_for_status()
            data = resp.json()
        else:
            data = json.loads(Path(source).read_text())
    except (requests.RequestException, OSError, ValueError) as exc:
        raise DescriptorError(f"cannot load contract descriptor {source}: {exc}") from exc

    abi = data.get("abi") if isinstance(data, dict) else data
    if not isinstance(abi, list) or not abi:
        raise DescriptorError(f"descriptor {source} has no ABI entries")
    return abi


def make_backend(name: str):
    """Instantiate the backend named by LEDGER_BACKEND."""
    if name == "web3":
        from .web3_backend import Web3Backend
        return Web3Backend()
    if name == "stub":
        from .stub import StubBackend
        return StubBackend()
    raise ValueError(f"unknown ledger backend {name!r}; expected one of {BACKENDS}")
