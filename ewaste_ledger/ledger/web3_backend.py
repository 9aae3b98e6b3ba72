"""
ledger/web3_backend.py - JSON-RPC backend using web3.py.

Connects to an Ethereum node (Ganache/Hardhat in development, Sepolia via
Infura in production), loads the deployed EWasteTracking contract and
translates web3/requests failures into the backend exception hierarchy.

The contract reverts on reads of unknown ids; that revert is the normal
"not anchored yet" signal and is reported as RecordMissing.

History events index the item id, so the node filters logs by id and a
lookup costs the same however many items the contract holds.
"""
import contextlib
import logging
import threading
from typing import Any, Optional

import requests
from web3 import Web3
from web3.exceptions import (
    BadFunctionCallOutput, ContractLogicError, TimeExhausted, Web3Exception,
)
from web3.middleware import ExtraDataToPOAMiddleware

from .backend import LogRecord, Receipt
from .errors import (
    BackendError, ContractRejected, NodeTimeout, NodeUnreachable, RecordMissing,
)

log = logging.getLogger("ewaste.web3")


@contextlib.contextmanager
def _translate(what: str):
    try:
        yield
    except BackendError:
        raise
    except ContractLogicError as exc:
        raise ContractRejected(f"{what}: {exc}") from exc
    except (TimeExhausted, requests.exceptions.Timeout) as exc:
        raise NodeTimeout(f"{what}: {exc}") from exc
    except BadFunctionCallOutput as exc:
        # Empty return data: nothing deployed at the configured address.
        raise NodeUnreachable(f"{what}: no contract code answered ({exc})") from exc
    except (requests.exceptions.RequestException, Web3Exception, ValueError, OSError) as exc:
        raise NodeUnreachable(f"{what}: {exc}") from exc


def _raw_tx(signed) -> bytes:
    # eth-account renamed rawTransaction to raw_transaction
    raw = getattr(signed, "raw_transaction", None)
    if raw is None:
        raw = getattr(signed, "rawTransaction", None)
    if raw is None:
        raise ContractRejected("signed transaction carries no raw bytes")
    return raw


class Web3Backend:
    def __init__(self):
        self._w3 = None
        self._contract = None
        # One signer for the process: nonce allocation, signing and sending
        # happen under this lock so overlapping writes get distinct nonces.
        self._send_lock = threading.Lock()
        self._next_nonce: Optional[int] = None

    def connect(self, endpoint: str, timeout: float):
        if not endpoint:
            raise NodeUnreachable("no node endpoint configured")
        with _translate("connect"):
            w3 = Web3(Web3.HTTPProvider(endpoint, request_kwargs={"timeout": timeout}))
            w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
            if not w3.is_connected():
                raise NodeUnreachable(f"node at {endpoint} is not answering")
        self._w3 = w3
        log.info("web3 connected rpc=%s", endpoint)

    def load_contract(self, address: str, abi: list):
        if not address:
            raise NodeUnreachable("no contract address configured")
        try:
            checksum = Web3.to_checksum_address(address)
        except ValueError as exc:
            raise NodeUnreachable(f"invalid contract address {address!r}") from exc
        self._contract = self._w3.eth.contract(address=checksum, abi=abi)
        log.info("contract loaded address=%s", checksum)

    def is_listening(self) -> bool:
        if self._w3 is None:
            return False
        with _translate("net_listening"):
            return bool(self._w3.net.listening)

    def _fn(self, method: str, args: list):
        try:
            return getattr(self._contract.functions, method)(*args)
        except (AttributeError, TypeError, ValueError, Web3Exception) as exc:
            raise ContractRejected(f"cannot encode {method}{tuple(args)}: {exc}") from exc

    def estimate_gas(self, method: str, args: list, sender: str) -> int:
        fn = self._fn(method, args)
        with _translate(f"estimate {method}"):
            return int(fn.estimate_gas({"from": sender}))

    def send_transaction(self, method: str, args: list, signer, gas: int) -> str:
        fn = self._fn(method, args)
        with self._send_lock:
            try:
                with _translate(f"send {method}"):
                    pending = self._w3.eth.get_transaction_count(signer.address, "pending")
                    # The node may not count our last send as pending yet.
                    nonce = max(pending, self._next_nonce or 0)
                    tx = fn.build_transaction({"from": signer.address, "nonce": nonce, "gas": gas})
                    signed = signer.sign_transaction(tx)
                    tx_hash = self._w3.eth.send_raw_transaction(_raw_tx(signed))
            except BackendError:
                # Re-seed from the node on the next send.
                self._next_nonce = None
                raise
            self._next_nonce = nonce + 1
        return Web3.to_hex(tx_hash)

    def wait_for_receipt(self, tx_hash: str, timeout: float) -> Receipt:
        with _translate(f"receipt {tx_hash}"):
            receipt = self._w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
        return Receipt(status=int(receipt["status"]), block_number=int(receipt["blockNumber"]))

    def call(self, method: str, args: list) -> Any:
        fn = self._fn(method, args)
        try:
            with _translate(f"call {method}"):
                return fn.call()
        except ContractRejected as exc:
            raise RecordMissing(str(exc)) from exc

    def get_events(self, event_name: str, from_block: int,
                   filters: Optional[dict] = None) -> list[LogRecord]:
        """Logs of one event, filtered on indexed arguments by the node."""
        with _translate(f"logs {event_name}"):
            event = getattr(self._contract.events, event_name)
            entries = event().get_logs(from_block=from_block, argument_filters=filters)
            # Block times for this scan only; filtered scans touch few blocks.
            block_ts: dict[int, int] = {}
            records = []
            for e in entries:
                block = int(e["blockNumber"])
                if block not in block_ts:
                    block_ts[block] = int(self._w3.eth.get_block(block)["timestamp"])
                records.append(LogRecord(
                    event=event_name,
                    transaction_hash=Web3.to_hex(e["transactionHash"]),
                    block_number=block,
                    log_index=int(e["logIndex"]),
                    block_timestamp=block_ts[block],
                    args=dict(e["args"]),
                ))
            return records

    def close(self):
        self._w3 = None
        self._contract = None
        self._next_nonce = None
