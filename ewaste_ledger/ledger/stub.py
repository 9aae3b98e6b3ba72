"""
ledger/stub.py - In-memory chain for development and tests.

Mirrors the EWasteTracking contract rules (duplicate ids revert, unknown ids
are reported missing) and keeps the two-phase write model of a real node:
a sent transaction sits in the pending pool until mine() includes it in a
block. With auto_mine=True every send is mined immediately.

Failure injection for tests:
  unreachable     - every RPC raises NodeUnreachable
  delay           - seconds to sleep inside every RPC (exercise timeouts)
  fail_estimate   - estimate_gas raises ContractRejected
  revert_on_send  - send_transaction raises ContractRejected
  gas_estimate    - fixed estimate returned instead of the computed one
"""
import hashlib
import logging
import threading
import time
from typing import Any, Optional

from .backend import LogRecord, Receipt
from .errors import ContractRejected, NodeTimeout, NodeUnreachable, RecordMissing

log = logging.getLogger("ewaste.ledger.stub")

_BASE_GAS = 21_000
_GAS_PER_BYTE = 68


class StubChain:
    """Contract state, pending pool and event log of a single fake network."""

    def __init__(self, auto_mine: bool = True, clock=time.time):
        self.auto_mine = auto_mine
        self._clock = clock
        self._lock = threading.Lock()
        self._counter = 0
        self.block_number = 0
        self.pending: list[dict] = []
        self.receipts: dict[str, Receipt] = {}
        self.items: dict[str, dict] = {}
        self.vendors: dict[str, dict] = {}
        self.events: list[LogRecord] = []
        self.sent_gas: list[int] = []

        self.unreachable = False
        self.delay = 0.0
        self.fail_estimate = False
        self.revert_on_send = False
        self.gas_estimate: Optional[int] = None

    #  Failure injection helpers

    def check_reachable(self):
        if self.delay:
            time.sleep(self.delay)
        if self.unreachable:
            raise NodeUnreachable("stub node is down")

    #  Contract execution

    def required_gas(self, method: str, args: list) -> int:
        if self.gas_estimate is not None:
            return self.gas_estimate
        size = len(method) + sum(len(str(a)) for a in args)
        return _BASE_GAS + _GAS_PER_BYTE * size

    def check(self, method: str, args: list):
        """Raise ContractRejected when executing method now would revert."""
        if method == "recordWasteItem":
            if args[0] in self.items:
                raise ContractRejected("execution reverted: Item already recorded")
            if not args[0]:
                raise ContractRejected("execution reverted: Empty id")
        elif method == "updateStatus":
            if args[0] not in self.items:
                raise ContractRejected("execution reverted: Item not found")
            if int(args[1]) > 2:
                raise ContractRejected("execution reverted: Invalid status")
        elif method == "verifyVendor":
            if not args[0]:
                raise ContractRejected("execution reverted: Empty vendor id")
        else:
            raise ContractRejected(f"execution reverted: no method {method}")

    def _apply(self, tx: dict, block_ts: int, log_index: int) -> bool:
        method, args, sender = tx["method"], tx["args"], tx["sender"]
        try:
            self.check(method, args)
        except ContractRejected:
            return False
        if tx["gas"] < self.required_gas(method, args):
            return False

        if method == "recordWasteItem":
            item_id, item_type, weight, ts, user_id = args
            self.items[item_id] = {
                "itemType": item_type, "weight": int(weight), "timestamp": block_ts,
                "clientTimestamp": int(ts), "userId": user_id,
                "status": 0, "handlers": [sender],
            }
            event_args = {"itemId": item_id, "itemType": item_type, "weight": int(weight),
                          "timestamp": int(ts), "userId": user_id, "handler": sender}
            name = "WasteItemRecorded"
        elif method == "updateStatus":
            item = self.items[args[0]]
            item["status"] = int(args[1])
            item["handlers"].append(sender)
            event_args = {"itemId": args[0], "status": int(args[1]), "handler": sender}
            name = "WasteItemStatusUpdated"
        else:
            self.vendors[args[0]] = {"certifications": list(args[1]), "timestamp": block_ts}
            event_args = {"vendorId": args[0], "certifications": list(args[1])}
            name = "VendorVerified"

        self.events.append(LogRecord(
            event=name, transaction_hash=tx["hash"], block_number=self.block_number,
            log_index=log_index, block_timestamp=block_ts, args=event_args,
        ))
        return True

    def submit(self, method: str, args: list, sender: str, gas: int) -> str:
        with self._lock:
            self._counter += 1
            seed = f"{self._counter}:{method}:{args}".encode()
            tx_hash = "0x" + hashlib.sha256(seed).hexdigest()
            self.pending.append({"hash": tx_hash, "method": method, "args": list(args),
                                 "sender": sender, "gas": gas})
            self.sent_gas.append(gas)
        if self.auto_mine:
            self.mine()
        return tx_hash

    def mine(self) -> int:
        """Include every pending transaction in a new block. Returns the tx count."""
        with self._lock:
            if not self.pending:
                return 0
            self.block_number += 1
            block_ts = int(self._clock())
            txs, self.pending = self.pending, []
            for idx, tx in enumerate(txs):
                ok = self._apply(tx, block_ts, idx)
                self.receipts[tx["hash"]] = Receipt(status=1 if ok else 0,
                                                    block_number=self.block_number)
            log.debug("stub mined block=%d txs=%d", self.block_number, len(txs))
            return len(txs)

    def read(self, method: str, args: list) -> Any:
        with self._lock:
            if method == "getWasteItemHistory":
                item = self.items.get(args[0])
                if item is None:
                    raise RecordMissing(f"item {args[0]} not found")
                return (item["itemType"], item["weight"], item["timestamp"],
                        item["status"], list(item["handlers"]))
            if method == "getVendorCertifications":
                vendor = self.vendors.get(args[0])
                if vendor is None:
                    raise RecordMissing(f"vendor {args[0]} not found")
                return (list(vendor["certifications"]), vendor["timestamp"], True)
        raise ContractRejected(f"execution reverted: no view method {method}")


class StubBackend:
    """Backend facade over a StubChain. Several backends may share one chain."""

    def __init__(self, chain: Optional[StubChain] = None):
        self.chain = chain or StubChain()
        self.connect_count = 0
        self.abi: Optional[list] = None
        self.address = ""
        self.closed = False

    def connect(self, endpoint: str, timeout: float):
        self.chain.check_reachable()
        self.connect_count += 1
        log.info("stub backend connected endpoint=%s", endpoint)

    def load_contract(self, address: str, abi: list):
        self.address = address
        self.abi = abi

    def is_listening(self) -> bool:
        self.chain.check_reachable()
        return True

    def _known(self, name: str, kind: str = "function"):
        names = {e.get("name") for e in (self.abi or []) if e.get("type") == kind}
        if name not in names:
            raise ContractRejected(f"{kind} {name} not in contract interface")

    def estimate_gas(self, method: str, args: list, sender: str) -> int:
        self.chain.check_reachable()
        self._known(method)
        if self.chain.fail_estimate:
            raise ContractRejected("execution reverted: estimation failed")
        self.chain.check(method, args)
        return self.chain.required_gas(method, args)

    def send_transaction(self, method: str, args: list, signer, gas: int) -> str:
        self.chain.check_reachable()
        self._known(method)
        if self.chain.revert_on_send:
            raise ContractRejected("execution reverted")
        return self.chain.submit(method, args, signer.address, gas)

    def wait_for_receipt(self, tx_hash: str, timeout: float) -> Receipt:
        deadline = time.monotonic() + timeout
        while True:
            self.chain.check_reachable()
            receipt = self.chain.receipts.get(tx_hash)
            if receipt is not None:
                return receipt
            if time.monotonic() >= deadline:
                raise NodeTimeout(f"transaction {tx_hash} not mined after {timeout}s")
            time.sleep(0.01)

    def call(self, method: str, args: list) -> Any:
        self.chain.check_reachable()
        self._known(method)
        return self.chain.read(method, args)

    def get_events(self, event_name: str, from_block: int,
                   filters: Optional[dict] = None) -> list[LogRecord]:
        self.chain.check_reachable()
        self._known(event_name, kind="event")
        wanted = (filters or {}).items()
        return [e for e in list(self.chain.events)
                if e.event == event_name and e.block_number >= from_block
                and all(e.args.get(k) == v for k, v in wanted)]

    def close(self):
        self.closed = True
