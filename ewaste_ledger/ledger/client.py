"""
ledger/client.py - Ledger Client.

The thinnest wrapper over one node connection and one deployed contract.
Everything above it is chain-agnostic: every operation returns a
LedgerResult carrying either a value or a typed error kind, nothing raises.

One client is built per process and shared by every consumer. The
connection is opened lazily on first use; concurrent first users await the
same in-flight initialisation instead of opening duplicates.

Blocking backend calls run in the default executor and are bounded by
settings.rpc_timeout (settings.receipt_timeout when waiting for mining).
"""
import asyncio
import functools
import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Optional

from ..config import MIN_GAS_MARGIN, Settings
from .backend import load_descriptor, make_backend
from .errors import (
    BackendError, ConnectError, ContractRejected, DescriptorError, LedgerResult,
    NodeTimeout, ReadError, RecordMissing, WriteError,
)

log = logging.getLogger("ewaste.ledger")


@dataclass(frozen=True)
class Ready:
    endpoint: str
    contract_address: str
    connected_at: int


def apply_gas_margin(estimate: int, margin: float = MIN_GAS_MARGIN) -> int:
    """Gas ceiling sent with a write: the estimate scaled by at least 1.5."""
    return int(math.ceil(int(estimate) * max(margin, MIN_GAS_MARGIN)))


class LedgerClient:
    def __init__(self, settings: Settings, backend=None):
        self.settings = settings
        self._backend = backend if backend is not None else make_backend(settings.backend)
        self._ready: Optional[Ready] = None
        self._init_task: Optional[asyncio.Future] = None

    @property
    def ready(self) -> Optional[Ready]:
        return self._ready

    @property
    def backend(self):
        return self._backend

    async def _run(self, fn, *args, timeout: Optional[float] = None):
        loop = asyncio.get_running_loop()
        bound = self.settings.rpc_timeout if timeout is None else timeout
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(None, functools.partial(fn, *args)), bound,
            )
        except asyncio.TimeoutError as exc:
            raise NodeTimeout(f"{getattr(fn, '__name__', fn)} exceeded {bound}s") from exc

    #  Lifecycle

    async def initialize(self, node_endpoint: Optional[str] = None,
                         contract_address: Optional[str] = None,
                         descriptor: Optional[str] = None) -> LedgerResult:
        """Connect once. Repeated or concurrent calls share the same outcome."""
        if self._ready is not None:
            return LedgerResult.success(self._ready)
        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._connect(
                node_endpoint or self.settings.node_url,
                contract_address if contract_address is not None else self.settings.contract_address,
                descriptor or self.settings.contract_descriptor,
            ))
        return await asyncio.shield(self._init_task)

    async def _connect(self, endpoint: str, address: str, descriptor: str) -> LedgerResult:
        try:
            try:
                await self._run(self._backend.connect, endpoint, self.settings.rpc_timeout)
            except BackendError as exc:
                log.error("ledger connect failed endpoint=%s: %s", endpoint, exc)
                return LedgerResult.failure(ConnectError.ENDPOINT_UNREACHABLE, str(exc))

            try:
                abi = await self._run(load_descriptor, descriptor, self.settings.rpc_timeout)
            except BackendError as exc:
                log.error("contract descriptor unavailable source=%s: %s", descriptor, exc)
                return LedgerResult.failure(ConnectError.CONTRACT_DESCRIPTOR_UNAVAILABLE, str(exc))

            try:
                await self._run(self._backend.load_contract, address, abi)
            except BackendError as exc:
                log.error("contract load failed address=%s: %s", address, exc)
                return LedgerResult.failure(ConnectError.ENDPOINT_UNREACHABLE, str(exc))

            self._ready = Ready(endpoint=endpoint, contract_address=address,
                                connected_at=int(time.time()))
            log.info("ledger ready endpoint=%s contract=%s", endpoint, address or "-")
            return LedgerResult.success(self._ready)
        finally:
            # A failed attempt may be retried by a later caller.
            self._init_task = None

    async def shutdown(self):
        if self._init_task is not None:
            await asyncio.shield(self._init_task)
        self._backend.close()
        self._ready = None
        log.info("ledger connection closed")

    #  Writes

    async def submit_write(self, method_name: str, args: list, signer) -> LedgerResult:
        """Estimate, add the safety margin, sign and send a contract write.

        Returns the transaction hash. Estimation failures never reach the
        send step, so a call that is certain to revert costs nothing.
        """
        init = await self.initialize()
        if not init.ok:
            return LedgerResult.failure(WriteError.NETWORK_TIMEOUT, init.detail)

        try:
            estimate = await self._run(self._backend.estimate_gas,
                                       method_name, args, signer.address)
        except ContractRejected as exc:
            log.warning("gas estimation failed method=%s: %s", method_name, exc)
            return LedgerResult.failure(WriteError.ESTIMATION_FAILED, str(exc))
        except BackendError as exc:
            log.warning("gas estimation unreachable method=%s: %s", method_name, exc)
            return LedgerResult.failure(WriteError.NETWORK_TIMEOUT, str(exc))

        gas = apply_gas_margin(estimate, self.settings.effective_gas_margin)

        try:
            tx_hash = await self._run(self._backend.send_transaction,
                                      method_name, args, signer, gas)
        except ContractRejected as exc:
            log.warning("write reverted method=%s: %s", method_name, exc)
            return LedgerResult.failure(WriteError.REVERTED, str(exc))
        except BackendError as exc:
            log.warning("write send failed method=%s: %s", method_name, exc)
            return LedgerResult.failure(WriteError.NETWORK_TIMEOUT, str(exc))

        if self.settings.wait_for_receipt:
            try:
                receipt = await self._run(
                    self._backend.wait_for_receipt, tx_hash, self.settings.receipt_timeout,
                    timeout=self.settings.receipt_timeout + self.settings.rpc_timeout,
                )
            except BackendError as exc:
                log.warning("receipt wait failed method=%s tx=%s: %s", method_name, tx_hash, exc)
                return LedgerResult.failure(WriteError.NETWORK_TIMEOUT, f"tx {tx_hash}: {exc}")
            if receipt.status != 1:
                log.warning("write reverted on-chain method=%s tx=%s block=%s gasLimit=%s",
                            method_name, tx_hash, receipt.block_number, gas)
                return LedgerResult.failure(WriteError.REVERTED, f"tx {tx_hash} reverted")

        log.info("write sent method=%s tx=%s estimate=%s gasLimit=%s",
                 method_name, tx_hash, estimate, gas)
        return LedgerResult.success(tx_hash)

    #  Reads

    async def call(self, method_name: str, args: list) -> LedgerResult:
        """Read-only contract call. A missing record is NOT_FOUND, an ordinary outcome."""
        init = await self.initialize()
        if not init.ok:
            return LedgerResult.failure(ReadError.NETWORK_TIMEOUT, init.detail)
        try:
            value = await self._run(self._backend.call, method_name, args)
        except (RecordMissing, ContractRejected) as exc:
            log.debug("call %s%s found nothing: %s", method_name, tuple(args), exc)
            return LedgerResult.failure(ReadError.NOT_FOUND, str(exc))
        except BackendError as exc:
            log.warning("call %s failed: %s", method_name, exc)
            return LedgerResult.failure(ReadError.NETWORK_TIMEOUT, str(exc))
        return LedgerResult.success(value)

    async def get_events(self, event_name: str, from_block: Optional[int] = None,
                         filters: Optional[dict] = None) -> LedgerResult:
        """Event logs from LOG_FROM_BLOCK on, optionally filtered on indexed arguments."""
        init = await self.initialize()
        if not init.ok:
            return LedgerResult.failure(ReadError.NETWORK_TIMEOUT, init.detail)
        start = self.settings.log_from_block if from_block is None else from_block
        try:
            entries = await self._run(self._backend.get_events, event_name, start, filters)
        except BackendError as exc:
            log.warning("event scan %s failed: %s", event_name, exc)
            return LedgerResult.failure(ReadError.NETWORK_TIMEOUT, str(exc))
        return LedgerResult.success(entries)

    async def check_connectivity(self) -> bool:
        """Best-effort liveness check. Returns False on any failure, never raises."""
        try:
            init = await self.initialize()
            if not init.ok:
                return False
            return bool(await self._run(self._backend.is_listening))
        except Exception as exc:
            log.debug("connectivity check failed: %s", exc)
            return False

    def describe(self) -> dict[str, Any]:
        return {
            "backend": self.settings.backend,
            "ready": self._ready is not None,
            "endpoint": self._ready.endpoint if self._ready else None,
            "contract_address": self._ready.contract_address if self._ready else None,
        }
