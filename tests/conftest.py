"""Shared fixtures: a stub chain, a ledger client on it, and a service."""
import pytest

from ewaste_ledger.config import Settings
from ewaste_ledger.ledger.client import LedgerClient
from ewaste_ledger.ledger.signer import load_signer
from ewaste_ledger.ledger.stub import StubBackend, StubChain
from ewaste_ledger.metrics import MetricsCollector
from ewaste_ledger.store import InMemorySubmissionStore
from ewaste_ledger.verification import VerificationService

# Well-known Hardhat/Besu development account #0. Never funded outside a dev chain.
DEV_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
DEV_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
CONTRACT = "0x5FbDB2315678afecb367f032d93F642f64180aa3"


def make_settings(**overrides) -> Settings:
    base = dict(
        backend="stub",
        node_url="http://127.0.0.1:8545",
        contract_address=CONTRACT,
        signer_private_key=DEV_KEY,
        rpc_timeout=1.0,
        receipt_timeout=1.0,
    )
    base.update(overrides)
    return Settings(**base)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def chain() -> StubChain:
    return StubChain()


@pytest.fixture
def backend(chain) -> StubBackend:
    return StubBackend(chain)


@pytest.fixture
def ledger(settings, backend) -> LedgerClient:
    return LedgerClient(settings, backend=backend)


@pytest.fixture
def signer():
    return load_signer(DEV_KEY)


@pytest.fixture
def metrics() -> MetricsCollector:
    return MetricsCollector()


@pytest.fixture
def service(ledger, signer, metrics) -> VerificationService:
    return VerificationService(ledger, signer=signer, metrics=metrics)


@pytest.fixture
def store() -> InMemorySubmissionStore:
    return InMemorySubmissionStore()
