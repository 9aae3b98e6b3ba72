"""
config.py - Environment-driven settings.

Variables (see .env.example):
  EWASTE_ENV                   - development | production
  NODE_URL                     - JSON-RPC endpoint used in development
  PRODUCTION_NODE_URL          - JSON-RPC endpoint used in production
  INFURA_PROJECT_ID            - fallback for PRODUCTION_NODE_URL (Sepolia)
  CONTRACT_ADDRESS             - deployed EWasteTracking address (development)
  PRODUCTION_CONTRACT_ADDRESS  - deployed EWasteTracking address (production)
  CONTRACT_DESCRIPTOR          - ABI descriptor file path or http(s) URL
  SIGNER_PRIVATE_KEY           - hex key of the admin signer; only writes need it
  LEDGER_BACKEND               - stub | web3

The signer key is optional on purpose: read-only deployments (the display
surface) run without it and writes report MISSING_SIGNER when invoked.
"""
import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

DEFAULT_DESCRIPTOR = str(Path(__file__).parent / "contracts" / "EWasteTracking.json")
MIN_GAS_MARGIN = 1.5


def _flag(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    environment: str = "development"
    node_url: str = "http://127.0.0.1:8545"
    contract_address: str = ""
    contract_descriptor: str = DEFAULT_DESCRIPTOR
    signer_private_key: str = field(default="", repr=False)
    backend: str = "stub"
    rpc_timeout: float = 10.0
    receipt_timeout: float = 30.0
    wait_for_receipt: bool = True
    gas_margin: float = MIN_GAS_MARGIN
    log_from_block: int = 0
    database_url: str = field(default="", repr=False)
    log_level: str = "INFO"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def effective_gas_margin(self) -> float:
        # Never go below the floor, whatever the environment says.
        return max(self.gas_margin, MIN_GAS_MARGIN)

    @classmethod
    def from_env(cls, env_file: str | None = None) -> "Settings":
        load_dotenv(dotenv_path=env_file, override=False)

        environment = os.getenv("EWASTE_ENV", "development").strip().lower()
        if environment == "production":
            node_url = os.getenv("PRODUCTION_NODE_URL", "")
            infura = os.getenv("INFURA_PROJECT_ID", "")
            if not node_url and infura:
                node_url = f"https://sepolia.infura.io/v3/{infura}"
            address = os.getenv("PRODUCTION_CONTRACT_ADDRESS", "")
        else:
            node_url = os.getenv("NODE_URL", "http://127.0.0.1:8545")
            address = os.getenv("CONTRACT_ADDRESS", "")

        return cls(
            environment=environment,
            node_url=node_url,
            contract_address=address,
            contract_descriptor=os.getenv("CONTRACT_DESCRIPTOR", DEFAULT_DESCRIPTOR),
            signer_private_key=os.getenv("SIGNER_PRIVATE_KEY", ""),
            backend=os.getenv("LEDGER_BACKEND", "stub").strip().lower(),
            rpc_timeout=float(os.getenv("RPC_TIMEOUT_SECONDS", "10")),
            receipt_timeout=float(os.getenv("RECEIPT_TIMEOUT_SECONDS", "30")),
            wait_for_receipt=_flag(os.getenv("WAIT_FOR_RECEIPT", "true")),
            gas_margin=float(os.getenv("GAS_SAFETY_MARGIN", str(MIN_GAS_MARGIN))),
            log_from_block=int(os.getenv("LOG_FROM_BLOCK", "0")),
            database_url=os.getenv("DATABASE_URL", ""),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )
