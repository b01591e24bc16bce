"""
Ledger client settings.

Network table and tunables in one place. Values come from the environment
(main.py loads .env first); the dataclass is frozen so nothing downstream
can change them at runtime.
"""

import os
from dataclasses import dataclass
from typing import Final


# ============================================================
# NETWORKS
# ============================================================

CHAIN_DEFAULTS = {
    "sepolia": {
        "rpc": "https://ethereum-sepolia-rpc.publicnode.com",
        "chain_id": 11155111,
        "explorer": "https://sepolia.etherscan.io",
    },
    "mainnet": {
        "rpc": "https://ethereum-rpc.publicnode.com",
        "chain_id": 1,
        "explorer": "https://etherscan.io",
    },
}

DEFAULT_NETWORK: Final[str] = "sepolia"

# Deployed ExpenseTracker contract on Sepolia
DEFAULT_CONTRACT_ADDRESS: Final[str] = "0xea9edb42af0495b5505a7c0b1ac1aa1832ed0fe5"


# ============================================================
# SETTINGS
# ============================================================

@dataclass(frozen=True)
class LedgerSettings:
    network: str = DEFAULT_NETWORK
    rpc_url: str = CHAIN_DEFAULTS[DEFAULT_NETWORK]["rpc"]
    contract_address: str = DEFAULT_CONTRACT_ADDRESS
    private_key: str = ""
    required_chain_id: int = CHAIN_DEFAULTS[DEFAULT_NETWORK]["chain_id"]

    rpc_timeout: int = 30                 # seconds per HTTP request
    confirmation_timeout: int = 120       # seconds to wait for a receipt
    max_concurrency: int = 8              # in-flight reads per fan-out
    gas_buffer: float = 1.2               # estimate * 1.2
    fallback_gas: int = 200_000           # used when estimation fails

    host: str = "0.0.0.0"
    port: int = 8000

    @property
    def explorer(self) -> str:
        cfg = CHAIN_DEFAULTS.get(self.network)
        return cfg["explorer"] if cfg else CHAIN_DEFAULTS[DEFAULT_NETWORK]["explorer"]

    def explorer_tx_url(self, tx_hash: str) -> str:
        return f"{self.explorer}/tx/{tx_hash}"

    @classmethod
    def from_env(cls) -> "LedgerSettings":
        network = os.getenv("LEDGER_NETWORK", DEFAULT_NETWORK).lower()
        chain_cfg = CHAIN_DEFAULTS.get(network)
        if chain_cfg is None:
            raise ValueError(
                f"Unknown LEDGER_NETWORK '{network}' (known: {', '.join(CHAIN_DEFAULTS)})"
            )

        return cls(
            network=network,
            rpc_url=os.getenv(f"{network.upper()}_RPC_URL", chain_cfg["rpc"]),
            contract_address=os.getenv("LEDGER_CONTRACT_ADDRESS", DEFAULT_CONTRACT_ADDRESS),
            private_key=os.getenv("LEDGER_PRIVATE_KEY", ""),
            required_chain_id=int(os.getenv("LEDGER_CHAIN_ID", chain_cfg["chain_id"])),
            rpc_timeout=int(os.getenv("LEDGER_RPC_TIMEOUT", "30")),
            confirmation_timeout=int(os.getenv("LEDGER_CONFIRMATION_TIMEOUT", "120")),
            max_concurrency=max(1, int(os.getenv("LEDGER_MAX_CONCURRENCY", "8"))),
            gas_buffer=float(os.getenv("LEDGER_GAS_BUFFER", "1.2")),
            fallback_gas=int(os.getenv("LEDGER_FALLBACK_GAS", "200000")),
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "8000")),
        )
