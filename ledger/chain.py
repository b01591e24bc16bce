"""
Ledger Client - Contract Boundary

Typed async wrapper over the ExpenseTracker contract.

Design:
- Sync web3 calls wrapped in asyncio.run_in_executor() (one thread per in-flight read)
- Embedded minimal ABI, only the functions the client calls
- Every failure surfaces as RemoteCallError(operation, reason)
- No retries here: resilience policy belongs to SyncEngine / TransactionSubmitter
- Writes: nonce from chain (pending), gas estimate + buffer, local signing
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from web3 import Web3
from web3.exceptions import TimeExhausted

from .errors import EmptyName, RemoteCallError
from .models import PersonRecord, TxOutcome
from .settings import LedgerSettings

logger = logging.getLogger("ledger.chain")

NULL_ADDRESS = "0x" + "0" * 40


# ============================================================
# Minimal ABI: only the functions called at runtime
# ============================================================

EXPENSE_TRACKER_ABI = [
    # registerPerson(string name)
    {
        "inputs": [{"name": "_name", "type": "string"}],
        "name": "registerPerson",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    # getPerson(address) → Person{name, walletAddress}
    {
        "inputs": [{"name": "_addr", "type": "address"}],
        "name": "getPerson",
        "outputs": [
            {
                "components": [
                    {"name": "name", "type": "string"},
                    {"name": "walletAddress", "type": "address"},
                ],
                "name": "",
                "type": "tuple",
            }
        ],
        "stateMutability": "view",
        "type": "function",
    },
    # getAllRegisteredPeople() → address[]
    {
        "inputs": [],
        "name": "getAllRegisteredPeople",
        "outputs": [{"name": "", "type": "address[]"}],
        "stateMutability": "view",
        "type": "function",
    },
    # expenseCount() → uint256
    {
        "inputs": [],
        "name": "expenseCount",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    # getExpenseBasicInfo(uint256) → (id, label, timestamp)
    {
        "inputs": [{"name": "_expenseId", "type": "uint256"}],
        "name": "getExpenseBasicInfo",
        "outputs": [
            {"name": "id", "type": "uint256"},
            {"name": "label", "type": "string"},
            {"name": "timestamp", "type": "uint256"},
        ],
        "stateMutability": "view",
        "type": "function",
    },
    # getExpenseParticipants(uint256) → address[]
    {
        "inputs": [{"name": "_expenseId", "type": "uint256"}],
        "name": "getExpenseParticipants",
        "outputs": [{"name": "", "type": "address[]"}],
        "stateMutability": "view",
        "type": "function",
    },
    # getAmountPaid(uint256, address) → uint256
    {
        "inputs": [
            {"name": "_expenseId", "type": "uint256"},
            {"name": "_participant", "type": "address"},
        ],
        "name": "getAmountPaid",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    # getAmountOwed(uint256, address) → uint256
    {
        "inputs": [
            {"name": "_expenseId", "type": "uint256"},
            {"name": "_participant", "type": "address"},
        ],
        "name": "getAmountOwed",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    # getNetBalance(address) → int256
    {
        "inputs": [{"name": "_person", "type": "address"}],
        "name": "getNetBalance",
        "outputs": [{"name": "", "type": "int256"}],
        "stateMutability": "view",
        "type": "function",
    },
    # addExpense(string label, address[] participants, uint256[] paid, uint256[] owed)
    {
        "inputs": [
            {"name": "_label", "type": "string"},
            {"name": "_participants", "type": "address[]"},
            {"name": "_amountsPaid", "type": "uint256[]"},
            {"name": "_amountsOwed", "type": "uint256[]"},
        ],
        "name": "addExpense",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]


# ============================================================
# RESULT TYPES
# ============================================================

@dataclass
class Confirmation:
    """How a broadcast transaction ended."""
    outcome: TxOutcome
    tx_hash: str = ""
    block_number: int = 0
    gas_used: int = 0
    error: str = ""

    @property
    def confirmed(self) -> bool:
        return self.outcome == TxOutcome.CONFIRMED


class PendingTransaction:
    """
    A transaction that has been broadcast but not yet mined.

    Once broadcast its fate belongs to the chain: await_confirmation() can
    give up waiting (TIMED_OUT) but cannot cancel it.
    """

    def __init__(self, w3, tx_hash: str, operation: str, timeout: int = 120):
        self._w3 = w3
        self.tx_hash = tx_hash
        self.operation = operation
        self.timeout = timeout

    async def await_confirmation(self, timeout: Optional[float] = None) -> Confirmation:
        wait_s = self.timeout if timeout is None else timeout

        def _wait():
            return self._w3.eth.wait_for_transaction_receipt(self.tx_hash, timeout=wait_s)

        try:
            receipt = await asyncio.get_running_loop().run_in_executor(None, _wait)
        except TimeExhausted:
            logger.warning(f"TX TIMEOUT [{self.operation}]: {self.tx_hash[:18]}... after {wait_s}s")
            return Confirmation(
                outcome=TxOutcome.TIMED_OUT,
                tx_hash=self.tx_hash,
                error=f"no receipt after {wait_s}s",
            )
        except Exception as e:
            raise RemoteCallError(f"{self.operation}.receipt", f"{type(e).__name__}: {e}") from e

        block_number = receipt.get("blockNumber", 0) or 0
        gas_used = receipt.get("gasUsed", 0) or 0
        if receipt["status"] == 1:
            logger.info(
                f"TX SUCCESS [{self.operation}]: {self.tx_hash[:18]}... | "
                f"block={block_number} | gas={gas_used}"
            )
            return Confirmation(
                outcome=TxOutcome.CONFIRMED,
                tx_hash=self.tx_hash,
                block_number=block_number,
                gas_used=gas_used,
            )

        logger.warning(f"TX REVERTED [{self.operation}]: {self.tx_hash}")
        return Confirmation(
            outcome=TxOutcome.REVERTED,
            tx_hash=self.tx_hash,
            block_number=block_number,
            gas_used=gas_used,
            error=f"TX reverted: {self.tx_hash}",
        )


# ============================================================
# LEDGER CLIENT
# ============================================================

class LedgerClient:
    """
    Contract wrapper: one coroutine per remote capability.

    Usage:
        client = LedgerClient.from_settings(settings, account)
        count = await client.expense_count()
        pending = await client.register("alice")
        confirmation = await pending.await_confirmation()
    """

    def __init__(self, w3, contract_address: str, account=None, settings: Optional[LedgerSettings] = None):
        self._settings = settings or LedgerSettings()
        self._w3 = w3
        self._account = account
        self.contract_address = Web3.to_checksum_address(contract_address)
        self._contract = w3.eth.contract(address=self.contract_address, abi=EXPENSE_TRACKER_ABI)

    @classmethod
    def from_settings(cls, settings: LedgerSettings, account=None) -> "LedgerClient":
        """HTTP provider from settings. No network I/O until the first call."""
        w3 = Web3(Web3.HTTPProvider(settings.rpc_url, request_kwargs={"timeout": settings.rpc_timeout}))
        client = cls(w3, settings.contract_address, account=account, settings=settings)
        logger.info(
            f"Ledger client: {settings.network} via {settings.rpc_url} | "
            f"contract={client.contract_address[:10]}..."
        )
        return client

    @property
    def w3(self):
        return self._w3

    def use_account(self, account) -> None:
        """Swap the signer after a wallet account change."""
        self._account = account

    # ============================================================
    # READS
    # ============================================================

    async def _call(self, operation: str, fn_name: str, *args):
        def _execute():
            return getattr(self._contract.functions, fn_name)(*args).call()

        try:
            return await asyncio.get_running_loop().run_in_executor(None, _execute)
        except Exception as e:
            raise RemoteCallError(operation, f"{type(e).__name__}: {e}") from e

    @staticmethod
    def _checksum(operation: str, address: str) -> str:
        try:
            return Web3.to_checksum_address(address)
        except (ValueError, TypeError) as e:
            raise RemoteCallError(operation, f"bad address {address!r}: {e}") from e

    async def registered_person(self, address: str) -> Optional[PersonRecord]:
        """getPerson(address). None when the contract has no entry (zero wallet)."""
        addr = self._checksum("registered_person", address)
        result = await self._call("registered_person", "getPerson", addr)
        name, wallet = result[0], result[1]
        if not wallet or int(wallet, 16) == 0:
            return None
        return PersonRecord(address=Web3.to_checksum_address(wallet), name=name)

    async def expense_count(self) -> int:
        return int(await self._call("expense_count", "expenseCount"))

    async def expense_basic_info(self, index: int) -> tuple[int, str, int]:
        expense_id, label, timestamp = await self._call("expense_basic_info", "getExpenseBasicInfo", index)
        return int(expense_id), label, int(timestamp)

    async def expense_participant_addresses(self, index: int) -> list[str]:
        addresses = await self._call("expense_participant_addresses", "getExpenseParticipants", index)
        return list(addresses)

    async def amount_paid(self, index: int, address: str) -> int:
        addr = self._checksum("amount_paid", address)
        return int(await self._call("amount_paid", "getAmountPaid", index, addr))

    async def amount_owed(self, index: int, address: str) -> int:
        addr = self._checksum("amount_owed", address)
        return int(await self._call("amount_owed", "getAmountOwed", index, addr))

    async def all_registered_addresses(self) -> list[str]:
        """Registered addresses in contract order, duplicates removed."""
        addresses = await self._call("all_registered_addresses", "getAllRegisteredPeople")
        seen: set[str] = set()
        ordered = []
        for a in addresses:
            if a.lower() in seen:
                continue
            seen.add(a.lower())
            ordered.append(a)
        return ordered

    async def net_balance(self, address: str) -> int:
        addr = self._checksum("net_balance", address)
        return int(await self._call("net_balance", "getNetBalance", addr))

    # ============================================================
    # WRITES
    # ============================================================

    async def _transact(self, operation: str, fn_name: str, *args) -> PendingTransaction:
        """Build, sign and broadcast. Returns as soon as the node accepts the tx."""
        if self._account is None:
            raise RemoteCallError(operation, "no signing account configured")

        w3 = self._w3
        account = self._account
        settings = self._settings

        def _send():
            tx_fn = getattr(self._contract.functions, fn_name)(*args)
            nonce = w3.eth.get_transaction_count(account.address, "pending")
            tx = tx_fn.build_transaction({
                "from": account.address,
                "nonce": nonce,
                "gas": settings.fallback_gas,
                "gasPrice": w3.eth.gas_price,
                "chainId": settings.required_chain_id,
            })

            # Gas estimation + buffer
            try:
                gas_estimate = w3.eth.estimate_gas(tx)
                tx["gas"] = int(gas_estimate * settings.gas_buffer)
            except Exception as gas_err:
                logger.warning(
                    f"Gas estimation failed for {operation}, using default {settings.fallback_gas}: {gas_err}"
                )

            signed = account.sign_transaction(tx)
            tx_hash = w3.eth.send_raw_transaction(signed.raw_transaction)
            return Web3.to_hex(tx_hash)

        try:
            tx_hash = await asyncio.get_running_loop().run_in_executor(None, _send)
        except Exception as e:
            logger.warning(f"TX ERROR [{operation}]: {type(e).__name__}: {e}")
            raise RemoteCallError(operation, f"{type(e).__name__}: {e}") from e

        logger.info(f"TX SENT [{operation}]: {tx_hash[:18]}... from {account.address[:10]}...")
        return PendingTransaction(w3, tx_hash, operation, timeout=settings.confirmation_timeout)

    async def register(self, name: str) -> PendingTransaction:
        name = (name or "").strip()
        if not name:
            raise EmptyName()
        return await self._transact("register", "registerPerson", name)

    async def submit_expense(
        self,
        label: str,
        addresses: Sequence[str],
        paid_amounts: Sequence[int],
        owed_amounts: Sequence[int],
    ) -> PendingTransaction:
        checksummed = [self._checksum("submit_expense", a) for a in addresses]
        return await self._transact(
            "submit_expense",
            "addExpense",
            label,
            checksummed,
            [int(x) for x in paid_amounts],
            [int(x) for x in owed_amounts],
        )
