"""
Expense Tracker - session wiring

Connects the wallet collaborators, session state machine, sync engine and
submitter, and owns the one mutable reference the UI reads: the current
LedgerSnapshot. That reference is swapped only after a rebuild completes,
so readers always see a whole snapshot.
"""

import asyncio
import logging
from typing import Optional, Sequence

from .balances import net_balance_of
from .errors import LedgerError, RemoteCallError, WrongChain
from .models import EMPTY_SNAPSHOT, LedgerSnapshot, Participant
from .session import SessionState
from .submitter import TransactionSubmitter
from .sync import SyncEngine

logger = logging.getLogger("ledger.tracker")


class ExpenseTracker:
    """
    Usage:
        tracker = ExpenseTracker(client, wallet, chain_identity, required_chain_id=11155111)
        await tracker.connect()
        tracker.snapshot.people
        await tracker.submit_expense("Dinner", [Participant(a, paid, owed), ...])
        tracker.close()
    """

    def __init__(
        self,
        client,
        wallet,
        chain_identity,
        required_chain_id: int,
        max_concurrency: int = 8,
        confirmation_timeout: Optional[float] = None,
    ):
        self.client = client
        self.wallet = wallet
        self.chain_identity = chain_identity
        self.session = SessionState(required_chain_id)
        self.sync = SyncEngine(client, max_concurrency=max_concurrency)
        self.submitter = TransactionSubmitter(
            client, self.sync, self.session, confirmation_timeout=confirmation_timeout,
        )

        self.snapshot: LedgerSnapshot = EMPTY_SNAPSHOT
        self.last_error: str = ""
        self._unsubscribe = None
        self._revalidation: Optional[asyncio.Task] = None

    # ============================================================
    # LIFECYCLE
    # ============================================================

    async def connect(self) -> LedgerSnapshot:
        """Request the account, validate chain, look up registration, initial pull."""
        identity = await self.wallet.request_accounts()
        if self._unsubscribe is None:
            self._unsubscribe = self.wallet.subscribe(self._on_accounts_changed)
        self.session.connected(identity)
        return await self._validate_and_load()

    async def _validate_and_load(self) -> LedgerSnapshot:
        chain_id = await self.chain_identity.chain_id()
        self.session.validate_chain(chain_id)
        self.session.identity_resolved()
        self._sync_signer()

        person = await self.client.registered_person(self.session.identity)
        self.session.set_registered(person is not None)
        if person is not None:
            logger.info(f"Welcome back, {person.name} ({self.session.identity[:10]}...)")
        else:
            logger.info(f"{self.session.identity[:10]}... is not registered yet")

        return await self.refresh()

    def _sync_signer(self) -> None:
        account = getattr(self.wallet, "account", None)
        use_account = getattr(self.client, "use_account", None)
        if account is not None and use_account is not None:
            use_account(account)

    def _on_accounts_changed(self, accounts: list[str]) -> None:
        """Wallet notification. Schedules revalidation on the running loop."""
        identity = accounts[0] if accounts else ""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("Account change outside an event loop; call handle_account_change()")
            self.session.account_changed(identity)
            self.snapshot = EMPTY_SNAPSHOT
            return
        # Newest account wins
        if self._revalidation is not None and not self._revalidation.done():
            self._revalidation.cancel()
        self._revalidation = loop.create_task(self._revalidate(identity))

    async def _revalidate(self, identity: str) -> None:
        try:
            await self.handle_account_change(identity)
        except LedgerError as e:
            self.last_error = str(e)
            logger.warning(f"Revalidation after account change failed: {e}")

    async def handle_account_change(self, identity: str) -> LedgerSnapshot:
        """Identity changed: drop the snapshot, re-run validation and registration, rebuild."""
        self.session.account_changed(identity)
        self.snapshot = EMPTY_SNAPSHOT
        if not identity:
            return self.snapshot
        try:
            return await self._validate_and_load()
        except WrongChain as e:
            self.last_error = str(e)
            return self.snapshot

    async def wait_revalidation(self) -> None:
        if self._revalidation is not None:
            await self._revalidation

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self.wallet.close()
        self.session.disconnect()
        self.snapshot = EMPTY_SNAPSHOT

    # ============================================================
    # COMMANDS
    # ============================================================

    async def refresh(self) -> LedgerSnapshot:
        """Full rebuild. On failure the previous snapshot stays in place."""
        self.session.require_ready()
        try:
            snapshot = await self.sync.rebuild()
        except RemoteCallError as e:
            self.last_error = str(e)
            logger.warning(f"Rebuild failed, keeping previous snapshot: {e}")
            raise
        self._replace(snapshot)
        return snapshot

    async def register(self, name: str) -> LedgerSnapshot:
        snapshot = await self.submitter.register(name)
        self._replace(snapshot)
        return snapshot

    async def submit_expense(self, label: str, participants: Sequence[Participant]) -> LedgerSnapshot:
        snapshot = await self.submitter.submit_expense(label, participants)
        self._replace(snapshot)
        return snapshot

    def _replace(self, snapshot: LedgerSnapshot) -> None:
        self.snapshot = snapshot
        self.last_error = ""

    # ============================================================
    # QUERIES
    # ============================================================

    def net_balance_of(self, address: str) -> Optional[int]:
        return net_balance_of(self.snapshot, address)

    def get_status(self) -> dict:
        return {
            "session": self.session.get_status(),
            "sync": self.sync.get_status(),
            "submitter": self.submitter.get_status(),
            "has_snapshot": self.snapshot is not EMPTY_SNAPSHOT,
            "people": len(self.snapshot.people),
            "expenses": len(self.snapshot.expenses),
            "warnings": len(self.snapshot.warnings),
            "last_error": self.last_error,
        }
