"""
Transaction Submitter

validate → submit → await confirmation → full resync.

Validation runs before any RPC. A failed or unconfirmed transaction raises
TransactionFailed and produces no snapshot, so the caller's current view is
never partially updated.
"""

import logging
from typing import Optional, Sequence

from web3 import Web3

from .errors import InvalidInput, RemoteCallError, TransactionFailed
from .models import LedgerSnapshot, Participant, TxOutcome

logger = logging.getLogger("ledger.submitter")


def validate_expense(label: str, participants: Sequence[Participant]) -> tuple[str, list[Participant]]:
    """Return (label, trimmed participants) or raise InvalidInput. The label is sent as given."""
    label = label or ""
    if not label.strip():
        raise InvalidInput("label", "must not be blank")
    if not participants:
        raise InvalidInput("participants", "at least one participant is required")

    cleaned: list[Participant] = []
    seen: set[str] = set()
    for i, p in enumerate(participants):
        address = (p.address or "").strip()
        if not address:
            raise InvalidInput(f"participants[{i}].address", "must not be blank")
        if not Web3.is_address(address):
            raise InvalidInput(f"participants[{i}].address", f"not an address: {address!r}")
        if address.lower() in seen:
            raise InvalidInput(f"participants[{i}].address", "duplicate participant")
        seen.add(address.lower())

        for name in ("amount_paid", "amount_owed"):
            value = getattr(p, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise InvalidInput(f"participants[{i}].{name}", "must be an integer amount in wei")
            if value < 0:
                raise InvalidInput(f"participants[{i}].{name}", "must not be negative")

        cleaned.append(Participant(address=address, amount_paid=p.amount_paid, amount_owed=p.amount_owed))

    return label, cleaned


class TransactionSubmitter:
    """
    Usage:
        submitter = TransactionSubmitter(client, sync_engine, session)
        snapshot = await submitter.register("alice")
        snapshot = await submitter.submit_expense("Dinner", [Participant(a, 10, 5), ...])
    """

    def __init__(self, client, sync_engine, session, confirmation_timeout: Optional[float] = None):
        self._client = client
        self._sync = sync_engine
        self._session = session
        self._confirmation_timeout = confirmation_timeout
        self._tx_count: int = 0
        self._last_error: str = ""

    async def register(self, name: str) -> LedgerSnapshot:
        name = (name or "").strip()
        if not name:
            raise InvalidInput("name", "must not be blank")

        identity = self._session.identity
        self._session.begin_registration()
        try:
            await self._submit_and_confirm("register", self._client.register, name)
        except BaseException:
            self._session.abort_registration(identity)
            raise

        self._session.complete_registration(identity)
        return await self._sync.rebuild()

    async def submit_expense(self, label: str, participants: Sequence[Participant]) -> LedgerSnapshot:
        label, cleaned = validate_expense(label, participants)
        self._session.require_registered()

        total_paid = sum(p.amount_paid for p in cleaned)
        total_owed = sum(p.amount_owed for p in cleaned)
        if total_paid != total_owed:
            logger.warning(
                f"Expense '{label}' is not balanced: paid={total_paid} owed={total_owed} wei "
                f"(submitting anyway)"
            )

        await self._submit_and_confirm(
            "submit_expense",
            self._client.submit_expense,
            label,
            [p.address for p in cleaned],
            [p.amount_paid for p in cleaned],
            [p.amount_owed for p in cleaned],
        )
        return await self._sync.rebuild()

    async def _submit_and_confirm(self, operation: str, submit_fn, *args) -> None:
        try:
            pending = await submit_fn(*args)
        except RemoteCallError as e:
            self._last_error = str(e)
            raise TransactionFailed(TxOutcome.REJECTED, reason=e.reason) from e

        try:
            confirmation = await pending.await_confirmation(self._confirmation_timeout)
        except RemoteCallError as e:
            # Broadcast but receipt lookup broke: fate unknown
            self._last_error = str(e)
            raise TransactionFailed(TxOutcome.TIMED_OUT, tx_hash=pending.tx_hash, reason=e.reason) from e

        if confirmation.outcome != TxOutcome.CONFIRMED:
            self._last_error = confirmation.error or confirmation.outcome.value
            logger.warning(f"{operation} not confirmed: {confirmation.outcome.value} {confirmation.tx_hash}")
            raise TransactionFailed(
                confirmation.outcome,
                tx_hash=confirmation.tx_hash,
                reason=confirmation.error,
            )

        self._tx_count += 1
        logger.info(f"{operation} confirmed in block {confirmation.block_number}: {confirmation.tx_hash}")

    def get_status(self) -> dict:
        return {"tx_count": self._tx_count, "last_error": self._last_error}
