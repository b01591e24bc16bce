"""
Sync Engine - Full Ledger Rebuild

Reconstructs people and expenses from many small contract reads.

Design:
- Expense indices read sequentially (index order = creation order)
- Participant amounts and people fetched with a bounded asyncio.gather fan-out
- Each fan-out branch returns its own (value, warning) slot; merged after the join
- Per-item failure → zeroed amounts / skipped index / dropped person + SyncWarning
- Top-level count/list failure → RemoteCallError (caller keeps its old snapshot)
- No diffing: every rebuild() returns a brand-new frozen snapshot
"""

import asyncio
import logging
import time
from typing import Optional

from .errors import RemoteCallError
from .models import (
    Expense, LedgerSnapshot, Participant, Person, SyncWarning, WarningKind,
    timestamp_to_datetime,
)

logger = logging.getLogger("ledger.sync")


def _first_failure(*results) -> Optional[RemoteCallError]:
    """Pick the first captured RemoteCallError; re-raise anything unexpected."""
    for r in results:
        if isinstance(r, RemoteCallError):
            return r
        if isinstance(r, BaseException):
            raise r
    return None


class SyncEngine:
    """
    Usage:
        engine = SyncEngine(client, max_concurrency=8)
        snapshot = await engine.rebuild()
        for w in snapshot.warnings: ...
    """

    def __init__(self, client, max_concurrency: int = 8):
        self._client = client
        self._max_concurrency = max(1, max_concurrency)
        self._last_rebuild_s: float = 0.0
        self._rebuild_count: int = 0

    async def rebuild(self) -> LedgerSnapshot:
        started = time.time()
        # Created per call so the engine is not bound to one event loop
        limiter = asyncio.Semaphore(self._max_concurrency)
        warnings: list[SyncWarning] = []

        expenses = await self._load_expenses(limiter, warnings)
        people = await self._load_people(limiter, warnings)

        snapshot = LedgerSnapshot(
            people=tuple(people),
            expenses=tuple(expenses),
            warnings=tuple(warnings),
        )

        self._rebuild_count += 1
        self._last_rebuild_s = time.time() - started
        log_fn = logger.info if snapshot.is_complete else logger.warning
        log_fn(
            f"Rebuild #{self._rebuild_count}: {len(people)} people, {len(expenses)} expenses "
            f"in {self._last_rebuild_s:.2f}s"
            + (f" | warnings={len(warnings)}" if warnings else "")
        )
        return snapshot

    # ============================================================
    # EXPENSES
    # ============================================================

    async def _load_expenses(self, limiter: asyncio.Semaphore, warnings: list) -> list[Expense]:
        count = await self._client.expense_count()
        loaded: list[Expense] = []

        for index in range(count):
            try:
                expense_id, label, raw_timestamp = await self._client.expense_basic_info(index)
                addresses = await self._client.expense_participant_addresses(index)
            except RemoteCallError as e:
                warnings.append(self._gap(index, str(e)))
                continue
            try:
                timestamp = timestamp_to_datetime(raw_timestamp)
            except (OverflowError, OSError, ValueError) as e:
                warnings.append(self._gap(index, f"bad timestamp {raw_timestamp!r}: {e}"))
                continue

            slots = await asyncio.gather(
                *(self._load_participant(limiter, index, a) for a in addresses)
            )
            participants = []
            for participant, warning in slots:
                participants.append(participant)
                if warning is not None:
                    warnings.append(warning)

            loaded.append(Expense(
                index=index,
                id=expense_id,
                label=label,
                timestamp=timestamp,
                participants=tuple(participants),
            ))

        return loaded

    @staticmethod
    def _gap(index: int, reason: str) -> SyncWarning:
        logger.warning(f"Expense {index} skipped: {reason}")
        return SyncWarning(kind=WarningKind.EXPENSE_GAP, reason=reason, index=index)

    async def _load_participant(
        self,
        limiter: asyncio.Semaphore,
        index: int,
        address: str,
    ) -> tuple[Participant, Optional[SyncWarning]]:
        async with limiter:
            paid, owed = await asyncio.gather(
                self._client.amount_paid(index, address),
                self._client.amount_owed(index, address),
                return_exceptions=True,
            )

        failure = _first_failure(paid, owed)
        if failure is not None:
            logger.warning(f"Amounts for {address[:10]}... in expense {index} zeroed: {failure}")
            warning = SyncWarning(
                kind=WarningKind.PARTICIPANT_AMOUNTS,
                reason=str(failure),
                index=index,
                address=address,
            )
            return Participant(address=address, amount_paid=0, amount_owed=0), warning

        return Participant(address=address, amount_paid=paid, amount_owed=owed), None

    # ============================================================
    # PEOPLE
    # ============================================================

    async def _load_people(self, limiter: asyncio.Semaphore, warnings: list) -> list[Person]:
        addresses = await self._client.all_registered_addresses()
        slots = await asyncio.gather(
            *(self._load_person(limiter, a) for a in addresses)
        )
        people = []
        for person, warning in slots:
            if person is not None:
                people.append(person)
            if warning is not None:
                warnings.append(warning)
        return people

    async def _load_person(
        self,
        limiter: asyncio.Semaphore,
        address: str,
    ) -> tuple[Optional[Person], Optional[SyncWarning]]:
        async with limiter:
            record, balance = await asyncio.gather(
                self._client.registered_person(address),
                self._client.net_balance(address),
                return_exceptions=True,
            )

        failure = _first_failure(record, balance)
        if failure is not None:
            reason = str(failure)
        elif record is None:
            reason = "listed as registered but getPerson returned no entry"
        else:
            return Person(address=address, name=record.name, net_balance=balance), None

        logger.warning(f"Person {address[:10]}... left out: {reason}")
        return None, SyncWarning(kind=WarningKind.PERSON, reason=reason, address=address)

    def get_status(self) -> dict:
        return {
            "rebuild_count": self._rebuild_count,
            "last_rebuild_seconds": round(self._last_rebuild_s, 3),
            "max_concurrency": self._max_concurrency,
        }
