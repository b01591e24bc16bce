"""
Expense Ledger API Server - FastAPI Backend

Endpoints:
- GET  /health              Heartbeat
- GET  /session             Session phase, identity, registration, wrong-chain info
- GET  /snapshot            Full ledger snapshot (people, expenses, warnings)
- GET  /people              People table with net balances
- GET  /expenses            Expense history
- GET  /expenses/{id}       One expense by contract id
- GET  /balance/{address}   Net balance of one person
- POST /refresh             Full rebuild from the contract
- POST /register            Register the connected wallet under a name
- POST /expenses            Record a new expense

Amounts go out as both wei strings and ETH decimal strings; they come in as
ETH decimal strings and are converted to wei here, at the boundary.
"""

import os
import logging
from typing import Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from ledger.balances import display_name, format_amount, parse_amount, summarize
from ledger.errors import (
    InvalidInput, LedgerError, RemoteCallError, SessionError, TransactionFailed, WrongChain,
)
from ledger.models import Expense, LedgerSnapshot, Participant
from ledger.settings import LedgerSettings

logger = logging.getLogger("ledger.api")


# ============================================================
# MODELS
# ============================================================

class RegisterRequest(BaseModel):
    name: str = Field(..., max_length=200)


class ParticipantIn(BaseModel):
    address: str = Field(..., max_length=100)
    amount_paid: str = Field("0", max_length=80)    # ETH, decimal string
    amount_owed: str = Field("0", max_length=80)


class ExpenseRequest(BaseModel):
    label: str = Field(..., max_length=500)
    participants: list[ParticipantIn]


class PersonOut(BaseModel):
    name: str
    address: str
    short_address: str
    net_balance_wei: str
    net_balance: str
    in_credit: bool


class ParticipantOut(BaseModel):
    address: str
    name: str
    amount_paid_wei: str
    amount_owed_wei: str
    amount_paid: str
    amount_owed: str
    net: str


class ExpenseOut(BaseModel):
    index: int
    id: int
    label: str
    timestamp: str
    participants: list[ParticipantOut]
    is_balanced: bool


class WarningOut(BaseModel):
    kind: str
    reason: str
    index: Optional[int] = None
    address: Optional[str] = None


class SnapshotOut(BaseModel):
    people: list[PersonOut]
    expenses: list[ExpenseOut]
    warnings: list[WarningOut]
    built_at: float


class BalanceOut(BaseModel):
    address: str
    name: str
    net_balance_wei: str
    net_balance: str


# ============================================================
# SERIALIZATION
# ============================================================

def _expense_out(snapshot: LedgerSnapshot, expense: Expense) -> ExpenseOut:
    return ExpenseOut(
        index=expense.index,
        id=expense.id,
        label=expense.label,
        timestamp=expense.timestamp.isoformat(),
        participants=[
            ParticipantOut(
                address=p.address,
                name=display_name(snapshot, p.address),
                amount_paid_wei=str(p.amount_paid),
                amount_owed_wei=str(p.amount_owed),
                amount_paid=format_amount(p.amount_paid),
                amount_owed=format_amount(p.amount_owed),
                net=format_amount(p.net),
            )
            for p in expense.participants
        ],
        is_balanced=expense.is_balanced,
    )


def _snapshot_out(snapshot: LedgerSnapshot) -> SnapshotOut:
    return SnapshotOut(
        people=[PersonOut(**row) for row in summarize(snapshot)],
        expenses=[_expense_out(snapshot, e) for e in snapshot.expenses],
        warnings=[WarningOut(**w.to_dict()) for w in snapshot.warnings],
        built_at=snapshot.built_at,
    )


def _http_error(e: LedgerError, settings: Optional[LedgerSettings] = None) -> HTTPException:
    """Map the ledger error taxonomy onto distinguishable HTTP statuses."""
    if isinstance(e, InvalidInput):
        return HTTPException(400, {"error": "invalid_input", "field": e.field, "reason": e.reason})
    if isinstance(e, WrongChain):
        return HTTPException(409, {"error": "wrong_chain", "expected": e.expected, "actual": e.actual})
    if isinstance(e, SessionError):
        return HTTPException(409, {"error": "session", "reason": str(e)})
    if isinstance(e, TransactionFailed):
        explorer_url = settings.explorer_tx_url(e.tx_hash) if settings and e.tx_hash else ""
        return HTTPException(502, {"error": "transaction_failed", "cause": e.cause.value,
                                   "tx_hash": e.tx_hash, "explorer_url": explorer_url,
                                   "reason": e.reason})
    if isinstance(e, RemoteCallError):
        return HTTPException(503, {"error": "remote_call", "operation": e.operation, "reason": e.reason})
    return HTTPException(500, {"error": "ledger", "reason": str(e)[:200]})


# ============================================================
# APP
# ============================================================

def create_app(tracker, settings: Optional[LedgerSettings] = None) -> FastAPI:
    """Create FastAPI app wired to an ExpenseTracker. `settings` adds explorer links to tx errors."""
    app = FastAPI(
        title="expense ledger",
        description="Shared expenses, settled on-chain.",
        version="0.1.0",
    )

    # CORS: allow all in dev, restrict in production via CORS_ORIGINS env var
    cors_origins = os.getenv("CORS_ORIGINS", "*").split(",")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ============================================================
    # ROUTES
    # ============================================================

    @app.get("/health")
    async def health():
        """Heartbeat endpoint."""
        status = tracker.get_status()
        return {
            "phase": status["session"]["phase"],
            "registered": status["session"]["registered"],
            "has_snapshot": status["has_snapshot"],
            "last_error": status["last_error"],
        }

    @app.get("/session")
    async def session():
        return tracker.session.get_status()

    @app.get("/snapshot", response_model=SnapshotOut)
    async def snapshot():
        return _snapshot_out(tracker.snapshot)

    @app.get("/people", response_model=list[PersonOut])
    async def people():
        return [PersonOut(**row) for row in summarize(tracker.snapshot)]

    @app.get("/expenses", response_model=list[ExpenseOut])
    async def expenses():
        snap = tracker.snapshot
        return [_expense_out(snap, e) for e in snap.expenses]

    @app.get("/expenses/{expense_id}", response_model=ExpenseOut)
    async def expense(expense_id: int):
        snap = tracker.snapshot
        found = snap.expense(expense_id)
        if found is None:
            raise HTTPException(404, "No such expense in the current snapshot")
        return _expense_out(snap, found)

    @app.get("/balance/{address}", response_model=BalanceOut)
    async def balance(address: str):
        net = tracker.net_balance_of(address)
        if net is None:
            raise HTTPException(404, "Not a registered person in the current snapshot")
        person = tracker.snapshot.person(address)
        return BalanceOut(
            address=person.address,
            name=person.name,
            net_balance_wei=str(net),
            net_balance=format_amount(net),
        )

    @app.post("/refresh", response_model=SnapshotOut)
    async def refresh():
        try:
            snap = await tracker.refresh()
        except LedgerError as e:
            raise _http_error(e, settings)
        return _snapshot_out(snap)

    @app.post("/register", response_model=SnapshotOut)
    async def register(req: RegisterRequest):
        try:
            snap = await tracker.register(req.name)
        except LedgerError as e:
            logger.warning(f"Registration failed: {e}")
            raise _http_error(e, settings)
        return _snapshot_out(snap)

    @app.post("/expenses", response_model=SnapshotOut)
    async def add_expense(req: ExpenseRequest):
        try:
            participants = [
                Participant(
                    address=p.address,
                    amount_paid=parse_amount(p.amount_paid, f"participants[{i}].amount_paid"),
                    amount_owed=parse_amount(p.amount_owed, f"participants[{i}].amount_owed"),
                )
                for i, p in enumerate(req.participants)
            ]
            snap = await tracker.submit_expense(req.label, participants)
        except LedgerError as e:
            logger.warning(f"Expense '{req.label[:40]}' failed: {e}")
            raise _http_error(e, settings)
        return _snapshot_out(snap)

    return app
