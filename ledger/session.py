"""
Session State Machine

    DISCONNECTED → CONNECTED → CHAIN_VALIDATED → READY
    once READY:   UNREGISTERED ⇄ REGISTERING → REGISTERED

A chain mismatch halts the session at CONNECTED with a WrongChain condition;
only a fresh connection (or account change) clears it. An account change
drops back to CONNECTED and clears chain validation and registration.
"""

import logging
from enum import Enum
from typing import Optional

from .errors import AlreadyRegistered, NotReady, WrongChain

logger = logging.getLogger("ledger.session")


class SessionPhase(Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    CHAIN_VALIDATED = "chain_validated"
    READY = "ready"


class RegistrationStatus(Enum):
    UNKNOWN = "unknown"              # not READY yet, lookup not done
    UNREGISTERED = "unregistered"
    REGISTERING = "registering"
    REGISTERED = "registered"


class SessionState:
    """
    Tracks the connect/register lifecycle and gates which operations are legal.

    Usage:
        session = SessionState(required_chain_id=11155111)
        session.connected("0xabc...")
        session.validate_chain(11155111)
        session.identity_resolved()
        session.set_registered(False)
        session.require_ready()
    """

    def __init__(self, required_chain_id: int):
        self.required_chain_id = required_chain_id
        self.phase = SessionPhase.DISCONNECTED
        self.registration = RegistrationStatus.UNKNOWN
        self.identity: str = ""
        self.chain_id: Optional[int] = None
        self.halted: Optional[WrongChain] = None

    # ============================================================
    # CONNECTION LIFECYCLE
    # ============================================================

    def connected(self, identity: str) -> None:
        if not identity:
            raise NotReady("wallet returned no account")
        self.identity = identity
        self.chain_id = None
        self.halted = None
        self.registration = RegistrationStatus.UNKNOWN
        self._move(SessionPhase.CONNECTED)

    def validate_chain(self, chain_id: int) -> None:
        """Raise WrongChain and halt on mismatch. No automatic retry."""
        if self.phase != SessionPhase.CONNECTED:
            raise NotReady(f"cannot validate chain from phase {self.phase.value}")
        self.chain_id = chain_id
        if chain_id != self.required_chain_id:
            self.halted = WrongChain(expected=self.required_chain_id, actual=chain_id)
            logger.error(f"Wrong chain: {self.halted}. Switch networks to continue.")
            raise self.halted
        self._move(SessionPhase.CHAIN_VALIDATED)

    def identity_resolved(self) -> None:
        if self.phase != SessionPhase.CHAIN_VALIDATED:
            raise NotReady(f"cannot resolve identity from phase {self.phase.value}")
        self._move(SessionPhase.READY)

    def account_changed(self, identity: str) -> None:
        """Wallet switched (or removed) its account. Downstream state is invalid."""
        logger.info(f"Account changed: {self._short(self.identity)} → {self._short(identity)}")
        if not identity:
            self.disconnect()
            return
        self.connected(identity)

    def disconnect(self) -> None:
        self.identity = ""
        self.chain_id = None
        self.halted = None
        self.registration = RegistrationStatus.UNKNOWN
        self._move(SessionPhase.DISCONNECTED)

    # ============================================================
    # REGISTRATION
    # ============================================================

    def set_registered(self, registered: bool) -> None:
        """Result of the on-chain registration lookup."""
        self.require_ready()
        self.registration = RegistrationStatus.REGISTERED if registered else RegistrationStatus.UNREGISTERED

    def begin_registration(self) -> None:
        self.require_ready()
        if self.registration == RegistrationStatus.REGISTERED:
            raise AlreadyRegistered(f"{self._short(self.identity)} is already registered")
        if self.registration == RegistrationStatus.REGISTERING:
            raise NotReady("a registration is already in flight")
        self.registration = RegistrationStatus.REGISTERING

    def complete_registration(self, identity: Optional[str] = None) -> None:
        """
        Registration transaction confirmed for `identity` (default: current).

        The transaction is on chain regardless of what the session did while
        it was pending. If the account changed meanwhile, the new identity's
        registration status is left as its own lookup found it.
        """
        identity = identity or self.identity
        if identity.lower() != self.identity.lower():
            logger.info(
                f"Registration of {self._short(identity)} confirmed after switching to "
                f"{self._short(self.identity)}; session unchanged"
            )
            return
        self.registration = RegistrationStatus.REGISTERED
        logger.info(f"Registered: {self._short(self.identity)}")

    def abort_registration(self, identity: Optional[str] = None) -> None:
        identity = identity or self.identity
        if identity.lower() == self.identity.lower() and self.registration == RegistrationStatus.REGISTERING:
            self.registration = RegistrationStatus.UNREGISTERED

    # ============================================================
    # GATES
    # ============================================================

    @property
    def is_ready(self) -> bool:
        return self.phase == SessionPhase.READY

    @property
    def registered(self) -> bool:
        return self.registration == RegistrationStatus.REGISTERED

    def require_ready(self) -> None:
        if self.halted is not None:
            raise self.halted
        if self.phase != SessionPhase.READY:
            raise NotReady(f"session is {self.phase.value}, not ready")

    def require_registered(self) -> None:
        self.require_ready()
        if not self.registered:
            raise NotReady("register before submitting expenses")

    # ============================================================
    # INTERNALS
    # ============================================================

    def _move(self, phase: SessionPhase) -> None:
        if phase != self.phase:
            logger.debug(f"Session: {self.phase.value} → {phase.value}")
        self.phase = phase

    @staticmethod
    def _short(address: str) -> str:
        return f"{address[:10]}..." if address else "<none>"

    def get_status(self) -> dict:
        return {
            "phase": self.phase.value,
            "identity": self.identity,
            "chain_id": self.chain_id,
            "required_chain_id": self.required_chain_id,
            "registration": self.registration.value,
            "registered": self.registered,
            "wrong_chain": str(self.halted) if self.halted else "",
        }
