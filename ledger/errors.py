"""
Ledger error taxonomy.

- InvalidInput       client-side validation failed, no RPC was made
- RemoteCallError    a single contract read or broadcast failed
- TransactionFailed  a mutation did not confirm (reverted / timed out / rejected)
- WrongChain         connected network is not the required one; session halted
- SessionError       operation not legal in the current session phase

"Not registered" is an expected absence, returned as None, never raised.
"""

from typing import Optional

from .models import TxOutcome


class LedgerError(Exception):
    """Base for every error surfaced by the ledger client."""
    pass


class InvalidInput(LedgerError):
    """Raised before any network call when user input breaks a client invariant."""

    def __init__(self, field: str, reason: str = "invalid value"):
        self.field = field
        self.reason = reason
        super().__init__(f"{field}: {reason}")


class EmptyName(InvalidInput):
    def __init__(self):
        super().__init__("name", "must not be blank")


class RemoteCallError(LedgerError):
    """A contract call failed. Carries the operation name for warning lists."""

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"{operation} failed: {reason}")


class TransactionFailed(LedgerError):
    def __init__(self, cause: TxOutcome, tx_hash: str = "", reason: str = ""):
        self.cause = cause
        self.tx_hash = tx_hash
        self.reason = reason
        msg = f"transaction {cause.value}"
        if tx_hash:
            msg += f" ({tx_hash})"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class WrongChain(LedgerError):
    """Fatal to the session until the wallet reconnects on the required chain."""

    def __init__(self, expected: int, actual: Optional[int]):
        self.expected = expected
        self.actual = actual
        super().__init__(f"connected to chain {actual}, expected {expected}")


class SessionError(LedgerError):
    pass


class NotReady(SessionError):
    pass


class AlreadyRegistered(SessionError):
    pass
