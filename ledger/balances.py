"""
Balance view and display-boundary conversions.

Net balances are looked up from the snapshot's Person entries, which carry
the contract's own getNetBalance() figure. Nothing here recomputes a balance
from expense history.

Wei <-> ETH decimal conversion happens only in format_amount / parse_amount.
"""

from decimal import Decimal, InvalidOperation
from typing import Optional, Union

from web3 import Web3

from .errors import InvalidInput
from .models import LedgerSnapshot


def net_balance_of(snapshot: LedgerSnapshot, address: str) -> Optional[int]:
    """Contract-computed net balance in wei, or None if the address is not a known person."""
    person = snapshot.person(address)
    return person.net_balance if person is not None else None


def display_name(snapshot: LedgerSnapshot, address: str) -> str:
    person = snapshot.person(address)
    if person is not None and person.name:
        return person.name
    return f"{address[:8]}..."


def format_amount(wei: int, places: Optional[int] = None) -> str:
    """Signed wei → ETH decimal string. `places` fixes the number of decimals."""
    value = Web3.from_wei(abs(int(wei)), "ether")
    amount = Decimal(value)
    if wei < 0:
        amount = amount.copy_negate()
    if places is not None:
        return f"{amount:.{places}f}"
    # from_wei already yields the shortest exact form
    return format(amount, "f")


def parse_amount(value: Union[str, int, float, Decimal], field: str = "amount") -> int:
    """
    ETH decimal → wei. Keeps the sign so that negative input reaches the
    submitter's validation instead of failing obscurely here.
    """
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as e:
        raise InvalidInput(field, f"not a number: {value!r}") from e
    if not amount.is_finite():
        raise InvalidInput(field, f"not a number: {value!r}")

    try:
        wei = Web3.to_wei(abs(amount), "ether")
    except ValueError as e:
        raise InvalidInput(field, str(e)) from e
    return -wei if amount < 0 else wei


def summarize(snapshot: LedgerSnapshot, places: int = 5) -> list[dict]:
    """Rows for a people/balance table."""
    rows = []
    for p in snapshot.people:
        rows.append({
            "name": p.name,
            "address": p.address,
            "short_address": f"{p.address[:8]}...",
            "net_balance_wei": str(p.net_balance),
            "net_balance": format_amount(p.net_balance, places),
            "in_credit": p.net_balance >= 0,
        })
    return rows
