import pytest

from fakes import ALICE, ALICE_KEY, BOB, CAROL, ETH, FakeLedger
from ledger.session import SessionState
from ledger.sync import SyncEngine
from ledger.tracker import ExpenseTracker
from ledger.wallet import LocalWallet, StaticChainIdentity

SEPOLIA = 11155111


@pytest.fixture
def ledger():
    """Two registered people and two expenses already on chain."""
    fake = FakeLedger()
    fake.add_person(ALICE, "alice")
    fake.add_person(BOB, "bob")
    fake.add_expense("Groceries", [(ALICE, 30 * ETH, 15 * ETH), (BOB, 0, 15 * ETH)])
    fake.add_expense("Taxi", [(BOB, 12 * ETH, 4 * ETH), (ALICE, 0, 4 * ETH), (CAROL, 0, 4 * ETH)])
    return fake


@pytest.fixture
def engine(ledger):
    return SyncEngine(ledger, max_concurrency=2)


@pytest.fixture
def ready_session():
    session = SessionState(SEPOLIA)
    session.connected(ALICE)
    session.validate_chain(SEPOLIA)
    session.identity_resolved()
    session.set_registered(True)
    return session


@pytest.fixture
def wallet():
    return LocalWallet(ALICE_KEY)


@pytest.fixture
def tracker(ledger, wallet):
    return ExpenseTracker(ledger, wallet, StaticChainIdentity(SEPOLIA), required_chain_id=SEPOLIA)
