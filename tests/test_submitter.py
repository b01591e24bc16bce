import asyncio

import pytest

from fakes import ALICE, BOB, CAROL, ETH
from ledger.errors import AlreadyRegistered, InvalidInput, NotReady, TransactionFailed, WrongChain
from ledger.models import Participant, TxOutcome
from ledger.session import RegistrationStatus, SessionState
from ledger.submitter import TransactionSubmitter, validate_expense

SEPOLIA = 11155111


@pytest.fixture
def submitter(ledger, engine, ready_session):
    return TransactionSubmitter(ledger, engine, ready_session)


def _unregistered_session(identity=CAROL):
    session = SessionState(SEPOLIA)
    session.connected(identity)
    session.validate_chain(SEPOLIA)
    session.identity_resolved()
    session.set_registered(False)
    return session


# ============================================================
# submit_expense
# ============================================================

def test_dinner_is_visible_after_confirmation(ledger, submitter):
    snap = asyncio.run(submitter.submit_expense(
        "Dinner",
        [Participant(ALICE, 10, 5), Participant(BOB, 0, 5)],
    ))

    dinner = snap.expenses[-1]
    assert dinner.label == "Dinner"
    assert dinner.participants == (Participant(ALICE, 10, 5), Participant(BOB, 0, 5))
    assert dinner.is_balanced
    assert len(ledger.writes) == 1


def test_imbalanced_expense_is_submitted(ledger, submitter):
    snap = asyncio.run(submitter.submit_expense(
        "Tip", [Participant(ALICE, 7 * ETH, 0), Participant(BOB, 0, 5 * ETH)],
    ))

    tip = snap.expenses[-1]
    assert not tip.is_balanced
    assert tip.imbalance == 2 * ETH


@pytest.mark.parametrize("participants, field", [
    ([Participant(ALICE, -1, 0)], "participants[0].amount_paid"),
    ([Participant(ALICE, 5, 0), Participant(BOB, 0, -5)], "participants[1].amount_owed"),
    ([Participant("  ", 1, 1)], "participants[0].address"),
    ([Participant("not-an-address", 1, 1)], "participants[0].address"),
    ([Participant(ALICE, 1, 1), Participant(ALICE.lower(), 1, 1)], "participants[1].address"),
    ([Participant(ALICE, 1.5, 1)], "participants[0].amount_paid"),
    ([], "participants"),
])
def test_invalid_participants_make_no_remote_call(ledger, submitter, participants, field):
    with pytest.raises(InvalidInput) as exc:
        asyncio.run(submitter.submit_expense("Dinner", participants))

    assert exc.value.field == field
    assert ledger.calls == []


def test_blank_label_is_rejected(ledger, submitter):
    with pytest.raises(InvalidInput) as exc:
        asyncio.run(submitter.submit_expense("   ", [Participant(ALICE, 1, 1)]))

    assert exc.value.field == "label"
    assert ledger.calls == []


def test_validate_expense_keeps_label_and_trims_addresses():
    label, cleaned = validate_expense("  Lunch ", [Participant(f" {ALICE} ", 2, 1)])

    assert label == "  Lunch "
    assert cleaned == [Participant(ALICE, 2, 1)]


def test_label_is_submitted_as_given(ledger, submitter):
    snap = asyncio.run(submitter.submit_expense(" Dinner ", [Participant(ALICE, 1, 1)]))

    assert ledger.writes == [("submit_expense", " Dinner ", (ALICE,))]
    assert snap.expenses[-1].label == " Dinner "


@pytest.mark.parametrize("outcome", [TxOutcome.REVERTED, TxOutcome.TIMED_OUT])
def test_unconfirmed_expense_produces_no_snapshot(ledger, submitter, outcome):
    ledger.next_outcome = outcome

    with pytest.raises(TransactionFailed) as exc:
        asyncio.run(submitter.submit_expense("Dinner", [Participant(ALICE, 1, 1)]))

    assert exc.value.cause == outcome
    assert exc.value.tx_hash
    assert len(ledger.expenses) == 2
    assert ("expense_count",) not in ledger.calls


def test_rejected_broadcast_is_transaction_failed(ledger, submitter):
    ledger.reject_submit = True

    with pytest.raises(TransactionFailed) as exc:
        asyncio.run(submitter.submit_expense("Dinner", [Participant(ALICE, 1, 1)]))

    assert exc.value.cause == TxOutcome.REJECTED
    assert "user rejected" in exc.value.reason


def test_lost_receipt_is_reported_as_timed_out(ledger, submitter):
    ledger.receipt_error = "connection reset"

    with pytest.raises(TransactionFailed) as exc:
        asyncio.run(submitter.submit_expense("Dinner", [Participant(ALICE, 1, 1)]))

    assert exc.value.cause == TxOutcome.TIMED_OUT
    assert exc.value.tx_hash
    assert "connection reset" in exc.value.reason
    assert len(ledger.expenses) == 2
    assert "connection reset" in submitter.get_status()["last_error"]


def test_expense_requires_registration(ledger, engine):
    submitter = TransactionSubmitter(ledger, engine, _unregistered_session())

    with pytest.raises(NotReady):
        asyncio.run(submitter.submit_expense("Dinner", [Participant(ALICE, 1, 1)]))

    assert ledger.writes == []


def test_wrong_chain_blocks_submission(ledger, engine):
    session = SessionState(SEPOLIA)
    session.connected(ALICE)
    with pytest.raises(WrongChain):
        session.validate_chain(1)
    submitter = TransactionSubmitter(ledger, engine, session)

    with pytest.raises(WrongChain):
        asyncio.run(submitter.submit_expense("Dinner", [Participant(ALICE, 1, 1)]))
    with pytest.raises(WrongChain):
        asyncio.run(submitter.register("carol"))

    assert ledger.calls == []


# ============================================================
# register
# ============================================================

def test_register_marks_session_and_resyncs(ledger, engine):
    ledger.signer = CAROL
    session = _unregistered_session()
    submitter = TransactionSubmitter(ledger, engine, session)

    snap = asyncio.run(submitter.register("  carol "))

    assert session.registration == RegistrationStatus.REGISTERED
    assert snap.person(CAROL).name == "carol"
    assert ("register", "carol") in ledger.calls


@pytest.mark.parametrize("name", ["", "   ", None])
def test_blank_name_leaves_session_untouched(ledger, engine, name):
    session = _unregistered_session()
    submitter = TransactionSubmitter(ledger, engine, session)

    with pytest.raises(InvalidInput):
        asyncio.run(submitter.register(name))

    assert session.registration == RegistrationStatus.UNREGISTERED
    assert ledger.calls == []


@pytest.mark.parametrize("outcome", [TxOutcome.REVERTED, TxOutcome.TIMED_OUT])
def test_failed_registration_restores_state(ledger, engine, outcome):
    ledger.next_outcome = outcome
    session = _unregistered_session()
    submitter = TransactionSubmitter(ledger, engine, session)

    with pytest.raises(TransactionFailed) as exc:
        asyncio.run(submitter.register("carol"))

    assert exc.value.cause == outcome
    assert session.registration == RegistrationStatus.UNREGISTERED
    assert CAROL not in ledger.people


def test_rejected_registration_restores_state(ledger, engine):
    ledger.reject_submit = True
    session = _unregistered_session()
    submitter = TransactionSubmitter(ledger, engine, session)

    with pytest.raises(TransactionFailed) as exc:
        asyncio.run(submitter.register("carol"))

    assert exc.value.cause == TxOutcome.REJECTED
    assert exc.value.tx_hash == ""
    assert session.registration == RegistrationStatus.UNREGISTERED
    assert ("expense_count",) not in ledger.calls


def test_register_twice_is_refused(ledger, submitter):
    with pytest.raises(AlreadyRegistered):
        asyncio.run(submitter.register("alice again"))

    assert ledger.writes == []


def test_status_counts_confirmed_transactions(ledger, submitter):
    asyncio.run(submitter.submit_expense("Dinner", [Participant(ALICE, 1, 1)]))

    assert submitter.get_status()["tx_count"] == 1
