import asyncio
from unittest.mock import MagicMock

import pytest
from web3.exceptions import TimeExhausted

from fakes import ALICE, ALICE_KEY, BOB
from eth_account import Account
from ledger.chain import NULL_ADDRESS, LedgerClient, PendingTransaction
from ledger.errors import EmptyName, RemoteCallError
from ledger.models import PersonRecord, TxOutcome
from ledger.settings import LedgerSettings

CONTRACT = "0xea9edb42af0495b5505a7c0b1ac1aa1832ed0fe5"


@pytest.fixture
def w3():
    return MagicMock()


@pytest.fixture
def functions(w3):
    return w3.eth.contract.return_value.functions


@pytest.fixture
def client(w3):
    return LedgerClient(w3, CONTRACT, account=Account.from_key(ALICE_KEY), settings=LedgerSettings())


def test_contract_address_is_checksummed(client, w3):
    assert client.contract_address.lower() == CONTRACT
    _, kwargs = w3.eth.contract.call_args
    assert kwargs["address"] == client.contract_address


def test_reads_are_typed(client, functions):
    functions.expenseCount.return_value.call.return_value = 3
    functions.getExpenseBasicInfo.return_value.call.return_value = (7, "Dinner", 1_700_000_000)
    functions.getExpenseParticipants.return_value.call.return_value = [ALICE, BOB]
    functions.getNetBalance.return_value.call.return_value = -5

    assert asyncio.run(client.expense_count()) == 3
    assert asyncio.run(client.expense_basic_info(0)) == (7, "Dinner", 1_700_000_000)
    assert asyncio.run(client.expense_participant_addresses(0)) == [ALICE, BOB]
    assert asyncio.run(client.net_balance(ALICE.lower())) == -5
    functions.getNetBalance.assert_called_with(ALICE)


def test_registered_person(client, functions):
    functions.getPerson.return_value.call.return_value = ("alice", ALICE)
    assert asyncio.run(client.registered_person(ALICE)) == PersonRecord(ALICE, "alice")

    functions.getPerson.return_value.call.return_value = ("", NULL_ADDRESS)
    assert asyncio.run(client.registered_person(BOB)) is None


def test_registered_addresses_are_deduplicated(client, functions):
    functions.getAllRegisteredPeople.return_value.call.return_value = [ALICE, BOB, ALICE]

    assert asyncio.run(client.all_registered_addresses()) == [ALICE, BOB]


def test_call_failure_becomes_remote_call_error(client, functions):
    functions.getAmountPaid.return_value.call.side_effect = ValueError("execution reverted")

    with pytest.raises(RemoteCallError) as exc:
        asyncio.run(client.amount_paid(0, ALICE))

    assert exc.value.operation == "amount_paid"
    assert "execution reverted" in exc.value.reason


def test_bad_address_is_remote_call_error(client, functions):
    with pytest.raises(RemoteCallError):
        asyncio.run(client.amount_owed(0, "0x1234"))
    functions.getAmountOwed.assert_not_called()


def test_blank_name_never_reaches_the_node(client, w3):
    with pytest.raises(EmptyName):
        asyncio.run(client.register("   "))
    w3.eth.send_raw_transaction.assert_not_called()


def test_register_signs_and_broadcasts(client, w3, functions):
    w3.eth.get_transaction_count.return_value = 4
    w3.eth.gas_price = 1_000_000_000
    w3.eth.estimate_gas.return_value = 100_000
    functions.registerPerson.return_value.build_transaction.side_effect = lambda params: {
        **params, "to": client.contract_address, "data": "0x", "value": 0,
    }
    w3.eth.send_raw_transaction.return_value = bytes.fromhex("ab" * 32)

    pending = asyncio.run(client.register(" alice "))

    functions.registerPerson.assert_called_with("alice")
    assert pending.tx_hash == "0x" + "ab" * 32
    w3.eth.get_transaction_count.assert_called_with(ALICE, "pending")
    assert w3.eth.send_raw_transaction.called


def test_broadcast_failure_is_remote_call_error(client, w3, functions):
    functions.addExpense.return_value.build_transaction.side_effect = ValueError("insufficient funds")

    with pytest.raises(RemoteCallError) as exc:
        asyncio.run(client.submit_expense("Dinner", [ALICE], [1], [1]))

    assert exc.value.operation == "submit_expense"


def test_write_without_account_fails(w3):
    client = LedgerClient(w3, CONTRACT)

    with pytest.raises(RemoteCallError):
        asyncio.run(client.register("alice"))


@pytest.mark.parametrize("status, outcome", [(1, TxOutcome.CONFIRMED), (0, TxOutcome.REVERTED)])
def test_await_confirmation_reads_receipt_status(w3, status, outcome):
    w3.eth.wait_for_transaction_receipt.return_value = {"status": status, "blockNumber": 9, "gasUsed": 21000}
    pending = PendingTransaction(w3, "0xabc", "register", timeout=5)

    confirmation = asyncio.run(pending.await_confirmation())

    assert confirmation.outcome == outcome
    assert confirmation.block_number == 9
    w3.eth.wait_for_transaction_receipt.assert_called_with("0xabc", timeout=5)


def test_await_confirmation_times_out(w3):
    w3.eth.wait_for_transaction_receipt.side_effect = TimeExhausted("slow")
    pending = PendingTransaction(w3, "0xabc", "register")

    confirmation = asyncio.run(pending.await_confirmation(timeout=1))

    assert confirmation.outcome == TxOutcome.TIMED_OUT
    assert not confirmation.confirmed


def test_receipt_lookup_error_is_remote_call_error(w3):
    w3.eth.wait_for_transaction_receipt.side_effect = ConnectionError("reset")
    pending = PendingTransaction(w3, "0xabc", "submit_expense")

    with pytest.raises(RemoteCallError):
        asyncio.run(pending.await_confirmation())


def test_from_settings_builds_http_client():
    settings = LedgerSettings(rpc_url="http://localhost:8545")

    client = LedgerClient.from_settings(settings, Account.from_key(ALICE_KEY))

    assert client.w3.provider.endpoint_uri == "http://localhost:8545"
    assert client.contract_address.lower() == CONTRACT
