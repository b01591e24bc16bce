import asyncio
from unittest.mock import MagicMock

import pytest

from fakes import ALICE, ALICE_KEY, BOB, BOB_KEY
from ledger.errors import NotReady
from ledger.settings import LedgerSettings
from ledger.wallet import LocalWallet, Web3ChainIdentity


def test_request_accounts_returns_address():
    assert asyncio.run(LocalWallet(ALICE_KEY).request_accounts()) == ALICE


def test_request_accounts_without_key():
    with pytest.raises(NotReady):
        asyncio.run(LocalWallet().request_accounts())


def test_invalid_key_does_not_leak():
    with pytest.raises(ValueError) as exc:
        LocalWallet("0xdeadbeef")
    assert "deadbeef" not in str(exc.value)


def test_subscribe_and_unsubscribe():
    wallet = LocalWallet(ALICE_KEY)
    seen = []
    unsubscribe = wallet.subscribe(seen.append)

    wallet.switch_account(BOB_KEY)
    unsubscribe()
    wallet.switch_account(None)

    assert seen == [[BOB]]
    assert wallet.account is None


def test_chain_identity_reads_node():
    w3 = MagicMock()
    w3.eth.chain_id = 11155111

    assert asyncio.run(Web3ChainIdentity(w3).chain_id()) == 11155111


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("LEDGER_NETWORK", "sepolia")
    monkeypatch.setenv("SEPOLIA_RPC_URL", "http://localhost:8545")
    monkeypatch.setenv("LEDGER_MAX_CONCURRENCY", "0")
    monkeypatch.setenv("LEDGER_CONFIRMATION_TIMEOUT", "30")

    cfg = LedgerSettings.from_env()

    assert cfg.rpc_url == "http://localhost:8545"
    assert cfg.required_chain_id == 11155111
    assert cfg.max_concurrency == 1
    assert cfg.confirmation_timeout == 30
    assert cfg.explorer_tx_url("0xabc") == "https://sepolia.etherscan.io/tx/0xabc"


def test_settings_reject_unknown_network(monkeypatch):
    monkeypatch.setenv("LEDGER_NETWORK", "moonbase")

    with pytest.raises(ValueError):
        LedgerSettings.from_env()
