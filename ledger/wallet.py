"""
Wallet collaborators - identity and chain identity.

The tracker never reaches for a global wallet object. It is handed:
- an IdentityProvider: request_accounts(), subscribe(callback) → unsubscribe, close()
- a ChainIdentityProvider: chain_id()

LocalWallet signs with a private key held in process (from .env LEDGER_PRIVATE_KEY).
No passwords. Your key IS your identity.
"""

import asyncio
import logging
from typing import Callable, Optional, Protocol

from eth_account import Account

from .errors import NotReady, RemoteCallError

logger = logging.getLogger("ledger.wallet")

AccountListener = Callable[[list[str]], None]


class IdentityProvider(Protocol):
    async def request_accounts(self) -> str: ...

    def subscribe(self, callback: AccountListener) -> Callable[[], None]: ...

    def close(self) -> None: ...


class ChainIdentityProvider(Protocol):
    async def chain_id(self) -> int: ...


class LocalWallet:
    """
    Identity provider backed by an eth-account key.

    Usage:
        wallet = LocalWallet(os.getenv("LEDGER_PRIVATE_KEY"))
        address = await wallet.request_accounts()
        unsubscribe = wallet.subscribe(lambda accounts: ...)
        wallet.switch_account(other_key)   # listeners get [new_address]
    """

    def __init__(self, private_key: Optional[str] = None):
        self._account = self._load(private_key) if private_key else None
        self._listeners: list[AccountListener] = []

    @staticmethod
    def _load(private_key: str):
        try:
            return Account.from_key(private_key)
        except Exception as e:
            # Never echo the key itself
            logger.error(f"Invalid private key: {type(e).__name__}")
            raise ValueError("invalid private key") from e

    @property
    def account(self):
        """LocalAccount used for signing, or None when no key is loaded."""
        return self._account

    async def request_accounts(self) -> str:
        if self._account is None:
            raise NotReady("no wallet key configured (set LEDGER_PRIVATE_KEY)")
        return self._account.address

    def subscribe(self, callback: AccountListener) -> Callable[[], None]:
        self._listeners.append(callback)

        def _unsubscribe():
            if callback in self._listeners:
                self._listeners.remove(callback)

        return _unsubscribe

    def switch_account(self, private_key: Optional[str]) -> None:
        """Load another key (or none) and notify listeners."""
        self._account = self._load(private_key) if private_key else None
        accounts = [self._account.address] if self._account is not None else []
        logger.info(f"Wallet account switched: {accounts[0][:10] + '...' if accounts else '<none>'}")
        for listener in list(self._listeners):
            listener(accounts)

    def close(self) -> None:
        self._listeners.clear()


class Web3ChainIdentity:
    """Chain identity read from the connected RPC node."""

    def __init__(self, w3):
        self._w3 = w3

    async def chain_id(self) -> int:
        try:
            return int(await asyncio.get_running_loop().run_in_executor(
                None, lambda: self._w3.eth.chain_id
            ))
        except Exception as e:
            raise RemoteCallError("chain_id", f"{type(e).__name__}: {e}") from e


class StaticChainIdentity:
    """Fixed chain id, for offline wiring and tests."""

    def __init__(self, chain_id: int):
        self._chain_id = chain_id

    async def chain_id(self) -> int:
        return self._chain_id
