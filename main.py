"""
expense ledger - main entry point

Loads settings, wires wallet → client → tracker → API, starts the server.
One file to understand how everything connects.

Usage:
    python main.py              # Start the API
    uvicorn main:app            # Or via uvicorn directly
"""

import os
import re
import logging
from contextlib import asynccontextmanager

import uvicorn
from dotenv import load_dotenv

# ============================================================
# BOOTSTRAP
# ============================================================

load_dotenv()

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)


class _SecretMaskingFilter(logging.Filter):
    """Redact 64-char hex strings (private keys) from all log output."""
    _PATTERN = re.compile(r'(?<![0-9a-fA-F])([0-9a-fA-F]{64})(?![0-9a-fA-F])')

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self._PATTERN.sub('[REDACTED]', record.msg)
        if record.args:
            try:
                formatted = record.getMessage()
            except (TypeError, ValueError):
                return True
            if self._PATTERN.search(formatted):
                record.msg = self._PATTERN.sub('[REDACTED]', formatted)
                record.args = None
        return True


_mask_filter = _SecretMaskingFilter()
for _h in logging.root.handlers:
    _h.addFilter(_mask_filter)

logger = logging.getLogger("ledger.main")


# ============================================================
# MODULE IMPORTS
# ============================================================

from ledger.chain import LedgerClient
from ledger.errors import LedgerError
from ledger.settings import LedgerSettings
from ledger.tracker import ExpenseTracker
from ledger.wallet import LocalWallet, Web3ChainIdentity
from api.server import create_app


# ============================================================
# WIRING
# ============================================================

settings = LedgerSettings.from_env()


def build_tracker(cfg: LedgerSettings) -> ExpenseTracker:
    """Wallet, RPC client and tracker from settings. No network I/O yet."""
    wallet = LocalWallet(cfg.private_key)
    client = LedgerClient.from_settings(cfg, account=wallet.account)
    return ExpenseTracker(
        client,
        wallet,
        Web3ChainIdentity(client.w3),
        required_chain_id=cfg.required_chain_id,
        max_concurrency=cfg.max_concurrency,
        confirmation_timeout=cfg.confirmation_timeout,
    )


tracker = build_tracker(settings)


@asynccontextmanager
async def lifespan(app):
    """Startup and shutdown."""
    logger.info("=" * 60)
    logger.info(
        f"Expense ledger starting: {settings.network} (chain {settings.required_chain_id}) | "
        f"contract={settings.contract_address[:10]}..."
    )
    logger.info("=" * 60)

    try:
        snapshot = await tracker.connect()
        logger.info(
            f"Ready: {len(snapshot.people)} people, {len(snapshot.expenses)} expenses"
            + (f", {len(snapshot.warnings)} warnings" if snapshot.warnings else "")
        )
    except LedgerError as e:
        # /session and /health report the failure
        tracker.last_error = str(e)
        logger.error(f"Initial connection failed: {e}")

    yield

    tracker.close()
    logger.info("Goodbye.")


def create_ledger_app():
    """Create the fully wired FastAPI app."""
    app = create_app(tracker, settings)
    app.router.lifespan_context = lifespan
    return app


# ============================================================
# ENTRY POINT
# ============================================================

app = create_ledger_app()

if __name__ == "__main__":
    reload = os.getenv("DEV", "").lower() in ("1", "true", "yes")

    logger.info(f"Starting server on {settings.host}:{settings.port} (reload={reload})")

    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=reload,
        log_level=LOG_LEVEL.lower(),
    )
