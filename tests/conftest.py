"""
Shared pytest fixtures for the marketplace test suite.

Every test gets its own file-backed SQLite ledger under ``tmp_path``. The
``seeded_ledger`` fixture registers one Unique and one SemiFungible
collection, mints tokens to two sellers, approves the marketplace for both
and funds the buyer, so tests can start straight from listing.
"""

from collections.abc import Generator

import pytest

from client.marketplace_client import MarketplaceClient
from ledger.settlement_ledger import SettlementLedger
from processors.account_history.processor import AccountHistoryProjector
from processors.listing_reconciler.processor import ListingReconciler
from scanner.ledger_provider import LedgerReadProvider
from scanner.log_scanner import LogScanner
from tests.constants import (
    BUYER,
    BUYER_FUNDS,
    OPERATOR,
    SELLER,
    SELLER_2,
    SEMI_CONTRACT,
    UNIQUE_CONTRACT,
)
from utils.token_utils import TokenStandard


# ============================================================================
# LEDGER FIXTURES
# ============================================================================


@pytest.fixture
def ledger(tmp_path) -> Generator[SettlementLedger, None, None]:
    """Empty ledger with the default 250 bps fee rate."""
    ledger = SettlementLedger(f"sqlite:///{tmp_path / 'ledger.db'}", OPERATOR)
    yield ledger
    ledger.close()


@pytest.fixture
def seeded_ledger(ledger: SettlementLedger) -> SettlementLedger:
    """
    Ledger with collections, balances and approvals in place:

    - Unique tokens 7 and 8 owned by SELLER, token 10 owned by SELLER_2
    - 5 of SemiFungible token 9 held by each of SELLER and SELLER_2
    - marketplace approved for all tokens of both sellers
    - BUYER funded with 10 ether
    """
    ledger.register_collection(UNIQUE_CONTRACT, TokenStandard.UNIQUE)
    ledger.register_collection(SEMI_CONTRACT, TokenStandard.SEMI_FUNGIBLE)
    ledger.mint(UNIQUE_CONTRACT, 7, SELLER)
    ledger.mint(UNIQUE_CONTRACT, 8, SELLER)
    ledger.mint(UNIQUE_CONTRACT, 10, SELLER_2)
    ledger.mint(SEMI_CONTRACT, 9, SELLER, amount=5)
    ledger.mint(SEMI_CONTRACT, 9, SELLER_2, amount=5)
    for seller in (SELLER, SELLER_2):
        ledger.set_approval_for_all(seller, UNIQUE_CONTRACT)
        ledger.set_approval_for_all(seller, SEMI_CONTRACT)
    ledger.deposit(BUYER, BUYER_FUNDS)
    return ledger


# ============================================================================
# READ PATH FIXTURES
# ============================================================================


@pytest.fixture
def provider(seeded_ledger: SettlementLedger) -> LedgerReadProvider:
    return LedgerReadProvider(seeded_ledger)


@pytest.fixture
def scanner(provider: LedgerReadProvider) -> LogScanner:
    # Small windows so every scan spans several of them
    return LogScanner(
        provider, window_size=5, max_concurrent_windows=3, retry_backoff_secs=0
    )


@pytest.fixture
def reconciler(scanner: LogScanner, provider: LedgerReadProvider) -> ListingReconciler:
    return ListingReconciler(
        scanner, provider, max_concurrent_reads=3, retry_backoff_secs=0
    )


@pytest.fixture
def projector(scanner: LogScanner) -> AccountHistoryProjector:
    return AccountHistoryProjector(scanner)


@pytest.fixture
def client(
    reconciler: ListingReconciler,
    projector: AccountHistoryProjector,
    seeded_ledger: SettlementLedger,
) -> MarketplaceClient:
    return MarketplaceClient(reconciler, projector, seeded_ledger)
