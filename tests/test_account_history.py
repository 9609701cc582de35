"""Tests for the per-account activity feed and recent sales."""

import pytest

from processors.account_history.processor import classify
from scanner.errors import ProviderError, ScanFailedError
from tests.constants import (
    BUYER,
    ETHER,
    SELLER,
    SELLER_2,
    SEMI_CONTRACT,
    STRANGER,
    UNIQUE_CONTRACT,
)
from utils.models.marketplace_models import EventRecord, EventType, HistoryKind
from utils.token_utils import ListingIdentity, TokenStandard


def unique_identity(token_id):
    return ListingIdentity.for_standard(TokenStandard.UNIQUE, UNIQUE_CONTRACT, token_id)


class TestClassify:
    def test_self_sale_yields_sold_and_bought(self):
        sale = EventRecord(
            block_height=5,
            log_index=0,
            transaction_hash="0xabc",
            event_type=EventType.SOLD,
            contract_address=UNIQUE_CONTRACT,
            token_id=7,
            token_standard=TokenStandard.UNIQUE,
            seller=SELLER,
            buyer=SELLER,
            price=ETHER,
            amount=1,
        )

        # The same event arrives once per scan; it is counted once per role
        entries = classify(SELLER, [sale, sale])

        assert sorted(entry.kind.value for entry in entries) == ["bought", "sold"]
        assert {entry.id for entry in entries} == {"0xabc-0-sold", "0xabc-0-bought"}

    def test_unrelated_events_are_ignored(self):
        listed = EventRecord(
            block_height=1,
            log_index=0,
            transaction_hash="0x01",
            event_type=EventType.LISTED,
            contract_address=UNIQUE_CONTRACT,
            token_id=7,
            token_standard=TokenStandard.UNIQUE,
            seller=SELLER_2,
            price=ETHER,
            amount=1,
        )

        assert classify(SELLER, [listed]) == []


class TestAccountHistory:
    def test_seller_and_buyer_feeds(self, seeded_ledger, projector):
        seeded_ledger.list_item(SELLER, UNIQUE_CONTRACT, 7, ETHER)
        seeded_ledger.list_item(SELLER, UNIQUE_CONTRACT, 8, 2 * ETHER)
        seeded_ledger.cancel(SELLER, unique_identity(8))
        sale = seeded_ledger.buy(BUYER, unique_identity(7), ETHER)

        seller_history = projector.get_account_history(SELLER)
        buyer_history = projector.get_account_history(BUYER)

        assert [(e.kind, e.token_id) for e in seller_history] == [
            (HistoryKind.SOLD, 7),
            (HistoryKind.CANCELLED, 8),
            (HistoryKind.LISTED, 8),
            (HistoryKind.LISTED, 7),
        ]
        assert seller_history[0].counterparty == BUYER
        assert seller_history[0].price == ETHER
        assert [(e.kind, e.counterparty) for e in buyer_history] == [
            (HistoryKind.BOUGHT, SELLER)
        ]
        assert buyer_history[0].transaction_hash == sale.transaction_hash

    def test_semi_fungible_entries_carry_amount(self, seeded_ledger, projector):
        seeded_ledger.list_item(
            SELLER_2, SEMI_CONTRACT, 9, ETHER, TokenStandard.SEMI_FUNGIBLE, amount=4
        )

        history = projector.get_account_history(SELLER_2)

        assert [(e.kind, e.amount) for e in history] == [(HistoryKind.LISTED, 4)]

    def test_account_address_is_normalized(self, seeded_ledger, projector):
        seeded_ledger.list_item(SELLER, UNIQUE_CONTRACT, 7, ETHER)

        history = projector.get_account_history("0x1")

        assert [e.kind for e in history] == [HistoryKind.LISTED]

    def test_account_without_activity(self, seeded_ledger, projector):
        seeded_ledger.list_item(SELLER, UNIQUE_CONTRACT, 7, ETHER)

        assert projector.get_account_history(STRANGER) == []

    def test_failed_scan_propagates(self, projector, provider, monkeypatch):
        def broken_get_events(*args, **kwargs):
            raise ProviderError("upstream unavailable")

        monkeypatch.setattr(provider, "get_events", broken_get_events)
        projector.scanner.max_retries = 0

        with pytest.raises(ScanFailedError):
            projector.get_account_history(SELLER)


class TestRecentSales:
    def test_newest_first_and_limited(self, seeded_ledger, projector):
        for token_id in (7, 8):
            seeded_ledger.list_item(SELLER, UNIQUE_CONTRACT, token_id, ETHER)
        seeded_ledger.list_item(SELLER_2, UNIQUE_CONTRACT, 10, ETHER)
        for token_id in (7, 10, 8):
            seeded_ledger.buy(BUYER, unique_identity(token_id), ETHER)

        sales = projector.get_recent_sales(limit=2)

        assert [sale.token_id for sale in sales] == [8, 10]

    def test_no_sales(self, seeded_ledger, projector):
        seeded_ledger.list_item(SELLER, UNIQUE_CONTRACT, 7, ETHER)

        assert projector.get_recent_sales() == []
