"""Thin boundary between the marketplace core and its callers (CLI, UI).

Writes go straight to the settlement ledger and surface precondition errors
verbatim. Reads go through the reconciler and history projector; any read
path failure is reported as a single `ListingsUnavailableError`.
"""

import logging

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Optional

from client.metadata import (
    MetadataResolver,
    PlaceholderMetadataResolver,
    TokenMetadata,
    resolve_or_placeholder,
)
from ledger.errors import MarketplaceError
from ledger.settlement_ledger import SettlementLedger
from processors.account_history.processor import AccountHistoryProjector
from processors.listing_reconciler.processor import ListingReconciler
from scanner.errors import ProviderError, ReadFailedError
from scanner.log_scanner import deadline_after
from utils.models.marketplace_models import (
    EventFilter,
    EventRecord,
    FeeState,
    HistoryEntry,
    Listing,
)
from utils.token_utils import ListingIdentity, TokenStandard

LISTINGS_UNAVAILABLE_MESSAGE = "Unable to load listings, retry"


class ListingsUnavailableError(MarketplaceError):
    def __init__(self):
        super().__init__(LISTINGS_UNAVAILABLE_MESSAGE)


class ReadOnlyClientError(MarketplaceError):
    def __init__(self):
        super().__init__("This client has no ledger to submit transactions to")


def to_json_dict(value: Any) -> Any:
    """Plain JSON-compatible form of records, enums and nested containers."""
    if hasattr(value, "__dataclass_fields__"):
        return to_json_dict(asdict(value))
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {key: to_json_dict(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_json_dict(item) for item in value]
    return value


@dataclass(frozen=True)
class ListingView:
    listing: Listing
    metadata: TokenMetadata


class MarketplaceClient:
    def __init__(
        self,
        reconciler: ListingReconciler,
        projector: AccountHistoryProjector,
        ledger: Optional[SettlementLedger] = None,
        metadata_resolver: Optional[MetadataResolver] = None,
    ):
        self.reconciler = reconciler
        self.projector = projector
        self.ledger = ledger
        self.metadata_resolver = metadata_resolver or PlaceholderMetadataResolver()

    def _require_ledger(self) -> SettlementLedger:
        if self.ledger is None:
            raise ReadOnlyClientError()
        return self.ledger

    def _view(self, listing: Listing) -> ListingView:
        return ListingView(
            listing=listing,
            metadata=resolve_or_placeholder(
                self.metadata_resolver, listing.contract_address, listing.token_id
            ),
        )

    def _unavailable(self, operation: str, error: Exception) -> ListingsUnavailableError:
        logging.warning(
            "[Client] Read failed",
            extra={"operation": operation, "error": str(error)},
        )
        return ListingsUnavailableError()

    # Writes

    def list_item(
        self,
        sender: str,
        contract_address: str,
        token_id: int,
        price: int,
        token_standard: TokenStandard = TokenStandard.UNIQUE,
        amount: int = 1,
    ) -> EventRecord:
        return self._require_ledger().list_item(
            sender, contract_address, token_id, price, token_standard, amount
        )

    def buy_item(
        self, sender: str, identity: ListingIdentity, payment: int
    ) -> EventRecord:
        return self._require_ledger().buy(sender, identity, payment)

    def cancel_listing(self, sender: str, identity: ListingIdentity) -> EventRecord:
        return self._require_ledger().cancel(sender, identity)

    def reprice_listing(
        self, sender: str, identity: ListingIdentity, new_price: int
    ) -> EventRecord:
        return self._require_ledger().reprice(sender, identity, new_price)

    def set_fee_rate(self, sender: str, new_rate_bps: int) -> EventRecord:
        return self._require_ledger().set_fee_rate(sender, new_rate_bps)

    def withdraw_fees(self, sender: str) -> EventRecord:
        return self._require_ledger().withdraw_fees(sender)

    # Reads

    def get_active_listings(
        self,
        event_filter: Optional[EventFilter] = None,
        timeout_secs: Optional[float] = None,
    ) -> list[ListingView]:
        try:
            listings = self.reconciler.get_active_listings(event_filter, timeout_secs)
        except ReadFailedError as e:
            raise self._unavailable("get_active_listings", e) from e
        return [self._view(listing) for listing in listings]

    def get_listing(
        self, identity: ListingIdentity, timeout_secs: Optional[float] = None
    ) -> ListingView:
        try:
            listing = self.reconciler.read_listing(
                identity, deadline_after(timeout_secs)
            )
        except ReadFailedError as e:
            raise self._unavailable("get_listing", e) from e
        return self._view(listing)

    def get_account_history(
        self, account: str, timeout_secs: Optional[float] = None
    ) -> list[HistoryEntry]:
        try:
            return self.projector.get_account_history(account, timeout_secs)
        except ReadFailedError as e:
            raise self._unavailable("get_account_history", e) from e

    def get_recent_sales(
        self, limit: int = 10, timeout_secs: Optional[float] = None
    ) -> list[EventRecord]:
        try:
            return self.projector.get_recent_sales(limit, timeout_secs=timeout_secs)
        except ReadFailedError as e:
            raise self._unavailable("get_recent_sales", e) from e

    def get_fee_state(self) -> FeeState:
        try:
            return self.reconciler.provider.get_fee_state()
        except ProviderError as e:
            raise self._unavailable("get_fee_state", e) from e
