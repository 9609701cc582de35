from typing import Optional, Sequence
from sqlalchemy.exc import SQLAlchemyError

from ledger.settlement_ledger import SettlementLedger
from scanner.errors import ProviderError, RangeTooLargeError
from scanner.read_provider import ReadProvider
from utils.models.marketplace_models import (
    EventFilter,
    EventRecord,
    EventType,
    FeeState,
    Listing,
)
from utils.token_utils import ListingIdentity


class LedgerReadProvider(ReadProvider):
    """Reads a local `SettlementLedger`.

    `max_block_range` caps the blocks covered by one `get_events` call the way
    public RPC endpoints do.
    """

    def __init__(self, ledger: SettlementLedger, max_block_range: Optional[int] = None):
        self.ledger = ledger
        self.max_block_range = max_block_range

    def get_block_number(self) -> int:
        try:
            return self.ledger.get_block_number()
        except SQLAlchemyError as e:
            raise ProviderError(str(e)) from e

    def get_events(
        self,
        event_types: Sequence[EventType],
        event_filter: Optional[EventFilter],
        from_block: int,
        to_block: int,
    ) -> list[EventRecord]:
        block_count = to_block - from_block + 1
        if self.max_block_range is not None and block_count > self.max_block_range:
            raise RangeTooLargeError(
                f"Range of {block_count} blocks exceeds the limit of {self.max_block_range}"
            )
        try:
            return self.ledger.get_events(event_types, event_filter, from_block, to_block)
        except SQLAlchemyError as e:
            raise ProviderError(str(e)) from e

    def get_listing(self, identity: ListingIdentity) -> Listing:
        try:
            return self.ledger.get_listing(identity)
        except SQLAlchemyError as e:
            raise ProviderError(str(e)) from e

    def get_fee_state(self) -> FeeState:
        try:
            return self.ledger.get_fee_state()
        except SQLAlchemyError as e:
            raise ProviderError(str(e)) from e
