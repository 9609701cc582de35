from abc import ABC, abstractmethod
from typing import Optional, Sequence

from utils.models.marketplace_models import (
    EventFilter,
    EventRecord,
    EventType,
    FeeState,
    Listing,
)
from utils.token_utils import ListingIdentity


class ReadProvider(ABC):
    """Read side of the ledger.

    Implementations are shared by every in-flight window fetch and point read,
    so they must be safe to call from several threads at once. Failures that
    may succeed on retry are raised as `ProviderError`.
    """

    @abstractmethod
    def get_block_number(self) -> int:
        pass

    @abstractmethod
    def get_events(
        self,
        event_types: Sequence[EventType],
        event_filter: Optional[EventFilter],
        from_block: int,
        to_block: int,
    ) -> list[EventRecord]:
        """Events in `[from_block, to_block]` ordered by (block_height, log_index)."""

    @abstractmethod
    def get_listing(self, identity: ListingIdentity) -> Listing:
        pass

    @abstractmethod
    def get_fee_state(self) -> FeeState:
        pass
