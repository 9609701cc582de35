from time import perf_counter
from typing import Optional, Sequence

from scanner.log_scanner import LogScanner, deadline_after
from utils.events_processor import EventsProcessor, ProcessingResult
from utils.general_utils import standardize_address
from utils.models.marketplace_models import (
    EventFilter,
    EventRecord,
    EventType,
    HistoryEntry,
    HistoryKind,
)
from utils.processor_name import ProcessorName


def classify(account: str, events: Sequence[EventRecord]) -> list[HistoryEntry]:
    """Activity entries of `account`, newest first.

    A sale to oneself yields both a Sold and a Bought entry.
    """
    entries = {}
    for event in events:
        kinds = []
        match event.event_type:
            case EventType.LISTED if event.seller == account:
                kinds.append((HistoryKind.LISTED, None))
            case EventType.CANCELLED if event.seller == account:
                kinds.append((HistoryKind.CANCELLED, None))
            case EventType.SOLD:
                if event.seller == account:
                    kinds.append((HistoryKind.SOLD, event.buyer))
                if event.buyer == account:
                    kinds.append((HistoryKind.BOUGHT, event.seller))

        for kind, counterparty in kinds:
            entry_id = f"{event.transaction_hash}-{event.log_index}-{kind.value}"
            entries[entry_id] = HistoryEntry(
                id=entry_id,
                kind=kind,
                contract_address=event.contract_address,
                token_id=event.token_id,
                price=event.price,
                amount=event.amount,
                counterparty=counterparty,
                block_height=event.block_height,
                log_index=event.log_index,
                transaction_hash=event.transaction_hash,
            )

    return sorted(entries.values(), key=lambda e: e.ordering_key, reverse=True)


class AccountHistoryProjector(EventsProcessor):
    """Unverified activity feed built from the event log alone."""

    log_prefix = "History"

    def __init__(self, scanner: LogScanner, timeout_secs: Optional[float] = None):
        self.scanner = scanner
        self.timeout_secs = timeout_secs

    def name(self) -> str:
        return ProcessorName.ACCOUNT_HISTORY_PROJECTOR.value

    def _deadline(self, timeout_secs: Optional[float]) -> Optional[float]:
        return deadline_after(
            timeout_secs if timeout_secs is not None else self.timeout_secs
        )

    def get_account_history(
        self, account: str, timeout_secs: Optional[float] = None
    ) -> list[HistoryEntry]:
        account = standardize_address(account)
        deadline = self._deadline(timeout_secs)

        as_seller, seller_scan_duration = self.scan_events(
            (EventType.LISTED, EventType.SOLD, EventType.CANCELLED),
            EventFilter(seller=account),
            deadline,
        )
        as_buyer, buyer_scan_duration = self.scan_events(
            (EventType.SOLD,), EventFilter(buyer=account), deadline
        )

        start_time = perf_counter()
        entries = classify(account, as_seller + as_buyer)
        self.log_result(
            ProcessingResult(
                processor_name=self.name(),
                num_of_events=len(as_seller) + len(as_buyer),
                num_of_results=len(entries),
                scan_duration_in_secs=seller_scan_duration + buyer_scan_duration,
                processing_duration_in_secs=perf_counter() - start_time,
            )
        )
        return entries

    def get_recent_sales(
        self,
        limit: int = 10,
        event_filter: Optional[EventFilter] = None,
        timeout_secs: Optional[float] = None,
    ) -> list[EventRecord]:
        """The `limit` most recent Sold events, newest first."""
        events, _ = self.scan_events(
            (EventType.SOLD,), event_filter, self._deadline(timeout_secs)
        )
        events.sort(key=lambda e: e.ordering_key, reverse=True)
        return events[:limit]
