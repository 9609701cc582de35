import logging
import threading

from time import perf_counter, sleep
from typing import Optional, Sequence

from scanner.errors import (
    ProviderError,
    VerificationFailedError,
    VerificationTimeoutError,
)
from scanner.log_scanner import LogScanner, deadline_after, remaining_secs
from scanner.read_provider import ReadProvider
from utils.config import ReconcilerConfig
from utils.events_processor import EventsProcessor, ProcessingResult
from utils.metrics import VERIFIED_LISTINGS_COUNTER
from utils.models.marketplace_models import (
    EventFilter,
    EventRecord,
    EventType,
    Listing,
)
from utils.processor_name import ProcessorName
from utils.token_utils import ListingIdentity, TokenStandard

RECONCILED_EVENT_TYPES = (EventType.LISTED, EventType.SOLD, EventType.CANCELLED)


def candidate_identities(events: Sequence[EventRecord]) -> list[ListingIdentity]:
    """Identities whose latest `Listed` event has not been terminated since.

    A Cancelled event terminates its seller's own listing. A Sold event
    terminates every listing of a Unique token, but only the selling seller's
    listing of a SemiFungible token. Only terminations ordered after a
    `Listed` event apply to it, so a relist survives the earlier sale or
    cancellation of the same identity.
    """
    latest_cancelled: dict[tuple, tuple[int, int]] = {}
    latest_sold_unique: dict[tuple, tuple[int, int]] = {}
    latest_sold_scoped: dict[tuple, tuple[int, int]] = {}
    listed_events = []

    for event in events:
        match event.event_type:
            case EventType.LISTED:
                listed_events.append(event)
            case EventType.CANCELLED:
                key = event.scoped_key()
                latest_cancelled[key] = max(
                    latest_cancelled.get(key, event.ordering_key), event.ordering_key
                )
            case EventType.SOLD if event.token_standard is TokenStandard.UNIQUE:
                key = event.token_key()
                latest_sold_unique[key] = max(
                    latest_sold_unique.get(key, event.ordering_key), event.ordering_key
                )
            case EventType.SOLD if event.seller is not None:
                key = event.scoped_key()
                latest_sold_scoped[key] = max(
                    latest_sold_scoped.get(key, event.ordering_key), event.ordering_key
                )

    candidates = []
    seen: set[ListingIdentity] = set()
    # Newest first, so the first instance seen per identity is the latest one
    for listed in sorted(listed_events, key=lambda e: e.ordering_key, reverse=True):
        identity = listed.identity()
        if identity in seen:
            continue
        seen.add(identity)

        terminated_at = [latest_cancelled.get(listed.scoped_key())]
        if listed.token_standard is TokenStandard.UNIQUE:
            terminated_at.append(latest_sold_unique.get(listed.token_key()))
        else:
            terminated_at.append(latest_sold_scoped.get(listed.scoped_key()))
        if any(key is not None and key > listed.ordering_key for key in terminated_at):
            continue
        candidates.append(identity)

    return sorted(candidates, key=lambda i: (*i.token_key(), i.seller_key()))


class PointReadThread(threading.Thread):
    listings: list[Listing]
    exception: Exception | None

    def __init__(
        self,
        reconciler: "ListingReconciler",
        identities: list[ListingIdentity],
        deadline: Optional[float],
    ):
        threading.Thread.__init__(self, daemon=True)
        self.reconciler = reconciler
        self.identities = identities
        self.deadline = deadline
        self.listings = []
        self.exception = None

    def run(self):
        try:
            self.listings = [
                self.reconciler.read_listing(identity, self.deadline)
                for identity in self.identities
            ]
        except Exception as e:
            self.exception = e


class ListingReconciler(EventsProcessor):
    """Derives the active listings from the event log plus live point reads.

    The event pass only narrows down which identities to read. The live read
    is authoritative: a candidate is kept only when the ledger reports it
    active, whatever the events said.
    """

    log_prefix = "Reconciler"

    def __init__(
        self,
        scanner: LogScanner,
        provider: ReadProvider,
        max_concurrent_reads: int = 8,
        max_retries: int = 3,
        retry_backoff_secs: float = 0.5,
        timeout_secs: Optional[float] = None,
    ):
        assert max_concurrent_reads > 0, "[Reconciler] Concurrency must be positive"
        self.scanner = scanner
        self.provider = provider
        self.max_concurrent_reads = max_concurrent_reads
        self.max_retries = max_retries
        self.retry_backoff_secs = retry_backoff_secs
        self.timeout_secs = timeout_secs

    @classmethod
    def from_config(
        cls, scanner: LogScanner, provider: ReadProvider, config: ReconcilerConfig
    ) -> "ListingReconciler":
        return cls(
            scanner,
            provider,
            max_concurrent_reads=config.max_concurrent_reads,
            max_retries=config.max_retries,
            retry_backoff_secs=config.retry_backoff_secs,
            timeout_secs=config.timeout_secs,
        )

    def name(self) -> str:
        return ProcessorName.LISTING_RECONCILER.value

    def read_listing(
        self, identity: ListingIdentity, deadline: Optional[float] = None
    ) -> Listing:
        attempt = 0
        while True:
            if deadline is not None and perf_counter() >= deadline:
                raise VerificationTimeoutError(f"Timed out reading listing {identity}")
            try:
                return self.provider.get_listing(identity)
            except ProviderError as e:
                if attempt >= self.max_retries:
                    raise VerificationFailedError(
                        f"Unable to read listing {identity}: {e}"
                    ) from e
                backoff_secs = self.retry_backoff_secs * 2**attempt
                attempt += 1
                logging.warning(
                    "[Reconciler] Point read failed, retrying",
                    extra={
                        "identity": str(identity),
                        "attempt": attempt,
                        "error": str(e),
                    },
                )
                if deadline is not None and perf_counter() + backoff_secs >= deadline:
                    raise VerificationTimeoutError(
                        f"Timed out reading listing {identity}"
                    ) from e
                sleep(backoff_secs)

    def verify(
        self, identities: list[ListingIdentity], deadline: Optional[float] = None
    ) -> list[Listing]:
        """Live point reads of every identity, all of which must succeed."""
        threads = [
            PointReadThread(
                self, identities[index :: self.max_concurrent_reads], deadline
            )
            for index in range(min(self.max_concurrent_reads, len(identities)))
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(remaining_secs(deadline))
            if thread.is_alive():
                raise VerificationTimeoutError(
                    f"Timed out verifying {len(identities)} listings"
                )
        for thread in threads:
            if thread.exception:
                raise thread.exception

        listings_by_identity = {
            identity: listing
            for thread in threads
            for identity, listing in zip(thread.identities, thread.listings)
        }
        return [listings_by_identity[identity] for identity in identities]

    def get_active_listings(
        self,
        event_filter: Optional[EventFilter] = None,
        timeout_secs: Optional[float] = None,
    ) -> list[Listing]:
        deadline = deadline_after(
            timeout_secs if timeout_secs is not None else self.timeout_secs
        )
        events, scan_duration = self.scan_events(
            RECONCILED_EVENT_TYPES, event_filter, deadline
        )

        start_time = perf_counter()
        candidates = candidate_identities(events)
        listings = self.verify(candidates, deadline)

        active_listings = []
        for listing in listings:
            if not listing.active:
                VERIFIED_LISTINGS_COUNTER.labels(
                    processor_name=self.name(), outcome="inactive"
                ).inc()
                continue
            VERIFIED_LISTINGS_COUNTER.labels(
                processor_name=self.name(), outcome="active"
            ).inc()
            # A Unique identity may have been relisted by someone else
            if (
                event_filter is not None
                and event_filter.seller is not None
                and listing.seller != event_filter.seller
            ):
                continue
            active_listings.append(listing)

        self.log_result(
            ProcessingResult(
                processor_name=self.name(),
                num_of_events=len(events),
                num_of_results=len(active_listings),
                scan_duration_in_secs=scan_duration,
                processing_duration_in_secs=perf_counter() - start_time,
            )
        )
        return active_listings
