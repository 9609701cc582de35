import logging
import threading

from time import perf_counter, sleep
from typing import Optional, Sequence

from scanner.errors import (
    ProviderError,
    RangeTooLargeError,
    ScanFailedError,
    ScanTimeoutError,
)
from scanner.read_provider import ReadProvider
from utils.config import ScannerConfig
from utils.metrics import (
    LATEST_SCANNED_HEIGHT,
    SCAN_RETRIES_COUNTER,
    SCANNED_WINDOWS_COUNTER,
)
from utils.models.marketplace_models import EventFilter, EventRecord, EventType

DEFAULT_WINDOW_SIZE = 50_000


def remaining_secs(deadline: Optional[float]) -> Optional[float]:
    if deadline is None:
        return None
    return max(0.0, deadline - perf_counter())


def deadline_after(timeout_secs: Optional[float]) -> Optional[float]:
    if timeout_secs is None:
        return None
    return perf_counter() + timeout_secs


class WindowFetchThread(threading.Thread):
    events: list[EventRecord]
    exception: Exception | None

    def __init__(
        self,
        scanner: "LogScanner",
        event_types: Sequence[EventType],
        event_filter: Optional[EventFilter],
        window: tuple[int, int],
        deadline: Optional[float],
    ):
        # Daemon so a fetch abandoned at the deadline never blocks shutdown
        threading.Thread.__init__(self, daemon=True)
        self.scanner = scanner
        self.event_types = event_types
        self.event_filter = event_filter
        self.window = window
        self.deadline = deadline
        self.events = []
        self.exception = None

    def run(self):
        from_block, to_block = self.window
        try:
            self.events = self.scanner.fetch_window(
                self.event_types, self.event_filter, from_block, to_block, self.deadline
            )
        except Exception as e:
            self.exception = e


class LogScanner:
    """Fetches the full event history in block windows.

    The chain height is read once per scan, so the range never grows while a
    scan runs. Windows are fetched by up to `max_concurrent_windows` threads
    at a time and reassembled in block order. Any window that still fails
    after its retries fails the whole scan.
    """

    def __init__(
        self,
        provider: ReadProvider,
        deployment_height: int = 0,
        window_size: int = DEFAULT_WINDOW_SIZE,
        max_concurrent_windows: int = 4,
        max_retries: int = 3,
        retry_backoff_secs: float = 0.5,
        timeout_secs: Optional[float] = None,
    ):
        assert window_size > 0, "[Scanner] Window size must be positive"
        assert max_concurrent_windows > 0, "[Scanner] Concurrency must be positive"
        self.provider = provider
        self.deployment_height = deployment_height
        self.window_size = window_size
        self.max_concurrent_windows = max_concurrent_windows
        self.max_retries = max_retries
        self.retry_backoff_secs = retry_backoff_secs
        self.timeout_secs = timeout_secs

    @classmethod
    def from_config(
        cls, provider: ReadProvider, deployment_height: int, config: ScannerConfig
    ) -> "LogScanner":
        return cls(
            provider,
            deployment_height=deployment_height,
            window_size=config.window_size,
            max_concurrent_windows=config.max_concurrent_windows,
            max_retries=config.max_retries,
            retry_backoff_secs=config.retry_backoff_secs,
            timeout_secs=config.timeout_secs,
        )

    def windows(self, from_block: int, to_block: int) -> list[tuple[int, int]]:
        return [
            (start, min(start + self.window_size - 1, to_block))
            for start in range(from_block, to_block + 1, self.window_size)
        ]

    def _sleep(self, secs: float, deadline: Optional[float]) -> None:
        if deadline is not None and perf_counter() + secs >= deadline:
            raise ScanTimeoutError("Scan deadline passed while backing off")
        sleep(secs)

    def _check_deadline(self, deadline: Optional[float]) -> None:
        if deadline is not None and perf_counter() >= deadline:
            raise ScanTimeoutError("Scan deadline passed")

    def get_block_number(self, deadline: Optional[float] = None) -> int:
        attempt = 0
        while True:
            self._check_deadline(deadline)
            try:
                return self.provider.get_block_number()
            except ProviderError as e:
                if attempt >= self.max_retries:
                    raise ScanFailedError(f"Unable to read chain height: {e}") from e
                SCAN_RETRIES_COUNTER.labels(reason="block_number").inc()
                self._sleep(self.retry_backoff_secs * 2**attempt, deadline)
                attempt += 1

    def fetch_window(
        self,
        event_types: Sequence[EventType],
        event_filter: Optional[EventFilter],
        from_block: int,
        to_block: int,
        deadline: Optional[float] = None,
    ) -> list[EventRecord]:
        attempt = 0
        while True:
            self._check_deadline(deadline)
            try:
                events = self.provider.get_events(
                    event_types, event_filter, from_block, to_block
                )
                SCANNED_WINDOWS_COUNTER.inc()
                return events
            except RangeTooLargeError as e:
                if from_block == to_block:
                    raise ScanFailedError(str(e), from_block, to_block) from e
                SCAN_RETRIES_COUNTER.labels(reason="range_too_large").inc()
                middle = (from_block + to_block) // 2
                logging.warning(
                    "[Scanner] Provider rejected block range, halving window",
                    extra={
                        "from_block": from_block,
                        "to_block": to_block,
                        "middle_block": middle,
                    },
                )
                self._sleep(self.retry_backoff_secs, deadline)
                return self.fetch_window(
                    event_types, event_filter, from_block, middle, deadline
                ) + self.fetch_window(
                    event_types, event_filter, middle + 1, to_block, deadline
                )
            except ProviderError as e:
                if attempt >= self.max_retries:
                    raise ScanFailedError(str(e), from_block, to_block) from e
                backoff_secs = self.retry_backoff_secs * 2**attempt
                attempt += 1
                SCAN_RETRIES_COUNTER.labels(reason="provider_error").inc()
                logging.warning(
                    "[Scanner] Window fetch failed, retrying",
                    extra={
                        "from_block": from_block,
                        "to_block": to_block,
                        "attempt": attempt,
                        "backoff_secs": backoff_secs,
                        "error": str(e),
                    },
                )
                self._sleep(backoff_secs, deadline)

    def scan(
        self,
        event_types: Sequence[EventType],
        event_filter: Optional[EventFilter] = None,
        deadline: Optional[float] = None,
    ) -> list[EventRecord]:
        """All matching events from the deployment height up to the current height.

        `deadline` is a `time.perf_counter()` timestamp; without one the
        scanner's own `timeout_secs` applies.
        """
        if deadline is None:
            deadline = deadline_after(self.timeout_secs)
        start_time = perf_counter()
        event_types = list(event_types)

        current_height = self.get_block_number(deadline)
        if current_height < self.deployment_height:
            return []
        windows = self.windows(self.deployment_height, current_height)
        logging.info(
            "[Scanner] Starting scan",
            extra={
                "from_block": self.deployment_height,
                "to_block": current_height,
                "num_of_windows": len(windows),
                "event_types": [event_type.value for event_type in event_types],
            },
        )

        window_events: list[list[EventRecord]] = []
        for batch_start in range(0, len(windows), self.max_concurrent_windows):
            threads = [
                WindowFetchThread(self, event_types, event_filter, window, deadline)
                for window in windows[batch_start : batch_start + self.max_concurrent_windows]
            ]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join(remaining_secs(deadline))
                if thread.is_alive():
                    from_block, to_block = thread.window
                    raise ScanTimeoutError(
                        f"Timed out fetching blocks [{from_block}, {to_block}]"
                    )

            for thread in threads:
                if thread.exception:
                    logging.warning(
                        "[Scanner] Scan failed",
                        extra={
                            "from_block": thread.window[0],
                            "to_block": thread.window[1],
                            "error": str(thread.exception),
                        },
                    )
                    raise thread.exception
                window_events.append(thread.events)

        events = [event for batch in window_events for event in batch]
        LATEST_SCANNED_HEIGHT.set(current_height)
        logging.info(
            "[Scanner] Finished scan",
            extra={
                "from_block": self.deployment_height,
                "to_block": current_height,
                "num_of_events": len(events),
                "duration_in_secs": format(perf_counter() - start_time, ".8f"),
            },
        )
        return events
