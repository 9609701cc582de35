import logging

from abc import ABC, abstractmethod
from dataclasses import dataclass
from time import perf_counter
from typing import Optional, Sequence
from scanner.log_scanner import LogScanner
from utils.models.marketplace_models import EventFilter, EventRecord, EventType

PROCESSOR_SERVICE_TYPE = "processor"


@dataclass
class ProcessingResult:
    processor_name: str
    num_of_events: int
    num_of_results: int
    scan_duration_in_secs: float
    processing_duration_in_secs: float


class EventsProcessor(ABC):
    scanner: LogScanner
    # Component name prefixed to log messages
    log_prefix = "Processor"

    # Name of the processor for status logging and metric labels
    @abstractmethod
    def name(self) -> str:
        pass

    def scan_events(
        self,
        event_types: Sequence[EventType],
        event_filter: Optional[EventFilter],
        deadline: Optional[float],
    ) -> tuple[list[EventRecord], float]:
        start_time = perf_counter()
        events = self.scanner.scan(event_types, event_filter, deadline=deadline)
        return events, perf_counter() - start_time

    def log_result(self, result: ProcessingResult) -> None:
        logging.info(
            f"[{self.log_prefix}] Processor finished processing events",
            extra={
                "processor_name": result.processor_name,
                "service_type": PROCESSOR_SERVICE_TYPE,
                "num_of_events": result.num_of_events,
                "num_of_results": result.num_of_results,
                "scan_duration_in_secs": format(result.scan_duration_in_secs, ".8f"),
                "processing_duration_in_secs": format(
                    result.processing_duration_in_secs, ".8f"
                ),
            },
        )
