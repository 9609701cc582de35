from prometheus_client import Counter, Gauge

LEDGER_TRANSACTIONS_COUNTER = Counter(
    "marketplace_ledger_transactions",
    "Number of committed ledger transactions",
    ["transaction_type"],
)

LEDGER_REJECTED_TRANSACTIONS_COUNTER = Counter(
    "marketplace_ledger_rejected_transactions",
    "Number of ledger transactions rejected by a precondition",
    ["transaction_type", "error_code"],
)

SCANNED_WINDOWS_COUNTER = Counter(
    "marketplace_scanner_scanned_windows",
    "Number of block windows fetched from the read provider",
)

SCAN_RETRIES_COUNTER = Counter(
    "marketplace_scanner_retries",
    "Number of window fetch retries",
    ["reason"],
)

LATEST_SCANNED_HEIGHT = Gauge(
    "marketplace_scanner_latest_height",
    "Chain height fixed by the most recent scan",
)

VERIFIED_LISTINGS_COUNTER = Counter(
    "marketplace_reconciler_verified_listings",
    "Number of candidate listings checked with a live point read",
    ["processor_name", "outcome"],
)

ACTIVE_LISTINGS = Gauge(
    "marketplace_active_listings",
    "Active listings found by the last reconciliation",
)
