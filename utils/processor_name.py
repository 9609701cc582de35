from enum import Enum


class ProcessorName(Enum):
    LISTING_RECONCILER = "listing_reconciler"
    ACCOUNT_HISTORY_PROJECTOR = "account_history_projector"
