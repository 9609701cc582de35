from typing import Optional

from ledger.errors import MarketplaceError


class ProviderError(MarketplaceError):
    """Transient read provider failure; the scanner retries these."""


class RangeTooLargeError(ProviderError):
    """The provider refused a block range; the scanner halves the window."""


class ReadFailedError(MarketplaceError):
    """A read path gave up. No partial result was produced."""


class ScanFailedError(ReadFailedError):
    def __init__(
        self,
        reason: str,
        from_block: Optional[int] = None,
        to_block: Optional[int] = None,
    ):
        self.from_block = from_block
        self.to_block = to_block
        if from_block is not None:
            reason = f"Failed to scan blocks [{from_block}, {to_block}]: {reason}"
        super().__init__(reason)


class ScanTimeoutError(ReadFailedError):
    pass


class VerificationFailedError(ReadFailedError):
    pass


class VerificationTimeoutError(ReadFailedError):
    pass
