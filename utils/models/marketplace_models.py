from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from utils.general_utils import ZERO_ADDRESS, standardize_optional_address
from utils.token_utils import ListingIdentity, TokenStandard


class EventType(Enum):
    LISTED = "listed"
    REPRICED = "repriced"
    CANCELLED = "cancelled"
    SOLD = "sold"
    FEE_RATE_UPDATED = "fee_rate_updated"
    FEES_WITHDRAWN = "fees_withdrawn"
    OPERATOR_TRANSFERRED = "operator_transferred"


LISTING_EVENT_TYPES = (
    EventType.LISTED,
    EventType.REPRICED,
    EventType.CANCELLED,
    EventType.SOLD,
)


@dataclass(frozen=True)
class EventRecord:
    block_height: int
    log_index: int
    transaction_hash: str
    event_type: EventType
    contract_address: Optional[str] = None
    token_id: Optional[int] = None
    token_standard: Optional[TokenStandard] = None
    seller: Optional[str] = None
    buyer: Optional[str] = None
    price: Optional[int] = None
    old_price: Optional[int] = None
    amount: Optional[int] = None
    fee: Optional[int] = None
    # Operator events
    account: Optional[str] = None
    fee_rate_bps: Optional[int] = None
    old_fee_rate_bps: Optional[int] = None

    @property
    def ordering_key(self) -> tuple[int, int]:
        return (self.block_height, self.log_index)

    def token_key(self) -> tuple[str, int]:
        assert self.contract_address is not None and self.token_id is not None
        return (self.contract_address, self.token_id)

    def scoped_key(self) -> tuple[Optional[str], str, int]:
        return (self.seller, *self.token_key())

    def identity(self) -> ListingIdentity:
        assert self.token_standard is not None
        return ListingIdentity.for_standard(
            self.token_standard, self.contract_address, self.token_id, self.seller
        )


@dataclass(frozen=True)
class Listing:
    contract_address: str
    token_id: int
    seller: str
    price: int
    amount: int
    token_standard: TokenStandard
    active: bool

    @classmethod
    def empty(cls, identity: ListingIdentity) -> "Listing":
        # What the ledger returns for an identity that was never listed
        return cls(
            contract_address=identity.contract_address,
            token_id=identity.token_id,
            seller=ZERO_ADDRESS,
            price=0,
            amount=0,
            token_standard=(
                TokenStandard.SEMI_FUNGIBLE
                if identity.is_seller_scoped
                else TokenStandard.UNIQUE
            ),
            active=False,
        )


@dataclass(frozen=True)
class FeeState:
    fee_rate_bps: int
    accumulated_fee: int
    max_fee_bps: int
    operator: str


@dataclass(frozen=True)
class EventFilter:
    """Equality filter over event fields; None matches anything."""

    contract_address: Optional[str] = None
    token_id: Optional[int] = None
    seller: Optional[str] = None
    buyer: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(
            self, "contract_address", standardize_optional_address(self.contract_address)
        )
        object.__setattr__(self, "seller", standardize_optional_address(self.seller))
        object.__setattr__(self, "buyer", standardize_optional_address(self.buyer))

    def matches(self, event: EventRecord) -> bool:
        return (
            (self.contract_address is None or event.contract_address == self.contract_address)
            and (self.token_id is None or event.token_id == self.token_id)
            and (self.seller is None or event.seller == self.seller)
            and (self.buyer is None or event.buyer == self.buyer)
        )

    def apply(self, events: Iterable[EventRecord]) -> list[EventRecord]:
        return [event for event in events if self.matches(event)]


class HistoryKind(Enum):
    LISTED = "listed"
    SOLD = "sold"
    BOUGHT = "bought"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class HistoryEntry:
    id: str
    kind: HistoryKind
    contract_address: str
    token_id: int
    price: Optional[int]
    amount: Optional[int]
    counterparty: Optional[str]
    block_height: int
    log_index: int
    transaction_hash: str

    @property
    def ordering_key(self) -> tuple[int, int]:
        return (self.block_height, self.log_index)
