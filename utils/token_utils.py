from dataclasses import dataclass
from enum import Enum
from typing import Optional
from utils.general_utils import standardize_address


class TokenStandard(Enum):
    UNIQUE = "erc721"
    SEMI_FUNGIBLE = "erc1155"

    @property
    def abi_value(self) -> int:
        # Matches the contract's `enum TokenType { ERC721, ERC1155 }`
        return 0 if self is TokenStandard.UNIQUE else 1

    @classmethod
    def from_abi_value(cls, value: int) -> "TokenStandard":
        match value:
            case 0:
                return cls.UNIQUE
            case 1:
                return cls.SEMI_FUNGIBLE
            case _:
                raise ValueError(f"Unknown token type: {value}")

    def is_seller_scoped(self) -> bool:
        return self is TokenStandard.SEMI_FUNGIBLE


@dataclass(frozen=True)
class ListingIdentity:
    """Key of a listing record.

    Unique listings are keyed by `(contract_address, token_id)`; SemiFungible
    listings additionally by `seller`, since several sellers may list the same
    token id at once. `seller` is None for Unique identities.
    """

    contract_address: str
    token_id: int
    seller: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(
            self, "contract_address", standardize_address(self.contract_address)
        )
        object.__setattr__(self, "token_id", int(self.token_id))
        if self.seller is not None:
            object.__setattr__(self, "seller", standardize_address(self.seller))

    @classmethod
    def for_standard(
        cls,
        token_standard: TokenStandard,
        contract_address: str,
        token_id: int,
        seller: Optional[str] = None,
    ) -> "ListingIdentity":
        if token_standard.is_seller_scoped():
            if seller is None:
                raise ValueError("SemiFungible listings are identified by seller")
            return cls(contract_address, token_id, seller)
        return cls(contract_address, token_id)

    @property
    def is_seller_scoped(self) -> bool:
        return self.seller is not None

    def token_key(self) -> tuple[str, int]:
        return (self.contract_address, self.token_id)

    def seller_key(self) -> str:
        # Unique listings are stored under an empty seller key
        return self.seller or ""

    def __str__(self) -> str:
        if self.seller:
            return f"{self.contract_address}/{self.token_id}@{self.seller}"
        return f"{self.contract_address}/{self.token_id}"
