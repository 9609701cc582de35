import logging

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass(frozen=True)
class TokenMetadata:
    name: str
    image: str
    attributes: dict = field(default_factory=dict)

    @classmethod
    def placeholder(cls, token_id: int) -> "TokenMetadata":
        return cls(name=f"NFT #{token_id}", image="")


class MetadataResolver(ABC):
    """Display metadata lookup, usually backed by an external NFT API."""

    @abstractmethod
    def resolve(self, contract_address: str, token_id: int) -> TokenMetadata:
        pass


class PlaceholderMetadataResolver(MetadataResolver):
    def resolve(self, contract_address: str, token_id: int) -> TokenMetadata:
        return TokenMetadata.placeholder(token_id)


def resolve_or_placeholder(
    resolver: MetadataResolver, contract_address: str, token_id: int
) -> TokenMetadata:
    # Metadata is cosmetic, a failing lookup never fails listing enumeration
    try:
        return resolver.resolve(contract_address, token_id)
    except Exception as e:
        logging.warning(
            "[Client] Metadata lookup failed, using placeholder",
            extra={
                "contract_address": contract_address,
                "token_id": str(token_id),
                "error": str(e),
            },
        )
        return TokenMetadata.placeholder(token_id)
