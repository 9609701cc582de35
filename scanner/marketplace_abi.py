# Subset of the deployed NFTMarketplace contract ABI read by Web3ReadProvider

from utils.models.marketplace_models import EventType


def _address(name: str, indexed: bool = False) -> dict:
    return {"indexed": indexed, "internalType": "address", "name": name, "type": "address"}


def _uint256(name: str, indexed: bool = False) -> dict:
    return {"indexed": indexed, "internalType": "uint256", "name": name, "type": "uint256"}


_TOKEN_TYPE = {
    "indexed": False,
    "internalType": "enum NFTMarketplace.TokenType",
    "name": "tokenType",
    "type": "uint8",
}

_LISTING_TUPLE = {
    "components": [
        {"internalType": "address", "name": "seller", "type": "address"},
        {"internalType": "address", "name": "nftContract", "type": "address"},
        {"internalType": "uint256", "name": "tokenId", "type": "uint256"},
        {"internalType": "uint256", "name": "price", "type": "uint256"},
        {"internalType": "uint256", "name": "amount", "type": "uint256"},
        {
            "internalType": "enum NFTMarketplace.TokenType",
            "name": "tokenType",
            "type": "uint8",
        },
        {"internalType": "bool", "name": "active", "type": "bool"},
    ],
    "internalType": "struct NFTMarketplace.Listing",
    "name": "",
    "type": "tuple",
}


def _event(name: str, inputs: list[dict]) -> dict:
    return {"anonymous": False, "inputs": inputs, "name": name, "type": "event"}


def _view(name: str, inputs: list[dict], outputs: list[dict]) -> dict:
    return {
        "inputs": [
            {key: value for key, value in item.items() if key != "indexed"}
            for item in inputs
        ],
        "name": name,
        "outputs": outputs,
        "stateMutability": "view",
        "type": "function",
    }


MARKETPLACE_ABI = [
    _event(
        "NFTListed",
        [
            _address("seller", indexed=True),
            _address("nftContract", indexed=True),
            _uint256("tokenId", indexed=True),
            _uint256("price"),
            _uint256("amount"),
            _TOKEN_TYPE,
        ],
    ),
    _event(
        "NFTSold",
        [
            _address("buyer", indexed=True),
            _address("nftContract", indexed=True),
            _uint256("tokenId", indexed=True),
            _uint256("price"),
            _uint256("amount"),
            _TOKEN_TYPE,
        ],
    ),
    _event(
        "ListingCancelled",
        [
            _address("seller", indexed=True),
            _address("nftContract", indexed=True),
            _uint256("tokenId", indexed=True),
        ],
    ),
    _event(
        "ListingPriceUpdated",
        [
            _address("nftContract", indexed=True),
            _uint256("tokenId", indexed=True),
            _uint256("oldPrice"),
            _uint256("newPrice"),
        ],
    ),
    _event("PlatformFeeUpdated", [_uint256("oldFee"), _uint256("newFee")]),
    _event(
        "OwnershipTransferred",
        [_address("previousOwner", indexed=True), _address("newOwner", indexed=True)],
    ),
    _view(
        "getListing",
        [_address("nftContract"), _uint256("tokenId")],
        [_LISTING_TUPLE],
    ),
    _view(
        "getERC1155Listing",
        [_address("nftContract"), _uint256("tokenId"), _address("seller")],
        [_LISTING_TUPLE],
    ),
    _view("platformFee", [], [{"internalType": "uint256", "name": "", "type": "uint256"}]),
    _view(
        "accumulatedFees", [], [{"internalType": "uint256", "name": "", "type": "uint256"}]
    ),
    _view(
        "MAX_PLATFORM_FEE", [], [{"internalType": "uint256", "name": "", "type": "uint256"}]
    ),
    _view("owner", [], [{"internalType": "address", "name": "", "type": "address"}]),
]

# Contract event name per event type. FeesWithdrawn has no on-chain event.
CONTRACT_EVENT_NAMES = {
    EventType.LISTED: "NFTListed",
    EventType.SOLD: "NFTSold",
    EventType.CANCELLED: "ListingCancelled",
    EventType.REPRICED: "ListingPriceUpdated",
    EventType.FEE_RATE_UPDATED: "PlatformFeeUpdated",
    EventType.OPERATOR_TRANSFERRED: "OwnershipTransferred",
}

# Event filter field -> indexed event argument
INDEXED_ARGUMENTS = {
    "contract_address": "nftContract",
    "token_id": "tokenId",
    "seller": "seller",
    "buyer": "buyer",
}
