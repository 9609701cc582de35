import logging

from typing import Any, Callable, Optional, Sequence, TypeVar
from requests.exceptions import RequestException
from web3 import Web3
from web3.exceptions import Web3Exception

from scanner.errors import ProviderError, RangeTooLargeError
from scanner.marketplace_abi import (
    CONTRACT_EVENT_NAMES,
    INDEXED_ARGUMENTS,
    MARKETPLACE_ABI,
)
from scanner.read_provider import ReadProvider
from utils.general_utils import ZERO_ADDRESS, standardize_address
from utils.models.marketplace_models import (
    EventFilter,
    EventRecord,
    EventType,
    FeeState,
    Listing,
)
from utils.token_utils import ListingIdentity, TokenStandard

T = TypeVar("T")

# Fragments of the errors public RPC providers return for oversized eth_getLogs queries
RANGE_TOO_LARGE_MARKERS = (
    "block range",
    "range is too large",
    "range too large",
    "exceed maximum block range",
    "query returned more than",
    "limit exceeded",
)


def is_range_too_large(message: str) -> bool:
    message = message.lower()
    return any(marker in message for marker in RANGE_TOO_LARGE_MARKERS)


def event_record_from_log(event_type: EventType, log: Any) -> EventRecord:
    args = log["args"]
    common = dict(
        block_height=log["blockNumber"],
        log_index=log["logIndex"],
        transaction_hash=Web3.to_hex(log["transactionHash"]),
        event_type=event_type,
    )
    match event_type:
        case EventType.LISTED:
            return EventRecord(
                **common,
                contract_address=standardize_address(args["nftContract"]),
                token_id=args["tokenId"],
                token_standard=TokenStandard.from_abi_value(args["tokenType"]),
                seller=standardize_address(args["seller"]),
                price=args["price"],
                amount=args["amount"],
            )
        case EventType.SOLD:
            # NFTSold does not name the seller
            return EventRecord(
                **common,
                contract_address=standardize_address(args["nftContract"]),
                token_id=args["tokenId"],
                token_standard=TokenStandard.from_abi_value(args["tokenType"]),
                buyer=standardize_address(args["buyer"]),
                price=args["price"],
                amount=args["amount"],
            )
        case EventType.CANCELLED:
            return EventRecord(
                **common,
                contract_address=standardize_address(args["nftContract"]),
                token_id=args["tokenId"],
                seller=standardize_address(args["seller"]),
            )
        case EventType.REPRICED:
            return EventRecord(
                **common,
                contract_address=standardize_address(args["nftContract"]),
                token_id=args["tokenId"],
                price=args["newPrice"],
                old_price=args["oldPrice"],
            )
        case EventType.FEE_RATE_UPDATED:
            return EventRecord(
                **common,
                fee_rate_bps=args["newFee"],
                old_fee_rate_bps=args["oldFee"],
            )
        case EventType.OPERATOR_TRANSFERRED:
            return EventRecord(**common, account=standardize_address(args["newOwner"]))
        case _:
            raise ValueError(f"No contract event for {event_type}")


def listing_from_call(identity: ListingIdentity, result: Sequence[Any]) -> Listing:
    seller, contract_address, token_id, price, amount, token_type, active = result
    if not active and standardize_address(seller) == ZERO_ADDRESS:
        return Listing.empty(identity)
    return Listing(
        contract_address=standardize_address(contract_address),
        token_id=token_id,
        seller=standardize_address(seller),
        price=price,
        amount=amount,
        token_standard=TokenStandard.from_abi_value(token_type),
        active=active,
    )


class Web3ReadProvider(ReadProvider):
    """Reads a deployed marketplace contract over JSON-RPC.

    The underlying HTTP session is pooled by web3.py and safe to share across
    the scanner's fetch threads.
    """

    def __init__(self, rpc_url: str, contract_address: str, request_timeout_secs: int = 30):
        self.rpc_url = rpc_url
        self.w3 = Web3(
            Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": request_timeout_secs})
        )
        self.contract = self.w3.eth.contract(
            address=Web3.to_checksum_address(contract_address), abi=MARKETPLACE_ABI
        )
        self._event_inputs = {
            item["name"]: {argument["name"] for argument in item["inputs"]}
            for item in MARKETPLACE_ABI
            if item["type"] == "event"
        }

    def _request(self, fn: Callable[[], T]) -> T:
        try:
            return fn()
        except (RequestException, Web3Exception) as e:
            if is_range_too_large(str(e)):
                raise RangeTooLargeError(str(e)) from e
            logging.warning(
                "[Scanner] JSON-RPC request failed",
                extra={"rpc_url": self.rpc_url, "error": str(e)},
            )
            raise ProviderError(str(e)) from e

    def _argument_filters(
        self, contract_event_name: str, event_filter: Optional[EventFilter]
    ) -> Optional[dict]:
        """None when the filter names a field the event does not carry."""
        if event_filter is None:
            return {}
        inputs = self._event_inputs[contract_event_name]
        argument_filters = {}
        for field, argument in INDEXED_ARGUMENTS.items():
            value = getattr(event_filter, field)
            if value is None:
                continue
            if argument not in inputs:
                return None
            if isinstance(value, str):
                value = Web3.to_checksum_address(value)
            argument_filters[argument] = value
        return argument_filters

    def get_block_number(self) -> int:
        return self._request(lambda: self.w3.eth.block_number)

    def get_events(
        self,
        event_types: Sequence[EventType],
        event_filter: Optional[EventFilter],
        from_block: int,
        to_block: int,
    ) -> list[EventRecord]:
        records = []
        for event_type in event_types:
            contract_event_name = CONTRACT_EVENT_NAMES.get(event_type)
            if contract_event_name is None:
                continue
            contract_event = getattr(self.contract.events, contract_event_name)
            argument_filters = self._argument_filters(contract_event_name, event_filter)
            if argument_filters is None:
                continue
            logs = self._request(
                lambda: contract_event.get_logs(
                    argument_filters=argument_filters,
                    from_block=from_block,
                    to_block=to_block,
                )
            )
            records.extend(event_record_from_log(event_type, log) for log in logs)

        if event_filter is not None:
            records = event_filter.apply(records)
        records.sort(key=lambda record: record.ordering_key)
        return records

    def get_listing(self, identity: ListingIdentity) -> Listing:
        contract_address = Web3.to_checksum_address(identity.contract_address)
        if identity.is_seller_scoped:
            call = self.contract.functions.getERC1155Listing(
                contract_address,
                identity.token_id,
                Web3.to_checksum_address(identity.seller),
            )
        else:
            call = self.contract.functions.getListing(
                contract_address, identity.token_id
            )
        return listing_from_call(identity, self._request(call.call))

    def get_fee_state(self) -> FeeState:
        functions = self.contract.functions
        return FeeState(
            fee_rate_bps=self._request(functions.platformFee().call),
            accumulated_fee=self._request(functions.accumulatedFees().call),
            max_fee_bps=self._request(functions.MAX_PLATFORM_FEE().call),
            operator=standardize_address(self._request(functions.owner().call)),
        )
