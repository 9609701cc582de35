"""Tests for the JSON-RPC read provider, with the contract binding mocked out."""

from unittest.mock import MagicMock

import pytest
import requests

from web3 import Web3
from web3.exceptions import Web3Exception

from scanner.errors import ProviderError, RangeTooLargeError
from scanner.web3_provider import (
    Web3ReadProvider,
    event_record_from_log,
    is_range_too_large,
    listing_from_call,
)
from tests.constants import BUYER, ETHER, SELLER, UNIQUE_CONTRACT
from utils.general_utils import ZERO_ADDRESS
from utils.models.marketplace_models import EventFilter, EventType
from utils.token_utils import ListingIdentity, TokenStandard

MARKETPLACE_CONTRACT = "0x" + "11" * 20
UNIQUE_7 = ListingIdentity.for_standard(TokenStandard.UNIQUE, UNIQUE_CONTRACT, 7)


def make_log(args, block_number=5, log_index=0):
    return {
        "args": args,
        "blockNumber": block_number,
        "logIndex": log_index,
        "transactionHash": bytes.fromhex("ab" * 32),
    }


def listed_log(block_number=5, log_index=0, seller=SELLER):
    return make_log(
        {
            "seller": Web3.to_checksum_address(seller),
            "nftContract": Web3.to_checksum_address(UNIQUE_CONTRACT),
            "tokenId": 7,
            "price": ETHER,
            "amount": 1,
            "tokenType": 0,
        },
        block_number,
        log_index,
    )


def sold_log(block_number=6):
    return make_log(
        {
            "buyer": Web3.to_checksum_address(BUYER),
            "nftContract": Web3.to_checksum_address(UNIQUE_CONTRACT),
            "tokenId": 7,
            "price": ETHER,
            "amount": 1,
            "tokenType": 0,
        },
        block_number,
    )


@pytest.fixture
def web3_provider():
    provider = Web3ReadProvider("http://localhost:8545", MARKETPLACE_CONTRACT)
    provider.contract = MagicMock()
    provider.w3 = MagicMock()
    return provider


class TestConversions:
    def test_listed_log(self):
        record = event_record_from_log(EventType.LISTED, listed_log())

        assert record.event_type is EventType.LISTED
        assert record.transaction_hash == "0x" + "ab" * 32
        assert (record.seller, record.contract_address) == (SELLER, UNIQUE_CONTRACT)
        assert record.token_standard is TokenStandard.UNIQUE

    def test_sold_log_has_no_seller(self):
        record = event_record_from_log(EventType.SOLD, sold_log())

        assert record.buyer == BUYER
        assert record.seller is None

    def test_fees_withdrawn_has_no_contract_event(self):
        with pytest.raises(ValueError):
            event_record_from_log(EventType.FEES_WITHDRAWN, make_log({}))

    def test_never_listed_identity_reads_as_empty(self):
        result = (ZERO_ADDRESS, ZERO_ADDRESS, 0, 0, 0, 0, False)

        assert listing_from_call(UNIQUE_7, result).contract_address == UNIQUE_CONTRACT

    def test_listing_tuple(self):
        result = (
            Web3.to_checksum_address(SELLER),
            Web3.to_checksum_address(UNIQUE_CONTRACT),
            7,
            ETHER,
            1,
            0,
            True,
        )

        listing = listing_from_call(UNIQUE_7, result)

        assert (listing.seller, listing.price, listing.active) == (SELLER, ETHER, True)

    @pytest.mark.parametrize(
        "message, expected",
        [
            ("query returned more than 10000 results", True),
            ("exceed maximum block range: 50000", True),
            ("Block range is too large", True),
            ("connection refused", False),
        ],
    )
    def test_range_too_large_detection(self, message, expected):
        assert is_range_too_large(message) is expected


class TestWeb3ReadProvider:
    def test_get_events_merges_and_orders(self, web3_provider):
        events = web3_provider.contract.events
        events.NFTListed.get_logs.return_value = [listed_log(block_number=5)]
        events.NFTSold.get_logs.return_value = [sold_log(block_number=4)]

        records = web3_provider.get_events(
            [EventType.LISTED, EventType.SOLD, EventType.FEES_WITHDRAWN], None, 0, 9
        )

        assert [record.event_type for record in records] == [
            EventType.SOLD,
            EventType.LISTED,
        ]
        events.NFTListed.get_logs.assert_called_once_with(
            argument_filters={}, from_block=0, to_block=9
        )

    def test_filter_uses_indexed_arguments(self, web3_provider):
        events = web3_provider.contract.events
        events.NFTListed.get_logs.return_value = [listed_log()]
        events.NFTSold.get_logs.return_value = [sold_log()]

        records = web3_provider.get_events(
            [EventType.LISTED, EventType.SOLD], EventFilter(seller=SELLER), 0, 9
        )

        events.NFTListed.get_logs.assert_called_once_with(
            argument_filters={"seller": Web3.to_checksum_address(SELLER)},
            from_block=0,
            to_block=9,
        )
        # NFTSold has no seller argument, so its logs cannot match a seller filter
        events.NFTSold.get_logs.assert_not_called()
        assert [record.event_type for record in records] == [EventType.LISTED]

    def test_buyer_filter_only_fetches_sales(self, web3_provider):
        events = web3_provider.contract.events
        events.NFTSold.get_logs.return_value = []

        web3_provider.get_events(
            [EventType.LISTED, EventType.SOLD], EventFilter(buyer=BUYER), 0, 9
        )

        events.NFTListed.get_logs.assert_not_called()
        events.NFTSold.get_logs.assert_called_once_with(
            argument_filters={"buyer": Web3.to_checksum_address(BUYER)},
            from_block=0,
            to_block=9,
        )

    def test_oversized_range_error(self, web3_provider):
        web3_provider.contract.events.NFTListed.get_logs.side_effect = Web3Exception(
            "query returned more than 10000 results"
        )

        with pytest.raises(RangeTooLargeError):
            web3_provider.get_events([EventType.LISTED], None, 0, 1_000_000)

    def test_transport_error(self, web3_provider):
        web3_provider.contract.events.NFTListed.get_logs.side_effect = (
            requests.exceptions.ConnectionError("connection refused")
        )

        with pytest.raises(ProviderError) as exc_info:
            web3_provider.get_events([EventType.LISTED], None, 0, 10)

        assert not isinstance(exc_info.value, RangeTooLargeError)

    def test_get_block_number(self, web3_provider):
        web3_provider.w3.eth.block_number = 123

        assert web3_provider.get_block_number() == 123

    def test_get_listing_calls_seller_scoped_view(self, web3_provider):
        identity = ListingIdentity.for_standard(
            TokenStandard.SEMI_FUNGIBLE, UNIQUE_CONTRACT, 9, SELLER
        )
        functions = web3_provider.contract.functions
        functions.getERC1155Listing.return_value.call.return_value = (
            Web3.to_checksum_address(SELLER),
            Web3.to_checksum_address(UNIQUE_CONTRACT),
            9,
            ETHER,
            3,
            1,
            True,
        )

        listing = web3_provider.get_listing(identity)

        functions.getERC1155Listing.assert_called_once_with(
            Web3.to_checksum_address(UNIQUE_CONTRACT),
            9,
            Web3.to_checksum_address(SELLER),
        )
        assert (listing.amount, listing.token_standard) == (3, TokenStandard.SEMI_FUNGIBLE)

    def test_get_fee_state(self, web3_provider):
        functions = web3_provider.contract.functions
        functions.platformFee.return_value.call.return_value = 250
        functions.accumulatedFees.return_value.call.return_value = ETHER
        functions.MAX_PLATFORM_FEE.return_value.call.return_value = 1000
        functions.owner.return_value.call.return_value = Web3.to_checksum_address(BUYER)

        fee_state = web3_provider.get_fee_state()

        assert (fee_state.fee_rate_bps, fee_state.accumulated_fee) == (250, ETHER)
        assert fee_state.operator == BUYER
