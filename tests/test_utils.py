import pytest

from utils.general_utils import (
    format_ether,
    parse_ether,
    standardize_address,
)
from utils.models.marketplace_models import EventFilter, Listing
from utils.token_utils import ListingIdentity, TokenStandard


class TestAddresses:
    def test_standardize_pads_and_lowercases(self):
        assert standardize_address("0xAB") == "0x" + "0" * 38 + "ab"

    def test_standardize_without_prefix(self):
        assert standardize_address("ab") == standardize_address("0xab")

    def test_address_too_long(self):
        with pytest.raises(ValueError):
            standardize_address("0x" + "1" * 41)


class TestEther:
    @pytest.mark.parametrize(
        "value, wei",
        [
            ("1", 10**18),
            ("1.5", 15 * 10**17),
            ("0.025", 25 * 10**15),
            ("0.000000000000000001", 1),
        ],
    )
    def test_parse_and_format(self, value, wei):
        assert parse_ether(value) == wei
        assert format_ether(wei) == value

    @pytest.mark.parametrize("value", ["abc", "0.0000000000000000001"])
    def test_invalid_amounts(self, value):
        with pytest.raises(ValueError):
            parse_ether(value)


class TestListingIdentity:
    def test_unique_identity_ignores_seller(self):
        identity = ListingIdentity.for_standard(
            TokenStandard.UNIQUE, "0xC721", 7, seller="0x01"
        )

        assert identity.seller is None
        assert identity.is_seller_scoped is False
        assert identity.seller_key() == ""

    def test_semi_fungible_identity_needs_seller(self):
        with pytest.raises(ValueError):
            ListingIdentity.for_standard(TokenStandard.SEMI_FUNGIBLE, "0xc1155", 9)

    def test_semi_fungible_identities_differ_by_seller(self):
        first = ListingIdentity.for_standard(
            TokenStandard.SEMI_FUNGIBLE, "0xc1155", 9, "0x01"
        )
        second = ListingIdentity.for_standard(
            TokenStandard.SEMI_FUNGIBLE, "0xc1155", 9, "0x02"
        )

        assert first != second
        assert first.token_key() == second.token_key()

    def test_empty_listing_keeps_standard_of_identity(self):
        identity = ListingIdentity.for_standard(
            TokenStandard.SEMI_FUNGIBLE, "0xc1155", 9, "0x01"
        )

        listing = Listing.empty(identity)

        assert listing.token_standard is TokenStandard.SEMI_FUNGIBLE
        assert listing.active is False

    @pytest.mark.parametrize("standard", list(TokenStandard))
    def test_abi_values(self, standard):
        assert TokenStandard.from_abi_value(standard.abi_value) is standard

    def test_unknown_abi_value(self):
        with pytest.raises(ValueError):
            TokenStandard.from_abi_value(2)


def test_event_filter_normalizes_addresses():
    event_filter = EventFilter(contract_address="0xC721", seller="0x1")

    assert event_filter.contract_address == standardize_address("0xc721")
    assert event_filter.seller == standardize_address("0x01")
    assert event_filter.buyer is None
