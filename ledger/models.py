from utils.models.annotated_types import (
    BigIntegerPrimaryKeyType,
    BigIntegerType,
    BooleanType,
    InsertedAtType,
    NullableBigIntegerType,
    NullableStringType,
    NullableUint256Type,
    StringPrimaryKeyType,
    StringType,
    Uint256PrimaryKeyType,
    Uint256Type,
    UpdatedAtType,
)
from utils.models.general_models import Base
from sqlalchemy import Index

SINGLETON_ROW_ID = 1


class MarketplaceListing(Base):
    __tablename__ = "marketplace_listings"
    __table_args__ = (
        (Index("listings_seller_index", "seller")),
        (Index("listings_active_index", "active")),
    )

    contract_address: StringPrimaryKeyType
    token_id: Uint256PrimaryKeyType
    # Empty for Unique listings, the seller address for SemiFungible ones
    seller_key: StringPrimaryKeyType
    seller: StringType
    price: Uint256Type
    amount: Uint256Type
    token_standard: StringType
    active: BooleanType
    last_block_height: BigIntegerType
    inserted_at: InsertedAtType
    updated_at: UpdatedAtType


class MarketplaceEvent(Base):
    __tablename__ = "marketplace_events"
    __table_args__ = (
        (Index("events_type_index", "event_type")),
        (Index("events_token_index", "contract_address", "token_id")),
        (Index("events_seller_index", "seller")),
        (Index("events_buyer_index", "buyer")),
    )

    block_height: BigIntegerPrimaryKeyType
    log_index: BigIntegerPrimaryKeyType
    transaction_hash: StringType
    event_type: StringType
    contract_address: NullableStringType
    token_id: NullableUint256Type
    token_standard: NullableStringType
    seller: NullableStringType
    buyer: NullableStringType
    price: NullableUint256Type
    old_price: NullableUint256Type
    amount: NullableUint256Type
    fee: NullableUint256Type
    account: NullableStringType
    fee_rate_bps: NullableBigIntegerType
    old_fee_rate_bps: NullableBigIntegerType
    inserted_at: InsertedAtType


class FeeLedger(Base):
    __tablename__ = "fee_ledger"

    id: BigIntegerPrimaryKeyType
    operator: StringType
    fee_rate_bps: BigIntegerType
    accumulated_fee: Uint256Type
    updated_at: UpdatedAtType


class ChainHead(Base):
    __tablename__ = "chain_head"

    id: BigIntegerPrimaryKeyType
    height: BigIntegerType
    # Transactions committed so far; feeds transaction hashes
    nonce: BigIntegerType
    updated_at: UpdatedAtType


class TokenContract(Base):
    __tablename__ = "token_contracts"

    contract_address: StringPrimaryKeyType
    token_standard: StringType
    inserted_at: InsertedAtType


class UniqueTokenOwner(Base):
    __tablename__ = "unique_token_owners"
    __table_args__ = ((Index("unique_owner_index", "owner")),)

    contract_address: StringPrimaryKeyType
    token_id: Uint256PrimaryKeyType
    owner: StringType
    approved: NullableStringType


class SemiFungibleBalance(Base):
    __tablename__ = "semi_fungible_balances"

    contract_address: StringPrimaryKeyType
    token_id: Uint256PrimaryKeyType
    account: StringPrimaryKeyType
    balance: Uint256Type


class OperatorApproval(Base):
    __tablename__ = "operator_approvals"

    contract_address: StringPrimaryKeyType
    owner: StringPrimaryKeyType
    operator: StringPrimaryKeyType
    approved: BooleanType


class NativeBalance(Base):
    __tablename__ = "native_balances"

    account: StringPrimaryKeyType
    balance: Uint256Type
    updated_at: UpdatedAtType
