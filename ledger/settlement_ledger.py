"""Single-writer settlement state machine.

Every mutating call runs as one ledger transaction: a database transaction
taken under the ledger's write lock. A transaction that commits occupies the
next block and may emit marketplace events, numbered by `log_index` within
that block. A transaction that raises is rolled back entirely and leaves the
chain height untouched.
"""

import logging
import threading

from contextlib import contextmanager, nullcontext
from dataclasses import asdict
from typing import Iterator, Optional, Sequence
from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger import assets
from ledger.errors import (
    AmountCannotBeZeroError,
    FeeTooHighError,
    InsufficientBalanceError,
    InsufficientPaymentError,
    ListingNotActiveError,
    NoFeesToWithdrawError,
    NotApprovedForMarketplaceError,
    NotOperatorError,
    NotSellerError,
    NotTokenOwnerError,
    PreconditionError,
    PriceCannotBeZeroError,
    UnsupportedTokenTypeError,
)
from ledger.models import (
    SINGLETON_ROW_ID,
    ChainHead,
    FeeLedger,
    MarketplaceEvent,
    MarketplaceListing,
    TokenContract,
)
from utils.config import DEFAULT_MARKETPLACE_ADDRESS, LedgerConfig
from utils.general_utils import hash, standardize_address
from utils.metrics import (
    LEDGER_REJECTED_TRANSACTIONS_COUNTER,
    LEDGER_TRANSACTIONS_COUNTER,
)
from utils.models.general_models import Base
from utils.models.marketplace_models import (
    EventFilter,
    EventRecord,
    EventType,
    FeeState,
    Listing,
)
from utils.session import (
    create_ledger_engine,
    create_session_factory,
    is_in_memory_sqlite,
)
from utils.token_utils import ListingIdentity, TokenStandard

MAX_FEE_BPS = 1000
DEFAULT_FEE_BPS = 250
BPS_DENOMINATOR = 10_000


def compute_fee(price: int, fee_rate_bps: int) -> tuple[int, int]:
    """Split a sale price into (fee, seller proceeds); the fee rounds down."""
    fee = price * fee_rate_bps // BPS_DENOMINATOR
    return fee, price - fee


def event_record_from_row(row: MarketplaceEvent) -> EventRecord:
    return EventRecord(
        block_height=row.block_height,
        log_index=row.log_index,
        transaction_hash=row.transaction_hash,
        event_type=EventType(row.event_type),
        contract_address=row.contract_address,
        token_id=row.token_id,
        token_standard=(
            TokenStandard(row.token_standard) if row.token_standard else None
        ),
        seller=row.seller,
        buyer=row.buyer,
        price=row.price,
        old_price=row.old_price,
        amount=row.amount,
        fee=row.fee,
        account=row.account,
        fee_rate_bps=row.fee_rate_bps,
        old_fee_rate_bps=row.old_fee_rate_bps,
    )


def listing_from_row(row: MarketplaceListing) -> Listing:
    return Listing(
        contract_address=row.contract_address,
        token_id=row.token_id,
        seller=row.seller,
        price=row.price,
        amount=row.amount,
        token_standard=TokenStandard(row.token_standard),
        active=row.active,
    )


class LedgerTransaction:
    """Handle on the open ledger transaction passed to each operation."""

    def __init__(self, session: Session, block_height: int, transaction_hash: str):
        self.session = session
        self.block_height = block_height
        self.transaction_hash = transaction_hash
        self.events: list[EventRecord] = []

    def emit(self, event_type: EventType, **fields) -> EventRecord:
        record = EventRecord(
            block_height=self.block_height,
            log_index=len(self.events),
            transaction_hash=self.transaction_hash,
            event_type=event_type,
            **fields,
        )
        row = asdict(record)
        row["event_type"] = event_type.value
        if record.token_standard is not None:
            row["token_standard"] = record.token_standard.value
        self.session.add(MarketplaceEvent(**row))
        self.events.append(record)
        return record


class SettlementLedger:
    def __init__(
        self,
        database_uri: str,
        operator: str,
        fee_rate_bps: int = DEFAULT_FEE_BPS,
        marketplace_address: str = DEFAULT_MARKETPLACE_ADDRESS,
        deployment_height: int = 0,
    ):
        if fee_rate_bps > MAX_FEE_BPS:
            raise FeeTooHighError(
                f"Fee rate {fee_rate_bps} exceeds the maximum of {MAX_FEE_BPS} bps"
            )
        if fee_rate_bps < 0:
            raise ValueError(f"Fee rate cannot be negative: {fee_rate_bps}")

        self.database_uri = database_uri
        self.marketplace_address = standardize_address(marketplace_address)
        self.deployment_height = deployment_height
        self.engine = create_ledger_engine(database_uri)
        self.Session = create_session_factory(self.engine)
        self._write_lock = threading.RLock()
        # An in-memory database is one shared connection, so reads queue behind writes
        self._serialize_reads = is_in_memory_sqlite(database_uri)

        Base.metadata.create_all(self.engine, checkfirst=True)
        self._init_genesis(standardize_address(operator), fee_rate_bps)

    @classmethod
    def from_config(cls, config: LedgerConfig) -> "SettlementLedger":
        return cls(
            config.database_uri,
            config.operator_address,
            fee_rate_bps=config.fee_rate_bps,
            marketplace_address=config.marketplace_address,
            deployment_height=config.deployment_height,
        )

    def _init_genesis(self, operator: str, fee_rate_bps: int) -> None:
        with self._write_lock, self.Session() as session, session.begin():
            if session.get(ChainHead, SINGLETON_ROW_ID) is not None:
                logging.info(
                    "[Ledger] Reopened existing ledger",
                    extra={"database_uri": self.database_uri},
                )
                fee_ledger = session.get(FeeLedger, SINGLETON_ROW_ID)
                if (fee_ledger.operator, fee_ledger.fee_rate_bps) != (
                    operator,
                    fee_rate_bps,
                ):
                    logging.warning(
                        "[Ledger] Configured operator and fee rate ignored, the stored values apply",
                        extra={
                            "database_uri": self.database_uri,
                            "configured_operator": operator,
                            "configured_fee_rate_bps": fee_rate_bps,
                            "operator": fee_ledger.operator,
                            "fee_rate_bps": fee_ledger.fee_rate_bps,
                        },
                    )
                return
            session.add(
                ChainHead(
                    id=SINGLETON_ROW_ID, height=self.deployment_height, nonce=0
                )
            )
            session.add(
                FeeLedger(
                    id=SINGLETON_ROW_ID,
                    operator=operator,
                    fee_rate_bps=fee_rate_bps,
                    accumulated_fee=0,
                )
            )
        logging.info(
            "[Ledger] Created new ledger",
            extra={
                "database_uri": self.database_uri,
                "operator": operator,
                "fee_rate_bps": fee_rate_bps,
                "deployment_height": self.deployment_height,
            },
        )

    def _read_lock(self):
        return self._write_lock if self._serialize_reads else nullcontext()

    @contextmanager
    def _transaction(
        self, transaction_type: str, sender: str
    ) -> Iterator[LedgerTransaction]:
        with self._write_lock:
            try:
                with self.Session() as session, session.begin():
                    head = session.get(ChainHead, SINGLETON_ROW_ID)
                    assert head is not None, "[Ledger] Chain head is missing"
                    transaction = LedgerTransaction(
                        session,
                        block_height=head.height + 1,
                        transaction_hash="0x"
                        + hash(f"{head.nonce}:{transaction_type}:{sender}"),
                    )
                    yield transaction
                    head.height = transaction.block_height
                    head.nonce += 1
            except PreconditionError as e:
                LEDGER_REJECTED_TRANSACTIONS_COUNTER.labels(
                    transaction_type=transaction_type, error_code=e.code
                ).inc()
                logging.info(
                    "[Ledger] Transaction rejected",
                    extra={
                        "transaction_type": transaction_type,
                        "sender": sender,
                        "error_code": e.code,
                        "error": str(e),
                    },
                )
                raise
        LEDGER_TRANSACTIONS_COUNTER.labels(transaction_type=transaction_type).inc()
        logging.info(
            "[Ledger] Transaction committed",
            extra={
                "transaction_type": transaction_type,
                "sender": sender,
                "block_height": transaction.block_height,
                "transaction_hash": transaction.transaction_hash,
                "num_of_events": len(transaction.events),
            },
        )

    def _get_fee_ledger(self, session: Session) -> FeeLedger:
        fee_ledger = session.get(FeeLedger, SINGLETON_ROW_ID)
        assert fee_ledger is not None, "[Ledger] Fee ledger is missing"
        return fee_ledger

    def _require_operator(self, session: Session, sender: str) -> FeeLedger:
        fee_ledger = self._get_fee_ledger(session)
        if fee_ledger.operator != sender:
            raise NotOperatorError()
        return fee_ledger

    def _get_active_listing(
        self, session: Session, identity: ListingIdentity
    ) -> MarketplaceListing:
        row = session.get(
            MarketplaceListing,
            (identity.contract_address, identity.token_id, identity.seller_key()),
        )
        if row is None or not row.active:
            raise ListingNotActiveError(f"No active listing for {identity}")
        return row

    # Marketplace transactions

    def list_item(
        self,
        sender: str,
        contract_address: str,
        token_id: int,
        price: int,
        token_standard: TokenStandard = TokenStandard.UNIQUE,
        amount: int = 1,
    ) -> EventRecord:
        sender = standardize_address(sender)
        identity = ListingIdentity.for_standard(
            token_standard, contract_address, token_id, sender
        )
        if token_standard is TokenStandard.UNIQUE:
            amount = 1

        with self._transaction("list", sender) as transaction:
            session = transaction.session
            if price <= 0:
                raise PriceCannotBeZeroError()
            if amount <= 0:
                raise AmountCannotBeZeroError()
            assets.require_token_standard(
                session, identity.contract_address, token_standard
            )
            held = assets.balance_of(
                session,
                token_standard,
                identity.contract_address,
                identity.token_id,
                sender,
            )
            if held < amount:
                raise NotTokenOwnerError(
                    f"{sender} holds {held} of {identity}, needs {amount}"
                )
            if not assets.is_approved_for_marketplace(
                session,
                token_standard,
                identity.contract_address,
                identity.token_id,
                sender,
                self.marketplace_address,
            ):
                raise NotApprovedForMarketplaceError()

            # Relisting overwrites the previous record under the same identity
            session.merge(
                MarketplaceListing(
                    contract_address=identity.contract_address,
                    token_id=identity.token_id,
                    seller_key=identity.seller_key(),
                    seller=sender,
                    price=price,
                    amount=amount,
                    token_standard=token_standard.value,
                    active=True,
                    last_block_height=transaction.block_height,
                )
            )
            return transaction.emit(
                EventType.LISTED,
                contract_address=identity.contract_address,
                token_id=identity.token_id,
                token_standard=token_standard,
                seller=sender,
                price=price,
                amount=amount,
            )

    def buy(self, sender: str, identity: ListingIdentity, payment: int) -> EventRecord:
        buyer = standardize_address(sender)

        with self._transaction("buy", buyer) as transaction:
            session = transaction.session
            listing = self._get_active_listing(session, identity)
            if payment < listing.price:
                raise InsufficientPaymentError(
                    f"Payment {payment} is below the price {listing.price}"
                )
            assets.debit_native(session, buyer, payment)

            token_standard = TokenStandard(listing.token_standard)
            held = assets.balance_of(
                session,
                token_standard,
                listing.contract_address,
                listing.token_id,
                listing.seller,
            )
            if held < listing.amount:
                if token_standard is TokenStandard.UNIQUE:
                    raise NotTokenOwnerError(f"Seller no longer owns {identity}")
                raise InsufficientBalanceError(
                    f"Seller holds {held} of {identity}, listed {listing.amount}"
                )
            if not assets.is_approved_for_marketplace(
                session,
                token_standard,
                listing.contract_address,
                listing.token_id,
                listing.seller,
                self.marketplace_address,
            ):
                raise NotApprovedForMarketplaceError()

            assets.transfer(
                session,
                token_standard,
                listing.contract_address,
                listing.token_id,
                listing.seller,
                buyer,
                listing.amount,
            )
            fee_ledger = self._get_fee_ledger(session)
            fee, proceeds = compute_fee(listing.price, fee_ledger.fee_rate_bps)
            assets.credit_native(session, listing.seller, proceeds)
            fee_ledger.accumulated_fee += fee
            assets.credit_native(session, buyer, payment - listing.price)

            listing.active = False
            listing.last_block_height = transaction.block_height
            return transaction.emit(
                EventType.SOLD,
                contract_address=listing.contract_address,
                token_id=listing.token_id,
                token_standard=token_standard,
                seller=listing.seller,
                buyer=buyer,
                price=listing.price,
                amount=listing.amount,
                fee=fee,
            )

    def cancel(self, sender: str, identity: ListingIdentity) -> EventRecord:
        sender = standardize_address(sender)

        with self._transaction("cancel", sender) as transaction:
            listing = self._get_active_listing(transaction.session, identity)
            if listing.seller != sender:
                raise NotSellerError()

            listing.active = False
            listing.last_block_height = transaction.block_height
            return transaction.emit(
                EventType.CANCELLED,
                contract_address=listing.contract_address,
                token_id=listing.token_id,
                token_standard=TokenStandard(listing.token_standard),
                seller=listing.seller,
                price=listing.price,
                amount=listing.amount,
            )

    def reprice(
        self, sender: str, identity: ListingIdentity, new_price: int
    ) -> EventRecord:
        sender = standardize_address(sender)

        with self._transaction("reprice", sender) as transaction:
            listing = self._get_active_listing(transaction.session, identity)
            if listing.seller != sender:
                raise NotSellerError()
            if new_price <= 0:
                raise PriceCannotBeZeroError()

            old_price = listing.price
            listing.price = new_price
            listing.last_block_height = transaction.block_height
            return transaction.emit(
                EventType.REPRICED,
                contract_address=listing.contract_address,
                token_id=listing.token_id,
                token_standard=TokenStandard(listing.token_standard),
                seller=listing.seller,
                price=new_price,
                old_price=old_price,
                amount=listing.amount,
            )

    # Operator transactions

    def set_fee_rate(self, sender: str, new_rate_bps: int) -> EventRecord:
        sender = standardize_address(sender)

        with self._transaction("set_fee_rate", sender) as transaction:
            fee_ledger = self._require_operator(transaction.session, sender)
            if new_rate_bps > MAX_FEE_BPS:
                raise FeeTooHighError(
                    f"Fee rate {new_rate_bps} exceeds the maximum of {MAX_FEE_BPS} bps"
                )
            if new_rate_bps < 0:
                raise ValueError(f"Fee rate cannot be negative: {new_rate_bps}")

            old_rate_bps = fee_ledger.fee_rate_bps
            fee_ledger.fee_rate_bps = new_rate_bps
            return transaction.emit(
                EventType.FEE_RATE_UPDATED,
                account=sender,
                fee_rate_bps=new_rate_bps,
                old_fee_rate_bps=old_rate_bps,
            )

    def withdraw_fees(self, sender: str) -> EventRecord:
        sender = standardize_address(sender)

        with self._transaction("withdraw_fees", sender) as transaction:
            fee_ledger = self._require_operator(transaction.session, sender)
            amount = fee_ledger.accumulated_fee
            if amount == 0:
                raise NoFeesToWithdrawError()

            fee_ledger.accumulated_fee = 0
            assets.credit_native(transaction.session, sender, amount)
            return transaction.emit(
                EventType.FEES_WITHDRAWN, account=sender, fee=amount
            )

    def transfer_operator(self, sender: str, new_operator: str) -> EventRecord:
        sender = standardize_address(sender)
        new_operator = standardize_address(new_operator)

        with self._transaction("transfer_operator", sender) as transaction:
            fee_ledger = self._require_operator(transaction.session, sender)
            fee_ledger.operator = new_operator
            return transaction.emit(
                EventType.OPERATOR_TRANSFERRED, account=new_operator
            )

    # Asset transactions, these emit no marketplace event

    def register_collection(
        self, contract_address: str, token_standard: TokenStandard
    ) -> None:
        contract_address = standardize_address(contract_address)

        with self._transaction("register_collection", contract_address) as transaction:
            existing = transaction.session.get(TokenContract, contract_address)
            if existing is not None:
                if existing.token_standard != token_standard.value:
                    raise UnsupportedTokenTypeError(
                        f"{contract_address} is already registered as {existing.token_standard}"
                    )
                return
            transaction.session.add(
                TokenContract(
                    contract_address=contract_address,
                    token_standard=token_standard.value,
                )
            )

    def mint(
        self, contract_address: str, token_id: int, to: str, amount: int = 1
    ) -> None:
        contract_address = standardize_address(contract_address)
        to = standardize_address(to)

        with self._transaction("mint", to) as transaction:
            session = transaction.session
            token_standard = assets.get_token_standard(session, contract_address)
            if amount <= 0:
                raise AmountCannotBeZeroError()
            if token_standard is TokenStandard.UNIQUE and amount != 1:
                raise ValueError("Unique tokens are minted one at a time")
            assets.mint(session, token_standard, contract_address, token_id, to, amount)

    def approve(
        self,
        sender: str,
        contract_address: str,
        token_id: int,
        approved: bool = True,
        operator: Optional[str] = None,
    ) -> None:
        sender = standardize_address(sender)
        contract_address = standardize_address(contract_address)
        # Revoking clears the single-token approval whoever holds it
        operator = (
            standardize_address(operator or self.marketplace_address)
            if approved
            else None
        )

        with self._transaction("approve", sender) as transaction:
            assets.require_token_standard(
                transaction.session, contract_address, TokenStandard.UNIQUE
            )
            assets.approve(
                transaction.session, contract_address, token_id, sender, operator
            )

    def set_approval_for_all(
        self,
        sender: str,
        contract_address: str,
        approved: bool = True,
        operator: Optional[str] = None,
    ) -> None:
        sender = standardize_address(sender)
        contract_address = standardize_address(contract_address)
        operator = standardize_address(operator or self.marketplace_address)

        with self._transaction("set_approval_for_all", sender) as transaction:
            assets.get_token_standard(transaction.session, contract_address)
            assets.set_approval_for_all(
                transaction.session, contract_address, sender, operator, approved
            )

    def transfer_token(
        self,
        sender: str,
        contract_address: str,
        token_id: int,
        recipient: str,
        amount: int = 1,
    ) -> None:
        sender = standardize_address(sender)
        contract_address = standardize_address(contract_address)
        recipient = standardize_address(recipient)

        with self._transaction("transfer_token", sender) as transaction:
            session = transaction.session
            token_standard = assets.get_token_standard(session, contract_address)
            if amount <= 0:
                raise AmountCannotBeZeroError()
            assets.transfer(
                session,
                token_standard,
                contract_address,
                token_id,
                sender,
                recipient,
                amount,
            )

    def deposit(self, account: str, value: int) -> None:
        account = standardize_address(account)
        if value < 0:
            raise ValueError(f"Deposit cannot be negative: {value}")

        with self._transaction("deposit", account) as transaction:
            assets.credit_native(transaction.session, account, value)

    def mine(self, blocks: int = 1) -> int:
        """Advance the chain height by `blocks` empty blocks."""
        if blocks < 0:
            raise ValueError(f"Cannot mine a negative number of blocks: {blocks}")
        with self._write_lock, self.Session() as session, session.begin():
            head = session.get(ChainHead, SINGLETON_ROW_ID)
            assert head is not None, "[Ledger] Chain head is missing"
            head.height += blocks
            return head.height

    # Reads

    def get_listing(self, identity: ListingIdentity) -> Listing:
        with self._read_lock(), self.Session() as session:
            row = session.get(
                MarketplaceListing,
                (identity.contract_address, identity.token_id, identity.seller_key()),
            )
            if row is None:
                return Listing.empty(identity)
            return listing_from_row(row)

    def get_fee_state(self) -> FeeState:
        with self._read_lock(), self.Session() as session:
            fee_ledger = self._get_fee_ledger(session)
            return FeeState(
                fee_rate_bps=fee_ledger.fee_rate_bps,
                accumulated_fee=fee_ledger.accumulated_fee,
                max_fee_bps=MAX_FEE_BPS,
                operator=fee_ledger.operator,
            )

    def get_block_number(self) -> int:
        with self._read_lock(), self.Session() as session:
            head = session.get(ChainHead, SINGLETON_ROW_ID)
            assert head is not None, "[Ledger] Chain head is missing"
            return head.height

    def get_events(
        self,
        event_types: Optional[Sequence[EventType]] = None,
        event_filter: Optional[EventFilter] = None,
        from_block: int = 0,
        to_block: Optional[int] = None,
    ) -> list[EventRecord]:
        """Events with `from_block <= block_height <= to_block`, oldest first."""
        query = select(MarketplaceEvent).where(
            MarketplaceEvent.block_height >= from_block
        )
        if to_block is not None:
            query = query.where(MarketplaceEvent.block_height <= to_block)
        if event_types is not None:
            query = query.where(
                MarketplaceEvent.event_type.in_(
                    [event_type.value for event_type in event_types]
                )
            )
        if event_filter is not None:
            if event_filter.contract_address is not None:
                query = query.where(
                    MarketplaceEvent.contract_address == event_filter.contract_address
                )
            if event_filter.token_id is not None:
                query = query.where(MarketplaceEvent.token_id == event_filter.token_id)
            if event_filter.seller is not None:
                query = query.where(MarketplaceEvent.seller == event_filter.seller)
            if event_filter.buyer is not None:
                query = query.where(MarketplaceEvent.buyer == event_filter.buyer)
        query = query.order_by(MarketplaceEvent.block_height, MarketplaceEvent.log_index)

        with self._read_lock(), self.Session() as session:
            return [event_record_from_row(row) for row in session.scalars(query)]

    def owner_of(self, contract_address: str, token_id: int) -> Optional[str]:
        with self._read_lock(), self.Session() as session:
            return assets.owner_of(
                session, standardize_address(contract_address), token_id
            )

    def balance_of(self, contract_address: str, token_id: int, account: str) -> int:
        contract_address = standardize_address(contract_address)
        with self._read_lock(), self.Session() as session:
            return assets.balance_of(
                session,
                assets.get_token_standard(session, contract_address),
                contract_address,
                token_id,
                standardize_address(account),
            )

    def native_balance_of(self, account: str) -> int:
        with self._read_lock(), self.Session() as session:
            return assets.native_balance_of(session, standardize_address(account))

    def get_token_standard(self, contract_address: str) -> TokenStandard:
        with self._read_lock(), self.Session() as session:
            return assets.get_token_standard(
                session, standardize_address(contract_address)
            )

    def close(self) -> None:
        self.engine.dispose()
