"""Token and native-currency bookkeeping the settlement ledger settles against.

Every function takes the caller's open session so that asset movements share
the transaction of the marketplace operation that triggered them.
"""

from sqlalchemy.orm import Session

from ledger.errors import (
    InsufficientBalanceError,
    NotTokenOwnerError,
    UnsupportedTokenTypeError,
)
from ledger.models import (
    NativeBalance,
    OperatorApproval,
    SemiFungibleBalance,
    TokenContract,
    UniqueTokenOwner,
)
from utils.token_utils import TokenStandard


def get_token_standard(session: Session, contract_address: str) -> TokenStandard:
    token_contract = session.get(TokenContract, contract_address)
    if token_contract is None:
        raise UnsupportedTokenTypeError(
            f"Unknown token contract {contract_address}"
        )
    return TokenStandard(token_contract.token_standard)


def require_token_standard(
    session: Session, contract_address: str, token_standard: TokenStandard
) -> None:
    registered = get_token_standard(session, contract_address)
    if registered is not token_standard:
        raise UnsupportedTokenTypeError(
            f"{contract_address} is {registered.value}, not {token_standard.value}"
        )


def owner_of(session: Session, contract_address: str, token_id: int) -> str | None:
    token = session.get(UniqueTokenOwner, (contract_address, token_id))
    return token.owner if token else None


def balance_of(
    session: Session,
    token_standard: TokenStandard,
    contract_address: str,
    token_id: int,
    account: str,
) -> int:
    match token_standard:
        case TokenStandard.UNIQUE:
            return 1 if owner_of(session, contract_address, token_id) == account else 0
        case TokenStandard.SEMI_FUNGIBLE:
            holding = session.get(
                SemiFungibleBalance, (contract_address, token_id, account)
            )
            return holding.balance if holding else 0


def is_approved_for_all(
    session: Session, contract_address: str, owner: str, operator: str
) -> bool:
    approval = session.get(OperatorApproval, (contract_address, owner, operator))
    return bool(approval and approval.approved)


def is_approved_for_marketplace(
    session: Session,
    token_standard: TokenStandard,
    contract_address: str,
    token_id: int,
    owner: str,
    marketplace_address: str,
) -> bool:
    if is_approved_for_all(session, contract_address, owner, marketplace_address):
        return True
    if token_standard is TokenStandard.UNIQUE:
        token = session.get(UniqueTokenOwner, (contract_address, token_id))
        return token is not None and token.approved == marketplace_address
    # ERC1155 only knows operator approvals
    return False


def set_approval_for_all(
    session: Session, contract_address: str, owner: str, operator: str, approved: bool
) -> None:
    session.merge(
        OperatorApproval(
            contract_address=contract_address,
            owner=owner,
            operator=operator,
            approved=approved,
        )
    )


def approve(
    session: Session,
    contract_address: str,
    token_id: int,
    caller: str,
    operator: str | None,
) -> None:
    token = session.get(UniqueTokenOwner, (contract_address, token_id))
    if token is None or token.owner != caller:
        raise NotTokenOwnerError()
    token.approved = operator


def mint(
    session: Session,
    token_standard: TokenStandard,
    contract_address: str,
    token_id: int,
    to: str,
    amount: int,
) -> None:
    match token_standard:
        case TokenStandard.UNIQUE:
            if session.get(UniqueTokenOwner, (contract_address, token_id)):
                raise ValueError(f"Token {contract_address}/{token_id} already minted")
            session.add(
                UniqueTokenOwner(
                    contract_address=contract_address,
                    token_id=token_id,
                    owner=to,
                    approved=None,
                )
            )
            session.flush()
        case TokenStandard.SEMI_FUNGIBLE:
            _credit_semi_fungible(session, contract_address, token_id, to, amount)


def transfer(
    session: Session,
    token_standard: TokenStandard,
    contract_address: str,
    token_id: int,
    sender: str,
    recipient: str,
    amount: int,
) -> None:
    match token_standard:
        case TokenStandard.UNIQUE:
            token = session.get(UniqueTokenOwner, (contract_address, token_id))
            if token is None or token.owner != sender:
                raise NotTokenOwnerError()
            token.owner = recipient
            # ERC721 clears the single-token approval on every transfer
            token.approved = None
        case TokenStandard.SEMI_FUNGIBLE:
            holding = session.get(
                SemiFungibleBalance, (contract_address, token_id, sender)
            )
            if holding is None or holding.balance < amount:
                raise InsufficientBalanceError(
                    f"{sender} holds fewer than {amount} of {contract_address}/{token_id}"
                )
            holding.balance -= amount
            _credit_semi_fungible(session, contract_address, token_id, recipient, amount)


def _credit_semi_fungible(
    session: Session, contract_address: str, token_id: int, account: str, amount: int
) -> None:
    holding = session.get(SemiFungibleBalance, (contract_address, token_id, account))
    if holding is None:
        session.add(
            SemiFungibleBalance(
                contract_address=contract_address,
                token_id=token_id,
                account=account,
                balance=amount,
            )
        )
        session.flush()
    else:
        holding.balance += amount


def native_balance_of(session: Session, account: str) -> int:
    balance = session.get(NativeBalance, account)
    return balance.balance if balance else 0


def credit_native(session: Session, account: str, value: int) -> None:
    if value == 0:
        return
    balance = session.get(NativeBalance, account)
    if balance is None:
        session.add(NativeBalance(account=account, balance=value))
        session.flush()
    else:
        balance.balance += value


def debit_native(session: Session, account: str, value: int) -> None:
    balance = session.get(NativeBalance, account)
    if balance is None or balance.balance < value:
        raise InsufficientBalanceError(f"{account} cannot fund {value} wei")
    balance.balance -= value
