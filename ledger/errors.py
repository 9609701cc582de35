"""Precondition violations raised by the settlement ledger.

A failed precondition means the operation can never succeed as submitted, so
callers surface these verbatim and never retry them. `code` is the stable
name clients match on.
"""


class MarketplaceError(Exception):
    pass


class PreconditionError(MarketplaceError):
    code = "PreconditionViolation"
    default_message = "Precondition violated"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)


class NotTokenOwnerError(PreconditionError):
    code = "NotTokenOwner"
    default_message = "Caller does not hold enough of the token"


class NotApprovedForMarketplaceError(PreconditionError):
    code = "NotApprovedForMarketplace"
    default_message = "Marketplace is not approved to transfer the token"


class PriceCannotBeZeroError(PreconditionError):
    code = "PriceCannotBeZero"
    default_message = "Price cannot be zero"


class AmountCannotBeZeroError(PreconditionError):
    code = "AmountCannotBeZero"
    default_message = "Amount cannot be zero"


class ListingNotActiveError(PreconditionError):
    code = "ListingNotActive"
    default_message = "Listing is not active"


class NotSellerError(PreconditionError):
    code = "NotSeller"
    default_message = "Caller is not the seller of this listing"


class InsufficientPaymentError(PreconditionError):
    code = "InsufficientPayment"
    default_message = "Attached payment is below the listing price"


class InsufficientBalanceError(PreconditionError):
    code = "InsufficientBalance"
    default_message = "Balance is too low"


class FeeTooHighError(PreconditionError):
    code = "FeeTooHigh"
    default_message = "Fee rate exceeds the maximum"


class NoFeesToWithdrawError(PreconditionError):
    code = "NoFeesToWithdraw"
    default_message = "No fees to withdraw"


class UnsupportedTokenTypeError(PreconditionError):
    code = "UnsupportedTokenType"
    default_message = "Token contract does not support this token standard"


class NotOperatorError(PreconditionError):
    code = "NotOperator"
    default_message = "Caller is not the marketplace operator"
