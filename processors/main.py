import argparse
import json
import logging
import sys

from typing import Any, Optional, Sequence

from client.marketplace_client import (
    ListingsUnavailableError,
    ReadOnlyClientError,
    to_json_dict,
)
from ledger.errors import PreconditionError
from utils.config import Config
from utils.general_utils import format_ether, parse_ether, standardize_address
from utils.logging import configure_logging
from utils.models.marketplace_models import EventFilter
from utils.token_utils import ListingIdentity, TokenStandard
from utils.worker import MarketplaceServer

# Wei amounts that are also printed in ether
ETHER_FIELDS = ("price", "old_price", "fee", "accumulated_fee", "payment", "balance")


def with_ether(value: Any) -> Any:
    if isinstance(value, list):
        return [with_ether(item) for item in value]
    if not isinstance(value, dict):
        return value
    result = {}
    for key, item in value.items():
        result[key] = with_ether(item)
        if key in ETHER_FIELDS and isinstance(item, int):
            result[f"{key}_ether"] = format_ether(item)
    return result


def print_json(value: Any) -> None:
    print(json.dumps(with_ether(to_json_dict(value)), indent=2))


def token_standard(value: str) -> TokenStandard:
    return TokenStandard(value.lower())


def identity_from_args(
    args: argparse.Namespace, seller: Optional[str]
) -> ListingIdentity:
    if args.standard is TokenStandard.SEMI_FUNGIBLE and seller is None:
        raise ValueError("erc1155 listings are identified by --seller")
    return ListingIdentity.for_standard(
        args.standard, args.contract, args.token_id, seller
    )


def add_token_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--contract", required=True, help="Token contract address")
    parser.add_argument("--token-id", required=True, type=int)
    parser.add_argument(
        "--standard",
        type=token_standard,
        default=TokenStandard.UNIQUE,
        help="erc721 (default) or erc1155",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="nft-marketplace")
    parser.add_argument("-c", "--config", help="Path to config file", required=True)
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the health/metrics server")
    serve.add_argument("--max-iterations", type=int, default=None)

    list_item = subparsers.add_parser("list", help="List a token for sale")
    list_item.add_argument("--sender", required=True)
    add_token_arguments(list_item)
    list_item.add_argument("--price", required=True, help="Price in ether")
    list_item.add_argument("--amount", type=int, default=1)

    buy = subparsers.add_parser("buy", help="Buy a listed token")
    buy.add_argument("--sender", required=True)
    add_token_arguments(buy)
    buy.add_argument("--seller", help="Seller of an erc1155 listing")
    buy.add_argument("--payment", required=True, help="Attached payment in ether")

    cancel = subparsers.add_parser("cancel", help="Cancel your listing")
    cancel.add_argument("--sender", required=True)
    add_token_arguments(cancel)

    reprice = subparsers.add_parser("reprice", help="Change the price of your listing")
    reprice.add_argument("--sender", required=True)
    add_token_arguments(reprice)
    reprice.add_argument("--price", required=True, help="New price in ether")

    listings = subparsers.add_parser("listings", help="Active listings")
    listings.add_argument("--contract")
    listings.add_argument("--token-id", type=int)
    listings.add_argument("--seller")
    listings.add_argument("--timeout", type=float, default=None)

    listing = subparsers.add_parser("listing", help="Live listing record")
    add_token_arguments(listing)
    listing.add_argument("--seller", help="Seller of an erc1155 listing")

    history = subparsers.add_parser("history", help="Activity feed of an account")
    history.add_argument("--account", required=True)
    history.add_argument("--timeout", type=float, default=None)

    sales = subparsers.add_parser("sales", help="Most recent sales")
    sales.add_argument("--limit", type=int, default=10)

    subparsers.add_parser("fees", help="Fee rate and accumulated fees")

    set_fee = subparsers.add_parser("set-fee", help="Set the platform fee rate")
    set_fee.add_argument("--sender", required=True)
    set_fee.add_argument("--rate-bps", required=True, type=int)

    withdraw_fees = subparsers.add_parser("withdraw-fees", help="Withdraw accumulated fees")
    withdraw_fees.add_argument("--sender", required=True)

    register = subparsers.add_parser("register-collection", help="Register a token contract")
    register.add_argument("--contract", required=True)
    register.add_argument("--standard", type=token_standard, required=True)

    mint = subparsers.add_parser("mint", help="Mint tokens to an account")
    mint.add_argument("--contract", required=True)
    mint.add_argument("--token-id", required=True, type=int)
    mint.add_argument("--to", required=True)
    mint.add_argument("--amount", type=int, default=1)

    approve = subparsers.add_parser("approve", help="Approve the marketplace")
    approve.add_argument("--sender", required=True)
    approve.add_argument("--contract", required=True)
    approve.add_argument(
        "--token-id", type=int, help="Approve one erc721 token instead of all tokens"
    )
    approve.add_argument("--revoke", action="store_true")

    deposit = subparsers.add_parser("deposit", help="Credit native currency")
    deposit.add_argument("--account", required=True)
    deposit.add_argument("--value", required=True, help="Amount in ether")

    return parser


def run_command(server: MarketplaceServer, args: argparse.Namespace) -> None:
    client = server.client
    match args.command:
        case "serve":
            server.run(args.max_iterations)
        case "list":
            print_json(
                client.list_item(
                    args.sender,
                    args.contract,
                    args.token_id,
                    parse_ether(args.price),
                    args.standard,
                    args.amount,
                )
            )
        case "buy":
            identity = identity_from_args(args, args.seller)
            print_json(client.buy_item(args.sender, identity, parse_ether(args.payment)))
        case "cancel":
            identity = identity_from_args(args, args.sender)
            print_json(client.cancel_listing(args.sender, identity))
        case "reprice":
            identity = identity_from_args(args, args.sender)
            print_json(
                client.reprice_listing(args.sender, identity, parse_ether(args.price))
            )
        case "listings":
            event_filter = EventFilter(
                contract_address=args.contract,
                token_id=args.token_id,
                seller=args.seller,
            )
            print_json(client.get_active_listings(event_filter, args.timeout))
        case "listing":
            print_json(client.get_listing(identity_from_args(args, args.seller)))
        case "history":
            print_json(client.get_account_history(args.account, args.timeout))
        case "sales":
            print_json(client.get_recent_sales(args.limit))
        case "fees":
            print_json(client.get_fee_state())
        case "set-fee":
            print_json(client.set_fee_rate(args.sender, args.rate_bps))
        case "withdraw-fees":
            print_json(client.withdraw_fees(args.sender))
        case "register-collection":
            require_ledger(server).register_collection(args.contract, args.standard)
            print_json({"contract_address": standardize_address(args.contract)})
        case "mint":
            ledger = require_ledger(server)
            ledger.mint(args.contract, args.token_id, args.to, args.amount)
            print_json(
                {
                    "contract_address": standardize_address(args.contract),
                    "token_id": args.token_id,
                    "owner": standardize_address(args.to),
                    "amount": args.amount,
                }
            )
        case "approve":
            ledger = require_ledger(server)
            if args.token_id is None:
                ledger.set_approval_for_all(
                    args.sender, args.contract, approved=not args.revoke
                )
            else:
                ledger.approve(
                    args.sender, args.contract, args.token_id, approved=not args.revoke
                )
            print_json({"operator": ledger.marketplace_address, "approved": not args.revoke})
        case "deposit":
            ledger = require_ledger(server)
            ledger.deposit(args.account, parse_ether(args.value))
            print_json(
                {
                    "account": standardize_address(args.account),
                    "balance": ledger.native_balance_of(args.account),
                }
            )


def require_ledger(server: MarketplaceServer):
    if server.ledger is None:
        raise ReadOnlyClientError()
    return server.ledger


def print_error(code: str, message: str) -> None:
    print(json.dumps({"error": code, "message": message}), file=sys.stderr)


def main(argv: Optional[Sequence[str]] = None) -> int:
    configure_logging(logging.INFO)

    args = build_parser().parse_args(argv)
    config = Config.from_yaml_file(args.config)
    server = MarketplaceServer(config)

    try:
        run_command(server, args)
    except PreconditionError as e:
        print_error(e.code, str(e))
        return 1
    except ListingsUnavailableError as e:
        print_error("ListingsUnavailable", str(e))
        return 2
    except (ReadOnlyClientError, ValueError) as e:
        print_error("InvalidRequest", str(e))
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
