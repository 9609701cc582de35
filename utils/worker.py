import logging
import threading

from prometheus_client.twisted import MetricsResource
from twisted.internet import reactor
from twisted.web.resource import Resource
from twisted.web.server import Site
from time import perf_counter, sleep
from typing import Optional

from client.marketplace_client import MarketplaceClient
from ledger.settlement_ledger import SettlementLedger
from processors.account_history.processor import AccountHistoryProjector
from processors.listing_reconciler.processor import ListingReconciler
from scanner.errors import ReadFailedError
from scanner.ledger_provider import LedgerReadProvider
from scanner.log_scanner import LogScanner
from scanner.read_provider import ReadProvider
from scanner.web3_provider import Web3ReadProvider
from utils.config import (
    Config,
    LedgerProviderConfig,
    ProviderType,
    Web3ProviderConfig,
)
from utils.metrics import ACTIVE_LISTINGS


class MarketplaceServer:
    config: Config
    ledger: Optional[SettlementLedger]
    provider: ReadProvider

    def __init__(self, config: Config):
        self.config = config
        provider_config = self.config.provider
        logging.info(
            "[Server] Kicking off",
            extra={"provider_type": provider_config.type},
        )

        # Instantiate the correct read provider based on config
        match provider_config.type:
            case ProviderType.LEDGER.value:
                assert isinstance(provider_config, LedgerProviderConfig)
                assert self.config.ledger is not None
                self.ledger = SettlementLedger.from_config(self.config.ledger)
                self.provider = LedgerReadProvider(
                    self.ledger, provider_config.max_block_range
                )
                deployment_height = self.config.ledger.deployment_height
            case ProviderType.WEB3.value:
                assert isinstance(provider_config, Web3ProviderConfig)
                # Transactions against a deployed contract are signed by wallets
                self.ledger = None
                self.provider = Web3ReadProvider(
                    provider_config.rpc_url,
                    provider_config.contract_address,
                    provider_config.request_timeout_secs,
                )
                deployment_height = provider_config.deployment_height
            case _:
                raise Exception(
                    "Invalid provider type"
                    "\n[ERROR]: The specified provider type was invalid or not found.\n"
                    "         - Supported provider types are listed in the ProviderType enum in utils/config.py.\n"
                )

        self.scanner = LogScanner.from_config(
            self.provider, deployment_height, self.config.scanner
        )
        self.reconciler = ListingReconciler.from_config(
            self.scanner, self.provider, self.config.reconciler
        )
        self.projector = AccountHistoryProjector(
            self.scanner, timeout_secs=self.config.reconciler.timeout_secs
        )
        self.client = MarketplaceClient(self.reconciler, self.projector, self.ledger)

    def refresh_active_listings(self) -> Optional[int]:
        """Reconcile once and publish the count; None when the read failed."""
        start_time = perf_counter()
        try:
            listings = self.reconciler.get_active_listings()
        except ReadFailedError as e:
            logging.warning(
                "[Server] Unable to reconcile active listings",
                extra={"error": str(e)},
            )
            return None

        ACTIVE_LISTINGS.set(len(listings))
        logging.info(
            "[Server] Refreshed active listings",
            extra={
                "num_of_active_listings": len(listings),
                "duration_in_secs": format(perf_counter() - start_time, ".8f"),
            },
        )
        return len(listings)

    def run(self, max_iterations: Optional[int] = None) -> None:
        self.start_health_and_monitoring_ports()

        iteration = 0
        while max_iterations is None or iteration < max_iterations:
            self.refresh_active_listings()
            iteration += 1
            if max_iterations is None or iteration < max_iterations:
                sleep(self.config.refresh_interval_secs)

    def start_health_and_monitoring_ports(self) -> None:
        def start_health_server() -> None:
            # `/` answers liveness probes, `/metrics` serves the prometheus registry
            root = Resource()
            root.putChild(b"metrics", MetricsResource())  # type: ignore

            class ServerOk(Resource):
                isLeaf = True

                def render_GET(self, request):
                    return b"ok"

            root.putChild(b"", ServerOk())  # type: ignore
            factory = Site(root)
            reactor.listenTCP(self.config.health_check_port, factory)  # type: ignore
            reactor.run(installSignalHandlers=False)  # type: ignore

        logging.info(
            "[Server] Starting health and metrics server",
            extra={"health_check_port": self.config.health_check_port},
        )
        t = threading.Thread(target=start_health_server, daemon=True)
        # TODO: stop the reactor when `run` returns so the port is released
        t.start()
