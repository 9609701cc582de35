import pytest

from client.marketplace_client import ReadOnlyClientError
from scanner.errors import ScanFailedError
from scanner.ledger_provider import LedgerReadProvider
from scanner.web3_provider import Web3ReadProvider
from tests.constants import ETHER, OPERATOR, SELLER, UNIQUE_CONTRACT
from utils.config import Config, LedgerConfig, LedgerProviderConfig
from utils.token_utils import TokenStandard
from utils.worker import MarketplaceServer


@pytest.fixture
def server(tmp_path):
    config = Config(
        refresh_interval_secs=0.01,
        ledger=LedgerConfig(
            database_uri=f"sqlite:///{tmp_path / 'server.db'}",
            operator_address=OPERATOR,
            deployment_height=0,
        ),
        provider=LedgerProviderConfig(max_block_range=8),
        scanner={"window_size": 8, "retry_backoff_secs": 0},
    )
    server = MarketplaceServer(config)
    yield server
    server.ledger.close()


class TestMarketplaceServer:
    def test_ledger_provider_wiring(self, server):
        assert isinstance(server.provider, LedgerReadProvider)
        assert server.provider.ledger is server.ledger
        assert server.provider.max_block_range == 8
        assert server.client.ledger is server.ledger

    def test_refresh_counts_active_listings(self, server):
        ledger = server.ledger
        ledger.register_collection(UNIQUE_CONTRACT, TokenStandard.UNIQUE)
        ledger.mint(UNIQUE_CONTRACT, 7, SELLER)
        ledger.set_approval_for_all(SELLER, UNIQUE_CONTRACT)

        assert server.refresh_active_listings() == 0
        ledger.list_item(SELLER, UNIQUE_CONTRACT, 7, ETHER)
        assert server.refresh_active_listings() == 1

    def test_refresh_survives_failed_read(self, server, monkeypatch):
        def failing_get_active_listings():
            raise ScanFailedError("upstream unavailable")

        monkeypatch.setattr(
            server.reconciler, "get_active_listings", failing_get_active_listings
        )

        assert server.refresh_active_listings() is None

    def test_run_refreshes_each_iteration(self, server, monkeypatch):
        started = []
        refreshes = []
        monkeypatch.setattr(
            server, "start_health_and_monitoring_ports", lambda: started.append(True)
        )
        monkeypatch.setattr(
            server, "refresh_active_listings", lambda: refreshes.append(True)
        )

        server.run(max_iterations=3)

        assert started == [True]
        assert len(refreshes) == 3


def test_web3_provider_gives_read_only_client():
    config = Config(
        provider={
            "type": "web3",
            "rpc_url": "http://localhost:8545",
            "contract_address": "0x" + "11" * 20,
            "deployment_height": 100,
        }
    )

    server = MarketplaceServer(config)

    assert isinstance(server.provider, Web3ReadProvider)
    assert server.ledger is None
    assert server.scanner.deployment_height == 100
    with pytest.raises(ReadOnlyClientError):
        server.client.withdraw_fees(OPERATOR)
