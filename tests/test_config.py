from pathlib import Path

import pytest
import yaml

from pydantic import ValidationError

from utils.config import (
    Config,
    LedgerProviderConfig,
    ProviderType,
    Web3ProviderConfig,
)


def write_config(tmp_path, config: dict) -> str:
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(config))
    return str(path)


EXAMPLE_CONFIG = Path(__file__).parent.parent / "config.example.yaml"

LEDGER_SECTION = {
    "database_uri": "sqlite:///marketplace.db",
    "operator_address": "0xaa",
}


class TestConfig:
    def test_defaults(self, tmp_path):
        config = Config.from_yaml_file(write_config(tmp_path, {"ledger": LEDGER_SECTION}))

        assert isinstance(config.provider, LedgerProviderConfig)
        assert config.provider.type == ProviderType.LEDGER.value
        assert config.ledger.fee_rate_bps == 250
        assert config.scanner.window_size == 50_000
        assert config.reconciler.max_concurrent_reads == 8

    def test_example_config_loads(self):
        config = Config.from_yaml_file(str(EXAMPLE_CONFIG))

        assert config.provider.max_block_range == 50_000
        assert config.ledger.operator_address.endswith("aa")

    def test_web3_provider_needs_no_ledger(self, tmp_path):
        path = write_config(
            tmp_path,
            {
                "provider": {
                    "type": "web3",
                    "rpc_url": "http://localhost:8545",
                    "contract_address": "0x" + "11" * 20,
                    "deployment_height": 7_750_000,
                }
            },
        )

        config = Config.from_yaml_file(path)

        assert isinstance(config.provider, Web3ProviderConfig)
        assert config.provider.deployment_height == 7_750_000
        assert config.ledger is None

    def test_ledger_provider_requires_ledger_section(self, tmp_path):
        with pytest.raises(ValidationError):
            Config.from_yaml_file(write_config(tmp_path, {}))

    def test_unknown_provider_type(self, tmp_path):
        path = write_config(
            tmp_path, {"ledger": LEDGER_SECTION, "provider": {"type": "grpc"}}
        )

        with pytest.raises(ValidationError):
            Config.from_yaml_file(path)

    @pytest.mark.parametrize(
        "section, values",
        [
            ("scanner", {"window_size": 0}),
            ("scanner", {"max_concurrent_windows": 0}),
            ("reconciler", {"max_retries": -1}),
        ],
    )
    def test_out_of_range_values(self, tmp_path, section, values):
        path = write_config(tmp_path, {"ledger": LEDGER_SECTION, section: values})

        with pytest.raises(ValidationError):
            Config.from_yaml_file(path)

    def test_environment_overrides_file(self, tmp_path, monkeypatch):
        monkeypatch.setenv("MARKETPLACE_HEALTH_CHECK_PORT", "9100")
        monkeypatch.setenv("MARKETPLACE_SCANNER__WINDOW_SIZE", "1000")
        path = write_config(
            tmp_path, {"ledger": LEDGER_SECTION, "health_check_port": 8085}
        )

        config = Config.from_yaml_file(path)

        assert config.health_check_port == 9100
        assert config.scanner.window_size == 1000
