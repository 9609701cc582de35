import yaml
from enum import Enum
from pydantic import BaseModel, Field, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)
from typing import Literal, Optional, Union

# Placeholder address used by the local ledger when none is configured
DEFAULT_MARKETPLACE_ADDRESS = "0x00000000000000000000000000000000006d6b74"


class LedgerConfig(BaseModel):
    database_uri: str = "sqlite:///marketplace.db"
    operator_address: str
    marketplace_address: str = DEFAULT_MARKETPLACE_ADDRESS
    fee_rate_bps: int = Field(default=250, ge=0)
    # First block the scanner looks at
    deployment_height: int = Field(default=0, ge=0)


class ProviderType(Enum):
    LEDGER = "ledger"
    WEB3 = "web3"


class ProviderConfig(BaseModel):
    type: str


class LedgerProviderConfig(ProviderConfig):
    type: Literal["ledger"] = "ledger"
    # Emulates the per-query block range cap of public RPC providers
    max_block_range: Optional[int] = Field(default=None, gt=0)


class Web3ProviderConfig(ProviderConfig):
    type: Literal["web3"]
    rpc_url: str
    contract_address: str
    request_timeout_secs: int = 30
    # Block the marketplace contract was deployed at
    deployment_height: int = Field(default=0, ge=0)


class ScannerConfig(BaseModel):
    window_size: int = Field(default=50_000, gt=0)
    max_concurrent_windows: int = Field(default=4, gt=0)
    max_retries: int = Field(default=3, ge=0)
    retry_backoff_secs: float = Field(default=0.5, ge=0)
    timeout_secs: Optional[float] = Field(default=None, gt=0)


class ReconcilerConfig(BaseModel):
    max_concurrent_reads: int = Field(default=8, gt=0)
    max_retries: int = Field(default=3, ge=0)
    retry_backoff_secs: float = Field(default=0.5, ge=0)
    timeout_secs: Optional[float] = Field(default=None, gt=0)


class Config(BaseSettings):
    health_check_port: int = 8085
    refresh_interval_secs: float = Field(default=30.0, gt=0)
    ledger: Optional[LedgerConfig] = None
    provider: Union[LedgerProviderConfig, Web3ProviderConfig] = Field(
        default_factory=LedgerProviderConfig, discriminator="type"
    )
    scanner: ScannerConfig = Field(default_factory=ScannerConfig)
    reconciler: ReconcilerConfig = Field(default_factory=ReconcilerConfig)

    model_config = SettingsConfigDict(
        env_prefix="MARKETPLACE_", env_nested_delimiter="__"
    )

    @model_validator(mode="after")
    def check_ledger_configured(self):
        if self.provider.type == ProviderType.LEDGER.value and self.ledger is None:
            raise ValueError("The ledger provider needs a `ledger` section")
        return self

    # change order of priority of settings sources such that environment variables take precedence over config file settings
    # inspired by https://docs.pydantic.dev/latest/concepts/pydantic_settings/#changing-priority
    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return env_settings, init_settings, file_secret_settings

    @classmethod
    def from_yaml_file(cls, path: str):
        with open(path, "r") as file:
            config = yaml.safe_load(file)

        return cls(**config)
