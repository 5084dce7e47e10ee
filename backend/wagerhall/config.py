"""Configuration management using Pydantic Settings."""

import logging
from decimal import Decimal
from functools import lru_cache
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

PLACEHOLDER_MARKERS = ("YOUR_TOKEN_MINT", "YOUR_FEE_WALLET")


class ConfigurationError(Exception):
    """Required configuration is missing or inconsistent."""

    pass


class WagerConfig(BaseModel):
    """Wager escrow operational parameters."""

    enabled: bool = False
    fee_bps: int = Field(default=100, ge=0, le=10_000)
    min_tokens: int = Field(default=100, gt=0)
    max_tokens: int = Field(default=1_000_000, gt=0)
    accept_window_seconds: float = 120.0
    fund_window_seconds: float = 300.0
    expiry_grace_seconds: float = 1.0  # Lets a last-second poll land first
    poll_interval_seconds: float = 3.0
    signature_limit: int = 25
    min_escrow_sol: Decimal = Decimal("0.05")  # Escrow needs SOL for tx fees


class DistributionConfig(BaseModel):
    """Pro-rata fee distribution parameters."""

    enabled: bool = False
    interval_seconds: float = 3600.0
    min_pool_tokens: Decimal = Decimal("1")
    concurrency: int = 6
    pool_numerator: int = Field(default=2, ge=0)
    pool_denominator: int = Field(default=3, gt=0)
    advance_baseline_on_dust: bool = True  # False carries dust into the next run

    @field_validator("concurrency", mode="after")
    @classmethod
    def clamp_concurrency(cls, v: int) -> int:
        """Keep transfer fan-out between 1 and 20."""
        return max(1, min(20, v))


class LedgerSettings(BaseModel):
    """RPC transport tuning."""

    commitment: str = "confirmed"
    timeout_seconds: float = 30.0
    max_retries: int = 3
    confirm_timeout_seconds: float = 60.0


class TelegramConfig(BaseModel):
    """Telegram operator alert configuration."""

    send_wager_alerts: bool = True
    send_distribution_alerts: bool = True


class Settings(BaseSettings):
    """Main configuration class."""

    # Paths
    data_dir: Path = Path("data")

    # Endpoints
    rpc_url: str = ""
    export_url: str = ""
    roster_post_secret: str = ""

    # Wallets and secrets
    fee_wallet: str = ""
    treasury_secret: str = ""  # JSON byte array or base58
    escrow_keypairs: list[str] = Field(default_factory=list)
    wager_channel_ids: list[str] = Field(default_factory=list)
    logfire_token: str = ""

    # Telegram
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""

    # Nested configuration sections
    wager: WagerConfig = Field(default_factory=WagerConfig)
    distribution: DistributionConfig = Field(default_factory=DistributionConfig)
    ledger: LedgerSettings = Field(default_factory=LedgerSettings)
    telegram: TelegramConfig = Field(default_factory=TelegramConfig)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("data_dir", mode="after")
    @classmethod
    def resolve_data_dir(cls, v: Path) -> Path:
        """Resolve data directory to absolute path."""
        return v.resolve()

    @field_validator("wager_channel_ids", "escrow_keypairs", mode="after")
    @classmethod
    def strip_entries(cls, v: list[str]) -> list[str]:
        return [str(item).strip() for item in v]

    @property
    def state_path(self) -> Path:
        return self.data_dir / "distribution-state.json"

    def load_yaml_config(self) -> None:
        """Load and merge YAML configuration."""
        config_path = self.data_dir / "config.yaml"

        if not config_path.exists():
            logger.warning(
                f"Config file not found: {config_path}. "
                "Using defaults. Run 'python -m wagerhall init' to create it."
            )
            return

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                yaml_config = yaml.safe_load(f)

            if not yaml_config:
                logger.warning(f"Empty config file: {config_path}")
                return

            for section_name in ["wager", "distribution", "ledger", "telegram"]:
                if section_name in yaml_config:
                    section = getattr(self, section_name)
                    yaml_section = yaml_config[section_name] or {}

                    section_dict = section.model_dump()
                    section_dict.update(yaml_section)

                    new_section = section.__class__(**section_dict)
                    setattr(self, section_name, new_section)

            logger.info(f"Loaded configuration from {config_path}")

        except yaml.YAMLError as e:
            logger.error(f"Failed to parse YAML config: {e}")
            raise
        except Exception as e:
            logger.error(f"Failed to load config: {e}")
            raise


def _require(name: str, value: str) -> None:
    if not value or any(marker in value for marker in PLACEHOLDER_MARKERS):
        raise ConfigurationError(f"Missing required setting: {name}")


def validate_wager_settings(settings: Settings) -> None:
    """Fail fast when the wager desk cannot run safely."""
    _require("rpc_url", settings.rpc_url)
    _require("export_url", settings.export_url)
    _require("fee_wallet", settings.fee_wallet)

    if not settings.wager_channel_ids:
        raise ConfigurationError("wager_channel_ids must list at least one channel")
    if len(settings.escrow_keypairs) != len(settings.wager_channel_ids):
        raise ConfigurationError(
            f"escrow_keypairs ({len(settings.escrow_keypairs)}) must match "
            f"wager_channel_ids ({len(settings.wager_channel_ids)})"
        )
    if any(not channel for channel in settings.wager_channel_ids):
        raise ConfigurationError("wager_channel_ids contains an empty entry")
    if settings.wager.min_tokens > settings.wager.max_tokens:
        raise ConfigurationError("wager.min_tokens exceeds wager.max_tokens")


def validate_distribution_settings(settings: Settings) -> None:
    """Fail fast when the fee distributor is misconfigured."""
    _require("rpc_url", settings.rpc_url)
    _require("export_url", settings.export_url)
    _require("fee_wallet", settings.fee_wallet)
    _require("treasury_secret", settings.treasury_secret)


@lru_cache()
def get_settings() -> Settings:
    """Get singleton Settings instance."""
    settings = Settings()
    settings.load_yaml_config()
    return settings
