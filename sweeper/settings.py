"""
Sweeper configuration, read from the environment (or .env) via decouple.
"""

import logging
from typing import List, Optional

from decouple import config
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

REQUIRED_SETTINGS = ("DATABASE_URL", "APP_SECRET")


class MissingSettingsError(RuntimeError):
    def __init__(self, missing: List[str]):
        super().__init__("Missing required environment variables: " + ", ".join(missing))
        self.missing = missing


class SweeperSettings(BaseModel):
    database_url: str = Field(...)
    app_secret: str = Field(...)

    sweep_interval_seconds: int = 60
    sweep_max_retries: int = 3
    sweep_retry_base_delay: float = 10.0
    sweep_max_workers: int = 8
    sweep_shutdown_grace_seconds: float = 30.0
    notify_on_give_up: bool = False

    redis_host: str = "redis"
    redis_port: int = 6379
    notification_channel: str = "sweeper_notifications"

    tron_api_key: str = ""
    tron_network: str = "mainnet"
    tron_fixed_fee_sun: int = 100_000
    tron_permission_id: int = 2

    btc_network: str = "bitcoin"
    btc_api_url: str = ""
    btc_tx_size_bytes: int = 250
    btc_fee_target_blocks: int = 6
    btc_fallback_fee_rate: int = 10

    alchemy_api_key: str = ""
    evm_network: str = "mainnet"

    solana_rpc_url: str = ""
    solana_network: str = "mainnet"
    solana_fixed_fee_lamports: int = 5000

    setup_session_ttl: int = 900
    log_dir: Optional[str] = None

    @property
    def btc_testnet(self) -> bool:
        return self.btc_network != "bitcoin"

    @property
    def evm_testnet(self) -> bool:
        return self.evm_network != "mainnet"

    @classmethod
    def from_env(cls) -> "SweeperSettings":
        missing = [name for name in REQUIRED_SETTINGS if not config(name, default="")]
        if missing:
            logger.error("Missing required environment variables", extra={"extra": {"missing": missing}})
            raise MissingSettingsError(missing)

        return cls(
            database_url=config("DATABASE_URL"),
            app_secret=config("APP_SECRET"),
            sweep_interval_seconds=config("SWEEP_INTERVAL_SECONDS", default=60, cast=int),
            sweep_max_retries=config("SWEEP_MAX_RETRIES", default=3, cast=int),
            sweep_retry_base_delay=config("SWEEP_RETRY_BASE_DELAY", default=10.0, cast=float),
            sweep_max_workers=config("SWEEP_MAX_WORKERS", default=8, cast=int),
            sweep_shutdown_grace_seconds=config("SWEEP_SHUTDOWN_GRACE_SECONDS", default=30.0, cast=float),
            notify_on_give_up=config("NOTIFY_ON_GIVE_UP", default=False, cast=bool),
            redis_host=config("REDIS_HOST", default="redis"),
            redis_port=config("REDIS_PORT", default=6379, cast=int),
            notification_channel=config("NOTIFICATION_CHANNEL", default="sweeper_notifications"),
            tron_api_key=config("TRON_API_KEY", default=""),
            tron_network=config("TRON_NETWORK", default="mainnet"),
            tron_fixed_fee_sun=config("TRON_FIXED_FEE_SUN", default=100_000, cast=int),
            tron_permission_id=config("TRON_PERMISSION_ID", default=2, cast=int),
            btc_network=config("BTC_NETWORK", default="bitcoin"),
            btc_api_url=config("BTC_API_URL", default=""),
            btc_tx_size_bytes=config("BTC_TX_SIZE_BYTES", default=250, cast=int),
            btc_fee_target_blocks=config("BTC_FEE_TARGET_BLOCKS", default=6, cast=int),
            btc_fallback_fee_rate=config("BTC_FALLBACK_FEE_RATE", default=10, cast=int),
            alchemy_api_key=config("ALCHEMY_API_KEY", default=""),
            evm_network=config("EVM_NETWORK", default="mainnet"),
            solana_rpc_url=config("SOLANA_RPC_URL", default=""),
            solana_network=config("SOLANA_NETWORK", default="mainnet"),
            solana_fixed_fee_lamports=config("SOLANA_FIXED_FEE_LAMPORTS", default=5000, cast=int),
            setup_session_ttl=config("SETUP_SESSION_TTL", default=900, cast=int),
            log_dir=config("LOG_DIR", default="") or None,
        )
