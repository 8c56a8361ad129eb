# src/common/config/settings.py
import os
from typing import Callable, TypeVar
from dotenv import load_dotenv
from pydantic import BaseModel, Field
from common.logger import logger

load_dotenv()

T = TypeVar("T", int, float)

PUMP_PORTAL_WS_URL = "wss://pumpportal.fun/api/data"
MORALIS_NEW_TOKENS_URL = "https://solana-gateway.moralis.io/token/mainnet/exchange/pumpfun/new"
IPFS_GATEWAY = "https://ipfs.io/ipfs/"
PUMP_FUN_IMAGE_URL = "https://pump.fun/coin/{mint}/image"

# Rough approximations, not live rates
DEFAULT_SOL_USD_RATE = 185.0
DEFAULT_BONDING_CURVE_TARGET_SOL = 85.0


def _env_number(name: str, default: T, cast: Callable[[str], T]) -> T:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        logger.warning(f"Invalid value for {name}: {raw!r}, using default {default}")
        return default


class PulseSettings(BaseModel):
    """Runtime configuration for the pulse feed. Every field can be overridden from the environment."""
    port: int = 3001
    pump_portal_ws_url: str = PUMP_PORTAL_WS_URL
    moralis_url: str = MORALIS_NEW_TOKENS_URL
    moralis_api_key: str = ""

    max_tokens: int = Field(100, ge=1)
    max_token_age_seconds: float = Field(300.0, gt=0)
    cleanup_interval_seconds: float = Field(60.0, gt=0)

    max_reconnect_attempts: int = Field(10, ge=0)
    reconnect_delay_seconds: float = Field(5.0, ge=0)
    metadata_timeout_seconds: float = Field(3.0, gt=0)

    moralis_poll_interval_seconds: float = Field(30.0, gt=0)
    moralis_batch_size: int = Field(30, ge=1)

    sol_usd_rate: float = DEFAULT_SOL_USD_RATE
    bonding_curve_target_sol: float = Field(DEFAULT_BONDING_CURVE_TARGET_SOL, gt=0)

    @classmethod
    def from_env(cls) -> "PulseSettings":
        return cls(
            port=_env_number("PORT", 3001, int),
            pump_portal_ws_url=os.getenv("PUMP_PORTAL_WS_URL", PUMP_PORTAL_WS_URL),
            moralis_url=os.getenv("MORALIS_NEW_TOKENS_URL", MORALIS_NEW_TOKENS_URL),
            # Passed through as-is, an empty key just gets rejected upstream
            moralis_api_key=os.getenv("MORALIS_API_KEY", ""),
            max_tokens=_env_number("MAX_TOKENS", 100, int),
            max_token_age_seconds=_env_number("MAX_TOKEN_AGE_SECONDS", 300.0, float),
            cleanup_interval_seconds=_env_number("CLEANUP_INTERVAL_SECONDS", 60.0, float),
            max_reconnect_attempts=_env_number("MAX_RECONNECT_ATTEMPTS", 10, int),
            reconnect_delay_seconds=_env_number("RECONNECT_DELAY_SECONDS", 5.0, float),
            metadata_timeout_seconds=_env_number("METADATA_TIMEOUT_SECONDS", 3.0, float),
            moralis_poll_interval_seconds=_env_number("MORALIS_POLL_INTERVAL_SECONDS", 30.0, float),
            moralis_batch_size=_env_number("MORALIS_BATCH_SIZE", 30, int),
            sol_usd_rate=_env_number("SOL_USD_RATE", DEFAULT_SOL_USD_RATE, float),
            bonding_curve_target_sol=_env_number(
                "BONDING_CURVE_TARGET_SOL", DEFAULT_BONDING_CURVE_TARGET_SOL, float
            ),
        )
