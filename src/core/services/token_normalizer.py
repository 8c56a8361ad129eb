# src/core/services/token_normalizer.py
"""
Turns raw PumpPortal events and Moralis items into TokenEntity records.

Everything here is pure: the caller passes the ingestion time so that the
same input always gives the same token.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from common.config.settings import (
    DEFAULT_BONDING_CURVE_TARGET_SOL,
    DEFAULT_SOL_USD_RATE,
    IPFS_GATEWAY,
    PUMP_FUN_IMAGE_URL,
)
from core.domain.entities.TokenEntity import TokenEntity

IPFS_SCHEME = "ipfs://"
CREATE_TX_TYPE = "create"
PLACEHOLDER_PRICE = 0.000001


def iso_from_ms(epoch_ms: int) -> str:
    """2024-05-01T12:00:00.000Z style timestamp."""
    dt = datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def resolve_metadata_url(uri: Optional[str]) -> Optional[str]:
    """Map a token's metadata ``uri`` to something fetchable over HTTP.

    ``ipfs://<cid>`` and bare CIDs go through the public gateway, http(s) URLs
    are kept as they are.
    """
    if not uri:
        return None
    if uri.startswith(IPFS_SCHEME):
        return f"{IPFS_GATEWAY}{uri[len(IPFS_SCHEME):]}"
    if uri.startswith("http"):
        return uri
    return f"{IPFS_GATEWAY}{uri}"


def resolve_image_url(image: Optional[str]) -> Optional[str]:
    """Image field from a metadata document; only the ipfs scheme is rewritten."""
    if not image:
        return None
    if image.startswith(IPFS_SCHEME):
        return f"{IPFS_GATEWAY}{image[len(IPFS_SCHEME):]}"
    return image


def placeholder_logo(mint: str) -> str:
    return PUMP_FUN_IMAGE_URL.format(mint=mint)


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _first(item: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = item.get(key)
        if value:
            return value
    return None


def is_new_token_event(message: Any) -> bool:
    if not isinstance(message, dict):
        return False
    mint = message.get("mint")
    return message.get("txType") == CREATE_TX_TYPE and isinstance(mint, str) and bool(mint)


def token_from_feed_event(
    message: Dict[str, Any],
    now: int,
    sol_usd_rate: float = DEFAULT_SOL_USD_RATE,
    bonding_curve_target_sol: float = DEFAULT_BONDING_CURVE_TARGET_SOL,
) -> Optional[TokenEntity]:
    """Build a token from a PumpPortal ``create`` event, or None for any other message.

    The feed carries no USD price, so ``price`` is a fixed placeholder and
    ``marketCap`` is the SOL market cap times a fixed rate.
    """
    if not is_new_token_event(message):
        return None

    mint = message["mint"]
    market_cap_sol = _to_float(message.get("marketCapSol"))
    v_sol = _to_float(message.get("vSolInBondingCurve"))

    return TokenEntity(
        address=mint,
        symbol=str(message.get("symbol") or "UNKNOWN"),
        name=str(message.get("name") or "Unknown Token"),
        logo=placeholder_logo(mint),
        price=PLACEHOLDER_PRICE,
        market_cap=market_cap_sol * sol_usd_rate if market_cap_sol else 0.0,
        bonding_progress=(v_sol / bonding_curve_target_sol) * 100 if v_sol else 0.0,
        created_at=iso_from_ms(now),
        fetched_at=now,
    )


def token_from_moralis_item(item: Mapping[str, Any], now: int) -> Optional[TokenEntity]:
    """Best-effort mapping of a Moralis ``pumpfun/new`` result row."""
    address = _first(item, "tokenAddress", "address")
    if not isinstance(address, str):
        return None
    logo = _first(item, "logo", "image")

    return TokenEntity(
        address=address,
        symbol=str(item.get("symbol") or "UNKNOWN"),
        name=str(item.get("name") or "Unknown"),
        logo=logo if isinstance(logo, str) else None,
        price=_to_float(_first(item, "priceUsd", "price") or "0"),
        market_cap=_to_float(_first(item, "marketCapUsd", "marketCap") or "0"),
        created_at=str(item.get("createdAt") or iso_from_ms(now)),
        fetched_at=now,
    )
