import asyncio
import json
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Set

import websockets

from common.config.settings import (
    DEFAULT_BONDING_CURVE_TARGET_SOL,
    DEFAULT_SOL_USD_RATE,
    PUMP_PORTAL_WS_URL,
)
from common.logger import logger
from core.domain.entities.TokenEntity import TokenEntity
from core.services.recency_store import RecencyStore, now_ms
from core.services.token_normalizer import resolve_metadata_url, token_from_feed_event
from infrastructure.data_sources.metadata.image_resolver import MetadataImageResolver

SUBSCRIBE_NEW_TOKEN = {"method": "subscribeNewToken"}


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class PumpPortalStream:
    """
    Long-lived subscription to PumpPortal's new token feed.

    ``run()`` loops through connect -> subscribe -> read until the socket
    drops, then waits a fixed delay and reconnects. A successful connect
    resets the attempt counter; once ``max_reconnect_attempts`` consecutive
    reconnects have failed the loop gives up for good and ``exhausted`` is set.

    ``connect`` and ``sleep`` are injectable so the state machine can be
    driven without a network or a real clock.
    """

    def __init__(
        self,
        store: RecencyStore,
        url: str = PUMP_PORTAL_WS_URL,
        max_reconnect_attempts: int = 10,
        reconnect_delay: float = 5.0,
        image_resolver: Optional[MetadataImageResolver] = None,
        sol_usd_rate: float = DEFAULT_SOL_USD_RATE,
        bonding_curve_target_sol: float = DEFAULT_BONDING_CURVE_TARGET_SOL,
        connect: Callable[[str], Any] = websockets.connect,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.url = url
        self.max_reconnect_attempts = max_reconnect_attempts
        self.reconnect_delay = reconnect_delay
        self.image_resolver = image_resolver
        self.sol_usd_rate = sol_usd_rate
        self.bonding_curve_target_sol = bonding_curve_target_sol
        self._connect = connect
        self._sleep = sleep
        self._clock = clock

        self.state = ConnectionState.DISCONNECTED
        self.reconnect_attempts = 0
        self.exhausted = False
        self._websocket = None
        self._stopping = False
        self._enrichment_tasks: Set[asyncio.Task] = set()

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED and self._websocket is not None

    async def run(self):
        """Connect and keep reconnecting until stopped or out of attempts."""
        self._stopping = False
        self.exhausted = False
        while not self._stopping:
            self.state = ConnectionState.CONNECTING
            logger.info("[PumpPortal] Connecting...")
            try:
                async with self._connect(self.url) as websocket:
                    self._websocket = websocket
                    self.state = ConnectionState.CONNECTED
                    self.reconnect_attempts = 0
                    logger.info("[PumpPortal] Connected!")

                    await self.send(SUBSCRIBE_NEW_TOKEN)
                    async for raw in websocket:
                        self.handle_message(raw)
            except Exception as e:
                logger.error(f"[PumpPortal] WebSocket error: {e}")
            finally:
                self._websocket = None
                self.state = ConnectionState.DISCONNECTED

            if self._stopping:
                break
            logger.info("[PumpPortal] Disconnected")

            if self.reconnect_attempts >= self.max_reconnect_attempts:
                self.exhausted = True
                logger.error("[PumpPortal] Max reconnection attempts reached, giving up")
                return

            self.reconnect_attempts += 1
            logger.info(
                f"[PumpPortal] Reconnecting in {self.reconnect_delay}s "
                f"(attempt {self.reconnect_attempts}/{self.max_reconnect_attempts})"
            )
            await self._sleep(self.reconnect_delay)

        logger.info("[PumpPortal] Stream stopped")

    async def send(self, payload: Dict[str, Any]) -> bool:
        """Send a JSON control message. Does nothing unless the socket is live."""
        websocket = self._websocket
        if websocket is None or self.state != ConnectionState.CONNECTED:
            return False
        await websocket.send(json.dumps(payload))
        return True

    def handle_message(self, raw) -> Optional[TokenEntity]:
        """Decode one frame and store it if it's a new token event."""
        try:
            message = json.loads(raw)
        except (TypeError, ValueError):
            # Not every frame is JSON, nothing to do with those
            return None

        token = token_from_feed_event(
            message,
            now=self._clock(),
            sol_usd_rate=self.sol_usd_rate,
            bonding_curve_target_sol=self.bonding_curve_target_sol,
        )
        if token is None:
            return None

        self.store.upsert(token)
        logger.info(f"[PumpPortal] New token: {token.symbol} ({token.address[:8]}...)")

        uri = message.get("uri")
        metadata_url = resolve_metadata_url(uri) if isinstance(uri, str) else None
        if metadata_url and self.image_resolver is not None:
            self._schedule_enrichment(token.address, metadata_url)
        return token

    def _schedule_enrichment(self, address: str, metadata_url: str):
        task = asyncio.create_task(self._enrich(address, metadata_url))
        self._enrichment_tasks.add(task)
        task.add_done_callback(self._enrichment_tasks.discard)

    async def _enrich(self, address: str, metadata_url: str):
        image = await self.image_resolver.fetch_image(metadata_url)
        if image:
            self.store.patch_image(address, image)

    async def wait_for_enrichment(self):
        """Wait for in-flight metadata fetches. Used at shutdown and in tests."""
        if self._enrichment_tasks:
            await asyncio.gather(*list(self._enrichment_tasks), return_exceptions=True)

    async def stop(self):
        """Leave the run loop without spending reconnect attempts."""
        self._stopping = True
        websocket = self._websocket
        if websocket is not None:
            try:
                await websocket.close()
            except Exception as e:
                logger.error(f"[PumpPortal] Error closing WebSocket: {e}")
        for task in list(self._enrichment_tasks):
            task.cancel()
