import asyncio
from datetime import datetime, timezone
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from common.config.settings import PulseSettings
from common.logger import logger
from core.services.recency_store import RecencyStore
from core.services.reconciliation_poller import ReconciliationPoller
from core.use_cases.pulse.pulse_tokens import PulseTokensQuery
from infrastructure.data_sources.metadata.image_resolver import MetadataImageResolver
from infrastructure.data_sources.moralis.client import MoralisNewTokensClient
from infrastructure.data_sources.pumpportal.client import PumpPortalStream


class PulseService:
    """
    Owns the token store and everything that feeds it.

    One instance per app; built and started from the FastAPI lifespan so
    tests can create isolated copies without touching the network.
    """

    def __init__(self, settings: Optional[PulseSettings] = None, scheduler: Optional[AsyncIOScheduler] = None):
        self.settings = settings or PulseSettings.from_env()
        s = self.settings

        self.store = RecencyStore(
            capacity=s.max_tokens,
            max_age_ms=int(s.max_token_age_seconds * 1000),
        )
        self.image_resolver = MetadataImageResolver(timeout=s.metadata_timeout_seconds)
        self.stream = PumpPortalStream(
            self.store,
            url=s.pump_portal_ws_url,
            max_reconnect_attempts=s.max_reconnect_attempts,
            reconnect_delay=s.reconnect_delay_seconds,
            image_resolver=self.image_resolver,
            sol_usd_rate=s.sol_usd_rate,
            bonding_curve_target_sol=s.bonding_curve_target_sol,
        )
        self.moralis_client = MoralisNewTokensClient(api_key=s.moralis_api_key, url=s.moralis_url)
        self.poller = ReconciliationPoller(self.store, self.moralis_client, batch_size=s.moralis_batch_size)
        self.query = PulseTokensQuery(self.store, self.stream)

        self.scheduler = scheduler or AsyncIOScheduler()
        self._stream_task: Optional[asyncio.Task] = None

    def cleanup_expired(self) -> int:
        removed = self.store.sweep()
        if removed:
            logger.info(f"[Cleanup] Removed {removed} expired tokens ({self.store.count()} left)")
        return removed

    async def start(self):
        s = self.settings
        self._stream_task = asyncio.create_task(self.stream.run(), name="pumpportal-stream")

        # First Moralis pull happens right away, then on the interval
        self.scheduler.add_job(
            self.poller.poll_once,
            IntervalTrigger(seconds=s.moralis_poll_interval_seconds),
            id="moralis_poll",
            next_run_time=datetime.now(timezone.utc),
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self.scheduler.add_job(
            self.cleanup_expired,
            IntervalTrigger(seconds=s.cleanup_interval_seconds),
            id="token_cleanup",
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info("Pulse service started.")

    async def shutdown(self):
        await self.stream.stop()
        if self._stream_task is not None and not self._stream_task.done():
            self._stream_task.cancel()
            try:
                await self._stream_task
            except asyncio.CancelledError:
                pass
        self._stream_task = None

        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        await self.image_resolver.close()
        await self.moralis_client.close()
        logger.info("Pulse service stopped.")
