import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from core.services.recency_store import RecencyStore
from infrastructure.data_sources.metadata.image_resolver import MetadataImageResolver
from infrastructure.data_sources.pumpportal.client import (
    SUBSCRIBE_NEW_TOKEN,
    ConnectionState,
    PumpPortalStream,
)

NOW = 1_700_000_000_000


class FakeWebSocket:
    """Yields canned frames, then runs ``on_drained`` (if any) before closing."""

    def __init__(self, frames=(), on_drained=None):
        self.frames = list(frames)
        self.on_drained = on_drained
        self.sent = []
        self.closed = False

    async def send(self, data):
        self.sent.append(data)

    async def close(self):
        self.closed = True

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for frame in self.frames:
            yield frame
        if self.on_drained is not None:
            await self.on_drained()


class FakeConnection:
    def __init__(self, websocket=None, error=None):
        self.websocket = websocket
        self.error = error

    async def __aenter__(self):
        if self.error is not None:
            raise self.error
        return self.websocket

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeConnector:
    """Hands out queued connections; once empty every connect is refused."""

    def __init__(self, connections=()):
        self.connections = list(connections)
        self.urls = []

    def __call__(self, url):
        self.urls.append(url)
        if self.connections:
            return self.connections.pop(0)
        return FakeConnection(error=ConnectionRefusedError("refused"))


def refused(n):
    return [FakeConnection(error=ConnectionRefusedError("refused")) for _ in range(n)]


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def _sleep(delay):
        sleeps.append(delay)
    return _sleep


def make_stream(connector, fake_sleep, store=None, **kwargs):
    return PumpPortalStream(
        store if store is not None else RecencyStore(),
        url="wss://feed.test/api/data",
        connect=connector,
        sleep=fake_sleep,
        clock=lambda: NOW,
        **kwargs
    )


class TestReconnect:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("failures", [1, 3, 9])
    async def test_fewer_failures_than_budget_reconnects_each_time(self, failures, fake_sleep, sleeps):
        live = FakeWebSocket()
        connector = FakeConnector(refused(failures) + [FakeConnection(live)])
        stream = make_stream(connector, fake_sleep)
        live.on_drained = stream.stop

        await stream.run()

        assert sleeps == [5.0] * failures
        assert len(connector.urls) == failures + 1
        assert stream.exhausted is False
        assert stream.reconnect_attempts == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("failures", [10, 11, 25])
    async def test_gives_up_after_ten_attempts(self, failures, fake_sleep, sleeps):
        connector = FakeConnector(refused(failures))
        stream = make_stream(connector, fake_sleep)

        await stream.run()

        assert sleeps == [5.0] * 10
        # initial connect plus ten retries
        assert len(connector.urls) == 11
        assert stream.exhausted is True
        assert stream.state == ConnectionState.DISCONNECTED
        assert stream.is_connected is False

    @pytest.mark.asyncio
    async def test_successful_connect_resets_attempt_counter(self, fake_sleep, sleeps):
        # Drops right after connecting, then every later connect fails
        connector = FakeConnector(refused(9) + [FakeConnection(FakeWebSocket())])
        stream = make_stream(connector, fake_sleep)

        await stream.run()

        assert sleeps == [5.0] * 19
        assert stream.exhausted is True

    @pytest.mark.asyncio
    async def test_custom_budget_and_delay(self, fake_sleep, sleeps):
        stream = make_stream(FakeConnector(), fake_sleep, max_reconnect_attempts=2, reconnect_delay=0.5)

        await stream.run()

        assert sleeps == [0.5, 0.5]
        assert stream.exhausted is True


class TestConnectedSession:
    @pytest.mark.asyncio
    async def test_subscribes_on_connect_and_reports_connected(self, fake_sleep, sleeps):
        seen = {}
        live = FakeWebSocket()
        stream = make_stream(FakeConnector([FakeConnection(live)]), fake_sleep)

        async def drained():
            seen["state"] = stream.state
            seen["connected"] = stream.is_connected
            await stream.stop()

        live.on_drained = drained
        await stream.run()

        assert [json.loads(m) for m in live.sent] == [SUBSCRIBE_NEW_TOKEN]
        assert seen == {"state": ConnectionState.CONNECTED, "connected": True}
        assert live.closed is True
        assert stream.state == ConnectionState.DISCONNECTED
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_feed_frames_end_up_in_store(self, fake_sleep):
        store = RecencyStore()
        live = FakeWebSocket(frames=[
            "not json at all",
            json.dumps({"txType": "buy", "mint": "BUY1"}),
            json.dumps({"message": "Successfully subscribed to token creation events."}),
            json.dumps({"txType": "create", "mint": "ABC", "symbol": "FOO",
                        "marketCapSol": 10, "vSolInBondingCurve": 42.5}),
        ])
        stream = make_stream(FakeConnector([FakeConnection(live)]), fake_sleep, store=store)
        live.on_drained = stream.stop

        await stream.run()

        assert stream.store is store
        tokens, total = store.snapshot(10)
        assert total == 1
        token = tokens[0]
        assert token.address == "ABC"
        assert token.symbol == "FOO"
        assert token.market_cap == 1850
        assert token.bonding_progress == 50.0

    @pytest.mark.asyncio
    async def test_send_is_noop_while_disconnected(self, fake_sleep):
        stream = make_stream(FakeConnector(), fake_sleep)

        assert await stream.send({"method": "subscribeNewToken"}) is False


class TestHandleMessage:
    @pytest.mark.parametrize("raw", [
        "{broken",
        b"\xff\xfe",
        json.dumps({"mint": "ABC"}),
        json.dumps({"txType": "create"}),
        json.dumps([1, 2, 3]),
    ])
    def test_ignored_frames_do_not_touch_store(self, raw, fake_sleep):
        store = RecencyStore()
        stream = make_stream(FakeConnector(), fake_sleep, store=store)

        assert stream.handle_message(raw) is None
        assert store.count() == 0

    @pytest.mark.asyncio
    async def test_metadata_image_patches_logo(self, fake_sleep):
        store = RecencyStore()
        resolver = MagicMock()
        resolver.fetch_image = AsyncMock(return_value="https://ipfs.io/ipfs/real-image")
        stream = make_stream(FakeConnector(), fake_sleep, store=store, image_resolver=resolver)

        token = stream.handle_message(json.dumps({"txType": "create", "mint": "MINT1", "uri": "ipfs://meta"}))
        # Placeholder is in place before enrichment finishes
        assert token.logo == "https://pump.fun/coin/MINT1/image"

        await stream.wait_for_enrichment()

        resolver.fetch_image.assert_awaited_once_with("https://ipfs.io/ipfs/meta")
        assert store.get("MINT1").logo == "https://ipfs.io/ipfs/real-image"

    @pytest.mark.asyncio
    async def test_failed_enrichment_keeps_placeholder(self, fake_sleep):
        store = RecencyStore()
        resolver = MagicMock()
        resolver.fetch_image = AsyncMock(return_value=None)
        stream = make_stream(FakeConnector(), fake_sleep, store=store, image_resolver=resolver)

        stream.handle_message(json.dumps({"txType": "create", "mint": "MINT1", "uri": "https://meta"}))
        await stream.wait_for_enrichment()

        assert store.get("MINT1").logo == "https://pump.fun/coin/MINT1/image"

    @pytest.mark.asyncio
    async def test_enrichment_does_not_resurrect_evicted_token(self, fake_sleep):
        store = RecencyStore(capacity=1)
        release = asyncio.Event()

        async def slow_fetch(url):
            await release.wait()
            return "https://late-image"

        resolver = MagicMock()
        resolver.fetch_image = slow_fetch
        stream = make_stream(FakeConnector(), fake_sleep, store=store, image_resolver=resolver)

        stream.handle_message(json.dumps({"txType": "create", "mint": "FIRST", "uri": "ipfs://a"}))
        stream.handle_message(json.dumps({"txType": "create", "mint": "SECOND"}))
        release.set()
        await stream.wait_for_enrichment()

        assert store.get("FIRST") is None
        assert [t.address for t in store.snapshot(10)[0]] == ["SECOND"]

    def test_no_enrichment_without_uri(self, fake_sleep):
        resolver = MagicMock()
        resolver.fetch_image = AsyncMock()
        stream = make_stream(FakeConnector(), fake_sleep, image_resolver=resolver)

        stream.handle_message(json.dumps({"txType": "create", "mint": "MINT1"}))

        resolver.fetch_image.assert_not_called()

    @pytest.mark.asyncio
    async def test_unfetchable_metadata_url_leaves_placeholder(self, fake_sleep):
        store = RecencyStore()
        stream = make_stream(FakeConnector(), fake_sleep, store=store, image_resolver=MetadataImageResolver())

        stream.handle_message(json.dumps({"txType": "create", "mint": "MINT1", "uri": "http://exa\u0001mple.com/x"}))
        tasks = list(stream._enrichment_tasks)
        await stream.wait_for_enrichment()

        assert all(task.exception() is None for task in tasks)
        assert store.get("MINT1").logo == "https://pump.fun/coin/MINT1/image"
        await stream.image_resolver.close()
