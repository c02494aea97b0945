"""Tests for connectivity edge detection."""

import httpx
import pytest

from pipecount.monitor import ConnectivityMonitor


class TestConnectivityTransitions:
    """Subscribers hear about transitions, never about repeated samples."""

    def test_assumes_online_before_first_report(self):
        monitor = ConnectivityMonitor()
        assert monitor.is_online is True
        assert monitor.has_reported is False

    def test_online_heartbeat_at_cold_start_is_not_a_transition(self):
        monitor = ConnectivityMonitor()
        fired = []
        monitor.on_online(lambda: fired.append(True))

        assert monitor.report(True) is False
        assert fired == []
        assert monitor.has_reported is True

    def test_online_fires_once_per_edge(self):
        monitor = ConnectivityMonitor()
        fired = []
        monitor.on_online(lambda: fired.append(True))

        monitor.report(False)
        monitor.report(True)
        monitor.report(True)
        monitor.report(True)

        assert fired == [True]

        monitor.report(False)
        monitor.report(False)
        monitor.report(True)

        assert fired == [True, True]

    def test_change_callback_receives_new_status(self):
        monitor = ConnectivityMonitor()
        changes = []
        monitor.on_change(changes.append)

        monitor.report(False)
        monitor.report(False)
        monitor.report(True)

        assert changes == [False, True]

    def test_unsubscribe(self):
        monitor = ConnectivityMonitor()
        fired = []
        unsubscribe = monitor.on_online(lambda: fired.append(True))

        unsubscribe()
        unsubscribe()
        monitor.report(False)
        monitor.report(True)

        assert fired == []

    def test_failing_callback_does_not_block_others(self):
        monitor = ConnectivityMonitor()
        fired = []

        def broken():
            raise RuntimeError("boom")

        monitor.on_online(broken)
        monitor.on_online(lambda: fired.append(True))
        monitor.report(False)
        monitor.report(True)

        assert fired == [True]

    @pytest.mark.asyncio
    async def test_async_callbacks_are_scheduled(self):
        monitor = ConnectivityMonitor()
        fired = []

        async def on_online():
            fired.append(True)

        monitor.on_online(on_online)
        monitor.report(False)
        monitor.report(True)
        await monitor.wait_for_callbacks()

        assert fired == [True]


class TestConnectivityProbe:
    """Health endpoint probing."""

    @pytest.mark.asyncio
    async def test_check_reports_health_status(self):
        status = {"code": 200}

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(status["code"])

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        monitor = ConnectivityMonitor("http://server/health/ready", client=client)

        assert await monitor.check() is True
        status["code"] = 503
        assert await monitor.check() is False
        assert monitor.is_online is False

        await monitor.stop()
        await client.aclose()

    @pytest.mark.asyncio
    async def test_connection_error_means_offline(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        monitor = ConnectivityMonitor("http://server/health/ready", client=client)

        assert await monitor.check() is False

        await client.aclose()

    @pytest.mark.asyncio
    async def test_check_without_url_keeps_status(self):
        monitor = ConnectivityMonitor()
        monitor.report(False)
        assert await monitor.check() is False
