"""Network reachability monitoring with online/offline edge detection."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Union

import httpx

from pipecount.logging import log_connectivity_change, state_logger

logger = logging.getLogger(__name__)

OnlineCallback = Callable[[], Union[None, Awaitable[Any]]]
ChangeCallback = Callable[[bool], Union[None, Awaitable[Any]]]


class ConnectivityMonitor:
    """Tracks whether the analysis server is reachable.

    Status comes either from the platform (``report``) or from a periodic
    HTTP probe of the server's health endpoint (``start``). Subscribers are
    notified on transitions only: ``on_online`` callbacks fire exactly once
    per offline to online edge, never on repeated heartbeats.

    Until the first report the client assumes it is online.

    Example:
        monitor = ConnectivityMonitor("http://localhost:8000/health/ready")
        monitor.on_online(orchestrator.run)
        await monitor.start()
    """

    def __init__(
        self,
        health_url: str | None = None,
        interval: float = 5.0,
        timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the monitor.

        Args:
            health_url: URL probed by the background loop; None disables probing
            interval: Seconds between probes
            timeout: Probe request timeout in seconds
            client: Optional shared HTTP client
        """
        self.health_url = health_url
        self.interval = interval
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None
        self._online: bool | None = None
        self._online_callbacks: list[OnlineCallback] = []
        self._change_callbacks: list[ChangeCallback] = []
        self._tasks: set[asyncio.Task] = set()
        self._probe_task: asyncio.Task | None = None
        self._running = False

    @property
    def is_online(self) -> bool:
        """Current status; True before the first report."""
        return self._online is not False

    @property
    def has_reported(self) -> bool:
        return self._online is not None

    def on_online(self, callback: OnlineCallback) -> Callable[[], None]:
        """Register callback for offline to online transitions.

        Returns:
            A function that unsubscribes the callback
        """
        self._online_callbacks.append(callback)
        return lambda: self._discard(self._online_callbacks, callback)

    def on_change(self, callback: ChangeCallback) -> Callable[[], None]:
        """Register callback for every transition, called with the new status."""
        self._change_callbacks.append(callback)
        return lambda: self._discard(self._change_callbacks, callback)

    @staticmethod
    def _discard(callbacks: list, callback: Callable) -> None:
        if callback in callbacks:
            callbacks.remove(callback)

    def report(self, online: bool) -> bool:
        """Feed a reachability sample.

        Args:
            online: Whether the network is currently reachable

        Returns:
            True if the sample was a transition
        """
        previous = self.is_online
        self._online = online
        if online == previous:
            return False

        log_connectivity_change(state_logger(), online)
        for change_cb in list(self._change_callbacks):
            self._dispatch(change_cb, online)
        if online:
            for online_cb in list(self._online_callbacks):
                self._dispatch(online_cb)
        return True

    def _dispatch(self, callback: Callable[..., Any], *args: Any) -> None:
        """Call a subscriber; coroutine results are scheduled as tasks."""
        try:
            result = callback(*args)
        except Exception:
            logger.exception("Connectivity callback failed")
            return

        if not inspect.isawaitable(result):
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.error("Async connectivity callback dropped: no running event loop")
            if inspect.iscoroutine(result):
                result.close()
            return
        task = loop.create_task(self._guard(result))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    @staticmethod
    async def _guard(awaitable: Awaitable[Any]) -> None:
        try:
            await awaitable
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Async connectivity callback failed")

    async def wait_for_callbacks(self) -> None:
        """Wait until every scheduled async callback has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def check(self) -> bool:
        """Probe the health endpoint once and report the result.

        Returns:
            The probed status
        """
        if not self.health_url:
            return self.is_online
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout))
        try:
            response = await self._client.get(self.health_url)
            online = response.status_code == 200
        except httpx.HTTPError:
            online = False
        self.report(online)
        return online

    async def start(self) -> None:
        """Start the background probe loop (no-op without a health URL)."""
        if self._running or not self.health_url:
            return
        self._running = True
        self._probe_task = asyncio.create_task(self._probe_loop())

    async def _probe_loop(self) -> None:
        while self._running:
            try:
                await self.check()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Connectivity probe error: %s", e)
            await asyncio.sleep(self.interval)

    async def stop(self) -> None:
        """Stop probing, let pending callbacks finish, release the HTTP client."""
        self._running = False
        if self._probe_task and not self._probe_task.done():
            self._probe_task.cancel()
            try:
                await self._probe_task
            except asyncio.CancelledError:
                pass
        self._probe_task = None

        await self.wait_for_callbacks()

        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "ConnectivityMonitor":
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.stop()
