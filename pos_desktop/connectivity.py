import asyncio
import socket
from typing import Awaitable, Callable, Optional
from urllib.parse import urlparse

from .local_store import LocalStore, LocalStoreError
from .log import json_log


def probe_reachability(base_url: str, timeout_s: float = 2.0) -> bool:
    """
    Network reachability signal: can we open a TCP connection to the server host?

    This says nothing about the application itself (see the health probe in the
    refresher); it only separates "no network" from "network up".
    """
    try:
        u = urlparse(base_url or "")
    except ValueError:
        return False
    host = u.hostname
    if not host:
        return False
    port = u.port or (443 if u.scheme == "https" else 80)
    try:
        with socket.create_connection((host, port), timeout=max(0.2, float(timeout_s or 2.0))):
            return True
    except OSError:
        return False


class ConnectivityMonitor:
    def __init__(
        self,
        store: LocalStore,
        initial_online: bool = False,
        probe: Optional[Callable[[], bool]] = None,
    ):
        self._store = store
        self._online = bool(initial_online)
        self._probe = probe
        self._sync: Optional[Callable[[], Awaitable]] = None
        self.pending_count = 0
        # None until the first health probe; False means "network up, server down".
        self.server_healthy: Optional[bool] = None

    def bind_sync(self, sync_fn: Callable[[], Awaitable]):
        self._sync = sync_fn

    def is_online(self) -> bool:
        return self._online

    async def initialize(self) -> bool:
        # Seed the state from the current signal; no transition handlers fire here.
        if self._probe is not None:
            self._online = bool(await asyncio.to_thread(self._probe))
        json_log("info", "connectivity.initialized", online=self._online)
        return self._online

    async def set_online(self, online: bool):
        online = bool(online)
        was_online = self._online
        self._online = online
        if was_online == online:
            return
        json_log("info", "connectivity.changed", online=online)
        if not online:
            return
        # Order matters: drain first, then show the operator what is left.
        if self._sync is not None:
            await self._sync()
        await self.refresh_pending_count()

    async def refresh_pending_count(self) -> int:
        try:
            self.pending_count = await asyncio.to_thread(self._store.count_pending)
        except LocalStoreError as ex:
            json_log("error", "connectivity.pending_count_failed", error=str(ex))
        return self.pending_count

    async def check(self) -> bool:
        if self._probe is None:
            return self._online
        online = await asyncio.to_thread(self._probe)
        await self.set_online(online)
        return online

    async def watch(self, interval_s: float = 5.0):
        interval = max(0.5, float(interval_s or 5.0))
        while True:
            try:
                await self.check()
            except asyncio.CancelledError:
                raise
            except Exception as ex:
                json_log("error", "connectivity.watch_error", error=str(ex))
            await asyncio.sleep(interval)

    def status(self) -> dict:
        return {
            "online": self._online,
            "pending_sync": self.pending_count,
            "server_healthy": self.server_healthy,
        }
