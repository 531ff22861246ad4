import asyncio
from dataclasses import dataclass, field
from typing import Optional

from .api import ApiClient
from .connectivity import ConnectivityMonitor
from .local_store import LocalStore, LocalStoreError
from .log import json_log
from .sync import SyncEngine

RECEIPT_SETTINGS_KEY = "receipt_settings"


@dataclass
class RefreshResult:
    source: str
    server_healthy: Optional[bool] = None
    branch_id: Optional[int] = None
    branches: list = field(default_factory=list)
    categories: list = field(default_factory=list)
    products: list = field(default_factory=list)
    receipt_settings: Optional[dict] = None


class ReferenceDataRefresher:
    """
    Mirrors branches/categories/products/users from the server into the local store.

    Online: health probe first; nothing else happens when it fails. Then the queue is
    drained before anything is pulled, so stock figures shown afterwards already
    include the queued sales. Offline: the mirrors are served as-is.
    """

    def __init__(
        self,
        store: LocalStore,
        api: ApiClient,
        connectivity: ConnectivityMonitor,
        sync_engine: SyncEngine,
        branch_id: Optional[int] = None,
        health_timeout_s: Optional[float] = None,
    ):
        self._store = store
        self._api = api
        self._connectivity = connectivity
        self._sync = sync_engine
        self.branch_id = branch_id
        self._health_timeout_s = health_timeout_s

    async def refresh(self, include_secondary_settings: bool = True) -> RefreshResult:
        if not self._connectivity.is_online():
            return await self._from_cache()

        health = await self._api.get_json("/api/health", timeout_s=self._health_timeout_s)
        if not health:
            # Network is up but the application server is not answering.
            self._connectivity.server_healthy = False
            json_log("error", "refresh.server_unreachable", base_url=self._api.base_url)
            return RefreshResult(source="server", server_healthy=False, branch_id=self.branch_id)
        self._connectivity.server_healthy = True

        await self._sync.sync_pending_operations()
        await self._connectivity.refresh_pending_count()

        result = RefreshResult(source="server", server_healthy=True)

        if include_secondary_settings:
            data = await self._api.get_json("/api/receipt-settings")
            if isinstance(data, dict) and data.get("success") and isinstance(data.get("settings"), dict):
                result.receipt_settings = data["settings"]
                await self._save_setting(RECEIPT_SETTINGS_KEY, result.receipt_settings)
            else:
                result.receipt_settings = await self._load_setting(RECEIPT_SETTINGS_KEY)

        result.branches = await self._pull("branches", "/api/branches")
        if result.branches and self.branch_id is None:
            self.branch_id = int(result.branches[0]["id"])
            json_log("info", "refresh.branch_selected", branch_id=self.branch_id)
        result.branch_id = self.branch_id

        result.categories = await self._pull("categories", "/api/categories")
        await self._pull("users", "/api/users")

        if self.branch_id is not None:
            result.products = await self._pull("products", f"/api/products?branch_id={int(self.branch_id)}")
            json_log("info", "refresh.products_pulled", branch_id=self.branch_id, count=len(result.products))
        return result

    async def _pull(self, collection: str, path: str) -> list:
        rows = await self._api.get_json(path)
        if not isinstance(rows, list):
            # Keep the last good mirror rather than wiping it on a failed pull.
            json_log("warning", "refresh.pull_failed", collection=collection, path=path)
            return await self._list(collection)
        try:
            await asyncio.to_thread(self._store.replace_collection, collection, rows)
        except LocalStoreError as ex:
            json_log("error", "refresh.mirror_write_failed", collection=collection, error=str(ex))
        return rows

    async def _from_cache(self) -> RefreshResult:
        result = RefreshResult(source="cache", server_healthy=self._connectivity.server_healthy)
        result.branches = await self._list("branches")
        if result.branches and self.branch_id is None:
            self.branch_id = int(result.branches[0]["id"])
        result.branch_id = self.branch_id
        result.categories = await self._list("categories")
        result.products = await self._list("products")
        result.receipt_settings = await self._load_setting(RECEIPT_SETTINGS_KEY)
        return result

    async def _list(self, collection: str) -> list:
        try:
            return await asyncio.to_thread(self._store.list_collection, collection)
        except LocalStoreError as ex:
            json_log("error", "refresh.mirror_read_failed", collection=collection, error=str(ex))
            return []

    async def _load_setting(self, key: str):
        try:
            return await asyncio.to_thread(self._store.get_setting, key)
        except LocalStoreError as ex:
            json_log("error", "refresh.setting_read_failed", key=key, error=str(ex))
            return None

    async def _save_setting(self, key: str, value):
        try:
            await asyncio.to_thread(self._store.set_setting, key, value)
        except LocalStoreError as ex:
            json_log("error", "refresh.setting_write_failed", key=key, error=str(ex))
