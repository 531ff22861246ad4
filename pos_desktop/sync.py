"""
Sync engine: replays the local queue against the server, strictly FIFO.

Rules:
- Entries are replayed from the head, one at a time, in ascending sequence id.
- The delete after a successful replay is the commit point. A crash between the
  server ack and the delete replays the same entry; the server deduplicates it on
  `client_submission_id`.
- The first failure stops the pass. Later entries stay queued untouched
  (head-of-line blocking keeps stock effects and the audit trail in order).
- Overlapping calls (reconnect handler vs. manual refresh) are serialized, so an
  entry is never in flight twice.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Optional

from pydantic import ValidationError

from .api import ApiClient
from .connectivity import ConnectivityMonitor
from .local_store import LocalStore, LocalStoreError
from .log import json_log
from .operations import endpoint_for, parse_operation


@dataclass
class SyncReport:
    attempted: int = 0
    synced: list = field(default_factory=list)
    stopped_at: Optional[int] = None
    error: Optional[str] = None
    skipped: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.stopped_at is None and self.error is None


class SyncEngine:
    def __init__(self, store: LocalStore, api: ApiClient, connectivity: ConnectivityMonitor):
        self._store = store
        self._api = api
        self._connectivity = connectivity
        self._lock = asyncio.Lock()

    async def sync_pending_operations(self) -> SyncReport:
        if not self._connectivity.is_online():
            return SyncReport(skipped="offline")
        async with self._lock:
            return await self._drain()

    async def _drain(self) -> SyncReport:
        report = SyncReport()
        first = True
        while True:
            if not self._connectivity.is_online():
                report.skipped = "went_offline"
                break
            try:
                entry = await asyncio.to_thread(self._store.peek_head)
            except LocalStoreError as ex:
                json_log("error", "sync.read_failed", error=str(ex))
                report.error = str(ex)
                break
            if entry is None:
                break
            if first:
                pending = await asyncio.to_thread(self._store.count_pending)
                json_log("info", "sync.started", pending=pending)
                first = False

            report.attempted += 1
            try:
                op = parse_operation(entry.kind, entry.payload)
            except ValidationError as ex:
                json_log("error", "sync.invalid_entry", entry_id=entry.id, kind=entry.kind, error=str(ex))
                report.stopped_at = entry.id
                report.error = f"invalid queue entry {entry.id}"
                break

            res = await self._api.post_json(endpoint_for(op), entry.payload)
            if not (res.ok and isinstance(res.data, dict) and res.data.get("success")):
                json_log(
                    "warning",
                    "sync.entry_failed",
                    entry_id=entry.id,
                    kind=entry.kind,
                    status=res.status,
                    error=res.error,
                )
                report.stopped_at = entry.id
                report.error = res.error or "server did not confirm"
                break

            try:
                await asyncio.to_thread(self._store.delete_entry, entry.id)
            except LocalStoreError as ex:
                # Server has it; the next pass resubmits and the server dedupes.
                json_log("error", "sync.delete_failed", entry_id=entry.id, error=str(ex))
                report.error = str(ex)
                break
            report.synced.append(entry.id)
            json_log("info", "sync.entry_synced", entry_id=entry.id, kind=entry.kind)

        if report.attempted:
            json_log(
                "info",
                "sync.finished",
                synced=len(report.synced),
                stopped_at=report.stopped_at,
            )
        return report
