#!/usr/bin/env python3
"""
Register-side POS agent.

Owns the local store, the connectivity monitor, the sync engine and the order
transaction service, and exposes them to the POS UI over a small local HTTP API.
Startup runs a sync pass explicitly; reconnects run one via the monitor.
"""

import argparse
import asyncio
import os
from dataclasses import asdict, dataclass
from typing import List, Optional

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from . import config as agent_config
from .api import ApiClient
from .checkout import OrderTransactionService, WriteResult, build_order_payload
from .config import load_config
from .connectivity import ConnectivityMonitor, probe_reachability
from .local_store import LocalStore, LocalStoreError
from .log import json_log
from .operations import PaymentMethod, PurchasePayload, TransferPayload, WastePayload
from .refresher import ReferenceDataRefresher
from .scale import resolve_scan
from .sync import SyncEngine


@dataclass
class Runtime:
    cfg: dict
    store: LocalStore
    api: ApiClient
    connectivity: ConnectivityMonitor
    sync: SyncEngine
    checkout: OrderTransactionService
    refresher: ReferenceDataRefresher


def build_runtime(cfg: dict, db_path: str, api: Optional[ApiClient] = None, probe=None) -> Runtime:
    store = LocalStore(db_path)
    api = api or ApiClient(cfg.get("api_base_url") or "", timeout_s=cfg.get("request_timeout_s") or 30)
    if probe is None:
        base_url = cfg.get("api_base_url") or ""
        probe = lambda: probe_reachability(base_url)  # noqa: E731
    connectivity = ConnectivityMonitor(store, initial_online=False, probe=probe)
    sync = SyncEngine(store, api, connectivity)
    connectivity.bind_sync(sync.sync_pending_operations)
    checkout = OrderTransactionService(
        store,
        api,
        connectivity,
        loyalty_points_divisor=cfg.get("loyalty_points_divisor") or 10,
    )
    refresher = ReferenceDataRefresher(
        store,
        api,
        connectivity,
        sync,
        branch_id=cfg.get("branch_id"),
        health_timeout_s=cfg.get("health_timeout_s"),
    )
    return Runtime(cfg, store, api, connectivity, sync, checkout, refresher)


class CartItemIn(BaseModel):
    product: dict
    quantity: float = Field(gt=0)


class SaleIn(BaseModel):
    cart: List[CartItemIn]
    payment_method: PaymentMethod = "cash"
    discount_percent: float = Field(default=0, ge=0, le=100)
    customer_id: Optional[int] = None
    branch_id: Optional[int] = None


class ScanIn(BaseModel):
    code: str


class ConnectivityIn(BaseModel):
    online: bool


def _write_response(res: WriteResult):
    if res.success:
        return {"success": True, "offline": res.offline, "result": res.data}
    if res.rejected:
        return JSONResponse(status_code=409, content={"success": False, "error": "rejected", "detail": res.error})
    return JSONResponse(status_code=500, content={"success": False, "error": "local_storage_failed", "detail": res.error})


def create_app(runtime: Runtime, watch: bool = True) -> FastAPI:
    app = FastAPI(title="POS Agent")
    tasks: dict = {}

    @app.on_event("startup")
    async def _startup():
        await asyncio.to_thread(runtime.store.init_db)
        await runtime.connectivity.initialize()
        report = await runtime.sync.sync_pending_operations()
        await runtime.connectivity.refresh_pending_count()
        json_log("info", "agent.startup", online=runtime.connectivity.is_online(), synced=len(report.synced))
        if watch:
            interval = runtime.cfg.get("connectivity_poll_s") or 5
            tasks["watch"] = asyncio.create_task(runtime.connectivity.watch(interval))

    @app.on_event("shutdown")
    async def _shutdown():
        task = tasks.pop("watch", None)
        if task is not None:
            task.cancel()

    @app.get("/api/health")
    def health():
        return {"ok": True}

    @app.get("/api/status")
    def status():
        return runtime.connectivity.status()

    @app.get("/api/outbox")
    async def outbox():
        entries = await asyncio.to_thread(runtime.store.list_queue)
        return {
            "pending": len(entries),
            "outbox": [
                {"id": e.id, "kind": e.kind, "created_at": e.created_at, "payload": e.payload}
                for e in entries
            ],
        }

    @app.post("/api/sale")
    async def sale(data: SaleIn):
        if not data.cart:
            return JSONResponse(status_code=400, content={"error": "empty cart"})
        branch_id = data.branch_id or runtime.refresher.branch_id
        if branch_id is None:
            return JSONResponse(status_code=400, content={"error": "no branch selected"})
        try:
            payload = build_order_payload(
                [item.model_dump() for item in data.cart],
                branch_id,
                data.payment_method,
                data.discount_percent,
                data.customer_id,
            )
        except (KeyError, TypeError, ValueError) as ex:
            return JSONResponse(status_code=400, content={"error": "invalid cart", "detail": str(ex)})
        res = await runtime.checkout.submit_order(payload)
        if res.success:
            return {
                "success": True,
                "orderId": res.order_id,
                "offline": res.offline,
                "totals": {
                    "subtotal": payload.subtotal,
                    "discount_amount": payload.discount_amount,
                    "tax_amount": payload.tax_amount,
                    "total_amount": payload.total_amount,
                },
                "loyalty": asdict(res.loyalty) if res.loyalty else None,
            }
        if res.rejected:
            return JSONResponse(status_code=409, content={"success": False, "error": "rejected", "detail": res.error})
        return JSONResponse(status_code=500, content={"success": False, "error": "local_storage_failed", "detail": res.error})

    @app.post("/api/waste")
    async def waste(data: WastePayload):
        return _write_response(await runtime.checkout.record_waste(data))

    @app.post("/api/purchases")
    async def purchases(data: PurchasePayload):
        return _write_response(await runtime.checkout.record_purchase(data))

    @app.post("/api/transfers")
    async def transfers(data: TransferPayload):
        return _write_response(await runtime.checkout.transfer_stock(data))

    @app.post("/api/sync/push")
    async def sync_push():
        report = await runtime.sync.sync_pending_operations()
        pending = await runtime.connectivity.refresh_pending_count()
        return {
            "ok": report.ok,
            "sent": len(report.synced),
            "stopped_at": report.stopped_at,
            "error": report.error,
            "skipped": report.skipped,
            "pending": pending,
        }

    @app.post("/api/refresh")
    async def refresh(include_settings: bool = True):
        res = await runtime.refresher.refresh(include_secondary_settings=include_settings)
        if res.server_healthy is False and res.source == "server":
            return JSONResponse(
                status_code=503,
                content={"error": "server_unreachable", "hint": "Network is up but the POS server is not answering. Retry."},
            )
        return {
            "source": res.source,
            "branch_id": res.branch_id,
            "branches": res.branches,
            "categories": res.categories,
            "products": res.products,
            "receipt_settings": res.receipt_settings,
            "pending_sync": runtime.connectivity.pending_count,
        }

    @app.post("/api/scan")
    async def scan(data: ScanIn):
        try:
            products = await asyncio.to_thread(runtime.store.list_collection, "products")
        except LocalStoreError as ex:
            return JSONResponse(status_code=500, content={"error": "local_storage_failed", "detail": str(ex)})
        match = resolve_scan(data.code, products)
        if match is None:
            return JSONResponse(status_code=404, content={"error": "no product for code"})
        return {"product": match.product, "quantity": match.quantity, "weighed": match.weighed}

    @app.post("/api/connectivity")
    async def set_connectivity(data: ConnectivityIn):
        await runtime.connectivity.set_online(data.online)
        return runtime.connectivity.status()

    return app


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--init-db", action="store_true", help="Initialize local SQLite schema and exit")
    parser.add_argument(
        "--db",
        default=os.environ.get("POS_DB_PATH", agent_config.DB_PATH),
        help="SQLite DB path (default: pos_desktop/pos.sqlite).",
    )
    parser.add_argument(
        "--config",
        default=os.environ.get("POS_CONFIG_PATH", agent_config.CONFIG_PATH),
        help="Config JSON path (default: pos_desktop/config.json).",
    )
    parser.add_argument(
        "--host",
        default=os.environ.get("POS_HOST", "127.0.0.1"),
        help="HTTP host to bind (default: 127.0.0.1). Use 0.0.0.0 only if you explicitly want LAN exposure.",
    )
    parser.add_argument("--port", type=int, default=int(os.environ.get("POS_PORT", "7070")), help="HTTP port (default: 7070)")
    args = parser.parse_args()

    db_path = os.path.abspath(args.db)
    cfg = load_config(os.path.abspath(args.config))

    if args.init_db:
        LocalStore(db_path).init_db()
        print("ok")
        return

    import uvicorn

    app = create_app(build_runtime(cfg, db_path))
    public_host = "localhost" if args.host in {"127.0.0.1", "localhost"} else args.host
    print(f"POS Agent running on http://{public_host}:{args.port}")
    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
