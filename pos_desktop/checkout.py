"""
Order transaction service: the "commit a sale" operation.

A sale is never silently dropped. Online, it goes straight to the server. If the
register is offline, or the online attempt fails for any transport reason, the
exact request body is appended to the local sync queue and the caller gets a
negative placeholder id. Only a local storage failure is terminal.
"""

import asyncio
import math
import time
from dataclasses import dataclass
from typing import Iterable, Optional, Type, Union

from pydantic import BaseModel, ValidationError

from .api import ApiClient, ApiResult
from .connectivity import ConnectivityMonitor
from .local_store import LocalStore, LocalStoreError
from .log import json_log
from .operations import (
    ENDPOINTS,
    OrderLine,
    OrderPayload,
    PurchasePayload,
    TransferPayload,
    WastePayload,
)

TAX_RATE = 0.15

# (threshold, next tier) pairs for the loyalty hint printed on the receipt.
REWARD_TIERS = ((100, 200), (200, 500))


@dataclass
class Totals:
    subtotal: float
    discount_amount: float
    taxable: float
    tax_amount: float
    total: float


def compute_totals(line_totals: Iterable[float], discount_percent: float = 0) -> Totals:
    subtotal = sum(float(t or 0) for t in (line_totals or []))
    discount_amount = (subtotal * float(discount_percent or 0)) / 100
    taxable = subtotal - discount_amount
    tax_amount = taxable * TAX_RATE
    return Totals(
        subtotal=subtotal,
        discount_amount=discount_amount,
        taxable=taxable,
        tax_amount=tax_amount,
        total=taxable + tax_amount,
    )


def build_order_payload(cart, branch_id: int, payment_method: str, discount_percent: float = 0, customer_id=None) -> OrderPayload:
    """
    cart: [{"product": {...}, "quantity": q}, ...] as held by the UI.
    Totals are computed here, once; replays send these exact numbers.
    """
    lines = []
    for item in cart or []:
        product = item.get("product") or {}
        qty = float(item.get("quantity") or 0)
        price = float(product.get("price") or 0)
        lines.append(
            OrderLine(
                product_id=int(product["id"]),
                quantity=qty,
                price=price,
                cost_price=float(product.get("cost_price") or 0),
                total=price * qty,
            )
        )
    totals = compute_totals([ln.total for ln in lines], discount_percent)
    return OrderPayload(
        branch_id=int(branch_id),
        items=lines,
        subtotal=totals.subtotal,
        discount_percent=float(discount_percent or 0),
        discount_amount=totals.discount_amount,
        tax_amount=totals.tax_amount,
        total_amount=totals.total,
        payment_method=payment_method,
        customer_id=customer_id,
    )


def suggested_reward(points: int) -> Optional[str]:
    for low, high in REWARD_TIERS:
        if low <= points < high:
            return f"{high - points} more points to reach the {high}-point reward"
    return None


@dataclass
class LoyaltyAward:
    points_earned: int
    new_total_points: Optional[int] = None
    suggested_reward: Optional[str] = None


@dataclass
class OrderResult:
    success: bool
    order_id: Optional[int] = None
    offline: bool = False
    rejected: bool = False
    error: Optional[str] = None
    loyalty: Optional[LoyaltyAward] = None


@dataclass
class WriteResult:
    success: bool
    offline: bool = False
    rejected: bool = False
    error: Optional[str] = None
    data: Optional[dict] = None


def _confirmed(res: ApiResult) -> bool:
    return bool(res.ok and isinstance(res.data, dict) and res.data.get("success"))


def _validated(model: Type[BaseModel], payload):
    # Dicts come from callers; models built elsewhere are re-checked too.
    if isinstance(payload, model):
        payload = payload.model_dump()
    return model.model_validate(payload)


def _first_error(ex: ValidationError) -> str:
    err = ex.errors()[0]
    loc = ".".join(str(p) for p in err.get("loc") or ())
    return f"{loc}: {err.get('msg')}" if loc else str(err.get("msg"))


class OrderTransactionService:
    def __init__(
        self,
        store: LocalStore,
        api: ApiClient,
        connectivity: ConnectivityMonitor,
        loyalty_points_divisor: float = 10,
    ):
        self._store = store
        self._api = api
        self._connectivity = connectivity
        self._loyalty_divisor = float(loyalty_points_divisor or 10)
        self._last_placeholder = 0

    def _next_placeholder_id(self) -> int:
        # Negative epoch-ms, forced strictly decreasing so two sales in the same
        # millisecond still get distinct ids.
        now_ms = int(time.time() * 1000)
        value = max(now_ms, self._last_placeholder + 1)
        self._last_placeholder = value
        return -value

    async def _enqueue(self, kind: str, body: dict) -> Optional[str]:
        try:
            await asyncio.to_thread(self._store.enqueue, kind, body)
        except LocalStoreError as ex:
            json_log("error", "checkout.enqueue_failed", kind=kind, error=str(ex))
            return str(ex)
        await self._connectivity.refresh_pending_count()
        return None

    async def _try_online(self, kind: str, body: dict) -> Optional[ApiResult]:
        if not self._connectivity.is_online():
            return None
        res = await self._api.post_json(ENDPOINTS[kind], body)
        if not _confirmed(res) and not res.rejected:
            json_log(
                "warning",
                "checkout.online_failed_queueing",
                kind=kind,
                status=res.status,
                error=res.error,
                client_submission_id=body.get("client_submission_id"),
            )
        return res

    async def submit_order(self, payload: Union[OrderPayload, dict]) -> OrderResult:
        try:
            payload = _validated(OrderPayload, payload)
        except ValidationError as ex:
            json_log("warning", "checkout.invalid_order", error=str(ex))
            return OrderResult(success=False, rejected=True, error=_first_error(ex))
        body = payload.model_dump()

        res = await self._try_online("order", body)
        if res is not None:
            order_id = res.data.get("orderId") if isinstance(res.data, dict) else None
            if _confirmed(res) and isinstance(order_id, int) and order_id > 0:
                loyalty = None
                if payload.customer_id:
                    loyalty = await self._award_loyalty(payload.customer_id, order_id, payload.total_amount)
                return OrderResult(success=True, order_id=order_id, offline=False, loyalty=loyalty)
            if res.rejected:
                return OrderResult(success=False, rejected=True, error=res.error)

        err = await self._enqueue("order", body)
        if err is not None:
            return OrderResult(success=False, error=f"local storage failed: {err}")
        order_id = self._next_placeholder_id()
        json_log("info", "checkout.order_queued", placeholder_id=order_id, branch_id=payload.branch_id)
        return OrderResult(success=True, order_id=order_id, offline=True)

    async def _award_loyalty(self, customer_id: int, order_id: int, total_amount: float) -> Optional[LoyaltyAward]:
        points = int(math.floor(float(total_amount or 0) / self._loyalty_divisor))
        if points <= 0:
            return None
        res = await self._api.post_json(
            "/api/loyalty/add-points",
            {"customer_id": customer_id, "points_to_add": points, "order_id": order_id},
        )
        award = LoyaltyAward(points_earned=points)
        if _confirmed(res) and res.data.get("new_points") is not None:
            award.new_total_points = int(res.data["new_points"])
            award.suggested_reward = suggested_reward(award.new_total_points)
        else:
            # The sale stands; points can be adjusted from the back office.
            json_log("warning", "checkout.loyalty_failed", customer_id=customer_id, order_id=order_id, error=res.error)
        return award

    async def _write(self, kind: str, model: Type[BaseModel], payload) -> WriteResult:
        try:
            payload = _validated(model, payload)
        except ValidationError as ex:
            json_log("warning", "checkout.invalid_write", kind=kind, error=str(ex))
            return WriteResult(success=False, rejected=True, error=_first_error(ex))
        body = payload.model_dump()
        res = await self._try_online(kind, body)
        if res is not None:
            if _confirmed(res):
                return WriteResult(success=True, data=res.data)
            if res.rejected:
                return WriteResult(success=False, rejected=True, error=res.error)
        err = await self._enqueue(kind, body)
        if err is not None:
            return WriteResult(success=False, error=f"local storage failed: {err}")
        return WriteResult(success=True, offline=True)

    async def record_waste(self, payload: Union[WastePayload, dict]) -> WriteResult:
        return await self._write("waste", WastePayload, payload)

    async def record_purchase(self, payload: Union[PurchasePayload, dict]) -> WriteResult:
        return await self._write("purchase", PurchasePayload, payload)

    async def transfer_stock(self, payload: Union[TransferPayload, dict]) -> WriteResult:
        return await self._write("transfer", TransferPayload, payload)
