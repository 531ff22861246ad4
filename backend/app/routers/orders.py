from collections import defaultdict
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from ..config import settings
from ..db import get_conn
from ..idempotency import find_by_submission_id
from ..validation import PaymentMethod, SubmissionId

router = APIRouter(prefix="/api/orders", tags=["orders"])

TAX_RATE = Decimal("0.15")
TOTALS_TOLERANCE = Decimal("0.01")


class OrderItemIn(BaseModel):
    product_id: int = Field(gt=0)
    quantity: Decimal = Field(gt=0)
    price: Decimal = Field(ge=0)
    cost_price: Decimal = Field(default=Decimal("0"), ge=0)
    total: Decimal


class OrderIn(BaseModel):
    branch_id: int = Field(gt=0)
    items: List[OrderItemIn] = Field(min_length=1)
    subtotal: Optional[Decimal] = None
    discount_percent: Optional[Decimal] = Field(default=None, ge=0, le=100)
    discount_amount: Decimal = Field(default=Decimal("0"), ge=0)
    tax_amount: Decimal = Field(ge=0)
    total_amount: Decimal = Field(ge=0)
    payment_method: PaymentMethod
    customer_id: Optional[int] = None
    client_submission_id: Optional[SubmissionId] = None


def _assert_totals_consistent(data: OrderIn) -> None:
    """
    Totals are computed once on the register at checkout and replayed verbatim.
    Reject bodies whose numbers do not follow the pricing policy:
      total = (subtotal - discount) * 1.15
    """
    for it in data.items:
        if abs(it.price * it.quantity - it.total) > TOTALS_TOLERANCE:
            raise HTTPException(status_code=400, detail=f"line total mismatch for product {it.product_id}")
    subtotal = sum((it.total for it in data.items), Decimal("0"))
    if data.subtotal is not None and abs(data.subtotal - subtotal) > TOTALS_TOLERANCE:
        raise HTTPException(status_code=400, detail="subtotal does not match line totals")
    if data.discount_amount > subtotal + TOTALS_TOLERANCE:
        raise HTTPException(status_code=400, detail="discount exceeds subtotal")
    taxable = subtotal - data.discount_amount
    if abs(data.tax_amount - taxable * TAX_RATE) > TOTALS_TOLERANCE:
        raise HTTPException(status_code=400, detail="tax_amount does not match 15% of the discounted subtotal")
    if abs(data.total_amount - (taxable + data.tax_amount)) > TOTALS_TOLERANCE:
        raise HTTPException(status_code=400, detail="total_amount does not match subtotal - discount + tax")


def _assert_stock_available(cur, branch_id: int, items: List[OrderItemIn]) -> None:
    wanted = defaultdict(lambda: Decimal("0"))
    for it in items:
        wanted[it.product_id] += it.quantity
    for product_id in sorted(wanted):
        cur.execute(
            """
            SELECT stock_quantity
            FROM branch_inventory
            WHERE branch_id = %s AND product_id = %s
            FOR UPDATE
            """,
            (branch_id, product_id),
        )
        row = cur.fetchone()
        have = Decimal(str(row["stock_quantity"])) if row else Decimal("0")
        if have < wanted[product_id]:
            raise HTTPException(status_code=409, detail=f"insufficient stock for product {product_id}")


@router.post("")
def create_order(data: OrderIn):
    _assert_totals_consistent(data)
    total_cost = sum((it.cost_price * it.quantity for it in data.items), Decimal("0"))

    with get_conn() as conn:
        with conn.cursor() as cur:
            existing = find_by_submission_id(cur, "orders", data.client_submission_id)
            if existing:
                return {"success": True, "orderId": existing, "duplicate": True}

            if settings.enforce_stock_on_sale:
                _assert_stock_available(cur, data.branch_id, data.items)

            cur.execute(
                """
                INSERT INTO orders
                  (branch_id, total_amount, tax_amount, discount_amount, total_cost,
                   payment_method, customer_id, client_submission_id)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (client_submission_id) DO NOTHING
                RETURNING id
                """,
                (
                    data.branch_id,
                    data.total_amount,
                    data.tax_amount,
                    data.discount_amount,
                    total_cost,
                    data.payment_method,
                    data.customer_id,
                    data.client_submission_id,
                ),
            )
            row = cur.fetchone()
            if not row:
                # A concurrent replay of the same submission committed first.
                existing = find_by_submission_id(cur, "orders", data.client_submission_id)
                return {"success": True, "orderId": existing, "duplicate": True}
            order_id = int(row["id"])

            for it in data.items:
                cur.execute(
                    """
                    INSERT INTO order_items (order_id, product_id, quantity, price, cost, total)
                    VALUES (%s, %s, %s, %s, %s, %s)
                    """,
                    (order_id, it.product_id, it.quantity, it.price, it.cost_price, it.total),
                )
                cur.execute(
                    """
                    UPDATE branch_inventory
                    SET stock_quantity = stock_quantity - %s
                    WHERE branch_id = %s AND product_id = %s
                    """,
                    (it.quantity, data.branch_id, it.product_id),
                )
    return {"success": True, "orderId": order_id}
