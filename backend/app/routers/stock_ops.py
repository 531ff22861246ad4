from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from ..db import get_conn
from ..idempotency import find_by_submission_id
from ..validation import SubmissionId

# Stock movements other than sales. Each write and its stock effect commit together.
router = APIRouter(prefix="/api", tags=["stock"])


class WasteIn(BaseModel):
    branch_id: int = Field(gt=0)
    product_id: int = Field(gt=0)
    quantity: Decimal = Field(gt=0)
    reason: Optional[str] = None
    client_submission_id: Optional[SubmissionId] = None


class PurchaseItemIn(BaseModel):
    product_id: int = Field(gt=0)
    quantity: Decimal = Field(gt=0)
    cost_price: Decimal = Field(ge=0)


class PurchaseIn(BaseModel):
    branch_id: int = Field(gt=0)
    supplier_id: Optional[int] = None
    total_amount: Decimal = Field(ge=0)
    items: List[PurchaseItemIn] = Field(min_length=1)
    client_submission_id: Optional[SubmissionId] = None


class TransferIn(BaseModel):
    from_branch_id: int = Field(gt=0)
    to_branch_id: int = Field(gt=0)
    product_id: int = Field(gt=0)
    quantity: Decimal = Field(gt=0)
    client_submission_id: Optional[SubmissionId] = None


def _adjust_stock(cur, branch_id: int, product_id: int, delta: Decimal):
    # Upsert: a branch may receive a product it never stocked before.
    cur.execute(
        """
        INSERT INTO branch_inventory (branch_id, product_id, stock_quantity)
        VALUES (%s, %s, %s)
        ON CONFLICT (branch_id, product_id)
        DO UPDATE SET stock_quantity = branch_inventory.stock_quantity + EXCLUDED.stock_quantity
        """,
        (branch_id, product_id, delta),
    )


@router.post("/waste")
def record_waste(data: WasteIn):
    with get_conn() as conn:
        with conn.cursor() as cur:
            existing = find_by_submission_id(cur, "waste_logs", data.client_submission_id)
            if existing:
                return {"success": True, "wasteId": existing, "duplicate": True}
            cur.execute(
                """
                INSERT INTO waste_logs (branch_id, product_id, quantity, reason, client_submission_id)
                VALUES (%s, %s, %s, %s, %s)
                RETURNING id
                """,
                (data.branch_id, data.product_id, data.quantity, (data.reason or "").strip() or None, data.client_submission_id),
            )
            waste_id = int(cur.fetchone()["id"])
            _adjust_stock(cur, data.branch_id, data.product_id, -data.quantity)
    return {"success": True, "wasteId": waste_id}


@router.post("/purchases")
def record_purchase(data: PurchaseIn):
    with get_conn() as conn:
        with conn.cursor() as cur:
            existing = find_by_submission_id(cur, "purchase_invoices", data.client_submission_id)
            if existing:
                return {"success": True, "invoiceId": existing, "duplicate": True}
            cur.execute(
                """
                INSERT INTO purchase_invoices (branch_id, supplier_id, total_amount, client_submission_id)
                VALUES (%s, %s, %s, %s)
                RETURNING id
                """,
                (data.branch_id, data.supplier_id, data.total_amount, data.client_submission_id),
            )
            invoice_id = int(cur.fetchone()["id"])
            for it in data.items:
                cur.execute(
                    """
                    INSERT INTO purchase_items (invoice_id, product_id, quantity, cost_price)
                    VALUES (%s, %s, %s, %s)
                    """,
                    (invoice_id, it.product_id, it.quantity, it.cost_price),
                )
                _adjust_stock(cur, data.branch_id, it.product_id, it.quantity)
    return {"success": True, "invoiceId": invoice_id}


@router.post("/transfers")
def transfer_stock(data: TransferIn):
    if data.from_branch_id == data.to_branch_id:
        raise HTTPException(status_code=400, detail="source and destination branch must differ")
    with get_conn() as conn:
        with conn.cursor() as cur:
            existing = find_by_submission_id(cur, "stock_transfers", data.client_submission_id)
            if existing:
                return {"success": True, "transferId": existing, "duplicate": True}
            cur.execute(
                """
                SELECT stock_quantity
                FROM branch_inventory
                WHERE branch_id = %s AND product_id = %s
                FOR UPDATE
                """,
                (data.from_branch_id, data.product_id),
            )
            row = cur.fetchone()
            if not row or Decimal(str(row["stock_quantity"])) < data.quantity:
                raise HTTPException(status_code=400, detail="insufficient stock")
            cur.execute(
                """
                INSERT INTO stock_transfers (from_branch_id, to_branch_id, product_id, quantity, client_submission_id)
                VALUES (%s, %s, %s, %s, %s)
                RETURNING id
                """,
                (data.from_branch_id, data.to_branch_id, data.product_id, data.quantity, data.client_submission_id),
            )
            transfer_id = int(cur.fetchone()["id"])
            _adjust_stock(cur, data.from_branch_id, data.product_id, -data.quantity)
            _adjust_stock(cur, data.to_branch_id, data.product_id, data.quantity)
    return {"success": True, "transferId": transfer_id}
