from fastapi import APIRouter, HTTPException, Query
from typing import Optional
from ..db import get_conn

# Full-collection reads. Registers replace their local mirror wholesale with each answer.
router = APIRouter(prefix="/api", tags=["masterdata"])


@router.get("/branches")
def list_branches():
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT id, name, location FROM branches ORDER BY id")
            return cur.fetchall()


@router.get("/categories")
def list_categories():
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT id, name FROM categories ORDER BY id")
            return cur.fetchall()


@router.get("/products")
def list_products(branch_id: Optional[int] = Query(None)):
    if not branch_id:
        raise HTTPException(status_code=400, detail="branch_id is required")
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT p.id, p.category_id, p.name, p.price, p.cost_price, p.unit, p.barcode,
                       p.image_url, p.low_stock_threshold, bi.stock_quantity
                FROM products p
                JOIN branch_inventory bi ON bi.product_id = p.id
                WHERE bi.branch_id = %s
                ORDER BY p.id
                """,
                (branch_id,),
            )
            return cur.fetchall()


@router.get("/users")
def list_users():
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT u.id, u.name, u.role, u.branch_id, b.name AS branch_name
                FROM users u
                LEFT JOIN branches b ON b.id = u.branch_id
                ORDER BY u.id
                """
            )
            return cur.fetchall()


@router.get("/receipt-settings")
def get_receipt_settings():
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT id, store_name, branch_default_name, tax_number, invoice_type,
                       thank_you_message, return_policy, qr_code_image_url
                FROM receipt_settings
                ORDER BY id
                LIMIT 1
                """
            )
            row = cur.fetchone()
    if not row:
        raise HTTPException(status_code=404, detail="receipt settings not configured")
    return {"success": True, "settings": row}
