from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field
from typing import Optional
from ..db import get_conn

router = APIRouter(prefix="/api/loyalty", tags=["loyalty"])


class AddPointsIn(BaseModel):
    customer_id: int = Field(gt=0)
    points_to_add: int = Field(gt=0)
    order_id: Optional[int] = None


@router.post("/add-points")
def add_points(data: AddPointsIn):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                UPDATE customers
                SET total_points = total_points + %s
                WHERE id = %s
                RETURNING total_points
                """,
                (data.points_to_add, data.customer_id),
            )
            row = cur.fetchone()
            if not row:
                raise HTTPException(status_code=404, detail="customer not found")
            cur.execute(
                """
                INSERT INTO points_transactions (customer_id, order_id, points_added)
                VALUES (%s, %s, %s)
                """,
                (data.customer_id, data.order_id, data.points_to_add),
            )
    return {"success": True, "new_points": int(row["total_points"])}
