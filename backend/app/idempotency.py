from typing import Optional

# Tables that carry a `client_submission_id` unique column.
_DEDUPED_TABLES = {"orders", "waste_logs", "purchase_invoices", "stock_transfers"}


def find_by_submission_id(cur, table: str, submission_id: Optional[str]) -> Optional[int]:
    """
    Registers replay queued writes after reconnecting. If the first attempt was
    committed but its response was lost, the replay carries the same submission id
    and must resolve to the existing row instead of applying the write twice.
    """
    if not submission_id:
        return None
    if table not in _DEDUPED_TABLES:
        raise ValueError(f"table is not deduplicated: {table}")
    cur.execute(
        f"SELECT id FROM {table} WHERE client_submission_id = %s LIMIT 1",
        (submission_id,),
    )
    row = cur.fetchone()
    return int(row["id"]) if row else None
