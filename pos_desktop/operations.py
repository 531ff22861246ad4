from __future__ import annotations

import uuid
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, BeforeValidator, Field, StringConstraints, TypeAdapter, model_validator


def new_submission_id() -> str:
    return uuid.uuid4().hex


def _to_lower_str(v):
    if v is None:
        return v
    return str(v).strip().lower()


def _to_clean_str(v):
    if v is None:
        return v
    return str(v).strip()


# Same rules the server applies. A payload it would refuse must be refused here,
# before it is queued: a queued entry the server never accepts blocks the queue.
PaymentMethod = Annotated[
    str,
    BeforeValidator(_to_lower_str),
    StringConstraints(min_length=1, max_length=32, pattern=r"^[a-z0-9][a-z0-9_-]*$"),
]
SubmissionId = Annotated[
    str,
    BeforeValidator(_to_clean_str),
    StringConstraints(min_length=8, max_length=64, pattern=r"^[A-Za-z0-9_-]+$"),
]
RecordId = Annotated[int, Field(gt=0)]


class OrderLine(BaseModel):
    product_id: RecordId
    quantity: float = Field(gt=0)
    price: float = Field(ge=0)
    cost_price: float = Field(default=0, ge=0)
    total: float


class OrderPayload(BaseModel):
    branch_id: RecordId
    items: List[OrderLine] = Field(min_length=1)
    subtotal: float
    discount_percent: float = Field(default=0, ge=0, le=100)
    discount_amount: float = Field(default=0, ge=0)
    tax_amount: float = Field(ge=0)
    total_amount: float = Field(ge=0)
    payment_method: PaymentMethod
    customer_id: Optional[int] = None
    # Server deduplicates on this; assigned once, reused verbatim on every replay.
    client_submission_id: SubmissionId = Field(default_factory=new_submission_id)


class WastePayload(BaseModel):
    branch_id: RecordId
    product_id: RecordId
    quantity: float = Field(gt=0)
    reason: Optional[str] = None
    client_submission_id: SubmissionId = Field(default_factory=new_submission_id)


class PurchaseLine(BaseModel):
    product_id: RecordId
    quantity: float = Field(gt=0)
    cost_price: float = Field(ge=0)


class PurchasePayload(BaseModel):
    branch_id: RecordId
    supplier_id: Optional[int] = None
    total_amount: float = Field(ge=0)
    items: List[PurchaseLine] = Field(min_length=1)
    client_submission_id: SubmissionId = Field(default_factory=new_submission_id)


class TransferPayload(BaseModel):
    from_branch_id: RecordId
    to_branch_id: RecordId
    product_id: RecordId
    quantity: float = Field(gt=0)
    client_submission_id: SubmissionId = Field(default_factory=new_submission_id)

    @model_validator(mode="after")
    def _distinct_branches(self):
        if self.from_branch_id == self.to_branch_id:
            raise ValueError("source and destination branch must differ")
        return self


class OrderOperation(BaseModel):
    kind: Literal["order"] = "order"
    data: OrderPayload


class WasteOperation(BaseModel):
    kind: Literal["waste"] = "waste"
    data: WastePayload


class PurchaseOperation(BaseModel):
    kind: Literal["purchase"] = "purchase"
    data: PurchasePayload


class TransferOperation(BaseModel):
    kind: Literal["transfer"] = "transfer"
    data: TransferPayload


SyncOperation = Annotated[
    Union[OrderOperation, WasteOperation, PurchaseOperation, TransferOperation],
    Field(discriminator="kind"),
]

_operation_adapter = TypeAdapter(SyncOperation)

ENDPOINTS = {
    "order": "/api/orders",
    "waste": "/api/waste",
    "purchase": "/api/purchases",
    "transfer": "/api/transfers",
}


def parse_operation(kind: str, payload: dict) -> SyncOperation:
    """Rebuild a typed operation from a queue row. Raises on unknown kind or bad shape."""
    return _operation_adapter.validate_python({"kind": kind, "data": payload})


def endpoint_for(op: SyncOperation) -> str:
    return ENDPOINTS[op.kind]
