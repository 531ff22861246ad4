from __future__ import annotations

from typing import Annotated

from pydantic import BeforeValidator, StringConstraints


def _to_lower_str(v):
    if v is None:
        return v
    return str(v).strip().lower()


def _to_clean_str(v):
    if v is None:
        return v
    return str(v).strip()


# Keep a tight, safe character set so payment methods are stable identifiers
# (they are grouped on in reports).
PaymentMethod = Annotated[
    str,
    BeforeValidator(_to_lower_str),
    StringConstraints(min_length=1, max_length=32, pattern=r"^[a-z0-9][a-z0-9_-]*$"),
]

# Client-generated id attached to every register write; the server dedupes on it.
SubmissionId = Annotated[
    str,
    BeforeValidator(_to_clean_str),
    StringConstraints(min_length=8, max_length=64, pattern=r"^[A-Za-z0-9_-]+$"),
]
