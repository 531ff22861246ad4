from dataclasses import dataclass
from typing import Iterable, Optional

SCALE_PREFIX = "20"
SCALE_CODE_LENGTH = 13


@dataclass
class ScaleReading:
    product_code: str
    weight_kg: float


@dataclass
class ScanMatch:
    product: dict
    quantity: float
    weighed: bool = False


def parse_scale_barcode(code: str) -> Optional[ScaleReading]:
    """
    Scale labels: 20 + PPPPP (product code) + WWWWW (grams) + C (check digit, ignored).
    e.g. 2010001012505 -> product 10001, 1.250 kg
    """
    code = (code or "").strip()
    if len(code) != SCALE_CODE_LENGTH or not code.startswith(SCALE_PREFIX) or not code.isdigit():
        return None
    return ScaleReading(product_code=code[2:7], weight_kg=int(code[7:12]) / 1000)


def resolve_scan(code: str, products: Iterable[dict]) -> Optional[ScanMatch]:
    code = (code or "").strip()
    if not code:
        return None
    products = list(products or [])
    reading = parse_scale_barcode(code)
    if reading is not None:
        for p in products:
            barcode = str(p.get("barcode") or "")
            if barcode and (barcode == reading.product_code or barcode.zfill(5) == reading.product_code):
                return ScanMatch(product=p, quantity=reading.weight_kg, weighed=True)
    for p in products:
        if str(p.get("barcode") or "") == code:
            return ScanMatch(product=p, quantity=1)
    return None
