"""
Unit Conversion Resolver.

Single implementation of sale/purchase-unit -> stocking-unit conversion.
Every call site (order items, PO lines, goods receipts, returns, derived
pallet/colis counts) goes through here.

UNITS:
- PCS    piece (one tile)
- BOX    carton / colis, pieces_per_box pieces
- PALLET boxes_per_pallet boxes
- SQM    area unit; a planar product's area per piece is W x H / 10000 with
         W, H in centimetres parsed from the size field (or the name)

Conversion always routes through pieces: sale unit -> pieces -> stocking unit.

MISSING RATIOS:
A zero/absent packaging ratio falls back to the ratio derived from stock
history when the caller supplies one. If nothing is known the resolver
raises ConversionAmbiguous (strict, the default). In non-strict mode it logs
a warning and treats the failing step as 1:1.

Pure functions: no DB access, no app context required.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from decimal import Decimal

from ..numeric import ZERO, to_decimal
from .errors import ConversionAmbiguous

logger = logging.getLogger(__name__)

PIECE = "PCS"
BOX = "BOX"
PALLET = "PALLET"
AREA = "SQM"

_UNIT_ALIASES = {
    PIECE: {"PCS", "PC", "PIECE", "PIECES", "PIÈCE", "PIÈCES", "U", "UNIT"},
    BOX: {"BOX", "BOXES", "CARTON", "CRT", "CTN", "COLIS"},
    PALLET: {"PALLET", "PALLETS", "PALETTE", "PAL"},
    AREA: {"SQM", "M2", "M²", "SQ.M", "SQMETER"},
}
_ALIAS_LOOKUP = {alias: unit for unit, aliases in _UNIT_ALIASES.items() for alias in aliases}

# "60x60", "30 X 60", "20*120", "45/45" (centimetres)
_DIMENSION_RE = re.compile(r"(\d{2,3})\s*[xX*/]\s*(\d{2,3})")
_CM2_PER_M2 = Decimal("10000")


@dataclass(frozen=True)
class PackagingRatios:
    pieces_per_box: Decimal = ZERO
    boxes_per_pallet: Decimal = ZERO


def normalize_unit(code: str | None) -> str:
    """Map a unit code or alias to PCS / BOX / PALLET / SQM."""
    if not code:
        raise ValueError("unit code is required")
    unit = _ALIAS_LOOKUP.get(str(code).strip().upper())
    if unit is None:
        raise ValueError(f"unknown unit code: {code}")
    return unit


def parse_dimensions(text: str | None) -> tuple[int, int] | None:
    if not text:
        return None
    match = _DIMENSION_RE.search(text)
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


def area_per_piece(product) -> Decimal | None:
    """Square metres per piece for planar products, None when no dimensions parse."""
    dims = parse_dimensions(product.size) or parse_dimensions(product.name)
    if not dims:
        return None
    width, height = dims
    return Decimal(width) * Decimal(height) / _CM2_PER_M2


def effective_ratios(product, derived: PackagingRatios | None = None) -> PackagingRatios:
    """Explicit product ratios, each falling back to the derived one when zero."""
    ppb = to_decimal(product.pieces_per_box)
    bpp = to_decimal(product.boxes_per_pallet)
    if derived is not None:
        if ppb <= ZERO:
            ppb = to_decimal(derived.pieces_per_box)
        if bpp <= ZERO:
            bpp = to_decimal(derived.boxes_per_pallet)
    return PackagingRatios(pieces_per_box=ppb, boxes_per_pallet=bpp)


def _missing(product, what: str, strict: bool) -> Decimal:
    message = f"Product {getattr(product, 'id', None)} ({product.name}) has no {what}"
    if strict:
        raise ConversionAmbiguous(message, {"product_id": getattr(product, "id", None), "missing": what})
    logger.warning("%s; assuming 1:1", message)
    return Decimal(1)


def _factor(value: Decimal | None, product, what: str, strict: bool) -> Decimal:
    if value is None or value <= ZERO:
        return _missing(product, what, strict)
    return value


def _to_pieces(product, quantity: Decimal, unit: str, ratios: PackagingRatios, strict: bool) -> Decimal:
    if unit == PIECE:
        return quantity
    if unit == BOX:
        return quantity * _factor(ratios.pieces_per_box, product, "pieces_per_box", strict)
    if unit == PALLET:
        bpp = _factor(ratios.boxes_per_pallet, product, "boxes_per_pallet", strict)
        ppb = _factor(ratios.pieces_per_box, product, "pieces_per_box", strict)
        return quantity * bpp * ppb
    return quantity / _factor(area_per_piece(product), product, "dimensions", strict)


def _from_pieces(product, pieces: Decimal, unit: str, ratios: PackagingRatios, strict: bool) -> Decimal:
    if unit == PIECE:
        return pieces
    if unit == BOX:
        return pieces / _factor(ratios.pieces_per_box, product, "pieces_per_box", strict)
    if unit == PALLET:
        bpp = _factor(ratios.boxes_per_pallet, product, "boxes_per_pallet", strict)
        ppb = _factor(ratios.pieces_per_box, product, "pieces_per_box", strict)
        return pieces / (bpp * ppb)
    return pieces * _factor(area_per_piece(product), product, "dimensions", strict)


def convert(
    product,
    quantity,
    from_unit: str,
    to_unit: str,
    *,
    derived: PackagingRatios | None = None,
    strict: bool = True,
) -> Decimal:
    qty = to_decimal(quantity, field="quantity")
    source = normalize_unit(from_unit)
    target = normalize_unit(to_unit)
    if source == target:
        return qty
    ratios = effective_ratios(product, derived)
    pieces = _to_pieces(product, qty, source, ratios, strict)
    return _from_pieces(product, pieces, target, ratios, strict)


def to_stocking_unit(product, quantity, sale_unit: str, *, derived=None, strict: bool = True) -> Decimal:
    """Quantity in sale_unit -> product.stocking_unit (unrounded)."""
    return convert(product, quantity, sale_unit, product.stocking_unit, derived=derived, strict=strict)


def from_stocking_unit(product, quantity, target_unit: str, *, derived=None, strict: bool = True) -> Decimal:
    """Inverse of to_stocking_unit."""
    return convert(product, quantity, product.stocking_unit, target_unit, derived=derived, strict=strict)


def packaging_counts(product, on_hand, *, derived: PackagingRatios | None = None):
    """
    (pallets, colis) implied by an on-hand quantity, each None when it cannot
    be derived (missing ratio or dimensions). Never logs or raises.
    """
    try:
        colis = from_stocking_unit(product, on_hand, BOX, derived=derived, strict=True)
    except ConversionAmbiguous:
        return None, None
    bpp = effective_ratios(product, derived).boxes_per_pallet
    pallets = colis / bpp if bpp > ZERO else None
    return pallets, colis
