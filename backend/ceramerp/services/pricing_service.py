# Overview: Price Resolver waterfall plus maintenance of customer price overrides.

"""
Price resolution waterfall (first match wins):

1. CONTRACT   - CustomerProductPrice for (customer, product)
2. BRAND_RULE - CustomerBrandRule for (customer, brand, size); only when the
                product has both a brand and a size
3. PRICELIST  - PriceListItem on the customer's (active) price list
4. BASE       - Product.base_price

NOT_FOUND (price 0) when all four miss; callers must treat it as an error
(require_price raises PriceNotFound). Resolution is read-only and done per
order item at insertion; the resolved price and source are frozen on the item.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from ..extensions import db
from ..models import (
    Brand,
    Customer,
    CustomerBrandRule,
    CustomerProductPrice,
    PriceList,
    PriceListItem,
    Product,
)
from ..numeric import ZERO, as_float, quantize_money
from .concurrency import run_in_transaction
from .errors import EntityNotFound, PriceNotFound


SOURCE_CONTRACT = "CONTRACT"
SOURCE_BRAND_RULE = "BRAND_RULE"
SOURCE_PRICELIST = "PRICELIST"
SOURCE_BASE = "BASE"
SOURCE_NOT_FOUND = "NOT_FOUND"
# Operator typed the price at the counter
SOURCE_POS = "POS"


@dataclass(frozen=True)
class PriceResolution:
    price: Decimal
    source: str

    @property
    def found(self) -> bool:
        return self.source != SOURCE_NOT_FOUND

    def to_dict(self) -> dict:
        return {"price": as_float(self.price), "source": self.source}


def normalize_size(size: str | None) -> str | None:
    """'60 X 60' and '60x60' name the same format."""
    if size is None:
        return None
    cleaned = "".join(size.split()).lower().replace("*", "x")
    return cleaned or None


def _contract_price(customer_id: int, product_id: int):
    row = (
        db.session.query(CustomerProductPrice.price)
        .filter_by(customer_id=customer_id, product_id=product_id)
        .first()
    )
    return row.price if row else None


def _brand_rule_price(customer_id: int, product: Product):
    size = normalize_size(product.size)
    if product.brand_id is None or size is None:
        return None
    row = (
        db.session.query(CustomerBrandRule.price)
        .filter_by(customer_id=customer_id, brand_id=product.brand_id, size=size)
        .first()
    )
    return row.price if row else None


def _price_list_price(customer: Customer, product_id: int):
    if customer.price_list_id is None:
        return None
    row = (
        db.session.query(PriceListItem.price)
        .join(PriceList, PriceList.id == PriceListItem.price_list_id)
        .filter(
            PriceListItem.price_list_id == customer.price_list_id,
            PriceListItem.product_id == product_id,
            PriceList.is_active.is_(True),
        )
        .first()
    )
    return row.price if row else None


def resolve_price(product_id: int, customer_id: int | None = None) -> PriceResolution:
    product = db.session.get(Product, product_id)
    if product is None:
        raise EntityNotFound("Product", product_id)

    customer = db.session.get(Customer, customer_id) if customer_id else None
    if customer is not None:
        price = _contract_price(customer.id, product.id)
        if price is not None:
            return PriceResolution(quantize_money(price), SOURCE_CONTRACT)

        price = _brand_rule_price(customer.id, product)
        if price is not None:
            return PriceResolution(quantize_money(price), SOURCE_BRAND_RULE)

        price = _price_list_price(customer, product.id)
        if price is not None:
            return PriceResolution(quantize_money(price), SOURCE_PRICELIST)

    if product.base_price is not None:
        return PriceResolution(quantize_money(product.base_price), SOURCE_BASE)

    return PriceResolution(ZERO, SOURCE_NOT_FOUND)


def require_price(product_id: int, customer_id: int | None = None) -> PriceResolution:
    resolution = resolve_price(product_id, customer_id)
    if not resolution.found:
        raise PriceNotFound(product_id, customer_id)
    return resolution


# =============================================================================
# OVERRIDE MAINTENANCE
# =============================================================================

def _validate_price(price) -> Decimal:
    value = quantize_money(price)
    if value < ZERO:
        raise ValueError("price must be >= 0")
    return value


def set_contract_price(*, customer_id: int, product_id: int, price) -> CustomerProductPrice:
    """Create or replace the CONTRACT price for (customer, product)."""
    def _op():
        if db.session.get(Customer, customer_id) is None:
            raise EntityNotFound("Customer", customer_id)
        if db.session.get(Product, product_id) is None:
            raise EntityNotFound("Product", product_id)
        row = CustomerProductPrice.query.filter_by(customer_id=customer_id, product_id=product_id).first()
        if row is None:
            row = CustomerProductPrice(customer_id=customer_id, product_id=product_id)
            db.session.add(row)
        row.price = _validate_price(price)
        db.session.flush()
        return row

    return run_in_transaction(_op)


def delete_contract_price(*, customer_id: int, product_id: int) -> bool:
    def _op():
        deleted = CustomerProductPrice.query.filter_by(
            customer_id=customer_id, product_id=product_id
        ).delete()
        return bool(deleted)

    return run_in_transaction(_op)


def set_brand_rule(*, customer_id: int, brand_id: int, size: str, price) -> CustomerBrandRule:
    """Create or replace the BRAND_RULE price for (customer, brand, size)."""
    normalized = normalize_size(size)
    if normalized is None:
        raise ValueError("size is required for a brand rule")

    def _op():
        if db.session.get(Customer, customer_id) is None:
            raise EntityNotFound("Customer", customer_id)
        if db.session.get(Brand, brand_id) is None:
            raise EntityNotFound("Brand", brand_id)
        row = CustomerBrandRule.query.filter_by(
            customer_id=customer_id, brand_id=brand_id, size=normalized
        ).first()
        if row is None:
            row = CustomerBrandRule(customer_id=customer_id, brand_id=brand_id, size=normalized)
            db.session.add(row)
        row.price = _validate_price(price)
        db.session.flush()
        return row

    return run_in_transaction(_op)


def set_price_list_price(*, price_list_id: int, product_id: int, price) -> PriceListItem:
    def _op():
        if db.session.get(PriceList, price_list_id) is None:
            raise EntityNotFound("PriceList", price_list_id)
        if db.session.get(Product, product_id) is None:
            raise EntityNotFound("Product", product_id)
        row = PriceListItem.query.filter_by(price_list_id=price_list_id, product_id=product_id).first()
        if row is None:
            row = PriceListItem(price_list_id=price_list_id, product_id=product_id)
            db.session.add(row)
        row.price = _validate_price(price)
        db.session.flush()
        return row

    return run_in_transaction(_op)
