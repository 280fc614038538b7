# Overview: Accounting Ledger; cash transactions, cash account balances and counterparty running balances.

"""
Accounting Ledger.

CASH TRANSACTIONS (signed from the cash account's point of view):
- VENTE         sale total                      +
- VERSEMENT     customer payment received       +
- RETOUR_ACHAT  refund from supplier return     +
- ACHAT         purchase payment                -
- PAIEMENT      supplier payment                -
- RETOUR_VENTE  refund on customer return       -

Every row moves its cash account's balance by the signed amount; deleting
rows (order edits only) reverses that effect in the same transaction.

COUNTERPARTY BALANCES:
Customer.current_balance (what the customer owes us) and Brand/Factory
current_balance (what we owe the supplier) are denormalized running totals.
They are only written by adjust_customer_balance / adjust_supplier_balance,
always inside the transaction of the document that caused the change.
"""

from __future__ import annotations

from decimal import Decimal

from flask import current_app

from ..extensions import db
from ..models import Brand, CashAccount, CashTransaction, Customer, Factory
from ..numeric import ZERO, quantize_money, to_decimal
from ..time_utils import utcnow
from .audit_service import emit_audit
from .concurrency import lock_for_update, run_in_transaction
from .errors import EntityNotFound


TX_VENTE = "VENTE"
TX_ACHAT = "ACHAT"
TX_VERSEMENT = "VERSEMENT"
TX_PAIEMENT = "PAIEMENT"
TX_RETOUR_VENTE = "RETOUR_VENTE"
TX_RETOUR_ACHAT = "RETOUR_ACHAT"

INCOME_TYPES = {TX_VENTE, TX_VERSEMENT, TX_RETOUR_ACHAT}
EXPENSE_TYPES = {TX_ACHAT, TX_PAIEMENT, TX_RETOUR_VENTE}

PAYMENT_METHODS = {"ESPECE", "VIREMENT", "CHEQUE"}

COUNTERPARTY_CUSTOMER = "CUSTOMER"
COUNTERPARTY_BRAND = "BRAND"
COUNTERPARTY_FACTORY = "FACTORY"

DEFAULT_ACCOUNT_NAME = "Caisse principale"


def normalize_payment_method(method: str | None) -> str:
    value = (method or current_app.config.get("DEFAULT_PAYMENT_METHOD", "ESPECE")).strip().upper()
    if value not in PAYMENT_METHODS:
        raise ValueError(f"invalid payment method: {method}")
    return value


def signed_amount(transaction_type: str, amount) -> Decimal:
    """Magnitude -> signed ledger amount for the transaction type."""
    magnitude = abs(quantize_money(amount))
    if transaction_type in INCOME_TYPES:
        return magnitude
    if transaction_type in EXPENSE_TYPES:
        return -magnitude
    raise ValueError(f"invalid cash transaction type: {transaction_type}")


# =============================================================================
# CASH ACCOUNTS
# =============================================================================

def ensure_default_cash_account() -> CashAccount:
    """Return the default account, creating one on an empty ledger (flush only)."""
    account = db.session.query(CashAccount).filter_by(is_default=True).first()
    if account is None:
        account = db.session.query(CashAccount).order_by(CashAccount.id).first()
    if account is None:
        account = CashAccount(name=DEFAULT_ACCOUNT_NAME, is_default=True, balance=ZERO)
        db.session.add(account)
        db.session.flush()
    return account


def _locked_account(cash_account_id: int | None) -> CashAccount:
    if cash_account_id is None:
        cash_account_id = ensure_default_cash_account().id
    account = lock_for_update(db.session.query(CashAccount).filter_by(id=cash_account_id)).first()
    if account is None:
        raise EntityNotFound("CashAccount", cash_account_id)
    return account


def record_cash_transaction(
    *,
    transaction_type: str,
    amount,
    payment_method: str | None = None,
    counterparty_type: str | None = None,
    counterparty_id: int | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
    description: str | None = None,
    actor_user_id: int | None = None,
    cash_account_id: int | None = None,
) -> CashTransaction:
    """
    Append one cash ledger row and move the account balance (caller's transaction).
    """
    signed = signed_amount(transaction_type, amount)
    if signed == ZERO:
        raise ValueError("cash transaction amount must be non-zero")

    account = _locked_account(cash_account_id)
    tx = CashTransaction(
        cash_account_id=account.id,
        transaction_type=transaction_type,
        amount=signed,
        payment_method=payment_method,
        counterparty_type=counterparty_type,
        counterparty_id=counterparty_id,
        reference_type=reference_type,
        reference_id=reference_id,
        description=description,
        created_by_user_id=actor_user_id,
        occurred_at=utcnow(),
    )
    db.session.add(tx)
    account.balance = to_decimal(account.balance) + signed
    db.session.flush()
    return tx


def reverse_cash_transactions(reference_type: str, reference_id: int) -> Decimal:
    """
    Delete every cash row linked to a document and undo its account effect.

    Returns the net signed amount removed.
    """
    rows = (
        db.session.query(CashTransaction)
        .filter_by(reference_type=reference_type, reference_id=reference_id)
        .order_by(CashTransaction.id)
        .all()
    )
    net = ZERO
    for row in rows:
        account = _locked_account(row.cash_account_id)
        account.balance = to_decimal(account.balance) - to_decimal(row.amount)
        net += to_decimal(row.amount)
        db.session.delete(row)
    db.session.flush()
    return net


# =============================================================================
# COUNTERPARTY BALANCES
# =============================================================================

def adjust_customer_balance(customer_id: int, delta) -> Customer:
    """Single write path for Customer.current_balance (caller's transaction)."""
    customer = lock_for_update(db.session.query(Customer).filter_by(id=customer_id)).first()
    if customer is None:
        raise EntityNotFound("Customer", customer_id)
    amount = quantize_money(delta)
    if amount != ZERO:
        customer.current_balance = to_decimal(customer.current_balance) + amount
        db.session.flush()
    return customer


def adjust_supplier_balance(*, brand_id: int | None = None, factory_id: int | None = None, delta) -> Brand | Factory:
    """Single write path for Brand/Factory.current_balance (caller's transaction)."""
    if (brand_id is None) == (factory_id is None):
        raise ValueError("exactly one of brand_id or factory_id is required")
    model, entity_id = (Brand, brand_id) if brand_id is not None else (Factory, factory_id)
    supplier = lock_for_update(db.session.query(model).filter_by(id=entity_id)).first()
    if supplier is None:
        raise EntityNotFound(model.__name__, entity_id)
    amount = quantize_money(delta)
    if amount != ZERO:
        supplier.current_balance = to_decimal(supplier.current_balance) + amount
        db.session.flush()
    return supplier


def supplier_counterparty(brand_id: int | None, factory_id: int | None) -> tuple[str, int]:
    if brand_id is not None:
        return COUNTERPARTY_BRAND, brand_id
    return COUNTERPARTY_FACTORY, factory_id


# =============================================================================
# STANDALONE PAYMENTS
# =============================================================================

def record_customer_payment(
    *,
    customer_id: int,
    amount,
    payment_method: str | None = None,
    description: str | None = None,
    cash_account_id: int | None = None,
    actor_user_id: int | None = None,
) -> CashTransaction:
    """
    Payment received outside an order: VERSEMENT in, customer balance down.

    Retail customers carry no running balance, so only the cash row is written.
    """
    value = quantize_money(amount)
    if value <= ZERO:
        raise ValueError("amount must be positive")
    method = normalize_payment_method(payment_method)

    def _op():
        customer = lock_for_update(db.session.query(Customer).filter_by(id=customer_id)).first()
        if customer is None:
            raise EntityNotFound("Customer", customer_id)
        if not customer.is_retail:
            adjust_customer_balance(customer_id, -value)
        return record_cash_transaction(
            transaction_type=TX_VERSEMENT,
            amount=value,
            payment_method=method,
            counterparty_type=COUNTERPARTY_CUSTOMER,
            counterparty_id=customer_id,
            description=description or "Versement client",
            actor_user_id=actor_user_id,
            cash_account_id=cash_account_id,
        )

    tx = run_in_transaction(_op)
    emit_audit(
        "payment.customer",
        entity_type="cash_transaction",
        entity_id=tx.id,
        actor_user_id=actor_user_id,
        payload={"customer_id": customer_id, "amount": str(value)},
    )
    return tx


def record_supplier_payment(
    *,
    amount,
    brand_id: int | None = None,
    factory_id: int | None = None,
    payment_method: str | None = None,
    description: str | None = None,
    cash_account_id: int | None = None,
    actor_user_id: int | None = None,
) -> CashTransaction:
    """Payment made to a brand/factory: PAIEMENT out, supplier balance down."""
    value = quantize_money(amount)
    if value <= ZERO:
        raise ValueError("amount must be positive")
    method = normalize_payment_method(payment_method)
    counterparty_type, counterparty_id = supplier_counterparty(brand_id, factory_id)

    def _op():
        adjust_supplier_balance(brand_id=brand_id, factory_id=factory_id, delta=-value)
        return record_cash_transaction(
            transaction_type=TX_PAIEMENT,
            amount=value,
            payment_method=method,
            counterparty_type=counterparty_type,
            counterparty_id=counterparty_id,
            description=description or "Paiement fournisseur",
            actor_user_id=actor_user_id,
            cash_account_id=cash_account_id,
        )

    tx = run_in_transaction(_op)
    emit_audit(
        "payment.supplier",
        entity_type="cash_transaction",
        entity_id=tx.id,
        actor_user_id=actor_user_id,
        payload={"counterparty_type": counterparty_type, "counterparty_id": counterparty_id, "amount": str(value)},
    )
    return tx


def list_cash_transactions(
    *,
    reference_type: str | None = None,
    reference_id: int | None = None,
    counterparty_type: str | None = None,
    counterparty_id: int | None = None,
    limit: int = 200,
) -> list[CashTransaction]:
    query = db.session.query(CashTransaction)
    if reference_type is not None:
        query = query.filter(CashTransaction.reference_type == reference_type)
    if reference_id is not None:
        query = query.filter(CashTransaction.reference_id == reference_id)
    if counterparty_type is not None:
        query = query.filter(CashTransaction.counterparty_type == counterparty_type)
    if counterparty_id is not None:
        query = query.filter(CashTransaction.counterparty_id == counterparty_id)
    limit = max(1, min(limit, 1000))
    return query.order_by(CashTransaction.id.desc()).limit(limit).all()
