from __future__ import annotations

from ..extensions import db
from ..numeric import as_float
from ..time_utils import to_utc_z


class CashAccount(db.Model):
    """Till / bank account. balance moves with every CashTransaction posted to it."""
    __tablename__ = "cash_accounts"
    __table_args__ = (
        db.UniqueConstraint("name", name="uq_cash_accounts_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    is_default = db.Column(db.Boolean, nullable=False, default=False)
    balance = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "is_default": self.is_default,
            "balance": as_float(self.balance),
            "created_at": to_utc_z(self.created_at),
        }


class CashTransaction(db.Model):
    """
    Append-only cash ledger row.

    amount is signed from the account's point of view: money in is positive
    (VENTE, VERSEMENT, RETOUR_ACHAT), money out negative (ACHAT, PAIEMENT,
    RETOUR_VENTE). Rows are only removed by order edits, which reverse the
    account balance in the same transaction.
    """
    __tablename__ = "cash_transactions"
    __table_args__ = (
        db.Index("ix_cash_transactions_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cash_account_id = db.Column(db.Integer, db.ForeignKey("cash_accounts.id"), nullable=False, index=True)
    transaction_type = db.Column(db.String(16), nullable=False, index=True)
    amount = db.Column(db.Numeric(14, 2), nullable=False)
    payment_method = db.Column(db.String(16), nullable=True)

    # Counterparty: CUSTOMER, BRAND or FACTORY
    counterparty_type = db.Column(db.String(16), nullable=True)
    counterparty_id = db.Column(db.Integer, nullable=True)

    # Source document: ORDER, PURCHASE_ORDER, RETURN, PURCHASE_RETURN or None for manual entries
    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)

    description = db.Column(db.String(255), nullable=True)
    created_by_user_id = db.Column(db.Integer, nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    cash_account = db.relationship("CashAccount")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cash_account_id": self.cash_account_id,
            "transaction_type": self.transaction_type,
            "amount": as_float(self.amount),
            "payment_method": self.payment_method,
            "counterparty_type": self.counterparty_type,
            "counterparty_id": self.counterparty_id,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "description": self.description,
            "created_by_user_id": self.created_by_user_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }
