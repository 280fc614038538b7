# Overview: Atomic document number allocation (orders, POs, receipts, returns).

from __future__ import annotations

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from ..time_utils import utcnow


DOC_ORDER = ("ORDER", "ORD")
DOC_PURCHASE_ORDER = ("PURCHASE_ORDER", "PO")
DOC_GOODS_RECEIPT = ("GOODS_RECEIPT", "GR")
DOC_RETURN = ("RETURN", "RET")
DOC_PURCHASE_RETURN = ("PURCHASE_RETURN", "PRET")


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def _bump(document_type: str, year: int):
    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.document_type == document_type,
            DocumentSequence.year == year,
        )
        .values(next_number=DocumentSequence.next_number + 1)
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        return None
    db.session.flush()
    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=document_type, year=year)
        .scalar()
    )
    return current - 1


def next_document_number(kind: tuple[str, str], *, year: int | None = None) -> str:
    """
    Allocate the next number for a document kind inside the caller's transaction.

    Format: PREFIX-YYYY-NNNNNN. The UPDATE ... SET next_number = next_number + 1
    takes the row lock, so two writers can never draw the same number; the
    allocation rolls back with the document if the transaction fails.
    """
    document_type, prefix = kind
    if not document_type:
        raise DocumentSequenceError("document_type is required")
    year = year or utcnow().year
    pad = int(current_app.config.get("DOCUMENT_NUMBER_PAD", 6))

    next_num = _bump(document_type, year)
    if next_num is None:
        try:
            # Savepoint so a lost insert race does not poison the outer transaction
            with db.session.begin_nested():
                db.session.add(DocumentSequence(document_type=document_type, year=year, next_number=2))
            next_num = 1
        except IntegrityError:
            next_num = _bump(document_type, year)
            if next_num is None:
                raise DocumentSequenceError(f"could not allocate {document_type} number")

    return f"{prefix}-{year}-{next_num:0{pad}d}"
