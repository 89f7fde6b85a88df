# Overview: Atomic per-business reference numbers for ledger documents.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from ..time_utils import utcnow
from ..validation import ConcurrencyConflict


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


DOCUMENT_PREFIXES = {
    "sell": "SELL",
    "purchase": "PUR",
    "stock_adjustment": "ADJ",
    "stock_transfer": "TRF",
}


def next_document_number(
    *,
    business_id: int,
    document_type: str,
    prefix: str | None = None,
    pad: int = 4,
    occurred_at: datetime | None = None,
) -> str:
    """
    Allocate the next reference number for a business/type, e.g. ADJ-202610-0007.

    Uses a conditional UPDATE ... SET next_number = next_number + 1 so two
    writers never receive the same number. Must run inside the caller's unit
    of work (no commit here); a lost race on first insert raises
    ConcurrencyConflict so the caller's run_with_retry replays it.
    """
    if not business_id:
        raise DocumentSequenceError("business_id is required")
    if not document_type:
        raise DocumentSequenceError("document_type is required")

    prefix = prefix or DOCUMENT_PREFIXES.get(document_type, document_type.upper())

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.business_id == business_id,
            DocumentSequence.document_type == document_type,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(business_id=business_id, document_type=document_type)
            .scalar()
        )
        next_num = current - 1
    else:
        seq = DocumentSequence(business_id=business_id, document_type=document_type, next_number=2)
        db.session.add(seq)
        try:
            db.session.flush()
        except IntegrityError as exc:
            raise ConcurrencyConflict(f"document sequence {document_type} created concurrently") from exc
        next_num = 1

    stamp = (occurred_at or utcnow()).strftime("%Y%m")
    return f"{prefix}-{stamp}-{next_num:0{pad}d}"
