# FILE: medstock/services/number_series.py
from __future__ import annotations

from datetime import date
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError

from medstock.models.receiving import DocNumberSeries, ReceivingDocument
from medstock.services.errors import ConcurrencyConflictError


def _date_key(d: date) -> int:
    return int(d.strftime("%Y%m%d"))


def format_document_number(prefix: str, doc_date: date, seq: int, pad: int = 4) -> str:
    return f"{prefix}-{doc_date.strftime('%Y%m%d')}-{seq:0{pad}d}"


def _max_existing_seq(db: Session, prefix: str, doc_date: date) -> int:
    """
    Highest sequence already used for this date prefix (0 if none).
    Only consulted when the counter row is created, so documents that
    predate the counter table never get a duplicate number.
    """
    head = f"{prefix}-{doc_date.strftime('%Y%m%d')}-"
    rows = (
        db.query(ReceivingDocument.document_number)
        .filter(ReceivingDocument.document_number.like(f"{head}%"))
        .all()
    )
    best = 0
    for (num,) in rows:
        tail = (num or "")[len(head):]
        if tail.isdigit():
            best = max(best, int(tail))
    return best


def _locked_series(db: Session, key: str, dk: int):
    return (
        db.query(DocNumberSeries)
        .filter(DocNumberSeries.key == key, DocNumberSeries.date_key == dk)
        .with_for_update()
        .populate_existing()
        .first()
    )


def next_document_number(
    db: Session,
    key: str,          # e.g. "RCV"
    prefix: str,       # e.g. "RCV"
    doc_date: date,
    pad: int = 4,      # 0001, 0002...
) -> str:
    """
    Concurrency-safe number generator using DocNumberSeries with UNIQUE(key, date_key).
    Must run inside the transaction that inserts the document.

    Example: RCV-20250115-0001
    """
    dk = _date_key(doc_date)

    row = _locked_series(db, key, dk)

    if not row:
        # Two creators racing on the first document of the day: the loser
        # hits the unique constraint and takes the winner's row under lock.
        try:
            with db.begin_nested():
                row = DocNumberSeries(
                    key=key,
                    date_key=dk,
                    next_seq=_max_existing_seq(db, prefix, doc_date) + 1,
                )
                db.add(row)
                db.flush()
        except IntegrityError:
            row = _locked_series(db, key, dk)
            if not row:
                raise ConcurrencyConflictError(
                    f"Could not allocate a {key} number for {doc_date.isoformat()}")

    seq = int(row.next_seq or 1)
    row.next_seq = seq + 1
    db.flush()

    return format_document_number(prefix, doc_date, seq, pad)
