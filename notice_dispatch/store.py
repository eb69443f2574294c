"""
Invoice store backed by SQLAlchemy.

The dispatch coordinator reads invoices through this store and writes back
only the dispatch tracking columns. Writes are issued as a scoped UPDATE so
that concurrent changes to other columns (e.g. payment status) are kept.
"""
import logging
from typing import Any, Callable

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from notice_dispatch.models import Invoice
from notice_dispatch.schemas import InvoiceOut

logger = logging.getLogger(__name__)

DISPATCH_FIELDS = frozenset({"sent", "sent_at", "last_error", "attempts"})


class StoreError(Exception):
    """Raised when the invoice store cannot be read or written."""


class InvoiceStore:
    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def get(self, invoice_id: str) -> InvoiceOut | None:
        db = self._session_factory()
        try:
            inv = db.get(Invoice, invoice_id)
            return InvoiceOut.model_validate(inv) if inv is not None else None
        except SQLAlchemyError as e:
            logger.error(f"Invoice store read failed for {invoice_id}: {e}")
            raise StoreError(f"Could not read invoice {invoice_id}") from e
        finally:
            db.close()

    def list(self, client_id: str | None = None, descending: bool = False) -> list[InvoiceOut]:
        """List invoices ordered by due date, optionally for a single client."""
        order = Invoice.due_date.desc() if descending else Invoice.due_date.asc()
        stmt = select(Invoice).order_by(order, Invoice.invoice_number)
        if client_id is not None:
            stmt = stmt.where(Invoice.client_id == client_id)

        db = self._session_factory()
        try:
            return [InvoiceOut.model_validate(inv) for inv in db.scalars(stmt)]
        except SQLAlchemyError as e:
            logger.error(f"Invoice store listing failed: {e}")
            raise StoreError("Could not list invoices") from e
        finally:
            db.close()

    def update(self, invoice_id: str, fields: dict[str, Any]) -> None:
        """
        Write a subset of the dispatch fields for one invoice.

        Raises:
            ValueError: if a field outside the dispatch fields is given
            StoreError: if the row does not exist or the write fails
        """
        unknown = set(fields) - DISPATCH_FIELDS
        if unknown:
            raise ValueError(f"Not a dispatch field: {', '.join(sorted(unknown))}")
        if not fields:
            return

        db = self._session_factory()
        try:
            result = db.execute(
                update(Invoice).where(Invoice.id == invoice_id).values(**fields)
            )
            if result.rowcount == 0:
                db.rollback()
                raise StoreError(f"Invoice {invoice_id} no longer exists")
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Invoice store update failed for {invoice_id}: {e}")
            raise StoreError(f"Could not update invoice {invoice_id}") from e
        finally:
            db.close()
