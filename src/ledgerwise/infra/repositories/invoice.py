"""SQLModel implementation of Invoice repository."""

from __future__ import annotations

from datetime import date, timedelta
from typing import Optional

from sqlmodel import select

from ...models.invoice import OVERDUE, PENDING, Invoice
from ..database import SessionFactory


class SQLModelInvoiceRepository:
    """Invoice reads and plain CRUD; status transitions live in the lifecycle manager."""

    def __init__(self, session_factory: SessionFactory):
        self.session_factory = session_factory

    def get_by_id(self, invoice_id: int, *, user_id: int) -> Optional[Invoice]:
        with self.session_factory() as session:
            return session.exec(
                select(Invoice).where(Invoice.id == invoice_id).where(Invoice.user_id == user_id)
            ).first()

    def list_all(self, *, user_id: int, status: Optional[str] = None) -> list[Invoice]:
        with self.session_factory() as session:
            statement = select(Invoice).where(Invoice.user_id == user_id)
            if status:
                statement = statement.where(Invoice.status == status)
            statement = statement.order_by(Invoice.due_date, Invoice.id)
            return list(session.exec(statement).all())

    def list_unpaid(self, *, user_id: int) -> list[Invoice]:
        with self.session_factory() as session:
            statement = (
                select(Invoice)
                .where(Invoice.user_id == user_id)
                .where(Invoice.status.in_((PENDING, OVERDUE)))  # type: ignore[attr-defined]
                .order_by(Invoice.due_date, Invoice.id)
            )
            return list(session.exec(statement).all())

    def list_due_between(self, start: date, end: date, *, user_id: int) -> list[Invoice]:
        """Unpaid invoices with a due date inside ``[start, end]``."""
        with self.session_factory() as session:
            statement = (
                select(Invoice)
                .where(Invoice.user_id == user_id)
                .where(Invoice.status.in_((PENDING, OVERDUE)))  # type: ignore[attr-defined]
                .where(Invoice.due_date >= start)
                .where(Invoice.due_date <= end)
                .order_by(Invoice.due_date)
            )
            return list(session.exec(statement).all())

    def list_due_soon(self, today: date, days: int, *, user_id: int) -> list[Invoice]:
        return self.list_due_between(today, today + timedelta(days=days), user_id=user_id)

    def delete(self, invoice_id: int, *, user_id: int) -> None:
        with self.session_factory() as session:
            invoice = session.exec(
                select(Invoice).where(Invoice.id == invoice_id).where(Invoice.user_id == user_id)
            ).first()
            if invoice:
                session.delete(invoice)
                session.commit()
