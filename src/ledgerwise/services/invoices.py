"""Invoice lifecycle: status derivation, payment and cancellation.

Overdue is a function of ``(due_date, today)``. The stored ``status`` column is
a projection of that function refreshed by :func:`refresh_status` and the
batch job, so list filters can use it; the only user-driven transitions are
``pay`` and ``cancel``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Mapping, Optional, Protocol

from sqlmodel import Session, select

from ..domain.clock import Clock, SystemClock
from ..domain.cycles import INVOICE_FREQUENCIES, BillingCycle, advance_by_cycle, days_between
from ..domain.entries import TransactionType
from ..domain.money import require_positive
from ..errors import ConcurrencyConflictError, InvalidStateError, NotFoundError, ValidationError
from ..infra.database import SessionFactory, compare_and_set
from ..logging_config import get_logger
from ..models.invoice import CANCELLED, OVERDUE, PAID, PENDING, Invoice
from ..models.transaction import Transaction
from .transaction_processor import LedgerResult, TransactionProcessor

logger = get_logger("services.invoices")

INVOICE_SOURCE = "invoice"


@dataclass(frozen=True, slots=True)
class QrPayload:
    """Fields an external QR-bill parser extracts from a payment slip."""

    creditor_name: Optional[str] = None
    iban: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    reference: Optional[str] = None
    message: Optional[str] = None


class QrPayloadParser(Protocol):
    """External service turning raw QR text into a :class:`QrPayload`."""

    def parse(self, raw_text: str) -> Optional[QrPayload]:  # pragma: no cover - interface
        ...


@dataclass(slots=True)
class PaymentOutcome:
    invoice: Invoice
    transaction: Optional[Transaction] = None
    ledger: Optional[LedgerResult] = None


# ----------------------------------------------------------------------
# Pure status helpers
# ----------------------------------------------------------------------


def is_terminal(invoice: Invoice) -> bool:
    """Cancelled invoices, and paid one-off invoices, accept no transitions."""

    if invoice.status == CANCELLED:
        return True
    return invoice.status == PAID and not invoice.is_recurring


def effective_status(invoice: Invoice, today: date) -> str:
    if invoice.status in (PAID, CANCELLED):
        return invoice.status
    if invoice.due_date is not None and invoice.due_date < today:
        return OVERDUE
    # An overdue invoice whose due date was moved out reopens as pending.
    return PENDING


def refresh_status(invoice: Invoice, today: date) -> Invoice:
    """Set ``invoice.status`` to its derived value; touches nothing else."""

    invoice.status = effective_status(invoice, today)
    return invoice


def days_until_due(invoice: Invoice, today: date) -> Optional[int]:
    if invoice.due_date is None or invoice.status in (PAID, CANCELLED):
        return None
    days = days_between(today, invoice.due_date)
    return days if days >= 0 else None


def days_overdue(invoice: Invoice, today: date) -> Optional[int]:
    if invoice.due_date is None or invoice.status in (PAID, CANCELLED):
        return None
    days = days_between(invoice.due_date, today)
    return days if days > 0 else None


def is_due_soon(invoice: Invoice, today: date, reminder_days: int) -> bool:
    remaining = days_until_due(invoice, today)
    return remaining is not None and remaining <= reminder_days


def _next_cycle_date(invoice: Invoice, anchor: date) -> date:
    return advance_by_cycle(anchor, invoice.frequency, invoice.billing_day)  # type: ignore[arg-type]


def derive_schedule(invoice: Invoice, billing_day: Optional[int]) -> Invoice:
    """Fill in the recurring fields, or clear them on a one-off invoice."""

    if not invoice.is_recurring:
        invoice.frequency = None
        invoice.billing_day = None
        invoice.next_due_date = None
        return invoice
    if invoice.frequency is None or BillingCycle.parse(invoice.frequency) not in INVOICE_FREQUENCIES:
        raise ValidationError(
            "Recurring invoices need a monthly, quarterly or yearly frequency", frequency=invoice.frequency
        )
    invoice.frequency = BillingCycle.parse(invoice.frequency).value
    invoice.due_date = invoice.due_date or invoice.issue_date
    invoice.billing_day = billing_day or invoice.due_date.day
    if not 1 <= invoice.billing_day <= 31:
        raise ValidationError("Billing day must be between 1 and 31", billing_day=billing_day)
    invoice.next_due_date = _next_cycle_date(invoice, invoice.due_date)
    return invoice


# Fields ``update_invoice`` accepts; the schedule ones are frozen once the invoice is terminal.
_SCHEDULE_FIELDS = frozenset(
    {"amount", "currency", "issue_date", "due_date", "is_recurring", "frequency", "billing_day", "settles_card_id"}
)
_EDITABLE = _SCHEDULE_FIELDS | {
    "invoice_number",
    "creditor_name",
    "creditor_iban",
    "payment_reference",
    "notes",
    "category_id",
    "merchant_id",
}


# ----------------------------------------------------------------------
# Manager
# ----------------------------------------------------------------------


class InvoiceManager:
    """Creates invoices and drives their status transitions.

    Every write to a stored invoice is a compare-and-set on its ``version``,
    taken before any ledger booking: of two concurrent payments only one
    moves the row, the other fails with :class:`ConcurrencyConflictError` and
    its unit of work, booking included, rolls back.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        processor: TransactionProcessor,
        *,
        clock: Optional[Clock] = None,
    ):
        self.session_factory = session_factory
        self.processor = processor
        self.clock = clock or SystemClock()

    def create_invoice(
        self,
        *,
        user_id: int,
        amount: Any,
        currency: str = "CHF",
        issue_date: Optional[date] = None,
        due_date: Optional[date] = None,
        is_recurring: bool = False,
        frequency: Optional[str] = None,
        billing_day: Optional[int] = None,
        **details: Any,
    ) -> Invoice:
        """Create a pending invoice; recurring ones get their next due date derived."""

        today = self.clock.today()
        invoice = Invoice(
            user_id=user_id,
            amount=require_positive(amount),
            currency=(currency or "CHF").upper(),
            issue_date=issue_date or today,
            due_date=due_date,
            is_recurring=is_recurring,
            frequency=frequency,
            **details,
        )
        derive_schedule(invoice, billing_day)
        refresh_status(invoice, today)

        with self.session_factory() as session:
            session.add(invoice)
            session.flush()
            session.refresh(invoice)
            logger.info(
                "Invoice created",
                extra={"invoice_id": invoice.id, "recurring": is_recurring, "status": invoice.status},
            )
            return invoice

    def create_from_qr(self, user_id: int, payload: QrPayload, **overrides: Any) -> Invoice:
        """Prefill an invoice from an already-parsed QR-bill payload."""

        data: dict[str, Any] = {
            "amount": payload.amount,
            "currency": payload.currency or "CHF",
            "creditor_name": payload.creditor_name,
            "creditor_iban": payload.iban,
            "payment_reference": payload.reference,
            "notes": payload.message,
        }
        data.update(overrides)
        if data.get("amount") is None:
            raise ValidationError("QR payload carries no amount; supply one explicitly", field="amount")
        return self.create_invoice(user_id=user_id, **data)

    def update_invoice(self, invoice_id: int, changes: Mapping[str, Any], *, user_id: int) -> Invoice:
        """Edit an invoice and re-derive its schedule and status.

        Moving the due date of an overdue invoice into the future reopens it
        as pending; turning recurrence off clears frequency, billing day and
        next due date.
        """

        unknown = sorted(set(changes) - _EDITABLE)
        if unknown:
            raise ValidationError(f"Cannot change {', '.join(unknown)}", fields=unknown)

        with self.session_factory() as session:
            invoice = self._load(session, invoice_id, user_id)
            touched = sorted(set(changes) & _SCHEDULE_FIELDS)
            if touched and is_terminal(invoice):
                raise InvalidStateError(
                    f"Cannot reschedule an invoice that is {invoice.status}",
                    invoice_id=invoice_id,
                    fields=touched,
                )

            draft = Invoice(**invoice.model_dump())
            for name, value in changes.items():
                setattr(draft, name, value)
            draft.amount = require_positive(draft.amount)
            draft.currency = (draft.currency or "CHF").upper()
            if "billing_day" in changes:
                billing_day = changes["billing_day"]
            elif "due_date" in changes:
                billing_day = None
            else:
                billing_day = invoice.billing_day
            derive_schedule(draft, billing_day)
            refresh_status(draft, self.clock.today())

            values = {
                name: getattr(draft, name)
                for name in sorted(_EDITABLE | {"next_due_date", "status"})
                if getattr(draft, name) != getattr(invoice, name)
            }
            if values:
                self._transition(session, invoice, values)
            logger.info("Invoice updated", extra={"invoice_id": invoice.id, "fields": sorted(values)})
            return invoice

    def refresh(self, invoice_id: int, *, user_id: int) -> Invoice:
        """Persist the derived status of one invoice."""

        with self.session_factory() as session:
            invoice = self._load(session, invoice_id, user_id)
            status = effective_status(invoice, self.clock.today())
            if status != invoice.status:
                self._transition(session, invoice, {"status": status})
            return invoice

    def pay(
        self,
        invoice_id: int,
        *,
        user_id: int,
        account_id: Optional[int] = None,
        card_id: Optional[int] = None,
        create_transaction: bool = True,
        paid_on: Optional[date] = None,
    ) -> PaymentOutcome:
        """Mark an invoice paid, optionally booking the payment in the ledger.

        Recurring invoices start their next cycle immediately: the same row
        moves to the next due date and returns to pending.
        """

        today = paid_on or self.clock.today()
        with self.session_factory() as session:
            invoice = self._load(session, invoice_id, user_id)
            if invoice.status == CANCELLED:
                raise InvalidStateError("Cannot pay a cancelled invoice", invoice_id=invoice_id)
            if is_terminal(invoice):
                raise InvalidStateError("Invoice is already paid", invoice_id=invoice_id)

            values: dict[str, Any] = {"times_paid": invoice.times_paid + 1, "last_paid_date": today}
            if invoice.is_recurring:
                new_due = invoice.next_due_date or _next_cycle_date(invoice, invoice.due_date or today)
                values.update(
                    due_date=new_due,
                    next_due_date=_next_cycle_date(invoice, new_due),
                    paid_date=None,
                    status=PENDING,
                )
            else:
                values.update(status=PAID, paid_date=today)
            self._transition(session, invoice, values)

            outcome = PaymentOutcome(invoice=invoice)
            if create_transaction:
                transaction = self._payment_transaction(invoice, account_id, card_id, today)
                outcome.ledger = self.processor.create(transaction, session=session)
                outcome.transaction = transaction

            logger.info(
                "Invoice paid",
                extra={
                    "invoice_id": invoice.id,
                    "times_paid": invoice.times_paid,
                    "transaction_id": outcome.transaction.id if outcome.transaction else None,
                    "next_due_date": invoice.due_date if invoice.is_recurring else None,
                },
            )
            return outcome

    def cancel(self, invoice_id: int, *, user_id: int) -> Invoice:
        """Cancel an unpaid invoice. No balance effect."""

        with self.session_factory() as session:
            invoice = self._load(session, invoice_id, user_id)
            if invoice.status in (PAID, CANCELLED):
                raise InvalidStateError(
                    f"Cannot cancel an invoice that is {invoice.status}",
                    invoice_id=invoice_id,
                    status=invoice.status,
                )
            self._transition(session, invoice, {"status": CANCELLED})
            logger.info("Invoice cancelled", extra={"invoice_id": invoice.id})
            return invoice

    def mark_overdue_invoices(self, today: Optional[date] = None) -> int:
        """Refresh stored status of every unpaid invoice; returns how many became overdue."""

        today = today or self.clock.today()
        changed = 0
        with self.session_factory() as session:
            unpaid = session.exec(
                select(Invoice).where(Invoice.status.in_((PENDING, OVERDUE)))  # type: ignore[attr-defined]
            ).all()
            for invoice in unpaid:
                status = effective_status(invoice, today)
                if status == invoice.status:
                    continue
                if not compare_and_set(session, invoice, {"status": status}):
                    # Paid or edited since the batch read it; the next run sees the new state.
                    logger.warning("Invoice changed during overdue refresh", extra={"invoice_id": invoice.id})
                    continue
                if status == OVERDUE:
                    changed += 1
        logger.info("Overdue invoices refreshed", extra={"marked_overdue": changed, "run_date": today})
        return changed

    def _transition(self, session: Session, invoice: Invoice, values: Mapping[str, Any]) -> None:
        if not compare_and_set(session, invoice, values):
            raise ConcurrencyConflictError(
                "Invoice was modified concurrently", invoice_id=invoice.id, expected_version=invoice.version
            )

    def _payment_transaction(
        self,
        invoice: Invoice,
        account_id: Optional[int],
        card_id: Optional[int],
        paid_on: date,
    ) -> Transaction:
        if (account_id is None) == (card_id is None):
            raise ValidationError(
                "Paying with a transaction needs exactly one of account_id or card_id",
                invoice_id=invoice.id,
            )
        transaction = Transaction(
            user_id=invoice.user_id,
            amount=invoice.amount,
            currency=invoice.currency,
            title=invoice.creditor_name or invoice.invoice_number or "Invoice payment",
            description=invoice.notes or f"Payment for invoice {invoice.invoice_number or invoice.id}",
            transaction_date=paid_on,
            category_id=invoice.category_id,
            merchant_id=invoice.merchant_id,
            source_type=INVOICE_SOURCE,
            source_id=invoice.id,
        )
        if invoice.settles_card_id is not None:
            if account_id is None:
                raise ValidationError("A card statement must be paid from an account", invoice_id=invoice.id)
            transaction.type = TransactionType.CARD_PAYMENT.value
            transaction.from_account_id = account_id
            transaction.to_card_id = invoice.settles_card_id
        else:
            transaction.type = TransactionType.EXPENSE.value
            transaction.from_account_id = account_id
            transaction.from_card_id = card_id
        return transaction

    def _load(self, session: Session, invoice_id: int, user_id: int) -> Invoice:
        invoice = session.exec(
            select(Invoice)
            .where(Invoice.id == invoice_id)
            .where(Invoice.user_id == user_id)
            .with_for_update()
        ).first()
        if invoice is None:
            raise NotFoundError("Invoice not found", invoice_id=invoice_id)
        return invoice


__all__ = [
    "InvoiceManager",
    "PaymentOutcome",
    "QrPayload",
    "QrPayloadParser",
    "days_overdue",
    "days_until_due",
    "derive_schedule",
    "effective_status",
    "is_due_soon",
    "is_terminal",
    "refresh_status",
]
