"""Reconciliation service - merges Stripe invoices and checkout sessions with stored orders"""
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

import stripe
from sqlalchemy.orm import Session

from storefront.core.config import settings
from storefront.core.errors import IntegrationNotConfigured, ReconciliationFailed
from storefront.core.metrics import reconciliation_links_counter
from storefront.models.order import Order
from storefront.schemas.invoices import InvoiceRecord, InvoiceSummary
from storefront.services.credentials import CredentialResolver
from storefront.services.gateway import StripeGateway, stripe_id, stripe_value
from storefront.services.order_service import order_id_candidates
from storefront.services.pricing import from_cents, round_money

logger = logging.getLogger(__name__)

INVOICE_STATUS_MAP = {"paid": "paid", "open": "pending", "void": "cancelled"}


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _from_timestamp(value) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _upper(value: Optional[str]) -> str:
    return (value or settings.CURRENCY).upper()


def _email_name(email: str) -> str:
    return email.split("@")[0]


class OrderMatcher:
    """Links external payment records to the buyer's orders.

    Exact matching goes through an order id embedded by checkout. Fuzzy
    matching accepts orders whose total is within ``tolerance`` (exclusive) of
    the record amount and whose creation date is within ``window``
    (inclusive) of the record date. Among several fuzzy candidates the one
    closest in time wins, then the most recent.
    """

    def __init__(self, orders: Iterable[Order], tolerance: Decimal, window: timedelta):
        self.orders = list(orders)
        self.tolerance = tolerance
        self.window = window
        self._by_id = {order.id: order for order in self.orders}

    def exact(self, order_id: Optional[str]) -> Optional[Order]:
        if not order_id:
            return None
        for candidate in order_id_candidates(order_id):
            if candidate in self._by_id:
                return self._by_id[candidate]
        return None

    def fuzzy(self, amount: Decimal, date: datetime) -> Optional[Order]:
        date = _as_utc(date)
        candidates = [
            order for order in self.orders
            if abs(round_money(order.total) - amount) < self.tolerance
            and abs(_as_utc(order.created_at) - date) <= self.window
        ]
        if not candidates:
            return None
        return min(
            candidates,
            key=lambda order: (abs(_as_utc(order.created_at) - date), -_as_utc(order.created_at).timestamp())
        )

    def link(self, embedded_order_id: Optional[str], amount: Decimal, date: datetime) -> Optional[str]:
        order = self.exact(embedded_order_id)
        if order is not None:
            reconciliation_links_counter.labels(method="exact").inc()
            return order.id
        order = self.fuzzy(amount, date)
        if order is not None:
            reconciliation_links_counter.labels(method="fuzzy").inc()
            return order.id
        return None


class InvoiceReconciler:
    def __init__(self, db: Session, resolver: Optional[CredentialResolver] = None, gateway_factory=StripeGateway):
        self.db = db
        self.resolver = resolver or CredentialResolver(db)
        self.gateway_factory = gateway_factory

    def list_customer_invoices(self, tenant_id: str, email: str) -> List[InvoiceRecord]:
        """
        Unified, newest-first list of a buyer's invoices and paid checkout sessions.

        Raises:
            IntegrationNotConfigured: tenant has no usable Stripe credentials
            ReconciliationFailed: Stripe customer or invoice lookup failed
        """
        credentials = self.resolver.resolve(tenant_id)
        if credentials is None:
            raise IntegrationNotConfigured(tenant_id)
        gateway = self.gateway_factory(credentials)
        email = email.strip().lower()

        try:
            customer_id = gateway.find_customer_id(email)
            if not customer_id:
                return []
            invoices = gateway.list_invoices(customer_id)
        except stripe.StripeError as e:
            logger.error(f"Invoice lookup failed for tenant {tenant_id}: {e}")
            raise ReconciliationFailed()

        try:
            sessions = gateway.list_completed_sessions(settings.RECONCILE_SESSION_LIMIT)
        except stripe.StripeError as e:
            logger.warning(f"Checkout session listing failed for tenant {tenant_id}, continuing with invoices only: {e}")
            sessions = []

        orders = self.db.query(Order).filter(
            Order.tenant_id == tenant_id,
            Order.email == email
        ).order_by(Order.created_at.desc()).all()
        matcher = OrderMatcher(
            orders,
            tolerance=settings.RECONCILE_AMOUNT_TOLERANCE,
            window=timedelta(days=settings.RECONCILE_DATE_WINDOW_DAYS),
        )

        buyer_sessions = [
            session for session in sessions
            if self._belongs_to_buyer(session, tenant_id, email, customer_id)
        ]
        sessions_by_payment: Dict[str, Any] = {}
        for session in buyer_sessions:
            payment_reference = stripe_id(stripe_value(session, "payment_intent"))
            if payment_reference:
                sessions_by_payment[payment_reference] = session

        records: List[InvoiceRecord] = []
        represented_payments = set()
        represented_sessions = set()
        for invoice in invoices:
            payment_reference = stripe_id(stripe_value(invoice, "payment_intent"))
            session = sessions_by_payment.get(payment_reference) if payment_reference else None
            if payment_reference:
                represented_payments.add(payment_reference)
            if session is not None:
                represented_sessions.add(stripe_value(session, "id"))
            records.append(self._invoice_record(invoice, session, matcher, email))

        for session in buyer_sessions:
            payment_reference = stripe_id(stripe_value(session, "payment_intent"))
            if stripe_value(session, "id") in represented_sessions or payment_reference in represented_payments:
                continue
            records.append(self._session_record(session, matcher, email))

        records.sort(key=lambda record: record.date, reverse=True)
        return records

    @staticmethod
    def _belongs_to_buyer(session: Any, tenant_id: str, email: str, customer_id: str) -> bool:
        metadata = stripe_value(session, "metadata") or {}
        if stripe_value(metadata, "tenant_id") != tenant_id:
            return False
        if stripe_value(session, "status") != "complete" or stripe_value(session, "payment_status") != "paid":
            return False
        session_email = stripe_value(session, "customer_email") or stripe_value(stripe_value(session, "customer_details"), "email")
        return (session_email or "").lower() == email or stripe_id(stripe_value(session, "customer")) == customer_id

    @staticmethod
    def _invoice_record(invoice: Any, session: Any, matcher: OrderMatcher, email: str) -> InvoiceRecord:
        lines = stripe_value(stripe_value(invoice, "lines"), "data") or []
        first_line = lines[0] if lines else None
        amount = from_cents(stripe_value(invoice, "amount_paid") or stripe_value(invoice, "amount_due") or 0)
        date = _from_timestamp(stripe_value(invoice, "created")) or datetime.now(timezone.utc)
        embedded_order_id = stripe_value(stripe_value(session, "metadata"), "order_id") if session is not None else None
        invoice_id = stripe_value(invoice, "id")
        return InvoiceRecord(
            id=invoice_id,
            invoice_number=stripe_value(invoice, "number") or invoice_id,
            amount=amount,
            currency=_upper(stripe_value(invoice, "currency")),
            status=INVOICE_STATUS_MAP.get(stripe_value(invoice, "status"), "pending"),
            date=date,
            due_date=_from_timestamp(stripe_value(invoice, "due_date")),
            description=(stripe_value(first_line, "description") or stripe_value(invoice, "description")
                         or "Order invoice"),
            customer_name=stripe_value(invoice, "customer_name") or _email_name(email),
            customer_email=stripe_value(invoice, "customer_email"),
            hosted_invoice_url=stripe_value(invoice, "hosted_invoice_url"),
            invoice_pdf_url=stripe_value(invoice, "invoice_pdf"),
            stripe_invoice_id=invoice_id,
            stripe_session_id=stripe_value(session, "id") if session is not None else None,
            linked_order_id=matcher.link(embedded_order_id, amount, date),
            source="invoice",
        )

    @staticmethod
    def _session_record(session: Any, matcher: OrderMatcher, email: str) -> InvoiceRecord:
        session_id = stripe_value(session, "id")
        amount = from_cents(stripe_value(session, "amount_total") or 0)
        date = _from_timestamp(stripe_value(session, "created")) or datetime.now(timezone.utc)
        details = stripe_value(session, "customer_details")
        return InvoiceRecord(
            id=f"session_{session_id}",
            invoice_number=session_id[:12].upper(),
            amount=amount,
            currency=_upper(stripe_value(session, "currency")),
            status="paid",
            date=date,
            description="Online order",
            customer_name=stripe_value(details, "name") or _email_name(email),
            customer_email=stripe_value(session, "customer_email") or stripe_value(details, "email"),
            stripe_session_id=session_id,
            linked_order_id=matcher.link(stripe_value(stripe_value(session, "metadata"), "order_id"), amount, date),
            source="checkout_session",
        )


def summarize_invoices(records: List[InvoiceRecord]) -> InvoiceSummary:
    return InvoiceSummary(
        total=len(records),
        total_amount=round_money(sum((record.amount for record in records), Decimal("0"))),
        paid=sum(1 for record in records if record.status == "paid"),
        pending=sum(1 for record in records if record.status == "pending"),
        cancelled=sum(1 for record in records if record.status == "cancelled"),
    )
