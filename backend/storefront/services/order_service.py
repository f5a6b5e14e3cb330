"""Order service - payment-driven order transitions and post-payment side effects"""
import html
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, List, Optional, Tuple

import stripe
from sqlalchemy.orm import Session

from storefront.core.config import settings
from storefront.core.metrics import order_transitions_counter, side_effect_failures_counter
from storefront.models.order import Order, OrderStatus, PaymentStatus
from storefront.models.tenant import Tenant
from storefront.services.credentials import CredentialResolver
from storefront.services.gateway import StripeGateway, stripe_id, stripe_value
from storefront.services.integrations import (
    FulfillmentSink,
    Message,
    NotificationSink,
    get_fulfillment_sink,
    get_notification_sink,
)
from storefront.services.pricing import compute_tax, lines_subtotal, round_money, to_decimal

logger = logging.getLogger(__name__)


def order_id_candidates(raw_id: str) -> List[str]:
    """The id as received plus its canonical UUID spelling, if it parses as one"""
    candidates = [raw_id]
    try:
        canonical = str(uuid.UUID(raw_id))
    except (ValueError, AttributeError, TypeError):
        return candidates
    if canonical != raw_id:
        candidates.append(canonical)
    return candidates


def find_order(db: Session, order_id: str, tenant_id: str) -> Optional[Order]:
    return db.query(Order).filter(
        Order.id.in_(order_id_candidates(order_id)),
        Order.tenant_id == tenant_id
    ).first()


def mark_order_paid(db: Session, order: Order, session_id: Optional[str] = None,
                    payment_reference: Optional[str] = None) -> bool:
    """
    Move an order to paid/Processing. Safe to apply any number of times.

    Returns:
        True when the order changed, False when it was already in (or past) the target state
        or its payment already failed
    """
    if order.payment_status not in (PaymentStatus.PENDING, PaymentStatus.COMPLETED):
        logger.warning(f"Order {order.id} has payment status {order.payment_status}; not marking as paid")
        return False

    changed = False
    if order.payment_status == PaymentStatus.PENDING:
        order.payment_status = PaymentStatus.COMPLETED
        order.paid_at = datetime.now(timezone.utc)
        changed = True
    # Forward-only: orders already packed, shipped, etc. keep their status
    if order.status == OrderStatus.PENDING:
        order.status = OrderStatus.PROCESSING
        changed = True

    if changed:
        if session_id and not order.gateway_session_id:
            order.gateway_session_id = session_id
        if payment_reference and not order.gateway_charge_id:
            order.gateway_charge_id = payment_reference
        db.commit()
    return changed


def _resolve_references(session: Any, verified_tenant_id: str, resolver: CredentialResolver) -> Tuple[Optional[str], Optional[str], Any]:
    metadata = stripe_value(session, "metadata") or {}
    tenant_id = verified_tenant_id or stripe_value(metadata, "tenant_id")
    order_id = stripe_value(metadata, "order_id")
    if tenant_id and order_id:
        return tenant_id, order_id, session

    # Some deliveries arrive with trimmed metadata; the full session has it
    session_id = stripe_value(session, "id")
    credentials = resolver.resolve(tenant_id) if tenant_id else None
    if not session_id or credentials is None:
        return tenant_id, order_id, session

    logger.info(f"Re-fetching checkout session {session_id} for missing metadata")
    try:
        full_session = StripeGateway(credentials).retrieve_checkout_session(session_id, expand=["payment_intent"])
    except stripe.StripeError as e:
        logger.warning(f"Could not re-fetch checkout session {session_id}: {e}")
        return tenant_id, order_id, session
    metadata = stripe_value(full_session, "metadata") or {}
    return tenant_id or stripe_value(metadata, "tenant_id"), stripe_value(metadata, "order_id"), full_session


def handle_checkout_completed(session: Any, verified_tenant_id: str, db: Session,
                              resolver: Optional[CredentialResolver] = None,
                              fulfillment_sink: Optional[FulfillmentSink] = None,
                              notification_sink: Optional[NotificationSink] = None) -> str:
    """
    Handle checkout.session.completed for a verified tenant.

    Returns:
        Outcome label: "processed", "unchanged", "missing_metadata" or "order_not_found".
        Only a failure to update the order itself raises.
    """
    resolver = resolver or CredentialResolver(db)
    tenant_id, order_id, session = _resolve_references(session, verified_tenant_id, resolver)
    if not tenant_id or not order_id:
        logger.error(f"Checkout session {stripe_value(session, 'id')} has no order reference; dropping")
        order_transitions_counter.labels(outcome="missing_metadata").inc()
        return "missing_metadata"

    order = find_order(db, order_id, tenant_id)
    if order is None:
        logger.error(f"Order {order_id} not found for tenant {tenant_id}; dropping checkout completion")
        order_transitions_counter.labels(outcome="order_not_found").inc()
        return "order_not_found"

    changed = mark_order_paid(
        db, order,
        session_id=stripe_value(session, "id"),
        payment_reference=stripe_id(stripe_value(session, "payment_intent")),
    )
    if not changed:
        logger.info(f"Order {order.id} already marked as paid; skipping side effects")
        order_transitions_counter.labels(outcome="unchanged").inc()
        return "unchanged"

    logger.info(f"Order {order.id} for tenant {tenant_id} paid and moved to {order.status}")
    order_transitions_counter.labels(outcome="processed").inc()

    push_to_fulfillment(db, order, fulfillment_sink or get_fulfillment_sink(db))
    send_order_confirmation(db, order, notification_sink or get_notification_sink())
    return "processed"


# ============================================================================
# SIDE EFFECTS
# ============================================================================

def push_to_fulfillment(db: Session, order: Order, sink: FulfillmentSink) -> bool:
    """Push a paid order to the fulfillment provider; failures are logged, never raised"""
    try:
        if not sink.is_enrolled(order.tenant_id):
            return False
        result = sink.push_order(order.tenant_id, order)
        if not result.success:
            logger.warning(f"Fulfillment push failed for order {order.id}: {result.error}")
            side_effect_failures_counter.labels(effect="fulfillment").inc()
            return False
        if result.external_reference:
            order.fulfillment_reference = result.external_reference
            db.commit()
        logger.info(f"Order {order.id} pushed to fulfillment ({result.external_reference or 'no reference'})")
        return True
    except Exception as e:
        db.rollback()
        logger.error(f"Fulfillment push raised for order {order.id}: {e}", exc_info=True)
        side_effect_failures_counter.labels(effect="fulfillment").inc()
        return False


def build_confirmation_message(db: Session, order: Order) -> Message:
    """Order confirmation with totals recomputed from the stored lines and the tenant's VAT settings"""
    tenant = db.query(Tenant).filter(Tenant.tenant_id == order.tenant_id).first()
    vat_rate = settings.DEFAULT_VAT_RATE
    price_mode = None
    if tenant is not None:
        if tenant.vat_rate is not None:
            vat_rate = tenant.vat_rate
        price_mode = tenant.price_mode

    subtotal = lines_subtotal(order.items or [])
    shipping_cost = round_money(order.shipping_cost)
    tax = compute_tax(subtotal, shipping_cost, vat_rate, price_mode)
    total = round_money(subtotal + shipping_cost + tax)
    order_number = str(order.id)[:8].upper()

    rows = "".join(
        f"<tr><td>{html.escape(str(item.get('title') or ''))}</td>"
        f"<td>{int(item.get('quantity') or 0)}</td>"
        f"<td>{round_money(to_decimal(item.get('price')) * int(item.get('quantity') or 0))} €</td></tr>"
        for item in order.items or []
    )
    tax_row = f"<p>VAT ({round_money(to_decimal(vat_rate) * 100)}%): {tax} €</p>" if tax > 0 else ""

    address = order.shipping_address or {}
    address_block = "<br>".join(
        html.escape(str(address[key]))
        for key in ("name", "line1", "line2", "postal_code", "city", "country")
        if address.get(key)
    )

    shop_name = html.escape(tenant.name) if tenant is not None else "our shop"
    body = f"""
    <h2>Thank you for your order!</h2>
    <p>Your order <strong>#{order_number}</strong> at {shop_name} has been paid and is being prepared.</p>
    <table>
        <tr><th>Item</th><th>Qty</th><th>Amount</th></tr>
        {rows}
    </table>
    <p>Subtotal: {subtotal} €</p>
    <p>Shipping: {shipping_cost} €</p>
    {tax_row}
    <p><strong>Total incl. VAT: {total} €</strong></p>
    <p>Shipping to:<br>{address_block}</p>
    """

    return Message(
        recipient=order.email,
        subject=f"Order confirmation #{order_number}",
        html=body,
        tenant_id=order.tenant_id,
        sender_email=(tenant.sender_email if tenant is not None and tenant.sender_email else settings.DEFAULT_FROM_EMAIL),
        sender_name=(tenant.sender_name if tenant is not None and tenant.sender_name else settings.DEFAULT_FROM_NAME),
    )


def send_order_confirmation(db: Session, order: Order, sink: NotificationSink) -> bool:
    """Email the buyer; failures are logged, never raised"""
    try:
        if sink.send_message(build_confirmation_message(db, order)):
            return True
        side_effect_failures_counter.labels(effect="notification").inc()
        return False
    except Exception as e:
        logger.error(f"Order confirmation failed for order {order.id}: {e}", exc_info=True)
        side_effect_failures_counter.labels(effect="notification").inc()
        return False
