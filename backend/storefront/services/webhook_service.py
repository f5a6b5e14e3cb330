"""Webhook service - Stripe event verification under ambiguous tenant routing and dispatch"""
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

import stripe
from sqlalchemy.orm import Session

from storefront.core.errors import WebhookAuthenticationFailed
from storefront.core.logging import security_logger, webhook_logger
from storefront.core.metrics import webhook_events_counter
from storefront.models.payment_event import PaymentEvent
from storefront.services.credentials import CredentialResolver
from storefront.services.gateway import stripe_value
from storefront.services.order_service import handle_checkout_completed

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
PAYMENT_SUCCEEDED = "payment_intent.succeeded"
PAYMENT_FAILED = "payment_intent.payment_failed"
RECORDED_EVENT_TYPES = (PAYMENT_SUCCEEDED, PAYMENT_FAILED)


class WebhookState(str, Enum):
    VERIFIED_WITH_HINT = "verified_with_hint"
    VERIFIED_WITH_EXTRACTED_TENANT = "verified_with_extracted_tenant"
    REJECTED = "rejected"
    HANDLED = "handled"
    IGNORED = "ignored"
    HANDLER_FAILED = "handler_failed"


@dataclass
class WebhookResult:
    success: bool
    state: WebhookState
    event_type: Optional[str] = None
    tenant_id: Optional[str] = None
    outcome: Optional[str] = None
    error: Optional[str] = None


@dataclass
class VerifiedEvent:
    tenant_id: str
    event: Dict[str, Any]
    state: WebhookState


def extract_tenant_id(payload: bytes) -> Optional[str]:
    """Read data.object.metadata.tenant_id from an unverified payload.

    Read-only routing aid: nothing read here is trusted or acted upon until the
    payload verifies against that tenant's secret.
    """
    try:
        data = json.loads(payload)
        tenant_id = data["data"]["object"]["metadata"]["tenant_id"]
    except (ValueError, KeyError, TypeError):
        return None
    return tenant_id if isinstance(tenant_id, str) and tenant_id else None


class WebhookVerifier:
    def __init__(self, resolver: CredentialResolver):
        self.resolver = resolver

    def _verify_for_tenant(self, payload: bytes, sig_header: str, tenant_id: Optional[str]) -> bool:
        credentials = self.resolver.resolve(tenant_id)
        if credentials is None or not credentials.webhook_secret:
            return False
        try:
            stripe.Webhook.construct_event(payload, sig_header, credentials.webhook_secret)
            return True
        except (ValueError, stripe.SignatureVerificationError):
            return False

    def verify(self, payload: bytes, sig_header: Optional[str], tenant_hint: Optional[str]) -> VerifiedEvent:
        """Authenticate a delivery against the hinted tenant, then the tenant named in the payload.

        Raises:
            WebhookAuthenticationFailed: when neither candidate verifies
        """
        if not sig_header:
            security_logger.warning("Webhook received without stripe-signature header")
            raise WebhookAuthenticationFailed("Missing stripe-signature header")

        if tenant_hint and self._verify_for_tenant(payload, sig_header, tenant_hint):
            return VerifiedEvent(tenant_hint, json.loads(payload), WebhookState.VERIFIED_WITH_HINT)

        extracted = extract_tenant_id(payload)
        if extracted and extracted != tenant_hint and self._verify_for_tenant(payload, sig_header, extracted):
            return VerifiedEvent(extracted, json.loads(payload), WebhookState.VERIFIED_WITH_EXTRACTED_TENANT)

        security_logger.warning(
            f"Webhook signature verification failed (hinted tenant: {tenant_hint or '-'}, "
            f"payload tenant: {extracted or '-'})"
        )
        raise WebhookAuthenticationFailed()


def record_payment_event(db: Session, tenant_id: str, event: Dict[str, Any]) -> str:
    """Store a payment succeeded/failed delivery once per gateway event id"""
    event_id = event.get("id")
    if db.query(PaymentEvent).filter(PaymentEvent.gateway_event_id == event_id).first():
        return "duplicate"

    payment_intent = stripe_value(stripe_value(event.get("data"), "object"), "id")
    db.add(PaymentEvent(
        gateway_event_id=event_id,
        tenant_id=tenant_id,
        event_type=event.get("type"),
        payment_reference=payment_intent,
        payload=event,
    ))
    db.commit()
    webhook_logger.info(f"Recorded {event.get('type')} for tenant {tenant_id} (payment {payment_intent})")
    return "recorded"


def process_webhook(payload: bytes, sig_header: Optional[str], tenant_hint: Optional[str], db: Session,
                    resolver: Optional[CredentialResolver] = None, fulfillment_sink=None,
                    notification_sink=None) -> WebhookResult:
    """
    Verify and dispatch an inbound Stripe event.

    Args:
        payload: Raw request body, exactly as received
        sig_header: Value of the stripe-signature header
        tenant_hint: Tenant id from the X-Tenant-Id header or tenant_id query param, if any
        db: Database session

    Returns:
        WebhookResult; never raises for verification or handler failures
    """
    resolver = resolver or CredentialResolver(db)
    try:
        verified = WebhookVerifier(resolver).verify(payload, sig_header, tenant_hint)
    except WebhookAuthenticationFailed as e:
        webhook_events_counter.labels(state=WebhookState.REJECTED.value).inc()
        return WebhookResult(success=False, state=WebhookState.REJECTED, tenant_id=tenant_hint, error=e.message)

    event = verified.event
    event_type = event.get("type")
    event_object = stripe_value(event.get("data"), "object") or {}
    webhook_logger.info(f"Verified {event_type} ({event.get('id')}) for tenant {verified.tenant_id} [{verified.state.value}]")

    try:
        if event_type == CHECKOUT_COMPLETED:
            outcome = handle_checkout_completed(
                event_object, verified.tenant_id, db,
                resolver=resolver,
                fulfillment_sink=fulfillment_sink,
                notification_sink=notification_sink,
            )
        elif event_type in RECORDED_EVENT_TYPES:
            outcome = record_payment_event(db, verified.tenant_id, event)
        else:
            webhook_logger.debug(f"Ignoring unhandled event type {event_type}")
            webhook_events_counter.labels(state=WebhookState.IGNORED.value).inc()
            return WebhookResult(success=True, state=WebhookState.IGNORED, event_type=event_type,
                                 tenant_id=verified.tenant_id, outcome="ignored")
    except Exception as e:
        db.rollback()
        webhook_logger.error(f"Error handling {event_type} for tenant {verified.tenant_id}: {e}", exc_info=True)
        webhook_events_counter.labels(state=WebhookState.HANDLER_FAILED.value).inc()
        return WebhookResult(success=False, state=WebhookState.HANDLER_FAILED, event_type=event_type,
                             tenant_id=verified.tenant_id, error=str(e))

    webhook_events_counter.labels(state=WebhookState.HANDLED.value).inc()
    return WebhookResult(success=True, state=WebhookState.HANDLED, event_type=event_type,
                         tenant_id=verified.tenant_id, outcome=outcome)
