"""Outbound capability interfaces: fulfillment and buyer notifications

The order state machine only talks to these abstractions. Concrete sinks are
selected from configuration by ``get_fulfillment_sink`` and
``get_notification_sink``.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import httpx
import resend
from sqlalchemy.orm import Session

from storefront.core.config import settings
from storefront.models.order import Order
from storefront.models.tenant import Tenant
from storefront.services.pricing import to_decimal

logger = logging.getLogger(__name__)


@dataclass
class FulfillmentResult:
    success: bool
    external_reference: Optional[str] = None
    error: Optional[str] = None


@dataclass
class Message:
    recipient: str
    subject: str
    html: str
    tenant_id: str
    sender_email: str
    sender_name: Optional[str] = None


# ============================================================================
# FULFILLMENT
# ============================================================================

class FulfillmentSink(ABC):
    @abstractmethod
    def is_enrolled(self, tenant_id: str) -> bool:
        """Whether paid orders of this tenant are pushed to the fulfillment provider"""

    @abstractmethod
    def push_order(self, tenant_id: str, order: Order) -> FulfillmentResult:
        ...


class NullFulfillmentSink(FulfillmentSink):
    """Used when no fulfillment provider is configured"""

    def is_enrolled(self, tenant_id: str) -> bool:
        return False

    def push_order(self, tenant_id: str, order: Order) -> FulfillmentResult:
        return FulfillmentResult(success=False, error="No fulfillment provider configured")


class HttpFulfillmentSink(FulfillmentSink):
    """Pushes orders to a fulfillment provider's REST API"""

    def __init__(self, db: Session, base_url: str, api_key: str, timeout: float = 10.0,
                 client: Optional[httpx.Client] = None):
        self.db = db
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._client = client

    def is_enrolled(self, tenant_id: str) -> bool:
        tenant = self.db.query(Tenant).filter(Tenant.tenant_id == tenant_id).first()
        return bool(tenant and tenant.fulfillment_enabled)

    @staticmethod
    def order_payload(order: Order) -> dict:
        return {
            "reference": order.id,
            "email": order.email,
            "delivery_method": order.delivery_method,
            "shipping_address": order.shipping_address or {},
            "items": [
                {
                    "sku": item.get("variant_id") or item.get("product_id"),
                    "title": item.get("title"),
                    "quantity": int(item.get("quantity") or 0),
                    "unit_price": str(to_decimal(item.get("price"))),
                }
                for item in order.items or []
            ],
            "shipping_cost": str(to_decimal(order.shipping_cost)),
            "total": str(to_decimal(order.total)),
        }

    def push_order(self, tenant_id: str, order: Order) -> FulfillmentResult:
        headers = {"Authorization": f"Bearer {self.api_key}", "X-Tenant-Id": tenant_id}
        client = self._client or httpx.Client(timeout=self.timeout)
        try:
            response = client.post(f"{self.base_url}/orders", json=self.order_payload(order), headers=headers)
            response.raise_for_status()
            body = response.json() if response.content else {}
            reference = body.get("id") or body.get("reference")
            return FulfillmentResult(success=True, external_reference=str(reference) if reference else None)
        except httpx.HTTPStatusError as e:
            return FulfillmentResult(success=False, error=f"HTTP {e.response.status_code}")
        except httpx.HTTPError as e:
            return FulfillmentResult(success=False, error=str(e))
        finally:
            if self._client is None:
                client.close()


def get_fulfillment_sink(db: Session) -> FulfillmentSink:
    if not settings.FULFILLMENT_API_URL:
        return NullFulfillmentSink()
    return HttpFulfillmentSink(
        db,
        base_url=settings.FULFILLMENT_API_URL,
        api_key=settings.FULFILLMENT_API_KEY,
        timeout=settings.FULFILLMENT_TIMEOUT,
    )


# ============================================================================
# NOTIFICATIONS
# ============================================================================

class NotificationSink(ABC):
    @abstractmethod
    def send_message(self, message: Message) -> bool:
        """Deliver a message; returns False when the provider rejected it"""


class ResendNotificationSink(NotificationSink):
    def __init__(self, api_key: str):
        self.api_key = api_key

    def send_message(self, message: Message) -> bool:
        if not self.api_key:
            logger.warning("RESEND_API_KEY is not set; skipping email")
            return False

        resend.api_key = self.api_key
        sender = message.sender_email
        if message.sender_name:
            sender = f"{message.sender_name} <{message.sender_email}>"

        response = resend.Emails.send({
            "from": sender,
            "to": message.recipient,
            "subject": message.subject,
            "html": message.html,
        })

        email_id = response.get("id") if isinstance(response, dict) else getattr(response, "id", None)
        if not email_id:
            logger.error(f"Email not accepted by Resend for {message.recipient}: {response}")
            return False
        logger.info(f"Email sent to {message.recipient} for tenant {message.tenant_id} (id: {email_id})")
        return True


def get_notification_sink() -> NotificationSink:
    return ResendNotificationSink(settings.RESEND_API_KEY)
