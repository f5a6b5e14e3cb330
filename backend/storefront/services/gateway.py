"""Stripe adapter scoped to one tenant's account

All Stripe SDK calls of the payment core go through this module. Every call
passes the tenant's secret key explicitly; the SDK's global ``stripe.api_key``
is never set, so concurrent requests for different tenants cannot leak keys.
"""
import logging
from typing import Any, Dict, List, Optional

import stripe

from storefront.core.config import settings
from storefront.services.credentials import TenantCredentials

logger = logging.getLogger(__name__)

SESSION_PAGE_SIZE = 100


def stripe_value(obj: Any, key: str, default: Any = None) -> Any:
    """Read a field from a Stripe object, a plain dict, or None"""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)


def stripe_id(obj: Any) -> Optional[str]:
    """Id of an expandable field: either the id string itself or an expanded object"""
    if obj is None or isinstance(obj, str):
        return obj
    return stripe_value(obj, "id")


class StripeGateway:
    def __init__(self, credentials: TenantCredentials):
        self.credentials = credentials

    @property
    def _options(self) -> Dict[str, Any]:
        options = {"api_key": self.credentials.secret_key}
        if settings.STRIPE_API_VERSION:
            options["stripe_version"] = settings.STRIPE_API_VERSION
        return options

    # ============================================================================
    # CATALOG
    # ============================================================================

    def create_product(self, name: str, metadata: Dict[str, str], description: Optional[str] = None,
                       images: Optional[List[str]] = None, default_price_cents: Optional[int] = None) -> str:
        params: Dict[str, Any] = {"name": name, "metadata": metadata}
        if description:
            params["description"] = description
        if images:
            params["images"] = images[:8]
        if default_price_cents is not None:
            params["default_price_data"] = {
                "currency": settings.CURRENCY,
                "unit_amount": default_price_cents,
            }
        product = stripe.Product.create(**params, **self._options)
        return stripe_value(product, "id")

    def update_product(self, product_id: str, name: str, description: Optional[str] = None,
                       images: Optional[List[str]] = None) -> None:
        params: Dict[str, Any] = {"name": name}
        if description:
            params["description"] = description
        if images:
            params["images"] = images[:8]
        stripe.Product.modify(product_id, **params, **self._options)

    def search_product_ids(self, query: str) -> List[str]:
        result = stripe.Product.search(query=query, limit=1, **self._options)
        return [stripe_value(product, "id") for product in stripe_value(result, "data", [])]

    def create_price(self, product_id: str, unit_amount_cents: int) -> str:
        """Mint a one-time price; the returned id is used for exactly one line item"""
        price = stripe.Price.create(
            product=product_id,
            unit_amount=unit_amount_cents,
            currency=settings.CURRENCY,
            **self._options
        )
        return stripe_value(price, "id")

    # ============================================================================
    # CHECKOUT SESSIONS
    # ============================================================================

    def create_checkout_session(self, params: Dict[str, Any]) -> Dict[str, str]:
        session = stripe.checkout.Session.create(**params, **self._options)
        return {"id": stripe_value(session, "id"), "url": stripe_value(session, "url")}

    def retrieve_checkout_session(self, session_id: str, expand: Optional[List[str]] = None):
        return stripe.checkout.Session.retrieve(session_id, expand=expand or [], **self._options)

    def list_completed_sessions(self, limit: int) -> List[Any]:
        """Completed sessions across the account, newest first, at most ``limit``"""
        sessions: List[Any] = []
        starting_after = None
        while len(sessions) < limit:
            params: Dict[str, Any] = {"limit": min(SESSION_PAGE_SIZE, limit - len(sessions)), "status": "complete"}
            if starting_after:
                params["starting_after"] = starting_after
            page = stripe.checkout.Session.list(**params, **self._options)
            data = list(stripe_value(page, "data", []) or [])
            sessions.extend(data)
            if not data or not stripe_value(page, "has_more", False):
                break
            starting_after = stripe_value(data[-1], "id")
        return sessions[:limit]

    # ============================================================================
    # CUSTOMERS & INVOICES
    # ============================================================================

    def find_customer_id(self, email: str) -> Optional[str]:
        result = stripe.Customer.list(email=email.strip().lower(), limit=1, **self._options)
        data = stripe_value(result, "data", []) or []
        return stripe_value(data[0], "id") if data else None

    def list_invoices(self, customer_id: str) -> List[Any]:
        result = stripe.Invoice.list(
            customer=customer_id,
            limit=100,
            expand=["data.payment_intent"],
            **self._options
        )
        return list(stripe_value(result, "data", []) or [])
