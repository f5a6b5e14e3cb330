"""Error taxonomy for checkout, webhook and reconciliation operations

Every error carries the HTTP status it maps to and a message that is safe to
show to the buyer. Webhook-time failures never reach a buyer; they are only
logged and reflected in the webhook acknowledgement.
"""
from typing import Optional


class StorefrontError(Exception):
    """Base class for errors raised by the payment core"""
    status_code = 400
    default_message = "Request could not be processed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class IntegrationNotConfigured(StorefrontError):
    status_code = 400
    default_message = "Online payments are not configured for this shop. Please complete the Stripe setup."

    def __init__(self, tenant_id: str, message: Optional[str] = None):
        self.tenant_id = tenant_id
        super().__init__(message)


class ProductNotFound(StorefrontError):
    status_code = 404
    default_message = "One or more products could not be found"


class InsufficientStock(StorefrontError):
    status_code = 409

    def __init__(self, product_title: str, requested: int, available: int):
        self.product_title = product_title
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for {product_title}: {available} available, {requested} requested"
        )


class UnknownDeliveryMethod(StorefrontError):
    status_code = 400

    def __init__(self, method: str):
        self.method = method
        super().__init__(f"Unknown delivery method: {method}")


class CartNotFound(StorefrontError):
    status_code = 404
    default_message = "Cart not found"


class EmptyCart(StorefrontError):
    status_code = 400
    default_message = "Cart is empty"


class CheckoutSessionFailed(StorefrontError):
    status_code = 502
    default_message = "The payment provider could not create a checkout session. Please try again."


class WebhookAuthenticationFailed(StorefrontError):
    status_code = 400
    default_message = "Webhook signature could not be verified for any configured shop"


class ReconciliationFailed(StorefrontError):
    status_code = 502
    default_message = "Invoices could not be retrieved from the payment provider"
