"""API endpoint tests"""
from decimal import Decimal
from unittest.mock import patch

import pytest

from storefront.models import Order, OrderStatus, PaymentStatus

from conftest import (
    WEBHOOK_SECRET,
    checkout_completed_payload,
    make_cart,
    make_order,
    make_product,
    make_tenant,
    sign_payload,
)


class TestHealth:
    def test_health(self, client):
        """Health endpoint responds"""
        assert client.get("/health").json() == {"status": "healthy"}

    def test_metrics_exposed(self, client):
        """Prometheus metrics are exposed"""
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "storefront_webhook_events" in response.text


@pytest.mark.critical
class TestWebhookEndpoint:
    """Test webhook acknowledgement codes"""

    def test_verified_delivery_acknowledged(self, client, db_session):
        """A valid delivery is acknowledged and moves the order"""
        make_tenant(db_session)
        order = make_order(db_session)
        payload = checkout_completed_payload(order_id=order.id)

        with patch("storefront.services.order_service.get_notification_sink") as notification_sink:
            notification_sink.return_value.send_message.return_value = True
            response = client.post(
                "/api/shop/webhook",
                content=payload,
                headers={"stripe-signature": sign_payload(payload, WEBHOOK_SECRET), "X-Tenant-Id": "shop-a"},
            )

        assert response.status_code == 200
        assert response.json()["received"] is True
        db_session.refresh(order)
        assert order.status == OrderStatus.PROCESSING
        assert order.payment_status == PaymentStatus.COMPLETED

    def test_credentials_cached_on_application(self, client, db_session):
        """Resolved credentials land in the cache created at startup"""
        make_tenant(db_session)
        payload = b'{"id": "evt_x", "type": "customer.created", "data": {"object": {}}}'
        client.post(
            "/api/shop/webhook",
            content=payload,
            headers={"stripe-signature": sign_payload(payload, WEBHOOK_SECRET), "X-Tenant-Id": "shop-a"},
        )

        cached = client.app.state.credential_cache.get("credentials:shop-a")
        assert cached is not None
        assert cached.secret_key == "sk_test_shop_a"

    def test_query_hint_is_accepted(self, client, db_session):
        """The tenant hint may come from the query string"""
        make_tenant(db_session)
        payload = b'{"id": "evt_x", "type": "customer.created", "data": {"object": {}}}'
        response = client.post(
            "/api/shop/webhook?tenant_id=shop-a",
            content=payload,
            headers={"stripe-signature": sign_payload(payload, WEBHOOK_SECRET)},
        )
        assert response.status_code == 200
        assert response.json() == {"received": True, "outcome": "ignored"}

    def test_bad_signature_returns_400(self, client, db_session):
        """Unverifiable deliveries are rejected with 400"""
        make_tenant(db_session)
        payload = checkout_completed_payload(order_id="x")
        response = client.post(
            "/api/shop/webhook",
            content=payload,
            headers={"stripe-signature": sign_payload(payload, "whsec_wrong")},
        )
        assert response.status_code == 400
        assert response.json()["received"] is False

    def test_handler_failure_returns_500(self, client, db_session):
        """Handler failures ask Stripe to redeliver"""
        make_tenant(db_session)
        order = make_order(db_session)
        payload = checkout_completed_payload(order_id=order.id)

        with patch("storefront.services.webhook_service.handle_checkout_completed",
                   side_effect=RuntimeError("boom")):
            response = client.post(
                "/api/shop/webhook",
                content=payload,
                headers={"stripe-signature": sign_payload(payload, WEBHOOK_SECRET), "X-Tenant-Id": "shop-a"},
            )
        assert response.status_code == 500


class TestCheckoutEndpoints:
    """Test checkout routes"""

    def test_finalize_checkout(self, client, db_session, mock_stripe):
        """The checkout route returns the order and the hosted checkout URL"""
        make_tenant(db_session)
        product = make_product(db_session, gateway_product_id="prod_mug")
        cart = make_cart(db_session, items=[{"product_id": product.id, "quantity": 2, "unit_price": "10.00"}])

        response = client.post("/api/shop/checkout", headers={"X-Tenant-Id": "shop-a"}, json={
            "cart_id": cart.id,
            "email": "buyer@example.com",
            "delivery_method": "standard",
            "shipping_address": {"name": "Ada Buyer", "line1": "1 Rue Test", "postal_code": "75001",
                                 "city": "Paris", "country": "FR"},
        })

        assert response.status_code == 200
        body = response.json()
        assert body["url"] == "https://checkout.stripe.com/c/pay/cs_test_123"
        assert Decimal(body["total"]) == Decimal("27.84")
        assert db_session.query(Order).count() == 1

    def test_unconfigured_tenant_gets_readable_error(self, client, db_session, mock_stripe):
        """Checkout errors come back as user-displayable messages"""
        make_tenant(db_session, is_configured=False)
        product = make_product(db_session)

        response = client.post("/api/shop/checkout/session", headers={"X-Tenant-Id": "shop-a"}, json={
            "items": [{"product_id": product.id, "quantity": 1, "price": "10.00"}],
            "email": "buyer@example.com",
            "order_id": "order-1",
        })

        assert response.status_code == 400
        assert response.json()["success"] is False
        assert "not configured" in response.json()["error"]
        mock_stripe.Price.create.assert_not_called()

    def test_insufficient_stock_returns_409(self, client, db_session, mock_stripe):
        """Stock problems name the product"""
        make_tenant(db_session)
        product = make_product(db_session, stock_quantity=1, gateway_product_id="prod_mug")

        response = client.post("/api/shop/checkout/session", headers={"X-Tenant-Id": "shop-a"}, json={
            "items": [{"product_id": product.id, "quantity": 3, "price": "10.00"}],
            "email": "buyer@example.com",
            "order_id": "order-1",
        })

        assert response.status_code == 409
        assert "Ceramic Mug" in response.json()["error"]

    def test_missing_tenant_header(self, client):
        """Shop routes require the tenant header"""
        response = client.post("/api/shop/checkout/session", json={
            "items": [{"product_id": "p", "quantity": 1}], "email": "buyer@example.com", "order_id": "o"})
        assert response.status_code == 400


class TestInvoiceEndpoint:
    """Test the buyer invoice listing"""

    def test_lists_invoices_with_summary(self, client, db_session, mock_stripe):
        """Invoices come back with a status summary"""
        make_tenant(db_session)
        mock_stripe.Customer.list.return_value = {"data": [{"id": "cus_1"}]}
        mock_stripe.Invoice.list.return_value = {"data": [{
            "id": "in_1", "number": "INV-1", "amount_paid": 1500, "currency": "eur",
            "status": "paid", "created": 1767225600,
        }]}

        response = client.get("/api/shop/invoices/me",
                              headers={"X-Tenant-Id": "shop-a", "X-Customer-Email": "Buyer@Example.com"})

        assert response.status_code == 200
        body = response.json()
        assert body["invoices"][0]["invoice_number"] == "INV-1"
        assert body["summary"]["total"] == 1
        assert body["summary"]["paid"] == 1

    def test_requires_customer(self, client):
        """Anonymous callers cannot list invoices"""
        response = client.get("/api/shop/invoices/me", headers={"X-Tenant-Id": "shop-a"})
        assert response.status_code == 401
