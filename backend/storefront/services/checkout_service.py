"""Checkout service - hosted checkout session building and cart finalization"""
import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional

import stripe
from sqlalchemy.orm import Session

from storefront.core.config import settings
from storefront.core.errors import (
    CartNotFound,
    CheckoutSessionFailed,
    EmptyCart,
    InsufficientStock,
    IntegrationNotConfigured,
    ProductNotFound,
)
from storefront.core.logging import checkout_logger
from storefront.core.metrics import checkout_sessions_counter
from storefront.db.cache import KeyValueCache, RedisCache
from storefront.db.redis import get_redis_client
from storefront.models.cart import Cart
from storefront.models.order import Order, OrderStatus, PaymentStatus
from storefront.models.product import Product
from storefront.models.tenant import Tenant
from storefront.services.credentials import CredentialResolver
from storefront.services.gateway import StripeGateway
from storefront.services.pricing import compute_tax, round_money, to_cents, to_decimal
from storefront.services.shipping import (
    ShippingItem,
    compute_shipping_cost,
    normalize_delivery_options,
    parse_delivery_method,
)

logger = logging.getLogger(__name__)

SHIPPING_PRODUCT_TAG = "shipping"
TAX_PRODUCT_TAG = "tax"
SHIPPING_PRODUCT_NAME = "Shipping"
TAX_PRODUCT_NAME = "VAT"


@dataclass
class CheckoutItem:
    product_id: str
    quantity: int
    price: Optional[Decimal] = None  # unit price the buyer saw in the cart
    variant_id: Optional[str] = None


@dataclass
class CheckoutMetadata:
    email: str
    order_id: str
    user_id: Optional[str] = None
    shipping_cost: Decimal = Decimal("0")
    tax: Decimal = Decimal("0")
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None


def get_pseudo_product_cache() -> KeyValueCache:
    return RedisCache(get_redis_client, prefix="pseudo_product", ttl=settings.PSEUDO_PRODUCT_CACHE_TTL)


def effective_stock(product: Product, variant_id: Optional[str]) -> int:
    """Variant stock when the selected variant tracks it, product stock otherwise"""
    variant = product.find_variant(variant_id)
    if variant is not None and variant.get("stock_quantity") is not None:
        return int(variant["stock_quantity"])
    return int(product.stock_quantity or 0)


def catalog_price(product: Product, variant_id: Optional[str]) -> Decimal:
    variant = product.find_variant(variant_id)
    if variant is not None and variant.get("price") is not None:
        return to_decimal(variant["price"])
    return to_decimal(product.price)


def fallback_redirect_urls(tenant: Optional[Tenant], tenant_id: str, order_id: str) -> Dict[str, str]:
    """Tenant-aware success/cancel URLs; local development serves shops under /sites/<tenant>"""
    base = ((tenant.base_url if tenant else None) or settings.FRONTEND_URL or "http://localhost:3000").rstrip("/")
    if "localhost" in base or "127.0.0.1" in base:
        checkout_url = f"{base}/sites/{tenant_id}/checkout"
    else:
        checkout_url = f"{base}/checkout"
    return {
        "success_url": f"{checkout_url}?payment=success&orderId={order_id}",
        "cancel_url": f"{checkout_url}?payment=cancel&orderId={order_id}",
    }


def sync_product_to_gateway(db: Session, gateway: StripeGateway, product: Product) -> str:
    """Register a catalog product with Stripe, or refresh an already registered one"""
    images = [image for image in (product.images or []) if isinstance(image, str)]
    if product.gateway_product_id:
        gateway.update_product(product.gateway_product_id, product.title, product.description, images)
        return product.gateway_product_id

    product.gateway_product_id = gateway.create_product(
        name=product.title,
        description=product.description,
        images=images,
        metadata={"tenant_id": product.tenant_id, "product_id": str(product.id)},
        default_price_cents=to_cents(product.price),
    )
    db.commit()
    logger.info(f"Registered product {product.id} with Stripe as {product.gateway_product_id}")
    return product.gateway_product_id


class CheckoutSessionBuilder:
    """Builds a hosted checkout session whose line items carry freshly minted,
    single-use prices at the amounts the buyer saw in the cart."""

    def __init__(self, db: Session, resolver: Optional[CredentialResolver] = None,
                 pseudo_product_cache: Optional[KeyValueCache] = None, gateway_factory=StripeGateway):
        self.db = db
        self.resolver = resolver or CredentialResolver(db)
        self.pseudo_product_cache = pseudo_product_cache if pseudo_product_cache is not None else get_pseudo_product_cache()
        self.gateway_factory = gateway_factory

    def build(self, tenant_id: str, items: List[CheckoutItem], metadata: CheckoutMetadata) -> Dict[str, str]:
        """
        Create a hosted checkout session.

        Args:
            tenant_id: Shop the checkout belongs to
            items: Cart lines with the unit price shown to the buyer
            metadata: Buyer, order and redirect details

        Returns:
            Dict with session_id and url

        Raises:
            IntegrationNotConfigured, ProductNotFound, InsufficientStock,
            CheckoutSessionFailed
        """
        credentials = self.resolver.resolve(tenant_id)
        if credentials is None:
            checkout_sessions_counter.labels(status="not_configured").inc()
            checkout_logger.warning(f"Checkout attempted for tenant {tenant_id} without Stripe configuration")
            raise IntegrationNotConfigured(tenant_id)

        products = self._load_products(tenant_id, items)
        self._check_stock(items, products)

        gateway = self.gateway_factory(credentials)
        mode = "test" if credentials.is_test_mode else "live"
        try:
            line_items = []
            for item in items:
                product = products[item.product_id]
                if not product.gateway_product_id:
                    sync_product_to_gateway(self.db, gateway, product)
                unit_price = item.price if item.price is not None else catalog_price(product, item.variant_id)
                price_id = gateway.create_price(product.gateway_product_id, to_cents(unit_price))
                line_items.append({"price": price_id, "quantity": int(item.quantity)})

            shipping_cost = round_money(metadata.shipping_cost)
            if shipping_cost > 0:
                self._append_fee_line(line_items, gateway, tenant_id, mode, SHIPPING_PRODUCT_TAG,
                                      SHIPPING_PRODUCT_NAME, shipping_cost)

            tax = round_money(metadata.tax)
            if tax > 0:
                self._append_fee_line(line_items, gateway, tenant_id, mode, TAX_PRODUCT_TAG,
                                      TAX_PRODUCT_NAME, tax)

            tenant = self.db.query(Tenant).filter(Tenant.tenant_id == tenant_id).first()
            urls = fallback_redirect_urls(tenant, tenant_id, metadata.order_id)
            session = gateway.create_checkout_session({
                "mode": "payment",
                "line_items": line_items,
                "success_url": metadata.success_url or urls["success_url"],
                "cancel_url": metadata.cancel_url or urls["cancel_url"],
                "customer_email": metadata.email,
                "customer_creation": "always",
                "metadata": {
                    "tenant_id": tenant_id,
                    "user_id": metadata.user_id or "",
                    "order_id": metadata.order_id,
                    "shipping_cost": str(shipping_cost),
                    "tax": str(tax),
                },
            })
        except stripe.StripeError as e:
            checkout_sessions_counter.labels(status="failed").inc()
            checkout_logger.error(f"Stripe error building checkout for tenant {tenant_id}, order {metadata.order_id}: {e}")
            raise CheckoutSessionFailed()

        checkout_sessions_counter.labels(status="created").inc()
        checkout_logger.info(
            f"Created checkout session {session['id']} for tenant {tenant_id}, order {metadata.order_id} "
            f"({len(line_items)} line items)"
        )
        return {"session_id": session["id"], "url": session["url"]}

    def _load_products(self, tenant_id: str, items: List[CheckoutItem]) -> Dict[str, Product]:
        product_ids = {item.product_id for item in items}
        if not product_ids:
            raise ProductNotFound("No products to check out")
        products = self.db.query(Product).filter(
            Product.tenant_id == tenant_id,
            Product.id.in_(product_ids)
        ).all()
        if len(products) != len(product_ids):
            raise ProductNotFound()
        return {product.id: product for product in products}

    @staticmethod
    def _check_stock(items: List[CheckoutItem], products: Dict[str, Product]) -> None:
        # Lines for the same product and variant draw on the same stock
        requested = defaultdict(int)
        for item in items:
            requested[(item.product_id, item.variant_id)] += int(item.quantity)

        for (product_id, variant_id), quantity in requested.items():
            product = products[product_id]
            available = effective_stock(product, variant_id)
            if quantity > available:
                raise InsufficientStock(product.title, quantity, available)

    def _append_fee_line(self, line_items: List[Dict[str, Any]], gateway: StripeGateway, tenant_id: str,
                         mode: str, tag: str, name: str, amount: Decimal) -> None:
        """Append a shipping/tax line; a failure is logged and the checkout goes on without it.

        A cached product id may point at a product archived in Stripe since, so
        the first failure drops the cache entry and the lookup runs once more.
        """
        cache_key = f"{tenant_id}:{mode}:{tag}"
        for attempt in range(2):
            try:
                product_id = self._tagged_product_id(gateway, cache_key, tenant_id, tag, name)
                price_id = gateway.create_price(product_id, to_cents(amount))
                line_items.append({"price": price_id, "quantity": 1})
                return
            except stripe.StripeError as e:
                self.pseudo_product_cache.delete(cache_key)
                if attempt == 0:
                    logger.info(f"Retrying {tag} line for tenant {tenant_id} without cached product: {e}")
                    continue
                checkout_logger.warning(f"Could not add {tag} line of {amount} for tenant {tenant_id}: {e}")

    def _tagged_product_id(self, gateway: StripeGateway, cache_key: str, tenant_id: str, tag: str, name: str) -> str:
        cached = self.pseudo_product_cache.get(cache_key)
        if cached:
            return cached

        found = gateway.search_product_ids(f"metadata['tenant_id']:'{tenant_id}' AND metadata['type']:'{tag}'")
        if found:
            product_id = found[0]
        else:
            product_id = gateway.create_product(name=name, metadata={"tenant_id": tenant_id, "type": tag})
            logger.info(f"Created {tag} product {product_id} for tenant {tenant_id}")
        self.pseudo_product_cache.set(cache_key, product_id)
        return product_id


def finalize_checkout(db: Session, tenant_id: str, cart_id: str, email: str, delivery_method: str,
                      shipping_address: Optional[dict] = None, billing_address: Optional[dict] = None,
                      user_id: Optional[str] = None, success_url: Optional[str] = None,
                      cancel_url: Optional[str] = None,
                      builder: Optional[CheckoutSessionBuilder] = None) -> Dict[str, Any]:
    """
    Turn a cart into a Pending order with a hosted checkout session.

    Shipping and VAT are computed server-side from the tenant's settings. The
    session is built before anything is written, so a failed build leaves no
    order behind and the cart intact. On success exactly one order is stored
    and the cart is emptied.
    """
    method = parse_delivery_method(delivery_method)

    cart = db.query(Cart).filter(Cart.id == cart_id, Cart.tenant_id == tenant_id).first()
    if not cart:
        raise CartNotFound()
    if not cart.items:
        raise EmptyCart()

    tenant = db.query(Tenant).filter(Tenant.tenant_id == tenant_id).first()
    if tenant is None:
        raise IntegrationNotConfigured(tenant_id)

    product_ids = {line["product_id"] for line in cart.items}
    products = {
        product.id: product
        for product in db.query(Product).filter(Product.tenant_id == tenant_id, Product.id.in_(product_ids)).all()
    }
    if len(products) != len(product_ids):
        raise ProductNotFound()

    order_items = []
    checkout_items = []
    shipping_items = []
    for line in cart.items:
        product = products[line["product_id"]]
        variant_id = line.get("variant_id")
        quantity = int(line.get("quantity") or 0)
        unit_price = line.get("unit_price")
        price = round_money(unit_price) if unit_price is not None else catalog_price(product, variant_id)

        order_items.append({
            "product_id": product.id,
            "variant_id": variant_id,
            "title": product.title,
            "quantity": quantity,
            "price": str(price),
        })
        checkout_items.append(CheckoutItem(product_id=product.id, quantity=quantity, price=price, variant_id=variant_id))
        shipping_items.append(ShippingItem(quantity=quantity, override_cost=product.delivery_cost_override))

    subtotal = round_money(sum((to_decimal(item["price"]) * item["quantity"] for item in order_items), Decimal("0")))
    shipping_cost = compute_shipping_cost(normalize_delivery_options(tenant.delivery_options), method, shipping_items)
    vat_rate = tenant.vat_rate if tenant.vat_rate is not None else settings.DEFAULT_VAT_RATE
    tax = compute_tax(subtotal, shipping_cost, vat_rate, tenant.price_mode)
    total = round_money(subtotal + shipping_cost + tax)

    email = email.strip().lower()
    order_id = str(uuid.uuid4())
    builder = builder or CheckoutSessionBuilder(db)
    session = builder.build(tenant_id, checkout_items, CheckoutMetadata(
        email=email,
        order_id=order_id,
        user_id=user_id,
        shipping_cost=shipping_cost,
        tax=tax,
        success_url=success_url,
        cancel_url=cancel_url,
    ))

    order = Order(
        id=order_id,
        tenant_id=tenant_id,
        user_id=user_id,
        email=email,
        items=order_items,
        subtotal=subtotal,
        shipping_cost=shipping_cost,
        tax=tax,
        total=total,
        delivery_method=method.value,
        shipping_address=shipping_address,
        billing_address=billing_address or shipping_address,
        status=OrderStatus.PENDING,
        payment_status=PaymentStatus.PENDING,
        gateway_session_id=session["session_id"],
    )
    db.add(order)
    cart.items = []
    db.commit()

    checkout_logger.info(f"Order {order_id} created for tenant {tenant_id} (total {total})")
    return {
        "order_id": order_id,
        "session_id": session["session_id"],
        "url": session["url"],
        "subtotal": subtotal,
        "shipping_cost": shipping_cost,
        "tax": tax,
        "total": total,
    }
