"""Checkout API routes"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from storefront.api.deps import get_credential_resolver, get_tenant_id, get_user_id
from storefront.db.session import get_db
from storefront.schemas.checkout import (
    CheckoutSessionRequest,
    CheckoutSessionResponse,
    FinalizeCheckoutRequest,
    FinalizeCheckoutResponse,
)
from storefront.services.checkout_service import (
    CheckoutItem,
    CheckoutMetadata,
    CheckoutSessionBuilder,
    finalize_checkout,
)
from storefront.services.credentials import CredentialResolver

router = APIRouter(prefix="/api/shop/checkout", tags=["checkout"])
logger = logging.getLogger(__name__)


@router.post("", response_model=FinalizeCheckoutResponse)
def create_order_checkout(
    request: FinalizeCheckoutRequest,
    tenant_id: str = Depends(get_tenant_id),
    user_id: Optional[str] = Depends(get_user_id),
    db: Session = Depends(get_db),
    resolver: CredentialResolver = Depends(get_credential_resolver)
):
    """Create a Pending order from the cart and return the hosted checkout URL"""
    return finalize_checkout(
        db,
        tenant_id=tenant_id,
        cart_id=request.cart_id,
        email=request.email,
        delivery_method=request.delivery_method,
        shipping_address=request.shipping_address.model_dump(),
        billing_address=request.billing_address.model_dump() if request.billing_address else None,
        user_id=user_id,
        success_url=request.success_url,
        cancel_url=request.cancel_url,
        builder=CheckoutSessionBuilder(db, resolver=resolver),
    )


@router.post("/session", response_model=CheckoutSessionResponse)
def create_checkout_session(
    request: CheckoutSessionRequest,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    resolver: CredentialResolver = Depends(get_credential_resolver)
):
    """Build a hosted checkout session for explicit items"""
    items = [
        CheckoutItem(product_id=item.product_id, quantity=item.quantity, price=item.price, variant_id=item.variant_id)
        for item in request.items
    ]
    metadata = CheckoutMetadata(
        email=request.email.lower(),
        order_id=request.order_id,
        user_id=request.user_id,
        shipping_cost=request.shipping_cost,
        tax=request.tax,
        success_url=request.success_url,
        cancel_url=request.cancel_url,
    )
    return CheckoutSessionBuilder(db, resolver=resolver).build(tenant_id, items, metadata)
