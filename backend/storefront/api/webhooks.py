"""Stripe webhook route"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from storefront.api.deps import get_credential_resolver
from storefront.db.session import get_db
from storefront.services.credentials import CredentialResolver
from storefront.services.webhook_service import WebhookState, process_webhook

router = APIRouter(prefix="/api/shop", tags=["webhooks"])
logger = logging.getLogger(__name__)


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    tenant_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    resolver: CredentialResolver = Depends(get_credential_resolver)
):
    """Handle Stripe webhook events for any shop

    The body must reach this route as raw bytes for signature verification.
    Rejected deliveries get 400; handler failures get 500 so Stripe redelivers.
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")
    tenant_hint = request.headers.get("x-tenant-id") or tenant_id

    result = process_webhook(payload, sig_header, tenant_hint, db, resolver=resolver)

    if result.state == WebhookState.REJECTED:
        return JSONResponse(status_code=400, content={"received": False, "error": result.error})
    if result.state == WebhookState.HANDLER_FAILED:
        return JSONResponse(status_code=500, content={"received": False, "error": "Webhook handler failed"})
    return {"received": True, "outcome": result.outcome}
