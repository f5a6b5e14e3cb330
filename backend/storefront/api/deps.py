"""Request-scoped dependencies shared by the shop routers

Authentication happens upstream: the gateway in front of this service
forwards the shop and the signed-in buyer as headers.
"""
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from storefront.db.session import get_db
from storefront.services.credentials import CredentialResolver


def get_tenant_id(x_tenant_id: Optional[str] = Header(None)) -> str:
    if not x_tenant_id:
        raise HTTPException(400, "Missing X-Tenant-Id header")
    return x_tenant_id


def get_customer_email(x_customer_email: Optional[str] = Header(None)) -> str:
    if not x_customer_email:
        raise HTTPException(401, "Not authenticated")
    return x_customer_email.strip().lower()


def get_user_id(x_user_id: Optional[str] = Header(None)) -> Optional[str]:
    return x_user_id or None


def get_credential_resolver(request: Request, db: Session = Depends(get_db)) -> CredentialResolver:
    """Resolver backed by the credential cache created in the app lifespan"""
    return CredentialResolver(db, cache=request.app.state.credential_cache)
