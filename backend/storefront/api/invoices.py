"""Invoice API routes"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from storefront.api.deps import get_credential_resolver, get_customer_email, get_tenant_id
from storefront.db.session import get_db
from storefront.schemas.invoices import InvoiceListResponse
from storefront.services.credentials import CredentialResolver
from storefront.services.reconciliation_service import InvoiceReconciler, summarize_invoices

router = APIRouter(prefix="/api/shop/invoices", tags=["invoices"])
logger = logging.getLogger(__name__)


@router.get("/me", response_model=InvoiceListResponse)
def list_my_invoices(
    tenant_id: str = Depends(get_tenant_id),
    email: str = Depends(get_customer_email),
    db: Session = Depends(get_db),
    resolver: CredentialResolver = Depends(get_credential_resolver)
):
    """List the signed-in buyer's invoices and paid orders, newest first"""
    invoices = InvoiceReconciler(db, resolver=resolver).list_customer_invoices(tenant_id, email)
    return {"invoices": invoices, "summary": summarize_invoices(invoices)}
