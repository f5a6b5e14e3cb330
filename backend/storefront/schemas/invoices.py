"""Pydantic schemas for reconciled invoices"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel


class InvoiceRecord(BaseModel):
    id: str
    invoice_number: str
    amount: Decimal
    currency: str
    status: str  # 'paid', 'pending' or 'cancelled'
    date: datetime
    due_date: Optional[datetime] = None
    description: Optional[str] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    hosted_invoice_url: Optional[str] = None
    invoice_pdf_url: Optional[str] = None
    stripe_invoice_id: Optional[str] = None
    stripe_session_id: Optional[str] = None
    linked_order_id: Optional[str] = None
    source: str  # 'invoice' or 'checkout_session'


class InvoiceSummary(BaseModel):
    total: int
    total_amount: Decimal
    paid: int
    pending: int
    cancelled: int


class InvoiceListResponse(BaseModel):
    invoices: List[InvoiceRecord]
    summary: InvoiceSummary
