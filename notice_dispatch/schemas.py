from datetime import date, datetime
from decimal import Decimal
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from notice_dispatch.models import PaymentStatus

class InvoiceOut(BaseModel):
    """Read-only view of an invoice. Updates produce new instances via model_copy."""
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: str  # UUID stored as string for portability
    client_id: str
    invoice_number: str
    description: str = ""
    amount: Decimal = Field(ge=0)
    due_date: date
    status: PaymentStatus = PaymentStatus.PENDING

    sent: bool = False
    sent_at: Optional[datetime] = None
    last_error: Optional[str] = None
    attempts: int = Field(default=0, ge=0)

class ClientOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    email: str
    cpf: str
    birth_date: date
    phone: Optional[str] = None

class PortalLogin(BaseModel):
    cpf: str
    birth_date: date

class DispatchSummary(BaseModel):
    total: int = 0
    sent: int = 0
    unsent: int = 0
    failed: int = 0
    never_attempted: int = 0

class InvoiceCard(BaseModel):
    id: str
    status_label: str
    button_label: Optional[str] = None
    lines: list[str]

class Notice(BaseModel):
    title: str
    description: str
    variant: str

class ClientInvoices(BaseModel):
    client: ClientOut
    invoices: list[InvoiceOut]
    cards: list[InvoiceCard] = []
    summary: DispatchSummary

class SendOneResponse(BaseModel):
    invoice: InvoiceOut
    success: bool
    message: str
    state: str
    notice: Notice

class SweepResponse(BaseModel):
    invoices: list[InvoiceOut]
    attempted: int
    succeeded: int
    failed: int
    skipped: list[str]
    aborted: bool
    cancelled: bool = False
    error: Optional[str] = None
    summary: DispatchSummary
