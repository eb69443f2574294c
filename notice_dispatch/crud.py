import hmac
from datetime import date
from decimal import Decimal
from sqlalchemy.orm import Session
from sqlalchemy import and_
from notice_dispatch.models import Client, Invoice, PaymentStatus
from notice_dispatch.formatting import format_cpf
from notice_dispatch.config import settings

def check_admin_password(password: str | None) -> bool:
    return hmac.compare_digest((password or "").encode(), settings.admin_password.encode())

def find_client_by_cpf(db: Session, cpf: str) -> Client | None:
    return db.query(Client).filter(Client.cpf == format_cpf(cpf)).one_or_none()

def authenticate_client(db: Session, cpf: str, birth_date: date) -> Client | None:
    """Portal login: the client whose CPF and birth date both match, if any."""
    return db.query(Client).filter(and_(Client.cpf == format_cpf(cpf),
                                        Client.birth_date == birth_date)).one_or_none()

def create_client(
    db: Session,
    name: str,
    cpf: str,
    birth_date: date,
    email: str = "",
    phone: str | None = None,
) -> Client:
    masked = format_cpf(cpf)
    existing = db.query(Client).filter(Client.cpf == masked).one_or_none()
    if existing:
        return existing

    client = Client(name=name, email=email, cpf=masked, birth_date=birth_date, phone=phone)
    db.add(client)
    db.commit()
    db.refresh(client)
    return client

def create_invoice(
    db: Session,
    client: Client,
    invoice_number: str,
    amount: Decimal,
    due_date: date,
    description: str = "",
    status: PaymentStatus = PaymentStatus.PENDING,
) -> Invoice:
    if Decimal(amount) < 0:
        raise ValueError("Invoice amount cannot be negative")

    # New invoices start with no dispatch history
    inv = Invoice(
        client_id=client.id,
        invoice_number=invoice_number,
        description=description,
        amount=Decimal(amount),
        due_date=due_date,
        status=status,
        sent=False,
        attempts=0,
    )
    db.add(inv)
    db.commit()
    db.refresh(inv)
    return inv

def update_payment_status(db: Session, inv: Invoice, status: PaymentStatus) -> Invoice:
    inv.status = status
    db.commit()
    db.refresh(inv)
    return inv
