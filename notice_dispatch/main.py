from fastapi import FastAPI, Depends, Header, HTTPException, Response
from sqlalchemy import text
from sqlalchemy.orm import Session
import uuid
import logging

from notice_dispatch.db import Base, engine, get_db, SessionLocal
from notice_dispatch.schemas import (
    ClientInvoices, ClientOut, DispatchSummary, PortalLogin, SendOneResponse, SweepResponse,
)
from notice_dispatch import crud
from notice_dispatch.models import Client
from notice_dispatch.config import settings
from notice_dispatch.channel import SimulatedWhatsAppChannel
from notice_dispatch.store import InvoiceStore
from notice_dispatch.formatting import invoice_card, outcome_notice
from notice_dispatch.dispatch import (
    AlreadyInProgressError, DispatchCoordinator, InvalidInvoiceError, InvoiceNotFoundError,
    StoreError, summarize,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Configure FastAPI based on demo mode
if settings.demo_mode:
    app = FastAPI(title="Payment Notice Dispatch", docs_url=None, redoc_url=None)
else:
    app = FastAPI(title="Payment Notice Dispatch")

# One coordinator per process so the in-flight set covers every request
coordinator = DispatchCoordinator(
    store=InvoiceStore(SessionLocal),
    channel=SimulatedWhatsAppChannel(
        failure_rate=settings.failure_rate,
        delay_seconds=settings.send_delay_seconds,
    ),
    sweep_pause_seconds=settings.sweep_pause_seconds,
)

def get_coordinator() -> DispatchCoordinator:
    return coordinator

def require_admin(x_admin_password: str | None = Header(default=None)):
    if not crud.check_admin_password(x_admin_password):
        raise HTTPException(status_code=401, detail="Senha incorreta")

# Startup self-checks and schema creation
@app.on_event("startup")
async def startup_checks():
    """Log the dispatch configuration and make sure the schema exists."""
    logger.info(f"Invoice store: {engine.dialect.name} ({settings.database_url.split('@')[-1]})")
    logger.info(
        f"WhatsApp channel (simulated): failure_rate={settings.failure_rate}, "
        f"delay={settings.send_delay_seconds}s, sweep pause={settings.sweep_pause_seconds}s"
    )

    try:
        Base.metadata.create_all(bind=engine)
    except Exception as e:
        # Don't block startup - health check will catch this
        logger.error(f"Schema creation failed: {e}")

# Create tables on module load (fallback if startup event doesn't fire)
try:
    Base.metadata.create_all(bind=engine)
except Exception as e:
    logger.warning(f"Schema creation on module load failed (may be expected): {e}")

@app.get("/health")
def health_check(db: Session = Depends(get_db)):
    """Health check endpoint for cloud platform monitoring."""
    try:
        db.execute(text("SELECT 1"))
        db_status = "connected"
    except Exception as e:
        logger.warning(f"Health check: database connection failed: {e}")
        db_status = "disconnected"

    return {
        "status": "healthy",
        "service": "notice-dispatch",
        "database": db_status,
        "demo_mode": settings.demo_mode
    }

def _validate_id(value: str, label: str) -> None:
    try:
        uuid.UUID(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {label} ID format")

def _client_invoices(client: Client, dispatcher: DispatchCoordinator) -> ClientInvoices:
    try:
        invoices = dispatcher.store.list(client_id=client.id, descending=True)
    except StoreError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return ClientInvoices(
        client=ClientOut.model_validate(client),
        invoices=invoices,
        cards=[invoice_card(inv) for inv in invoices],
        summary=summarize(invoices),
    )

# ---- Client portal ----
@app.post("/portal/login", response_model=ClientInvoices)
def portal_login(
    payload: PortalLogin,
    db: Session = Depends(get_db),
    dispatcher: DispatchCoordinator = Depends(get_coordinator),
):
    client = crud.authenticate_client(db, payload.cpf, payload.birth_date)
    if client is None:
        raise HTTPException(status_code=401, detail="CPF ou data de nascimento incorretos")
    logger.info(f"Portal login: client {client.id}")
    return _client_invoices(client, dispatcher)

# ---- Admin dashboard ----
@app.get("/admin/clients/{cpf}/invoices", response_model=ClientInvoices, dependencies=[Depends(require_admin)])
def search_client(
    cpf: str,
    db: Session = Depends(get_db),
    dispatcher: DispatchCoordinator = Depends(get_coordinator),
):
    client = crud.find_client_by_cpf(db, cpf)
    if client is None:
        raise HTTPException(status_code=404, detail="Cliente não encontrado")
    return _client_invoices(client, dispatcher)

@app.get("/admin/clients/{client_id}/invoices/summary", response_model=DispatchSummary, dependencies=[Depends(require_admin)])
def client_summary(
    client_id: str,
    db: Session = Depends(get_db),
    dispatcher: DispatchCoordinator = Depends(get_coordinator),
):
    _validate_id(client_id, "client")
    client = db.get(Client, client_id)
    if client is None:
        raise HTTPException(status_code=404, detail="Cliente não encontrado")
    return _client_invoices(client, dispatcher).summary

@app.post("/admin/invoices/{invoice_id}/send", response_model=SendOneResponse, dependencies=[Depends(require_admin)])
def send_invoice(invoice_id: str, dispatcher: DispatchCoordinator = Depends(get_coordinator)):
    _validate_id(invoice_id, "invoice")
    try:
        outcome = dispatcher.send_one(invoice_id)
    except InvoiceNotFoundError:
        raise HTTPException(status_code=404, detail="Invoice not found")
    except InvalidInvoiceError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except AlreadyInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except StoreError as e:
        raise HTTPException(status_code=503, detail=f"Erro inesperado ao enviar boleto: {e}")

    return SendOneResponse(
        invoice=outcome.invoice,
        success=outcome.success,
        message=outcome.message,
        state=outcome.state.value,
        notice=outcome_notice(outcome),
    )

@app.post("/admin/clients/{client_id}/invoices/send-pending", response_model=SweepResponse, dependencies=[Depends(require_admin)])
def send_all_pending(
    client_id: str,
    response: Response,
    db: Session = Depends(get_db),
    dispatcher: DispatchCoordinator = Depends(get_coordinator),
):
    _validate_id(client_id, "client")
    client = db.get(Client, client_id)
    if client is None:
        raise HTTPException(status_code=404, detail="Cliente não encontrado")

    invoices = _client_invoices(client, dispatcher).invoices
    sweep = dispatcher.send_all_pending(invoices)
    if sweep.aborted:
        # Body still carries the invoices committed before the failure
        response.status_code = 503

    return SweepResponse(
        invoices=sweep.invoices,
        attempted=sweep.attempted,
        succeeded=sweep.succeeded,
        failed=sweep.failed,
        skipped=sweep.skipped,
        aborted=sweep.aborted,
        cancelled=sweep.cancelled,
        error=sweep.error,
        summary=summarize(sweep.invoices),
    )

def run():
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
