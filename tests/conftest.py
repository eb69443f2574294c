from __future__ import annotations

import os

# Settings are read at import time; keep tests off the on-disk database and without delays.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SEND_DELAY_SECONDS", "0")
os.environ.setdefault("SWEEP_PAUSE_SECONDS", "0")
os.environ.setdefault("ADMIN_PASSWORD", "2345")

from datetime import date, datetime
from decimal import Decimal
from typing import Iterator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from notice_dispatch import crud
from notice_dispatch.channel import ChannelResult
from notice_dispatch.db import Base
from notice_dispatch.dispatch import DispatchCoordinator
from notice_dispatch.models import Client, Invoice
from notice_dispatch.schemas import InvoiceOut
from notice_dispatch.store import InvoiceStore

FIXED_NOW = datetime(2024, 5, 10, 14, 30, 0)


class ScriptedChannel:
    """Channel returning queued results in order; success once the queue is empty."""

    def __init__(self, *results: ChannelResult | Exception):
        self.results = list(results)
        self.calls: list[str] = []

    def send(self, invoice: InvoiceOut) -> ChannelResult:
        self.calls.append(invoice.id)
        if not self.results:
            return ChannelResult.ok()
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture
def session_factory() -> Iterator[sessionmaker[Session]]:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autoflush=False, autocommit=False)
    engine.dispose()


@pytest.fixture
def db(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def store(session_factory: sessionmaker[Session]) -> InvoiceStore:
    return InvoiceStore(session_factory)


@pytest.fixture
def channel() -> ScriptedChannel:
    return ScriptedChannel()


@pytest.fixture
def coordinator(store: InvoiceStore, channel: ScriptedChannel) -> DispatchCoordinator:
    return DispatchCoordinator(store, channel, sweep_pause_seconds=0, clock=lambda: FIXED_NOW)


@pytest.fixture
def client_record(db: Session) -> Client:
    return crud.create_client(
        db,
        name="Maria Souza",
        cpf="12345678901",
        birth_date=date(1985, 3, 20),
        email="maria@example.com",
        phone="+55 21 99999-0000",
    )


@pytest.fixture
def invoices(db: Session, client_record: Client) -> list[Invoice]:
    return [
        crud.create_invoice(db, client_record, "001", Decimal("1500.00"), date(2024, 6, 10), "Parcela 1"),
        crud.create_invoice(db, client_record, "002", Decimal("1500.00"), date(2024, 7, 10), "Parcela 2"),
        crud.create_invoice(db, client_record, "003", Decimal("1500.00"), date(2024, 8, 10), "Parcela 3"),
    ]


def make_invoice(**overrides) -> InvoiceOut:
    data = {
        "id": "inv-1",
        "client_id": "client-1",
        "invoice_number": "001",
        "description": "Parcela 1",
        "amount": Decimal("1500.00"),
        "due_date": date(2024, 6, 10),
    }
    data.update(overrides)
    return InvoiceOut(**data)
