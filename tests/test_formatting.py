from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

import pytest

from conftest import FIXED_NOW, make_invoice
from notice_dispatch.dispatch import SendOutcome
from notice_dispatch.formatting import (
    describe_invoice,
    format_cpf,
    format_currency,
    format_date,
    format_datetime,
    outcome_notice,
    send_button_label,
    status_label,
)


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (Decimal("0"), "R$ 0,00"),
        (Decimal("99.9"), "R$ 99,90"),
        (Decimal("1500"), "R$ 1.500,00"),
        (Decimal("1234567.891"), "R$ 1.234.567,89"),
        (12.5, "R$ 12,50"),
    ],
)
def test_format_currency(value, expected: str) -> None:
    assert format_currency(value) == expected


def test_format_dates() -> None:
    assert format_date(date(2024, 6, 5)) == "05/06/2024"
    assert format_datetime(datetime(2024, 6, 5, 9, 3, 7)) == "05/06/2024 09:03:07"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("12345678901", "123.456.789-01"),
        ("123.456.789-01", "123.456.789-01"),
        ("123 456 789 01", "123.456.789-01"),
        ("1234", "1234"),
        ("", ""),
    ],
)
def test_format_cpf(raw: str, expected: str) -> None:
    assert format_cpf(raw) == expected


def test_status_labels_and_buttons() -> None:
    pending = make_invoice()
    failed = make_invoice(attempts=1, last_error="timeout")
    sent = make_invoice(sent=True, attempts=1, sent_at=FIXED_NOW)

    assert [status_label(inv) for inv in (pending, failed, sent)] == ["Pendente", "Falhou", "Enviado"]
    assert [send_button_label(inv) for inv in (pending, failed, sent)] == ["Enviar", "Reenviar", None]


def test_describe_failed_invoice() -> None:
    lines = describe_invoice(make_invoice(attempts=2, last_error="timeout"))

    assert lines == [
        "Boleto #001 - Falhou",
        "Parcela 1",
        "R$ 1.500,00",
        "Vencimento: 10/06/2024",
        "Erro: timeout",
        "Tentativas: 2",
    ]


def test_describe_sent_invoice_shows_send_time() -> None:
    lines = describe_invoice(make_invoice(sent=True, attempts=1, sent_at=FIXED_NOW))

    assert "Enviado em: 10/05/2024 14:30:00" in lines


def test_outcome_notice() -> None:
    ok = SendOutcome(invoice=make_invoice(), success=True, message="Boleto 001 enviado via WhatsApp")
    failed = SendOutcome(invoice=make_invoice(), success=False, message="timeout")

    assert outcome_notice(ok)["title"] == "Enviado com sucesso!"
    assert outcome_notice(failed) == {"title": "Falha no envio", "description": "timeout", "variant": "destructive"}
