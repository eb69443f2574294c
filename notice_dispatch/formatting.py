"""Display helpers for the dashboard and the client portal (pt-BR)."""
import re
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP

from notice_dispatch.dispatch import DispatchState, SendOutcome, classify
from notice_dispatch.schemas import InvoiceOut

STATUS_LABELS = {
    DispatchState.SENT: "Enviado",
    DispatchState.FAILED: "Falhou",
    DispatchState.PENDING: "Pendente",
}

_CPF_DIGITS = re.compile(r"\D")


def format_currency(value) -> str:
    """Format an amount as Brazilian reais, e.g. R$ 1.234,56."""
    amount = Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    sign = "-" if amount < 0 else ""
    integer, _, cents = f"{abs(amount):.2f}".partition(".")
    groups = []
    while integer:
        groups.insert(0, integer[-3:])
        integer = integer[:-3]
    return f"{sign}R$ {'.'.join(groups)},{cents}"


def format_date(value: date) -> str:
    return value.strftime("%d/%m/%Y")


def format_datetime(value: datetime) -> str:
    return value.strftime("%d/%m/%Y %H:%M:%S")


def format_cpf(cpf: str) -> str:
    """Mask a CPF as 000.000.000-00. Input with anything but 11 digits is returned as digits."""
    digits = _CPF_DIGITS.sub("", cpf or "")
    if len(digits) != 11:
        return digits
    return f"{digits[:3]}.{digits[3:6]}.{digits[6:9]}-{digits[9:]}"


def status_label(invoice: InvoiceOut) -> str:
    return STATUS_LABELS[classify(invoice)]


def send_button_label(invoice: InvoiceOut) -> str | None:
    # Sent invoices get no button on the dashboard
    state = classify(invoice)
    if state is DispatchState.SENT:
        return None
    return "Reenviar" if state is DispatchState.FAILED else "Enviar"


def describe_invoice(invoice: InvoiceOut) -> list[str]:
    """Lines shown on an invoice card."""
    lines = [
        f"Boleto #{invoice.invoice_number} - {status_label(invoice)}",
        invoice.description,
        format_currency(invoice.amount),
        f"Vencimento: {format_date(invoice.due_date)}",
    ]
    if invoice.sent_at:
        lines.append(f"Enviado em: {format_datetime(invoice.sent_at)}")
    if invoice.last_error:
        lines.append(f"Erro: {invoice.last_error}")
    if invoice.attempts > 0:
        lines.append(f"Tentativas: {invoice.attempts}")
    return lines


def outcome_notice(outcome: SendOutcome) -> dict[str, str]:
    """Transient notice for the most recent send."""
    if outcome.success:
        return {"title": "Enviado com sucesso!", "description": outcome.message, "variant": "default"}
    return {"title": "Falha no envio", "description": outcome.message, "variant": "destructive"}


def invoice_card(invoice: InvoiceOut) -> dict:
    return {
        "id": invoice.id,
        "status_label": status_label(invoice),
        "button_label": send_button_label(invoice),
        "lines": describe_invoice(invoice),
    }
