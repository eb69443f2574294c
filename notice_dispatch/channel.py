"""
Notification channels.

A channel attempts to deliver one payment notice for one invoice and reports
success or a failure reason. There is no delivery receipt.
"""
import logging
import random
import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from notice_dispatch.schemas import InvoiceOut

logger = logging.getLogger(__name__)

WHATSAPP_CONNECTION_ERROR = "Falha na conexão com WhatsApp API"


@dataclass(frozen=True)
class ChannelResult:
    success: bool
    reason: Optional[str] = None

    @classmethod
    def ok(cls) -> "ChannelResult":
        return cls(success=True)

    @classmethod
    def fail(cls, reason: str) -> "ChannelResult":
        return cls(success=False, reason=reason)


class NotificationChannel(Protocol):
    def send(self, invoice: InvoiceOut) -> ChannelResult:
        ...


class SimulatedWhatsAppChannel:
    """
    Stand-in for the WhatsApp API: waits a fixed delay, then fails with
    probability `failure_rate`.
    """

    def __init__(
        self,
        failure_rate: float = 0.2,
        delay_seconds: float = 1.5,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if not 0 <= failure_rate <= 1:
            raise ValueError(f"failure_rate must be between 0 and 1, got {failure_rate}")
        self.failure_rate = failure_rate
        self.delay_seconds = delay_seconds
        self._rng = rng or random.Random()
        self._sleep = sleep

    def send(self, invoice: InvoiceOut) -> ChannelResult:
        if self.delay_seconds:
            self._sleep(self.delay_seconds)

        if self._rng.random() < self.failure_rate:
            logger.debug(f"Simulated WhatsApp failure for invoice {invoice.invoice_number}")
            return ChannelResult.fail(WHATSAPP_CONNECTION_ERROR)

        return ChannelResult.ok()
