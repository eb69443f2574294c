"""
Payment-notice dispatch.

The coordinator sends notices for invoices through a notification channel,
one at a time, and records every attempt in the invoice store:

    Pending --fail--> Failed --fail--> Failed
       |                 |
       +----success------+--success--> Sent

A sent invoice can be sent again by hand; only the send-all sweep skips it.
Every attempt starts from the stored row, so a caller holding an old copy of
an invoice can never lower its attempt counter.
"""
import enum
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence

from pydantic import ValidationError

from notice_dispatch.channel import ChannelResult, NotificationChannel
from notice_dispatch.schemas import DispatchSummary, InvoiceOut
from notice_dispatch.store import InvoiceStore, StoreError

logger = logging.getLogger(__name__)

__all__ = [
    "AlreadyInProgressError",
    "AlreadySentError",
    "DispatchCoordinator",
    "DispatchError",
    "DispatchState",
    "InvalidInvoiceError",
    "InvoiceNotFoundError",
    "SendOutcome",
    "StoreError",
    "SweepResult",
    "classify",
    "dispatch_fields",
    "summarize",
]


class DispatchState(str, enum.Enum):
    PENDING = "Pending"
    FAILED = "Failed"
    SENT = "Sent"


class DispatchError(Exception):
    """Base class for errors raised before a send is attempted."""


class InvalidInvoiceError(DispatchError):
    pass


class InvoiceNotFoundError(DispatchError):
    pass


class AlreadyInProgressError(DispatchError):
    """Another send for the same invoice has not finished yet."""


class AlreadySentError(DispatchError):
    """The stored invoice was sent after the sweep read its list."""

    def __init__(self, invoice: InvoiceOut):
        super().__init__(f"Invoice {invoice.id} is already sent")
        self.invoice = invoice


def classify(invoice: InvoiceOut) -> DispatchState:
    """Display state of an invoice, from `sent` and `attempts` only."""
    if invoice.sent:
        return DispatchState.SENT
    if invoice.attempts > 0:
        return DispatchState.FAILED
    return DispatchState.PENDING


def summarize(invoices: Iterable[InvoiceOut]) -> DispatchSummary:
    """
    Count invoices by classification.

    `unsent` is failed plus never attempted, i.e. what a send-all sweep
    would attempt.
    """
    summary = DispatchSummary()
    for inv in invoices:
        state = classify(inv)
        summary.total += 1
        if state is DispatchState.SENT:
            summary.sent += 1
            continue
        summary.unsent += 1
        if state is DispatchState.FAILED:
            summary.failed += 1
        else:
            summary.never_attempted += 1
    return summary


def dispatch_fields(attempts: int, result: ChannelResult, now: datetime) -> dict[str, Any]:
    """The four dispatch columns after one attempt."""
    if result.success:
        return {"attempts": attempts + 1, "sent": True, "sent_at": now, "last_error": None}
    return {"attempts": attempts + 1, "sent": False, "sent_at": None, "last_error": result.reason}


@dataclass(frozen=True)
class SendOutcome:
    invoice: InvoiceOut
    success: bool
    message: str

    @property
    def state(self) -> DispatchState:
        return classify(self.invoice)


@dataclass
class SweepResult:
    invoices: list[Any]
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: list[str] = field(default_factory=list)
    aborted: bool = False
    cancelled: bool = False
    error: Optional[str] = None


def _item_id(item: Any) -> Optional[str]:
    if isinstance(item, Mapping):
        return item.get("id")
    return getattr(item, "id", None)


class DispatchCoordinator:
    def __init__(
        self,
        store: InvoiceStore,
        channel: NotificationChannel,
        sweep_pause_seconds: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.store = store
        self.channel = channel
        self.sweep_pause_seconds = sweep_pause_seconds
        self._sleep = sleep
        self._clock = clock
        self._in_flight: set[str] = set()
        self._lock = threading.Lock()

    def in_flight(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._in_flight)

    def send_one(self, invoice: InvoiceOut | Mapping[str, Any] | str) -> SendOutcome:
        """
        Attempt delivery of one notice and persist the outcome.

        Sending an invoice that is already sent is allowed and sends it again.

        Args:
            invoice: the invoice or its id. The attempt is based on the
                stored row, not on the fields of the given copy.

        Returns:
            SendOutcome with the updated invoice and a message for the user

        Raises:
            InvalidInvoiceError: malformed input, nothing was attempted
            InvoiceNotFoundError: unknown id, nothing was attempted
            AlreadyInProgressError: a send for this invoice is still running
            StoreError: the invoice could not be read, or the outcome could
                not be persisted; a successful delivery is not reported as
                sent in that case
        """
        if isinstance(invoice, str):
            if not invoice.strip():
                raise InvalidInvoiceError("Invoice id is empty")
            invoice_id = invoice
        else:
            invoice_id = self._validate(invoice).id
        return self._send(invoice_id)

    def send_all_pending(
        self,
        invoices: Sequence[Any],
        cancel: Optional[threading.Event] = None,
    ) -> SweepResult:
        """
        Send every invoice that is not sent yet, one after the other, in input order.

        Channel failures and malformed items are recorded per item and the
        sweep goes on. A store failure stops the sweep. Setting `cancel`
        stops it before the next invoice.
        """
        current = list(invoices)
        sweep = SweepResult(invoices=current)
        logger.info(f"Sweep started over {len(current)} invoices")

        for item in list(current):
            try:
                view = self._validate(item)
            except InvalidInvoiceError as e:
                logger.warning(f"Invoice {_item_id(item)}: skipped, {e}")
                sweep.skipped.append(str(_item_id(item) or ""))
                continue
            if view.sent:
                continue

            if cancel is not None and cancel.is_set():
                sweep.cancelled = True
                logger.info(f"Sweep cancelled after {sweep.attempted} attempts")
                break
            if sweep.attempted and self.sweep_pause_seconds:
                self._sleep(self.sweep_pause_seconds)

            try:
                outcome = self._send(view.id, skip_sent=True)
            except AlreadySentError as e:
                logger.info(f"Invoice {view.id}: skipped, sent since the sweep started")
                sweep.skipped.append(view.id)
                current = self.apply(current, e.invoice)
                continue
            except DispatchError as e:
                logger.info(f"Invoice {view.id}: skipped, {e}")
                sweep.skipped.append(view.id)
                continue
            except StoreError as e:
                sweep.attempted += 1
                sweep.failed += 1
                sweep.aborted = True
                sweep.error = str(e)
                logger.error(f"Sweep aborted on invoice {view.id}: {e}")
                break

            sweep.attempted += 1
            if outcome.success:
                sweep.succeeded += 1
            else:
                sweep.failed += 1
            current = self.apply(current, outcome.invoice)

        sweep.invoices = current
        logger.info(
            f"Sweep finished: attempted={sweep.attempted} succeeded={sweep.succeeded} "
            f"failed={sweep.failed} skipped={len(sweep.skipped)} aborted={sweep.aborted}"
        )
        return sweep

    @staticmethod
    def apply(invoices: Sequence[Any], updated: InvoiceOut) -> list[Any]:
        """New list with the invoice of the same id replaced by `updated`."""
        return [updated if _item_id(inv) == updated.id else inv for inv in invoices]

    def _send(self, invoice_id: str, skip_sent: bool = False) -> SendOutcome:
        self._claim(invoice_id)
        try:
            inv = self.store.get(invoice_id)
            if inv is None:
                raise InvoiceNotFoundError(f"Invoice {invoice_id} not found")
            if skip_sent and inv.sent:
                raise AlreadySentError(inv)

            result = self._deliver(inv)
            fields = dispatch_fields(inv.attempts, result, self._clock())
            try:
                self.store.update(inv.id, fields)
            except StoreError:
                logger.error(
                    f"Invoice {inv.id}: channel reported "
                    f"{'success' if result.success else 'failure'} but the outcome could not be stored"
                )
                raise
        finally:
            self._release(invoice_id)

        updated = inv.model_copy(update=fields)
        if result.success:
            logger.info(f"Invoice {inv.id}: notice sent (attempt {updated.attempts})")
            message = f"Boleto {inv.invoice_number} enviado via WhatsApp"
        else:
            logger.warning(f"Invoice {inv.id}: send failed (attempt {updated.attempts}): {result.reason}")
            message = result.reason or "Falha no envio"
        return SendOutcome(invoice=updated, success=result.success, message=message)

    @staticmethod
    def _validate(invoice: Any) -> InvoiceOut:
        if isinstance(invoice, InvoiceOut):
            data: Any = invoice.model_dump()
        elif isinstance(invoice, Mapping):
            data = invoice
        else:
            raise InvalidInvoiceError(f"Expected an invoice, got {type(invoice).__name__}")

        try:
            inv = InvoiceOut.model_validate(data)
        except ValidationError as e:
            raise InvalidInvoiceError(f"Malformed invoice: {e.error_count()} invalid field(s)") from e
        if not inv.id:
            raise InvalidInvoiceError("Invoice id is empty")
        return inv

    def _claim(self, invoice_id: str) -> None:
        with self._lock:
            if invoice_id in self._in_flight:
                raise AlreadyInProgressError(f"Invoice {invoice_id} is already being sent")
            self._in_flight.add(invoice_id)

    def _release(self, invoice_id: str) -> None:
        with self._lock:
            self._in_flight.discard(invoice_id)

    def _deliver(self, invoice: InvoiceOut) -> ChannelResult:
        try:
            return self.channel.send(invoice)
        except Exception as e:
            # A channel that raises is treated like one that reports a failure
            logger.warning(f"Invoice {invoice.id}: channel raised {e.__class__.__name__}: {e}")
            return ChannelResult.fail(str(e) or e.__class__.__name__)
