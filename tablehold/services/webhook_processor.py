"""Payment provider webhook processing.

Signature verification happens in the route, strictly before any of this
runs. Everything below happens inside one transaction: the dedupe marker
commits together with the mutation it guards, so a failure leaves no marker
behind and the provider's retry is processed normally.
"""

import base64
import enum
import hashlib
import hmac
import re
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from tablehold.database import transaction
from tablehold.exceptions import ReservationError
from tablehold.models.reservation import Reservation, ReservationStatus
from tablehold.models.webhook_event import ProcessedWebhookEvent
from tablehold.services.confirmation import apply_intent, apply_payment, find_by_payment_id
from tablehold.services.correlation import extract_reservation_id, intent_token_from
from tablehold.services.intents import decode_intent
from tablehold.services.notifications import notify_reservation_created
from tablehold.services.table_status import sync_table_status

logger = structlog.get_logger()

PAYMENT_EVENT_PATTERN = re.compile(
    r"^(payments?\.(created|updated|completed|succeeded)|payment_intent\.succeeded)$",
    re.IGNORECASE,
)
REFUND_EVENT_PATTERN = re.compile(
    r"^(refunds?\.(created|updated|completed|succeeded)|charge\.refunded)$",
    re.IGNORECASE,
)
COMPLETED_STATUSES = frozenset({"completed", "succeeded", "paid"})

REFUNDABLE_STATUSES = (ReservationStatus.CONFIRMED, ReservationStatus.TENTATIVE)


class EventKind(str, enum.Enum):
    PAYMENT = "payment"
    REFUND = "refund"
    OTHER = "other"


@dataclass
class WebhookOutcome:
    """Result reported back to the provider; always a 2xx for business skips"""
    message: str
    reservation_id: Optional[int] = None
    extra: dict = field(default_factory=dict)
    created: bool = False

    def to_dict(self) -> dict:
        body = {"success": True, "message": self.message}
        if self.reservation_id is not None:
            body["reservation_id"] = self.reservation_id
        body.update(self.extra)
        return body


def compute_signature(body: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_signature(body: bytes, signature: Optional[str], secret: str) -> bool:
    if not signature:
        return False
    return hmac.compare_digest(compute_signature(body, secret), signature.strip())


def classify_event(event_type: str) -> EventKind:
    if PAYMENT_EVENT_PATTERN.match(event_type or ""):
        return EventKind.PAYMENT
    if REFUND_EVENT_PATTERN.match(event_type or ""):
        return EventKind.REFUND
    return EventKind.OTHER


def is_completed(status: Any) -> bool:
    return str(status or "").strip().lower() in COMPLETED_STATUSES


def event_type_of(event: Mapping[str, Any]) -> str:
    return str(event.get("type") or event.get("event_type") or "")


def event_id_of(event: Mapping[str, Any]) -> Optional[str]:
    event_id = event.get("event_id") or event.get("id")
    return str(event_id) if event_id else None


def _data_object(event: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    data = event.get("data") or {}
    if not isinstance(data, Mapping):
        return {}
    obj = data.get("object") or {}
    if isinstance(obj, Mapping) and isinstance(obj.get(key), Mapping):
        return obj[key]
    if isinstance(data.get(key), Mapping):
        return data[key]
    # Providers that put the resource itself under data.object
    if isinstance(obj, Mapping) and obj.get("id"):
        return obj
    return {}


def payment_object(event: Mapping[str, Any]) -> Mapping[str, Any]:
    return _data_object(event, "payment")


def refund_object(event: Mapping[str, Any]) -> Mapping[str, Any]:
    return _data_object(event, "refund")


async def record_event(db: AsyncSession, event_id: str, event_type: str) -> bool:
    """Insert the dedupe marker; False when the event was already processed"""
    existing = await db.get(ProcessedWebhookEvent, event_id)
    if existing is not None:
        return False

    db.add(ProcessedWebhookEvent(event_id=event_id, event_type=event_type))
    try:
        await db.flush()
    except IntegrityError:
        # A concurrent delivery of the same event committed first
        await db.rollback()
        return False
    return True


async def resolve_reservation_id(
    db: AsyncSession,
    payment: Mapping[str, Any],
) -> Optional[int]:
    reservation_id = extract_reservation_id(payment)
    if reservation_id is not None:
        result = await db.execute(select(Reservation.id).where(Reservation.id == reservation_id))
        if result.scalar_one_or_none() is not None:
            return reservation_id

    payment_id = payment.get("id")
    if payment_id:
        result = await db.execute(
            select(Reservation.id).where(Reservation.payment_id == str(payment_id))
        )
        return result.scalar_one_or_none()
    return None


async def process_event(db: AsyncSession, event: Mapping[str, Any]) -> WebhookOutcome:
    """Deduplicate, classify and apply a verified provider event"""
    event_type = event_type_of(event)
    event_id = event_id_of(event)
    kind = classify_event(event_type)

    async with transaction(db):
        if event_id:
            if not await record_event(db, event_id, event_type):
                logger.info("Duplicate webhook event ignored", event_id=event_id)
                return WebhookOutcome("Duplicate event ignored")
        else:
            logger.warning("Webhook event without id, deduplication skipped", event_type=event_type)

        if kind == EventKind.REFUND:
            outcome = await _handle_refund(db, event)
        elif kind == EventKind.PAYMENT:
            outcome = await _handle_payment(db, event)
        else:
            outcome = None

    if outcome is None:
        logger.info("Unhandled webhook event type", event_id=event_id, event_type=event_type)
        return WebhookOutcome("Ignored event", extra={"type": event_type})

    if outcome.created:
        notify_reservation_created(outcome.reservation_id)
    return outcome


async def _handle_payment(db: AsyncSession, event: Mapping[str, Any]) -> WebhookOutcome:
    payment = payment_object(event)
    status = payment.get("status") or payment.get("payment_status") or ""
    if not is_completed(status):
        return WebhookOutcome("Ignored event", extra={"type": event_type_of(event), "status": status})

    payment_id = payment.get("id")
    if not payment_id:
        logger.warning("Completed payment event without payment id", event_id=event_id_of(event))
        return WebhookOutcome("Payment id missing")
    payment_id = str(payment_id)

    reservation_id = await resolve_reservation_id(db, payment)
    if reservation_id is None:
        intent_token = intent_token_from(payment)
        if intent_token is not None:
            return await _redeem_intent(db, intent_token, payment_id)
        logger.warning("No reservation found for payment", payment_id=payment_id)
        return WebhookOutcome("No matching reservation")

    try:
        reservation = await apply_payment(db, reservation_id=reservation_id, payment_id=payment_id)
    except ReservationError as exc:
        # Business outcome, not a delivery failure: answer 2xx so the provider stops retrying
        logger.warning(
            "Payment webhook not applied",
            reservation_id=reservation_id,
            payment_id=payment_id,
            code=exc.code,
            reason=exc.message,
        )
        return WebhookOutcome(
            f"Skipped: {exc.message}",
            reservation_id=reservation_id,
            extra={"code": exc.code},
        )

    return WebhookOutcome(
        "Reservation confirmed via webhook",
        reservation_id=reservation.id,
        extra={"status": reservation.status.value},
    )


async def _redeem_intent(db: AsyncSession, intent_token: str, payment_id: str) -> WebhookOutcome:
    """Create the reservation for a payment made on an intent the client never confirmed"""
    try:
        intent = decode_intent(intent_token)
        reservation = await apply_intent(db, intent, payment_id)
    except ReservationError as exc:
        logger.warning(
            "Payment webhook intent not redeemed",
            payment_id=payment_id,
            code=exc.code,
            reason=exc.message,
        )
        return WebhookOutcome(f"Skipped: {exc.message}", extra={"code": exc.code})

    return WebhookOutcome(
        "Reservation created via webhook",
        reservation_id=reservation.id,
        extra={"status": reservation.status.value},
        created=True,
    )


async def _handle_refund(db: AsyncSession, event: Mapping[str, Any]) -> WebhookOutcome:
    refund = refund_object(event)
    status = refund.get("status") or ""
    payment_id = refund.get("payment_id") or refund.get("payment_intent")
    if not is_completed(status) or not payment_id:
        return WebhookOutcome("Ignored refund event", extra={"status": status})

    reservation = await find_by_payment_id(db, str(payment_id), lock=True)
    if reservation is None:
        logger.warning("No reservation found for refunded payment", payment_id=payment_id)
        return WebhookOutcome("No matching reservation")

    if reservation.status == ReservationStatus.CANCELLED:
        return WebhookOutcome("Reservation already cancelled", reservation_id=reservation.id)

    if reservation.status not in REFUNDABLE_STATUSES:
        logger.info(
            "Refund for reservation in non-refundable status",
            reservation_id=reservation.id,
            status=reservation.status.value,
        )
        return WebhookOutcome(
            f"Skipping status {reservation.status.value}",
            reservation_id=reservation.id,
        )

    reservation.status = ReservationStatus.CANCELLED
    reservation.expires_at = None
    await sync_table_status(db, reservation.table_id, ReservationStatus.CANCELLED)

    logger.info(
        "Reservation cancelled via refund webhook",
        reservation_id=reservation.id,
        payment_id=payment_id,
    )
    return WebhookOutcome("Processed refund event", reservation_id=reservation.id)
