"""Payment provider client.

The gateway is simulated: verification and refunds always succeed. Calls
are async so a real client can drop in; callers await them before opening
the local transaction, never while holding a row lock.
"""

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Optional
from uuid import uuid4

import structlog

from tablehold.database import utcnow

logger = structlog.get_logger()


@dataclass
class PaymentConfirmation:
    id: str
    status: str
    confirmed_at: datetime

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class RefundResult:
    id: str
    payment_id: str
    amount: Optional[int]
    reason: Optional[str]
    status: str
    refunded_at: datetime

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class PaymentIntent:
    id: str
    amount: int
    currency: str
    status: str
    client_secret: str
    reservation_id: Optional[int] = None

    def to_dict(self) -> dict:
        return asdict(self)


class SimulatedPaymentProvider:
    """Stand-in for the real gateway"""

    async def create_payment_intent(
        self,
        amount: int,
        currency: str = "USD",
        reservation_id: Optional[int] = None,
    ) -> PaymentIntent:
        token = uuid4().hex
        return PaymentIntent(
            id=f"pi_{token[:24]}",
            amount=amount,
            currency=currency,
            status="pending",
            client_secret=f"secret_{token}",
            reservation_id=reservation_id,
        )

    async def verify_payment(self, payment_id: str) -> PaymentConfirmation:
        logger.info("Payment verified with provider", payment_id=payment_id)
        return PaymentConfirmation(id=payment_id, status="completed", confirmed_at=utcnow())

    async def refund(
        self,
        payment_id: str,
        amount: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> RefundResult:
        logger.info("Refund issued with provider", payment_id=payment_id, amount=amount)
        return RefundResult(
            id=f"refund_{uuid4().hex[:24]}",
            payment_id=payment_id,
            amount=amount,
            reason=reason,
            status="completed",
            refunded_at=utcnow(),
        )


payment_provider = SimulatedPaymentProvider()


def get_payment_provider() -> SimulatedPaymentProvider:
    """FastAPI dependency; override in tests or when wiring a real gateway"""
    return payment_provider
