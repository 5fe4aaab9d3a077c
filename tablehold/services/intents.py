"""Signed reservation intents.

An intent describes a reservation that does not exist yet. It travels with
the client through the payment step and is redeemed by the confirmation
engine, which re-validates it as untrusted input. An intent never holds a
table slot.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

from jose import ExpiredSignatureError, JWTError, jwt

from tablehold.config import settings
from tablehold.exceptions import Expired, InvalidToken

INTENT_TOKEN_TYPE = "reservation_intent"


@dataclass(frozen=True)
class ReservationIntent:
    restaurant_id: int
    table_id: Optional[int]
    user_id: Optional[int]
    customer_name: str
    customer_phone: Optional[str]
    customer_email: Optional[str]
    party_size: int
    reservation_date: date
    reservation_time: time
    special_requests: Optional[str]
    expires_at: datetime


def issue_intent(
    *,
    restaurant_id: int,
    customer_name: str,
    party_size: int,
    reservation_date: date,
    reservation_time: time,
    table_id: Optional[int] = None,
    customer_phone: Optional[str] = None,
    customer_email: Optional[str] = None,
    special_requests: Optional[str] = None,
    user_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> tuple[str, datetime]:
    """Sign an intent; returns the token and its naive UTC expiry"""
    issued_at = now or datetime.now(timezone.utc)
    if issued_at.tzinfo is None:
        issued_at = issued_at.replace(tzinfo=timezone.utc)
    expire = issued_at + timedelta(minutes=settings.intent_expire_minutes)

    payload = {
        "type": INTENT_TOKEN_TYPE,
        "restaurant_id": restaurant_id,
        "table_id": table_id,
        "customer_name": customer_name,
        "customer_phone": customer_phone,
        "customer_email": customer_email,
        "party_size": party_size,
        "reservation_date": reservation_date.isoformat(),
        "reservation_time": reservation_time.strftime("%H:%M"),
        "special_requests": special_requests,
        "iat": issued_at,
        "exp": expire,
    }
    if user_id is not None:
        payload["sub"] = str(user_id)

    token = jwt.encode(payload, settings.intent_secret_key, algorithm=settings.intent_algorithm)
    return token, expire.replace(tzinfo=None)


def decode_intent(token: str) -> ReservationIntent:
    """Verify signature, type and expiry of an intent token"""
    try:
        payload = jwt.decode(
            token, settings.intent_secret_key, algorithms=[settings.intent_algorithm]
        )
    except ExpiredSignatureError:
        raise Expired("Reservation intent expired before confirmation", persist=False)
    except JWTError:
        raise InvalidToken("Invalid reservation intent token")

    if payload.get("type") != INTENT_TOKEN_TYPE:
        raise InvalidToken("Invalid reservation intent token")

    try:
        subject = payload.get("sub")
        table_id = payload.get("table_id")
        return ReservationIntent(
            restaurant_id=int(payload["restaurant_id"]),
            table_id=int(table_id) if table_id is not None else None,
            user_id=int(subject) if subject is not None else None,
            customer_name=payload["customer_name"],
            customer_phone=payload.get("customer_phone"),
            customer_email=payload.get("customer_email"),
            party_size=int(payload["party_size"]),
            reservation_date=date.fromisoformat(payload["reservation_date"]),
            reservation_time=time.fromisoformat(payload["reservation_time"]),
            special_requests=payload.get("special_requests"),
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc).replace(tzinfo=None),
        )
    except (KeyError, TypeError, ValueError):
        raise InvalidToken("Invalid reservation intent token")
