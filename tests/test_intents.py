"""Tests for signed reservation intents"""

from datetime import date, datetime, time, timedelta, timezone

import pytest
from jose import jwt

from tablehold.config import settings
from tablehold.exceptions import Expired, InvalidToken
from tablehold.services.intents import decode_intent, issue_intent


def _issue(**overrides):
    fields = dict(
        restaurant_id=1,
        table_id=3,
        customer_name="Ada",
        party_size=4,
        reservation_date=date(2030, 5, 17),
        reservation_time=time(19, 30),
        customer_email="ada@example.com",
        user_id=7,
    )
    fields.update(overrides)
    return issue_intent(**fields)


def test_intent_carries_reservation_fields():
    token, expires_at = _issue()

    intent = decode_intent(token)

    assert intent.restaurant_id == 1
    assert intent.table_id == 3
    assert intent.user_id == 7
    assert intent.customer_name == "Ada"
    assert intent.customer_email == "ada@example.com"
    assert intent.party_size == 4
    assert intent.reservation_date == date(2030, 5, 17)
    assert intent.reservation_time == time(19, 30)
    assert intent.expires_at == expires_at.replace(microsecond=0)


def test_anonymous_intent_has_no_owner():
    token, _ = _issue(user_id=None, table_id=None)

    intent = decode_intent(token)

    assert intent.user_id is None
    assert intent.table_id is None


def test_intent_expiry_uses_configured_lifetime():
    issued = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)

    _, expires_at = _issue(now=issued)

    assert expires_at == datetime(2030, 1, 1, 12, 0) + timedelta(minutes=settings.intent_expire_minutes)


def test_expired_intent_is_rejected_without_persisting():
    issued = datetime.now(timezone.utc) - timedelta(minutes=settings.intent_expire_minutes + 5)
    token, _ = _issue(now=issued)

    with pytest.raises(Expired) as exc_info:
        decode_intent(token)

    assert exc_info.value.status_code == 410
    assert exc_info.value.persist is False
    assert "persist" not in exc_info.value.to_dict()


def test_intent_signed_with_other_key_is_rejected():
    payload = {
        "type": "reservation_intent",
        "restaurant_id": 1,
        "customer_name": "Mallory",
        "party_size": 2,
        "reservation_date": "2030-05-17",
        "reservation_time": "19:30",
        "exp": datetime.now(timezone.utc) + timedelta(minutes=5),
    }
    token = jwt.encode(payload, "not-the-intent-key", algorithm="HS256")

    with pytest.raises(InvalidToken):
        decode_intent(token)


def test_access_token_is_not_an_intent():
    token = jwt.encode(
        {"sub": "7", "type": "access", "exp": datetime.now(timezone.utc) + timedelta(minutes=5)},
        settings.intent_secret_key,
        algorithm=settings.intent_algorithm,
    )

    with pytest.raises(InvalidToken):
        decode_intent(token)


def test_malformed_intent_claims_are_rejected():
    token = jwt.encode(
        {
            "type": "reservation_intent",
            "restaurant_id": 1,
            "reservation_date": "not-a-date",
            "exp": datetime.now(timezone.utc) + timedelta(minutes=5),
        },
        settings.intent_secret_key,
        algorithm=settings.intent_algorithm,
    )

    with pytest.raises(InvalidToken) as exc_info:
        decode_intent(token)

    assert exc_info.value.code == "INVALID_TOKEN"


def test_garbage_token_is_rejected():
    with pytest.raises(InvalidToken):
        decode_intent("definitely.not.a-jwt")
