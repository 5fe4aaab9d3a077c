"""Recover a reservation id from a payment provider object.

Rules run in order and the first one that yields an id wins. Lookup by the
stored payment id is not a rule here: it needs the database and is the
processor's last resort.
"""

import re
from typing import Any, Callable, Mapping, Optional, Tuple

REFERENCE_PATTERN = re.compile(r"reservation[-_:]?(\d+)", re.IGNORECASE)
NUMERIC_PATTERN = re.compile(r"^\d+$")

REFERENCE_FIELDS = ("reference_id", "order_id", "note")
METADATA_KEYS = ("reservation_id", "reservationId")
INTENT_KEYS = ("reservation_intent", "reservationIntent")


def _to_id(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    text = str(value).strip()
    if NUMERIC_PATTERN.match(text):
        number = int(text)
        return number if number > 0 else None
    return None


def _references(payment: Mapping[str, Any]):
    for field in REFERENCE_FIELDS:
        value = payment.get(field)
        if value:
            yield str(value)


def from_metadata(payment: Mapping[str, Any]) -> Optional[int]:
    metadata = payment.get("metadata") or {}
    if not isinstance(metadata, Mapping):
        return None
    for key in METADATA_KEYS:
        reservation_id = _to_id(metadata.get(key))
        if reservation_id is not None:
            return reservation_id
    return None


def from_reference_pattern(payment: Mapping[str, Any]) -> Optional[int]:
    for reference in _references(payment):
        match = REFERENCE_PATTERN.search(reference)
        if match:
            return _to_id(match.group(1))
    return None


def from_numeric_reference(payment: Mapping[str, Any]) -> Optional[int]:
    for reference in _references(payment):
        reservation_id = _to_id(reference)
        if reservation_id is not None:
            return reservation_id
    return None


CorrelationRule = Callable[[Mapping[str, Any]], Optional[int]]

RULES: Tuple[CorrelationRule, ...] = (
    from_metadata,
    from_reference_pattern,
    from_numeric_reference,
)


def extract_reservation_id(payment: Mapping[str, Any]) -> Optional[int]:
    for rule in RULES:
        reservation_id = rule(payment)
        if reservation_id is not None:
            return reservation_id
    return None


def intent_token_from(payment: Mapping[str, Any]) -> Optional[str]:
    """Signed intent attached to a payment made before any reservation row existed"""
    metadata = payment.get("metadata") or {}
    if not isinstance(metadata, Mapping):
        return None
    for key in INTENT_KEYS:
        token = metadata.get(key)
        if isinstance(token, str) and token.strip():
            return token.strip()
    return None
