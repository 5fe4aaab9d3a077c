"""Payment provider webhook handler"""

import json

from fastapi import APIRouter, Depends, Request, Response, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from tablehold.config import settings
from tablehold.database import get_db
from tablehold.services.webhook_processor import process_event, verify_signature

router = APIRouter()
logger = structlog.get_logger()


@router.post("")
async def handle_payment_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """
    Handle a payment provider event.
    Signature is checked against the raw body before anything is read from
    the database. Business outcomes answer 200 so the provider stops
    retrying; infrastructure failures answer 500 so it retries.
    """
    if not settings.payment_webhook_enabled:
        return Response(status_code=204)

    body = await request.body()
    secret = settings.payment_webhook_secret

    if secret:
        signature = request.headers.get(settings.payment_webhook_signature_header)
        if not verify_signature(body, signature, secret):
            logger.warning("Invalid payment webhook signature", has_signature=bool(signature))
            raise HTTPException(status_code=400, detail="Invalid signature")
    elif settings.is_production:
        logger.error("Payment webhook secret not configured")
        raise HTTPException(status_code=500, detail="Webhook secret not configured")
    else:
        logger.warning("Payment webhook secret not configured, skipping signature verification")

    try:
        event = json.loads(body)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON payload")
    if not isinstance(event, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    logger.info(
        "Payment webhook received",
        event_id=event.get("event_id") or event.get("id"),
        event_type=event.get("type"),
    )

    try:
        outcome = await process_event(db, event)
    except Exception:
        logger.exception("Payment webhook processing failed", event_id=event.get("event_id") or event.get("id"))
        return JSONResponse(
            status_code=500,
            content={"detail": "Webhook processing failed", "code": "INTERNAL_ERROR"},
        )

    return outcome.to_dict()
