"""GitHub webhook endpoint"""
import json
import logging

from fastapi import APIRouter, Depends, Request

from deduper.api.deps import get_authenticator, get_engine
from deduper.errors import ValidationError
from deduper.security import SIGNATURE_HEADER, WebhookAuthenticator
from deduper.services.reconciler import ReconciliationEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["webhook"])

EVENT_HEADER = "X-GitHub-Event"


@router.post("/webhook")
async def receive_webhook(
    request: Request,
    engine: ReconciliationEngine = Depends(get_engine),
    authenticator: WebhookAuthenticator = Depends(get_authenticator),
):
    """Verify a GitHub delivery and hand it off; processing happens after the response"""
    raw_body = await request.body()
    content = authenticator.verify(raw_body, request.headers.get(SIGNATURE_HEADER))

    event = request.headers.get(EVENT_HEADER)
    if not event:
        raise ValidationError(f"No {EVENT_HEADER} header")

    try:
        payload = json.loads(content)
    except ValueError:
        raise ValidationError("Payload is not valid JSON")
    if not isinstance(payload, dict):
        raise ValidationError("Payload is not a JSON object")

    logger.debug(f"Received {event} webhook ({payload.get('action')})")
    engine.handle_webhook_event(event, payload)
    return {"message": "Accepted"}
