"""Gateway webhook endpoint.

Always answers 200 so the gateway does not retry-storm us; what happened
to the notification is visible in the logs and in the response body.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Header, Request, status

from disbursement_engine.api.dependencies import Service
from disbursement_engine.api.schemas import WebhookResponse
from disbursement_engine.services.notifications import NotificationOutcome

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post(
    "/gateway",
    response_model=WebhookResponse,
    status_code=status.HTTP_200_OK,
)
async def gateway_webhook(
    request: Request,
    service: Service,
    monnify_signature: Annotated[str | None, Header(alias="monnify-signature")] = None,
) -> WebhookResponse:
    """Receive a disbursement notification."""
    raw_body = await request.body()
    try:
        result = await service.receive_notification(raw_body, monnify_signature)
    except Exception:
        logger.exception("Webhook handling failed")
        return WebhookResponse(outcome=NotificationOutcome.ERROR.value)

    return WebhookResponse(outcome=result.outcome.value)
