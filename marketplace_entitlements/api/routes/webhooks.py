from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status

from marketplace_entitlements.api.dependencies import get_reconciler
from marketplace_entitlements.core.auth import require_marketplace_webhook
from marketplace_entitlements.core.errors import ConfigurationError, EntitlementError, ValidationError
from marketplace_entitlements.core.reconciler import OperationNotification, Reconciler
from marketplace_entitlements.schemas.marketplace import MarketplaceWebhookResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/marketplace", tags=["marketplace"])


def _parse_payload(raw_body: bytes) -> object:
    try:
        return json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid webhook payload",
        ) from exc


@router.post("/webhook", response_model=MarketplaceWebhookResponse)
async def marketplace_webhook(
    request: Request,
    _: dict = Depends(require_marketplace_webhook),
    reconciler: Reconciler = Depends(get_reconciler),
) -> MarketplaceWebhookResponse:
    payload = _parse_payload(await request.body())

    try:
        notification = OperationNotification.from_payload(payload)
        outcome = await reconciler.process(notification)
    except ValidationError as exc:
        logger.warning("Rejected marketplace notification: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid marketplace notification",
        ) from exc
    except (EntitlementError, ConfigurationError) as exc:
        logger.exception("Marketplace notification could not be processed")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Notification could not be processed",
        ) from exc

    return MarketplaceWebhookResponse(
        received=True,
        subscription_id=outcome.subscription_id,
        operation_id=outcome.operation_id,
        status=outcome.status.value,
        applied=outcome.applied,
        ignored_reason=outcome.ignored_reason,
        acknowledged=outcome.acknowledged,
    )
