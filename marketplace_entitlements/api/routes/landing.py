from __future__ import annotations

import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Depends
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace_entitlements.api.dependencies import get_identity_linker
from marketplace_entitlements.core.config import settings
from marketplace_entitlements.core.db import get_db_session, ping_database
from marketplace_entitlements.core.errors import (
    AuthenticationError,
    ConfigurationError,
    EntitlementError,
    MarketplaceApiError,
    SessionExpiredError,
    TransientUpstreamError,
    ValidationError,
)
from marketplace_entitlements.core.identity import IdentityLinker
from marketplace_entitlements.schemas.marketplace import MarketplaceHealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/marketplace", tags=["marketplace"])

_ERROR_MESSAGES: tuple[tuple[type[Exception], str], ...] = (
    (SessionExpiredError, "Your sign-in session has expired. Please open the offer from the marketplace again."),
    (ValidationError, "The purchase link is incomplete or invalid."),
    (AuthenticationError, "We could not verify your account. Please sign in again."),
    (MarketplaceApiError, "The marketplace did not accept this subscription request."),
    (TransientUpstreamError, "The marketplace is temporarily unavailable. Please try again in a few minutes."),
    (ConfigurationError, "Subscription sign-up is not available right now."),
)
GENERIC_ERROR_MESSAGE = "Something went wrong while setting up your subscription."
SIGN_IN_DECLINED_MESSAGE = "Sign-in was cancelled or denied."


def error_message_for(exc: Exception) -> str:
    for error_type, message in _ERROR_MESSAGES:
        if isinstance(exc, error_type):
            return message
    return GENERIC_ERROR_MESSAGE


def _redirect(base_url: str, params: dict[str, str]) -> RedirectResponse:
    separator = "&" if "?" in base_url else "?"
    return RedirectResponse(f"{base_url}{separator}{urlencode(params)}", status_code=302)


def error_redirect(message: str) -> RedirectResponse:
    return _redirect(settings.frontend_error_url, {"error": message})


@router.get("/landing/begin")
async def begin_landing(
    token: str | None = None,
    linker: IdentityLinker = Depends(get_identity_linker),
) -> RedirectResponse:
    try:
        authorization_url = await linker.begin(token)
    except (EntitlementError, ConfigurationError) as exc:
        logger.warning("Landing begin failed: %s", type(exc).__name__)
        return error_redirect(error_message_for(exc))
    return RedirectResponse(authorization_url, status_code=302)


@router.get("/landing/callback")
async def landing_callback(
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    linker: IdentityLinker = Depends(get_identity_linker),
) -> RedirectResponse:
    if error:
        logger.info("Identity provider returned error=%s", error)
        if state:
            try:
                await linker.store.take_once(state)
            except TransientUpstreamError:
                logger.warning("Could not discard correlation state after sign-in error")
        return error_redirect(SIGN_IN_DECLINED_MESSAGE)

    try:
        result = await linker.complete(code=code, state=state)
    except (EntitlementError, ConfigurationError) as exc:
        logger.warning("Landing callback failed: %s", type(exc).__name__)
        return error_redirect(error_message_for(exc))
    except Exception:
        logger.exception("Unexpected landing callback failure")
        return error_redirect(GENERIC_ERROR_MESSAGE)

    return _redirect(
        settings.frontend_success_url,
        {
            "subscriptionId": result.subscription_id,
            "planId": result.plan_id or "",
            "status": result.status.value,
        },
    )


@router.get("/health", response_model=MarketplaceHealthResponse)
async def marketplace_health(
    session: AsyncSession = Depends(get_db_session),
) -> MarketplaceHealthResponse:
    missing = settings.missing_required()
    marketplace_configured = not any(name.startswith("MARKETPLACE_") for name in missing)
    oauth_configured = not any(name.startswith("OAUTH_") for name in missing)
    webhook_auth_configured = not any(name.startswith("WEBHOOK_") for name in missing)
    database_ok = await ping_database(session)

    healthy = database_ok and not missing
    return MarketplaceHealthResponse(
        status="ok" if healthy else "degraded",
        marketplace_configured=marketplace_configured,
        oauth_configured=oauth_configured,
        webhook_auth_configured=webhook_auth_configured,
        database_ok=database_ok,
        correlation_backend=settings.correlation_backend,
        missing=missing,
    )
