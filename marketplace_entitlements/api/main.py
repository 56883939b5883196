import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from marketplace_entitlements.api.routes.billing import router as billing_router
from marketplace_entitlements.api.routes.landing import router as landing_router
from marketplace_entitlements.api.routes.tenants import router as tenants_router
from marketplace_entitlements.api.routes.webhooks import router as webhooks_router
from marketplace_entitlements.core.config import settings
from marketplace_entitlements.core.errors import ConfigurationError

logger = logging.getLogger(__name__)


def check_configuration() -> None:
    missing = settings.missing_required()
    if not missing:
        return
    if settings.strict_config:
        raise ConfigurationError(f"Missing required configuration: {', '.join(missing)}")
    logger.warning("Running with incomplete configuration: %s", ", ".join(missing))


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    logging.basicConfig(level=logging.INFO)
    check_configuration()
    yield


app = FastAPI(title="Marketplace Entitlements", lifespan=lifespan)
app.include_router(webhooks_router, prefix="/api/v1")
app.include_router(landing_router, prefix="/api/v1")
app.include_router(billing_router, prefix="/api/v1")
app.include_router(tenants_router, prefix="/api/v1")


@app.get("/health", tags=["system"])
async def health_check() -> dict[str, str]:
    return {"status": "ok"}
