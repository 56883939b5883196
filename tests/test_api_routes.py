from __future__ import annotations

from datetime import datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock
from urllib.parse import parse_qs, urlparse

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from marketplace_entitlements.api.dependencies import get_identity_linker, get_reconciler
from marketplace_entitlements.api.main import app
from marketplace_entitlements.core import quota
from marketplace_entitlements.core.auth import AuthContext, require_auth_context, require_marketplace_webhook
from marketplace_entitlements.core.config import settings
from marketplace_entitlements.core.db import get_db_session
from marketplace_entitlements.core.errors import SessionExpiredError, TransientUpstreamError, ValidationError
from marketplace_entitlements.core.identity import LinkResult
from marketplace_entitlements.core.ledger import PurchaserIdentity, SubscriptionStatus
from marketplace_entitlements.core.marketplace import OperationSnapshot
from marketplace_entitlements.core.reconciler import ReconcileOutcome, Reconciler
from marketplace_entitlements.core.repositories.subscriptions import SubscriptionRepository
from marketplace_entitlements.core.roles import get_current_role, get_current_tier


class _FakeSession:
    async def execute(self, stmt):  # noqa: ANN001
        return None

    async def rollback(self) -> None:
        return None


@pytest.fixture
def auth_context() -> AuthContext:
    return AuthContext(tenant_id="tenant-1", user_id="user-1", email="ana@contoso.com", name="Ana")


@pytest.fixture
def reconciler() -> SimpleNamespace:
    return SimpleNamespace(process=AsyncMock())


@pytest.fixture
def linker() -> SimpleNamespace:
    return SimpleNamespace(begin=AsyncMock(), complete=AsyncMock(), store=SimpleNamespace(take_once=AsyncMock()))


@pytest.fixture
def client(auth_context: AuthContext, reconciler: SimpleNamespace, linker: SimpleNamespace):
    async def _auth_override() -> AuthContext:
        return auth_context

    async def _session_override():
        yield _FakeSession()

    async def _webhook_override() -> dict:
        return {"sub": "marketplace"}

    app.dependency_overrides[require_auth_context] = _auth_override
    app.dependency_overrides[require_marketplace_webhook] = _webhook_override
    app.dependency_overrides[get_db_session] = _session_override
    app.dependency_overrides[get_reconciler] = lambda: reconciler
    app.dependency_overrides[get_identity_linker] = lambda: linker
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def usage(monkeypatch: pytest.MonkeyPatch) -> list[str]:
    entries: list[str] = []

    class FakeUsageRepository:
        def __init__(self, session, tenant_id: str) -> None:  # noqa: ANN001
            self.tenant_id = tenant_id

        async def count_for_week(self, category: str, week_key: str) -> int:
            return entries.count(f"{self.tenant_id}:{category}:{week_key}")

        async def append(self, category: str, week_key: str, recorded_at: datetime) -> None:
            entries.append(f"{self.tenant_id}:{category}:{week_key}")

    monkeypatch.setattr(quota, "UsageRecordRepository", FakeUsageRepository)
    monkeypatch.setattr(quota, "resolve_plan", AsyncMock(return_value="free"))
    return entries


def test_health_endpoint(client: TestClient) -> None:
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json() == {"status": "ok"}


def test_webhook_returns_reconcile_outcome(client: TestClient, reconciler: SimpleNamespace) -> None:
    reconciler.process.return_value = ReconcileOutcome(
        subscription_id="S1",
        operation_id="op1",
        status=SubscriptionStatus.ACTIVATED,
        applied=True,
    )

    res = client.post(
        "/api/v1/marketplace/webhook",
        json={"id": "op1", "subscriptionId": "S1", "action": "ChangePlan", "planId": "tier2"},
    )

    assert res.status_code == 200
    body = res.json()
    assert body["status"] == "Activated"
    assert body["applied"] is True
    assert body["acknowledged"] is False
    notification = reconciler.process.await_args.args[0]
    assert notification.operation_id == "op1"
    assert notification.plan_id == "tier2"


def test_webhook_duplicate_is_still_ok(client: TestClient, reconciler: SimpleNamespace) -> None:
    reconciler.process.return_value = ReconcileOutcome(
        subscription_id="S1",
        operation_id="op1",
        status=SubscriptionStatus.ACTIVATED,
        applied=False,
        ignored_reason="duplicate",
    )

    res = client.post("/api/v1/marketplace/webhook", json={"id": "op1", "subscriptionId": "S1"})

    assert res.status_code == 200
    assert res.json()["ignored_reason"] == "duplicate"


def test_webhook_rejects_malformed_json(client: TestClient, reconciler: SimpleNamespace) -> None:
    res = client.post(
        "/api/v1/marketplace/webhook",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )

    assert res.status_code == 400
    reconciler.process.assert_not_awaited()


def test_webhook_rejects_missing_subscription(client: TestClient, reconciler: SimpleNamespace) -> None:
    res = client.post("/api/v1/marketplace/webhook", json={"id": "op1"})

    assert res.status_code == 400
    reconciler.process.assert_not_awaited()


def test_webhook_validation_failure_from_reconciler(client: TestClient, reconciler: SimpleNamespace) -> None:
    reconciler.process.side_effect = ValidationError("unknown status")

    res = client.post("/api/v1/marketplace/webhook", json={"id": "op1", "subscriptionId": "S1"})

    assert res.status_code == 400


def test_webhook_upstream_failure_is_500(client: TestClient, reconciler: SimpleNamespace) -> None:
    reconciler.process.side_effect = TransientUpstreamError("marketplace down")

    res = client.post("/api/v1/marketplace/webhook", json={"id": "op1", "subscriptionId": "S1"})

    assert res.status_code == 500
    assert "marketplace down" not in res.text


def test_webhook_database_outage_is_500(client: TestClient) -> None:
    session = SimpleNamespace(
        scalar=AsyncMock(side_effect=OperationalError("SELECT", {}, ConnectionRefusedError())),
        rollback=AsyncMock(),
    )
    snapshot = OperationSnapshot(
        operation_id="op1",
        subscription_id="S1",
        action="Reinstate",
        status="Succeeded",
        plan_id="pro",
        offer_id=None,
        quantity=None,
        timestamp=None,
    )
    marketplace = SimpleNamespace(get_operation=Mock(return_value=snapshot), acknowledge_operation=Mock())
    app.dependency_overrides[get_reconciler] = lambda: Reconciler(SubscriptionRepository(session), marketplace)

    res = client.post("/api/v1/marketplace/webhook", json={"id": "op1", "subscriptionId": "S1"})

    assert res.status_code == 500
    marketplace.acknowledge_operation.assert_not_called()


def test_webhook_requires_bearer_token(client: TestClient) -> None:
    app.dependency_overrides.pop(require_marketplace_webhook)

    res = client.post("/api/v1/marketplace/webhook", json={"id": "op1", "subscriptionId": "S1"})

    assert res.status_code == 401


def test_landing_begin_redirects_to_identity_provider(client: TestClient, linker: SimpleNamespace) -> None:
    linker.begin.return_value = "https://login.example.test/authorize?state=abc"

    res = client.get("/api/v1/marketplace/landing/begin", params={"token": "purchase-token"}, follow_redirects=False)

    assert res.status_code == 302
    assert res.headers["location"] == "https://login.example.test/authorize?state=abc"
    linker.begin.assert_awaited_once_with("purchase-token")


def test_landing_begin_without_token_redirects_to_error(client: TestClient, linker: SimpleNamespace) -> None:
    linker.begin.side_effect = ValidationError("Marketplace token is required")

    res = client.get("/api/v1/marketplace/landing/begin", follow_redirects=False)

    location = res.headers["location"]
    assert res.status_code == 302
    assert location.startswith(settings.frontend_error_url)
    assert parse_qs(urlparse(location).query)["error"] == ["The purchase link is incomplete or invalid."]


def test_landing_callback_success_redirect(client: TestClient, linker: SimpleNamespace) -> None:
    linker.complete.return_value = LinkResult(
        subscription_id="S1",
        plan_id="pro",
        status=SubscriptionStatus.ACTIVATED,
        identity=PurchaserIdentity(oid="user-1", tenant_id="tenant-1"),
    )

    res = client.get(
        "/api/v1/marketplace/landing/callback",
        params={"code": "auth-code", "state": "abc"},
        follow_redirects=False,
    )

    location = res.headers["location"]
    query = parse_qs(urlparse(location).query)
    assert res.status_code == 302
    assert location.startswith(settings.frontend_success_url)
    assert query["subscriptionId"] == ["S1"]
    assert query["planId"] == ["pro"]
    assert query["status"] == ["Activated"]
    linker.complete.assert_awaited_once_with(code="auth-code", state="abc")


def test_landing_callback_expired_session(client: TestClient, linker: SimpleNamespace) -> None:
    linker.complete.side_effect = SessionExpiredError("consumed")

    res = client.get(
        "/api/v1/marketplace/landing/callback",
        params={"code": "auth-code", "state": "abc"},
        follow_redirects=False,
    )

    error = parse_qs(urlparse(res.headers["location"]).query)["error"][0]
    assert res.status_code == 302
    assert "session has expired" in error
    assert "consumed" not in error


def test_landing_callback_provider_error_discards_state(client: TestClient, linker: SimpleNamespace) -> None:
    res = client.get(
        "/api/v1/marketplace/landing/callback",
        params={"error": "access_denied", "state": "abc"},
        follow_redirects=False,
    )

    assert res.status_code == 302
    assert parse_qs(urlparse(res.headers["location"]).query)["error"] == ["Sign-in was cancelled or denied."]
    linker.store.take_once.assert_awaited_once_with("abc")
    linker.complete.assert_not_awaited()


def test_marketplace_health_reports_configuration(client: TestClient) -> None:
    res = client.get("/api/v1/marketplace/health")

    assert res.status_code == 200
    body = res.json()
    assert body["database_ok"] is True
    assert body["correlation_backend"] == settings.correlation_backend
    assert body["status"] == ("ok" if not settings.missing_required() else "degraded")


def test_plan_endpoint(client: TestClient) -> None:
    async def _tier() -> str:
        return "pro"

    app.dependency_overrides[get_current_tier] = _tier

    res = client.get("/api/v1/billing/plan")

    assert res.status_code == 200
    assert res.json() == {
        "tenant_id": "tenant-1",
        "tier": "pro",
        "weekly_survey_limit": 50,
        "responses_per_survey_limit": None,
    }


def test_usage_summary(client: TestClient, usage: list[str]) -> None:
    res = client.get("/api/v1/billing/usage")

    assert res.status_code == 200
    body = res.json()
    assert body["tier"] == "free"
    assert body["category"] == "survey_creation"
    assert body["used"] == 0
    assert body["limit"] == 1
    assert body["remaining"] == 1
    assert body["percent"] == 0


def test_usage_summary_unknown_category(client: TestClient, usage: list[str]) -> None:
    res = client.get("/api/v1/billing/usage", params={"category": "poll_creation"})

    assert res.status_code == 404


def test_record_usage_then_guard_blocks(client: TestClient, usage: list[str]) -> None:
    async def _role() -> str:
        return "admin"

    app.dependency_overrides[get_current_role] = _role

    guard_before = client.post("/api/v1/billing/guards/survey_creation")
    recorded = client.post("/api/v1/billing/usage/survey_creation")
    guard_after = client.post("/api/v1/billing/guards/survey_creation")
    second_record = client.post("/api/v1/billing/usage/survey_creation")

    assert guard_before.status_code == 200
    assert guard_before.json()["allowed"] is True
    assert recorded.status_code == 200
    assert recorded.json()["used"] == 1
    assert recorded.json()["remaining"] == 0
    assert guard_after.status_code == 403
    assert second_record.status_code == 403
    assert len(usage) == 1


def test_record_usage_requires_admin_or_manager(client: TestClient, usage: list[str]) -> None:
    async def _role() -> str:
        return "user"

    app.dependency_overrides[get_current_role] = _role

    res = client.post("/api/v1/billing/usage/survey_creation")

    assert res.status_code == 403
    assert usage == []


def test_unknown_category_guard_is_denied(client: TestClient, usage: list[str]) -> None:
    res = client.post("/api/v1/billing/guards/poll_creation")

    assert res.status_code == 403


def test_response_guard(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(quota.QuotaEnforcer, "can_accept_response", AsyncMock(return_value=False))

    res = client.post("/api/v1/billing/surveys/survey-1/responses/guard")

    assert res.status_code == 403


def test_my_role_endpoint(client: TestClient) -> None:
    async def _role() -> str:
        return "admin"

    app.dependency_overrides[get_current_role] = _role

    res = client.get("/api/v1/tenants/me/role")

    assert res.status_code == 200
    assert res.json() == {"tenant_id": "tenant-1", "user_id": "user-1", "role": "admin"}


def test_premium_check_requires_paid_tier(client: TestClient) -> None:
    async def _tier() -> str:
        return "free"

    app.dependency_overrides[get_current_tier] = _tier

    res = client.get("/api/v1/tenants/me/premium-check")

    assert res.status_code == 403
