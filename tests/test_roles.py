from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from fastapi import HTTPException
from sqlalchemy.exc import OperationalError

from marketplace_entitlements.core import roles
from marketplace_entitlements.core.auth import AuthContext
from marketplace_entitlements.core.roles import (
    AUTO_PROMOTION_MARKER,
    RoleResolver,
    require_plan_tiers,
    require_roles,
)


class _MemberTable:
    def __init__(self) -> None:
        self.rows: dict[tuple[str, str], SimpleNamespace] = {}
        self.inserts: list[dict] = []
        self.fail_inserts = False

    def repository(self, session, tenant_id: str):  # noqa: ANN001, ANN201
        table = self

        class FakeMemberRepository:
            async def get_by_user_id(self, user_id: str) -> SimpleNamespace | None:
                return table.rows.get((tenant_id, user_id))

            async def insert_if_absent(self, *, user_id: str, role: str, added_by: str, email=None, name=None) -> bool:  # noqa: ANN001
                if table.fail_inserts:
                    raise OperationalError("INSERT", {}, Exception("db down"))
                table.inserts.append({"user_id": user_id, "role": role, "added_by": added_by})
                if (tenant_id, user_id) in table.rows:
                    return False
                table.rows[(tenant_id, user_id)] = SimpleNamespace(role=role, added_by=added_by)
                return True

        return FakeMemberRepository()


@pytest.fixture
def members(monkeypatch: pytest.MonkeyPatch) -> _MemberTable:
    table = _MemberTable()
    monkeypatch.setattr(roles, "TenantMemberRepository", table.repository)
    return table


def _purchasers(monkeypatch: pytest.MonkeyPatch, *purchasers: tuple[str, str]) -> None:
    class FakeSubscriptions:
        def __init__(self, session) -> None:  # noqa: ANN001
            pass

        async def has_activated_purchase(self, tenant_id: str, user_oid: str) -> bool:
            return (tenant_id, user_oid) in purchasers

    monkeypatch.setattr(roles, "SubscriptionRepository", FakeSubscriptions)


@pytest.mark.asyncio
async def test_existing_member_role_is_returned(monkeypatch: pytest.MonkeyPatch, members: _MemberTable) -> None:
    _purchasers(monkeypatch)
    members.rows[("tenant-1", "user-1")] = SimpleNamespace(role="Manager")

    assert await RoleResolver(session=None).resolve("user-1", "tenant-1") == "manager"
    assert members.inserts == []


@pytest.mark.asyncio
async def test_purchaser_is_promoted_once(monkeypatch: pytest.MonkeyPatch, members: _MemberTable) -> None:
    _purchasers(monkeypatch, ("tenant-1", "buyer"))
    resolver = RoleResolver(session=None)

    first = await resolver.resolve("buyer", "tenant-1", email="buyer@contoso.com")
    members.rows[("tenant-1", "buyer")].role = "user"
    second = await resolver.resolve("buyer", "tenant-1")

    assert first == "admin"
    assert second == "user"
    assert members.inserts == [{"user_id": "buyer", "role": "admin", "added_by": AUTO_PROMOTION_MARKER}]


@pytest.mark.asyncio
async def test_concurrent_promotion_reads_winning_row(monkeypatch: pytest.MonkeyPatch, members: _MemberTable) -> None:
    _purchasers(monkeypatch, ("tenant-1", "buyer"))
    repository = members.repository(None, "tenant-1")
    calls = {"reads": 0}

    async def _racing_read(user_id: str) -> SimpleNamespace | None:
        calls["reads"] += 1
        if calls["reads"] == 1:
            members.rows[("tenant-1", user_id)] = SimpleNamespace(role="admin")
            return None
        return members.rows.get(("tenant-1", user_id))

    repository.get_by_user_id = _racing_read
    monkeypatch.setattr(roles, "TenantMemberRepository", lambda session, tenant_id: repository)

    assert await RoleResolver(session=None).resolve("buyer", "tenant-1") == "admin"
    assert calls["reads"] == 2


@pytest.mark.asyncio
async def test_non_purchaser_is_registered_as_user(monkeypatch: pytest.MonkeyPatch, members: _MemberTable) -> None:
    _purchasers(monkeypatch, ("tenant-1", "buyer"))

    role = await RoleResolver(session=None).resolve("colleague", "tenant-1")

    assert role == "user"
    assert members.rows[("tenant-1", "colleague")].role == "user"


@pytest.mark.asyncio
async def test_purchase_in_other_tenant_does_not_promote(monkeypatch: pytest.MonkeyPatch, members: _MemberTable) -> None:
    _purchasers(monkeypatch, ("tenant-2", "buyer"))

    assert await RoleResolver(session=None).resolve("buyer", "tenant-1") == "user"


@pytest.mark.asyncio
async def test_registration_failure_is_not_fatal(monkeypatch: pytest.MonkeyPatch, members: _MemberTable) -> None:
    _purchasers(monkeypatch)
    members.fail_inserts = True
    session = SimpleNamespace(rollback=AsyncMock())

    assert await RoleResolver(session=session).resolve("colleague", "tenant-1") == "user"
    session.rollback.assert_awaited_once()


@pytest.mark.asyncio
async def test_missing_identity_has_no_role(members: _MemberTable) -> None:
    resolver = RoleResolver(session=None)

    assert await resolver.resolve(None, "tenant-1") is None
    assert await resolver.resolve("user-1", "") is None


@pytest.mark.asyncio
async def test_require_roles_fails_closed() -> None:
    guard = require_roles("admin", "manager")

    assert await guard(role="manager") == "manager"
    for role in ("user", None):
        with pytest.raises(HTTPException) as exc:
            await guard(role=role)
        assert exc.value.status_code == 403


@pytest.mark.asyncio
async def test_require_plan_tiers_fails_closed() -> None:
    guard = require_plan_tiers("pro", "enterprise")
    context = AuthContext(tenant_id="tenant-1", user_id="user-1")

    assert await guard(context=context, tier="pro") == "pro"
    with pytest.raises(HTTPException) as exc:
        await guard(context=context, tier="free")
    assert exc.value.status_code == 403
