from __future__ import annotations

import logging
from typing import Literal

from fastapi import Depends, HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace_entitlements.core.auth import AuthContext, require_auth_context
from marketplace_entitlements.core.db import get_db_session
from marketplace_entitlements.core.plans import PlanTier, resolve_plan
from marketplace_entitlements.core.repositories.subscriptions import SubscriptionRepository
from marketplace_entitlements.core.repositories.tenant_members import TenantMemberRepository

logger = logging.getLogger(__name__)

Role = Literal["admin", "manager", "user"]

ROLES: tuple[Role, ...] = ("admin", "manager", "user")
AUTO_PROMOTION_MARKER = "auto-promotion:marketplace-purchaser"
AUTO_REGISTRATION_MARKER = "auto-registration"


def normalize_role(value: str | None) -> Role | None:
    normalized = (value or "").strip().lower()
    return normalized if normalized in ROLES else None  # type: ignore[return-value]


def has_required_role(role: str | None, allowed: set[str] | frozenset[str]) -> bool:
    return role is not None and role in allowed


class RoleResolver:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def resolve(
        self,
        user_id: str | None,
        tenant_id: str | None,
        email: str | None = None,
        name: str | None = None,
    ) -> Role | None:
        if not user_id or not tenant_id:
            return None

        members = TenantMemberRepository(self.session, tenant_id)
        member = await members.get_by_user_id(user_id)
        if member is not None:
            return normalize_role(member.role)

        if await SubscriptionRepository(self.session).has_activated_purchase(tenant_id, user_id):
            inserted = await members.insert_if_absent(
                user_id=user_id,
                role="admin",
                added_by=AUTO_PROMOTION_MARKER,
                email=email,
                name=name,
            )
            if not inserted:
                member = await members.get_by_user_id(user_id)
                return normalize_role(member.role) if member is not None else None
            logger.info("Auto-promoted marketplace purchaser user=%s tenant=%s", user_id, tenant_id)
            return "admin"

        try:
            await members.insert_if_absent(
                user_id=user_id,
                role="user",
                added_by=AUTO_REGISTRATION_MARKER,
                email=email,
                name=name,
            )
        except SQLAlchemyError:
            logger.warning("Could not register member user=%s tenant=%s", user_id, tenant_id, exc_info=True)
            await self.session.rollback()
        return "user"


async def resolve_role(
    session: AsyncSession,
    user_id: str | None,
    tenant_id: str | None,
    email: str | None = None,
    name: str | None = None,
) -> Role | None:
    return await RoleResolver(session).resolve(user_id, tenant_id, email=email, name=name)


async def get_current_role(
    context: AuthContext = Depends(require_auth_context),
    session: AsyncSession = Depends(get_db_session),
) -> Role | None:
    return await resolve_role(session, context.user_id, context.tenant_id, context.email, context.name)


async def get_current_tier(
    context: AuthContext = Depends(require_auth_context),
    session: AsyncSession = Depends(get_db_session),
) -> PlanTier:
    return await resolve_plan(context.tenant_id, SubscriptionRepository(session))


def require_roles(*roles: Role):  # noqa: ANN201
    allowed = frozenset(roles)

    async def _require(role: Role | None = Depends(get_current_role)) -> Role:
        if not has_required_role(role, allowed):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient role for this operation",
            )
        return role

    return _require


def require_plan_tiers(*tiers: PlanTier):  # noqa: ANN201
    allowed = frozenset(tiers)

    async def _require(
        context: AuthContext = Depends(require_auth_context),
        tier: PlanTier = Depends(get_current_tier),
    ) -> PlanTier:
        if not context.tenant_id or tier not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Your plan does not include this feature",
            )
        return tier

    return _require
