from __future__ import annotations

from typing import Generic, TypeVar

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import Select

from marketplace_entitlements.models.base import TenantScopedBase

ModelT = TypeVar("ModelT", bound=TenantScopedBase)


class TenantContextMissingError(RuntimeError):
    pass


class TenantRepository(Generic[ModelT]):
    def __init__(self, session: AsyncSession, model: type[ModelT], tenant_id: str | None) -> None:
        if not tenant_id or not str(tenant_id).strip():
            raise TenantContextMissingError("Tenant id is required for tenant-scoped access")
        self.session = session
        self.model = model
        self.tenant_id = str(tenant_id).strip()

    def _scoped_select(self) -> Select[tuple[ModelT]]:
        return select(self.model).where(self.model.tenant_id == self.tenant_id)

    async def create(self, **values: object) -> ModelT:
        payload = dict(values)
        payload["tenant_id"] = self.tenant_id
        instance = self.model(**payload)
        self.session.add(instance)
        await self.session.flush()
        await self.session.refresh(instance)
        return instance

    async def count(self, *criteria: object) -> int:
        stmt = (
            select(func.count(self.model.id))
            .where(self.model.tenant_id == self.tenant_id)
            .where(*criteria)
        )
        return int(await self.session.scalar(stmt) or 0)
