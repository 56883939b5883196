from __future__ import annotations

from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace_entitlements.core.repositories.base import TenantRepository
from marketplace_entitlements.models.tenant_member import TenantMember


class TenantMemberRepository(TenantRepository[TenantMember]):
    def __init__(self, session: AsyncSession, tenant_id: str | None) -> None:
        super().__init__(session=session, model=TenantMember, tenant_id=tenant_id)

    async def get_by_user_id(self, user_id: str) -> TenantMember | None:
        result = await self.session.execute(
            self._scoped_select().where(TenantMember.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def insert_if_absent(
        self,
        *,
        user_id: str,
        role: str,
        added_by: str,
        email: str | None = None,
        name: str | None = None,
    ) -> bool:
        stmt = (
            insert(TenantMember)
            .values(
                tenant_id=self.tenant_id,
                user_id=user_id,
                role=role,
                added_by=added_by,
                email=email,
                name=name,
            )
            .on_conflict_do_nothing(index_elements=[TenantMember.tenant_id, TenantMember.user_id])
        )
        result = await self.session.execute(stmt)
        await self.session.commit()
        return (result.rowcount or 0) > 0
