"""Read-only access to tenant configuration."""
from __future__ import annotations

from typing import ClassVar, List, Optional

from sqlalchemy import case, or_, select

from chatcore.infra.database.models.tenant import (
    Faq,
    FollowUpSetting,
    TenantCta,
    TenantIntentRow,
    TenantRow,
)
from chatcore.infra.database.repositories.base import BaseRepository, as_uuid


class TenantRepository(BaseRepository[TenantRow]):
    model: ClassVar[type] = TenantRow

    async def get(self, tenant_id: str) -> Optional[TenantRow]:
        tid = as_uuid(tenant_id)
        if tid is None:
            return None
        return await self.get_by_id(tid)

    async def get_followup_settings(self, tenant_id: str) -> Optional[FollowUpSetting]:
        tid = as_uuid(tenant_id)
        if tid is None:
            return None
        return await self.session.get(FollowUpSetting, tid)

    async def get_faq(
        self, tenant_id: str, canal: str, intent: str, lang: Optional[str] = None
    ) -> Optional[Faq]:
        """Channel-specific and same-language rows win over generic ones."""
        order = [case((Faq.canal == canal, 0), else_=1)]
        if lang:
            order.append(case((Faq.idioma == lang, 0), (Faq.idioma.is_(None), 1), else_=2))
        stmt = (
            select(Faq)
            .where(
                Faq.tenant_id == as_uuid(tenant_id),
                Faq.intencion == intent,
                or_(Faq.canal == canal, Faq.canal.is_(None)),
            )
            .order_by(*order)
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_intents(self, tenant_id: str, canal: str) -> List[TenantIntentRow]:
        stmt = (
            select(TenantIntentRow)
            .where(
                TenantIntentRow.tenant_id == as_uuid(tenant_id),
                TenantIntentRow.activo.is_(True),
                or_(TenantIntentRow.canal == canal, TenantIntentRow.canal.is_(None)),
            )
            .order_by(TenantIntentRow.prioridad.desc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_ctas(self, tenant_id: str, canal: str) -> List[TenantCta]:
        stmt = select(TenantCta).where(
            TenantCta.tenant_id == as_uuid(tenant_id),
            or_(TenantCta.canal == canal, TenantCta.canal == "*"),
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
