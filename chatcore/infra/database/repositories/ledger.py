"""Dedup reservations, sales-intent rows and monthly usage counters."""
from __future__ import annotations

from datetime import datetime
from typing import ClassVar

from sqlalchemy.dialects.postgresql import insert as pg_insert

from chatcore.infra.database.models.ledger import Interaction, MonthlyUsage, SalesIntelligence
from chatcore.infra.database.repositories.base import BaseRepository, as_uuid
from chatcore.orchestrator.ports import FAILURE_SUFFIX


class InteractionRepository(BaseRepository[Interaction]):
    model: ClassVar[type] = Interaction

    async def reserve(self, tenant_id: str, canal: str, event_id: str) -> bool:
        """INSERT ... ON CONFLICT DO NOTHING RETURNING; True only for the first caller."""
        stmt = (
            pg_insert(Interaction)
            .values(tenant_id=as_uuid(tenant_id), canal=canal, message_id=event_id)
            .on_conflict_do_nothing(constraint="uq_interactions_event")
            .returning(Interaction.id)
        )
        result = await self.session.execute(stmt)
        return result.first() is not None

    async def record_failure(self, tenant_id: str, canal: str, event_id: str) -> None:
        await self.reserve(tenant_id, canal, f"{event_id}{FAILURE_SUFFIX}")


class SalesIntelligenceRepository(BaseRepository[SalesIntelligence]):
    model: ClassVar[type] = SalesIntelligence

    async def record(
        self,
        tenant_id: str,
        canal: str,
        *,
        contacto: str,
        message_id: str,
        text: str,
        intent: str,
        nivel: int,
        at: datetime,
    ) -> bool:
        stmt = (
            pg_insert(SalesIntelligence)
            .values(
                tenant_id=as_uuid(tenant_id),
                canal=canal,
                contacto=contacto,
                message_id=message_id,
                mensaje=text,
                intencion=intent,
                nivel_interes=nivel,
                fecha=at,
            )
            .on_conflict_do_nothing(constraint="uq_sales_intelligence_message")
            .returning(SalesIntelligence.id)
        )
        result = await self.session.execute(stmt)
        return result.first() is not None


class MonthlyUsageRepository(BaseRepository[MonthlyUsage]):
    model: ClassVar[type] = MonthlyUsage

    async def increment(self, tenant_id: str, canal: str, *, month: datetime) -> None:
        stmt = pg_insert(MonthlyUsage).values(
            tenant_id=as_uuid(tenant_id),
            canal=canal,
            mes=month.date().replace(day=1),
            usados=1,
        )
        stmt = stmt.on_conflict_do_update(
            constraint="uq_uso_mensual_mes",
            set_={"usados": MonthlyUsage.usados + 1},
        )
        await self.session.execute(stmt)
