"""Scheduled follow-up repository."""
from __future__ import annotations

from datetime import datetime
from typing import Any, ClassVar, List

from sqlalchemy import literal_column, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert

from chatcore.infra.database.models.followup import ScheduledMessage
from chatcore.infra.database.repositories.base import BaseRepository, as_uuid


class ScheduledMessageRepository(BaseRepository[ScheduledMessage]):
    model: ClassVar[type] = ScheduledMessage

    async def upsert_pending(
        self,
        tenant_id: str,
        canal: str,
        contacto: str,
        *,
        content: str,
        send_at: datetime,
    ) -> str:
        """Insert the pending row or, if one exists, replace its content and date.

        The conflict target is the partial unique index over ``enviado = false``.
        ``xmax = 0`` distinguishes a fresh insert from an update.
        """
        stmt = pg_insert(ScheduledMessage).values(
            tenant_id=as_uuid(tenant_id),
            canal=canal,
            contacto=contacto,
            contenido=content,
            fecha_envio=send_at,
            enviado=False,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[ScheduledMessage.tenant_id, ScheduledMessage.canal, ScheduledMessage.contacto],
            index_where=ScheduledMessage.enviado.is_(False),
            set_={"contenido": stmt.excluded.contenido, "fecha_envio": stmt.excluded.fecha_envio},
        ).returning(literal_column("(xmax = 0)").label("inserted"))
        result = await self.session.execute(stmt)
        inserted = result.scalar_one()
        return "inserted" if inserted else "updated"

    async def list_due(self, now: datetime, *, limit: int = 50) -> List[ScheduledMessage]:
        stmt = (
            select(ScheduledMessage)
            .where(ScheduledMessage.enviado.is_(False), ScheduledMessage.fecha_envio <= now)
            .order_by(ScheduledMessage.fecha_envio)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def mark_sent(self, followup_id: Any, *, at: datetime) -> bool:
        stmt = (
            update(ScheduledMessage)
            .where(ScheduledMessage.id == followup_id, ScheduledMessage.enviado.is_(False))
            .values(enviado=True, sent_at=at)
        )
        result = await self.session.execute(stmt)
        return (result.rowcount or 0) > 0
