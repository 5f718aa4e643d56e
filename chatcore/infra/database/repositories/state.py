"""ConversationState repository."""
from __future__ import annotations

from typing import Any, ClassVar, Dict, Optional

from sqlalchemy import func
from sqlalchemy.dialects.postgresql import insert as pg_insert

from chatcore.infra.database.models.conversation import ConversationStateRow
from chatcore.infra.database.repositories.base import BaseRepository, as_uuid


class ConversationStateRepository(BaseRepository[ConversationStateRow]):
    model: ClassVar[type] = ConversationStateRow

    async def get(self, tenant_id: str, canal: str, sender: str) -> Optional[ConversationStateRow]:
        return await self.first_where(tenant_id=as_uuid(tenant_id), canal=canal, sender_id=sender)

    async def upsert(
        self,
        tenant_id: str,
        canal: str,
        sender: str,
        *,
        flow: str,
        step: str,
        context: Dict[str, Any],
    ) -> None:
        stmt = pg_insert(ConversationStateRow).values(
            tenant_id=as_uuid(tenant_id),
            canal=canal,
            sender_id=sender,
            active_flow=flow,
            active_step=step,
            context=context,
        )
        stmt = stmt.on_conflict_do_update(
            constraint="uq_conversation_state_key",
            set_={
                "active_flow": stmt.excluded.active_flow,
                "active_step": stmt.excluded.active_step,
                "context": stmt.excluded.context,
                "updated_at": func.now(),
            },
        )
        await self.session.execute(stmt)
