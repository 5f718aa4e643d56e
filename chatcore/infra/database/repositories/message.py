"""Message log and conversation memory repositories."""
from __future__ import annotations

from datetime import datetime
from typing import Any, ClassVar, Dict, Optional

from sqlalchemy import func
from sqlalchemy.dialects.postgresql import insert as pg_insert

from chatcore.infra.database.models.conversation import ConversationMemory, MessageRow
from chatcore.infra.database.repositories.base import BaseRepository, as_uuid


class MessageRepository(BaseRepository[MessageRow]):
    model: ClassVar[type] = MessageRow

    async def save(
        self,
        tenant_id: str,
        canal: str,
        *,
        role: str,
        content: str,
        message_id: Optional[str],
        from_number: str,
        at: datetime,
    ) -> bool:
        """Idempotent on (tenant_id, message_id); False when the row already existed."""
        stmt = (
            pg_insert(MessageRow)
            .values(
                tenant_id=as_uuid(tenant_id),
                canal=canal,
                role=role,
                content=content,
                message_id=message_id,
                from_number=from_number or "anonimo",
                timestamp=at,
            )
            .on_conflict_do_nothing(constraint="uq_messages_tenant_message_id")
            .returning(MessageRow.id)
        )
        result = await self.session.execute(stmt)
        return result.first() is not None


class ConversationMemoryRepository(BaseRepository[ConversationMemory]):
    model: ClassVar[type] = ConversationMemory

    async def remember(
        self, tenant_id: str, canal: str, sender: str, key: str, value: Dict[str, Any]
    ) -> None:
        stmt = pg_insert(ConversationMemory).values(
            tenant_id=as_uuid(tenant_id), canal=canal, sender_id=sender, key=key, value=value,
        )
        stmt = stmt.on_conflict_do_update(
            constraint="uq_conversation_memory_key",
            set_={"value": stmt.excluded.value, "updated_at": func.now()},
        )
        await self.session.execute(stmt)
