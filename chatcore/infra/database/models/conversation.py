"""Per-contact conversation state, message log and memory."""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import DateTime, Index, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from chatcore.infra.database.models.base import Base, _uuid_pk


class ConversationStateRow(Base):
    """Flow/step pointer plus the merge-patched context bag."""

    __tablename__ = "conversation_state"
    __table_args__ = (
        UniqueConstraint("tenant_id", "canal", "sender_id", name="uq_conversation_state_key"),
    )

    id: Mapped[uuid.UUID] = _uuid_pk()
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    canal: Mapped[str] = mapped_column(String(32), nullable=False)
    sender_id: Mapped[str] = mapped_column(String(255), nullable=False)
    active_flow: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    active_step: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    context: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, server_default="{}")
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(),
    )

    def __repr__(self) -> str:
        return (
            f"ConversationStateRow(sender={self.sender_id!r}, flow={self.active_flow!r}, "
            f"step={self.active_step!r})"
        )


class MessageRow(Base):
    """Inbound and assistant messages; ``message_id`` is unique per tenant."""

    __tablename__ = "messages"
    __table_args__ = (
        UniqueConstraint("tenant_id", "message_id", name="uq_messages_tenant_message_id"),
        Index("ix_messages_tenant_from", "tenant_id", "from_number"),
        Index("ix_messages_timestamp", "timestamp"),
    )

    id: Mapped[uuid.UUID] = _uuid_pk()
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    canal: Mapped[str] = mapped_column(String(32), nullable=False)
    role: Mapped[str] = mapped_column(String(16), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False, server_default="")
    from_number: Mapped[str] = mapped_column(String(255), nullable=False, server_default="anonimo")
    message_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    intent: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    interest_level: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(),
    )

    def __repr__(self) -> str:
        preview = (self.content or "")[:40]
        return f"MessageRow(role={self.role!r}, content={preview!r})"


class ConversationMemory(Base):
    """Small key/value facts remembered about a contact."""

    __tablename__ = "conversation_memory"
    __table_args__ = (
        UniqueConstraint("tenant_id", "canal", "sender_id", "key", name="uq_conversation_memory_key"),
    )

    id: Mapped[uuid.UUID] = _uuid_pk()
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    canal: Mapped[str] = mapped_column(String(32), nullable=False)
    sender_id: Mapped[str] = mapped_column(String(255), nullable=False)
    key: Mapped[str] = mapped_column(String(64), nullable=False)
    value: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, server_default="{}")
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(),
    )
