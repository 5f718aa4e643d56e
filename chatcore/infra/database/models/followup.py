"""Scheduled follow-up messages (``mensajes_programados``)."""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Index, String, Text, func, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from chatcore.infra.database.models.base import Base, _uuid_pk

PENDING_PREDICATE = text("enviado = false")


class ScheduledMessage(Base):
    """At most one un-sent row per (tenant, canal, contacto)."""

    __tablename__ = "mensajes_programados"
    __table_args__ = (
        Index(
            "uq_mensajes_programados_pending",
            "tenant_id", "canal", "contacto",
            unique=True,
            postgresql_where=PENDING_PREDICATE,
        ),
        Index("ix_mensajes_programados_due", "enviado", "fecha_envio"),
    )

    id: Mapped[uuid.UUID] = _uuid_pk()
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    canal: Mapped[str] = mapped_column(String(32), nullable=False)
    contacto: Mapped[str] = mapped_column(String(255), nullable=False)
    contenido: Mapped[str] = mapped_column(Text, nullable=False)
    fecha_envio: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    enviado: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="false")
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(),
    )

    def __repr__(self) -> str:
        return (
            f"ScheduledMessage(contacto={self.contacto!r}, enviado={self.enviado}, "
            f"fecha_envio={self.fecha_envio!r})"
        )
