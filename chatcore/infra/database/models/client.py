"""Per-contact override / awaiting / captured-details row (``clientes``)."""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import Boolean, DateTime, String, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from chatcore.infra.database.models.base import Base, _uuid_pk


class Cliente(Base):
    """Invariant: ``human_override`` implies ``human_override_until`` was in the
    future when written. Readers compare against ``now`` themselves."""

    __tablename__ = "clientes"
    __table_args__ = (
        UniqueConstraint("tenant_id", "canal", "contacto", name="uq_clientes_key"),
    )

    id: Mapped[uuid.UUID] = _uuid_pk()
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    canal: Mapped[str] = mapped_column(String(32), nullable=False)
    contacto: Mapped[str] = mapped_column(String(255), nullable=False)

    estado: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    human_override: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="false")
    human_override_until: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    awaiting_field: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    awaiting_payload: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, server_default="{}")
    awaiting_updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    lang: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    nombre: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    telefono: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    pais: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    selected_channel: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now(),
    )

    def __repr__(self) -> str:
        return (
            f"Cliente(contacto={self.contacto!r}, estado={self.estado!r}, "
            f"override={self.human_override})"
        )
