"""Append-only ledgers: dedup reservations, sales intents, monthly usage."""
from __future__ import annotations

import uuid
from datetime import date, datetime

from sqlalchemy import Date, DateTime, Index, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from chatcore.infra.database.models.base import Base, _uuid_pk


class Interaction(Base):
    """A row means "event already claimed". Rows are never deleted; a claim
    whose delivery failed gets a second ``:failed`` row beside it."""

    __tablename__ = "interactions"
    __table_args__ = (
        UniqueConstraint("tenant_id", "canal", "message_id", name="uq_interactions_event"),
    )

    id: Mapped[uuid.UUID] = _uuid_pk()
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    canal: Mapped[str] = mapped_column(String(32), nullable=False)
    message_id: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(),
    )


class SalesIntelligence(Base):
    __tablename__ = "sales_intelligence"
    __table_args__ = (
        UniqueConstraint("tenant_id", "canal", "message_id", name="uq_sales_intelligence_message"),
        Index("ix_sales_intelligence_tenant_fecha", "tenant_id", "fecha"),
    )

    id: Mapped[uuid.UUID] = _uuid_pk()
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    canal: Mapped[str] = mapped_column(String(32), nullable=False)
    contacto: Mapped[str] = mapped_column(String(255), nullable=False)
    message_id: Mapped[str] = mapped_column(String(255), nullable=False)
    mensaje: Mapped[str] = mapped_column(Text, nullable=False, server_default="")
    intencion: Mapped[str] = mapped_column(String(64), nullable=False)
    nivel_interes: Mapped[int] = mapped_column(Integer, nullable=False)
    fecha: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(),
    )


class MonthlyUsage(Base):
    __tablename__ = "uso_mensual"
    __table_args__ = (
        UniqueConstraint("tenant_id", "canal", "mes", name="uq_uso_mensual_mes"),
    )

    id: Mapped[uuid.UUID] = _uuid_pk()
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    canal: Mapped[str] = mapped_column(String(32), nullable=False)
    mes: Mapped[date] = mapped_column(Date, nullable=False)
    usados: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
