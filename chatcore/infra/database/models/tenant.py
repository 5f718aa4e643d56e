"""Tenant-owned configuration the orchestrator reads: tenant row, FAQs, intents, CTAs, follow-up settings."""
from __future__ import annotations

import uuid
from typing import Any, List, Optional

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from chatcore.infra.database.models.base import Base, TimestampMixin, _uuid_pk


class TenantRow(Base, TimestampMixin):
    """A business using the platform."""

    __tablename__ = "tenants"

    id: Mapped[uuid.UUID] = _uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False, server_default="")
    idioma: Mapped[str] = mapped_column(String(8), nullable=False, server_default="es")
    membresia_activa: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="true")

    telefono_negocio: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    email_negocio: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    cta_text: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    cta_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    prompt: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    prompt_meta: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    info_clave: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    funciones_asistente: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    settings: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, server_default="{}")
    """Free-form settings: ``meta.pixel_id``, ``meta.capi_token``, ``services``..."""

    def __repr__(self) -> str:
        return f"TenantRow(id={self.id!r}, name={self.name!r})"


class FollowUpSetting(Base, TimestampMixin):
    __tablename__ = "follow_up_settings"

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), primary_key=True,
    )
    minutos_espera: Mapped[int] = mapped_column(Integer, nullable=False, server_default="60")
    mensaje_nivel_bajo: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    mensaje_nivel_medio: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    mensaje_nivel_alto: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class Faq(Base, TimestampMixin):
    __tablename__ = "faqs"
    __table_args__ = (
        Index("ix_faqs_tenant_intencion", "tenant_id", "intencion"),
    )

    id: Mapped[uuid.UUID] = _uuid_pk()
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False,
    )
    canal: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    """NULL means the answer applies to every channel."""
    intencion: Mapped[str] = mapped_column(String(64), nullable=False)
    respuesta: Mapped[str] = mapped_column(Text, nullable=False)
    idioma: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)


class TenantIntentRow(Base, TimestampMixin):
    __tablename__ = "intenciones"
    __table_args__ = (
        Index("ix_intenciones_tenant_canal", "tenant_id", "canal"),
    )

    id: Mapped[uuid.UUID] = _uuid_pk()
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False,
    )
    canal: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    nombre: Mapped[str] = mapped_column(String(64), nullable=False)
    ejemplos: Mapped[List[str]] = mapped_column(ARRAY(Text), nullable=False, server_default="{}")
    respuesta: Mapped[str] = mapped_column(Text, nullable=False)
    idioma: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    prioridad: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    activo: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="true")


class TenantCta(Base, TimestampMixin):
    __tablename__ = "tenant_ctas"
    __table_args__ = (
        UniqueConstraint("tenant_id", "intent_slug", "canal", name="uq_tenant_ctas_slug_canal"),
    )

    id: Mapped[uuid.UUID] = _uuid_pk()
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False,
    )
    intent_slug: Mapped[str] = mapped_column(String(64), nullable=False)
    canal: Mapped[str] = mapped_column(String(32), nullable=False, server_default="*")
    cta_text: Mapped[str] = mapped_column(String(255), nullable=False)
    cta_url: Mapped[str] = mapped_column(Text, nullable=False)
