"""
SQL implementation of the orchestrator's storage ports.

Every call runs in its own short session and commits immediately, so one
failed best-effort write never poisons the rest of the turn. Driver errors
are re-raised as ``PersistenceError``.
"""
from __future__ import annotations

import functools
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar

import asyncpg
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from chatcore.core.exceptions import PersistenceError
from chatcore.infra.database.repositories import (
    ClientRepository,
    ConversationMemoryRepository,
    ConversationStateRepository,
    InteractionRepository,
    MessageRepository,
    MonthlyUsageRepository,
    SalesIntelligenceRepository,
    ScheduledMessageRepository,
    TenantRepository,
)
from chatcore.orchestrator.ports import Stores
from chatcore.orchestrator.types import (
    ClientRecord,
    ConversationContext,
    ConversationState,
    CtaRow,
    CustomerDetails,
    FaqEntry,
    FollowUpSettings,
    PendingFollowUp,
    Tenant,
    TenantIntent,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# asyncpg and socket errors can surface outside SQLAlchemy's wrapping
_DRIVER_ERRORS = (SQLAlchemyError, asyncpg.PostgresError, OSError)


def _wrap_errors(fn: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
    @functools.wraps(fn)
    async def wrapper(self: "SqlStore", *args: Any, **kwargs: Any) -> T:
        try:
            return await fn(self, *args, **kwargs)
        except _DRIVER_ERRORS as exc:
            raise PersistenceError(
                f"{fn.__name__} failed", details={"operation": fn.__name__}, cause=exc
            ) from exc
    return wrapper


class SqlStore:
    """All storage ports backed by PostgreSQL."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    def as_stores(self) -> Stores:
        return Stores(
            states=self,
            clients=self,
            dedup=self,
            messages=self,
            sales=self,
            followups=self,
            tenants=self,
            memory=self,
            usage=self,
        )

    async def _write(self, op: Callable[[AsyncSession], Awaitable[T]]) -> T:
        async with self._session_factory() as session:
            try:
                result = await op(session)
                await session.commit()
                return result
            except Exception:
                await session.rollback()
                raise

    async def _read(self, op: Callable[[AsyncSession], Awaitable[T]]) -> T:
        async with self._session_factory() as session:
            return await op(session)

    # ── ConversationStateStore ───────────────────────────────────────────

    @_wrap_errors
    async def get_state(self, tenant_id: str, canal: str, sender: str) -> ConversationState:
        row = await self._read(lambda s: ConversationStateRepository(s).get(tenant_id, canal, sender))
        if row is None:
            return ConversationState()
        return ConversationState(
            active_flow=row.active_flow,
            active_step=row.active_step,
            context=ConversationContext.from_dict(row.context),
        )

    @_wrap_errors
    async def set_state(self, tenant_id, canal, sender, *, flow, step, context) -> None:
        await self._write(
            lambda s: ConversationStateRepository(s).upsert(
                tenant_id, canal, sender, flow=flow, step=step, context=context
            )
        )

    # ── ClientStore ──────────────────────────────────────────────────────

    @_wrap_errors
    async def get_client(self, tenant_id: str, canal: str, contacto: str) -> Optional[ClientRecord]:
        row = await self._read(lambda s: ClientRepository(s).get(tenant_id, canal, contacto))
        if row is None:
            return None
        return ClientRecord(
            estado=row.estado,
            human_override=bool(row.human_override),
            human_override_until=row.human_override_until,
            awaiting_field=row.awaiting_field,
            awaiting_payload=dict(row.awaiting_payload or {}),
            awaiting_updated_at=row.awaiting_updated_at,
            lang=row.lang,
            nombre=row.nombre,
            email=row.email,
            telefono=row.telefono,
            pais=row.pais,
            selected_channel=row.selected_channel,
        )

    @_wrap_errors
    async def set_human_override(self, tenant_id, canal, contacto, *, until: datetime) -> None:
        await self._write(
            lambda s: ClientRepository(s).set_human_override(tenant_id, canal, contacto, until=until)
        )

    @_wrap_errors
    async def clear_human_override(self, tenant_id, canal, contacto) -> None:
        await self._write(lambda s: ClientRepository(s).clear_human_override(tenant_id, canal, contacto))

    @_wrap_errors
    async def set_estado(self, tenant_id, canal, contacto, estado) -> None:
        await self._write(lambda s: ClientRepository(s).set_estado(tenant_id, canal, contacto, estado))

    @_wrap_errors
    async def upsert_details(
        self, tenant_id, canal, contacto, details: CustomerDetails, *, estado=None
    ) -> None:
        await self._write(
            lambda s: ClientRepository(s).upsert_details(
                tenant_id,
                canal,
                contacto,
                nombre=details.nombre,
                email=details.email,
                telefono=details.telefono,
                pais=details.pais,
                estado=estado,
            )
        )

    @_wrap_errors
    async def set_awaiting(self, tenant_id, canal, contacto, *, field_name, payload, at) -> None:
        await self._write(
            lambda s: ClientRepository(s).set_awaiting(
                tenant_id, canal, contacto, field_name=field_name, payload=payload, at=at
            )
        )

    @_wrap_errors
    async def clear_awaiting(self, tenant_id, canal, contacto) -> None:
        await self._write(lambda s: ClientRepository(s).clear_awaiting(tenant_id, canal, contacto))

    @_wrap_errors
    async def save_captured(self, tenant_id, canal, contacto, column, value) -> None:
        await self._write(
            lambda s: ClientRepository(s).save_captured(tenant_id, canal, contacto, column, value)
        )

    @_wrap_errors
    async def set_lang(self, tenant_id, canal, contacto, lang) -> None:
        await self._write(lambda s: ClientRepository(s).set_lang(tenant_id, canal, contacto, lang))

    # ── DedupStore ───────────────────────────────────────────────────────

    @_wrap_errors
    async def reserve(self, tenant_id: str, canal: str, event_id: str) -> bool:
        return await self._write(lambda s: InteractionRepository(s).reserve(tenant_id, canal, event_id))

    @_wrap_errors
    async def record_failure(self, tenant_id: str, canal: str, event_id: str) -> None:
        await self._write(lambda s: InteractionRepository(s).record_failure(tenant_id, canal, event_id))

    # ── MessageStore / SalesIntentStore / MemoryStore / UsageStore ───────

    @_wrap_errors
    async def save_message(self, tenant_id, canal, *, role, content, message_id, from_number, at) -> bool:
        return await self._write(
            lambda s: MessageRepository(s).save(
                tenant_id,
                canal,
                role=role,
                content=content,
                message_id=message_id,
                from_number=from_number,
                at=at,
            )
        )

    @_wrap_errors
    async def record(self, tenant_id, canal, *, contacto, message_id, text, intent, nivel, at) -> bool:
        return await self._write(
            lambda s: SalesIntelligenceRepository(s).record(
                tenant_id,
                canal,
                contacto=contacto,
                message_id=message_id,
                text=text,
                intent=intent,
                nivel=nivel,
                at=at,
            )
        )

    @_wrap_errors
    async def remember(self, tenant_id, canal, sender, key, value: Dict[str, Any]) -> None:
        await self._write(
            lambda s: ConversationMemoryRepository(s).remember(tenant_id, canal, sender, key, value)
        )

    @_wrap_errors
    async def increment(self, tenant_id: str, canal: str, *, month: datetime) -> None:
        await self._write(lambda s: MonthlyUsageRepository(s).increment(tenant_id, canal, month=month))

    # ── FollowUpStore ────────────────────────────────────────────────────

    @_wrap_errors
    async def upsert_pending(self, tenant_id, canal, contacto, *, content, send_at) -> str:
        return await self._write(
            lambda s: ScheduledMessageRepository(s).upsert_pending(
                tenant_id, canal, contacto, content=content, send_at=send_at
            )
        )

    @_wrap_errors
    async def list_due(self, now: datetime, *, limit: int = 50) -> List[PendingFollowUp]:
        rows = await self._read(lambda s: ScheduledMessageRepository(s).list_due(now, limit=limit))
        return [
            PendingFollowUp(
                id=r.id,
                tenant_id=str(r.tenant_id),
                canal=r.canal,
                contacto=r.contacto,
                contenido=r.contenido,
                fecha_envio=r.fecha_envio,
            )
            for r in rows
        ]

    @_wrap_errors
    async def mark_sent(self, followup_id: Any, *, at: datetime) -> bool:
        return await self._write(lambda s: ScheduledMessageRepository(s).mark_sent(followup_id, at=at))

    # ── TenantStore ──────────────────────────────────────────────────────

    @_wrap_errors
    async def get_tenant(self, tenant_id: str) -> Optional[Tenant]:
        row = await self._read(lambda s: TenantRepository(s).get(tenant_id))
        if row is None:
            return None
        return Tenant(
            id=str(row.id),
            name=row.name,
            default_lang=row.idioma or "es",
            membership_active=bool(row.membresia_activa),
            notify_phone=row.telefono_negocio,
            notify_email=row.email_negocio,
            cta_text=row.cta_text,
            cta_url=row.cta_url,
            prompt=row.prompt,
            prompt_meta=row.prompt_meta,
            info_clave=row.info_clave,
            funciones_asistente=row.funciones_asistente,
            settings=dict(row.settings or {}),
        )

    @_wrap_errors
    async def get_followup_settings(self, tenant_id: str) -> Optional[FollowUpSettings]:
        row = await self._read(lambda s: TenantRepository(s).get_followup_settings(tenant_id))
        if row is None:
            return None
        return FollowUpSettings(
            wait_minutes=row.minutos_espera,
            msg_low=row.mensaje_nivel_bajo,
            msg_medium=row.mensaje_nivel_medio,
            msg_high=row.mensaje_nivel_alto,
        )

    @_wrap_errors
    async def get_faq(self, tenant_id, canal, intent, lang=None) -> Optional[FaqEntry]:
        row = await self._read(lambda s: TenantRepository(s).get_faq(tenant_id, canal, intent, lang))
        if row is None:
            return None
        return FaqEntry(intent=row.intencion, answer=row.respuesta, canal=row.canal, lang=row.idioma)

    @_wrap_errors
    async def list_intents(self, tenant_id: str, canal: str) -> Sequence[TenantIntent]:
        rows = await self._read(lambda s: TenantRepository(s).list_intents(tenant_id, canal))
        return [
            TenantIntent(
                intent=r.nombre,
                examples=tuple(r.ejemplos or ()),
                answer=r.respuesta,
                lang=r.idioma,
                priority=r.prioridad,
            )
            for r in rows
        ]

    @_wrap_errors
    async def list_ctas(self, tenant_id: str, canal: str) -> Sequence[CtaRow]:
        rows = await self._read(lambda s: TenantRepository(s).list_ctas(tenant_id, canal))
        return [CtaRow(r.intent_slug, r.canal, r.cta_text, r.cta_url) for r in rows]
