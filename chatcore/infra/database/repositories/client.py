"""Repository for the ``clientes`` override / awaiting row."""
from __future__ import annotations

from datetime import datetime
from typing import Any, ClassVar, Dict, Optional

from sqlalchemy import func, update
from sqlalchemy.dialects.postgresql import insert as pg_insert

from chatcore.infra.database.models.client import Cliente
from chatcore.infra.database.repositories.base import BaseRepository, as_uuid

CAPTURE_COLUMNS = frozenset({"email", "telefono", "nombre", "selected_channel", "pais"})


class ClientRepository(BaseRepository[Cliente]):
    model: ClassVar[type] = Cliente

    async def get(self, tenant_id: str, canal: str, contacto: str) -> Optional[Cliente]:
        return await self.first_where(tenant_id=as_uuid(tenant_id), canal=canal, contacto=contacto)

    async def _upsert(
        self,
        tenant_id: str,
        canal: str,
        contacto: str,
        values: Dict[str, Any],
        *,
        coalesce: bool = False,
    ) -> None:
        """Insert the key with ``values`` or update those columns in place.

        With ``coalesce`` a NULL in ``values`` keeps the stored column.
        """
        stmt = pg_insert(Cliente).values(
            tenant_id=as_uuid(tenant_id), canal=canal, contacto=contacto, **values
        )
        set_: Dict[str, Any] = {"updated_at": func.now()}
        for column in values:
            excluded = getattr(stmt.excluded, column)
            set_[column] = func.coalesce(excluded, getattr(Cliente, column)) if coalesce else excluded
        stmt = stmt.on_conflict_do_update(constraint="uq_clientes_key", set_=set_)
        await self.session.execute(stmt)

    async def _update(self, tenant_id: str, canal: str, contacto: str, values: Dict[str, Any]) -> None:
        stmt = (
            update(Cliente)
            .where(
                Cliente.tenant_id == as_uuid(tenant_id),
                Cliente.canal == canal,
                Cliente.contacto == contacto,
            )
            .values(updated_at=func.now(), **values)
        )
        await self.session.execute(stmt)

    async def set_human_override(self, tenant_id: str, canal: str, contacto: str, *, until: datetime) -> None:
        await self._upsert(
            tenant_id, canal, contacto, {"human_override": True, "human_override_until": until}
        )

    async def clear_human_override(self, tenant_id: str, canal: str, contacto: str) -> None:
        await self._update(
            tenant_id, canal, contacto, {"human_override": False, "human_override_until": None}
        )

    async def set_estado(self, tenant_id: str, canal: str, contacto: str, estado: str) -> None:
        await self._upsert(tenant_id, canal, contacto, {"estado": estado})

    async def upsert_details(
        self,
        tenant_id: str,
        canal: str,
        contacto: str,
        *,
        nombre: Optional[str],
        email: Optional[str],
        telefono: Optional[str],
        pais: Optional[str],
        estado: Optional[str] = None,
    ) -> None:
        await self._upsert(
            tenant_id,
            canal,
            contacto,
            {"nombre": nombre, "email": email, "telefono": telefono, "pais": pais, "estado": estado},
            coalesce=True,
        )

    async def set_awaiting(
        self,
        tenant_id: str,
        canal: str,
        contacto: str,
        *,
        field_name: str,
        payload: Dict[str, Any],
        at: datetime,
    ) -> None:
        await self._upsert(
            tenant_id,
            canal,
            contacto,
            {"awaiting_field": field_name, "awaiting_payload": payload, "awaiting_updated_at": at},
        )

    async def clear_awaiting(self, tenant_id: str, canal: str, contacto: str) -> None:
        await self._update(
            tenant_id,
            canal,
            contacto,
            {"awaiting_field": None, "awaiting_payload": {}, "awaiting_updated_at": None},
        )

    async def save_captured(self, tenant_id: str, canal: str, contacto: str, column: str, value: str) -> None:
        if column not in CAPTURE_COLUMNS:
            raise ValueError(f"Unknown client column {column!r}")
        await self._upsert(tenant_id, canal, contacto, {column: value})

    async def set_lang(self, tenant_id: str, canal: str, contacto: str, lang: str) -> None:
        await self._upsert(tenant_id, canal, contacto, {"lang": lang})
