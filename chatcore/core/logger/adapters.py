"""
LoggerAdapter that stamps every record with the identity of the current turn.
"""
from __future__ import annotations

import logging
from typing import Any, MutableMapping, Optional


class TurnLoggerAdapter(logging.LoggerAdapter):
    """Attach tenant / channel / contact / message id to each record."""

    def __init__(
        self,
        logger: logging.Logger,
        *,
        tenant_id: Optional[str] = None,
        canal: Optional[str] = None,
        contact: Optional[str] = None,
        message_id: Optional[str] = None,
    ) -> None:
        super().__init__(
            logger,
            {
                "tenant_id": tenant_id,
                "canal": canal,
                "contact": contact,
                "message_id": message_id,
            },
        )

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        extra = dict(self.extra or {})
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        return msg, kwargs
