"""Turn router: run one inbound message through the orchestrator."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from chatcore.api.dependencies import get_turn_service
from chatcore.api.schemas.turns import TurnRequest, TurnResponse
from chatcore.services import InboundMessage, TurnService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/turns", tags=["turns"])
limiter = Limiter(key_func=get_remote_address)


@router.post("", response_model=TurnResponse)
@limiter.limit("30/minute")
async def run_turn(
    request: Request,
    body: TurnRequest,
    service: TurnService = Depends(get_turn_service),
):
    outcome = await service.handle(
        InboundMessage(
            tenant_id=body.tenant_id,
            canal=body.canal,
            contact=body.sender,
            text=body.text,
            message_id=body.message_id,
            from_number=body.from_number,
            prompt=body.prompt,
        )
    )
    return TurnResponse(
        handled=outcome.handled,
        sent=outcome.sent,
        reply=outcome.reply,
        source=outcome.source,
        intent=outcome.intent,
        nivel=outcome.nivel,
        lang=outcome.lang,
        silence_reason=outcome.silence_reason,
        facts=outcome.facts,
    )
