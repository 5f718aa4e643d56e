"""Follow-up router: send the follow-ups whose date has passed."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends

from chatcore.api.dependencies import get_turn_service
from chatcore.api.schemas.turns import DispatchRequest, DispatchResponse
from chatcore.services import TurnService

router = APIRouter(prefix="/followups", tags=["followups"])


@router.post("/dispatch", response_model=DispatchResponse)
async def dispatch_followups(
    body: Optional[DispatchRequest] = None,
    service: TurnService = Depends(get_turn_service),
):
    report = await service.dispatch_followups(body.now if body else None)
    return DispatchResponse(due=report.due, sent=report.sent, failed=report.failed, skipped=report.skipped)
