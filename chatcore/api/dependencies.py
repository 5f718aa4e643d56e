"""FastAPI dependency providers."""
from __future__ import annotations

from fastapi import HTTPException, Request, status

from chatcore.services import TurnService


def get_turn_service(request: Request) -> TurnService:
    """The TurnService built at startup and kept on ``app.state``."""
    service = getattr(request.app.state, "turn_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Turn service not initialised. Check server startup logs.",
        )
    return service
