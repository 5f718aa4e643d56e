"""Service layer: builds the turn orchestrator and exposes turn handling and follow-up dispatch."""
from chatcore.services.turn_service import (
    InboundMessage,
    TurnService,
    build_turn_service_from_env,
    store_kind_from_env,
)

__all__ = [
    "InboundMessage",
    "TurnService",
    "build_turn_service_from_env",
    "store_kind_from_env",
]
