"""Repositories for chatcore tables."""
from chatcore.infra.database.repositories.base import BaseRepository, as_uuid
from chatcore.infra.database.repositories.client import ClientRepository
from chatcore.infra.database.repositories.followup import ScheduledMessageRepository
from chatcore.infra.database.repositories.ledger import (
    InteractionRepository,
    MonthlyUsageRepository,
    SalesIntelligenceRepository,
)
from chatcore.infra.database.repositories.message import (
    ConversationMemoryRepository,
    MessageRepository,
)
from chatcore.infra.database.repositories.state import ConversationStateRepository
from chatcore.infra.database.repositories.tenant import TenantRepository

__all__ = [
    "BaseRepository",
    "as_uuid",
    "ClientRepository",
    "ConversationStateRepository",
    "ConversationMemoryRepository",
    "InteractionRepository",
    "MessageRepository",
    "MonthlyUsageRepository",
    "SalesIntelligenceRepository",
    "ScheduledMessageRepository",
    "TenantRepository",
]
