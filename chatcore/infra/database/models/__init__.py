"""
chatcore.infra.database.models – SQLAlchemy 2.0 ORM models.
"""
from chatcore.infra.database.models.base import Base, TimestampMixin, _uuid_pk
from chatcore.infra.database.models.client import Cliente
from chatcore.infra.database.models.conversation import (
    ConversationMemory,
    ConversationStateRow,
    MessageRow,
)
from chatcore.infra.database.models.followup import ScheduledMessage
from chatcore.infra.database.models.ledger import Interaction, MonthlyUsage, SalesIntelligence
from chatcore.infra.database.models.tenant import (
    Faq,
    FollowUpSetting,
    TenantCta,
    TenantIntentRow,
    TenantRow,
)

__all__ = [
    "Base",
    "TimestampMixin",
    "_uuid_pk",
    "TenantRow",
    "FollowUpSetting",
    "Faq",
    "TenantIntentRow",
    "TenantCta",
    "ConversationStateRow",
    "MessageRow",
    "ConversationMemory",
    "Cliente",
    "Interaction",
    "SalesIntelligence",
    "MonthlyUsage",
    "ScheduledMessage",
]
