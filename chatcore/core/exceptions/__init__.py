"""
chatcore exception hierarchy.

Usage:
    from chatcore.core.exceptions import PersistenceError

    raise PersistenceError("state upsert failed", details={"tenant_id": tid}, cause=exc)
"""
from chatcore.core.exceptions.base import ChatcoreError
from chatcore.core.exceptions.errors import (
    ConfigurationError,
    ExternalServiceError,
    GateContractError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)

__all__ = [
    "ChatcoreError",
    "ConfigurationError",
    "ValidationError",
    "NotFoundError",
    "ExternalServiceError",
    "PersistenceError",
    "GateContractError",
]
