"""
Domain exception types.
"""
from __future__ import annotations

from chatcore.core.exceptions.base import ChatcoreError


class ConfigurationError(ChatcoreError):
    """Invalid or missing configuration."""

    default_code = "CONFIGURATION_ERROR"
    default_http_status = 500


class ValidationError(ChatcoreError):
    """Request payload failed validation."""

    default_code = "VALIDATION_ERROR"
    default_http_status = 400


class NotFoundError(ChatcoreError):
    """Tenant or other resource not found."""

    default_code = "NOT_FOUND"
    default_http_status = 404


class ExternalServiceError(ChatcoreError):
    """LLM, matcher, notifier or analytics endpoint failed."""

    default_code = "EXTERNAL_SERVICE_ERROR"
    default_http_status = 502


class PersistenceError(ChatcoreError):
    """Relational store read or write failed."""

    default_code = "PERSISTENCE_ERROR"
    default_http_status = 503


class GateContractError(ChatcoreError):
    """A gate returned something that is not a GateResult."""

    default_code = "GATE_CONTRACT_ERROR"
    default_http_status = 500
