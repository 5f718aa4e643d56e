"""
Base exception type for chatcore.

Every error carries a machine-readable ``code`` and a suggested HTTP status so
the API layer can render it without knowing the concrete subclass. New types
are declared as subclasses in ``errors``.
"""
from __future__ import annotations

from typing import Any, Optional


class ChatcoreError(Exception):
    """
    Base exception for all chatcore errors.

    Attributes:
        message: Human-readable description (never shown to end customers).
        code: Machine-readable slug.
        http_status: Status the API layer should answer with.
        details: Extra context, e.g. the tenant or table involved.
        cause: The underlying exception, when wrapping one.
    """

    default_code: str = "CHATCORE_ERROR"
    default_http_status: int = 500

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        http_status: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.http_status = http_status or self.default_http_status
        self.details: dict[str, Any] = dict(details or {})
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"

    def __str__(self) -> str:
        return self.message

    def to_dict(self, *, include_cause: bool = False) -> dict[str, Any]:
        """Serialize for API responses; ``include_cause`` is for logs only."""
        out: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            out["details"] = self.details
        if include_cause and self.cause is not None:
            out["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return out
