"""Pydantic v2 schemas for the turn and follow-up endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class TurnRequest(BaseModel):
    tenant_id: str = Field(..., min_length=1, max_length=64)
    canal: str = Field(..., min_length=1, max_length=32)
    sender: str = Field(..., min_length=1, max_length=128)
    text: str = Field(default="", max_length=8000)
    message_id: Optional[str] = Field(default=None, max_length=255)
    from_number: Optional[str] = Field(default=None, max_length=64)
    prompt: Optional[str] = None


class TurnResponse(BaseModel):
    handled: bool
    sent: bool = False
    reply: Optional[str] = None
    source: Optional[str] = None
    intent: Optional[str] = None
    nivel: Optional[int] = None
    lang: Optional[str] = None
    silence_reason: Optional[str] = None
    facts: Optional[Dict[str, Any]] = None


class DispatchRequest(BaseModel):
    now: Optional[datetime] = None


class DispatchResponse(BaseModel):
    due: int
    sent: int
    failed: int
    skipped: int
