"""Pydantic schemas for the FastAPI endpoints."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RouteRequest(ApiModel):
    """One inbound turn for one company."""

    company_id: str = Field(..., min_length=1, max_length=128, description="Tenant identifier")
    text: str = Field(..., min_length=1, max_length=2000, description="The caller's message")
    flags: dict[str, bool] = Field(
        default_factory=dict,
        description="Conversation flow flags set by upstream turn handling",
    )
    conversation_id: str | None = Field(
        default=None,
        min_length=1,
        max_length=100,
        description="When set, flags accumulate across turns of this conversation",
    )


class BookingToggleRequest(ApiModel):
    enabled: bool


class ConfigWriteResponse(ApiModel):
    company_id: str
    generation: int
    booking_contract_enabled: bool


class ConversationEndResponse(ApiModel):
    company_id: str
    conversation_id: str
    discarded: bool


class ErrorDetail(ApiModel):
    """Body of a 409 when booking contract V2 activation is rejected."""

    message: str
    reasons: list[str] = Field(default_factory=list)
    missing_slot_refs: list[str] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    service: str = "agent-decision-engine"


ConfigDocument = dict[str, Any]
