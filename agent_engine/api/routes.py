"""FastAPI route definitions for the decision engine API."""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Body, HTTPException, Request

from agent_engine.api.schemas import (
    BookingToggleRequest,
    ConfigDocument,
    ConfigWriteResponse,
    ConversationEndResponse,
    ErrorDetail,
    HealthResponse,
    RouteRequest,
)
from agent_engine.engine import DecisionEngine
from agent_engine.errors import BookingActivationError, ConfigInvalid, ConfigMissing
from agent_engine.models import CompanyConfig, RouteDecision, RuntimeHealth
from agent_engine.services.config_store import is_valid_company_id

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_engine(request: Request) -> DecisionEngine:
    """Retrieve the decision engine wired into app state by the lifespan."""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(
            status_code=503,
            detail="The engine is still starting up. Please try again in a moment.",
        )
    return engine


def _to_http_error(exc: Exception, request_id: str) -> HTTPException:
    """Map engine errors to HTTP errors.  Unknown errors never leak details."""
    # ConfigInvalid subclasses ConfigMissing, so it must be checked first.
    if isinstance(exc, ConfigInvalid):
        return HTTPException(status_code=422, detail=str(exc))
    if isinstance(exc, ConfigMissing):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, BookingActivationError):
        body = ErrorDetail(
            message=str(exc),
            reasons=exc.reasons,
            missing_slot_refs=exc.missing_slot_refs,
        )
        return HTTPException(status_code=409, detail=body.model_dump(by_alias=True))
    if isinstance(exc, (ValueError, TypeError)):
        return HTTPException(status_code=422, detail=str(exc))
    logger.error("[%s] Unhandled %s", request_id, type(exc).__name__, exc_info=exc)
    return HTTPException(status_code=500, detail="An internal error occurred. Please try again.")


def _write_response(config: CompanyConfig) -> ConfigWriteResponse:
    return ConfigWriteResponse(
        company_id=config.company_id,
        generation=config.generation,
        booking_contract_enabled=config.booking_v2_enabled,
    )


def _check_company_id(company_id: str) -> None:
    if not is_valid_company_id(company_id):
        raise HTTPException(status_code=422, detail=f"Invalid company id: {company_id!r}")


# ── Endpoints ────────────────────────────────────────────────────────


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse()


@router.post("/route", response_model=RouteDecision)
async def route_turn(body: RouteRequest, http_request: Request):
    """Route one turn: knowledge answer, model answer or escalation.

    Only a missing company configuration is an error; every other failure
    comes back as an ``Escalate`` decision.
    """
    engine = _get_engine(http_request)
    request_id = getattr(http_request.state, "request_id", "?")
    try:
        return await engine.route(
            body.company_id,
            body.text,
            body.flags,
            conversation_id=body.conversation_id,
        )
    except Exception as exc:
        raise _to_http_error(exc, request_id) from exc


@router.get("/companies/{company_id}/runtime-truth", response_model=RuntimeHealth)
async def runtime_truth(company_id: str, http_request: Request):
    """Health grade and reasons for one company's current snapshot."""
    engine = _get_engine(http_request)
    request_id = getattr(http_request.state, "request_id", "?")
    try:
        return await asyncio.to_thread(engine.reporter.report, company_id)
    except Exception as exc:
        raise _to_http_error(exc, request_id) from exc


@router.put("/companies/{company_id}/config", response_model=ConfigWriteResponse)
async def write_config(
    company_id: str,
    http_request: Request,
    document: ConfigDocument = Body(...),
):
    """Replace a company's configuration and invalidate its cached state."""
    _check_company_id(company_id)
    engine = _get_engine(http_request)
    request_id = getattr(http_request.state, "request_id", "?")
    try:
        config = await asyncio.to_thread(engine.loader.write, company_id, document)
    except Exception as exc:
        raise _to_http_error(exc, request_id) from exc
    logger.info("[%s] Config for %s now at generation %d", request_id, company_id, config.generation)
    return _write_response(config)


@router.put("/companies/{company_id}/booking-contract/enabled", response_model=ConfigWriteResponse)
async def toggle_booking_contract(company_id: str, body: BookingToggleRequest, http_request: Request):
    """Enable (validated) or disable (always allowed) booking contract V2."""
    _check_company_id(company_id)
    engine = _get_engine(http_request)
    request_id = getattr(http_request.state, "request_id", "?")
    try:
        config = await asyncio.to_thread(
            engine.loader.set_booking_v2_enabled, company_id, body.enabled,
        )
    except Exception as exc:
        raise _to_http_error(exc, request_id) from exc
    return _write_response(config)


@router.delete(
    "/companies/{company_id}/conversations/{conversation_id}",
    response_model=ConversationEndResponse,
)
async def end_conversation(company_id: str, conversation_id: str, http_request: Request):
    """Drop the stored flags of a finished conversation."""
    engine = _get_engine(http_request)
    discarded = engine.flow_states.discard(company_id, conversation_id)
    return ConversationEndResponse(
        company_id=company_id, conversation_id=conversation_id, discarded=discarded,
    )
