"""FastAPI entrypoint for collaboration, chat and diagnostics endpoints."""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import datetime
from typing import Any

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from crew_core.agents.registry import AgentRegistry
from crew_core.cache.predictive import PredictiveResponseCache
from crew_core.chat.orchestrator import ChatOrchestrator
from crew_core.chat.responders import DeterministicResponder, LangChainResponder, Responder
from crew_core.collaboration.manager import CollaborationManager
from crew_core.config import Settings
from crew_core.errors import (
    AuthorizationError,
    CrewCoreError,
    InvalidStateError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from crew_core.obs.logging import configure_logging
from crew_core.obs.tracing import TraceStore
from crew_core.persistence.sqlite import SqliteCollaborationStore, SqliteResponseStore
from crew_core.persistence.store import InMemoryCollaborationStore, InMemoryResponseStore
from crew_core.routing.analytics import ReferralAnalytics
from crew_core.routing.classifier import DomainClassifier
from crew_core.routing.keywords import KeywordDomainIndex
from crew_core.routing.referral import ReferralEngine
from crew_core.types import CollaborationRecord

logger = logging.getLogger(__name__)

_STATUS_CODES: dict[type[CrewCoreError], int] = {
    ValidationError: 400,
    InvalidStateError: 400,
    NotFoundError: 404,
    AuthorizationError: 404,
    PersistenceError: 500,
}


def _create_llm() -> Any:
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        return None

    from langchain_openai import ChatOpenAI

    return ChatOpenAI(model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"), temperature=0.3)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CollaborationResponseRequest(_CamelModel):
    collaboration_id: str = Field(min_length=1)
    response: str = Field(min_length=1)
    feedback: str | None = None


class ChatRequest(_CamelModel):
    agent_id: str = Field(min_length=1)
    message: str = Field(min_length=1, max_length=8000)
    context: dict[str, Any] = Field(default_factory=dict)
    thread_id: str | None = None


class CollaborativeChatRequest(_CamelModel):
    initiating_agent_id: str = Field(min_length=1)
    participants: list[str] = Field(min_length=1)
    message: str = Field(min_length=1, max_length=8000)
    task_type: str = "joint_task"
    priority: str = "medium"
    context: dict[str, Any] = Field(default_factory=dict)


class ThresholdUpdateRequest(_CamelModel):
    similarity_threshold: float
    confidence_threshold: float


def current_user(x_user_id: str | None = Header(default=None)) -> str:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return x_user_id


def record_payload(record: CollaborationRecord) -> dict[str, Any]:
    return {
        "id": record.id,
        "userId": record.user_id,
        "initiatingAgentId": record.initiating_agent_id,
        "taskType": record.task_type,
        "description": record.description,
        "data": record.data,
        "priority": record.priority.value,
        "collaborationType": record.collaboration_type.value,
        "requiredCapabilities": record.required_capabilities,
        "targetAgentId": record.target_agent_id,
        "status": record.status.value,
        "deadline": _iso(record.deadline),
        "context": record.context,
        "createdAt": _iso(record.created_at),
        "respondedAt": _iso(record.responded_at),
        "completedAt": _iso(record.completed_at),
        "feedback": record.feedback,
        "result": record.result,
    }


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _build_stores(settings: Settings) -> tuple[Any, Any]:
    persistence = settings.persistence
    if persistence.backend == "sqlite":
        return (
            SqliteCollaborationStore(persistence.sqlite_path, persistence.timeout_seconds),
            SqliteResponseStore(persistence.sqlite_path, persistence.timeout_seconds),
        )
    return (
        InMemoryCollaborationStore(persistence.timeout_seconds),
        InMemoryResponseStore(persistence.timeout_seconds),
    )


def create_app(
    settings: Settings | None = None,
    *,
    responder: Responder | None = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level, json_output=settings.json_logs)

    index = KeywordDomainIndex.default()
    registry = AgentRegistry.default(index)
    collaboration_store, response_store = _build_stores(settings)
    collaborations = CollaborationManager(collaboration_store, registry=registry)
    cache = PredictiveResponseCache(response_store, settings.cache)

    llm = None
    if responder is None:
        llm = _create_llm()
        responder = LangChainResponder(llm=llm) if llm is not None else DeterministicResponder()

    orchestrator = ChatOrchestrator(
        registry=registry,
        cache=cache,
        collaborations=collaborations,
        classifier=DomainClassifier(index, settings.classifier),
        referral_engine=ReferralEngine(index, settings.referral),
        responder=responder,
        referral_analytics=ReferralAnalytics(),
        trace_store=TraceStore(),
    )

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        if cache.start_sweeper():
            logger.info("cache sweeper started")
        try:
            yield
        finally:
            cache.stop_sweeper()

    app = FastAPI(title="Crew Orchestration Core", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.orchestrator = orchestrator

    @app.exception_handler(CrewCoreError)
    async def _core_error(_: Request, exc: CrewCoreError) -> JSONResponse:
        status = next(
            (code for kind, code in _STATUS_CODES.items() if isinstance(exc, kind)), 500
        )
        if status >= 500:
            logger.error("request failed: %s", exc, exc_info=exc)
        body: dict[str, Any] = {"error": str(exc)}
        if isinstance(exc, InvalidStateError) and exc.current_state:
            body["currentState"] = exc.current_state
        if isinstance(exc, AuthorizationError):
            body["error"] = "Collaboration not found"
        return JSONResponse(status_code=status, content=body)

    @app.exception_handler(RequestValidationError)
    async def _request_error(_: Request, exc: RequestValidationError) -> JSONResponse:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'][1:])}: {error['msg']}"
            for error in exc.errors()
        )
        return JSONResponse(status_code=400, content={"error": problems or "Invalid request"})

    @app.get("/health")
    def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "llm_configured": llm is not None,
            "responder": type(orchestrator.responder).__name__,
            "store_backend": settings.persistence.backend,
            "agents": len(registry.list_agents()),
        }

    @app.get("/collaboration")
    def list_collaborations(
        user_id: str = Depends(current_user),
        agent_id: str | None = Query(default=None, alias="agentId"),
        include_stats: bool = Query(default=False, alias="includeStats"),
        include_capabilities: bool = Query(default=False, alias="includeCapabilities"),
        include_active: bool = Query(default=False, alias="includeActive"),
    ) -> dict[str, Any]:
        response: dict[str, Any] = {
            "history": [
                record_payload(record)
                for record in collaborations.get_collaboration_history(user_id, agent_id)
            ]
        }
        if include_stats:
            response["stats"] = collaborations.get_collaboration_stats(user_id)
        if include_capabilities:
            response["capabilities"] = collaborations.get_agent_capabilities()
        if include_active:
            response["activeCollaborations"] = [
                record_payload(record)
                for record in collaborations.get_active_collaborations()
                if record.user_id == user_id
            ]
        return response

    @app.post("/collaboration")
    def create_collaboration(
        body: dict[str, Any],
        user_id: str = Depends(current_user),
    ) -> dict[str, Any]:
        initiating_agent_id = body.get("initiatingAgentId")
        if not isinstance(initiating_agent_id, str) or not initiating_agent_id:
            raise ValidationError("initiatingAgentId, taskType, and description are required")
        request = {key: value for key, value in body.items() if key != "initiatingAgentId"}
        collaboration_id = collaborations.request_collaboration(
            user_id, initiating_agent_id, request
        )
        return {
            "success": True,
            "collaborationId": collaboration_id,
            "message": "Collaboration request created successfully",
        }

    @app.put("/collaboration")
    def respond_collaboration(
        body: CollaborationResponseRequest,
        user_id: str = Depends(current_user),
    ) -> dict[str, Any]:
        collaborations.respond_to_collaboration(
            user_id, body.collaboration_id, body.response, body.feedback
        )
        return {"success": True, "message": f"Collaboration {body.response}ed successfully"}

    @app.delete("/collaboration")
    def cancel_collaboration(
        collaboration_id: str = Query(min_length=1, alias="collaborationId"),
        user_id: str = Depends(current_user),
    ) -> dict[str, Any]:
        collaborations.cancel_collaboration(user_id, collaboration_id)
        return {"success": True, "message": "Collaboration cancelled successfully"}

    @app.post("/chat")
    def chat(request: ChatRequest, user_id: str = Depends(current_user)) -> dict[str, Any]:
        result = orchestrator.handle(
            user_id,
            request.agent_id,
            request.message,
            context=request.context,
            thread_id=request.thread_id,
        )
        payload: dict[str, Any] = {
            "response": result.answer,
            "agentId": result.agent_id,
            "path": result.path,
            "traceId": result.trace_id,
            "latencyMs": result.latency_ms,
            "tokensUsed": result.tokens_used,
        }
        if result.analysis is not None:
            payload["analysis"] = {
                "primaryDomain": result.analysis.primary_domain,
                "confidence": result.analysis.confidence,
                "keywords": result.analysis.keywords,
                "complexity": result.analysis.complexity.value,
                "requiresSpecialist": result.analysis.requires_specialist,
            }
        if result.referral is not None:
            payload["referral"] = {
                "targetAgentId": result.referral.target_agent_id,
                "targetAgentName": result.referral.target_agent_name,
                "referralReason": result.referral.referral_reason,
            }
        if result.cache_match is not None:
            payload["cache"] = {
                "matchType": result.cache_match.match_type.value,
                "similarity": result.cache_match.similarity,
                "confidence": result.cache_match.confidence,
                "cacheAgeSeconds": result.cache_match.cache_age_seconds,
            }
        return payload

    @app.post("/chat/collaborate")
    def chat_collaborate(
        request: CollaborativeChatRequest,
        user_id: str = Depends(current_user),
    ) -> dict[str, Any]:
        outcome = orchestrator.collaborate(
            user_id,
            request.initiating_agent_id,
            request.participants,
            request.message,
            task_type=request.task_type,
            priority=request.priority,
            context=request.context,
        )
        return {
            "success": True,
            "collaborationId": outcome.collaboration_id,
            "response": outcome.answer,
            "contributions": outcome.contributions,
            "traceId": outcome.trace_id,
        }

    @app.get("/predictive/stats")
    def predictive_stats(user_id: str = Depends(current_user)) -> dict[str, Any]:
        return {"success": True, "stats": cache.stats(user_id)}

    @app.put("/predictive/thresholds")
    def update_thresholds(
        request: ThresholdUpdateRequest,
        user_id: str = Depends(current_user),
    ) -> dict[str, Any]:
        snapshot = cache.update_thresholds(
            request.similarity_threshold, request.confidence_threshold
        )
        logger.info("thresholds updated by %s", user_id)
        return {
            "success": True,
            "message": "Thresholds updated successfully",
            "thresholds": {
                "similarity": snapshot.similarity,
                "confidence": snapshot.confidence,
            },
        }

    @app.get("/referrals/analytics")
    def referral_analytics(user_id: str = Depends(current_user)) -> dict[str, Any]:
        analytics = orchestrator.referral_analytics
        return {
            "analytics": analytics.summary(user_id=user_id),
            "effectiveness": analytics.effectiveness(user_id=user_id),
        }

    @app.get("/traces")
    def traces(limit: int = 20, user_id: str = Depends(current_user)) -> dict[str, Any]:
        records = orchestrator.trace_store.list_recent(limit=limit, user_id=user_id)
        return {"items": [asdict(record) for record in records]}

    @app.get("/traces/{trace_id}")
    def trace_detail(trace_id: str, user_id: str = Depends(current_user)) -> dict[str, Any]:
        try:
            record = orchestrator.trace_store.get(trace_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        if record.user_id != user_id:
            raise HTTPException(status_code=404, detail=f"Trace not found: {trace_id}")
        return asdict(record)

    @app.get("/metrics")
    def metrics(user_id: str = Depends(current_user)) -> dict[str, Any]:
        summary: dict[str, Any] = dict(orchestrator.trace_store.summary(user_id))
        summary["cache"] = cache.stats(user_id)
        return summary

    return app


app = create_app()
