"""FastAPI entrypoint for routing, chat streaming, thread and run endpoints."""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import AsyncIterator, Mapping
from dataclasses import asdict
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from relay_agent.agent.capabilities import COORDINATOR, build_default_registry
from relay_agent.agent.fallback import DeterministicRuntime
from relay_agent.agent.handoff import decide_handoff
from relay_agent.agent.preflight import availability_report, check_all
from relay_agent.agent.registry import ToolRegistry
from relay_agent.agent.tools import register_builtin_tools
from relay_agent.config import Settings
from relay_agent.obs.logging import configure_logging
from relay_agent.obs.tracing import TraceStore
from relay_agent.resilience.errors import ValidationFailure
from relay_agent.routing.classifier import LLMRoutingClassifier, RoutingClassifier, create_router_llm
from relay_agent.routing.router import CapabilityRouter, RouteOptions
from relay_agent.runtime.events import encode_sse
from relay_agent.runtime.hosted import HostedRuntime, LangChainRuntime
from relay_agent.runtime.runner import RunOrchestrator, TurnRequest
from relay_agent.runtime.validation import validate_message
from relay_agent.storage.threads import InMemoryThreadStore, SqliteThreadStore, ThreadStore, message_to_dict

logger = logging.getLogger(__name__)

_SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class RouteRequest(BaseModel):
    message: str = Field(min_length=1)
    skip_model: bool = False


class ChatRequest(BaseModel):
    message: str
    user_id: str = "anonymous"
    thread_id: str | None = None
    force_capability: str | None = None
    conversation_history: list[dict[str, str]] | None = None
    request_id: str | None = None


def _create_chat_llm_factory(settings: Settings) -> Any:
    from langchain_openai import ChatOpenAI

    def _factory(tier: str) -> Any:
        return ChatOpenAI(
            model=settings.model_for_tier(tier),
            api_key=settings.openai_api_key,
            max_retries=0,
            streaming=True,
        )

    return _factory


def _turn_request(request: ChatRequest) -> TurnRequest:
    return TurnRequest(
        message=request.message,
        user_id=request.user_id,
        thread_id=request.thread_id,
        force_capability=request.force_capability,
        conversation_history=request.conversation_history,
        request_id=request.request_id,
    )


def create_app(
    *,
    settings: Settings | None = None,
    runtime: HostedRuntime | None = None,
    classifier: RoutingClassifier | None = None,
    thread_store: ThreadStore | None = None,
    environ: Mapping[str, str] | None = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    env = os.environ if environ is None else environ

    capabilities = build_default_registry()
    tool_registry = ToolRegistry()
    register_builtin_tools(tool_registry)

    llm_configured = bool(settings.openai_api_key)
    if classifier is None and llm_configured:
        classifier = LLMRoutingClassifier(
            llm=create_router_llm(
                settings.router_model,
                api_key=settings.openai_api_key or "",
                timeout_seconds=settings.router.model_timeout_seconds,
            ),
            registry=capabilities,
            config=settings.router,
        )
    if runtime is None:
        runtime = (
            LangChainRuntime(
                llm_factory=_create_chat_llm_factory(settings),
                capabilities=capabilities,
                tool_registry=tool_registry,
                retry=settings.retry,
            )
            if llm_configured
            else DeterministicRuntime(tool_registry=tool_registry)
        )
    if thread_store is None:
        thread_store = SqliteThreadStore(settings.db_path) if settings.db_path else InMemoryThreadStore()

    logger.info("%s", availability_report(capabilities, env))

    router = CapabilityRouter(capabilities, classifier=classifier, config=settings.router)
    trace_store = TraceStore()
    orchestrator = RunOrchestrator(
        capabilities=capabilities,
        router=router,
        runtime=runtime,
        thread_store=thread_store,
        trace_store=trace_store,
        settings=settings,
        environ=env,
    )

    app = FastAPI(title="Relay Agent", version="0.1.0")
    app.state.orchestrator = orchestrator

    @app.get("/health")
    def health() -> dict[str, Any]:
        availability = check_all(capabilities, env)
        return {
            "status": "ok",
            "llm_configured": llm_configured,
            "runtime_mode": "langchain" if isinstance(runtime, LangChainRuntime) else "deterministic",
            "model_routing": classifier is not None,
            "capabilities_available": sum(1 for item in availability.values() if item.available),
            "capabilities_total": len(availability),
            "trace_count": len(trace_store.list_recent(limit=1000)),
        }

    @app.get("/capabilities")
    def list_capabilities() -> dict[str, Any]:
        availability = check_all(capabilities, env)
        return {
            "items": [
                {
                    "id": definition.id,
                    "display_name": definition.display_name,
                    "model_tier": definition.model_tier,
                    "tools": list(definition.tools),
                    "handoff_targets": list(definition.handoff_targets),
                    "available": availability[definition.id].available,
                    "missing_credentials": availability[definition.id].missing_credentials,
                }
                for definition in capabilities
            ]
        }

    @app.post("/route")
    async def route(request: RouteRequest) -> dict[str, Any]:
        try:
            message = validate_message(request.message, settings.validation)
        except ValidationFailure as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        decision = await router.route(message, RouteOptions(skip_model=request.skip_model))
        proposal = await decide_handoff(message, COORDINATOR, router=router, decision=decision)
        return {
            **decision.to_dict(),
            "should_handoff": proposal.should_handoff,
            "handoff_target": proposal.handoff.target if proposal.handoff else None,
        }

    @app.post("/chat")
    async def chat(request: ChatRequest) -> dict[str, Any]:
        result = await orchestrator.run_turn(_turn_request(request))
        payload = asdict(result)
        payload.pop("events")
        payload["state"] = result.state.value
        return payload

    @app.post("/chat/stream")
    async def chat_stream(request: ChatRequest, http_request: Request) -> StreamingResponse:
        async def _events() -> AsyncIterator[str]:
            cancel = asyncio.Event()
            async for event in orchestrator.stream_turn(_turn_request(request), cancel):
                yield encode_sse(event)
                if not cancel.is_set() and await http_request.is_disconnected():
                    cancel.set()

        return StreamingResponse(_events(), media_type="text/event-stream", headers=_SSE_HEADERS)

    @app.get("/threads/{thread_id}")
    def thread_detail(thread_id: str) -> dict[str, Any]:
        try:
            messages = thread_store.get_messages(thread_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return {"thread_id": thread_id, "messages": [message_to_dict(message) for message in messages]}

    @app.get("/runs")
    def runs(limit: int = 20) -> dict[str, Any]:
        return {"items": [asdict(record) for record in trace_store.list_recent(limit=limit)]}

    @app.get("/runs/{run_id}")
    def run_detail(run_id: str) -> dict[str, Any]:
        try:
            record = trace_store.get(run_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return asdict(record)

    @app.get("/metrics")
    def metrics() -> dict[str, Any]:
        return trace_store.summary()

    return app


configure_logging()
app = create_app()
