"""
FastAPI entrypoint for the CodeFortress audit console.

This module exposes one process-scoped audit session over HTTP. Every
route is a thin adapter over the ``SessionController``: the controller
owns all state, routes only translate requests and contract errors.

Session events are streamed over SSE. The stream is observational
only: disconnecting never affects the running audit.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional

import httpx
from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict
from starlette.responses import Response

from fortress.app.collaborators.azure_reasoner import AzureOpenAIReasoner
from fortress.app.collaborators.github import GitHubDataSource
from fortress.app.collaborators.simulated import (
    SimulatedReasoner,
    SimulatedStageScanner,
)
from fortress.app.config import FortressConfig
from fortress.app.events import BroadcastEventEmitter
from fortress.app.pipeline.registry import StageRegistry
from fortress.app.schemas.session import SubmissionStatus
from fortress.app.session.controller import SessionController
from fortress.app.session.findings import UnknownFindingError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Presentation helpers (presentation-only)
# ---------------------------------------------------------------------------

def pretty_json(data: Any) -> str:
    """Pretty-print JSON for human-readable console output."""
    return json.dumps(
        data,
        ensure_ascii=False,
        allow_nan=False,
        indent=2,
        separators=(", ", ": "),
    )


class PrettyJSONResponse(Response):
    media_type = "application/json"

    def render(self, content: Any) -> bytes:
        return pretty_json(content).encode("utf-8")


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------

class AuditRequest(BaseModel):
    target_url: str

    model_config = ConfigDict(extra="forbid")


class InvestigationRequest(BaseModel):
    finding_id: str

    model_config = ConfigDict(extra="forbid")


class ChatRequest(BaseModel):
    text: str

    model_config = ConfigDict(extra="forbid")


_REJECTIONS = {
    SubmissionStatus.REJECTED_EMPTY: (400, "Target URL is empty"),
    SubmissionStatus.REJECTED_BUSY: (409, "An audit is already in flight"),
}


# ---------------------------------------------------------------------------
# Composition root
# ---------------------------------------------------------------------------

def configure_logging(config: FortressConfig) -> None:
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def build_controller(
    config: FortressConfig,
    http_client: httpx.AsyncClient,
    events: BroadcastEventEmitter,
) -> SessionController:
    """
    Wire collaborators from configuration.

    Scanners are always the deterministic simulated engines. The reasoner
    is simulated unless an Azure OpenAI deployment is configured.
    """
    registry = StageRegistry.default()
    scanner = SimulatedStageScanner()
    scanners = {stage_id: scanner for stage_id in registry.ids}

    if config.REASONER_PROVIDER == "azure_openai":
        reasoner = AzureOpenAIReasoner(
            endpoint=config.AZURE_OPENAI_ENDPOINT,
            deployment=config.AZURE_OPENAI_DEPLOYMENT,
            api_version=config.AZURE_OPENAI_API_VERSION,
            timeout_seconds=config.COLLABORATOR_TIMEOUT_SECONDS,
        )
    else:
        reasoner = SimulatedReasoner()

    data_source = GitHubDataSource(
        http_client,
        api_url=config.GITHUB_API_URL,
        token=config.GITHUB_TOKEN or None,
    )

    return SessionController.from_config(
        config,
        data_source=data_source,
        scanners=scanners,
        reasoner=reasoner,
        emitter=events,
    )


def create_app(
    controller: Optional[SessionController] = None,
    config: Optional[FortressConfig] = None,
    events: Optional[BroadcastEventEmitter] = None,
) -> FastAPI:
    """
    Build the HTTP application.

    When ``controller`` is given it is used as-is (its emitter should be
    ``events`` for SSE to observe it). Otherwise the controller is built
    from ``config`` (or the environment) at startup.
    """
    app = FastAPI(
        title="CodeFortress Audit Console",
        description="CI/CD security audit pipeline with session state machine",
        version="0.1.0",
    )
    app.state.events = events or BroadcastEventEmitter()
    app.state.controller = controller
    app.state.http_client = None
    app.state.tasks = set()

    # -----------------------------------------------------------------------
    # Startup / Shutdown
    # -----------------------------------------------------------------------

    @app.on_event("startup")
    async def startup_event() -> None:
        """
        Configuration is loaded once and treated as immutable for the
        lifetime of the process.
        """
        if app.state.controller is not None:
            return

        cfg = config or FortressConfig.from_env()
        configure_logging(cfg)

        app.state.http_client = httpx.AsyncClient(
            timeout=cfg.COLLABORATOR_TIMEOUT_SECONDS,
        )
        app.state.controller = build_controller(
            cfg, app.state.http_client, app.state.events
        )
        logger.info(
            "Audit console ready (reasoner=%s)", cfg.REASONER_PROVIDER
        )

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        if app.state.http_client is not None:
            await app.state.http_client.aclose()

    def session() -> SessionController:
        return app.state.controller

    # -----------------------------------------------------------------------
    # Audit lifecycle
    # -----------------------------------------------------------------------

    @app.post("/audit", summary="Submit a repository for audit")
    async def submit_audit(body: AuditRequest, wait: bool = False):
        """
        Start an audit.

        Without ``wait`` the audit runs in the background and the route
        answers 202 immediately; progress is observable via ``/state``
        and ``/events``.
        """
        controller = session()

        rejection = controller.check_submission(body.target_url)
        if rejection is not None:
            status_code, detail = _REJECTIONS[rejection]
            raise HTTPException(status_code=status_code, detail=detail)

        if wait:
            result = await controller.submit(body.target_url)
            return JSONResponse(
                content={
                    "status": result.value,
                    "session": controller.snapshot().model_dump(mode="json"),
                }
            )

        ticket = controller.begin(body.target_url)

        async def run_audit_task() -> None:
            try:
                await controller.run(ticket)
            except Exception:
                # Controller already logged the failure and restored IDLE
                pass

        task = asyncio.create_task(run_audit_task())
        app.state.tasks.add(task)
        task.add_done_callback(app.state.tasks.discard)

        return JSONResponse(
            status_code=202,
            content={"status": "accepted", "generation": ticket.generation},
        )

    @app.post("/reset", summary="Reset the audit session to IDLE")
    async def reset_session() -> JSONResponse:
        controller = session()
        controller.reset()
        return JSONResponse(
            content={"status": controller.status.value}
        )

    @app.get(
        "/state",
        response_class=PrettyJSONResponse,
        summary="Current session snapshot",
    )
    async def get_state():
        return PrettyJSONResponse(
            content=session().snapshot().model_dump(mode="json")
        )

    @app.get("/history", summary="Completed audits, most recent first")
    async def get_history() -> JSONResponse:
        return JSONResponse(
            content=[
                entry.model_dump(mode="json") for entry in session().history
            ]
        )

    # -----------------------------------------------------------------------
    # Investigation
    # -----------------------------------------------------------------------

    @app.post("/investigation", summary="Investigate one finding")
    async def open_investigation(body: InvestigationRequest) -> JSONResponse:
        controller = session()
        try:
            await controller.open_investigation(body.finding_id)
        except UnknownFindingError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc

        investigation = controller.investigation
        return JSONResponse(
            content=(
                investigation.model_dump(mode="json")
                if investigation is not None
                else None
            )
        )

    @app.post(
        "/investigation/remediation",
        summary="Request a patch for the investigated finding",
    )
    async def request_remediation() -> JSONResponse:
        controller = session()
        if controller.investigation is None:
            raise HTTPException(
                status_code=404,
                detail="No investigation is open",
            )

        await controller.request_remediation()

        investigation = controller.investigation
        return JSONResponse(
            content=(
                investigation.model_dump(mode="json")
                if investigation is not None
                else None
            )
        )

    @app.delete("/investigation", summary="Close the investigation")
    async def close_investigation() -> Response:
        session().close_investigation()
        return Response(status_code=204)

    # -----------------------------------------------------------------------
    # Chat
    # -----------------------------------------------------------------------

    @app.post("/chat", summary="Send a message to the security assistant")
    async def send_chat(body: ChatRequest) -> JSONResponse:
        if not body.text.strip():
            raise HTTPException(status_code=400, detail="Message is empty")

        reply = await session().send_chat(body.text)
        return JSONResponse(
            content={
                "reply": reply.model_dump(mode="json") if reply else None
            }
        )

    # -----------------------------------------------------------------------
    # Event stream (SSE)
    # -----------------------------------------------------------------------

    @app.get("/events", summary="Stream session events")
    async def stream_events() -> StreamingResponse:
        broadcaster: BroadcastEventEmitter = app.state.events
        subscriber = broadcaster.subscribe()

        async def event_stream():
            try:
                async for event in subscriber.stream():
                    yield event.to_sse_payload()
            except asyncio.CancelledError:
                # Client disconnected; the session continues
                pass
            finally:
                broadcaster.unsubscribe(subscriber)

        return StreamingResponse(
            event_stream(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "X-Accel-Buffering": "no",
            },
        )

    # -----------------------------------------------------------------------
    # Health Check
    # -----------------------------------------------------------------------

    @app.get("/health", summary="Service health check")
    def health_check() -> JSONResponse:
        return JSONResponse(
            content={
                "status": "ok",
                "service": "fortress",
            }
        )

    return app


app = create_app()
