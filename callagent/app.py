"""FastAPI application — HTTP + WebSocket endpoints for the call agent core.

Endpoints:

  POST /process-call-message            One client utterance → agent reply
  POST /handle-call                     Start (or resume) a call session
  GET  /sessions/{id}                   Session snapshot with transcript
  GET  /sessions/{id}/readiness         shouldCollectMore / bookingAvailable
  GET  /sessions/{id}/events            Recorded call-trace events (admin)
  WS   /sessions/{id}/events/stream     Live call-trace stream (admin)
  POST /agents                          Register an agent questionnaire (admin)
  GET  /agents/{id}                     Agent definition
  GET  /agents/{id}/instructions        Generated call-agent instructions
  GET  /health                          Health check

Errors are returned as {"error": "..."}: 400 malformed payload, 404 unknown
session/agent, 409 concurrent update and 503 persistence failure (both
retryable), 500 anything else.
"""

from __future__ import annotations

# Load .env into os.environ before settings are read.
from dotenv import load_dotenv
load_dotenv()

import logging
import time
from pathlib import Path

from fastapi import Depends, FastAPI, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from callagent.agents import (
    AgentRegistry,
    instructions_for,
    load_registry,
    save_agents_jsonl,
)
from callagent.auth import require_admin_token, require_admin_ws
from callagent.config import Settings, settings
from callagent.errors import CallAgentError, PayloadValidationError, SessionNotFound
from callagent.models.agent import AgentDefinition
from callagent.models.api import ProcessMessageRequest, StartCallRequest
from callagent.phrases import RandomSource
from callagent.readiness import session_can_offer_booking, session_needs_more_data
from callagent.session import CallSessionHandler
from callagent.store import SessionStore, build_store, is_valid_session_id

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(name)-20s %(levelname)-7s %(message)s",
)

log = logging.getLogger("callagent.app")

_START_TIME = time.time()


def _error(e: CallAgentError) -> JSONResponse:
    return JSONResponse({"error": e.message}, status_code=e.status_code)


def _validation_message(e: ValidationError) -> str:
    problems = []
    for err in e.errors():
        where = ".".join(str(p) for p in err["loc"]) or "body"
        problems.append(f"{where}: {err['msg']}")
    return "Invalid payload: " + "; ".join(problems)


async def _read_payload(request: Request, model):
    """Parse and validate a JSON body, raising PayloadValidationError."""
    try:
        body = await request.json()
    except ValueError:
        raise PayloadValidationError("Request body must be valid JSON") from None
    if not isinstance(body, dict):
        raise PayloadValidationError("Request body must be a JSON object")
    try:
        return model.model_validate(body)
    except ValidationError as e:
        raise PayloadValidationError(_validation_message(e)) from None


def create_app(
    config: Settings | None = None,
    store: SessionStore | None = None,
    agents: AgentRegistry | None = None,
    random_source: RandomSource | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Every collaborator can be injected; anything left out is built from
    ``config`` (the process-wide settings by default).
    """
    config = config or settings
    for warning in config.validate_startup():
        log.warning(warning)

    if store is None:
        store = build_store(config.session_store, config.session_dir)
    agents = agents if agents is not None else load_registry(config.agents_file)
    handler = CallSessionHandler(store, agents, random_source=random_source)

    app = FastAPI(
        title="AI Call Agent",
        description="Conversation core for AI lead-qualification calls",
        version="0.1.0",
    )
    app.state.handler = handler
    app.state.agents = agents

    # ── Health check ───────────────────────────────────────────

    @app.get("/health")
    async def health() -> JSONResponse:
        uptime = round(time.time() - _START_TIME, 1)
        return JSONResponse({"status": "ok", "uptime": uptime, "agents": len(agents)})

    # ── Conversation core ──────────────────────────────────────

    @app.post("/process-call-message")
    async def process_call_message(request: Request) -> JSONResponse:
        """Feed one client utterance through the session's state machine."""
        try:
            payload = await _read_payload(request, ProcessMessageRequest)
            result = await handler.process_message(
                payload.session_id,
                payload.message,
                is_interruption=payload.is_interruption,
                audio_level=payload.audio_level,
            )
        except CallAgentError as e:
            if e.retryable:
                log.warning("Retryable failure processing message: %s", e.message)
            return _error(e)
        except Exception as e:
            log.error("Unexpected error processing message: %s", e, exc_info=True)
            return JSONResponse({"error": "Internal server error"}, status_code=500)
        return JSONResponse(result.model_dump(mode="json", by_alias=True))

    @app.post("/handle-call")
    async def handle_call(request: Request) -> JSONResponse:
        """Start a call for an agent, or resume it when ``sessionId`` exists."""
        try:
            payload = await _read_payload(request, StartCallRequest)
            if payload.session_id is not None and not is_valid_session_id(payload.session_id):
                raise PayloadValidationError("sessionId may only contain letters, digits, '-' and '_'")
            session = await handler.start_call(
                payload.agent_id,
                client_phone=payload.client_phone,
                session_id=payload.session_id,
            )
        except CallAgentError as e:
            return _error(e)
        except Exception as e:
            log.error("Unexpected error starting call: %s", e, exc_info=True)
            return JSONResponse({"error": "Internal server error"}, status_code=500)
        return JSONResponse(session.to_dict())

    @app.get("/sessions/{session_id}")
    async def get_session(session_id: str) -> JSONResponse:
        try:
            session = await handler.get_session(session_id)
        except CallAgentError as e:
            return _error(e)
        return JSONResponse(session.to_dict(detail=True))

    @app.get("/sessions/{session_id}/readiness")
    async def get_readiness(session_id: str) -> JSONResponse:
        try:
            session = await handler.get_session(session_id)
        except CallAgentError as e:
            return _error(e)
        return JSONResponse({
            "currentStep": session.current_step.value,
            "shouldCollectMore": session_needs_more_data(session),
            "bookingAvailable": session_can_offer_booking(session),
        })

    # ── Call tracing ───────────────────────────────────────────

    @app.get("/sessions/{session_id}/events", dependencies=[Depends(require_admin_token)])
    async def get_session_events(session_id: str) -> JSONResponse:
        if session_id not in handler.events:
            return JSONResponse({"error": "No events recorded for session"}, status_code=404)
        events = handler.events.get(session_id).event_log
        return JSONResponse({"events": events, "count": len(events)})

    @app.websocket("/sessions/{session_id}/events/stream")
    async def stream_session_events(
        websocket: WebSocket, session_id: str, token: str = Query(default=""),
    ) -> None:
        """Stream call-trace events for a session as they happen."""
        if not await require_admin_ws(websocket, token):
            return
        try:
            session = await handler.get_session(session_id)
        except SessionNotFound:
            await websocket.close(code=4004, reason="Session not found")
            return
        except CallAgentError as e:
            log.error("Cannot stream events for %s: %s", session_id, e.message)
            await websocket.close(code=1011, reason=e.message)
            return

        await websocket.accept()
        broadcaster = handler.events.get(session_id)
        queue = broadcaster.subscribe()
        try:
            while True:
                event = await queue.get()
                await websocket.send_json(event)
        except WebSocketDisconnect:
            pass
        finally:
            broadcaster.unsubscribe(queue)
            if session.is_done or broadcaster.finished:
                handler.events.release(session_id)

    # ── Agent configuration ────────────────────────────────────

    @app.post("/agents", dependencies=[Depends(require_admin_token)])
    async def register_agent(request: Request) -> JSONResponse:
        """Register (or replace) an agent questionnaire."""
        try:
            agent = await _read_payload(request, AgentDefinition)
            if len(agent.additional_questions) < config.min_additional_questions:
                raise PayloadValidationError(
                    f"An agent needs at least {config.min_additional_questions} "
                    f"additional questions, got {len(agent.additional_questions)}"
                )
        except CallAgentError as e:
            return _error(e)

        agents.register(agent)
        try:
            save_agents_jsonl(agents.all(), Path(config.agents_file))
        except OSError as e:
            log.error("Could not persist agents to %s: %s", config.agents_file, e)
            return JSONResponse({"error": "Could not persist agent"}, status_code=503)

        return JSONResponse({
            "agent": agent.model_dump(by_alias=True),
            "instructions": instructions_for(agent),
        })

    @app.get("/agents/{agent_id}")
    async def get_agent(agent_id: str) -> JSONResponse:
        try:
            agent = agents.get(agent_id)
        except CallAgentError as e:
            return _error(e)
        return JSONResponse(agent.model_dump(by_alias=True))

    @app.get("/agents/{agent_id}/instructions")
    async def get_agent_instructions(agent_id: str) -> JSONResponse:
        try:
            agent = agents.get(agent_id)
        except CallAgentError as e:
            return _error(e)
        return JSONResponse({"agentId": agent_id, "instructions": instructions_for(agent)})

    return app


# ── Module-level app instance for uvicorn ──────────────────────

app = create_app()


if __name__ == "__main__":
    import uvicorn

    log_config = uvicorn.config.LOGGING_CONFIG
    log_config["formatters"]["default"]["fmt"] = (
        "%(asctime)s %(name)-12s %(levelname)-8s %(message)s"
    )

    uvicorn.run(
        "callagent.app:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_config=log_config,
    )
