"""
HTTP API for the chat assistant.

Endpoints:
- GET    /healthz
- POST   /chat                              one conversational turn
- GET    /api/chat/history/{session_id}     stored transcript
- DELETE /api/chat/history/{session_id}     drop stored transcript
- GET    /api/tools                         current tool catalog
"""

from __future__ import annotations

import logging
import os
import time
from typing import Any, Dict, List

from fastapi import FastAPI, HTTPException, Request

from assistant.chat.types import ChatRequest, ChatResponse, DeleteHistoryResponse, DisplayMessage
from assistant.errors import InvalidRequestError, SessionStoreUnavailable, UpstreamUnavailable
from assistant.runtime import get_runtime

logger = logging.getLogger(__name__)

STORE_UNAVAILABLE_DETAIL = "Chat history service is temporarily unavailable."

app = FastAPI(title="SDLC assistant")


@app.on_event("startup")
async def _startup_migrate_session_store() -> None:
    """
    Apply session store migrations when DB_AUTO_MIGRATE=1.

    The server starts either way; the outcome is logged.
    """
    from assistant.memory.migrate import maybe_auto_migrate

    did_attempt, msg = await maybe_auto_migrate()
    if did_attempt:
        logger.info("Session store migrations: %s", msg)
    else:
        logger.debug("Session store migrations skipped: %s", msg)


@app.on_event("startup")
async def _startup_load_tools() -> None:
    """
    Fail fast: the server does not start without a tool catalog.
    """
    tools = await get_runtime().registry.refresh()
    logger.info("Tool catalog ready (%d tools)", len(tools))


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all incoming HTTP requests."""
    start_time = time.time()
    logger.debug("%s %s", request.method, request.url.path)
    try:
        response = await call_next(request)
        process_time = time.time() - start_time
        logger.debug("%s %s - %d (%.3fs)", request.method, request.url.path, response.status_code, process_time)
        return response
    except Exception as e:
        process_time = time.time() - start_time
        logger.exception("%s %s - ERROR after %.3fs: %s", request.method, request.url.path, process_time, str(e))
        raise


@app.get("/healthz")
def healthz() -> Dict[str, Any]:
    return {"ok": True}


@app.post("/chat")
async def chat(req: ChatRequest) -> Dict[str, Any]:
    rt = get_runtime()
    if not (req.message or "").strip():
        raise HTTPException(status_code=400, detail="Message is required")
    session_id = (req.session_id or "").strip() or rt.policy.default_session_id

    try:
        result = await rt.orchestrator.handle_turn(session_id, req.message)
    except InvalidRequestError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SessionStoreUnavailable:
        raise HTTPException(status_code=503, detail=STORE_UNAVAILABLE_DETAIL)
    except UpstreamUnavailable:
        raise HTTPException(status_code=503, detail="A required service is temporarily unavailable.")
    except Exception:
        # Details stay in logs; transcripts may carry tool arguments.
        logger.exception("Chat turn failed for session %s", session_id)
        raise HTTPException(status_code=500, detail="Internal server error")

    resp = ChatResponse(assistant_response=result.assistant_text, updated_conversation=result.transcript)
    return resp.model_dump(mode="json", by_alias=True)


@app.get("/api/chat/history/{session_id}")
async def get_history(session_id: str) -> List[Dict[str, Any]]:
    try:
        history: List[DisplayMessage] = await get_runtime().store.load(session_id)
    except SessionStoreUnavailable:
        raise HTTPException(status_code=503, detail=STORE_UNAVAILABLE_DETAIL)
    return [m.to_wire() for m in history]


@app.delete("/api/chat/history/{session_id}")
async def delete_history(session_id: str) -> Dict[str, Any]:
    try:
        n = await get_runtime().orchestrator.clear_history(session_id)
    except SessionStoreUnavailable:
        raise HTTPException(status_code=503, detail=STORE_UNAVAILABLE_DETAIL)
    msg = f"Chat history for session {session_id} cleared." if n else f"No chat history found for session {session_id}."
    return DeleteHistoryResponse(success=True, message=msg, keys_deleted=n).model_dump(by_alias=True)


@app.get("/api/tools")
def list_tools() -> Dict[str, Any]:
    tools = get_runtime().registry.list()
    return {"tools": [t.to_catalog_entry() for t in tools]}


def run(host: str = "0.0.0.0", port: int = 3000) -> None:
    import uvicorn

    log_level = os.getenv("LOG_LEVEL", "info").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.setLevel(getattr(logging, log_level, logging.INFO))

    uvicorn_log_level = (
        log_level.lower() if log_level.lower() in ["critical", "error", "warning", "info", "debug", "trace"] else "info"
    )

    logger.info("Starting assistant server on %s:%d (log_level=%s)", host, port, log_level)
    uvicorn.run(app, host=host, port=port, log_level=uvicorn_log_level)
