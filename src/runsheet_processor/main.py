"""
Runsheet Ownership Processor

An HTTP service for row-by-row runsheet review:
1. A runsheet is posted and split into rows
2. Each row is analyzed by Claude on request
3. Ownership changes are applied to the session's ledger
4. Possible name matches wait for the user's confirmation
5. Approved rows are snapshotted and progress is checkpointed
"""

import asyncio
import logging
import os
from datetime import datetime, timezone

from aiohttp import web

from .analyzer import AnalysisProvider, ClaudeRowAnalyzer
from .checkpoint import CheckpointStore, FileCheckpointStore, RemoteCheckpointStore
from .config import CONFIG
from .exceptions import AnalysisFailedError, InvalidTransitionError, RunsheetError, SessionBusyError
from .models import Analysis, OngoingOwnership
from .session import RowAnalysisSession
from .summary import format_ownership_summary, summarize_ownership

logger = logging.getLogger(__name__)

SESSIONS = web.AppKey("sessions", dict)
PROVIDER = web.AppKey("provider", AnalysisProvider)
STORE = web.AppKey("store", CheckpointStore)
STATUS = web.AppKey("status", dict)


def log_completion(final_ownership: OngoingOwnership) -> None:
    logger.info(format_ownership_summary(final_ownership))


# ============================================================================
# ERROR HANDLING
# ============================================================================

@web.middleware
async def error_middleware(request, handler):
    """Map session errors to HTTP status codes."""
    try:
        return await handler(request)
    except (SessionBusyError, InvalidTransitionError) as e:
        return web.json_response({"error": str(e)}, status=409)
    except AnalysisFailedError as e:
        request.app[STATUS]["errors"] += 1
        return web.json_response({"error": str(e), "rowNumber": e.row_number}, status=502)
    except RunsheetError as e:
        logger.error(f"Request failed: {e}", exc_info=True)
        return web.json_response({"error": str(e)}, status=500)


def get_session(request) -> RowAnalysisSession:
    key = request.match_info["key"]
    session = request.app[SESSIONS].get(key)
    if session is None:
        raise web.HTTPNotFound(text=f"Unknown session {key}")
    return session


async def read_json(request) -> dict:
    try:
        body = await request.json()
    except ValueError:
        raise web.HTTPBadRequest(text="Request body must be JSON")
    if not isinstance(body, dict):
        raise web.HTTPBadRequest(text="Request body must be a JSON object")
    return body


# ============================================================================
# HANDLERS
# ============================================================================

async def health_handler(request):
    """Health check endpoint."""
    status = request.app[STATUS]
    return web.json_response({
        "status": "healthy",
        "started": status["started"],
        "sessions": len(request.app[SESSIONS]),
        "rows_analyzed": sum(s.rows_analyzed for s in request.app[SESSIONS].values()),
        "errors": status["errors"],
    })


async def create_session_handler(request):
    body = await read_json(request)
    key = body.get("sessionKey")
    document_text = body.get("documentText")
    if not key or not document_text:
        raise web.HTTPBadRequest(text="sessionKey and documentText are required")

    sessions = request.app[SESSIONS]
    if key in sessions:
        return web.json_response(sessions[key].view())

    try:
        total_acres = float(body.get("totalAcres") or 0)
    except (TypeError, ValueError):
        raise web.HTTPBadRequest(text="totalAcres must be a number")

    session = RowAnalysisSession(
        document_text=document_text,
        prospect=body.get("prospect", ""),
        total_acres=total_acres,
        provider=request.app[PROVIDER],
        store=request.app[STORE],
        session_key=key,
        on_complete=log_completion,
    )
    await session.start()
    sessions[key] = session
    logger.info(f"Created session {key} with {len(session.rows)} rows")
    return web.json_response(session.view(), status=201)


async def get_session_handler(request):
    return web.json_response(get_session(request).view())


async def analyze_handler(request):
    session = get_session(request)
    await session.analyze_current_row()
    return web.json_response(session.view())


async def correct_handler(request):
    session = get_session(request)
    body = await read_json(request)
    if not isinstance(body.get("analysis"), dict):
        raise web.HTTPBadRequest(text="analysis object is required")
    await session.correct_current_row(Analysis.from_dict(body["analysis"]))
    return web.json_response(session.view())


async def confirm_matches_handler(request):
    session = get_session(request)
    body = await read_json(request)
    confirmed = body.get("confirmed")
    if confirmed is not None and not isinstance(confirmed, dict):
        raise web.HTTPBadRequest(text="confirmed must be an object or null")
    await session.confirm_name_matches(confirmed)
    return web.json_response(session.view())


async def approve_handler(request):
    session = get_session(request)
    final = await session.approve_current_row()
    view = session.view()
    if final is not None:
        view["finalOwnership"] = summarize_ownership(final)
    return web.json_response(view)


async def previous_handler(request):
    session = get_session(request)
    await session.go_to_previous_row()
    return web.json_response(session.view())


async def next_handler(request):
    session = get_session(request)
    await session.go_to_next_row()
    return web.json_response(session.view())


async def reset_handler(request):
    session = get_session(request)
    await session.start_fresh()
    return web.json_response(session.view())


async def summary_handler(request):
    session = get_session(request)
    return web.json_response(summarize_ownership(session.ownership))


async def root_handler(request):
    """Root endpoint."""
    return web.Response(text="Runsheet Ownership Processor")


# ============================================================================
# APP
# ============================================================================

def default_store() -> CheckpointStore:
    if CONFIG.DOCUMENTS_API_URL:
        return RemoteCheckpointStore()
    return FileCheckpointStore()


def create_app(provider: AnalysisProvider = None, store: CheckpointStore = None) -> web.Application:
    app = web.Application(middlewares=[error_middleware])
    app[SESSIONS] = {}
    app[PROVIDER] = provider or ClaudeRowAnalyzer()
    app[STORE] = store or default_store()
    app[STATUS] = {
        "started": datetime.now(timezone.utc).isoformat(),
        "errors": 0,
    }

    app.router.add_get("/", root_handler)
    app.router.add_get("/health", health_handler)
    app.router.add_post("/sessions", create_session_handler)
    app.router.add_get("/sessions/{key}", get_session_handler)
    app.router.add_post("/sessions/{key}/analyze", analyze_handler)
    app.router.add_post("/sessions/{key}/correct", correct_handler)
    app.router.add_post("/sessions/{key}/confirm-matches", confirm_matches_handler)
    app.router.add_post("/sessions/{key}/approve", approve_handler)
    app.router.add_post("/sessions/{key}/previous", previous_handler)
    app.router.add_post("/sessions/{key}/next", next_handler)
    app.router.add_post("/sessions/{key}/reset", reset_handler)
    app.router.add_get("/sessions/{key}/summary", summary_handler)
    return app


async def run_server():
    """Start the HTTP server and serve until cancelled."""
    missing = CONFIG.validate()
    if missing:
        logger.error(f"Missing required configuration: {', '.join(missing)}")
        logger.error("Set these environment variables and restart.")
        return

    app = create_app()
    runner = web.AppRunner(app)
    await runner.setup()

    site = web.TCPSite(runner, "0.0.0.0", CONFIG.PORT)
    await site.start()

    logger.info("=" * 60)
    logger.info("Runsheet Ownership Processor")
    logger.info(f"Port: {CONFIG.PORT}")
    logger.info(f"Claude model: {CONFIG.CLAUDE_MODEL}")
    logger.info(f"Name match mode: {CONFIG.NAME_MATCH_MODE}")
    logger.info(f"Default total acres: {CONFIG.DEFAULT_TOTAL_ACRES:g}")
    logger.info("=" * 60)

    try:
        await asyncio.Event().wait()
    finally:
        await runner.cleanup()


def main():
    log_level = os.environ.get("LOG_LEVEL", CONFIG.LOG_LEVEL)
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    try:
        asyncio.run(run_server())
    except KeyboardInterrupt:
        logger.info("Shutting down...")


if __name__ == "__main__":
    main()
