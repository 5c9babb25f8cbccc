import asyncio
import sqlite3
import uuid

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from lightup import __version__
from lightup.api import schemas
from lightup.api.dependencies import get_db, open_database, require_api_token
from lightup.api.routes import boards, cards, comments, events, labels, merge, notifications, questions, settings, subtasks
from lightup.config import get_config, load_config
from lightup.db.database import Database
from lightup.engines.opencode import OpenCodeClient, OpenCodeConfig
from lightup.errors import LightupError
from lightup.logging import get_logger, log_context
from lightup.services.base import ServiceContext
from lightup.services.dispatch import AiDispatchService
from lightup.services.events import get_event_bus
from lightup.services.git_worktree import MergeLockRegistry
from lightup.services.queue_processor import QueueProcessor
from lightup.services.sse_relay import SseRelay

logger = get_logger(__name__)

INTERNAL_ERROR_MESSAGE = "Internal server error"

app = FastAPI(
    title="Lightup API",
    description="REST API for the Lightup AI-assisted kanban board",
    version=__version__,
)

app.state.bus = get_event_bus()
app.state.merge_locks = MergeLockRegistry()
app.state.background_tasks = []

# CORS
config = get_config()
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.cors_allow_origins or [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def bind_request_id(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]
    with log_context(request_id=request_id):
        response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# Error bodies are always {"error": str, "status": int}
def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, "status": status_code})


@app.exception_handler(LightupError)
async def lightup_error_handler(request: Request, exc: LightupError) -> JSONResponse:
    if exc.status_code >= 500 and exc.status_code not in (502, 504):
        logger.error(
            "request_failed",
            extra={
                "path": request.url.path,
                "category": exc.category,
                "error": exc.message,
                "metadata": exc.metadata,
            },
        )
        return _error_response(exc.status_code, INTERNAL_ERROR_MESSAGE)
    return _error_response(exc.status_code, exc.message)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _error_response(exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        problems.append(f"{location}: {err.get('msg')}" if location else str(err.get("msg")))
    return _error_response(400, "; ".join(problems) or "Invalid request")


@app.exception_handler(sqlite3.Error)
async def database_error_handler(request: Request, exc: sqlite3.Error) -> JSONResponse:
    logger.error("database_error", extra={"path": request.url.path, "error": str(exc)})
    return _error_response(500, INTERNAL_ERROR_MESSAGE)


# Routes
auth_deps = [Depends(require_api_token)]
app.include_router(cards.router, prefix="/api", tags=["Cards"], dependencies=auth_deps)
app.include_router(subtasks.router, prefix="/api", tags=["Subtasks"], dependencies=auth_deps)
app.include_router(comments.router, prefix="/api", tags=["Comments"], dependencies=auth_deps)
app.include_router(labels.router, prefix="/api", tags=["Labels"], dependencies=auth_deps)
app.include_router(boards.router, prefix="/api", tags=["Boards"], dependencies=auth_deps)
app.include_router(settings.router, prefix="/api", tags=["Settings"], dependencies=auth_deps)
app.include_router(notifications.router, prefix="/api", tags=["Notifications"], dependencies=auth_deps)
app.include_router(questions.router, prefix="/api", tags=["Questions"], dependencies=auth_deps)
app.include_router(merge.router, prefix="/api", tags=["Merge"], dependencies=auth_deps)
app.include_router(events.router, prefix="/api", dependencies=auth_deps)  # /api/events (SSE)
app.include_router(events.ws_router, prefix="/api")  # /api/ws/* (token checked on connect)


@app.on_event("startup")
def bootstrap_database() -> None:
    """
    Ensure DB schema exists.

    Migrations are versioned, so this is safe on every start.
    """
    open_database()


@app.on_event("startup")
async def start_background_tasks() -> None:
    """Start the event relay and the queue processor unless LIGHTUP_BACKGROUND_TASKS=false."""
    cfg = load_config()
    if not cfg.background_tasks:
        logger.info("background_tasks_disabled")
        return

    ctx = ServiceContext(config=cfg)
    db = open_database()
    client = OpenCodeClient(OpenCodeConfig.from_config(cfg))
    bus = app.state.bus
    relay = SseRelay(ctx, db, bus, client)
    queue = QueueProcessor(ctx, db, AiDispatchService(ctx, db, client), bus, client)

    app.state.opencode_client = client
    app.state.background_tasks = [
        asyncio.create_task(relay.run(), name="lightup-relay"),
        asyncio.create_task(queue.run(), name="lightup-queue"),
    ]
    logger.info(
        "background_tasks_started",
        extra={"opencode_url": cfg.opencode_url, "queue_interval": cfg.queue_interval_seconds},
    )


@app.on_event("shutdown")
async def stop_background_tasks() -> None:
    tasks = list(app.state.background_tasks)
    for task in tasks:
        task.cancel()
    if tasks:
        await asyncio.gather(*tasks, return_exceptions=True)
    app.state.background_tasks = []
    client = getattr(app.state, "opencode_client", None)
    if client is not None:
        client.close()
        app.state.opencode_client = None


@app.get("/health", response_model=schemas.Health)
def health_check():
    """Health check endpoint."""
    return schemas.Health()


@app.get("/health/live")
def health_live():
    """Liveness probe (process is running)."""
    return {"status": "ok"}


@app.get("/health/ready")
def health_ready(db: Database = Depends(get_db)):
    """Readiness probe (database reachable)."""
    components = {"database": "ok", "background_tasks": "ok"}
    try:
        db.list_boards()
    except sqlite3.Error:
        components["database"] = "error"
    running = [t for t in app.state.background_tasks if not t.done()]
    if not load_config().background_tasks:
        components["background_tasks"] = "disabled"
    elif len(running) != len(app.state.background_tasks) or not running:
        components["background_tasks"] = "error"
    status = "ok" if all(v in ("ok", "disabled") for v in components.values()) else "error"
    return {"status": status, "components": components, "version": app.version}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=config.host, port=config.port)
