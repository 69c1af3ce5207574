import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from signstream import __version__
from signstream.api import routes_health, routes_signs, routes_websocket
from signstream.core.config import get_settings
from signstream.core.errors import RECOVERY_SUGGESTIONS, InvalidClientMessage, SignStreamError
from signstream.core.logger import get_logger
from signstream.core.monitoring import get_metrics
from signstream.schemas.streaming import utcnow
from signstream.services.dictionary import get_dictionary_store
from signstream.services.whisper_client import get_whisper_client
from signstream.workers.idle_reaper import get_idle_reaper
from signstream.workers.scheduler import get_scheduler

log = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    get_dictionary_store()
    reaper = get_idle_reaper()
    sched = get_scheduler()
    await sched.start()
    sched.schedule(reaper.sweep, interval_sec=reaper.interval, name="idle-reaper")
    log.info("Speech-to-sign backend started (env=%s)", get_settings().ENV)
    try:
        yield
    finally:
        # Shutdown
        await reaper.shutdown_sessions()
        await get_scheduler().stop()
        await get_whisper_client().aclose()
        log.info("Speech-to-sign backend stopped")


settings = get_settings()

app = FastAPI(
    title="Speech-to-Sign API",
    description="Real-time speech recognition and sign-language video mapping backend",
    version=__version__,
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.CORS_ORIGIN.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def track_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    get_metrics().record_request(request.url.path, response.status_code, (time.perf_counter() - started) * 1000)
    return response


def _error_response(request: Request, exc: SignStreamError) -> JSONResponse:
    error_id = uuid.uuid4().hex[:12]
    get_metrics().record_error(exc.code)
    log.warning("Request %s %s failed [%s]: %s (%s)", request.method, request.url.path, error_id, exc.code, exc)
    error = {
        "type": exc.code,
        "kind": exc.kind.value,
        "message": exc.user_message,
        "detail": None if get_settings().ENV == "production" else str(exc),
        "errorId": error_id,
        "timestamp": utcnow().isoformat(),
    }
    if exc.code in RECOVERY_SUGGESTIONS:
        error["suggestions"] = RECOVERY_SUGGESTIONS[exc.code]
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": error})


@app.exception_handler(SignStreamError)
async def signstream_error_handler(request: Request, exc: SignStreamError):
    return _error_response(request, exc)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    problems = []
    for err in exc.errors():
        field_name = ".".join(str(p) for p in err.get("loc", ()) if p != "body") or "body"
        problems.append(f"{field_name}: {err.get('msg', 'invalid')}")
    return _error_response(request, InvalidClientMessage("; ".join(problems) or "Invalid request"))


# Routers
app.include_router(routes_signs.router, prefix="/api", tags=["Signs"])
app.include_router(routes_health.router, tags=["Health"])
app.include_router(routes_websocket.router, tags=["WebSocket"])


@app.get("/")
def root():
    return {"status": "Speech-to-sign backend running", "version": __version__}


def run() -> None:
    import uvicorn

    uvicorn.run("signstream.main:app", host="0.0.0.0", port=get_settings().PORT, log_level=get_settings().LOG_LEVEL.lower())
