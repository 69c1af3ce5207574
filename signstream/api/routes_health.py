from fastapi import APIRouter
from fastapi.responses import JSONResponse

from signstream import __version__
from signstream.core.config import get_settings
from signstream.core.monitoring import get_metrics
from signstream.schemas.streaming import utcnow
from signstream.services.dictionary import get_dictionary_store
from signstream.services.session_registry import get_session_registry
from signstream.services.speech_service import get_speech_service

router = APIRouter()


@router.get("/health")
def health():
    report = get_metrics().health()
    status_code = 503 if report["status"] == "unhealthy" else 200
    return JSONResponse(status_code=status_code, content={**report, "version": __version__})


@router.get("/health/ready")
def readiness_probe():
    return {"status": "ready", "dictionaryEntries": len(get_dictionary_store().snapshot())}


@router.get("/health/live")
def liveness_probe():
    return {"status": "alive"}


@router.get("/metrics")
def metrics():
    report = get_metrics().health()
    return {"metrics": report["metrics"], "uptime": report["uptime"], "timestamp": report["timestamp"]}


@router.get("/status")
def status():
    report = get_metrics().health()
    return {
        "service": "speech-to-sign-backend",
        "version": __version__,
        "environment": get_settings().ENV,
        "status": report["status"],
        "uptime": report["uptime"],
        "issues": report["issues"],
        "activeStreams": len(get_session_registry()),
        "speechServices": get_speech_service().availability(),
        "dictionary": get_dictionary_store().snapshot().stats(),
        "timestamp": utcnow().isoformat(),
    }
