"""Speech-to-sign backend package.

This package contains the FastAPI routes, services and workers that turn
speech or text into sign-language video sequences. Subpackages include:
- api: FastAPI route definitions (REST + streaming WebSocket)
- core: configuration, logging, errors and service metrics
- services: speech providers, transcription bridge, sign mapping, sessions
- schemas: Pydantic models and the streaming wire protocol
- workers: periodic scheduler and idle session reaper
"""

__all__ = [
    "api",
    "core",
    "services",
    "schemas",
    "workers",
]

__version__ = "1.0.0"
