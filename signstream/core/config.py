import os
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

BUNDLED_DATA_DIR = Path(__file__).resolve().parent.parent / "data"


class Settings(BaseSettings):
    # Speech recognition providers
    GOOGLE_APPLICATION_CREDENTIALS: str = ""
    SPEECH_MODEL: str = "latest_short"
    OPENAI_API_KEY: str = ""
    OPENAI_TRANSCRIPTION_URL: str = "https://api.openai.com/v1/audio/transcriptions"
    WHISPER_MODEL: str = "whisper-1"

    # Sign dictionary / video delivery
    CDN_BASE_URL: str = "https://your-cdn-domain.com/videos/"
    DICTIONARY_DIR: str = ""
    DEFAULT_VIDEO_DURATION_MS: int = 2000

    # Streaming sessions (seconds)
    SESSION_IDLE_TIMEOUT: float = 300.0
    REAPER_INTERVAL: float = 60.0
    BRIDGE_OPEN_TIMEOUT: float = 10.0
    BRIDGE_CLOSE_TIMEOUT: float = 5.0
    MAPPING_DRAIN_TIMEOUT: float = 5.0

    # Payload limits (bytes)
    MAX_AUDIO_CHUNK_BYTES: int = 1024 * 1024
    MAX_UPLOAD_BYTES: int = 10 * 1024 * 1024

    # HTTP server
    CORS_ORIGIN: str = "http://localhost:3000"
    PORT: int = 3001

    # General
    LOG_LEVEL: str = "INFO"
    ENV: str = os.getenv("ENV", "development")

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    @property
    def dictionary_dir(self) -> Path:
        return Path(self.DICTIONARY_DIR) if self.DICTIONARY_DIR else BUNDLED_DATA_DIR


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    # Ensure .env is loaded once
    load_dotenv(override=False)
    return Settings()
