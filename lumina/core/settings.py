from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    app_env: str
    db_path: str
    gemini_api_key: str
    text_model: str
    image_model: str
    ai_timeout_seconds: float
    log_level: str

    @staticmethod
    def from_env() -> "Settings":
        def _f(name: str, default: str) -> float:
            return float(os.getenv(name, default).strip())

        return Settings(
            app_env=os.getenv("APP_ENV", "dev").strip(),
            db_path=os.getenv("DB_PATH", "_local/data/lumina.db").strip(),
            gemini_api_key=os.getenv("GEMINI_API_KEY", "").strip(),
            text_model=os.getenv("GEMINI_TEXT_MODEL", "gemini-2.5-flash").strip(),
            image_model=os.getenv("GEMINI_IMAGE_MODEL", "imagen-4.0-generate-001").strip(),
            ai_timeout_seconds=_f("AI_TIMEOUT_SECONDS", "60"),
            log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper(),
        )
