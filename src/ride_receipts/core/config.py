from __future__ import annotations

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    environment: str = "dev"
    log_level: str = "INFO"

    database_url: str = "sqlite:///./ride_receipts.db"
    redis_url: str = "redis://localhost:6379/0"

    parser_policy: Literal["regex-only", "ai-only", "regex-first", "ai-with-subject-filter"] = (
        "regex-first"
    )

    receipt_ai_enabled: bool = True
    gemini_api_key: str | None = None
    gemini_model: str = "gemini-2.5-flash"
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1"
    receipt_ai_timeout_seconds: float = 20.0
    receipt_ai_max_chars: int = 12000

    # Blank means "use the built-in pattern for that vendor".
    uber_subject_regex: str = ""
    lyft_subject_regex: str = ""
    curb_subject_regex: str = ""
    amtrak_subject_regex: str = ""

    duplicate_threshold: int = 10
    duplicate_tolerance_cents: int = 1
    duplicate_run_action: Literal["skip", "continue"] = "skip"

    # 0 = unlimited. Caps the number of messages taken from each vendor query.
    test_mode_limit: int = 0


settings = Settings()
