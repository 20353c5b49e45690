# config.py
"""Configuration settings for the novel automation core.
Uses Pydantic BaseSettings for automatic environment variable loading.
"""

from __future__ import annotations

import structlog
from dotenv import load_dotenv
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()

logger = structlog.get_logger()


class AutomationSettings(BaseSettings):
    """Full configuration for the automation core."""

    # API and Model Configuration
    OPENAI_API_BASE: str = "http://127.0.0.1:8080/v1"
    OPENAI_API_KEY: str = "nope"

    MAIN_GENERATION_MODEL: str = "gpt-4o-mini"
    # Director (planner) model falls back to the main model when unset
    DIRECTOR_MODEL: str | None = None

    # Sampling
    TEMPERATURE_DRAFTING: float = 0.8
    TEMPERATURE_PLANNING: float = 0.6
    LLM_TOP_P: float = 0.95
    LLM_TOP_K: int | None = None

    # LLM Call Settings
    HTTPX_TIMEOUT: float = 600.0
    ENABLE_STREAMING: bool = True
    TIKTOKEN_DEFAULT_ENCODING: str = "cl100k_base"
    FALLBACK_CHARS_PER_TOKEN: float = 4.0

    # Batch writing
    MAX_REPLY_LENGTH: int = 8192
    MAX_BATCH_TOKENS: int = 128000
    BATCH_TOKEN_MULTIPLIER: float = 1.5
    CONSECUTIVE_CHAPTER_COUNT: int = 1
    MAX_RETRIES: int = 2
    RETRY_DELAY_SECONDS: float = 1.0
    INTER_BATCH_DELAY_SECONDS: float = 2.0
    STREAM_UPDATE_INTERVAL_SECONDS: float = 0.2
    SYSTEM_PROMPT: str = (
        "You are a professional novelist. Write vivid, coherent prose that "
        "follows the outline exactly."
    )

    # Context assembly
    LONG_TEXT_MODE: bool = False
    CONTEXT_CHAPTER_COUNT: int = 1
    CONTEXT_SCOPE: str = "all"
    REGEX_YIELD_INTERVAL_MS: float = 50.0
    REGEX_SLOW_SCRIPT_MS: float = 50.0

    # Rolling summaries
    SMALL_SUMMARY_INTERVAL: int = 3
    BIG_SUMMARY_INTERVAL: int = 6
    SUMMARY_MODEL: str | None = None
    TEMPERATURE_SUMMARY: float = 0.5
    SMALL_SUMMARY_PROMPT: str = (
        "Summarize the chapters above in one concise paragraph. Keep plot "
        "events, character changes and open threads."
    )
    BIG_SUMMARY_PROMPT: str = (
        "Merge the material above into a single running summary of the story "
        "so far. Keep every major event and unresolved thread."
    )

    # Automation core
    AGENT_LOG_LIMIT: int = 100

    # Output and File Paths
    BASE_OUTPUT_DIR: str = "novel_output"
    MANIFEST_FILE: str = "manifest.json"

    # Logging & UI
    LOG_LEVEL_STR: str = Field("INFO", alias="AGENT_LOG_LEVEL")
    LOG_FORMAT: str = (
        "%(asctime)s - %(levelname)s - [%(name)s:%(funcName)s:%(lineno)d] - %(message)s"
    )
    LOG_DATE_FORMAT: str = "%Y-%m-%d %H:%M:%S"
    LOG_FILE: str | None = "automation_run.log"
    ENABLE_RICH_PROGRESS: bool = True

    @model_validator(mode="after")
    def set_dynamic_model_defaults(self) -> AutomationSettings:
        if self.DIRECTOR_MODEL is None:
            self.DIRECTOR_MODEL = self.MAIN_GENERATION_MODEL
        if self.SUMMARY_MODEL is None:
            self.SUMMARY_MODEL = self.MAIN_GENERATION_MODEL
        for name in ("SMALL_SUMMARY_INTERVAL", "BIG_SUMMARY_INTERVAL"):
            if getattr(self, name) < 1:
                logger.warning(f"{name} below 1; using the default.", value=getattr(self, name))
                setattr(self, name, type(self).model_fields[name].default)
        if self.CONSECUTIVE_CHAPTER_COUNT < 1:
            logger.warning(
                "CONSECUTIVE_CHAPTER_COUNT below 1; using single-chapter batches.",
                value=self.CONSECUTIVE_CHAPTER_COUNT,
            )
            self.CONSECUTIVE_CHAPTER_COUNT = 1
        return self

    model_config = SettingsConfigDict(
        env_prefix="", env_file=".env", populate_by_name=True, extra="ignore"
    )


settings = AutomationSettings()
