# orchestration/models.py
"""Shared dataclasses for the automation runners."""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any

from config import settings

from models import OutlineItem


@dataclass
class AutoWriteConfig:
    """Per-run settings for an ``AutoWriteEngine``.

    Built once from the global settings so a running engine never observes
    configuration changes mid-run.
    """

    model: str
    max_reply_length: int = 8192
    temperature: float = 0.8
    top_p: float | None = None
    top_k: int | None = None
    stream: bool = True
    max_retries: int = 2
    system_prompt: str = ""
    long_text_mode: bool = False
    context_scope: str = "all"
    context_chapter_count: int = 1
    consecutive_chapter_count: int = 1
    max_batch_tokens: int = 128000
    batch_token_multiplier: float = 1.5
    retry_delay_seconds: float = 1.0
    inter_batch_delay_seconds: float = 2.0
    stream_update_interval_seconds: float = 0.2

    @classmethod
    def from_settings(cls, **overrides: Any) -> AutoWriteConfig:
        values: dict[str, Any] = {
            "model": settings.MAIN_GENERATION_MODEL,
            "max_reply_length": settings.MAX_REPLY_LENGTH,
            "temperature": settings.TEMPERATURE_DRAFTING,
            "top_p": settings.LLM_TOP_P,
            "top_k": settings.LLM_TOP_K,
            "stream": settings.ENABLE_STREAMING,
            "max_retries": settings.MAX_RETRIES,
            "system_prompt": settings.SYSTEM_PROMPT,
            "long_text_mode": settings.LONG_TEXT_MODE,
            "context_scope": settings.CONTEXT_SCOPE,
            "context_chapter_count": settings.CONTEXT_CHAPTER_COUNT,
            "consecutive_chapter_count": settings.CONSECUTIVE_CHAPTER_COUNT,
            "max_batch_tokens": settings.MAX_BATCH_TOKENS,
            "batch_token_multiplier": settings.BATCH_TOKEN_MULTIPLIER,
            "retry_delay_seconds": settings.RETRY_DELAY_SECONDS,
            "inter_batch_delay_seconds": settings.INTER_BATCH_DELAY_SECONDS,
            "stream_update_interval_seconds": settings.STREAM_UPDATE_INTERVAL_SECONDS,
        }
        known = {f.name for f in fields(cls)}
        unknown = set(overrides) - known
        if unknown:
            raise TypeError(f"Unknown AutoWriteConfig fields: {sorted(unknown)}")
        values.update(overrides)
        return cls(**values)

    @property
    def batch_size(self) -> int:
        return max(self.consecutive_chapter_count, 1)

    def batch_max_tokens(self, item_count: int) -> int:
        """Token budget for a request covering ``item_count`` chapters."""
        multiplier = self.batch_token_multiplier if item_count > 1 else 1.0
        budget = self.max_reply_length * item_count * multiplier
        return int(round(min(budget, self.max_batch_tokens)))


@dataclass
class BatchItem:
    """An outline item scheduled into the current batch."""

    item: OutlineItem
    index: int
    chapter_id: int

    @property
    def title(self) -> str:
        return self.item.title
