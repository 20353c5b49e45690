# processing/summary_manager.py
"""Rolling small and big summaries inserted as chapters between story chapters.

Small summaries cover each run of ``small_interval`` story chapters. Big
summaries cover everything from the start of the book (or of the volume in
volume-scoped runs) up to every ``big_interval``-th chapter, built from the
previous big summary, newer small summaries and the most recent prose.
"""

from __future__ import annotations

import re
from typing import Any, Literal

import structlog
from config import settings
from prompt_renderer import render_prompt

from models import Chapter, Novel
from processing.context_assembler import (
    SCOPE_ALL,
    get_effective_chapter_content,
    get_story_chapters,
    is_summary_chapter,
    parse_summary_range,
)

logger = structlog.get_logger(__name__)

SummaryKind = Literal["small_summary", "big_summary"]

SUMMARY_TITLES: dict[str, str] = {
    "small_summary": "小总结",
    "big_summary": "大总结",
}

_RANGE_IN_TITLE_RE = re.compile(r"\(\d+-\d+\)")


def summary_title(kind: SummaryKind, summary_range: str) -> str:
    return f"{SUMMARY_TITLES[kind]} ({summary_range})"


def insert_after_chapter(chapters: list[Chapter], anchor_id: int, chapter: Chapter) -> None:
    """Insert ``chapter`` after ``anchor_id`` and any summaries already attached to it."""
    index = next((i for i, c in enumerate(chapters) if c.id == anchor_id), None)
    if index is None:
        chapters.append(chapter)
        return
    position = index + 1
    while position < len(chapters) and is_summary_chapter(chapters[position]):
        position += 1
    chapters.insert(position, chapter)


def recalibrate_summaries(chapters: list[Chapter]) -> list[Chapter]:
    """Re-anchor every summary to the story chapter physically before it.

    The range keeps its span but ends at the anchor's story number, never
    reaching back past the first chapter of the anchor's volume. Summaries
    with no story chapter before them fall back to ``1-1``.
    """
    stories = get_story_chapters(chapters)
    numbers = {c.id: i for i, c in enumerate(stories, start=1)}
    result: list[Chapter] = []
    anchor: Chapter | None = None
    for chapter in chapters:
        if not is_summary_chapter(chapter):
            anchor = chapter
            result.append(chapter)
            continue
        if anchor is None:
            if stories:
                chapter = chapter.model_copy(
                    update={"summary_range": "1-1", "volume_id": stories[0].volume_id}
                )
            result.append(chapter)
            continue

        end = numbers.get(anchor.id, 1)
        old_start, old_end = parse_summary_range(chapter.summary_range or "1-1")
        span = max(1, (old_end or 1) - (old_start or 1) + 1)
        start = max(1, end - span + 1)
        first_in_volume = next((s for s in stories if s.volume_id == anchor.volume_id), None)
        if first_in_volume is not None:
            start = max(start, numbers[first_in_volume.id])

        new_range = f"{start}-{end}"
        if new_range != chapter.summary_range or chapter.volume_id != anchor.volume_id:
            logger.info(
                f"Recalibrated summary '{chapter.title}' to range {new_range}.",
                volume_id=anchor.volume_id,
            )
            chapter = chapter.model_copy(
                update={
                    "summary_range": new_range,
                    "volume_id": anchor.volume_id,
                    "title": _RANGE_IN_TITLE_RE.sub(f"({new_range})", chapter.title, count=1),
                }
            )
        result.append(chapter)
    return result


class SummaryManager:
    """Generates the summaries due after a chapter is written.

    ``client`` needs an async ``complete(model, messages, **params)``.
    Failed requests are logged and skipped so writing can continue.
    """

    def __init__(
        self,
        client: Any,
        model: str | None = None,
        small_interval: int | None = None,
        big_interval: int | None = None,
        context_chapter_count: int | None = None,
        context_scope: str | None = None,
        temperature: float | None = None,
    ) -> None:
        self.client = client
        self.model = model or settings.SUMMARY_MODEL or settings.MAIN_GENERATION_MODEL
        self.small_interval = max(small_interval or settings.SMALL_SUMMARY_INTERVAL, 1)
        self.big_interval = max(big_interval or settings.BIG_SUMMARY_INTERVAL, 1)
        self.context_chapter_count = max(
            context_chapter_count or settings.CONTEXT_CHAPTER_COUNT, 1
        )
        self.context_scope = context_scope or settings.CONTEXT_SCOPE
        self.temperature = (
            settings.TEMPERATURE_SUMMARY if temperature is None else temperature
        )

    @property
    def volume_mode(self) -> bool:
        return self.context_scope != SCOPE_ALL

    async def check_and_generate(
        self, novel: Novel, chapter_id: int, content: str
    ) -> Novel | None:
        """Generate any summaries due once ``chapter_id`` holds ``content``.

        Returns an updated copy of ``novel`` when at least one summary was
        written, otherwise ``None``.
        """
        working = novel.model_copy(deep=True)
        target = next((c for c in working.chapters if c.id == chapter_id), None)
        if target is None or is_summary_chapter(target):
            return None
        target.content = content

        stories = get_story_chapters(working.chapters)
        numbers = {c.id: i for i, c in enumerate(stories, start=1)}
        scope_stories = (
            [c for c in stories if c.volume_id == target.volume_id]
            if self.volume_mode
            else stories
        )
        position = next(
            (i for i, c in enumerate(scope_stories, start=1) if c.id == chapter_id), None
        )
        if position is None:
            return None

        written = 0
        for count in range(self.small_interval, position + 1, self.small_interval):
            batch = scope_stories[count - self.small_interval : count]
            start, end = numbers[batch[0].id], numbers[batch[-1].id]
            if await self._generate(working, "small_summary", start, end, batch[-1], target):
                written += 1

        scope_start = numbers[scope_stories[0].id] if self.volume_mode else 1
        for count in range(self.big_interval, position + 1, self.big_interval):
            last = scope_stories[count - 1]
            if await self._generate(
                working, "big_summary", scope_start, numbers[last.id], last, target
            ):
                written += 1

        return working if written else None

    def _in_volume(self, chapter: Chapter, target: Chapter) -> bool:
        return not self.volume_mode or chapter.volume_id == target.volume_id

    def _summaries(self, novel: Novel, kind: SummaryKind, target: Chapter) -> list[Chapter]:
        return [
            c
            for c in novel.chapters
            if c.subtype == kind and c.summary_range and self._in_volume(c, target)
        ]

    def _small_source(self, novel: Novel, start: int, end: int) -> str:
        chapters = get_story_chapters(novel.chapters)[start - 1 : end]
        return "\n\n".join(
            f"Chapter: {c.title}\n{get_effective_chapter_content(c)}" for c in chapters
        )

    def _big_source(self, novel: Novel, start: int, end: int, target: Chapter) -> str:
        smalls = sorted(
            (
                s
                for s in self._summaries(novel, "small_summary", target)
                if start <= parse_summary_range(s.summary_range)[0]
                and parse_summary_range(s.summary_range)[1] <= end
            ),
            key=lambda s: parse_summary_range(s.summary_range)[0],
        )
        previous_big = max(
            (
                s
                for s in self._summaries(novel, "big_summary", target)
                if parse_summary_range(s.summary_range)[0] == start
                and parse_summary_range(s.summary_range)[1] < end
            ),
            key=lambda s: parse_summary_range(s.summary_range)[1],
            default=None,
        )
        big_end = parse_summary_range(previous_big.summary_range)[1] if previous_big else 0

        parts: list[str] = []
        if previous_big is not None:
            parts.append(
                f"[Story summary (chapters {start}-{big_end})]:\n{previous_big.content}"
            )
        newer = [s for s in smalls if parse_summary_range(s.summary_range)[1] > big_end]
        if newer:
            parts.append(
                "\n\n".join(
                    f"[Section summary ({s.summary_range})]:\n{s.content}" for s in newer
                )
            )

        last_small_end = parse_summary_range(smalls[-1].summary_range)[1] if smalls else big_end
        lookback_start = max(start, last_small_end - self.context_chapter_count + 1)
        recent = [
            c
            for number, c in enumerate(get_story_chapters(novel.chapters), start=1)
            if lookback_start <= number <= end
        ]
        if recent:
            parts.append(
                "[Recent chapters]:\n"
                + "\n\n".join(
                    f"### {c.title}\n{get_effective_chapter_content(c)}" for c in recent
                )
            )
        return "\n\n---\n\n".join(parts)

    async def _generate(
        self,
        novel: Novel,
        kind: SummaryKind,
        start: int,
        end: int,
        anchor: Chapter,
        target: Chapter,
    ) -> bool:
        summary_range = f"{start}-{end}"
        if any(
            s.summary_range == summary_range for s in self._summaries(novel, kind, target)
        ):
            return False

        if kind == "small_summary":
            source_text = self._small_source(novel, start, end)
            instruction = settings.SMALL_SUMMARY_PROMPT
        else:
            source_text = self._big_source(novel, start, end, target)
            instruction = settings.BIG_SUMMARY_PROMPT
        if not source_text.strip():
            return False

        messages = [
            {"role": "system", "content": render_prompt("summary/system.j2", {})},
            {
                "role": "user",
                "content": render_prompt(
                    "summary/user.j2",
                    {
                        "source_text": source_text,
                        "instruction": instruction,
                        "volume_only": self.volume_mode,
                    },
                ),
            },
        ]
        logger.info(f"Generating {kind} for chapters {summary_range}.")
        try:
            text = await self.client.complete(
                self.model, messages, temperature=self.temperature
            )
        except Exception as e:
            logger.error(
                f"Error during {kind} generation for chapters {summary_range}: {e}",
                exc_info=True,
            )
            return False
        text = (text or "").strip()
        if not text:
            logger.warning(f"LLM returned empty {kind} for chapters {summary_range}.")
            return False

        summary = Chapter(
            id=max(c.id for c in novel.chapters) + 1,
            title=summary_title(kind, summary_range),
            content=text,
            subtype=kind,
            summary_range=summary_range,
            volume_id=target.volume_id,
        )
        insert_after_chapter(novel.chapters, anchor.id, summary)
        logger.info(f"Inserted {summary.title} after chapter {anchor.id}.")
        return True
