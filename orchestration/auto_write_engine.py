# orchestration/auto_write_engine.py
"""Batched, retrying chapter writer driven by an outline.

One engine instance owns one run against one working copy of a novel.
Consecutive unwritten outline items are grouped into a batch, generated in
a single completion request, split back into chapters and committed
together.
"""

from __future__ import annotations

import asyncio
import inspect
import re
import time
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

import structlog
from core.llm_interface import CompletionClient, CompletionError, GenerationAbortedError
from prompt_renderer import render_prompt

from models import (
    Chapter,
    ChapterContextConfig,
    ChapterVersion,
    Novel,
    OutlineItem,
    PromptItem,
    RegexScript,
)
from processing.context_assembler import build_world_info_context, get_chapter_context
from processing.regex_scripts import process_text_with_regex
from orchestration.models import AutoWriteConfig, BatchItem

logger = structlog.get_logger(__name__)

MISSING_CHAPTER_PLACEHOLDER = "(Generation error: no content could be parsed for this chapter)"
STATUS_COMPLETE = "Writing complete."

_ANY_HEADING_RE = re.compile(r"(?:\r\n|\r|\n|^)###[^\r\n]*")

ChapterCompleteCallback = Callable[[int, str, Novel], Awaitable[Novel | None] | Novel | None]


def _heading_regex(title: str) -> re.Pattern[str]:
    return re.compile(
        rf"(?:\r\n|\r|\n|^)###\s*{re.escape(title)}(?:\s|$)", re.IGNORECASE
    )


def _split_on_expected_headings(text: str, titles: Sequence[str]) -> list[str]:
    """Slice ``text`` at each ``### <title>`` heading that is present.

    Titles whose heading is missing get an empty segment. When no heading is
    found at all, the whole text belongs to the first title.
    """
    segments = [""] * len(titles)
    found: list[tuple[int, int]] = []
    for idx, title in enumerate(titles):
        match = _heading_regex(title).search(text)
        if match is not None:
            found.append((text.index("###", match.start()), idx))

    if not found:
        segments[0] = text.strip()
        return segments

    found.sort()
    for i, (pos, idx) in enumerate(found):
        next_start = found[i + 1][0] if i + 1 < len(found) else len(text)
        # Body starts on the line after the heading.
        line_end = text.find("\n", pos)
        body_start = next_start if line_end == -1 else min(line_end + 1, next_start)
        segments[idx] = text[body_start:next_start].strip()
    return segments


def _split_on_any_heading(text: str) -> list[str]:
    parts = _ANY_HEADING_RE.split(text)
    return [p.strip() for p in parts if p.strip()]


def split_batch_content(text: str, titles: Sequence[str]) -> list[str]:
    """Split a multi-chapter response into one trimmed segment per title.

    Segments are cut at the expected ``### <title>`` headings. For a
    multi-chapter batch where that leaves chapters empty, the text is split
    positionally on any ``###`` heading line instead, provided that yields
    enough non-empty parts. Empty segments are filled with
    ``MISSING_CHAPTER_PLACEHOLDER``.
    """
    if not titles:
        return []

    segments = _split_on_expected_headings(text, titles)
    if len(titles) > 1 and sum(1 for s in segments if s) < len(titles):
        parts = _split_on_any_heading(text)
        if len(parts) >= len(titles):
            segments = parts[: len(titles)]

    return [s or MISSING_CHAPTER_PLACEHOLDER for s in segments]


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class AutoWriteEngine:
    """Write chapters for an outline in retrying, optionally streamed batches."""

    def __init__(
        self,
        config: AutoWriteConfig,
        novel: Novel,
        client: CompletionClient | None = None,
    ):
        self.config = config
        self.novel = novel.model_copy(deep=True)
        self._client = client
        self._running = False
        self._inflight: asyncio.Task | None = None
        self._status: Callable[[str], None] = lambda _status: None
        self._publish: Callable[[Novel], None] = lambda _novel: None
        self._on_chapter_complete: ChapterCompleteCallback | None = None
        self._get_scripts: Callable[[], Sequence[RegexScript]] = lambda: []

    @property
    def is_running(self) -> bool:
        return self._running

    def stop(self) -> None:
        """Stop the run and abort any in-flight request. Safe to call repeatedly."""
        if self._running:
            logger.info("AutoWriteEngine: stop requested.")
        self._running = False
        if self._inflight is not None and not self._inflight.done():
            self._inflight.cancel()

    async def run(
        self,
        outline: Sequence[OutlineItem],
        start_index: int = 0,
        active_prompts: Sequence[PromptItem] = (),
        get_active_scripts: Callable[[], Sequence[RegexScript]] | None = None,
        on_status_update: Callable[[str], None] | None = None,
        on_novel_update: Callable[[Novel], None] | None = None,
        on_chapter_complete: ChapterCompleteCallback | None = None,
        target_volume_id: str | None = None,
        include_full_outline: bool = False,
        outline_set_id: str | None = None,
    ) -> None:
        """Write every outline item from ``start_index`` onward.

        Generation failures and cancellation never raise out of this method;
        failures are reported through ``on_status_update``.
        """
        self._running = True
        if on_status_update is not None:
            self._status = on_status_update
        if on_novel_update is not None:
            self._publish = on_novel_update
        if get_active_scripts is not None:
            self._get_scripts = get_active_scripts
        self._on_chapter_complete = on_chapter_complete
        client = self._client or CompletionClient()
        try:
            await self._run_loop(
                client,
                list(outline),
                start_index,
                list(active_prompts),
                target_volume_id,
                include_full_outline,
                outline_set_id,
            )
        finally:
            self._running = False
            self._inflight = None
            if self._client is None:
                await client.aclose()

    async def _run_loop(
        self,
        client: CompletionClient,
        outline: list[OutlineItem],
        index: int,
        active_prompts: list[PromptItem],
        target_volume_id: str | None,
        include_full_outline: bool,
        outline_set_id: str | None,
    ) -> None:
        if index >= len(outline):
            self._status(STATUS_COMPLETE)
            return

        while index < len(outline) and self._running:
            batch, index = await self._collect_batch(outline, index)
            if not batch:
                continue

            self._apply_placeholders(batch, target_volume_id)
            self._publish(self.novel)
            self._status(f"Writing: {', '.join(b.title for b in batch)}")

            committed = await self._write_batch(
                client, batch, outline, active_prompts, include_full_outline, outline_set_id
            )
            if not committed:
                return
            index += len(batch)

            if self._running and index < len(outline):
                await asyncio.sleep(self.config.inter_batch_delay_seconds)

        if self._running:
            self._status(STATUS_COMPLETE)
            logger.info("AutoWriteEngine: outline exhausted.", chapters=len(outline))

    async def _collect_batch(
        self, outline: list[OutlineItem], index: int
    ) -> tuple[list[BatchItem], int]:
        """Group up to ``batch_size`` unwritten items starting at ``index``.

        Returns the batch and the (possibly advanced) batch start index.
        """
        batch: list[BatchItem] = []
        cursor = index
        while (
            self._running
            and len(batch) < self.config.batch_size
            and cursor < len(outline)
        ):
            item = outline[cursor]
            existing = self.novel.find_chapter_by_title(item.title)
            if existing is not None and existing.content.strip():
                if batch:
                    break
                logger.info(f"AutoWriteEngine: skipping already written chapter '{item.title}'.")
                reported = await self._report_chapter_complete(
                    existing.id, existing.title, existing.content
                )
                if not reported:
                    return [], index
                cursor += 1
                index = cursor
                continue

            chapter_id = existing.id if existing is not None else self._next_chapter_id(batch)
            batch.append(BatchItem(item=item, index=cursor, chapter_id=chapter_id))
            cursor += 1
        return batch, index

    def _next_chapter_id(self, batch: list[BatchItem]) -> int:
        used = [c.id for c in self.novel.chapters] + [b.chapter_id for b in batch]
        return max(used, default=0) + 1

    def _apply_placeholders(self, batch: list[BatchItem], target_volume_id: str | None) -> None:
        for batch_item in batch:
            existing = self.novel.find_chapter_by_title(batch_item.title)
            if existing is None:
                self.novel.chapters.append(
                    Chapter(
                        id=batch_item.chapter_id,
                        title=batch_item.title,
                        content="",
                        volume_id=target_volume_id,
                    )
                )
                continue
            batch_item.chapter_id = existing.id
            if not existing.volume_id and target_volume_id:
                existing.volume_id = target_volume_id

    async def _write_batch(
        self,
        client: CompletionClient,
        batch: list[BatchItem],
        outline: list[OutlineItem],
        active_prompts: list[PromptItem],
        include_full_outline: bool,
        outline_set_id: str | None,
    ) -> bool:
        """Generate and commit one batch. Returns ``False`` when the run must halt."""
        max_attempts = self.config.max_retries + 1
        task_start = int(time.time() * 1000)
        first_chapter = self.novel.find_chapter(batch[0].chapter_id)
        original_first_content = first_chapter.content if first_chapter else ""

        for attempt in range(1, max_attempts + 1):
            if not self._running:
                return False
            try:
                contents = await self._generate_batch(
                    client, batch, outline, active_prompts, include_full_outline, outline_set_id
                )
                break
            except GenerationAbortedError:
                logger.info("AutoWriteEngine: generation aborted.")
                return False
            except Exception as e:
                if not self._running:
                    return False
                if first_chapter is not None:
                    first_chapter.content = original_first_content
                logger.warning(
                    f"AutoWriteEngine: batch attempt {attempt}/{max_attempts} failed: {e}",
                    titles=[b.title for b in batch],
                )
                if attempt >= max_attempts:
                    logger.error(
                        f"AutoWriteEngine: giving up on batch after {max_attempts} attempts.",
                        titles=[b.title for b in batch],
                    )
                    self._status(f"Generation failed: {e}")
                    self._running = False
                    return False
                await asyncio.sleep(self.config.retry_delay_seconds)
        else:
            return False

        self._commit(batch, contents, task_start)
        self._publish(self.novel)

        for batch_item, content in zip(batch, contents):
            if not await self._report_chapter_complete(
                batch_item.chapter_id, batch_item.title, content
            ):
                return False
        return True

    async def _report_chapter_complete(self, chapter_id: int, title: str, content: str) -> bool:
        """Run the completion callback; a failure halts the run with a failure status."""
        try:
            await self._notify_chapter_complete(chapter_id, content)
        except Exception as e:
            logger.error(
                f"AutoWriteEngine: chapter completion handler failed for '{title}': {e}",
                exc_info=True,
            )
            self._status(f"Generation failed: {e}")
            self._running = False
            return False
        return True

    async def _notify_chapter_complete(self, chapter_id: int, content: str) -> None:
        if self._on_chapter_complete is None:
            return
        result = await _maybe_await(self._on_chapter_complete(chapter_id, content, self.novel))
        if isinstance(result, Novel):
            self.novel = result

    def build_user_prompt(
        self,
        batch: Sequence[BatchItem],
        context: str,
        outline: Sequence[OutlineItem],
        include_full_outline: bool,
        outline_set_id: str | None,
    ) -> str:
        if len(batch) > 1:
            task_description = render_prompt(
                "auto_write/batch_task.j2", {"items": [b.item for b in batch]}
            )
        else:
            task_description = render_prompt(
                "auto_write/single_task.j2", {"item": batch[0].item}
            )
        return render_prompt(
            "auto_write/user_prompt.j2",
            {
                "world_info": build_world_info_context(self.novel, outline_set_id),
                "context": context,
                "full_outline": list(outline) if include_full_outline else [],
                "novel_title": self.novel.title,
                "task_description": task_description,
            },
        )

    def build_messages(
        self, user_prompt: str, active_prompts: Sequence[PromptItem]
    ) -> list[dict[str, str]]:
        messages = [{"role": "system", "content": self.config.system_prompt}]
        for prompt in active_prompts:
            if prompt.active and not prompt.is_fixed and prompt.content.strip():
                messages.append({"role": prompt.role, "content": prompt.content})
        messages.append({"role": "user", "content": user_prompt})
        return messages

    async def _generate_batch(
        self,
        client: CompletionClient,
        batch: list[BatchItem],
        outline: list[OutlineItem],
        active_prompts: list[PromptItem],
        include_full_outline: bool,
        outline_set_id: str | None,
    ) -> list[str]:
        first_chapter = self.novel.find_chapter(batch[0].chapter_id)
        if first_chapter is None:
            raise CompletionError("Chapter placeholder missing")

        scripts = list(self._get_scripts())
        raw_context = get_chapter_context(
            self.novel,
            first_chapter,
            ChapterContextConfig(
                long_text_mode=self.config.long_text_mode,
                context_scope=self.config.context_scope,
                context_chapter_count=self.config.context_chapter_count,
            ),
        )
        context = await process_text_with_regex(raw_context, scripts, "input")
        user_prompt = self.build_user_prompt(
            batch, context, outline, include_full_outline, outline_set_id
        )
        messages = self.build_messages(user_prompt, active_prompts)
        max_tokens = self.config.batch_max_tokens(len(batch))

        logger.info(
            "AutoWriteEngine: requesting batch",
            model=self.config.model,
            temperature=self.config.temperature,
            top_p=self.config.top_p,
            top_k=self.config.top_k,
            max_tokens=max_tokens,
            chapters=len(batch),
        )
        text = await self._request(client, messages, max_tokens, first_chapter)
        if not text.strip():
            raise CompletionError("Empty response received")

        segments = split_batch_content(text, [b.title for b in batch])
        return [await process_text_with_regex(s, scripts, "output") for s in segments]

    async def _request(
        self,
        client: CompletionClient,
        messages: list[dict[str, str]],
        max_tokens: int,
        first_chapter: Chapter,
    ) -> str:
        params = {
            "temperature": self.config.temperature,
            "top_p": self.config.top_p,
            "top_k": self.config.top_k,
            "max_tokens": max_tokens,
        }
        if self.config.stream:
            coro = self._consume_stream(client, messages, params, first_chapter)
        else:
            coro = client.complete(self.config.model, messages, **params)

        self._inflight = asyncio.ensure_future(coro)
        try:
            return await self._inflight
        except asyncio.CancelledError:
            if self._running:
                raise
            raise GenerationAbortedError("Generation stopped") from None
        finally:
            self._inflight = None

    async def _consume_stream(
        self,
        client: CompletionClient,
        messages: list[dict[str, str]],
        params: dict,
        first_chapter: Chapter,
    ) -> str:
        """Accumulate the stream, mirroring partial text into the first chapter only."""
        text = ""
        chunk_count = 0
        last_update = 0.0
        async for piece in client.stream_chat(self.config.model, messages, **params):
            if not self._running:
                raise GenerationAbortedError("Generation stopped")
            text += piece
            chunk_count += 1
            now = time.monotonic()
            if now - last_update < self.config.stream_update_interval_seconds:
                continue
            last_update = now
            first_chapter.content = text
            self._publish(self.novel)
        logger.debug("AutoWriteEngine: stream finished.", chunks=chunk_count, chars=len(text))
        return text

    def _commit(self, batch: list[BatchItem], contents: list[str], task_start: int) -> None:
        for batch_item, content in zip(batch, contents):
            chapter = self.novel.find_chapter(batch_item.chapter_id)
            if chapter is None:
                logger.warning(
                    f"AutoWriteEngine: chapter {batch_item.chapter_id} vanished before commit."
                )
                continue
            version_id = f"v_{task_start}_autowrite_{chapter.id}"
            version = ChapterVersion(
                id=version_id,
                content=content,
                timestamp=task_start,
                type="original" if not chapter.versions else "user_edit",
            )
            existing = next(
                (i for i, v in enumerate(chapter.versions) if v.id == version_id), None
            )
            if existing is not None:
                chapter.versions[existing] = version
            else:
                chapter.versions.append(version)
            chapter.content = content
            chapter.active_version_id = version_id
