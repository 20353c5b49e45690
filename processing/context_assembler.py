# processing/context_assembler.py
"""Assemble reference and prior-narrative context for chapter generation.

Two renderings share one selection step: a flat string that is embedded in
the user prompt, and a list of system messages for chat-style requests.
"""

from __future__ import annotations

import time
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any, Literal

import structlog

from models import (
    Chapter,
    ChapterContextConfig,
    CharacterSet,
    Novel,
    OutlineSet,
    WorldviewSet,
)

logger = structlog.get_logger(__name__)

SCOPE_ALL = "all"
SCOPE_CURRENT = "current"

WORLDVIEW_HEADING = "[World settings]:"
CHARACTER_HEADING = "[Character profiles]:"

ContextItemKind = Literal["big_summary", "small_summary", "story"]


@dataclass(frozen=True)
class ContextItem:
    kind: ContextItemKind
    end: int
    chapter: Chapter


@dataclass(frozen=True)
class ContextSelection:
    """Everything the long-text renderer needs, in emission order."""

    volume_outlines: tuple[OutlineSet, ...]
    items: tuple[ContextItem, ...]


def get_story_chapters(chapters: Iterable[Chapter]) -> list[Chapter]:
    """Chapters that hold narrative prose, in document order."""
    return [c for c in chapters if not c.subtype or c.subtype == "story"]


def summary_kind(chapter: Chapter) -> Literal["big_summary", "small_summary"] | None:
    """The summary subtype of ``chapter``; story chapters return ``None``."""
    if chapter.subtype in ("big_summary", "small_summary"):
        return chapter.subtype
    return None


def is_summary_chapter(chapter: Chapter) -> bool:
    return summary_kind(chapter) is not None


def parse_summary_range(summary_range: str | None) -> tuple[int, int]:
    """Parse ``"start-end"``; unparsable parts become 0."""
    if not summary_range:
        return 0, 0
    parts = summary_range.split("-")

    def _to_int(value: str) -> int:
        try:
            return int(value.strip())
        except ValueError:
            return 0

    start = _to_int(parts[0])
    end = _to_int(parts[1]) if len(parts) > 1 else 0
    return start, end


def get_effective_chapter_content(chapter: Chapter | None) -> str:
    """Current content, or the frozen original version when content is blank."""
    if chapter is None:
        return ""
    if chapter.content and chapter.content.strip():
        return chapter.content
    original = next((v for v in chapter.versions if v.type == "original"), None)
    return original.content if original else ""


# ---------------------------------------------------------------------------
# World info
# ---------------------------------------------------------------------------


def _select_sets(novel: Novel, sets: Sequence[Any], active_set_id: str | None) -> list[Any]:
    """Sets matching ``active_set_id`` by id or by the outline set's name.

    Falls back to the first available set when nothing matches or no id is
    given.
    """
    if not sets:
        return []
    if active_set_id:
        target_name = next(
            (s.name for s in novel.outline_sets if s.id == active_set_id), ""
        )
        matched = [
            s
            for s in sets
            if s.id == active_set_id or (target_name and s.name == target_name)
        ]
        if matched:
            return matched
    return [sets[0]]


def _worldview_lines(sets: Iterable[WorldviewSet]) -> list[str]:
    return [f"· {entry.item}: {entry.setting}" for s in sets for entry in s.entries]


def _character_lines(sets: Iterable[CharacterSet]) -> list[str]:
    return [f"· {char.name}: {char.bio}" for s in sets for char in s.characters]


def build_world_info_context(novel: Novel | None, active_set_id: str | None = None) -> str:
    """Render worldview and character excerpts as a flat bullet list."""
    if novel is None:
        return ""
    context = ""

    worldview = _worldview_lines(_select_sets(novel, novel.worldview_sets, active_set_id))
    if worldview:
        context += WORLDVIEW_HEADING + "\n" + "\n".join(worldview) + "\n\n"

    characters = _character_lines(_select_sets(novel, novel.character_sets, active_set_id))
    if characters:
        context += CHARACTER_HEADING + "\n" + "\n".join(characters) + "\n\n"

    return context


def build_world_info_messages(
    novel: Novel | None, active_set_id: str | None = None
) -> list[dict[str, str]]:
    """System messages carrying the same reference material.

    Character profiles always come from every set so the protagonists are
    never dropped by set filtering.
    """
    if novel is None:
        return []
    messages: list[dict[str, str]] = []

    worldview = _worldview_lines(_select_sets(novel, novel.worldview_sets, active_set_id))
    if worldview:
        messages.append(
            {"role": "system", "content": WORLDVIEW_HEADING + "\n" + "\n".join(worldview) + "\n"}
        )

    if novel.character_sets:
        characters = _character_lines(novel.character_sets)
        messages.append(
            {"role": "system", "content": CHARACTER_HEADING + "\n" + "\n".join(characters) + "\n"}
        )

    return messages


# ---------------------------------------------------------------------------
# Chapter context
# ---------------------------------------------------------------------------


def _select_long_text_context(
    novel: Novel, target: Chapter, config: ChapterContextConfig
) -> ContextSelection | None:
    """Pick the outline sets, summaries and story chapters for long-text mode.

    Returns ``None`` when the target is not a story chapter or is the first
    chapter of its scope.
    """
    context_count = max(config.context_chapter_count or 1, 1)
    is_all_scope = config.context_scope == SCOPE_ALL
    filter_volume_id: str | None = None
    filter_uncategorized = False
    if config.context_scope == SCOPE_CURRENT:
        if target.volume_id:
            filter_volume_id = target.volume_id
        else:
            filter_uncategorized = True
    elif not is_all_scope:
        filter_volume_id = config.context_scope

    story_chapters = get_story_chapters(novel.chapters)
    current_index = next(
        (i for i, c in enumerate(story_chapters) if c.id == target.id), None
    )
    if current_index is None:
        return None
    current_num = current_index + 1

    def _in_scope(chapter: Chapter) -> bool:
        if is_all_scope:
            return True
        if filter_volume_id:
            return chapter.volume_id == filter_volume_id
        return not chapter.volume_id

    scope_start_num = 1
    if not is_all_scope:
        first_in_scope = next(
            (i for i, c in enumerate(story_chapters) if _in_scope(c)), None
        )
        if first_in_scope is not None:
            scope_start_num = first_in_scope + 1

    if current_num == scope_start_num:
        return None

    volume_outlines: list[OutlineSet] = []
    if not is_all_scope:
        volume = next((v for v in novel.volumes if v.id == filter_volume_id), None)
        volume_title = volume.title if volume else ("Uncategorized" if filter_uncategorized else "")
        volume_outlines = [
            s
            for s in novel.outline_sets
            if s.id == filter_volume_id or (volume_title and s.name == volume_title)
        ]

    # Deduplicate per volume and range; the newest summary chapter wins.
    unique: dict[tuple[str, str], Chapter] = {}
    for chapter in novel.chapters:
        if not is_summary_chapter(chapter) or not chapter.summary_range:
            continue
        if not _in_scope(chapter):
            continue
        if parse_summary_range(chapter.summary_range)[1] >= current_num:
            continue
        key = (chapter.volume_id or "default", chapter.summary_range)
        if key not in unique or chapter.id > unique[key].id:
            unique[key] = chapter

    summaries = list(unique.values())
    big = [s for s in summaries if summary_kind(s) == "big_summary"]
    latest_big = max(big, key=lambda s: parse_summary_range(s.summary_range)[1], default=None)
    big_end = (
        parse_summary_range(latest_big.summary_range)[1]
        if latest_big
        else scope_start_num - 1
    )

    summary_items: list[ContextItem] = []
    if latest_big is not None:
        summary_items.append(ContextItem("big_summary", big_end, latest_big))
    for summary in summaries:
        if summary_kind(summary) != "small_summary":
            continue
        end = parse_summary_range(summary.summary_range)[1]
        if big_end < end < current_num:
            summary_items.append(ContextItem("small_summary", end, summary))
    summary_items.sort(
        key=lambda item: (item.end, parse_summary_range(item.chapter.summary_range)[0])
    )

    if summary_items:
        max_summarized_end = max(item.end for item in summary_items)
        story_start = max(scope_start_num, max_summarized_end - context_count + 1)
    else:
        story_start = max(scope_start_num, current_num - context_count)

    seen_ids: set[int] = set()
    story_items: list[ContextItem] = []
    for number, chapter in enumerate(story_chapters, start=1):
        if story_start <= number < current_num and chapter.id not in seen_ids:
            seen_ids.add(chapter.id)
            story_items.append(ContextItem("story", number, chapter))

    return ContextSelection(tuple(volume_outlines), tuple(summary_items + story_items))


def _previous_volume_chapters(novel: Novel, target: Chapter) -> list[Chapter]:
    volume_chapters = [
        c for c in get_story_chapters(novel.chapters) if c.volume_id == target.volume_id
    ]
    index = next((i for i, c in enumerate(volume_chapters) if c.id == target.id), None)
    if index is None:
        return []
    return volume_chapters[:index]


def _render_outline_set(outline_set: OutlineSet) -> str:
    lines = [f"[Volume outline - {outline_set.name}]:"]
    lines.extend(
        f"{idx}. {item.title}: {item.summary}"
        for idx, item in enumerate(outline_set.items, start=1)
    )
    return "\n".join(lines) + "\n"


def _render_item(item: ContextItem) -> str:
    if item.kind == "story":
        return f"### [Previously] {item.chapter.title}\n{get_effective_chapter_content(item.chapter)}"
    if item.kind == "big_summary":
        return f"[Arc summary ({item.chapter.title})]:\n{item.chapter.content}"
    return f"[Plot summary ({item.chapter.title})]:\n{item.chapter.content}"


def get_chapter_context(
    novel: Novel | None, target: Chapter | None, config: ChapterContextConfig
) -> str:
    """Narrative context to prepend to a generation for ``target``.

    Outside long-text mode every earlier story chapter of the same volume is
    included verbatim. In long-text mode older material is represented by
    summaries while at least ``context_chapter_count`` chapters of recent
    prose stay verbatim.
    """
    if novel is None or target is None:
        return ""
    start_time = time.perf_counter()
    context = ""

    if config.long_text_mode:
        selection = _select_long_text_context(novel, target, config)
        if selection is not None:
            for outline_set in selection.volume_outlines:
                context += _render_outline_set(outline_set) + "\n"
            for item in selection.items:
                context += _render_item(item) + "\n\n"
    else:
        previous = _previous_volume_chapters(novel, target)
        context = "\n\n".join(
            f"### {c.title}\n{get_effective_chapter_content(c)}" for c in previous
        )
        if context:
            context += "\n\n"

    duration_ms = (time.perf_counter() - start_time) * 1000
    if duration_ms > 20:
        logger.debug(f"get_chapter_context took {duration_ms:.0f}ms", chapter_id=target.id)
    return context


def get_chapter_context_messages(
    novel: Novel | None, target: Chapter | None, config: ChapterContextConfig
) -> list[dict[str, str]]:
    """Same selection as :func:`get_chapter_context`, one system message per block."""
    if novel is None or target is None:
        return []

    if not config.long_text_mode:
        return [
            {"role": "system", "content": f"### {c.title}\n{get_effective_chapter_content(c)}"}
            for c in _previous_volume_chapters(novel, target)
        ]

    selection = _select_long_text_context(novel, target, config)
    if selection is None:
        return []
    messages = [
        {"role": "system", "content": _render_outline_set(s)} for s in selection.volume_outlines
    ]
    messages.extend({"role": "system", "content": _render_item(item)} for item in selection.items)
    return messages
