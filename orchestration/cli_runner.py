# orchestration/cli_runner.py
"""Command-line runner for planning and batch writing."""

from __future__ import annotations

import asyncio
import json

import structlog
from config import settings
from core.llm_interface import CompletionClient
from pydantic import TypeAdapter
from storage.file_manager import FileManager
from ui.rich_display import RichDisplayManager
from utils.logging import setup_logging

from models import AgentModelConfig, AgentStatus, Novel, PromptItem, RegexScript
from orchestration.auto_write_engine import AutoWriteEngine
from orchestration.automation_core import AutomationCore
from orchestration.models import AutoWriteConfig
from processing.summary_manager import SummaryManager, recalibrate_summaries

logger = structlog.get_logger(__name__)

_scripts_adapter = TypeAdapter(list[RegexScript])
_prompts_adapter = TypeAdapter(list[PromptItem])


def _load_list(adapter: TypeAdapter, path: str | None) -> list:
    if not path:
        return []
    with open(path, encoding="utf-8") as f:
        return adapter.validate_python(json.load(f))


async def run_plan(novel_path: str, instruction: str | None, output: str | None) -> int:
    """Plan a manifest for ``novel_path`` and write it as JSON."""
    files = FileManager()
    novel = await files.load_novel(novel_path)
    client = CompletionClient()
    display = RichDisplayManager()
    display.update(novel_title=novel.title)
    core = AutomationCore(on_state_change=display.show_agent_state)
    display.start()
    try:
        await core.start_planning(
            novel,
            client.call_llm,
            instruction,
            AgentModelConfig(director_model=settings.DIRECTOR_MODEL),
        )
    finally:
        await display.stop()
        await client.aclose()

    state = core.get_state()
    if state.status != AgentStatus.AWAITING_USER or state.manifest is None:
        logger.error("Planning did not produce a manifest.", status=state.status.value)
        for line in reversed(state.logs):
            logger.info(line)
        return 1

    path = await files.save_manifest(state.manifest, output)
    logger.info(f"Manifest with {len(state.manifest.tasks)} tasks written to {path}")
    return 0


async def run_write(
    novel_path: str,
    outline_set_id: str | None,
    start_index: int,
    volume_id: str | None,
    include_full_outline: bool,
    regex_scripts_path: str | None = None,
    prompts_path: str | None = None,
) -> int:
    """Write the chapters of an outline set, saving after every chapter."""
    files = FileManager()
    novel = await files.load_novel(novel_path)
    outline_set = next(
        (s for s in novel.outline_sets if outline_set_id in (None, s.id)), None
    )
    if outline_set is None:
        logger.error("No matching outline set in novel.", outline_set_id=outline_set_id)
        return 1

    if settings.LONG_TEXT_MODE:
        novel.chapters = recalibrate_summaries(novel.chapters)
    scripts = _load_list(_scripts_adapter, regex_scripts_path)
    prompts = _load_list(_prompts_adapter, prompts_path)
    client = CompletionClient()
    display = RichDisplayManager()
    display.update(novel_title=novel.title)
    engine = AutoWriteEngine(AutoWriteConfig.from_settings(), novel, client)
    statuses: list[str] = []

    def on_status(status: str) -> None:
        statuses.append(status)
        logger.info(f"AutoWrite: {status}")
        display.update(step=status, request_count=client.request_count)

    summaries = SummaryManager(client) if settings.LONG_TEXT_MODE else None

    async def on_chapter_complete(
        chapter_id: int, content: str, current: Novel
    ) -> Novel | None:
        logger.info(f"Chapter {chapter_id} complete ({len(content)} chars).")
        display.chapter_done()
        updated = None
        if summaries is not None:
            updated = await summaries.check_and_generate(current, chapter_id, content)
        await files.save_novel(updated or current, novel_path)
        return updated

    display.start()
    try:
        await engine.run(
            outline_set.items,
            start_index,
            prompts,
            lambda: scripts,
            on_status,
            lambda _novel: None,
            on_chapter_complete,
            target_volume_id=volume_id,
            include_full_outline=include_full_outline,
            outline_set_id=outline_set.id,
        )
    finally:
        engine.stop()
        await display.stop()
        await client.aclose()
        await files.save_novel(engine.novel, novel_path)

    failed = bool(statuses) and statuses[-1].startswith("Generation failed")
    return 1 if failed else 0


def run(command: str, **kwargs: object) -> int:
    """Set up logging and run ``command`` to completion."""
    setup_logging()
    runner = run_plan if command == "plan" else run_write
    try:
        return asyncio.run(runner(**kwargs))
    except KeyboardInterrupt:
        logger.info("Automation shutting down gracefully due to KeyboardInterrupt...")
        return 130
    except Exception as main_err:  # pragma: no cover - entry point catch
        logger.critical(
            "Automation encountered an unhandled main exception: %s",
            main_err,
            exc_info=True,
        )
        return 1
