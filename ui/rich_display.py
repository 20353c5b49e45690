# ui/rich_display.py
"""Rich live panel showing planner and writer progress during CLI runs."""

from __future__ import annotations

import asyncio
import time

from config import settings
from rich.live import Live
from rich.panel import Panel
from rich.table import Table

from models import AgentCoreState

_REFRESH_SECONDS = 1.0


class RichDisplayManager:
    """Live status panel fed by ``AutomationCore`` and ``AutoWriteEngine`` callbacks.

    When ``ENABLE_RICH_PROGRESS`` is off every method is a cheap no-op apart
    from bookkeeping, so callers never need to check the setting.
    """

    def __init__(self, title: str = "Novel Automation") -> None:
        self.title = title
        self.fields: dict[str, str] = {
            "Novel": "N/A",
            "Agent": "IDLE",
            "Task": "N/A",
            "Step": "Starting...",
            "Chapters written": "0",
            "Requests/min": "0.00",
            "Elapsed": "00:00:00",
        }
        self.run_start_time = 0.0
        self.request_count = 0
        self.chapters_written = 0
        self.live: Live | None = None
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        if settings.ENABLE_RICH_PROGRESS:
            self.live = Live(self._render(), refresh_per_second=4, transient=False)

    def _render(self) -> Panel:
        table = Table.grid(padding=(0, 2))
        table.add_column(style="bold cyan", no_wrap=True)
        table.add_column()
        for label, value in self.fields.items():
            table.add_row(label, value)
        return Panel(table, title=self.title, border_style="blue", expand=True)

    def _refresh(self) -> None:
        if self.live and self.live.is_started:
            self.live.update(self._render())

    def start(self) -> None:
        self.run_start_time = time.time()
        if self.live:
            self.live.start()
            self._stop_event.clear()
            self._task = asyncio.create_task(self._auto_refresh())

    async def stop(self) -> None:
        self._stop_event.set()
        if self._task:
            await self._task
            self._task = None
        if self.live and self.live.is_started:
            self.live.stop()

    async def _auto_refresh(self) -> None:
        while not self._stop_event.is_set():
            self.update()
            await asyncio.sleep(_REFRESH_SECONDS)

    def show_agent_state(self, state: AgentCoreState) -> None:
        """``on_state_change`` subscriber for the automation core."""
        self.fields["Agent"] = state.status.value
        manifest = state.manifest
        if manifest is not None and 0 <= state.current_task_index < len(manifest.tasks):
            task = manifest.tasks[state.current_task_index]
            self.fields["Task"] = f"{task.title} ({task.type.value})"
        else:
            self.fields["Task"] = "N/A"
        self.update(step=state.logs[0] if state.logs else None)

    def chapter_done(self) -> None:
        self.chapters_written += 1
        self.update()

    def update(
        self,
        novel_title: str | None = None,
        step: str | None = None,
        request_count: int | None = None,
    ) -> None:
        if novel_title is not None:
            self.fields["Novel"] = novel_title
        if step is not None:
            self.fields["Step"] = step
        if request_count is not None:
            self.request_count = request_count

        elapsed = time.time() - self.run_start_time if self.run_start_time else 0.0
        per_minute = self.request_count / (elapsed / 60) if elapsed > 0 else 0.0
        self.fields["Chapters written"] = str(self.chapters_written)
        self.fields["Requests/min"] = f"{per_minute:.2f}"
        self.fields["Elapsed"] = time.strftime("%H:%M:%S", time.gmtime(elapsed))
        self._refresh()
