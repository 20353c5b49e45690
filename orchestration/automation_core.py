# orchestration/automation_core.py
"""State machine that plans a manifest and walks its tasks one at a time.

The core decides *when* a task runs and what comes next; the injected task
trigger decides *how* a task is performed. Transitions:

    IDLE --start_planning--> PLANNING --ok--> AWAITING_USER
    PLANNING --failure--> ERROR
    AWAITING_USER --start_execution--> EXECUTING
    EXECUTING --task done--> EXECUTING (next task) | COMPLETED
    PAUSED --last task done--> COMPLETED
    EXECUTING --task raised--> ERROR
    PAUSED/ERROR --resume--> EXECUTING (current task re-invoked)
    any --pause--> PAUSED, any --stop/reset_to_idle/full_reset--> IDLE
"""

from __future__ import annotations

import asyncio
import dataclasses
import inspect
from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime
from typing import Any

import structlog
from agents.director_agent import DirectorAgent
from config import settings
from parsing import parse_actions

from models import (
    Action,
    AgentCoreState,
    AgentModelConfig,
    AgentPromptConfig,
    AgentStatus,
    Manifest,
    Novel,
    Task,
    TaskType,
)

logger = structlog.get_logger(__name__)

FULL_RESET_MARKER = "[System] Pipeline fully reset."

CallLLM = Callable[[str, str, str | None], Awaitable[str]]
OnComplete = Callable[[], None]
TaskTrigger = Callable[[TaskType, Task, OnComplete], Awaitable[None] | None]
ActionHandler = Callable[[Sequence[Action]], None]
StateListener = Callable[[AgentCoreState], None]


class AutomationCore:
    """Owns one manifest run. Create one instance per novel being automated."""

    def __init__(self, on_state_change: StateListener | None = None):
        self._on_state_change = on_state_change
        self._state = AgentCoreState()
        self._stop_flag = False
        # Bumped whenever a new execution loop starts so stale loops exit.
        self._epoch = 0
        self._pending: asyncio.Future[bool] | None = None
        self._director = DirectorAgent()
        self._novel: Novel | None = None
        self._call_llm: CallLLM | None = None
        self._on_action: ActionHandler | None = None
        self._on_task_trigger: TaskTrigger | None = None
        self._model_config = AgentModelConfig()
        self._prompt_config = AgentPromptConfig()

    # -- state plumbing ----------------------------------------------------

    def get_state(self) -> AgentCoreState:
        return self._state

    def _notify(self) -> None:
        if self._on_state_change is not None:
            self._on_state_change(self._state)

    def _append_log(self, message: str) -> tuple[str, ...]:
        entry = f"[{datetime.now().strftime('%H:%M:%S')}] {message}"
        return ((entry,) + self._state.logs)[: settings.AGENT_LOG_LIMIT]

    def _update(self, message: str, **changes: Any) -> None:
        """Apply ``changes``, append ``message`` to the log and notify once."""
        self._state = dataclasses.replace(self._state, **changes)
        self._state = dataclasses.replace(self._state, logs=self._append_log(message))
        logger.debug(
            f"AutomationCore: {message}",
            status=self._state.status.value,
            task_index=self._state.current_task_index,
        )
        self._notify()

    def _release_pending(self) -> None:
        if self._pending is not None and not self._pending.done():
            self._pending.set_result(False)
        self._pending = None

    # -- public API --------------------------------------------------------

    def init(
        self,
        novel: Novel,
        call_llm: CallLLM,
        on_action: ActionHandler | None = None,
        on_task_trigger: TaskTrigger | None = None,
        model_config: AgentModelConfig | None = None,
        prompt_config: AgentPromptConfig | None = None,
    ) -> None:
        """Register runtime collaborators and publish the current state."""
        self._novel = novel
        self._call_llm = call_llm
        self._on_action = on_action
        self._on_task_trigger = on_task_trigger
        self._model_config = model_config or AgentModelConfig()
        self._prompt_config = prompt_config or AgentPromptConfig()
        self._notify()

    async def start_planning(
        self,
        novel: Novel | None = None,
        call_llm: CallLLM | None = None,
        user_instruction: str | None = None,
        model_config: AgentModelConfig | None = None,
        prompt_config: AgentPromptConfig | None = None,
    ) -> None:
        """Ask the director for a manifest. Failures land in ``ERROR``."""
        if novel is not None:
            self._novel = novel
        if call_llm is not None:
            self._call_llm = call_llm
        if model_config is not None:
            self._model_config = model_config
        if prompt_config is not None:
            self._prompt_config = prompt_config

        self._stop_flag = False
        self._epoch += 1
        epoch = self._epoch
        self._release_pending()
        self._update("Director started planning the task manifest.", status=AgentStatus.PLANNING)

        try:
            if self._call_llm is None:
                raise RuntimeError("No LLM callable configured for planning")
            system_prompt = (
                self._prompt_config.director_prompt or self._director.build_system_prompt()
            )
            user_prompt = self._director.build_user_prompt(self._novel, user_instruction)
            response = await self._call_llm(
                system_prompt, user_prompt, self._model_config.director_model
            )
            if self._stop_flag or epoch != self._epoch:
                return
            manifest = self._director.parse_manifest(response)
            if manifest is None:
                raise ValueError("Failed to parse manifest JSON")
        except Exception as e:
            if self._stop_flag or epoch != self._epoch:
                return
            logger.error(f"AutomationCore: planning failed: {e}", exc_info=True)
            self._update(f"Planning failed: {e}", status=AgentStatus.ERROR)
            return

        self._update(
            f"Planning complete with {len(manifest.tasks)} tasks; awaiting confirmation.",
            status=AgentStatus.AWAITING_USER,
            manifest=manifest,
            current_task_index=0,
        )

    def update_manifest(self, manifest: Manifest) -> bool:
        """Replace the manifest wholesale while it is awaiting confirmation."""
        if self._state.status != AgentStatus.AWAITING_USER:
            logger.warning(
                "AutomationCore: manifest can only be edited while awaiting the user.",
                status=self._state.status.value,
            )
            return False
        self._update(
            f"Manifest updated ({len(manifest.tasks)} tasks).",
            manifest=manifest,
            current_task_index=min(
                max(self._state.current_task_index, 0), len(manifest.tasks)
            ),
        )
        return True

    async def start_execution(self) -> None:
        """Run the confirmed manifest until it completes, fails, pauses or stops."""
        if self._state.status != AgentStatus.AWAITING_USER or self._state.manifest is None:
            logger.warning(
                "AutomationCore: start_execution ignored.", status=self._state.status.value
            )
            return
        self._stop_flag = False
        self._epoch += 1
        epoch = self._epoch
        self._update("Automated execution started.", status=AgentStatus.EXECUTING)
        await self._execute_tasks(epoch)

    def pause(self) -> None:
        """Hold the pipeline; a task finishing while paused is recorded but nothing new starts."""
        self._update("Paused.", status=AgentStatus.PAUSED)

    async def resume(self) -> None:
        """Re-invoke the current task after a pause or an error."""
        if self._state.status not in (AgentStatus.PAUSED, AgentStatus.ERROR):
            logger.warning("AutomationCore: resume ignored.", status=self._state.status.value)
            return
        self._stop_flag = False
        self._epoch += 1
        epoch = self._epoch
        self._release_pending()
        self._update("Resuming execution.", status=AgentStatus.EXECUTING, retry_count=0)
        await self._execute_tasks(epoch)

    def stop(self) -> None:
        self._stop_flag = True
        self._release_pending()
        self._update("Stopped.", status=AgentStatus.IDLE)

    def reset_to_idle(self) -> None:
        """Return to IDLE keeping the manifest so it can be reviewed again."""
        self._stop_flag = True
        self._release_pending()
        self._update("State reset.", status=AgentStatus.IDLE, retry_count=0)

    def full_reset(self) -> None:
        """Discard the manifest and all logs."""
        self._stop_flag = True
        self._release_pending()
        self._state = AgentCoreState(logs=(FULL_RESET_MARKER,))
        self._notify()

    # -- execution loop ----------------------------------------------------

    def _is_current(self, epoch: int) -> bool:
        return not self._stop_flag and epoch == self._epoch

    async def _execute_tasks(self, epoch: int) -> None:
        loop = asyncio.get_running_loop()
        while self._is_current(epoch):
            if self._state.status != AgentStatus.EXECUTING:
                return
            manifest = self._state.manifest
            if manifest is None:
                return

            index = self._state.current_task_index
            if index >= len(manifest.tasks):
                self._update(
                    "All automated tasks completed.",
                    status=AgentStatus.COMPLETED,
                    current_task_index=len(manifest.tasks),
                )
                return

            task = manifest.tasks[index]
            self._update(f"Executing task: {task.title} ({task.type.value})")

            if self._on_task_trigger is None:
                # Without a trigger there is nothing to wait for.
                self._update(f"No task trigger; skipped {task.title}.", current_task_index=index + 1)
                continue

            if self._on_action is not None and task.description:
                actions = parse_actions(task.description)
                if actions:
                    self._on_action(actions)

            done: asyncio.Future[bool] = loop.create_future()
            self._pending = done

            def on_complete(fut: asyncio.Future[bool] = done) -> None:
                if not fut.done():
                    fut.set_result(True)

            try:
                result = self._on_task_trigger(task.type, task, on_complete)
                if inspect.isawaitable(result):
                    await result
                completed = await done
            except Exception as e:
                if not self._is_current(epoch):
                    return
                logger.error(
                    f"AutomationCore: task '{task.title}' failed: {e}", exc_info=True
                )
                self._update(f"Task execution failed: {e}", status=AgentStatus.ERROR)
                return
            finally:
                if self._pending is done:
                    self._pending = None

            if not completed or not self._is_current(epoch):
                return
            if index + 1 >= len(manifest.tasks):
                # The last task finishing completes the run, even while paused.
                self._update(
                    f"Task completed: {task.title}. All automated tasks completed.",
                    status=AgentStatus.COMPLETED,
                    current_task_index=len(manifest.tasks),
                )
                return
            self._update(f"Task completed: {task.title}", current_task_index=index + 1)
