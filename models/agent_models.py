# models/agent_models.py
"""Task, manifest and action structures shared by the director and the core."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class TaskType(str, Enum):
    INSPIRATION = "inspiration"
    WORLDVIEW = "worldview"
    CHARACTER = "character"
    PLOT_OUTLINE = "plot_outline"
    OUTLINE = "outline"
    CHAPTER = "chapter"


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class AgentStatus(str, Enum):
    """States of the automation core. See ``AutomationCore`` for transitions."""

    IDLE = "IDLE"
    PLANNING = "PLANNING"
    AWAITING_USER = "AWAITING_USER"
    EXECUTING = "EXECUTING"
    PAUSED = "PAUSED"
    ERROR = "ERROR"
    COMPLETED = "COMPLETED"


class AgentBaseModel(BaseModel):
    """Base model for agent structures; immutable once created."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )


class Task(AgentBaseModel):
    """One step of a manifest.

    ``description`` is free text that may embed action tags for the UI layer.
    """

    id: str
    type: TaskType
    title: str
    description: str = ""
    status: TaskStatus = TaskStatus.PENDING


class Manifest(AgentBaseModel):
    """The full ordered task list produced by one planning round-trip."""

    tasks: list[Task] = Field(default_factory=list)
    current_task_index: int = 0


@dataclass(frozen=True)
class AgentCoreState:
    """Snapshot of the automation core published to subscribers."""

    status: AgentStatus = AgentStatus.IDLE
    manifest: Manifest | None = None
    current_task_index: int = -1
    # Reset on resume; no other behavior is attached to it.
    retry_count: int = 0
    logs: tuple[str, ...] = ()


@dataclass(frozen=True)
class AgentModelConfig:
    director_model: str | None = None


@dataclass(frozen=True)
class AgentPromptConfig:
    director_prompt: str | None = None


class Action(BaseModel):
    """An instruction parsed from model output; dispatched once, never stored."""

    type: str
    payload: Any = Field(default_factory=dict)


# --- Typed action payloads (validated at the UI dispatch boundary) ---


class ActionPayload(AgentBaseModel):
    pass


class CreateProjectFoldersPayload(ActionPayload):
    name: str


class SelectReferencePayload(ActionPayload):
    type: Literal["worldview", "character", "inspiration", "outline"]
    set_name: str
    indices: list[int] = Field(default_factory=list)


class NavigatePayload(ActionPayload):
    target: Literal[
        "inspiration",
        "worldview",
        "plotOutline",
        "characters",
        "outline",
        "reference",
    ]
    set_name: str | None = None


class StartAutoWritePayload(ActionPayload):
    include_full_outline: bool = True


class FillAndGeneratePayload(ActionPayload):
    content: str


class AwaitUserInputPayload(ActionPayload):
    message: str


class EmptyPayload(ActionPayload):
    pass


ACTION_PAYLOAD_MODELS: dict[str, type[ActionPayload]] = {
    "CREATE_PROJECT_FOLDERS": CreateProjectFoldersPayload,
    "SELECT_REFERENCE": SelectReferencePayload,
    "NAVIGATE": NavigatePayload,
    "START_AUTO_WRITE": StartAutoWritePayload,
    "FILL_AND_GENERATE": FillAndGeneratePayload,
    "AWAIT_USER_INPUT": AwaitUserInputPayload,
    "GET_CURRENT_TASK": EmptyPayload,
    "GET_MANIFEST": EmptyPayload,
}


@dataclass
class ChapterContextConfig:
    """Options controlling how much prior narrative is fed to a generation."""

    long_text_mode: bool = False
    context_scope: str = "all"
    context_chapter_count: int = 1
