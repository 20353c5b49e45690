"""Central package for the automation core data models."""

from .agent_models import (
    ACTION_PAYLOAD_MODELS,
    Action,
    ActionPayload,
    AgentCoreState,
    AgentModelConfig,
    AgentPromptConfig,
    AgentStatus,
    AwaitUserInputPayload,
    CreateProjectFoldersPayload,
    ChapterContextConfig,
    EmptyPayload,
    FillAndGeneratePayload,
    NavigatePayload,
    SelectReferencePayload,
    StartAutoWritePayload,
    Manifest,
    Task,
    TaskStatus,
    TaskType,
)
from .novel_models import (
    PLACEMENT_AI_OUTPUT,
    PLACEMENT_USER_INPUT,
    Chapter,
    ChapterVersion,
    CharacterItem,
    CharacterSet,
    InspirationItem,
    InspirationSet,
    Novel,
    NovelVolume,
    OutlineItem,
    OutlineSet,
    PromptItem,
    RegexScript,
    WorldviewItem,
    WorldviewSet,
)

__all__ = [
    "ACTION_PAYLOAD_MODELS",
    "Action",
    "ActionPayload",
    "AgentCoreState",
    "AgentModelConfig",
    "AgentPromptConfig",
    "AgentStatus",
    "ChapterContextConfig",
    "AwaitUserInputPayload",
    "CreateProjectFoldersPayload",
    "EmptyPayload",
    "FillAndGeneratePayload",
    "NavigatePayload",
    "SelectReferencePayload",
    "StartAutoWritePayload",
    "Manifest",
    "Task",
    "TaskStatus",
    "TaskType",
    "PLACEMENT_AI_OUTPUT",
    "PLACEMENT_USER_INPUT",
    "Chapter",
    "ChapterVersion",
    "CharacterItem",
    "CharacterSet",
    "InspirationItem",
    "InspirationSet",
    "Novel",
    "NovelVolume",
    "OutlineItem",
    "OutlineSet",
    "PromptItem",
    "RegexScript",
    "WorldviewItem",
    "WorldviewSet",
]
