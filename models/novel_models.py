# models/novel_models.py
"""Pydantic models for the novel document edited by the automation core."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

ChapterSubtype = Literal["story", "small_summary", "big_summary"]
MessageRole = Literal["system", "user", "assistant"]

# Regex script placement flags
PLACEMENT_USER_INPUT = 1
PLACEMENT_AI_OUTPUT = 2


class NovelBaseModel(BaseModel):
    """Base model reading and writing the camelCase JSON of novel documents."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class ChapterVersion(NovelBaseModel):
    id: str
    content: str
    timestamp: int
    type: Literal["original", "optimized", "user_edit"]


class Chapter(NovelBaseModel):
    """A story chapter or a summary chapter (see ``subtype``)."""

    id: int
    title: str
    content: str = ""
    volume_id: str | None = None
    subtype: ChapterSubtype | None = None
    # "start-end" story chapter numbers covered by a summary chapter
    summary_range: str | None = None
    versions: list[ChapterVersion] = Field(default_factory=list)
    active_version_id: str | None = None


class NovelVolume(NovelBaseModel):
    id: str
    title: str
    collapsed: bool = False


class OutlineItem(NovelBaseModel):
    title: str
    summary: str = ""


class OutlineSet(NovelBaseModel):
    id: str
    name: str
    items: list[OutlineItem] = Field(default_factory=list)
    user_notes: str | None = None


class CharacterItem(NovelBaseModel):
    name: str
    bio: str = ""


class CharacterSet(NovelBaseModel):
    id: str
    name: str
    characters: list[CharacterItem] = Field(default_factory=list)
    user_notes: str | None = None


class WorldviewItem(NovelBaseModel):
    item: str
    setting: str = ""


class WorldviewSet(NovelBaseModel):
    id: str
    name: str
    entries: list[WorldviewItem] = Field(default_factory=list)
    user_notes: str | None = None


class InspirationItem(NovelBaseModel):
    title: str
    content: str = ""


class InspirationSet(NovelBaseModel):
    id: str
    name: str
    items: list[InspirationItem] = Field(default_factory=list)
    user_notes: str | None = None


class Novel(NovelBaseModel):
    """The novel aggregate: chapters, volumes and the user-managed sets."""

    id: str
    title: str
    chapters: list[Chapter] = Field(default_factory=list)
    volumes: list[NovelVolume] = Field(default_factory=list)
    system_prompt: str = ""
    created_at: int = 0
    outline_sets: list[OutlineSet] = Field(default_factory=list)
    character_sets: list[CharacterSet] = Field(default_factory=list)
    worldview_sets: list[WorldviewSet] = Field(default_factory=list)
    inspiration_sets: list[InspirationSet] = Field(default_factory=list)

    def find_chapter(self, chapter_id: int) -> Chapter | None:
        return next((c for c in self.chapters if c.id == chapter_id), None)

    def find_chapter_by_title(self, title: str) -> Chapter | None:
        return next((c for c in self.chapters if c.title == title), None)


class PromptItem(NovelBaseModel):
    """An extra prompt message injected into generation requests."""

    id: int
    name: str = ""
    content: str = ""
    role: MessageRole = "system"
    active: bool = True
    # Fixed prompts are placeholders rendered elsewhere and never sent verbatim
    is_fixed: bool = False


class RegexScript(NovelBaseModel):
    """Declarative find/replace rule applied to prompt input or model output."""

    id: str
    script_name: str = ""
    find_regex: str
    replace_string: str = ""
    trim_strings: list[str] = Field(default_factory=list)
    placement: list[int] = Field(default_factory=list)
    disabled: bool = False

