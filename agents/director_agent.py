# agents/director_agent.py
"""Director agent: plans the whole creative pipeline as a single manifest."""

import json
import re

import structlog
from prompt_renderer import render_prompt
from pydantic import ValidationError

from models import Manifest, Novel, TaskType
from processing.context_assembler import get_story_chapters

logger = structlog.get_logger(__name__)

DEFAULT_INSTRUCTION = "Plan a complete story-writing pipeline."
DEFAULT_CHAPTER_TOTAL = 13
CHAPTERS_PER_BATCH = 4

# Tools the director may embed in task descriptions. Executed by the UI layer.
DIRECTOR_TOOLS: list[dict[str, str]] = [
    {
        "name": "CREATE_PROJECT_FOLDERS",
        "example": '{"name": "Project name"}',
        "help": "create linked folders with this name in every module at once.",
    },
    {
        "name": "NAVIGATE",
        "example": '{"target": "module", "setName": "folder name"}',
        "help": "switch the UI module and selected folder. target is one of "
        "'inspiration', 'worldview', 'plotOutline', 'characters', 'outline', 'reference'.",
    },
    {
        "name": "SELECT_REFERENCE",
        "example": '{"type": "worldview", "setName": "folder name", "indices": []}',
        "help": "attach a worldview, character, inspiration or outline set as reference material.",
    },
    {
        "name": "AWAIT_USER_INPUT",
        "example": '{"message": "question for the user"}',
        "help": "pause the pipeline and ask the user for input.",
    },
    {
        "name": "FILL_AND_GENERATE",
        "example": '{"content": "input text"}',
        "help": "fill the current module's input box and trigger generation.",
    },
    {
        "name": "START_AUTO_WRITE",
        "example": '{"includeFullOutline": true}',
        "help": "start the automatic chapter-writing pipeline from the outline.",
    },
    {
        "name": "GET_MANIFEST",
        "example": "{}",
        "help": "query the full current manifest.",
    },
    {
        "name": "GET_CURRENT_TASK",
        "example": "{}",
        "help": "query the current task status.",
    },
]

_CODE_FENCE_RE = re.compile(r"```(?:json)?")


class DirectorAgent:
    """Builds the planning request and parses the manifest it returns."""

    def build_tool_instructions(self) -> str:
        """Tool instructions are fixed program logic, never user-edited."""
        return render_prompt(
            "director_agent/tool_instructions.j2", {"tools": DIRECTOR_TOOLS}
        )

    def build_system_prompt(self) -> str:
        return render_prompt(
            "director_agent/system.j2",
            {
                "batch_size": CHAPTERS_PER_BATCH,
                "task_types": [t.value for t in TaskType],
                "tool_instructions": self.build_tool_instructions(),
            },
        )

    def build_user_prompt(self, novel: Novel, user_instruction: str | None = None) -> str:
        chapter_count = len(get_story_chapters(novel.chapters)) if novel else 0
        return render_prompt(
            "director_agent/user.j2",
            {
                "user_instruction": user_instruction or DEFAULT_INSTRUCTION,
                "chapter_count": chapter_count,
                "default_chapter_total": DEFAULT_CHAPTER_TOTAL,
                "batch_size": CHAPTERS_PER_BATCH,
            },
        )

    def parse_manifest(self, content: str) -> Manifest | None:
        """Extract a manifest from noisy model output; ``None`` on any failure."""
        if not isinstance(content, str):
            logger.error(f"parse_manifest received non-string input: {type(content)}")
            return None

        json_text = content.strip()
        first_brace = json_text.find("{")
        last_brace = json_text.rfind("}")
        if first_brace != -1 and last_brace != -1:
            json_text = json_text[first_brace : last_brace + 1]
        json_text = _CODE_FENCE_RE.sub("", json_text).strip()

        try:
            parsed_data = json.loads(json_text)
            return Manifest.model_validate(parsed_data)
        except (json.JSONDecodeError, ValidationError) as e:
            logger.error(
                f"Failed to parse manifest JSON: {e}. Response preview: {content[:200]}"
            )
            return None
