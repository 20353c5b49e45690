# parsing/action_parser.py
"""Extraction of ``[ACTION:TYPE]{...}[/ACTION]`` instructions from model text.

The closing tag is optional. An unclosed payload runs until the next
``[ACTION:`` opening tag or the end of the text; its JSON value is decoded
from the front of that run and anything after the value is kept as prose.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any

import structlog
from pydantic import ValidationError

from models import ACTION_PAYLOAD_MODELS, Action, ActionPayload

logger = structlog.get_logger(__name__)

ACTION_REGEX = re.compile(
    r"\[ACTION:(?P<type>\w+)\](?P<payload>.*?)(?:(?P<close>\[/ACTION\])|(?=\[ACTION:)|\Z)",
    re.DOTALL,
)
OPEN_TAG_REGEX = re.compile(r"\[ACTION:\w+\]")
USER_INPUT_MACRO = "{{userinput}}"

_decoder = json.JSONDecoder()


@dataclass(frozen=True)
class _TagRun:
    type: str
    payload: Any
    parsed: bool
    start: int
    end: int


def _scan(text: str) -> list[_TagRun]:
    runs: list[_TagRun] = []
    for match in ACTION_REGEX.finditer(text):
        action_type = match.group("type")
        raw = match.group("payload")

        if match.group("close") is not None:
            try:
                payload = json.loads(raw.strip())
            except json.JSONDecodeError as e:
                logger.error(
                    f"Could not decode payload JSON for action '{action_type}': {e}. Payload: {raw.strip()[:200]}"
                )
                runs.append(_TagRun(action_type, None, False, match.start(), match.end()))
                continue
            runs.append(_TagRun(action_type, payload, True, match.start(), match.end()))
            continue

        stripped = raw.lstrip()
        offset = match.start("payload") + (len(raw) - len(stripped))
        try:
            payload, consumed = _decoder.raw_decode(stripped)
        except json.JSONDecodeError as e:
            logger.error(
                f"Could not decode payload JSON for unclosed action '{action_type}': {e}. Payload: {stripped[:200]}"
            )
            runs.append(_TagRun(action_type, None, False, match.start(), match.end()))
            continue
        runs.append(_TagRun(action_type, payload, True, match.start(), offset + consumed))
    return runs


def parse_actions(text: str) -> list[Action]:
    """Return every decodable action in ``text``, in order of appearance."""
    if not text:
        return []
    return [Action(type=run.type, payload=run.payload) for run in _scan(text) if run.parsed]


def clean_text(text: str) -> str:
    """Remove every action tag run from ``text`` and trim the result."""
    if not text:
        return ""
    pieces: list[str] = []
    cursor = 0
    for run in _scan(text):
        pieces.append(text[cursor : run.start])
        cursor = run.end
    pieces.append(text[cursor:])
    return "".join(pieces).strip()


def has_action(text: str, action_type: str | None = None) -> bool:
    """Check for any action opening tag, or for one specific tag literally."""
    if not text:
        return False
    if action_type is None:
        return OPEN_TAG_REGEX.search(text) is not None
    return f"[ACTION:{action_type}]" in text


def replace_macros(text: str, user_instruction: str | None = None) -> str:
    """Substitute every ``{{userinput}}`` placeholder with the instruction."""
    if not text:
        return text
    return text.replace(USER_INPUT_MACRO, user_instruction or "")


def validate_action(action: Action) -> ActionPayload | Any:
    """Validate an action payload against its typed schema.

    Known action types return the typed payload model and raise
    ``pydantic.ValidationError`` for malformed payloads. Unknown types are
    returned untouched.
    """
    model = ACTION_PAYLOAD_MODELS.get(action.type)
    if model is None:
        logger.debug("No payload schema for action type.", action_type=action.type)
        return action.payload
    try:
        return model.model_validate(action.payload or {})
    except ValidationError:
        logger.warning(
            "Action payload failed validation.",
            action_type=action.type,
            payload=action.payload,
        )
        raise
