# processing/regex_scripts.py
"""Interpreter for user-defined regex scripts applied to prompt input and model output.

Scripts use JavaScript-style patterns (``/pattern/flags`` or a bare pattern,
which is applied globally) and ``$1`` / ``$&`` / ``$<name>`` replacements.
"""

from __future__ import annotations

import asyncio
import re
import time
from collections.abc import Sequence
from typing import Literal

import structlog
from config import settings

from models import PLACEMENT_AI_OUTPUT, PLACEMENT_USER_INPUT, RegexScript

logger = structlog.get_logger(__name__)

_JS_LITERAL_RE = re.compile(r"^/(.*?)/([a-z]*)$", re.DOTALL)
_JS_NAMED_GROUP_RE = re.compile(r"\(\?<(?=[A-Za-z_])")
_REPLACEMENT_TOKEN_RE = re.compile(r"\$(\$|&|`|'|\d{1,2}|<[^>]*>)")

_FLAG_MAP = {
    "i": re.IGNORECASE,
    "m": re.MULTILINE,
    "s": re.DOTALL,
}


def compile_script_pattern(find_regex: str) -> tuple[re.Pattern[str], bool]:
    """Return the compiled pattern and whether it replaces every match."""
    literal = _JS_LITERAL_RE.match(find_regex)
    if literal:
        source, flag_str = literal.group(1), literal.group(2)
        is_global = "g" in flag_str
    else:
        source, flag_str = find_regex, ""
        is_global = True

    flags = 0
    for flag in flag_str:
        flags |= _FLAG_MAP.get(flag, 0)
    source = _JS_NAMED_GROUP_RE.sub("(?P<", source)
    return re.compile(source, flags), is_global


def expand_replacement(match: re.Match[str], template: str) -> str:
    """Expand a JavaScript replacement template for one match."""
    group_count = match.re.groups

    def _token(token: re.Match[str]) -> str:
        value = token.group(1)
        if value == "$":
            return "$"
        if value == "&":
            return match.group(0)
        if value == "`":
            return match.string[: match.start()]
        if value == "'":
            return match.string[match.end() :]
        if value.startswith("<"):
            name = value[1:-1]
            if name in match.re.groupindex:
                return match.group(name) or ""
            return token.group(0)

        number = int(value)
        if len(value) == 2 and number > group_count:
            number, suffix = int(value[0]), value[1]
        else:
            suffix = ""
        if 1 <= number <= group_count:
            return (match.group(number) or "") + suffix
        return token.group(0)

    return _REPLACEMENT_TOKEN_RE.sub(_token, template)


async def apply_regex_to_text(
    text: str, scripts: Sequence[RegexScript], label: str = "unknown"
) -> str:
    """Apply ``scripts`` in order, yielding to the event loop during long runs.

    A failing script is logged and skipped; the remaining scripts still run.
    """
    if not scripts:
        return text

    processed = text
    start_time = time.perf_counter()
    last_yield = start_time
    yield_interval = settings.REGEX_YIELD_INTERVAL_MS / 1000

    for script in scripts:
        now = time.perf_counter()
        if now - last_yield > yield_interval:
            await asyncio.sleep(0)
            last_yield = time.perf_counter()

        script_start = time.perf_counter()
        try:
            for trim_str in script.trim_strings:
                if trim_str:
                    processed = processed.replace(trim_str, "")

            pattern, is_global = compile_script_pattern(script.find_regex)
            processed = pattern.sub(
                lambda m, tpl=script.replace_string: expand_replacement(m, tpl),
                processed,
                count=0 if is_global else 1,
            )
        except Exception as e:
            logger.error(
                f"Regex script '{script.script_name or script.id}' failed: {e}",
                label=label,
            )
            continue

        script_ms = (time.perf_counter() - script_start) * 1000
        if script_ms > settings.REGEX_SLOW_SCRIPT_MS:
            logger.warning(
                f"Regex script '{script.script_name or script.id}' was slow: {script_ms:.0f}ms",
                label=label,
                text_length=len(text),
                pattern=script.find_regex,
            )

    total_ms = (time.perf_counter() - start_time) * 1000
    logger.debug(
        f"apply_regex_to_text [{label}]: {len(scripts)} scripts in {total_ms:.0f}ms",
        text_length=len(text),
    )
    return processed


async def process_text_with_regex(
    text: str,
    scripts: Sequence[RegexScript],
    placement: Literal["input", "output"],
) -> str:
    """Apply the enabled scripts whose placement matches ``placement``."""
    if not text:
        return text
    flag = PLACEMENT_USER_INPUT if placement == "input" else PLACEMENT_AI_OUTPUT
    relevant = [s for s in scripts if not s.disabled and flag in s.placement]
    return await apply_regex_to_text(text, relevant, placement)
