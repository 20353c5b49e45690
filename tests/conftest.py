# tests/conftest.py
import os
import sys

import pytest

# Ensure repository root is on PYTHONPATH for tests
repo_root = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
if repo_root not in sys.path:
    sys.path.insert(0, repo_root)

# Ensure placeholder secrets and file logging do not leak into test runs
os.environ.setdefault("OPENAI_API_KEY", "test-key")
os.environ.setdefault("LOG_FILE", "")

from models import (  # noqa: E402
    Chapter,
    CharacterItem,
    CharacterSet,
    Novel,
    OutlineItem,
    OutlineSet,
    WorldviewItem,
    WorldviewSet,
)


@pytest.fixture
def sample_novel() -> Novel:
    return Novel(
        id="n1",
        title="The Long Road",
        chapters=[
            Chapter(id=1, title="Ch1", content="Text one."),
            Chapter(id=2, title="Ch2", content="Text two."),
        ],
        outline_sets=[
            OutlineSet(
                id="os1",
                name="Main",
                items=[
                    OutlineItem(title="Ch1", summary="Start"),
                    OutlineItem(title="Ch2", summary="Middle"),
                    OutlineItem(title="Ch3", summary="Turn"),
                    OutlineItem(title="Ch4", summary="End"),
                ],
            )
        ],
        worldview_sets=[
            WorldviewSet(
                id="os1",
                name="Main",
                entries=[WorldviewItem(item="Magic", setting="Rare and costly")],
            ),
            WorldviewSet(
                id="w2",
                name="Other",
                entries=[WorldviewItem(item="Sea", setting="Endless")],
            ),
        ],
        character_sets=[
            CharacterSet(
                id="c1",
                name="Cast",
                characters=[CharacterItem(name="Ava", bio="A courier")],
            ),
            CharacterSet(
                id="os1",
                name="Main",
                characters=[CharacterItem(name="Bren", bio="A smuggler")],
            ),
        ],
    )
