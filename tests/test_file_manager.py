# tests/test_file_manager.py
import json

import pytest
from storage.file_manager import FileManager

from models import Manifest, Novel, Task, TaskType


@pytest.mark.asyncio
async def test_novel_round_trip_uses_camel_case(tmp_path, sample_novel):
    files = FileManager(str(tmp_path))
    await files.save_novel(sample_novel, "novel.json")

    raw = json.loads((tmp_path / "novel.json").read_text(encoding="utf-8"))
    assert "outlineSets" in raw
    assert not (tmp_path / "novel.json.tmp").exists()

    loaded = await files.load_novel("novel.json")
    assert isinstance(loaded, Novel)
    assert loaded.outline_sets[0].items[2].title == "Ch3"


@pytest.mark.asyncio
async def test_save_manifest_default_path(tmp_path):
    files = FileManager(str(tmp_path))
    manifest = Manifest(
        tasks=[Task(id="t1", type=TaskType.OUTLINE, title="Outline")],
        current_task_index=0,
    )
    path = await files.save_manifest(manifest)
    data = json.loads(open(path, encoding="utf-8").read())
    assert data["currentTaskIndex"] == 0
    assert data["tasks"][0]["type"] == "outline"


def test_resolve_keeps_absolute_paths(tmp_path):
    files = FileManager(str(tmp_path))
    absolute = str(tmp_path / "x.json")
    assert files.resolve(absolute) == absolute
    assert files.resolve("missing.json") == str(tmp_path / "missing.json")
