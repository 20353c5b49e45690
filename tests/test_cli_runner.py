# tests/test_cli_runner.py
import json

import pytest

from models import Chapter, Novel
from orchestration import cli_runner


class FakeClient:
    request_count = 0

    async def aclose(self):
        pass


class FakeEngine:
    def __init__(self, config, novel, client):
        self.novel = novel

    async def run(self, outline, start_index, prompts, get_scripts, on_status, on_novel, on_complete, **kwargs):
        chapter = self.novel.chapters[-1]
        result = await on_complete(chapter.id, "written", self.novel)
        if isinstance(result, Novel):
            self.novel = result
        on_status("All chapters written.")

    def stop(self):
        pass


class FakeSummaries:
    calls: list[tuple[int, str]] = []

    def __init__(self, client):
        pass

    async def check_and_generate(self, novel, chapter_id, content):
        FakeSummaries.calls.append((chapter_id, content))
        updated = novel.model_copy(deep=True)
        updated.chapters.append(
            Chapter(id=99, title="小总结 (1-2)", subtype="small_summary", summary_range="1-2")
        )
        return updated


@pytest.fixture
def cli_env(monkeypatch, tmp_path, sample_novel):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(cli_runner.settings, "ENABLE_RICH_PROGRESS", False)
    monkeypatch.setattr(cli_runner, "CompletionClient", FakeClient)
    monkeypatch.setattr(cli_runner, "AutoWriteEngine", FakeEngine)
    monkeypatch.setattr(cli_runner, "SummaryManager", FakeSummaries)
    FakeSummaries.calls = []
    path = tmp_path / "novel.json"
    path.write_text(json.dumps(sample_novel.to_json_dict()), encoding="utf-8")
    return path


def _saved(path) -> Novel:
    return Novel.model_validate_json(path.read_text(encoding="utf-8"))


@pytest.mark.asyncio
async def test_write_saves_generated_summaries_in_long_text_mode(monkeypatch, cli_env):
    monkeypatch.setattr(cli_runner.settings, "LONG_TEXT_MODE", True)
    code = await cli_runner.run_write(str(cli_env), "os1", 0, None, False)
    assert code == 0
    assert FakeSummaries.calls == [(2, "written")]
    assert [c.id for c in _saved(cli_env).chapters] == [1, 2, 99]


@pytest.mark.asyncio
async def test_write_skips_summaries_outside_long_text_mode(monkeypatch, cli_env):
    monkeypatch.setattr(cli_runner.settings, "LONG_TEXT_MODE", False)
    code = await cli_runner.run_write(str(cli_env), "os1", 0, None, False)
    assert code == 0
    assert FakeSummaries.calls == []
    assert [c.id for c in _saved(cli_env).chapters] == [1, 2]


@pytest.mark.asyncio
async def test_write_fails_for_unknown_outline_set(cli_env):
    assert await cli_runner.run_write(str(cli_env), "missing", 0, None, False) == 1
