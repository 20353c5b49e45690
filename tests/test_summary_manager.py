# tests/test_summary_manager.py
import pytest
from core.llm_interface import CompletionError

from models import Chapter, Novel
from processing import summary_manager
from processing.summary_manager import SummaryManager, recalibrate_summaries


class FakeClient:
    def __init__(self, responses=("summary text",)):
        self.responses = list(responses)
        self.calls: list[dict] = []

    async def complete(self, model, messages, **params):
        self.calls.append({"model": model, "messages": messages, **params})
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response


def _stories(count: int, volume_id: str | None = None, first_id: int = 1) -> list[Chapter]:
    return [
        Chapter(id=i, title=f"C{i}", content=f"Body {i}", volume_id=volume_id)
        for i in range(first_id, first_id + count)
    ]


def _manager(client, **overrides) -> SummaryManager:
    values = dict(
        model="summary-model",
        small_interval=3,
        big_interval=6,
        context_chapter_count=1,
        context_scope="all",
        temperature=0.5,
    )
    values.update(overrides)
    return SummaryManager(client, **values)


@pytest.mark.asyncio
async def test_small_summary_inserted_after_interval():
    client = FakeClient(["Three chapters happened."])
    novel = Novel(id="n", title="t", chapters=_stories(3))

    updated = await _manager(client).check_and_generate(novel, 3, "Fresh body 3")

    assert [c.title for c in updated.chapters] == ["C1", "C2", "C3", "小总结 (1-3)"]
    summary = updated.chapters[3]
    assert summary.id == 4
    assert summary.subtype == "small_summary"
    assert summary.summary_range == "1-3"
    assert summary.content == "Three chapters happened."
    assert len(novel.chapters) == 3

    call = client.calls[0]
    assert call["model"] == "summary-model"
    assert call["temperature"] == 0.5
    assert call["messages"][0] == {"role": "system", "content": "You are a professional editor helper."}
    user = call["messages"][1]["content"]
    assert "Chapter: C1\nBody 1" in user
    assert "Chapter: C3\nFresh body 3" in user
    assert "Only summarize the volume" not in user


@pytest.mark.asyncio
async def test_nothing_due_before_interval():
    client = FakeClient()
    novel = Novel(id="n", title="t", chapters=_stories(3))
    assert await _manager(client).check_and_generate(novel, 2, "Body 2") is None
    assert client.calls == []


@pytest.mark.asyncio
async def test_existing_summary_is_not_regenerated():
    client = FakeClient()
    existing = Chapter(
        id=10, title="小总结 (1-3)", content="old", subtype="small_summary", summary_range="1-3"
    )
    novel = Novel(id="n", title="t", chapters=_stories(3) + [existing])
    assert await _manager(client).check_and_generate(novel, 3, "Body 3") is None
    assert client.calls == []


@pytest.mark.asyncio
async def test_big_summary_builds_on_small_summaries_and_recent_prose():
    client = FakeClient(["late small", "the whole arc"])
    stories = _stories(6)
    early = Chapter(
        id=20, title="小总结 (1-3)", content="early small", subtype="small_summary", summary_range="1-3"
    )
    novel = Novel(id="n", title="t", chapters=stories[:3] + [early] + stories[3:])

    updated = await _manager(client).check_and_generate(novel, 6, "Body 6")

    assert [c.title for c in updated.chapters] == [
        "C1", "C2", "C3", "小总结 (1-3)", "C4", "C5", "C6", "小总结 (4-6)", "大总结 (1-6)",
    ]
    big = updated.chapters[-1]
    assert big.subtype == "big_summary"
    assert big.summary_range == "1-6"
    assert big.content == "the whole arc"
    assert len({c.id for c in updated.chapters}) == len(updated.chapters)

    source = client.calls[1]["messages"][1]["content"]
    assert "[Section summary (1-3)]:\nearly small" in source
    assert "[Section summary (4-6)]:\nlate small" in source
    assert "### C6\nBody 6" in source
    assert "### C5" not in source
    assert source.index("early small") < source.index("late small") < source.index("Body 6")


@pytest.mark.asyncio
async def test_big_summary_extends_previous_big_summary():
    client = FakeClient(["new arc"])
    stories = _stories(4)
    old_big = Chapter(
        id=30, title="大总结 (1-2)", content="old arc", subtype="big_summary", summary_range="1-2"
    )
    novel = Novel(id="n", title="t", chapters=stories[:2] + [old_big] + stories[2:])

    manager = _manager(client, small_interval=10, big_interval=2)
    updated = await manager.check_and_generate(novel, 4, "Body 4")

    assert updated.chapters[-1].summary_range == "1-4"
    source = client.calls[0]["messages"][1]["content"]
    assert source.startswith("[Story summary (chapters 1-2)]:\nold arc")
    assert "### C1" not in source
    assert "### C2\nBody 2" in source
    assert "### C4\nBody 4" in source


@pytest.mark.asyncio
async def test_volume_scope_counts_within_volume():
    client = FakeClient(["volume two so far"])
    chapters = _stories(2, "v1") + _stories(3, "v2", first_id=3)
    novel = Novel(id="n", title="t", chapters=chapters)

    updated = await _manager(client, context_scope="current").check_and_generate(
        novel, 5, "Body 5"
    )

    summary = updated.chapters[-1]
    assert summary.summary_range == "3-5"
    assert summary.volume_id == "v2"
    user = client.calls[0]["messages"][1]["content"]
    assert "Body 1" not in user
    assert "Only summarize the volume material" in user


@pytest.mark.asyncio
async def test_failed_request_is_logged_and_skipped(monkeypatch):
    errors: list[str] = []
    monkeypatch.setattr(summary_manager.logger, "error", lambda msg, **kw: errors.append(msg))
    client = FakeClient([CompletionError("boom")])
    novel = Novel(id="n", title="t", chapters=_stories(3))

    assert await _manager(client).check_and_generate(novel, 3, "Body 3") is None
    assert len(errors) == 1 and "boom" in errors[0]


@pytest.mark.asyncio
async def test_unknown_or_summary_target_is_ignored():
    client = FakeClient()
    summary = Chapter(id=9, title="小总结 (1-1)", subtype="small_summary", summary_range="1-1")
    novel = Novel(id="n", title="t", chapters=_stories(1) + [summary])
    manager = _manager(client, small_interval=1)
    assert await manager.check_and_generate(novel, 42, "x") is None
    assert await manager.check_and_generate(novel, 9, "x") is None
    assert client.calls == []


def test_recalibrate_reanchors_to_preceding_story():
    chapters = _stories(3) + [
        Chapter(id=10, title="小总结 (1-2)", subtype="small_summary", summary_range="1-2")
    ]
    fixed = recalibrate_summaries(chapters)
    assert fixed[-1].summary_range == "2-3"
    assert fixed[-1].title == "小总结 (2-3)"
    assert chapters[-1].summary_range == "1-2"


def test_recalibrate_clamps_to_volume_start():
    chapters = [
        Chapter(id=1, title="C1", volume_id="v1"),
        Chapter(id=2, title="C2", volume_id="v2"),
        Chapter(id=10, title="大总结 (1-2)", subtype="big_summary", summary_range="1-2", volume_id="v1"),
    ]
    fixed = recalibrate_summaries(chapters)[-1]
    assert fixed.summary_range == "2-2"
    assert fixed.volume_id == "v2"


def test_recalibrate_leading_summary_falls_back_to_first_chapter():
    chapters = [
        Chapter(id=10, title="小总结 (4-6)", subtype="small_summary", summary_range="4-6"),
        Chapter(id=1, title="C1", volume_id="v1"),
    ]
    fixed = recalibrate_summaries(chapters)[0]
    assert fixed.summary_range == "1-1"
    assert fixed.volume_id == "v1"
