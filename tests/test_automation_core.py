# tests/test_automation_core.py
import asyncio
import json

import pytest

from models import AgentPromptConfig, AgentStatus, Manifest, Task, TaskType
from orchestration.automation_core import FULL_RESET_MARKER, AutomationCore


def _manifest(count: int) -> Manifest:
    return Manifest(
        tasks=[
            Task(id=f"t{i}", type=TaskType.CHAPTER, title=f"Task {i}")
            for i in range(count)
        ],
        current_task_index=0,
    )


def _manifest_json(count: int) -> str:
    return json.dumps(
        {
            "tasks": [
                {"id": f"t{i}", "type": "outline", "title": f"Task {i}"}
                for i in range(count)
            ],
            "currentTaskIndex": 0,
        }
    )


async def _planned_core(count: int, states: list | None = None) -> AutomationCore:
    core = AutomationCore(on_state_change=states.append if states is not None else None)

    async def call_llm(system, user, model=None):
        return _manifest_json(count)

    await core.start_planning(None, call_llm, "go")
    return core


@pytest.mark.asyncio
async def test_planning_success_awaits_user():
    states = []
    core = await _planned_core(3, states)
    state = core.get_state()
    assert state.status is AgentStatus.AWAITING_USER
    assert state.current_task_index == 0
    assert len(state.manifest.tasks) == 3
    assert any(s.status is AgentStatus.PLANNING for s in states)


@pytest.mark.asyncio
async def test_planning_parse_failure_sets_error():
    core = AutomationCore()

    async def call_llm(system, user, model=None):
        return "no json here"

    await core.start_planning(None, call_llm)
    state = core.get_state()
    assert state.status is AgentStatus.ERROR
    assert "Planning failed" in state.logs[0]


@pytest.mark.asyncio
async def test_planning_exception_sets_error():
    core = AutomationCore()

    async def call_llm(system, user, model=None):
        raise RuntimeError("boom")

    await core.start_planning(None, call_llm)
    assert core.get_state().status is AgentStatus.ERROR
    assert "boom" in core.get_state().logs[0]


@pytest.mark.asyncio
async def test_planning_uses_prompt_override():
    core = AutomationCore()
    seen = {}

    async def call_llm(system, user, model=None):
        seen["system"] = system
        return _manifest_json(1)

    await core.start_planning(
        None, call_llm, prompt_config=AgentPromptConfig(director_prompt="CUSTOM")
    )
    assert seen["system"] == "CUSTOM"


@pytest.mark.asyncio
async def test_stop_during_planning_discards_response():
    core = AutomationCore()
    gate = asyncio.Event()

    async def call_llm(system, user, model=None):
        await gate.wait()
        return _manifest_json(2)

    planning = asyncio.create_task(core.start_planning(None, call_llm))
    await asyncio.sleep(0)
    core.stop()
    gate.set()
    await planning
    state = core.get_state()
    assert state.status is AgentStatus.IDLE
    assert state.manifest is None


@pytest.mark.asyncio
async def test_tasks_run_one_at_a_time_in_order():
    states = []
    core = await _planned_core(3, states)
    order = []

    def trigger(task_type, task, on_complete):
        # The previous task must have advanced the index before this one starts.
        assert core.get_state().current_task_index == len(order)
        order.append(task.id)
        on_complete()

    core.init(None, None, on_task_trigger=trigger)
    await core.start_execution()

    state = core.get_state()
    assert order == ["t0", "t1", "t2"]
    assert state.status is AgentStatus.COMPLETED
    assert state.current_task_index == 3

    indices = [s.current_task_index for s in states if s.status is AgentStatus.EXECUTING]
    assert indices == sorted(indices)
    assert set(indices) == {0, 1, 2}
    assert all(
        s.status is AgentStatus.COMPLETED for s in states if s.current_task_index == 3
    )


@pytest.mark.asyncio
async def test_async_trigger_completing_later():
    core = await _planned_core(2)

    async def trigger(task_type, task, on_complete):
        await asyncio.sleep(0)
        asyncio.get_running_loop().call_soon(on_complete)

    core.init(None, None, on_task_trigger=trigger)
    await core.start_execution()
    assert core.get_state().status is AgentStatus.COMPLETED


@pytest.mark.asyncio
async def test_stop_blocks_further_notifications():
    states = []
    core = await _planned_core(3, states)
    pending = []

    def trigger(task_type, task, on_complete):
        pending.append(on_complete)

    core.init(None, None, on_task_trigger=trigger)
    run = asyncio.create_task(core.start_execution())
    await asyncio.sleep(0)
    assert len(pending) == 1

    core.stop()
    count_after_stop = len(states)
    pending[0]()
    await run
    assert len(states) == count_after_stop
    assert core.get_state().status is AgentStatus.IDLE
    assert core.get_state().current_task_index == 0


@pytest.mark.asyncio
async def test_trigger_exception_sets_error_and_resume_retries_same_task():
    core = await _planned_core(2)
    calls = []

    def trigger(task_type, task, on_complete):
        calls.append(task.id)
        if len(calls) == 1:
            raise RuntimeError("ui failed")
        on_complete()

    core.init(None, None, on_task_trigger=trigger)
    await core.start_execution()
    state = core.get_state()
    assert state.status is AgentStatus.ERROR
    assert "ui failed" in state.logs[0]
    assert state.current_task_index == 0

    await core.resume()
    assert calls == ["t0", "t0", "t1"]
    assert core.get_state().status is AgentStatus.COMPLETED
    assert core.get_state().retry_count == 0


@pytest.mark.asyncio
async def test_pause_holds_and_resume_continues():
    core = await _planned_core(2)
    pending = []

    def trigger(task_type, task, on_complete):
        pending.append((task.id, on_complete))

    core.init(None, None, on_task_trigger=trigger)
    run = asyncio.create_task(core.start_execution())
    await asyncio.sleep(0)

    core.pause()
    assert core.get_state().status is AgentStatus.PAUSED
    pending[0][1]()
    await run
    # The finished task is recorded but the next one is not started.
    assert core.get_state().current_task_index == 1
    assert [p[0] for p in pending] == ["t0"]

    resumed = asyncio.create_task(core.resume())
    await asyncio.sleep(0)
    assert [p[0] for p in pending] == ["t0", "t1"]
    pending[1][1]()
    await resumed
    assert core.get_state().status is AgentStatus.COMPLETED


@pytest.mark.asyncio
async def test_update_manifest_only_while_awaiting_user():
    core = await _planned_core(1)
    assert core.update_manifest(_manifest(4)) is True
    assert len(core.get_state().manifest.tasks) == 4

    core.stop()
    assert core.update_manifest(_manifest(2)) is False
    assert len(core.get_state().manifest.tasks) == 4


@pytest.mark.asyncio
async def test_start_execution_requires_awaiting_user():
    core = AutomationCore()
    await core.start_execution()
    assert core.get_state().status is AgentStatus.IDLE


@pytest.mark.asyncio
async def test_resets():
    core = await _planned_core(2)
    core.reset_to_idle()
    state = core.get_state()
    assert state.status is AgentStatus.IDLE
    assert state.manifest is not None

    core.full_reset()
    state = core.get_state()
    assert state.status is AgentStatus.IDLE
    assert state.manifest is None
    assert state.current_task_index == -1
    assert state.logs == (FULL_RESET_MARKER,)


def test_logs_are_timestamped_newest_first_and_capped(monkeypatch):
    from config import settings

    monkeypatch.setattr(settings, "AGENT_LOG_LIMIT", 3)
    core = AutomationCore()
    for _ in range(5):
        core.pause()
    logs = core.get_state().logs
    assert len(logs) == 3
    assert all(line.startswith("[") and "] Paused." in line for line in logs)


@pytest.mark.asyncio
async def test_task_actions_forwarded_to_handler():
    core = AutomationCore()

    async def call_llm(system, user, model=None):
        return json.dumps(
            {
                "tasks": [
                    {
                        "id": "t0",
                        "type": "inspiration",
                        "title": "Seed",
                        "description": '[ACTION:CREATE_PROJECT_FOLDERS]{"name": "P"}[/ACTION]',
                    }
                ],
                "currentTaskIndex": 0,
            }
        )

    received = []
    await core.start_planning(None, call_llm)
    core.init(
        None,
        call_llm,
        on_action=received.extend,
        on_task_trigger=lambda t, task, done: done(),
    )
    await core.start_execution()
    assert [a.type for a in received] == ["CREATE_PROJECT_FOLDERS"]
    assert core.get_state().status is AgentStatus.COMPLETED


@pytest.mark.asyncio
async def test_last_task_finishing_while_paused_completes_run():
    core = await _planned_core(1)
    pending = []

    core.init(None, None, on_task_trigger=lambda t, task, done: pending.append(done))
    run = asyncio.create_task(core.start_execution())
    await asyncio.sleep(0)

    core.pause()
    pending[0]()
    await run

    state = core.get_state()
    assert state.status is AgentStatus.COMPLETED
    assert state.current_task_index == 1
