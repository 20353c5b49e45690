# tests/test_prompt_renderer.py
import prompt_renderer
import pytest
from jinja2 import DictLoader, Environment, StrictUndefined, UndefinedError


def test_render_prompt_with_custom_env(monkeypatch):
    env = Environment(
        loader=DictLoader({"greet.j2": "Hello {{ name }}"}), autoescape=False
    )
    monkeypatch.setattr(prompt_renderer, "_env", env)
    assert prompt_renderer.render_prompt("greet.j2", {"name": "Bob"}) == "Hello Bob"


def test_missing_variable_raises(monkeypatch):
    env = Environment(
        loader=DictLoader({"greet.j2": "Hello {{ name }}"}),
        autoescape=False,
        undefined=StrictUndefined,
    )
    monkeypatch.setattr(prompt_renderer, "_env", env)
    with pytest.raises(UndefinedError):
        prompt_renderer.render_prompt("greet.j2", {})


def test_bundled_templates_exist():
    names = set(prompt_renderer._env.list_templates())
    assert {
        "director_agent/system.j2",
        "director_agent/user.j2",
        "director_agent/tool_instructions.j2",
        "auto_write/batch_task.j2",
        "auto_write/single_task.j2",
        "auto_write/user_prompt.j2",
    } <= names
