# tests/test_config.py

import config
from config import AutomationSettings


def test_director_model_defaults_to_main_model():
    settings = AutomationSettings(MAIN_GENERATION_MODEL="writer-x", DIRECTOR_MODEL=None)
    assert settings.DIRECTOR_MODEL == "writer-x"


def test_explicit_director_model_is_kept():
    settings = AutomationSettings(MAIN_GENERATION_MODEL="writer-x", DIRECTOR_MODEL="planner-y")
    assert settings.DIRECTOR_MODEL == "planner-y"


def test_consecutive_chapter_count_clamped(monkeypatch):
    warnings: list[str] = []

    def fake_warning(msg: str, **_kw: object) -> None:
        warnings.append(msg)

    monkeypatch.setattr(config.logger, "warning", fake_warning)
    settings = AutomationSettings(CONSECUTIVE_CHAPTER_COUNT=0)
    assert settings.CONSECUTIVE_CHAPTER_COUNT == 1
    assert any("CONSECUTIVE_CHAPTER_COUNT" in msg for msg in warnings)


def test_log_level_read_from_alias(monkeypatch):
    monkeypatch.setenv("AGENT_LOG_LEVEL", "DEBUG")
    assert AutomationSettings().LOG_LEVEL_STR == "DEBUG"


def test_summary_model_defaults_to_main_model():
    settings = AutomationSettings(MAIN_GENERATION_MODEL="writer-x", SUMMARY_MODEL=None)
    assert settings.SUMMARY_MODEL == "writer-x"


def test_summary_intervals_below_one_use_defaults(monkeypatch):
    monkeypatch.setattr(config.logger, "warning", lambda msg, **_kw: None)
    settings = AutomationSettings(SMALL_SUMMARY_INTERVAL=0, BIG_SUMMARY_INTERVAL=-2)
    assert settings.SMALL_SUMMARY_INTERVAL == 3
    assert settings.BIG_SUMMARY_INTERVAL == 6
