import pytest

from gabriel_pipeline.config import DEFAULT_ASSISTANT_ID, PipelineConfig
from gabriel_pipeline.prompts import SermonRequest, sermon_prompt

_ENV = (
    "OPENAI_ASSISTANT_ID",
    "ASSISTANT_ID",
    "FORCE_OPENAI_ASSISTANT",
    "FORCE_OPENAI_FALLBACK",
    "APP_ENV",
    "NODE_ENV",
    "SECONDARY_DEFAULT_ENVIRONMENTS",
    "SECONDARY_MAX_TOKENS",
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in _ENV:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_defaults(clean_env):
    cfg = PipelineConfig()
    assert cfg.assistant_id == DEFAULT_ASSISTANT_ID
    assert cfg.force_primary is False
    assert cfg.force_secondary is False
    assert cfg.environment == "development"
    assert cfg.secondary_default_environments == []
    assert cfg.secondary_max_tokens == 1000
    assert cfg.run_poll_interval_seconds == 1.0
    assert cfg.run_poll_max_attempts == 120


def test_env_overrides(clean_env):
    clean_env.setenv("ASSISTANT_ID", "asst_legacy")
    clean_env.setenv("OPENAI_ASSISTANT_ID", "asst_new")
    clean_env.setenv("FORCE_OPENAI_FALLBACK", "TRUE")
    clean_env.setenv("NODE_ENV", "Production")
    clean_env.setenv("SECONDARY_DEFAULT_ENVIRONMENTS", "Development, test ,")

    cfg = PipelineConfig()

    assert cfg.assistant_id == "asst_new"
    assert cfg.force_secondary is True
    assert cfg.environment == "production"
    assert cfg.secondary_default_environments == ["development", "test"]


def test_app_env_beats_node_env(clean_env):
    clean_env.setenv("NODE_ENV", "production")
    clean_env.setenv("APP_ENV", "staging")
    assert PipelineConfig().environment == "staging"


@pytest.mark.parametrize(("minutes", "points"), [(10, "2-3"), (20, "3-4"), (45, "4-5")])
def test_sermon_prompt_scales_point_count_with_length(minutes, points):
    req = SermonRequest(bible_passage="John 3:16", theme="Love", length_minutes=minutes)
    prompt = sermon_prompt(req)
    assert f"{points} main points" in prompt
    assert "Bible Passage: John 3:16" in prompt
    assert "## Introduction" in prompt


def test_sermon_prompt_json_variant_describes_schema():
    req = SermonRequest(bible_passage="Psalm 23", theme="Trust", title="The Good Shepherd")
    prompt = sermon_prompt(req, json_output=True)
    assert '"mainPoints"' in prompt
    assert "The Good Shepherd" in prompt


def test_sermon_request_rejects_blank_passage():
    with pytest.raises(ValueError):
        SermonRequest(bible_passage="  ", theme="Love")
