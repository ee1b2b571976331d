import pytest

from treatment_planner.deps import Settings, get_settings

ENV_KEYS = (
    "SCENARIO_COST_OVERRIDES",
    "MATCH_RADIUS_KM",
    "MATCH_LIMIT",
    "GENERATION_TIMEOUT_S",
    "FALLBACK_TREATMENT_WEIGHT",
    "GEMINI_API_KEY",
)


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    # no stray .env file or exported values
    monkeypatch.chdir(tmp_path)
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    get_settings.cache_clear()
    yield monkeypatch
    get_settings.cache_clear()


def test_defaults_build_without_arguments(clean_env):
    s = Settings()
    assert s.scenario_cost_overrides == {}
    assert s.match_radius_km == 50.0
    assert s.match_limit == 10
    assert s.strict_treatment_filter is True
    assert s.fallback_treatment_weight == 15


def test_get_settings_is_cached(clean_env):
    assert get_settings() is get_settings()


def test_cost_overrides_from_environment(clean_env):
    clean_env.setenv("SCENARIO_COST_OVERRIDES", '{"5": {"crown": 450, "implant": 900}}')
    assert Settings().scenario_cost_overrides == {5: {"crown": 450.0, "implant": 900.0}}


def test_cost_overrides_accept_mapping_and_blank_string(clean_env):
    assert Settings(scenario_cost_overrides={6: {"crown": 300}}).scenario_cost_overrides == {6: {"crown": 300.0}}
    assert Settings(scenario_cost_overrides="  ").scenario_cost_overrides == {}
    assert Settings(scenario_cost_overrides=None).scenario_cost_overrides == {}


def test_empty_numbers_fall_back_to_defaults(clean_env):
    clean_env.setenv("MATCH_RADIUS_KM", "")
    s = Settings(match_limit=None)
    assert s.match_radius_km == 50.0
    assert s.match_limit == 10
