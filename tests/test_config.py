"""
Tests for configuration module.
"""
import pytest

from incident_commander.config import CommanderConfig, _get_float_env, _get_int_env, _get_list_env
from incident_commander.exceptions import InvalidConfigError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    """Isolate tests from ambient INCIDENT_COMMANDER_* variables and config files."""
    import os
    for key in list(os.environ):
        if key.startswith("INCIDENT_COMMANDER_"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))


def test_config_defaults() -> None:
    """Test default configuration values."""
    config = CommanderConfig()

    assert config.approval_mode == "autonomous"
    assert config.approval_timeout_seconds == 300
    assert config.planner_url is None
    assert config.planner_timeout_seconds == 10
    assert config.verification_settle_seconds == 2.0
    assert config.default_provider == "AWS"
    assert config.denied_targets == []
    assert config.recent_events_limit == 500
    assert config.retained_incidents == 1000


def test_config_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test configuration from environment variables."""
    monkeypatch.setenv("INCIDENT_COMMANDER_HITL_MODE", "COPILOT")
    monkeypatch.setenv("INCIDENT_COMMANDER_APPROVAL_TIMEOUT", "45")
    monkeypatch.setenv("INCIDENT_COMMANDER_PLANNER_URL", "http://reasoner/plan")
    monkeypatch.setenv("INCIDENT_COMMANDER_SETTLE_SECONDS", "0.5")
    monkeypatch.setenv("INCIDENT_COMMANDER_DENIED_TARGETS", "RESTART:prod-*, ROLLBACK:billing")
    monkeypatch.setenv("INCIDENT_COMMANDER_AUDIT_LOG_FILE", "/tmp/audit.jsonl")

    config = CommanderConfig.from_env()

    assert config.approval_mode == "copilot"
    assert config.approval_timeout_seconds == 45
    assert config.planner_url == "http://reasoner/plan"
    assert config.verification_settle_seconds == 0.5
    assert config.denied_targets == ["RESTART:prod-*", "ROLLBACK:billing"]
    assert config.audit_log_file == "/tmp/audit.jsonl"


def test_config_invalid_numbers(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test that invalid numbers use defaults."""
    monkeypatch.setenv("INCIDENT_COMMANDER_APPROVAL_TIMEOUT", "soon")
    monkeypatch.setenv("INCIDENT_COMMANDER_SETTLE_SECONDS", "a bit")

    config = CommanderConfig.from_env()

    assert config.approval_timeout_seconds == 300
    assert config.verification_settle_seconds == 2.0


def test_config_negative_values(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test that negative values use defaults."""
    monkeypatch.setenv("INCIDENT_COMMANDER_PLANNER_TIMEOUT", "0")
    monkeypatch.setenv("INCIDENT_COMMANDER_SETTLE_SECONDS", "-1")

    config = CommanderConfig.from_env()

    assert config.planner_timeout_seconds == 10
    assert config.verification_settle_seconds == 2.0


def test_config_validation_success() -> None:
    """Test validation passes for valid config."""
    config = CommanderConfig(approval_mode="copilot", denied_targets=["RESTART:prod-*"])
    config.validate()


def test_zero_settle_is_valid() -> None:
    CommanderConfig(verification_settle_seconds=0).validate()


@pytest.mark.parametrize("overrides,message", [
    ({"approval_mode": "yolo"}, "approval_mode"),
    ({"approval_timeout_seconds": 0}, "approval_timeout_seconds"),
    ({"planner_failure_threshold": -1}, "planner_failure_threshold"),
    ({"retained_incidents": 0}, "retained_incidents"),
    ({"verification_settle_seconds": -0.1}, "verification_settle_seconds"),
    ({"default_target": "  "}, "default_target"),
    ({"denied_targets": ["EXPLODE:*"]}, "EXPLODE"),
    ({"log_level": "LOUD"}, "log_level"),
])
def test_config_validation_errors(overrides, message) -> None:
    with pytest.raises(InvalidConfigError, match=message):
        CommanderConfig(**overrides).validate()


def test_config_validation_reports_all_errors() -> None:
    config = CommanderConfig(approval_mode="yolo", recent_events_limit=0)
    with pytest.raises(InvalidConfigError) as exc_info:
        config.validate()
    assert "approval_mode" in str(exc_info.value)
    assert "recent_events_limit" in str(exc_info.value)


def test_load_from_file_with_env_override(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_file = tmp_path / "commander.yaml"
    config_file.write_text("""
approval:
  mode: copilot
  timeout_seconds: 120
supervisor:
  settle_seconds: 0
""")
    monkeypatch.setenv("INCIDENT_COMMANDER_APPROVAL_TIMEOUT", "30")

    config = CommanderConfig.load(str(config_file))

    assert config.approval_mode == "copilot"
    assert config.approval_timeout_seconds == 30
    assert config.verification_settle_seconds == 0


def test_load_falls_back_to_env_on_bad_file(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_file = tmp_path / "commander.yaml"
    config_file.write_text("approval: [unclosed")
    monkeypatch.setenv("INCIDENT_COMMANDER_HITL_MODE", "copilot")

    config = CommanderConfig.load(str(config_file))

    assert config.approval_mode == "copilot"


def test_load_missing_file_falls_back(tmp_path) -> None:
    config = CommanderConfig.load(str(tmp_path / "missing.toml"))
    assert config.approval_mode == "autonomous"


def test_load_env_only(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("INCIDENT_COMMANDER_DEFAULT_PROVIDER", "GCP")
    assert CommanderConfig.load(use_file=False).default_provider == "GCP"


def test_get_int_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TEST_INT", "42")
    assert _get_int_env("TEST_INT", 10) == 42
    assert _get_int_env("TEST_MISSING", 10) == 10
    monkeypatch.setenv("TEST_INT", "many")
    assert _get_int_env("TEST_INT", 10) == 10


def test_get_float_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TEST_FLOAT", "0")
    assert _get_float_env("TEST_FLOAT", 2.0) == 0.0
    monkeypatch.setenv("TEST_FLOAT", "-3")
    assert _get_float_env("TEST_FLOAT", 2.0) == 2.0


def test_get_list_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TEST_LIST", " a, ,b ,")
    assert _get_list_env("TEST_LIST") == ["a", "b"]
    assert _get_list_env("TEST_LIST_MISSING") == []
