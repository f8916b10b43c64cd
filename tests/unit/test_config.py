from __future__ import annotations

from pathlib import Path

import pytest

from ao.config import (
    DEFAULT_CONFIG_TEMPLATE,
    ConfigError,
    copy_config_template,
    deep_merge,
    load_config,
    read_config_file,
    write_config,
)


def test_missing_file_yields_defaults(tmp_path: Path) -> None:
    config = load_config(tmp_path / "absent.yaml")

    budget = config.budget_settings()
    assert budget.max_tokens == 60000
    assert budget.keep_last_turns == 20
    assert config.orchestrator_settings().max_review_count == 3
    assert config.orchestrator_settings().action_timeout == 60.0
    assert config.db_path == tmp_path.resolve() / "data" / "ao.sqlite"
    assert config.sandbox_root == tmp_path.resolve() / "data" / "sandboxes"
    assert config.log_level == "INFO"


def test_deep_merge_overrides_nested_keys_only() -> None:
    merged = deep_merge({"a": {"x": 1, "y": 2}, "b": 1}, {"a": {"y": 3}, "c": [1]})
    assert merged == {"a": {"x": 1, "y": 3}, "b": 1, "c": [1]}


def test_copy_config_template_is_independent() -> None:
    copy = copy_config_template()
    copy["budget"]["max_tokens"] = 1
    assert DEFAULT_CONFIG_TEMPLATE["budget"]["max_tokens"] == 60000


def test_round_trip_through_yaml(tmp_path: Path) -> None:
    config_path = tmp_path / "nested" / "ao.yaml"
    data = copy_config_template()
    data["orchestrator"]["require_plan_approval"] = True
    data["paths"]["db_path"] = "/var/lib/ao/plans.sqlite"
    data["logging"]["level"] = "debug"
    write_config(config_path, data)

    config = load_config(config_path)
    assert config.orchestrator_settings().require_plan_approval is True
    assert config.db_path == Path("/var/lib/ao/plans.sqlite")
    assert config.log_level == "DEBUG"
    assert list(read_config_file(config_path)) == list(DEFAULT_CONFIG_TEMPLATE)


def test_partial_file_keeps_other_defaults(tmp_path: Path) -> None:
    config_path = tmp_path / "ao.yaml"
    config_path.write_text("diagnosis:\n  window: 5\n", encoding="utf-8")

    config = load_config(config_path)
    assert config.section("diagnosis") == {"window": 5, "error_threshold": 0.75}
    assert config.breaker_config().failure_threshold == 2


@pytest.mark.parametrize(
    "body, message",
    [
        ("budget:\n  max_tokens: 0\n", "budget.max_tokens"),
        ("budget:\n  chars_per_token: 0\n", "budget.chars_per_token"),
        ("budget:\n  keep_last_turns: -1\n", "budget.keep_last_turns"),
        ("diagnosis:\n  error_threshold: 1.5\n", "diagnosis.error_threshold"),
        ("diagnosis:\n  window: 0\n", "diagnosis.window"),
        ("orchestrator:\n  max_proposer_failures: 0\n", "orchestrator.max_proposer_failures"),
        ("- just\n- a list\n", "mapping"),
        ("budget: [unclosed\n", "Failed to parse"),
    ],
)
def test_invalid_files_are_rejected(tmp_path: Path, body: str, message: str) -> None:
    config_path = tmp_path / "ao.yaml"
    config_path.write_text(body, encoding="utf-8")

    with pytest.raises(ConfigError, match=message):
        load_config(config_path)
