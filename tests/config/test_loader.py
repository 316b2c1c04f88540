import json
import os
import time

from usage_quota.config.loader import Settings, changed_keys
from usage_quota.config.policy import DEFAULT_POLICY, QuotaPolicy


def _touch_forward(path):
    later = time.time() + 5
    os.utime(path, (later, later))


def test_missing_file_means_empty_defaults(tmp_path):
    settings = Settings(str(tmp_path / "absent.json"))
    assert settings.data == {}
    assert settings.policy() == DEFAULT_POLICY


def test_invalid_json_keeps_previous_data(tmp_path, caplog):
    config_path = tmp_path / "settings.json"
    config_path.write_text(json.dumps({"quota": {"max_quota": 50}}), encoding="utf-8")
    settings = Settings(str(config_path))

    caplog.clear()
    with caplog.at_level("WARNING"):
        config_path.write_text("{ invalid", encoding="utf-8")
        _touch_forward(config_path)
        assert settings.data == {"quota": {"max_quota": 50}}

    assert any("Failed to reload settings" in message for message in caplog.messages)


def test_reload_picks_up_new_policy_and_logs_diff(tmp_path, caplog):
    config_path = tmp_path / "settings.json"
    config_path.write_text(json.dumps({"quota": {"overdraft": 3}}), encoding="utf-8")
    settings = Settings(str(config_path))

    caplog.clear()
    with caplog.at_level("INFO"):
        config_path.write_text(json.dumps({"quota": {"overdraft": 5}}), encoding="utf-8")
        _touch_forward(config_path)
        assert settings.policy() == QuotaPolicy(overdraft=5)

    records = [r for r in caplog.records if getattr(r, "event", None) == "settings_reload"]
    assert len(records) == 1
    assert records[0].diff == {"quota.overdraft": {"old": 3, "new": 5}}


def test_changed_keys_reports_added_and_removed_leaves():
    diff = changed_keys(
        {"quota": {"max_quota": 400}, "store": {"kind": "memory"}},
        {"quota": {"max_quota": 400, "overdraft": 1}},
    )
    assert diff == {
        "quota.overdraft": {"old": None, "new": 1},
        "store.kind": {"old": "memory", "new": None},
    }
