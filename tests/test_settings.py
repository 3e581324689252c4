"""
Tests for persisted settings, rules and review overrides.
"""

import json
import os
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from schedule_config import ConfigValidationError, config_hash, get_default_config
from settings import AUDIT_LOG_LIMIT, Settings, get_settings, get_settings_path, reload_settings


class TestSettingsBasics:
    """Tests for loading and saving plain preferences."""

    def test_defaults(self):
        settings = Settings()
        assert settings.workers == 4
        assert settings.get_thresholds().min_chars == 250
        assert settings.get_output_roots().review_root == "706/ReviewNeeded"
        assert not settings.has_custom_schedule_config()

    def test_settings_file_lives_in_config_dir(self, temp_dir: Path):
        assert get_settings_path() == temp_dir / "config" / "settings.json"

    def test_set_persists(self):
        Settings().set("min_chars", 100)
        assert reload_settings().get_thresholds().min_chars == 100

    def test_corrupt_file_falls_back_to_defaults(self):
        get_settings_path().write_text("{not json")
        assert Settings().workers == 4

    def test_output_dir_priority(self, temp_dir: Path):
        settings = Settings()
        assert settings.output_dir.endswith("estate_706_sorted")

        os.environ["SORTER_OUTPUT_DIR"] = str(temp_dir / "env_out")
        assert settings.output_dir == str(temp_dir / "env_out")

        settings.set("output_dir", str(temp_dir / "saved_out"))
        assert settings.output_dir == str(temp_dir / "saved_out")

    def test_workers_env_override(self):
        os.environ["SORTER_WORKERS"] = "7"
        assert Settings().workers == 7

    def test_global_instance(self):
        assert get_settings() is get_settings()


class TestScheduleConfigPersistence:
    """Tests for saving, loading and resetting the rules."""

    def test_save_and_reload(self, small_config: dict):
        settings = Settings()
        settings.save_schedule_config(small_config, summary="Trimmed to two schedules", editor_name="Pat")

        reloaded = reload_settings()
        assert reloaded.load_schedule_config() == small_config
        assert reloaded.has_custom_schedule_config()

    def test_invalid_config_is_rejected_and_not_stored(self, small_config: dict):
        settings = Settings()
        small_config["filename_rules"][0]["pattern"] = "(["

        with pytest.raises(ConfigValidationError) as exc_info:
            settings.save_schedule_config(small_config)

        assert any("not a valid regex" in e for e in exc_info.value.errors)
        assert settings.load_schedule_config() == get_default_config()
        assert settings.load_rules_audit_log() == []

    def test_stored_config_is_revalidated_on_load(self):
        get_settings_path().write_text(json.dumps({"schedule_config": {"schedules": "oops"}}))
        assert Settings().load_schedule_config() == get_default_config()

    def test_reset(self, small_config: dict):
        settings = Settings()
        settings.save_schedule_config(small_config)
        settings.reset_schedule_config(editor_name="Pat")

        assert settings.load_schedule_config() == get_default_config()
        assert settings.load_rules_audit_log()[0]["summary"] == "Reset rules to defaults"


class TestRulesAudit:
    """Tests for the rules audit log."""

    def test_entry_contents(self, small_config: dict):
        settings = Settings()
        settings.save_schedule_config(small_config, summary="Trimmed", editor_name="Pat")

        entry = settings.load_rules_audit_log()[0]
        assert entry["editor_name"] == "Pat"
        assert entry["summary"] == "Trimmed"
        assert entry["before_hash"] == config_hash(get_default_config())
        assert entry["after_hash"] == config_hash(small_config)
        assert entry["timestamp"]

    def test_stored_editor_name_is_default(self, small_config: dict):
        settings = Settings()
        settings.rules_editor_name = "Sam"
        settings.save_schedule_config(small_config)
        assert settings.load_rules_audit_log()[0]["editor_name"] == "Sam"

    def test_newest_first_and_capped(self, small_config: dict):
        settings = Settings()
        for i in range(AUDIT_LOG_LIMIT + 5):
            settings.save_schedule_config(small_config, summary=f"edit {i}")

        log = reload_settings().load_rules_audit_log()
        assert len(log) == AUDIT_LOG_LIMIT
        assert log[0]["summary"] == f"edit {AUDIT_LOG_LIMIT + 4}"


class TestReviewOverrides:
    """Tests for review override persistence and the run snapshot."""

    def test_set_and_remove(self):
        settings = Settings()
        settings.set_review_override("a" * 64, "A_Real_Estate")
        assert reload_settings().load_review_overrides() == {"a" * 64: "A_Real_Estate"}

        get_settings().remove_review_override("a" * 64)
        assert reload_settings().load_review_overrides() == {}

    def test_empty_values_rejected(self):
        with pytest.raises(ValueError):
            Settings().set_review_override("", "A_Real_Estate")

    def test_malformed_overrides_are_dropped(self):
        get_settings_path().write_text(json.dumps({"review_overrides": {"abc": 3, "def": "B_Stocks_Bonds"}}))
        assert Settings().load_review_overrides() == {"def": "B_Stocks_Bonds"}

    def test_snapshot(self, small_config: dict):
        settings = Settings()
        settings.save_schedule_config(small_config)
        settings.set_review_override("f" * 64, "B_Stocks_Bonds")
        settings.set("min_text_items", 12)

        inputs = settings.snapshot()

        assert inputs.config == small_config
        assert inputs.overrides == {"f" * 64: "B_Stocks_Bonds"}
        assert inputs.thresholds.min_text_items == 12

    def test_snapshot_is_isolated_from_later_edits(self):
        settings = Settings()
        inputs = settings.snapshot()
        settings.set_review_override("f" * 64, "B_Stocks_Bonds")
        assert inputs.overrides == {}
