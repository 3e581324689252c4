#!/usr/bin/env python3
"""
Settings management for Schedule Sorter.

Handles persistent user state stored in a JSON file in the user's config
directory:
- macOS: ~/Library/Application Support/ScheduleSorter/settings.json
- Linux: ~/.config/ScheduleSorter/settings.json
- Windows: %APPDATA%/ScheduleSorter/settings.json
(SORTER_CONFIG_DIR overrides the location.)

Besides plain preferences the file holds the edited schedule
configuration, the review overrides (content hash -> schedule) and the
rules audit log. Nothing is written implicitly: only save/reset/override
calls touch the file. A sorting run reads everything once via snapshot().
"""

import copy
import json
import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from classifier import DEFAULT_MIN_CHARS, DEFAULT_MIN_TEXT_ITEMS, ScannedDetectionThresholds
from output_paths import OutputRoots
from schedule_config import ConfigValidationError, config_hash, get_default_config, validate_schedule_config
from sort_pipeline import DEFAULT_WORKERS, RunInputs

try:
    load_dotenv()
except (PermissionError, OSError):
    pass  # .env not accessible

logger = logging.getLogger("schedule_sorter.settings")

AUDIT_LOG_LIMIT = 50


def get_config_dir() -> Path:
    """Get the platform-appropriate config directory."""
    override = os.environ.get("SORTER_CONFIG_DIR")
    if override:
        config_dir = Path(override).expanduser()
    elif sys.platform == "darwin":
        config_dir = Path.home() / "Library" / "Application Support" / "ScheduleSorter"
    elif sys.platform == "win32":
        appdata = os.environ.get("APPDATA", str(Path.home() / "AppData" / "Roaming"))
        config_dir = Path(appdata) / "ScheduleSorter"
    else:
        # Linux and others - XDG config home
        xdg_config = os.environ.get("XDG_CONFIG_HOME", str(Path.home() / ".config"))
        config_dir = Path(xdg_config) / "ScheduleSorter"

    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


def get_settings_path() -> Path:
    """Get path to the settings file."""
    return get_config_dir() / "settings.json"


# Default settings
DEFAULT_SETTINGS = {
    # Export layout
    "output_dir": "",  # empty -> SORTER_OUTPUT_DIR or ~/Documents/estate_706_sorted
    "export_root": "706",
    "review_root": "706/ReviewNeeded",

    # Processing
    "workers": DEFAULT_WORKERS,
    "min_chars": DEFAULT_MIN_CHARS,
    "min_text_items": DEFAULT_MIN_TEXT_ITEMS,

    # Rules and review state
    "schedule_config": None,  # None -> built-in Form 706 schedules
    "review_overrides": {},
    "rules_audit": [],
    "rules_editor_name": "",
}


class Settings:
    """Manage sorter settings, rules and review overrides with persistence."""

    def __init__(self):
        self._settings = copy.deepcopy(DEFAULT_SETTINGS)
        self._load()

    def _load(self):
        """Load settings from disk."""
        settings_path = get_settings_path()
        if settings_path.exists():
            try:
                with open(settings_path, 'r', encoding='utf-8') as f:
                    saved = json.load(f)
                    # Merge with defaults (in case new settings were added)
                    self._settings.update(saved)
            except (json.JSONDecodeError, IOError) as e:
                logger.warning(f"Could not load settings: {e}")

    def save(self):
        """Save settings to disk."""
        settings_path = get_settings_path()
        try:
            with open(settings_path, 'w', encoding='utf-8') as f:
                json.dump(self._settings, f, indent=2, ensure_ascii=False)
        except IOError as e:
            logger.warning(f"Could not save settings: {e}")

    def get(self, key: str, default=None):
        return self._settings.get(key, default)

    def set(self, key: str, value):
        self._settings[key] = value
        self.save()

    def update(self, updates: dict):
        """Update multiple settings at once and save."""
        self._settings.update(updates)
        self.save()

    def reset(self):
        """Reset all settings to defaults."""
        self._settings = copy.deepcopy(DEFAULT_SETTINGS)
        self.save()

    # ------------------------------------------------------------------
    # Processing preferences
    # ------------------------------------------------------------------

    @property
    def output_dir(self) -> str:
        """Priority: saved setting > SORTER_OUTPUT_DIR > default."""
        saved = self._settings.get("output_dir")
        if saved:
            return saved
        env_output = os.environ.get("SORTER_OUTPUT_DIR")
        if env_output:
            return env_output
        return str(Path.home() / "Documents" / "estate_706_sorted")

    @property
    def workers(self) -> int:
        env_workers = os.environ.get("SORTER_WORKERS")
        if env_workers and env_workers.isdigit() and int(env_workers) > 0:
            return int(env_workers)
        return int(self._settings.get("workers") or DEFAULT_WORKERS)

    def get_thresholds(self) -> ScannedDetectionThresholds:
        return ScannedDetectionThresholds(
            min_chars=int(self._settings.get("min_chars", DEFAULT_MIN_CHARS)),
            min_text_items=int(self._settings.get("min_text_items", DEFAULT_MIN_TEXT_ITEMS)),
        )

    def get_output_roots(self) -> OutputRoots:
        return OutputRoots(
            export_root=self._settings.get("export_root") or DEFAULT_SETTINGS["export_root"],
            review_root=self._settings.get("review_root") or DEFAULT_SETTINGS["review_root"],
        )

    # ------------------------------------------------------------------
    # Schedule configuration
    # ------------------------------------------------------------------

    def load_schedule_config(self) -> dict:
        """Stored configuration if it still validates, otherwise the defaults."""
        stored = self._settings.get("schedule_config")
        if not stored:
            return get_default_config()
        config, errors = validate_schedule_config(stored)
        if errors:
            logger.warning(f"Ignoring invalid stored schedule config: {'; '.join(errors)}")
            return get_default_config()
        return config

    def has_custom_schedule_config(self) -> bool:
        return bool(self._settings.get("schedule_config"))

    def save_schedule_config(self, raw, summary: str = "Updated rules", editor_name: Optional[str] = None) -> dict:
        """Validate and store a new schedule configuration.

        Raises ConfigValidationError with every problem found; the current
        configuration stays active in that case.
        """
        config, errors = validate_schedule_config(raw)
        if errors:
            raise ConfigValidationError(errors)

        before = self.load_schedule_config()
        self._settings["schedule_config"] = config
        self._append_audit_entry(summary, before, config, editor_name)
        self.save()
        return config

    def reset_schedule_config(self, editor_name: Optional[str] = None):
        """Drop the stored configuration so the built-in schedules apply again."""
        before = self.load_schedule_config()
        self._settings["schedule_config"] = None
        self._append_audit_entry("Reset rules to defaults", before, get_default_config(), editor_name)
        self.save()

    @property
    def rules_editor_name(self) -> str:
        return self._settings.get("rules_editor_name", "")

    @rules_editor_name.setter
    def rules_editor_name(self, name: str):
        self.set("rules_editor_name", name)

    def load_rules_audit_log(self) -> list[dict]:
        log = self._settings.get("rules_audit")
        return list(log) if isinstance(log, list) else []

    def _append_audit_entry(self, summary: str, before: dict, after: dict, editor_name: Optional[str]):
        entry = {
            "timestamp": datetime.now().isoformat(),
            "editor_name": editor_name if editor_name is not None else self.rules_editor_name,
            "summary": summary,
            "before_hash": config_hash(before),
            "after_hash": config_hash(after),
        }
        log = self.load_rules_audit_log()
        log.insert(0, entry)
        self._settings["rules_audit"] = log[:AUDIT_LOG_LIMIT]

    # ------------------------------------------------------------------
    # Review overrides
    # ------------------------------------------------------------------

    def load_review_overrides(self) -> dict:
        overrides = self._settings.get("review_overrides")
        if not isinstance(overrides, dict):
            return {}
        return {k: v for k, v in overrides.items() if isinstance(k, str) and isinstance(v, str) and v}

    def save_review_overrides(self, overrides: dict):
        self._settings["review_overrides"] = dict(overrides)
        self.save()

    def set_review_override(self, digest: str, schedule_id: str) -> dict:
        if not digest or not schedule_id:
            raise ValueError("digest and schedule_id are required")
        overrides = self.load_review_overrides()
        overrides[digest] = schedule_id
        self.save_review_overrides(overrides)
        return overrides

    def remove_review_override(self, digest: str) -> dict:
        overrides = self.load_review_overrides()
        overrides.pop(digest, None)
        self.save_review_overrides(overrides)
        return overrides

    # ------------------------------------------------------------------
    # Run snapshot
    # ------------------------------------------------------------------

    def snapshot(self) -> RunInputs:
        """Everything a sorting run needs, read once at its start."""
        return RunInputs(
            config=self.load_schedule_config(),
            overrides=self.load_review_overrides(),
            thresholds=self.get_thresholds(),
        )

    def to_dict(self) -> dict:
        """Export settings as a dictionary."""
        return copy.deepcopy(self._settings)


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings():
    """Force reload settings from disk."""
    global _settings
    _settings = Settings()
    return _settings
