"""
Tests for the command line entry point and its configuration loading.
"""

import json
import os
import sys
import zipfile
from pathlib import Path

import pytest
import yaml

sys.path.insert(0, str(Path(__file__).parent.parent))

import schedule_sorter
from schedule_sorter import load_config, main
from settings import get_settings


@pytest.fixture
def in_temp_cwd(temp_dir: Path, monkeypatch):
    """Run from an empty folder so no stray config.yaml is picked up."""
    work = temp_dir / "cwd"
    work.mkdir()
    monkeypatch.chdir(work)
    return work


@pytest.fixture
def image_folder(inbox_dir: Path) -> Path:
    """Two images: one matched by a filename rule, one left for review."""
    from PIL import Image

    Image.new('RGB', (20, 20), color='white').save(inbox_dir / "Deed_Main_St.png")
    Image.new('RGB', (20, 20), color='black').save(inbox_dir / "photo.png")
    return inbox_dir


class TestLoadConfig:
    """Tests for YAML configuration loading."""

    def test_defaults_without_file(self, in_temp_cwd):
        config = load_config()
        assert config["thresholds"] == {"min_chars": None, "min_text_items": None}
        assert config["logging"]["level"] == "INFO"

    def test_local_yaml_wins(self, in_temp_cwd: Path):
        (in_temp_cwd / "config.yaml").write_text(yaml.safe_dump({"workers": 2}))
        (in_temp_cwd / "config.local.yaml").write_text(yaml.safe_dump({
            "workers": 9,
            "paths": {"output_dir": "~/sorted"},
            "thresholds": {"min_chars": 80},
        }))

        config = load_config()

        assert config["workers"] == 9
        assert config["paths"]["output_dir"] == os.path.expanduser("~/sorted")
        assert config["thresholds"]["min_chars"] == 80
        assert config["thresholds"]["min_text_items"] is None

    def test_env_fallbacks(self, in_temp_cwd, temp_dir: Path):
        os.environ["SORTER_OUTPUT_DIR"] = str(temp_dir / "env_out")
        os.environ["SORTER_WORKERS"] = "3"
        config = load_config()
        assert config["paths"]["output_dir"] == str(temp_dir / "env_out")
        assert config["workers"] == 3


class TestRulesCommands:
    """Tests for --check-rules, --import-rules, --export-rules and --reset-rules."""

    def test_check_valid_rules(self, in_temp_cwd: Path, small_config: dict, capsys):
        path = in_temp_cwd / "rules.yaml"
        path.write_text(yaml.safe_dump(small_config))
        assert main(["--check-rules", str(path)]) == 0
        assert "valid" in capsys.readouterr().out

    def test_check_invalid_rules_lists_errors(self, in_temp_cwd: Path, capsys):
        path = in_temp_cwd / "rules.yaml"
        path.write_text(yaml.safe_dump({"schedules": [{"id": "A"}], "filename_rules": []}))
        assert main(["--check-rules", str(path)]) == 1
        assert "missing a valid label" in capsys.readouterr().out

    def test_import_export_roundtrip(self, in_temp_cwd: Path, small_config: dict):
        source = in_temp_cwd / "rules.json"
        source.write_text(json.dumps(small_config))
        assert main(["--import-rules", str(source), "--editor", "Pat"]) == 0
        assert get_settings().load_rules_audit_log()[0]["editor_name"] == "Pat"

        exported = in_temp_cwd / "out.yaml"
        assert main(["--export-rules", str(exported)]) == 0
        assert yaml.safe_load(exported.read_text()) == small_config

        assert main(["--reset-rules"]) == 0
        assert not get_settings().has_custom_schedule_config()

    def test_rejected_import_keeps_rules(self, in_temp_cwd: Path):
        source = in_temp_cwd / "bad.yaml"
        source.write_text("schedules: nope\nfilename_rules: []\n")
        assert main(["--import-rules", str(source)]) == 1
        assert not get_settings().has_custom_schedule_config()


class TestOverrideCommands:
    """Tests for --override and --remove-override."""

    def test_set_and_remove(self, in_temp_cwd):
        assert main(["--override", "abc123=A_Real_Estate"]) == 0
        assert get_settings().load_review_overrides() == {"abc123": "A_Real_Estate"}
        assert main(["--remove-override", "abc123"]) == 0
        assert get_settings().load_review_overrides() == {}

    def test_malformed_override(self, in_temp_cwd):
        with pytest.raises(SystemExit):
            main(["--override", "no-equals-sign"])


class TestSortCommand:
    """Tests for sorting a folder from the command line."""

    def test_zip_output(self, in_temp_cwd: Path, image_folder: Path, temp_dir: Path, capsys):
        dest = temp_dir / "bundle.zip"
        assert main([str(image_folder), "--zip", str(dest), "--quiet", "--clusters"]) == 0

        with zipfile.ZipFile(dest) as zf:
            names = set(zf.namelist())
        assert "706/A_Real_Estate/Deed_Main_St.png" in names
        assert "706/ReviewNeeded/Unknown/photo.png" in names
        assert "STATE/report.csv" in names

        out = capsys.readouterr().out
        assert "Sorting complete: 2 of 2." in out
        assert "review group" in out

    def test_mirror_reports_only(self, in_temp_cwd: Path, image_folder: Path, temp_dir: Path):
        target = temp_dir / "sorted"
        assert main([str(image_folder), "--output", str(target), "--reports-only", "--quiet"]) == 0
        assert (target / "STATE" / "report.csv").exists()
        assert not (target / "706").exists()

    def test_empty_folder(self, in_temp_cwd: Path, inbox_dir: Path, temp_dir: Path):
        assert main([str(inbox_dir), "--output", str(temp_dir / "sorted"), "--quiet"]) == 1

    def test_folder_required(self, in_temp_cwd):
        with pytest.raises(SystemExit):
            main([])

    def test_zip_and_output_are_exclusive(self, in_temp_cwd, image_folder: Path):
        with pytest.raises(SystemExit):
            main([str(image_folder), "--zip", "a.zip", "--output", "b"])

    def test_cli_thresholds_reach_pipeline(self, in_temp_cwd, image_folder: Path, temp_dir: Path, monkeypatch):
        seen = {}
        real_pipeline = schedule_sorter.SortPipeline

        def capture(*args, **kwargs):
            seen["thresholds"] = kwargs["thresholds"]
            return real_pipeline(*args, **kwargs)

        monkeypatch.setattr(schedule_sorter, "SortPipeline", capture)
        main([str(image_folder), "--zip", str(temp_dir / "b.zip"), "--quiet", "--min-chars", "40"])

        assert seen["thresholds"].min_chars == 40
        assert seen["thresholds"].min_text_items == 30

    def test_yaml_thresholds_are_filtered_and_coerced(self, in_temp_cwd: Path, image_folder: Path,
                                                      temp_dir: Path, monkeypatch, caplog):
        (in_temp_cwd / "config.local.yaml").write_text(yaml.safe_dump({
            "thresholds": {"min_char": 5, "min_text_items": "12"},
        }))
        seen = {}
        real_pipeline = schedule_sorter.SortPipeline

        def capture(*args, **kwargs):
            seen["thresholds"] = kwargs["thresholds"]
            return real_pipeline(*args, **kwargs)

        monkeypatch.setattr(schedule_sorter, "SortPipeline", capture)
        with caplog.at_level("WARNING", logger="schedule_sorter"):
            assert main([str(image_folder), "--zip", str(temp_dir / "b.zip"), "--quiet"]) == 0

        assert seen["thresholds"].min_chars == 250
        assert seen["thresholds"].min_text_items == 12
        assert "unknown threshold in config.yaml: min_char" in caplog.text


class TestThresholdOverrides:
    """Tests for threshold_overrides()."""

    def test_non_integer_value_is_dropped(self, caplog):
        with caplog.at_level("WARNING", logger="schedule_sorter"):
            overrides = schedule_sorter.threshold_overrides({"min_chars": "many", "min_text_items": 7.0})
        assert overrides == {"min_text_items": 7}
        assert "min_chars='many'" in caplog.text

    def test_empty_section(self):
        assert schedule_sorter.threshold_overrides(None) == {}
        assert schedule_sorter.threshold_overrides({"min_chars": None}) == {}
