#!/usr/bin/env python3
"""
Schedule Sorter - sort estate documents into Form 706 schedule folders.

This script takes a folder of PDFs and images and:
1. Hashes every file and sets byte-identical duplicates aside
2. Reads the embedded PDF text layer (no OCR) and scores it against
   weighted keyword lists, after checking filename rules first
3. Routes scanned, empty or ambiguous documents to a review folder
4. Writes the sorted tree plus CSV/JSON reports as a ZIP or a folder

Usage:
    python schedule_sorter.py ./Estate --output ./sorted

Or build a ZIP instead of a folder:
    python schedule_sorter.py ./Estate --zip estate-706-sorted.zip
"""

import argparse
import dataclasses
import logging
import os
import sys
import threading
from pathlib import Path

import yaml
from dotenv import load_dotenv

from classifier import ScannedDetectionThresholds
from document_files import collect_documents
from export import build_bundle_entries, build_report_entries, mirror_to_directory, write_zip
from output_paths import OutputRoots
from review_clusters import cluster_review_files
from schedule_config import ConfigValidationError, validate_schedule_config
from settings import get_settings
from sort_pipeline import RUN_FAILED, CancelToken, SortPipeline, SortProgress

# Load environment variables from .env file (if it exists and is accessible)
try:
    load_dotenv()
except (PermissionError, OSError):
    pass  # .env not accessible


# ==============================================================================
# CONFIGURATION LOADING
# ==============================================================================

def load_config() -> dict:
    """Load configuration from config.yaml, with fallbacks to environment variables.

    Values left as None defer to the persisted user settings.
    """
    config = {
        "paths": {
            "output_dir": os.getenv("SORTER_OUTPUT_DIR"),
            "export_root": None,
            "review_root": None,
        },
        "workers": int(os.getenv("SORTER_WORKERS")) if os.getenv("SORTER_WORKERS", "").isdigit() else None,
        "thresholds": {
            "min_chars": None,
            "min_text_items": None,
        },
        "logging": {
            "level": "INFO",
            "file": "",
        },
    }

    # Try to load from config.yaml
    config_paths = [
        Path.cwd() / "config.local.yaml",  # Local overrides first
        Path.cwd() / "config.yaml",
        Path(__file__).parent / "config.local.yaml",
        Path(__file__).parent / "config.yaml",
    ]

    for config_path in config_paths:
        if config_path.exists():
            try:
                with open(config_path, 'r') as f:
                    yaml_config = yaml.safe_load(f) or {}

                if "paths" in yaml_config:
                    for key, value in yaml_config["paths"].items():
                        if value:
                            # Expand ~ to home directory
                            config["paths"][key] = os.path.expanduser(value) if key == "output_dir" else value

                if "workers" in yaml_config:
                    config["workers"] = yaml_config["workers"]
                if isinstance(yaml_config.get("thresholds"), dict):
                    config["thresholds"].update(yaml_config["thresholds"])
                if "logging" in yaml_config:
                    config["logging"].update(yaml_config["logging"] or {})

                break  # Use first found config
            except (yaml.YAMLError, OSError) as e:
                print(f"Warning: Could not load {config_path}: {e}", file=sys.stderr)

    return config


# ==============================================================================
# LOGGING CONFIGURATION
# ==============================================================================

def setup_logging(level: str = "INFO", log_file: str = "") -> logging.Logger:
    """Configure the schedule_sorter logger; LOG_LEVEL / LOG_FILE win over arguments."""
    log_level = os.getenv("LOG_LEVEL", level).upper()
    log_file = os.getenv("LOG_FILE", log_file)

    # Create logger
    logger = logging.getLogger("schedule_sorter")
    logger.setLevel(getattr(logging, log_level, logging.INFO))

    # Prevent duplicate handlers on reimport
    if logger.handlers:
        return logger

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.DEBUG)
    console_format = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    console_handler.setFormatter(console_format)
    logger.addHandler(console_handler)

    # File handler (if LOG_FILE is set)
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        file_format = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s:%(funcName)s:%(lineno)d - %(message)s"
        )
        file_handler.setFormatter(file_format)
        logger.addHandler(file_handler)

    return logger


logger = logging.getLogger("schedule_sorter")


# ==============================================================================
# RULES MAINTENANCE
# ==============================================================================

def read_rules_file(path: str) -> dict:
    """Read a schedule configuration from YAML (or JSON, which YAML accepts)."""
    with open(path, 'r', encoding='utf-8') as f:
        return yaml.safe_load(f)


def import_rules(path: str, editor: str | None = None) -> int:
    settings = get_settings()
    try:
        settings.save_schedule_config(read_rules_file(path), summary=f"Imported rules from {Path(path).name}",
                                      editor_name=editor)
    except ConfigValidationError as e:
        print("❌ Rules rejected, the current rules stay active:")
        for error in e.errors:
            print(f"   - {error}")
        return 1
    print(f"✅ Imported rules from {path}")
    return 0


def export_rules(path: str) -> int:
    config = get_settings().load_schedule_config()
    with open(path, 'w', encoding='utf-8') as f:
        yaml.safe_dump(config, f, sort_keys=False, allow_unicode=True)
    print(f"💾 Wrote current rules to {path}")
    return 0


def check_rules(path: str) -> int:
    _, errors = validate_schedule_config(read_rules_file(path))
    if errors:
        print(f"❌ {len(errors)} problem(s) in {path}:")
        for error in errors:
            print(f"   - {error}")
        return 1
    print(f"✅ {path} is a valid schedule configuration")
    return 0


# ==============================================================================
# SORTING
# ==============================================================================

def print_progress(progress: SortProgress):
    current = f" - {progress.current}" if progress.current else ""
    print(f"  [{progress.completed}/{progress.total}]{current}", flush=True)


def run_with_interrupt(pipeline: SortPipeline, documents: list, quiet: bool = False):
    """Run the pipeline in a worker thread so Ctrl+C can cancel it cooperatively."""
    token = CancelToken()
    outcome = {}

    def target():
        outcome["result"] = pipeline.run(documents, cancel_token=token,
                                         on_progress=None if quiet else print_progress)

    thread = threading.Thread(target=target, name="sort-pipeline")
    thread.start()
    while thread.is_alive():
        try:
            thread.join(timeout=0.2)
        except KeyboardInterrupt:
            print("\n\n👋 Cancelling - letting in-flight documents finish...")
            token.cancel()
    return outcome.get("result")


def print_summary(result):
    summary = result.summary()
    print(f"\n{'='*50}")
    print(f"📋 {result.status_message}")
    print(f"   Total: {summary['total']}  Duplicates: {summary['duplicates']}  "
          f"Review needed: {summary['review_needed']}")
    for schedule_id, count in summary["by_schedule"].items():
        print(f"   {schedule_id}: {count}")


def print_clusters(result):
    clusters = cluster_review_files(result.files)
    if not clusters:
        return
    print(f"\n🔎 {len(clusters)} review group(s):")
    for cluster in clusters:
        print(f"   [{cluster.label}]")
        for entry in cluster.files:
            print(f"     - {entry.relative_path} ({entry.reason})")


def threshold_overrides(raw) -> dict:
    """Known, integer-valued scanned-PDF thresholds from the config.yaml section."""
    known = {f.name for f in dataclasses.fields(ScannedDetectionThresholds)}
    overrides = {}
    for key, value in (raw or {}).items():
        if value is None:
            continue
        if key not in known:
            logger.warning(f"Ignoring unknown threshold in config.yaml: {key}")
            continue
        try:
            overrides[key] = int(value)
        except (TypeError, ValueError):
            logger.warning(f"Ignoring threshold {key}={value!r}: not an integer")
    return overrides


def sort_folder(args, config: dict) -> int:
    settings = get_settings()
    stored_roots = settings.get_output_roots()
    roots = OutputRoots(
        export_root=config["paths"].get("export_root") or stored_roots.export_root,
        review_root=config["paths"].get("review_root") or stored_roots.review_root,
    )

    thresholds = settings.get_thresholds()
    yaml_thresholds = threshold_overrides(config["thresholds"])
    if yaml_thresholds:
        thresholds = dataclasses.replace(thresholds, **yaml_thresholds)
    if args.min_chars is not None:
        thresholds = dataclasses.replace(thresholds, min_chars=args.min_chars)
    if args.min_text_items is not None:
        thresholds = dataclasses.replace(thresholds, min_text_items=args.min_text_items)

    workers = args.workers or config.get("workers") or settings.workers

    documents = collect_documents(args.folder)
    if not documents:
        print(f"No supported files (PDF/PNG/JPG/TIFF) found in {args.folder}")
        return 1

    print(f"\n📥 Sorting {len(documents)} file(s) from: {args.folder}")
    print(f"⚙️  Workers: {workers}  Scanned-PDF thresholds: chars<{thresholds.min_chars}, "
          f"items<{thresholds.min_text_items}\n")

    pipeline = SortPipeline(store=settings, workers=workers, roots=roots, thresholds=thresholds)
    result = run_with_interrupt(pipeline, documents, quiet=args.quiet)
    if result is None:
        logger.error("Sorting did not produce a result")
        return 2

    print_summary(result)
    if args.clusters:
        print_clusters(result)

    if result.status == RUN_FAILED:
        return 2

    entries = build_report_entries(result) if args.reports_only else build_bundle_entries(result)
    if args.zip:
        write_zip(entries, args.zip)
        print(f"\n📦 ZIP ready: {args.zip}")
    else:
        output = args.output or config["paths"].get("output_dir") or settings.output_dir
        mirror_to_directory(entries, output)
        print(f"\n📤 Written to: {output}")
    return 0


# ==============================================================================
# CLI
# ==============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Sort estate documents into Form 706 schedule folders",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Output layout
=============
  706/<Schedule>/...                 confidently sorted documents
  706/ReviewNeeded/<Candidate>/...   scanned, empty or ambiguous documents
  DUPLICATES/<hash prefix>/...       byte-identical copies
  STATE/report.csv, manifest.json, duplicates.csv, _source_paths/

Examples:
  # Sort a folder into ./sorted
  python schedule_sorter.py ./Estate --output ./sorted

  # Build a ZIP with reports only
  python schedule_sorter.py ./Estate --zip reports.zip --reports-only

  # Show review groups of similar unresolved documents
  python schedule_sorter.py ./Estate --output ./sorted --clusters

  # Manage rules
  python schedule_sorter.py --check-rules my_rules.yaml
  python schedule_sorter.py --import-rules my_rules.yaml --editor "J. Doe"
  python schedule_sorter.py --export-rules current_rules.yaml
  python schedule_sorter.py --reset-rules

  # Manual review overrides (by SHA-256 of the file content)
  python schedule_sorter.py --override 3f2a...=A_Real_Estate
  python schedule_sorter.py --remove-override 3f2a...
        """
    )

    parser.add_argument("folder", nargs="?", help="Folder of PDFs/images to sort")
    parser.add_argument("--output", "-o", help="Folder to write the sorted tree into")
    parser.add_argument("--zip", "-z", help="Write a ZIP bundle instead of a folder")
    parser.add_argument("--reports-only", action="store_true", help="Only write the STATE/ reports")
    parser.add_argument("--workers", "-w", type=int, help="Documents processed concurrently")
    parser.add_argument("--min-chars", type=int, help="Scanned-PDF threshold: minimum sampled characters")
    parser.add_argument("--min-text-items", type=int, help="Scanned-PDF threshold: minimum sampled words")
    parser.add_argument("--clusters", action="store_true", help="Print groups of similar review documents")
    parser.add_argument("--quiet", "-q", action="store_true", help="No per-document progress lines")

    parser.add_argument("--check-rules", metavar="FILE", help="Validate a rules file without saving it")
    parser.add_argument("--import-rules", metavar="FILE", help="Validate and save a rules file")
    parser.add_argument("--export-rules", metavar="FILE", help="Write the active rules as YAML")
    parser.add_argument("--reset-rules", action="store_true", help="Go back to the built-in schedules")
    parser.add_argument("--editor", help="Name recorded in the rules audit log")

    parser.add_argument("--override", metavar="HASH=SCHEDULE", action="append", default=[],
                        help="Always assign files with this content hash to SCHEDULE")
    parser.add_argument("--remove-override", metavar="HASH", action="append", default=[],
                        help="Remove a review override")
    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    config = load_config()
    setup_logging(config["logging"].get("level", "INFO"), config["logging"].get("file", ""))

    if args.workers is not None and args.workers < 1:
        parser.error("--workers must be at least 1")

    settings = get_settings()
    if args.editor:
        settings.rules_editor_name = args.editor

    if args.check_rules:
        return check_rules(args.check_rules)
    if args.import_rules:
        return import_rules(args.import_rules, args.editor)
    if args.export_rules:
        return export_rules(args.export_rules)
    if args.reset_rules:
        settings.reset_schedule_config(args.editor)
        print("✅ Rules reset to the built-in Form 706 schedules")
        return 0

    if args.override or args.remove_override:
        for item in args.override:
            digest, sep, schedule_id = item.partition("=")
            if not sep or not digest or not schedule_id:
                parser.error(f"--override expects HASH=SCHEDULE, got {item!r}")
            settings.set_review_override(digest.strip(), schedule_id.strip())
            print(f"📌 {digest[:10]} -> {schedule_id}")
        for digest in args.remove_override:
            settings.remove_review_override(digest.strip())
            print(f"🗑️  Removed override for {digest[:10]}")
        if not args.folder:
            return 0

    if not args.folder:
        parser.error("a folder to sort is required")
    if args.zip and args.output:
        parser.error("use either --zip or --output, not both")

    return sort_folder(args, config)


if __name__ == "__main__":
    sys.exit(main())
