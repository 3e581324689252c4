#!/usr/bin/env python3
"""
Export - reports and bundles for a finished sorting run.

A bundle is a flat list of ExportEntry (relative path + content). The same
list can be written as a ZIP archive or mirrored onto a local folder:

    <export root>/<schedule>/...           sorted documents
    <review root>/<candidate>/...          documents needing review
    DUPLICATES/<hash prefix>/...           byte-identical copies
    STATE/report.csv                       one row per document
    STATE/manifest.json                    full results + config + thresholds
    STATE/duplicates.csv                   duplicate groups
    STATE/_source_paths/<hash prefix>.txt  original locations per digest
"""

import csv
import dataclasses
import io
import json
import logging
import shutil
import zipfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

from dedup import duplicate_groups
from sort_models import DuplicateGroup, ProcessedFile
from sort_pipeline import RunResult

logger = logging.getLogger("schedule_sorter.export")

STATE_DIR = "STATE"

REPORT_COLUMNS = [
    "name",
    "relative_path",
    "output_path",
    "decision",
    "schedule",
    "candidate",
    "reason",
    "score",
    "hash",
    "override_applied",
]


@dataclass(frozen=True)
class ExportEntry:
    """One file in a bundle: inline content, or a source file to copy."""

    path: str
    content: Optional[bytes] = None
    source: Optional[Path] = None

    @classmethod
    def text(cls, path: str, value: str) -> "ExportEntry":
        return cls(path=path, content=value.encode("utf-8"))


def _to_csv(rows: list[list]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    for row in rows:
        writer.writerow(["" if value is None else value for value in row])
    return buffer.getvalue()


# ==============================================================================
# REPORTS
# ==============================================================================

def build_report_csv(files: list[ProcessedFile]) -> str:
    rows = [REPORT_COLUMNS]
    for f in files:
        rows.append([
            f.name,
            f.relative_path,
            f.output_path,
            f.decision,
            f.schedule,
            f.candidate,
            f.reason,
            f.score,
            f.digest,
            "yes" if f.override_applied else "no",
        ])
    return _to_csv(rows)


def build_duplicates_csv(groups: list[DuplicateGroup]) -> str:
    rows = [["hash", "count", "retained", "duplicates", "source_paths"]]
    for group in groups:
        rows.append([
            group.digest,
            group.count,
            group.retained,
            "; ".join(group.duplicates),
            "; ".join(group.source_paths),
        ])
    return _to_csv(rows)


def build_manifest(result: RunResult, generated_at: Optional[datetime] = None) -> str:
    """Full result set plus the configuration and thresholds it was produced with."""
    generated_at = generated_at or datetime.now()
    manifest = {
        "generated_at": generated_at.isoformat(),
        "status": result.status,
        "completed": result.completed,
        "total": result.total,
        "totals": result.summary(),
        "config": result.inputs.config,
        "thresholds": dataclasses.asdict(result.inputs.thresholds),
        "roots": dataclasses.asdict(result.roots),
        "files": [f.to_manifest_dict() for f in result.files],
    }
    return json.dumps(manifest, indent=2, ensure_ascii=False)


def source_paths_by_prefix(files: list[ProcessedFile]) -> dict[str, list[str]]:
    paths: dict[str, list[str]] = {}
    for f in files:
        paths.setdefault(f.digest_prefix, []).append(f.relative_path)
    return paths


def build_report_entries(result: RunResult) -> list[ExportEntry]:
    """Report artifacts only, without the documents themselves."""
    entries = [
        ExportEntry.text(f"{STATE_DIR}/report.csv", build_report_csv(result.files)),
        ExportEntry.text(f"{STATE_DIR}/manifest.json", build_manifest(result)),
        ExportEntry.text(f"{STATE_DIR}/duplicates.csv", build_duplicates_csv(duplicate_groups(result.files))),
    ]
    for prefix, paths in source_paths_by_prefix(result.files).items():
        entries.append(ExportEntry.text(f"{STATE_DIR}/_source_paths/{prefix}.txt", "\n".join(paths) + "\n"))
    return entries


def build_bundle_entries(result: RunResult) -> list[ExportEntry]:
    """Every document at its output path, followed by the reports."""
    entries = []
    for f in result.files:
        if f.source_path is None:
            logger.warning(f"No source file for {f.relative_path}, leaving it out of the bundle")
            continue
        entries.append(ExportEntry(path=f.output_path, source=f.source_path))
    return entries + build_report_entries(result)


# ==============================================================================
# WRITERS
# ==============================================================================

def write_zip(entries: list[ExportEntry], dest: str | Path) -> Path:
    """Write a bundle as a single ZIP archive."""
    dest = Path(dest)
    dest.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(dest, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for entry in entries:
            if entry.source is not None:
                zf.write(entry.source, arcname=entry.path)
            else:
                zf.writestr(entry.path, entry.content or b"")
    logger.info(f"Wrote {len(entries)} entries to {dest}")
    return dest


def _safe_target(root: Path, relative: str) -> Path:
    target = (root / relative).resolve()
    if not target.is_relative_to(root):
        raise ValueError(f"Export path escapes the target folder: {relative}")
    return target


def mirror_to_directory(entries: list[ExportEntry], root: str | Path) -> list[Path]:
    """Write a bundle onto a folder tree, creating folders as needed."""
    root = Path(root).expanduser().resolve()
    root.mkdir(parents=True, exist_ok=True)

    written = []
    for entry in entries:
        target = _safe_target(root, entry.path)
        target.parent.mkdir(parents=True, exist_ok=True)
        if entry.source is not None:
            shutil.copy2(entry.source, target)
        else:
            target.write_bytes(entry.content or b"")
        written.append(target)

    logger.info(f"Mirrored {len(written)} entries into {root}")
    return written
