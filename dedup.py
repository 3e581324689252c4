#!/usr/bin/env python3
"""
Duplicate detection and review overrides.

Within one run, the copy with the lowest source path is the "first-seen"
entry; every later document with the same digest becomes a
duplicate that mirrors the first-seen decision. Review overrides map a
digest to a schedule chosen by a human and survive across runs.
"""

import dataclasses
import logging
import threading
from typing import Optional

from classifier import UNKNOWN, ClassificationResult, SCORE_FLOOR, floor_scores
from output_paths import OutputRoots, assign_output_paths
from schedule_config import CompiledScheduleConfig
from sort_models import DuplicateGroup, ProcessedFile, is_synthetic_digest

logger = logging.getLogger("schedule_sorter.dedup")

REASON_DUPLICATE = "sha256_duplicate"
REASON_REVIEW_OVERRIDE = "review_override"
REASON_OVERRIDE_REMOVED = "override_removed"


class DedupRegistry:
    """Digest -> first-seen map shared by all pipeline workers.

    Documents are numbered in source-path order. A worker publishes the
    digest of its document once hashed, then asks whether it holds the
    first-seen copy. The answer waits until every lower-numbered document
    has been published, so it never depends on which worker hashed first.
    Every dispatched index must be published exactly once, with digest
    None when hashing failed.
    """

    def __init__(self):
        self._cond = threading.Condition()
        self._published: set[int] = set()
        self._watermark = 0  # every index below this has been published
        self._first_index: dict[str, int] = {}
        self._entries: dict[str, ProcessedFile] = {}

    def publish(self, index: int, digest: Optional[str] = None):
        with self._cond:
            if index < self._watermark or index in self._published:
                return
            if digest is not None:
                current = self._first_index.get(digest)
                if current is None or index < current:
                    self._first_index[digest] = index
            self._published.add(index)
            while self._watermark in self._published:
                self._published.discard(self._watermark)
                self._watermark += 1
            self._cond.notify_all()

    def is_first_seen(self, index: int, digest: str) -> bool:
        """True when no lower-numbered document has the same digest."""
        with self._cond:
            self._cond.wait_for(lambda: self._watermark >= index)
            return self._first_index.get(digest) == index

    def record(self, entry: ProcessedFile):
        """Store the finished first-seen entry for its digest."""
        with self._cond:
            self._entries[entry.digest] = entry

    def first_seen(self, digest: str) -> Optional[ProcessedFile]:
        with self._cond:
            return self._entries.get(digest)

    def __len__(self) -> int:
        with self._cond:
            return len(self._first_index)


# ==============================================================================
# OVERRIDES
# ==============================================================================

def override_target(overrides: dict, digest: str, config: CompiledScheduleConfig) -> Optional[str]:
    """Schedule an override points this digest at, if it names a known schedule."""
    target = overrides.get(digest)
    if not target:
        return None
    if target not in config.schedule_ids:
        logger.warning(f"Ignoring override for {digest[:10]}: unknown schedule {target!r}")
        return None
    return target


def override_classification(config: CompiledScheduleConfig, schedule_id: str) -> ClassificationResult:
    return ClassificationResult(
        decision="assigned",
        schedule=schedule_id,
        reason=REASON_REVIEW_OVERRIDE,
        score=SCORE_FLOOR,
        scores=floor_scores(config, schedule_id),
    )


def with_result(entry: ProcessedFile, result: ClassificationResult, override_applied: bool) -> ProcessedFile:
    """New entry carrying `result` as its decision in effect."""
    return dataclasses.replace(
        entry,
        decision=result.decision,
        schedule=result.schedule,
        candidate=result.candidate,
        reason=result.reason,
        score=result.score,
        scores=dict(result.scores),
        override_applied=override_applied,
    )


def mirror_first_seen(duplicate: ProcessedFile, first: Optional[ProcessedFile]) -> ProcessedFile:
    """Copy the first-seen decision fields onto a duplicate, keeping its identity."""
    if first is None:
        return dataclasses.replace(duplicate, decision="duplicate", reason=REASON_DUPLICATE)
    return dataclasses.replace(
        duplicate,
        decision="duplicate",
        reason=REASON_DUPLICATE,
        schedule=first.schedule,
        candidate=first.candidate,
        score=first.score,
        scores=dict(first.scores),
        override_applied=first.override_applied,
    )


def settle_duplicates(files: list[ProcessedFile]) -> list[ProcessedFile]:
    """Re-point every duplicate at the current decision of its first-seen entry."""
    primaries = {f.digest: f for f in files if not f.is_duplicate}
    return [mirror_first_seen(f, primaries.get(f.digest)) if f.is_duplicate else f for f in files]


def apply_review_overrides(
    files: list[ProcessedFile],
    overrides: dict,
    config: CompiledScheduleConfig,
) -> list[ProcessedFile]:
    """Recompute the decision in effect for every entry under an override map.

    The automated decision of each entry is left untouched; overrides are
    layered on top of it, and removing one restores it.
    """
    updated = []
    for entry in files:
        if entry.is_duplicate:
            updated.append(entry)
            continue

        target = override_target(overrides, entry.digest, config)
        if target:
            updated.append(with_result(entry, override_classification(config, target), True))
        elif entry.override_applied:
            if entry.automated is not None:
                updated.append(with_result(entry, entry.automated, False))
            else:
                # Short-circuited by the override, so there is no automated
                # decision to fall back on until the next full run.
                updated.append(with_result(entry, ClassificationResult(
                    decision="review",
                    candidate=UNKNOWN,
                    reason=REASON_OVERRIDE_REMOVED,
                    score=0,
                    scores={schedule_id: 0 for schedule_id in config.schedule_ids},
                ), False))
        else:
            updated.append(entry)

    return settle_duplicates(updated)


def rederive_files(
    files: list[ProcessedFile],
    overrides: dict,
    config: CompiledScheduleConfig,
    roots: Optional[OutputRoots] = None,
) -> list[ProcessedFile]:
    """Apply an updated override map, then redo the full output path pass."""
    return assign_output_paths(apply_review_overrides(files, overrides, config), roots)


# ==============================================================================
# DUPLICATE GROUPS
# ==============================================================================

def duplicate_groups(files: list[ProcessedFile]) -> list[DuplicateGroup]:
    """Groups of two or more files sharing a digest, ordered by digest."""
    by_digest: dict[str, list[ProcessedFile]] = {}
    for f in files:
        if is_synthetic_digest(f.digest):
            continue
        by_digest.setdefault(f.digest, []).append(f)

    groups = []
    for digest in sorted(by_digest):
        members = sorted(by_digest[digest], key=lambda f: f.relative_path)
        if len(members) < 2:
            continue
        groups.append(DuplicateGroup(
            digest=digest,
            count=len(members),
            source_paths=tuple(f.relative_path for f in members),
            retained=members[0].name,
            duplicates=tuple(f.name for f in members[1:]),
        ))
    return groups
