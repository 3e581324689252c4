"""
Records produced by a sorting run.
"""

import hashlib
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Optional

from classifier import ClassificationResult, PdfScanMetrics

DIGEST_PREFIX_LENGTH = 10
SYNTHETIC_DIGEST_PREFIX = "error-"


def get_digest_prefix(digest: str) -> str:
    return digest[:DIGEST_PREFIX_LENGTH]


def synthetic_digest(relative_path: str) -> str:
    """Stand-in identity for a document whose content could not be hashed."""
    path_hash = hashlib.sha256(relative_path.encode("utf-8")).hexdigest()[:16]
    return f"{SYNTHETIC_DIGEST_PREFIX}{path_hash}"


def is_synthetic_digest(digest: str) -> bool:
    return digest.startswith(SYNTHETIC_DIGEST_PREFIX)


@dataclass
class ProcessedFile:
    """One input document after the pipeline has handled it.

    digest and the automated classification (kept in `automated`) never
    change once computed. decision/schedule/candidate/reason/score/scores
    describe the decision currently in effect, which a review override may
    superimpose; output_path is recomputed by each assignment pass.
    """

    name: str
    relative_path: str
    size: int
    media_type: str
    digest: str
    digest_prefix: str
    decision: str
    reason: str
    score: float = 0
    scores: dict = field(default_factory=dict)
    schedule: Optional[str] = None
    candidate: Optional[str] = None
    scan_metrics: Optional[PdfScanMetrics] = None
    text_sample: str = ""
    output_path: str = ""
    override_applied: bool = False
    failed: bool = False
    automated: Optional[ClassificationResult] = None
    source_path: Optional[Path] = None

    @property
    def is_duplicate(self) -> bool:
        return self.decision == "duplicate"

    def to_manifest_dict(self) -> dict:
        """JSON-safe view used by manifest.json (no file handle, no text sample)."""
        return {
            "name": self.name,
            "relative_path": self.relative_path,
            "size": self.size,
            "media_type": self.media_type,
            "hash": self.digest,
            "hash_prefix": self.digest_prefix,
            "decision": self.decision,
            "schedule": self.schedule,
            "candidate": self.candidate,
            "reason": self.reason,
            "score": self.score,
            "scores": dict(self.scores),
            "scan_metrics": asdict(self.scan_metrics) if self.scan_metrics else None,
            "output_path": self.output_path,
            "override_applied": self.override_applied,
        }


@dataclass(frozen=True)
class DuplicateGroup:
    """Read-only view over files sharing one digest."""

    digest: str
    count: int
    source_paths: tuple[str, ...]
    retained: str
    duplicates: tuple[str, ...]


def summarize_files(files: list[ProcessedFile], schedule_ids: list[str]) -> dict:
    """Totals for a run: counts by decision plus assigned count per schedule."""
    by_schedule = {schedule_id: 0 for schedule_id in schedule_ids}
    for f in files:
        if f.decision == "assigned" and f.schedule in by_schedule:
            by_schedule[f.schedule] += 1
    return {
        "total": len(files),
        "duplicates": sum(1 for f in files if f.decision == "duplicate"),
        "review_needed": sum(1 for f in files if f.decision == "review"),
        "by_schedule": by_schedule,
    }
