#!/usr/bin/env python3
"""
Classifier - assign one document to a schedule or route it to review.

The decision is made in a fixed order, each step short-circuiting the rest:

1. filename rule match   -> assigned, reason "filename_rule"
2. likely scanned PDF    -> review,   reason "likely_scanned_pdf: ..."
3. no extracted text     -> review,   reason "no_text_or_filename_rule"
4. keyword scoring       -> assigned ("keyword_score") or review ("low_confidence")

classify_document() is pure: no I/O, no exceptions for missing text,
missing matches or an empty schedule list.
"""

from dataclasses import dataclass, field
from typing import Optional

from schedule_config import CompiledScheduleConfig, CategoryDefinition
from text_normalize import count_term_occurrences, normalize_text

SCORE_FLOOR = 18
LOW_CONFIDENCE_MARGIN = 6

DEFAULT_MIN_CHARS = 250
DEFAULT_MIN_TEXT_ITEMS = 30

UNKNOWN = "Unknown"

# Reason codes
REASON_FILENAME_RULE = "filename_rule"
REASON_KEYWORD_SCORE = "keyword_score"
REASON_LOW_CONFIDENCE = "low_confidence"
REASON_NO_TEXT = "no_text_or_filename_rule"
REASON_LIKELY_SCANNED = "likely_scanned_pdf"


@dataclass(frozen=True)
class PdfScanMetrics:
    chars: int
    text_items: int
    pages_sampled: int


@dataclass(frozen=True)
class ScannedDetectionThresholds:
    min_chars: int = DEFAULT_MIN_CHARS
    min_text_items: int = DEFAULT_MIN_TEXT_ITEMS


@dataclass(frozen=True)
class ClassificationResult:
    """Outcome of one classification call.

    scores always holds one entry per configured schedule, in declaration
    order. schedule is set only for "assigned"; candidate only for "review".
    """

    decision: str
    reason: str
    score: float
    scores: dict = field(default_factory=dict)
    schedule: Optional[str] = None
    candidate: Optional[str] = None


def apply_filename_rules(normalized_filename: str, config: CompiledScheduleConfig) -> Optional[str]:
    """Return the target of the first matching filename rule, or None."""
    for rule in config.filename_rules:
        if rule.pattern.search(normalized_filename):
            return rule.schedule
    return None


def score_schedule(text: str, schedule: CategoryDefinition) -> float:
    score = 0
    for keyword in schedule.keywords:
        score += count_term_occurrences(text, keyword.term) * keyword.weight
    for term in schedule.small_terms:
        score += count_term_occurrences(text, term.term) * term.weight
    return score


def floor_scores(config: CompiledScheduleConfig, schedule_id: str) -> dict:
    """Score vector with the floor on one schedule and zero everywhere else."""
    return {s.id: (SCORE_FLOOR if s.id == schedule_id else 0) for s in config.schedules}


def zero_scores(config: CompiledScheduleConfig) -> dict:
    return {s.id: 0 for s in config.schedules}


def classify_document(
    filename: str,
    text: str,
    is_pdf: bool,
    config: CompiledScheduleConfig,
    pdf_metrics: Optional[PdfScanMetrics] = None,
    thresholds: Optional[ScannedDetectionThresholds] = None,
) -> ClassificationResult:
    """Classify a single document from its filename, text and scan metrics."""
    if thresholds is None:
        thresholds = ScannedDetectionThresholds()

    matched = apply_filename_rules(normalize_text(filename), config)
    if matched:
        return ClassificationResult(
            decision="assigned",
            schedule=matched,
            reason=REASON_FILENAME_RULE,
            score=SCORE_FLOOR,
            scores=floor_scores(config, matched),
        )

    # Scanned check must run before scoring so OCR-worthy PDFs are never
    # scored on stray fragments of a text layer.
    if is_pdf and pdf_metrics is not None and pdf_metrics.pages_sampled > 0:
        low_chars = pdf_metrics.chars < thresholds.min_chars
        low_items = pdf_metrics.text_items < thresholds.min_text_items
        if low_chars or low_items:
            return ClassificationResult(
                decision="review",
                candidate=UNKNOWN,
                reason=(
                    f"{REASON_LIKELY_SCANNED}: low_text_layer "
                    f"(chars={pdf_metrics.chars}, textItems={pdf_metrics.text_items}, "
                    f"sampled={pdf_metrics.pages_sampled})"
                ),
                score=0,
                scores=zero_scores(config),
            )

    if not text or not text.strip():
        return ClassificationResult(
            decision="review",
            candidate=UNKNOWN,
            reason=REASON_NO_TEXT,
            score=0,
            scores=zero_scores(config),
        )

    scores = {schedule.id: score_schedule(text, schedule) for schedule in config.schedules}

    # sorted() is stable, so tied scores keep declaration order
    ranked = sorted(scores.items(), key=lambda item: item[1], reverse=True)
    best_id, best_score = ranked[0] if ranked else (None, 0)
    runner_up = ranked[1][1] if len(ranked) > 1 else 0
    margin = best_score - runner_up

    if best_score < SCORE_FLOOR or margin < LOW_CONFIDENCE_MARGIN:
        return ClassificationResult(
            decision="review",
            candidate=best_id or UNKNOWN,
            reason=REASON_LOW_CONFIDENCE,
            score=best_score,
            scores=scores,
        )

    return ClassificationResult(
        decision="assigned",
        schedule=best_id,
        reason=REASON_KEYWORD_SCORE,
        score=best_score,
        scores=scores,
    )
