#!/usr/bin/env python3
"""
Sort Pipeline - run hashing, dedup, extraction and classification over a
document set with a fixed number of concurrent workers.

Per document:
    queued -> hashing -> duplicate check
           -> [duplicate | override-assigned]            (short-circuit)
           -> text extraction (PDFs only) -> classifying -> done

Any failure along the way turns into a review entry with candidate
"Unknown"; only a collaborator that is unavailable altogether ends the run
early (status "failed"). Cancellation is cooperative: it is checked before
each document starts, and documents already in flight are finished.

Usage:
    pipeline = SortPipeline(store=get_settings(), workers=4)
    token = CancelToken()
    result = pipeline.run(collect_documents("~/Estate"), cancel_token=token)
"""

import dataclasses
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Optional

from classifier import (
    UNKNOWN,
    ClassificationResult,
    PdfScanMetrics,
    ScannedDetectionThresholds,
    classify_document,
)
from dedup import (
    REASON_DUPLICATE,
    DedupRegistry,
    override_classification,
    override_target,
    rederive_files,
    settle_duplicates,
    with_result,
)
from document_files import SelectedDocument, detect_media_type, get_file_hash, is_pdf_file
from output_paths import OutputRoots, assign_output_paths
from pdf_text import extract_pdf_text
from schedule_config import CompiledScheduleConfig, compile_schedule_config, get_default_config
from sort_models import ProcessedFile, get_digest_prefix, summarize_files, synthetic_digest

logger = logging.getLogger("schedule_sorter.pipeline")

DEFAULT_WORKERS = 4
TEXT_SAMPLE_CHARS = 1500

RUN_COMPLETED = "completed"
RUN_CANCELLED = "cancelled"
RUN_FAILED = "failed"


class CollaboratorUnavailableError(Exception):
    """A hashing or extraction backend cannot work at all; the run stops."""


class CancelToken:
    """Cooperative cancellation flag handed to every worker."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass(frozen=True)
class SortProgress:
    completed: int
    total: int
    current: Optional[str]


class ProgressTracker:
    """Thread-safe completed counter plus the set of documents in flight.

    The callback runs while the lock is held, so listeners see completed
    counts in order.
    """

    def __init__(self, total: int, callback: Optional[Callable[[SortProgress], None]] = None):
        self._lock = threading.RLock()
        self._total = total
        self._completed = 0
        self._in_flight: list[str] = []
        self._callback = callback

    def _snapshot(self) -> SortProgress:
        current = self._in_flight[-1] if self._in_flight else None
        return SortProgress(completed=self._completed, total=self._total, current=current)

    def started(self, name: str):
        with self._lock:
            self._in_flight.append(name)
            self._notify(self._snapshot())

    def finished(self, name: str):
        with self._lock:
            self._in_flight.remove(name)
            self._completed += 1
            self._notify(self._snapshot())

    def abandoned(self, name: str):
        with self._lock:
            self._in_flight.remove(name)

    def snapshot(self) -> SortProgress:
        with self._lock:
            return self._snapshot()

    def _notify(self, snapshot: SortProgress):
        if self._callback:
            self._callback(snapshot)


@dataclass(frozen=True)
class RunInputs:
    """Everything a run reads from persistent state, captured once at start."""

    config: dict = field(default_factory=get_default_config)
    overrides: dict = field(default_factory=dict)
    thresholds: ScannedDetectionThresholds = field(default_factory=ScannedDetectionThresholds)


@dataclass
class RunResult:
    status: str
    files: list[ProcessedFile]
    total: int
    completed: int
    inputs: RunInputs
    roots: OutputRoots
    error: Optional[str] = None

    @property
    def compiled_config(self) -> CompiledScheduleConfig:
        return compile_schedule_config(self.inputs.config)

    @property
    def status_message(self) -> str:
        if self.status == RUN_CANCELLED:
            return f"Cancelled at {self.completed} of {self.total}."
        if self.status == RUN_FAILED:
            return f"Run failed after {self.completed} of {self.total}: {self.error}"
        return f"Sorting complete: {self.completed} of {self.total}."

    def summary(self) -> dict:
        return summarize_files(self.files, self.compiled_config.schedule_ids)

    def review_files(self) -> list[ProcessedFile]:
        return [f for f in self.files if f.decision == "review"]


def error_result(config: CompiledScheduleConfig, reason: str) -> ClassificationResult:
    return ClassificationResult(
        decision="review",
        candidate=UNKNOWN,
        reason=reason,
        score=0,
        scores={schedule_id: 0 for schedule_id in config.schedule_ids},
    )


# ==============================================================================
# PIPELINE
# ==============================================================================

class SortPipeline:
    """Bounded worker pool over a document set.

    The persistence port (`store`) must provide snapshot() -> RunInputs; it
    is read once per run, so edits made while a run is in flight apply to
    the next run only. Collaborators default to the local implementations
    and can be swapped for tests.
    """

    def __init__(
        self,
        store=None,
        workers: int = DEFAULT_WORKERS,
        roots: Optional[OutputRoots] = None,
        hasher: Callable = get_file_hash,
        extractor: Callable = extract_pdf_text,
        media_typer: Callable = detect_media_type,
        thresholds: Optional[ScannedDetectionThresholds] = None,
    ):
        if workers < 1:
            raise ValueError("workers must be at least 1")
        self.store = store
        self.workers = workers
        self.roots = roots or OutputRoots()
        self.hasher = hasher
        self.extractor = extractor
        self.media_typer = media_typer
        self.thresholds = thresholds

    def read_inputs(self) -> RunInputs:
        inputs = self.store.snapshot() if self.store is not None else RunInputs()
        if self.thresholds is not None:
            inputs = dataclasses.replace(inputs, thresholds=self.thresholds)
        return inputs

    def run(
        self,
        documents: list[SelectedDocument],
        cancel_token: Optional[CancelToken] = None,
        on_progress: Optional[Callable[[SortProgress], None]] = None,
    ) -> RunResult:
        """Process every document and return the (possibly partial) result set."""
        cancel_token = cancel_token or CancelToken()
        inputs = self.read_inputs()
        config = compile_schedule_config(inputs.config)

        queue = sorted(documents, key=lambda d: d.relative_path)
        total = len(queue)
        results: list[Optional[ProcessedFile]] = [None] * total
        registry = DedupRegistry()
        progress = ProgressTracker(total, on_progress)

        dispatch_lock = threading.Lock()
        next_index = 0
        failure: list[str] = []
        stop = threading.Event()

        logger.info(f"Sorting {total} document(s) with {self.workers} worker(s)")

        def worker():
            nonlocal next_index
            while True:
                if cancel_token.cancelled or stop.is_set():
                    return
                with dispatch_lock:
                    if next_index >= total:
                        return
                    index = next_index
                    next_index += 1
                doc = queue[index]

                try:
                    progress.started(doc.relative_path)
                    try:
                        results[index] = self.process_document(index, doc, inputs, config, registry)
                    except CollaboratorUnavailableError as e:
                        logger.error(f"Collaborator unavailable while processing {doc.relative_path}: {e}")
                        with dispatch_lock:
                            failure.append(str(e))
                        stop.set()
                        progress.abandoned(doc.relative_path)
                        return
                    progress.finished(doc.relative_path)
                finally:
                    # later indices may be waiting on this one
                    registry.publish(index)

        pool_size = max(1, min(self.workers, total))
        with ThreadPoolExecutor(max_workers=pool_size) as executor:
            futures = [executor.submit(worker) for _ in range(pool_size)]
            for future in futures:
                future.result()

        files = [entry for entry in results if entry is not None]
        files = assign_output_paths(settle_duplicates(files), self.roots)
        completed = progress.snapshot().completed

        if failure:
            status, error = RUN_FAILED, failure[0]
        elif cancel_token.cancelled and completed < total:
            status, error = RUN_CANCELLED, None
        else:
            status, error = RUN_COMPLETED, None

        result = RunResult(
            status=status,
            files=files,
            total=total,
            completed=completed,
            inputs=inputs,
            roots=self.roots,
            error=error,
        )
        logger.info(result.status_message)
        return result

    def process_document(
        self,
        index: int,
        doc: SelectedDocument,
        inputs: RunInputs,
        config: CompiledScheduleConfig,
        registry: DedupRegistry,
    ) -> ProcessedFile:
        """Run one document through hashing, dedup and classification."""
        try:
            size = doc.source_path.stat().st_size
            media_type = self.media_typer(doc.source_path)
            digest = self.hasher(doc.source_path)
        except CollaboratorUnavailableError:
            raise
        except Exception as e:
            logger.warning(f"Could not process {doc.relative_path}: {e}")
            digest = synthetic_digest(doc.relative_path)
            entry = ProcessedFile(
                name=doc.name,
                relative_path=doc.relative_path,
                size=0,
                media_type="application/octet-stream",
                digest=digest,
                digest_prefix=get_digest_prefix(digest),
                decision="review",
                reason="",
                failed=True,
                source_path=doc.source_path,
            )
            result = error_result(config, f"processing_error:{e}")
            return dataclasses.replace(with_result(entry, result, False), automated=result)

        entry = ProcessedFile(
            name=doc.name,
            relative_path=doc.relative_path,
            size=size,
            media_type=media_type,
            digest=digest,
            digest_prefix=get_digest_prefix(digest),
            decision="review",
            reason="",
            source_path=doc.source_path,
        )

        registry.publish(index, digest)
        if not registry.is_first_seen(index, digest):
            logger.debug(f"{doc.relative_path}: duplicate of {entry.digest_prefix}")
            # decision fields are copied from the first-seen entry once all workers finish
            return dataclasses.replace(entry, decision="duplicate", reason=REASON_DUPLICATE)

        target = override_target(inputs.overrides, digest, config)
        if target:
            entry = with_result(entry, override_classification(config, target), True)
            registry.record(entry)
            logger.debug(f"{doc.relative_path}: review override -> {target}")
            return entry

        entry = self.classify_entry(doc, entry, inputs, config)
        registry.record(entry)
        return entry

    def classify_entry(
        self,
        doc: SelectedDocument,
        entry: ProcessedFile,
        inputs: RunInputs,
        config: CompiledScheduleConfig,
    ) -> ProcessedFile:
        text = ""
        metrics = None
        failed = False
        pdf = is_pdf_file(doc.name)

        try:
            if pdf:
                try:
                    extracted = self.extractor(doc.source_path)
                except CollaboratorUnavailableError:
                    raise
                except Exception as e:
                    logger.warning(f"Text extraction failed for {doc.relative_path}: {e}")
                    result = error_result(config, f"pdf_parse_error:{e}")
                    failed = True
                else:
                    text = extracted.text
                    metrics = PdfScanMetrics(
                        chars=extracted.chars,
                        text_items=extracted.text_items,
                        pages_sampled=extracted.pages_sampled,
                    )
            if not failed:
                result = classify_document(
                    filename=doc.name,
                    text=text,
                    is_pdf=pdf,
                    config=config,
                    pdf_metrics=metrics,
                    thresholds=inputs.thresholds,
                )
        except CollaboratorUnavailableError:
            raise
        except Exception as e:
            logger.warning(f"Could not classify {doc.relative_path}: {e}")
            result = error_result(config, f"processing_error:{e}")
            failed = True

        logger.debug(f"{doc.relative_path}: {result.decision} ({result.reason}, score={result.score})")
        return dataclasses.replace(
            with_result(entry, result, False),
            automated=result,
            scan_metrics=metrics,
            text_sample=text[:TEXT_SAMPLE_CHARS] if result.decision == "review" else "",
            failed=failed,
        )


def rederive_run(result: RunResult, overrides: dict) -> RunResult:
    """Re-apply an updated override map to a finished run and reassign paths."""
    files = rederive_files(result.files, overrides, result.compiled_config, result.roots)
    inputs = dataclasses.replace(result.inputs, overrides=dict(overrides))
    return dataclasses.replace(result, files=files, inputs=inputs)
