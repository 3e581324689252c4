"""
Embedded text extraction for PDFs (no OCR).

Only the first few pages are sampled and the collected text is capped, so
one huge document cannot dominate a run. Each step (opening the file,
reading a page) runs on its own thread with a deadline; overrunning it
raises PdfExtractionError just like a corrupt file does, and the stalled
thread is left to finish in the background.
"""

import logging
import threading
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

import pdfplumber

logger = logging.getLogger("schedule_sorter.pdf_text")

MAX_PAGES_SAMPLED = 6
MAX_TEXT_CHARS = 5000
LOAD_TIMEOUT_S = 30.0
PAGE_TIMEOUT_S = 15.0


class PdfExtractionError(Exception):
    """The PDF could not be parsed, or a parsing step ran past its deadline."""


@dataclass(frozen=True)
class PdfTextResult:
    text: str
    num_pages: int
    pages_sampled: int
    chars: int
    text_items: int


def _start_step(fn: Callable, label: str) -> Future:
    future = Future()

    def runner():
        if not future.set_running_or_notify_cancel():
            return
        try:
            future.set_result(fn())
        except BaseException as e:
            future.set_exception(e)

    threading.Thread(target=runner, name=f"pdf-step-{label}", daemon=True).start()
    return future


def _wait_step(future: Future, limit: float, label: str):
    """Result of a step started with _start_step, or PdfExtractionError once `limit` passes."""
    try:
        return future.result(timeout=limit)
    except FutureTimeoutError:
        raise PdfExtractionError(f"{label} timed out after {int(limit * 1000)}ms") from None


def _close_when_loaded(future: Future):
    # a load that finishes after its deadline still owns an open file
    def close(done: Future):
        if done.exception() is None:
            done.result()[0].close()

    future.add_done_callback(close)


def _load(file_path):
    pdf = pdfplumber.open(file_path)
    try:
        return pdf, len(pdf.pages)
    except Exception:
        pdf.close()
        raise


def extract_pdf_text(
    file_path: str | Path,
    max_pages: int = MAX_PAGES_SAMPLED,
    max_chars: int = MAX_TEXT_CHARS,
) -> PdfTextResult:
    """Sample the text layer of a PDF.

    text_items counts the words pdfplumber finds on the sampled pages, which
    is what the scanned-document check compares against its minimum.
    """
    loading = _start_step(lambda: _load(file_path), "load")
    try:
        pdf, num_pages = _wait_step(loading, LOAD_TIMEOUT_S, "PDF load")
    except PdfExtractionError:
        _close_when_loaded(loading)
        raise
    except Exception as e:
        raise PdfExtractionError(str(e) or type(e).__name__) from e

    text = ""
    text_items = 0
    pages_sampled = 0
    try:
        for index, page in enumerate(pdf.pages[:max_pages]):
            reading = _start_step(page.extract_words, f"page{index + 1}")
            try:
                words = _wait_step(reading, PAGE_TIMEOUT_S, f"PDF page({index + 1})")
            except PdfExtractionError:
                raise
            except Exception as e:
                raise PdfExtractionError(f"page {index + 1}: {e}") from e

            pages_sampled += 1
            text_items += len(words)
            text += " ".join(w["text"] for w in words if w.get("text")) + "\n"
            if len(text) >= max_chars:
                break
    finally:
        pdf.close()

    logger.debug(f"Sampled {pages_sampled}/{num_pages} pages of {Path(file_path).name}: "
                 f"{len(text)} chars, {text_items} items")
    return PdfTextResult(
        text=text,
        num_pages=num_pages,
        pages_sampled=pages_sampled,
        chars=len(text),
        text_items=text_items,
    )
