"""
Pytest configuration and shared fixtures for Schedule Sorter tests.
"""

import os
import sys
import tempfile
from pathlib import Path
from typing import Generator

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from pdf_text import PdfTextResult
from schedule_config import compile_schedule_config
from sort_pipeline import RunInputs


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def inbox_dir(temp_dir: Path) -> Path:
    """Create a temporary estate folder to select documents from."""
    inbox = temp_dir / "Estate"
    inbox.mkdir()
    return inbox


@pytest.fixture
def small_config() -> dict:
    """Two-schedule editable config with one filename rule."""
    return {
        "schedules": [
            {
                "id": "A_Real_Estate",
                "label": "Schedule A - Real Estate",
                "keywords": [{"term": "deed", "weight": 8}, {"term": "parcel", "weight": 5}],
                "small_terms": [{"term": "acre", "weight": 2}],
            },
            {
                "id": "B_Stocks_Bonds",
                "label": "Schedule B - Stocks and Bonds",
                "keywords": [{"term": "cusip", "weight": 8}, {"term": "dividend", "weight": 4}],
                "small_terms": [{"term": "ticker", "weight": 2}],
            },
        ],
        "filename_rules": [
            {"pattern": r"\bdeed\b", "schedule": "A_Real_Estate"},
        ],
    }


@pytest.fixture
def compiled_config(small_config: dict):
    return compile_schedule_config(small_config)


@pytest.fixture
def sample_text_brokerage() -> str:
    """Text layer of a brokerage statement; scores clearly for Schedule B."""
    return """
    QUARTERLY BROKERAGE STATEMENT
    Account holder: Estate of J. Doe

    Holdings
    CUSIP 037833100  Apple Inc  ticker AAPL  120 shares
    CUSIP 594918104  Microsoft  ticker MSFT   80 shares

    Dividend income this period: $412.18
    Reinvested dividend: $120.00
    """


@pytest.fixture
def sample_image_path(inbox_dir: Path) -> Path:
    """Create a minimal test image file."""
    from PIL import Image

    img_path = inbox_dir / "scan_page.png"
    # Create a simple 100x100 white image
    img = Image.new('RGB', (100, 100), color='white')
    img.save(img_path)
    return img_path


class FakeStore:
    """In-memory persistence port: just enough for SortPipeline.read_inputs()."""

    def __init__(self, config: dict, overrides: dict | None = None):
        self.config = config
        self.overrides = dict(overrides or {})
        self.snapshots = 0

    def snapshot(self) -> RunInputs:
        self.snapshots += 1
        return RunInputs(config=self.config, overrides=dict(self.overrides))


@pytest.fixture
def fake_store(small_config: dict) -> FakeStore:
    return FakeStore(small_config)


def text_result(text: str, pages: int = 1, text_items: int | None = None) -> PdfTextResult:
    """PdfTextResult for `text` with word count as the item count by default."""
    return PdfTextResult(
        text=text,
        num_pages=pages,
        pages_sampled=pages,
        chars=len(text),
        text_items=len(text.split()) if text_items is None else text_items,
    )


@pytest.fixture
def text_by_name():
    """Fake extractor whose output is looked up by file name.

    Unknown names get an empty text layer from a one-page document.
    """
    texts: dict[str, PdfTextResult] = {}

    def extractor(path):
        return texts.get(Path(path).name, text_result("", text_items=0))

    extractor.texts = texts
    return extractor


@pytest.fixture(autouse=True)
def reset_env_vars(temp_dir: Path):
    """Reset environment variables and point settings at a throwaway folder."""
    import settings

    original_env = os.environ.copy()
    os.environ["SORTER_CONFIG_DIR"] = str(temp_dir / "config")
    for key in ("SORTER_OUTPUT_DIR", "SORTER_WORKERS", "LOG_LEVEL", "LOG_FILE"):
        os.environ.pop(key, None)
    settings._settings = None
    yield
    settings._settings = None
    os.environ.clear()
    os.environ.update(original_env)


def make_entry(relative_path: str, digest: str = "0" * 64, decision: str = "assigned", **fields):
    """ProcessedFile with sensible defaults for path and dedup tests."""
    from sort_models import ProcessedFile, get_digest_prefix

    name = relative_path.rsplit("/", 1)[-1]
    if decision == "assigned":
        fields.setdefault("schedule", "A_Real_Estate")
        fields.setdefault("reason", "keyword_score")
    elif decision == "review":
        fields.setdefault("candidate", "Unknown")
        fields.setdefault("reason", "no_text_or_filename_rule")
    else:
        fields.setdefault("reason", "sha256_duplicate")
    return ProcessedFile(
        name=name,
        relative_path=relative_path,
        size=fields.pop("size", 10),
        media_type=fields.pop("media_type", "application/pdf"),
        digest=digest,
        digest_prefix=get_digest_prefix(digest),
        decision=decision,
        **fields,
    )
