"""
Tests for document selection, hashing and media type detection.
"""

import hashlib
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from document_files import collect_documents, detect_media_type, get_file_hash, is_pdf_file, is_supported_file


class TestSelection:
    """Tests for collect_documents()."""

    def test_recursive_selection(self, inbox_dir: Path, sample_image_path: Path):
        (inbox_dir / "Bank" / "2023").mkdir(parents=True)
        (inbox_dir / "Bank" / "2023" / "Statement.PDF").write_bytes(b"%PDF")
        (inbox_dir / "notes.txt").write_text("not a document")
        (inbox_dir / ".DS_Store").write_bytes(b"junk")
        (inbox_dir / ".hidden.pdf").write_bytes(b"%PDF")

        documents = collect_documents(inbox_dir)

        assert [d.relative_path for d in documents] == ["Estate/Bank/2023/Statement.PDF", "Estate/scan_page.png"]
        assert documents[0].name == "Statement.PDF"
        assert documents[0].source_path == inbox_dir / "Bank" / "2023" / "Statement.PDF"

    def test_missing_folder(self, temp_dir: Path):
        with pytest.raises(ValueError):
            collect_documents(temp_dir / "nope")

    @pytest.mark.parametrize("name,supported", [
        ("a.pdf", True), ("a.PNG", True), ("a.jpeg", True), ("a.tif", True),
        ("a.TIFF", True), ("a.docx", False), ("a.heic", False), ("pdf", False),
    ])
    def test_supported_extensions(self, name, supported):
        assert is_supported_file(name) is supported

    def test_is_pdf(self):
        assert is_pdf_file("Deed.PDF")
        assert not is_pdf_file("deed.png")


class TestHashing:
    """Tests for get_file_hash()."""

    def test_sha256_of_content(self, inbox_dir: Path):
        path = inbox_dir / "a.pdf"
        path.write_bytes(b"x" * 20000)
        assert get_file_hash(path) == hashlib.sha256(b"x" * 20000).hexdigest()

    def test_same_bytes_same_hash(self, inbox_dir: Path):
        (inbox_dir / "a.pdf").write_bytes(b"same")
        (inbox_dir / "b.pdf").write_bytes(b"same")
        assert get_file_hash(inbox_dir / "a.pdf") == get_file_hash(inbox_dir / "b.pdf")


class TestMediaType:
    """Tests for detect_media_type()."""

    def test_pdf_by_extension(self, inbox_dir: Path):
        path = inbox_dir / "a.pdf"
        path.write_bytes(b"anything")
        assert detect_media_type(path) == "application/pdf"

    def test_image_is_sniffed(self, inbox_dir: Path):
        from PIL import Image

        # JPEG content behind a .png name
        path = inbox_dir / "mislabeled.png"
        Image.new('RGB', (10, 10), color='red').save(path, format='JPEG')
        assert detect_media_type(path) == "image/jpeg"

    def test_png(self, sample_image_path: Path):
        assert detect_media_type(sample_image_path) == "image/png"

    def test_unreadable_image_falls_back_to_extension(self, inbox_dir: Path):
        path = inbox_dir / "broken.tiff"
        path.write_bytes(b"not really a tiff")
        assert detect_media_type(path) == "image/tiff"
