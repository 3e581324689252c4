"""
Document selection, content hashing and media type detection.
"""

import hashlib
import mimetypes
from dataclasses import dataclass
from pathlib import Path

from PIL import Image, UnidentifiedImageError

# Only the header is read when sniffing, but keep the same decompression
# ceiling used for large scans elsewhere.
Image.MAX_IMAGE_PIXELS = 200_000_000

SUPPORTED_FORMATS = {'.pdf', '.png', '.jpg', '.jpeg', '.tiff', '.tif'}


@dataclass(frozen=True)
class SelectedDocument:
    source_path: Path
    relative_path: str

    @property
    def name(self) -> str:
        return self.source_path.name


def is_pdf_file(filename: str) -> bool:
    return filename.lower().endswith('.pdf')


def is_supported_file(filename: str) -> bool:
    return Path(filename).suffix.lower() in SUPPORTED_FORMATS


def collect_documents(folder: str | Path) -> list[SelectedDocument]:
    """Recursively select supported documents under a folder.

    Hidden files are skipped. Relative paths use forward slashes and are
    rooted at the chosen folder's own name, e.g. "Estate/Bank/stmt.pdf".
    """
    root = Path(folder)
    if not root.is_dir():
        raise ValueError(f"Folder does not exist: {folder}")

    documents = []
    for file_path in root.rglob('*'):
        if not file_path.is_file():
            continue
        if file_path.name.startswith('.'):
            continue
        if not is_supported_file(file_path.name):
            continue
        relative = file_path.relative_to(root.parent).as_posix()
        documents.append(SelectedDocument(source_path=file_path, relative_path=relative))

    documents.sort(key=lambda d: d.relative_path)
    return documents


def get_file_hash(file_path: str | Path) -> str:
    """Generate a hash based on file content using SHA256."""
    hasher = hashlib.sha256()
    with open(file_path, 'rb') as f:
        # Read in chunks for large files
        for chunk in iter(lambda: f.read(8192), b''):
            hasher.update(chunk)
    return hasher.hexdigest()


def detect_media_type(file_path: str | Path) -> str:
    """Media type of a document: PDFs by extension, images sniffed with Pillow."""
    path = Path(file_path)
    if is_pdf_file(path.name):
        return 'application/pdf'
    try:
        with Image.open(path) as img:
            mime = Image.MIME.get(img.format or '')
            if mime:
                return mime
    except (UnidentifiedImageError, OSError):
        pass  # not a readable image, fall back to the extension
    guessed, _ = mimetypes.guess_type(path.name)
    return guessed or 'application/octet-stream'
