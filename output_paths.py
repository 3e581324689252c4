"""
Output path assignment for the export tree.

    duplicate -> DUPLICATES/<hash prefix>/<name>
    review    -> <review root>/<candidate or Unknown>/<name>
    assigned  -> <export root>/<schedule>/<name>

Name clashes inside one folder get a "__dup<N>" suffix before the
extension. Assignment always runs over the whole file set, sorted by
source path, so the result does not depend on worker completion order.
"""

import dataclasses
import posixpath
from dataclasses import dataclass
from typing import Optional

from classifier import UNKNOWN
from sort_models import ProcessedFile


@dataclass(frozen=True)
class OutputRoots:
    export_root: str = "706"
    review_root: str = "706/ReviewNeeded"
    duplicates_root: str = "DUPLICATES"


def build_output_path(entry: ProcessedFile, roots: Optional[OutputRoots] = None) -> str:
    """Canonical (not yet disambiguated) path for one entry."""
    roots = roots or OutputRoots()
    if entry.decision == "duplicate":
        return f"{roots.duplicates_root}/{entry.digest_prefix}/{entry.name}"
    if entry.decision == "review":
        return f"{roots.review_root}/{entry.candidate or UNKNOWN}/{entry.name}"
    return f"{roots.export_root}/{entry.schedule}/{entry.name}"


def disambiguate(path: str, used: dict[str, set]) -> str:
    """Return a path not yet used in its folder and mark it used."""
    folder, name = posixpath.split(path)
    taken = used.setdefault(folder, set())
    if name in taken:
        stem, ext = posixpath.splitext(name)
        counter = 1
        while f"{stem}__dup{counter}{ext}" in taken:
            counter += 1
        name = f"{stem}__dup{counter}{ext}"
    taken.add(name)
    return posixpath.join(folder, name) if folder else name


def assign_output_paths(files: list[ProcessedFile], roots: Optional[OutputRoots] = None) -> list[ProcessedFile]:
    """Assign unique output paths to every entry, from scratch.

    Returns new entries ordered by source path; the input list is not modified.
    """
    used: dict[str, set] = {}
    assigned = []
    for entry in sorted(files, key=lambda f: f.relative_path):
        path = disambiguate(build_output_path(entry, roots), used)
        assigned.append(dataclasses.replace(entry, output_path=path))
    return assigned
