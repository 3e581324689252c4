"""
Text normalization helpers shared by classification and clustering.

Everything that compares document text against configured terms goes
through normalize_text() first, so "Brokerage-Statement" in a filename and
"brokerage statement" in a keyword list meet on the same canonical form.
"""

import re

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def normalize_text(value: str) -> str:
    """Lower-case, fold every run of non-alphanumerics to one space, trim."""
    if not value:
        return ""
    return _NON_ALNUM.sub(" ", value.lower()).strip()


def count_term_occurrences(text: str, term: str) -> int:
    """Count non-overlapping occurrences of a term inside normalized text.

    Both sides are normalized; the search advances past each match, so
    "aa" occurs twice in "aaaa", not three times.
    """
    if not text or not term:
        return 0

    normalized_text = normalize_text(text)
    normalized_term = normalize_text(term)
    if not normalized_text or not normalized_term:
        return 0

    count = 0
    index = normalized_text.find(normalized_term)
    while index != -1:
        count += 1
        index = normalized_text.find(normalized_term, index + len(normalized_term))
    return count
