"""
Group unresolved review documents by shared vocabulary.

Greedy single pass: each file joins the first existing cluster whose token
set shares at least MIN_SHARED_TOKENS of its tokens, otherwise it starts a
new cluster. Files with no usable tokens always stand alone. Clusters are
recomputed from scratch on every call; nothing is stored.
"""

from dataclasses import dataclass, field

from classifier import REASON_LOW_CONFIDENCE, UNKNOWN
from sort_models import ProcessedFile
from text_normalize import normalize_text

TOKEN_CAP = 40
MIN_TOKEN_LENGTH = 4
MIN_SHARED_TOKENS = 2


@dataclass
class ReviewCluster:
    tokens: list[str] = field(default_factory=list)
    files: list[ProcessedFile] = field(default_factory=list)

    @property
    def label(self) -> str:
        return " ".join(self.tokens[:3]) if self.tokens else "(no text)"

    def absorb(self, entry: ProcessedFile, tokens: list[str], cap: int = TOKEN_CAP):
        self.files.append(entry)
        known = set(self.tokens)
        for token in tokens:
            if len(self.tokens) >= cap:
                break
            if token not in known:
                self.tokens.append(token)
                known.add(token)


def extract_tokens(text: str, cap: int = TOKEN_CAP) -> list[str]:
    """Distinct normalized tokens longer than 3 characters, in document order."""
    tokens = []
    seen = set()
    for token in normalize_text(text).split():
        if len(token) < MIN_TOKEN_LENGTH or token in seen:
            continue
        seen.add(token)
        tokens.append(token)
        if len(tokens) >= cap:
            break
    return tokens


def is_unresolved(entry: ProcessedFile) -> bool:
    return entry.decision == "review" and (
        entry.candidate == UNKNOWN or entry.reason == REASON_LOW_CONFIDENCE
    )


def cluster_review_files(files: list[ProcessedFile]) -> list[ReviewCluster]:
    """Cluster the unresolved review subset of `files`, keeping input order."""
    clusters: list[ReviewCluster] = []
    for entry in files:
        if not is_unresolved(entry):
            continue

        tokens = extract_tokens(entry.text_sample)
        if not tokens:
            singleton = ReviewCluster()
            singleton.files.append(entry)
            clusters.append(singleton)
            continue

        token_set = set(tokens)
        for cluster in clusters:
            if not cluster.tokens:
                continue
            if len(token_set.intersection(cluster.tokens)) >= MIN_SHARED_TOKENS:
                cluster.absorb(entry, tokens)
                break
        else:
            cluster = ReviewCluster()
            cluster.absorb(entry, tokens)
            clusters.append(cluster)

    return clusters
