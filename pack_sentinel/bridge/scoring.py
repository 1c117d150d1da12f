"""Relevance scoring strategies for capability dispatch.

A strategy turns a request text and a list of capability corpora into one
:class:`MatchScore` per corpus.  Two are shipped:

* :class:`TokenOverlapScorer`: word overlap with partial matches (default).
* :class:`TfidfScorer`: scikit-learn TF-IDF cosine similarity.

Both are deterministic for a given input.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import FrozenSet, List, Protocol, Sequence, runtime_checkable

from sklearn.feature_extraction.text import TfidfVectorizer
from sklearn.metrics.pairwise import cosine_similarity

logger = logging.getLogger(__name__)

_SPLIT_RE = re.compile(r"[^a-z0-9]+")

STOP_WORDS: FrozenSet[str] = frozenset(
    {
        "a", "an", "and", "are", "as", "at", "be", "by", "can", "do", "for",
        "from", "how", "i", "in", "into", "is", "it", "its", "me", "my", "of",
        "on", "or", "our", "please", "so", "that", "the", "their", "this",
        "to", "use", "when", "with", "you", "your", "we", "what", "which",
        "will", "should", "other", "any", "all", "need", "needs",
    }
)

# Partial (substring) matches shorter than this are noise.
_MIN_PARTIAL_LEN = 3


def _stem(token: str) -> str:
    """Very light plural folding so ``risks`` meets ``risk``."""
    if len(token) > 3 and token.endswith("s") and not token.endswith("ss"):
        return token[:-1]
    return token


def tokenize(text: str) -> List[str]:
    """Lower-case, split on non-alphanumerics, drop stop words, fold plurals."""
    return [_stem(t) for t in _SPLIT_RE.split(text.lower()) if t and t not in STOP_WORDS]


@dataclass(frozen=True)
class MatchScore:
    """Relevance of one corpus to a query.

    ``score`` is in ``[0, 1]``.  ``specificity`` is the share of the
    corpus's distinct tokens the query hit, used to prefer keyword-dense
    descriptions when scores tie.  ``partial_only`` is set when the score
    rests solely on substring matches with no whole-word hit.
    """

    score: float
    specificity: float = 0.0
    partial_only: bool = False


def _specificity(query_tokens: Sequence[str], doc_tokens: Sequence[str]) -> float:
    doc_set = set(doc_tokens)
    if not doc_set:
        return 0.0
    return len(doc_set.intersection(query_tokens)) / len(doc_set)


@runtime_checkable
class ScoreStrategy(Protocol):
    """Pluggable relevance function used by the dispatcher."""

    name: str

    def score(self, query: str, documents: Sequence[str]) -> List[MatchScore]:
        """Return one score per document, in document order."""
        ...


# ── Word overlap ─────────────────────────────────────────────────────────


def overlap_score(query_tokens: Sequence[str], doc_tokens: Sequence[str]) -> float:
    """Word-overlap + partial-match scorer (0-1 normalized)."""
    if not query_tokens or not doc_tokens:
        return 0.0
    doc_set = set(doc_tokens)
    hits = 0.0
    for qt in query_tokens:
        if qt in doc_set:
            hits += 1.0
        elif len(qt) >= _MIN_PARTIAL_LEN and any(
            qt in dt or (len(dt) >= _MIN_PARTIAL_LEN and dt in qt) for dt in doc_set
        ):
            hits += 0.5
    return hits / len(query_tokens)


class TokenOverlapScorer:
    """Scores by how many request words appear in a capability's corpus."""

    name = "token-overlap"

    def score(self, query: str, documents: Sequence[str]) -> List[MatchScore]:
        query_tokens = list(dict.fromkeys(tokenize(query)))
        results: List[MatchScore] = []
        for doc in documents:
            doc_tokens = tokenize(doc)
            score = overlap_score(query_tokens, doc_tokens)
            specificity = _specificity(query_tokens, doc_tokens)
            results.append(
                MatchScore(
                    score=round(score, 6),
                    specificity=round(specificity, 6),
                    partial_only=score > 0 and specificity == 0,
                )
            )
        return results


# ── TF-IDF ───────────────────────────────────────────────────────────────


class TfidfScorer:
    """TF-IDF cosine similarity over the capability corpora.

    The vectorizer is fitted per call on the documents supplied, so the
    scorer holds no state between requests.
    """

    name = "tfidf"

    def score(self, query: str, documents: Sequence[str]) -> List[MatchScore]:
        if not documents:
            return []
        query_tokens = tokenize(query)
        if not query_tokens:
            return [MatchScore(0.0) for _ in documents]

        vectorizer = TfidfVectorizer(analyzer=tokenize)
        try:
            matrix = vectorizer.fit_transform(list(documents))
        except ValueError:
            # Every document tokenized to nothing.
            return [MatchScore(0.0) for _ in documents]
        query_vec = vectorizer.transform([query])
        scores = cosine_similarity(query_vec, matrix).flatten()

        return [
            MatchScore(
                score=round(float(s), 6),
                specificity=round(_specificity(query_tokens, tokenize(doc)), 6),
            )
            for s, doc in zip(scores, documents)
        ]


_STRATEGIES = {
    TokenOverlapScorer.name: TokenOverlapScorer,
    TfidfScorer.name: TfidfScorer,
}


def create_scorer(name: str) -> ScoreStrategy:
    """Instantiate a scoring strategy by its configured name."""
    try:
        return _STRATEGIES[name]()
    except KeyError:
        raise ValueError(
            f"Unknown scoring strategy '{name}'. Choose from: {', '.join(sorted(_STRATEGIES))}"
        ) from None
