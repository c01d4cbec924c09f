"""
Per-field similarity strategies.

Each strategy scores two canonicalized field values in [0, 1]. The engine
asks a strategy to prepare() every distinct value first, so strategies backed
by an external service can batch their calls.
"""

import json
import logging
import unicodedata
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Sequence

import numpy as np

from ecoextract.infra.embeddings import EmbeddingProvider


logger = logging.getLogger(__name__)


def canonicalize(value: Any) -> Optional[str]:
    """
    Unicode NFC, lowercase and trim. None stays None.

    Lists are joined with "; " and other non-strings are rendered as text so
    array-typed fields compare by content.
    """
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        value = "; ".join(str(v) for v in value if v is not None)
    elif isinstance(value, dict):
        value = json.dumps(value, sort_keys=True, ensure_ascii=False)
    elif not isinstance(value, str):
        value = str(value)
    return unicodedata.normalize("NFC", value).lower().strip()


def char_ngrams(text: str, n: int = 3) -> set:
    if len(text) < n:
        return set()
    return {text[i:i + n] for i in range(len(text) - n + 1)}


def jaccard_similarity(str1: Optional[str], str2: Optional[str], n: int = 3) -> float:
    """
    Jaccard similarity of character n-gram sets.

    Both empty is a match, one empty is not. Strings equal after
    canonicalization score 1.0; otherwise a string shorter than n has no
    n-grams and scores 0.0.
    """
    if str1 is None or str2 is None:
        return 0.0

    str1, str2 = str(str1), str(str2)
    if not str1 and not str2:
        return 1.0
    if not str1 or not str2:
        return 0.0

    str1, str2 = canonicalize(str1), canonicalize(str2)
    if str1 == str2:
        return 1.0

    ngrams1 = char_ngrams(str1, n)
    ngrams2 = char_ngrams(str2, n)
    if not ngrams1 or not ngrams2:
        return 0.0

    union = ngrams1 | ngrams2
    return len(ngrams1 & ngrams2) / len(union)


def cosine_similarity(vec1: Sequence[float], vec2: Sequence[float]) -> float:
    """
    Cosine of two vectors; 0.0 when either has zero norm.

    Raises:
        ValueError: Vectors differ in length
    """
    a = np.asarray(vec1, dtype=float)
    b = np.asarray(vec2, dtype=float)
    if a.shape != b.shape:
        raise ValueError(f"Vectors must have same length ({a.size} != {b.size})")

    norm1 = np.linalg.norm(a)
    norm2 = np.linalg.norm(b)
    if norm1 == 0 or norm2 == 0:
        return 0.0

    return float(np.dot(a, b) / (norm1 * norm2))


class SimilarityStrategy(ABC):
    name: str = None

    def prepare(self, values: Iterable[str]) -> None:
        """Called once with every canonical value before scoring."""

    @abstractmethod
    def similarity(self, a: str, b: str) -> float:
        pass


class JaccardStrategy(SimilarityStrategy):
    name = "jaccard"

    def __init__(self, ngram_size: int = 3):
        self.ngram_size = ngram_size

    def similarity(self, a: str, b: str) -> float:
        return jaccard_similarity(a, b, n=self.ngram_size)


class EmbeddingStrategy(SimilarityStrategy):
    """Cosine similarity of embeddings, one provider call per batch of new values."""

    name = "embedding"

    def __init__(self, provider: EmbeddingProvider):
        self.provider = provider
        self._cache: Dict[str, np.ndarray] = {}

    def prepare(self, values: Iterable[str]) -> None:
        pending: List[str] = []
        for value in values:
            if value not in self._cache and value not in pending:
                pending.append(value)
        if not pending:
            return

        vectors = self.provider.embed(pending)
        if len(vectors) != len(pending):
            raise ValueError(
                f"Embedding provider returned {len(vectors)} vectors for {len(pending)} texts"
            )
        for value, vector in zip(pending, vectors):
            self._cache[value] = np.asarray(vector, dtype=float)
        logger.debug(f"Embedded {len(pending)} distinct values")

    def similarity(self, a: str, b: str) -> float:
        if a == b:
            return 1.0
        if a not in self._cache or b not in self._cache:
            self.prepare([a, b])
        return cosine_similarity(self._cache[a], self._cache[b])
