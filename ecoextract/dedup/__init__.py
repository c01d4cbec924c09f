from .engine import DeduplicationResult, deduplicate, METHODS
from .semantic import SemanticJudge
from .similarity import (
    SimilarityStrategy,
    JaccardStrategy,
    EmbeddingStrategy,
    canonicalize,
    jaccard_similarity,
    cosine_similarity,
)

__all__ = [
    "DeduplicationResult",
    "deduplicate",
    "METHODS",
    "SemanticJudge",
    "SimilarityStrategy",
    "JaccardStrategy",
    "EmbeddingStrategy",
    "canonicalize",
    "jaccard_similarity",
    "cosine_similarity",
]
