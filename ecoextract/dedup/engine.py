"""
Deduplication of newly extracted records against stored ones.

A new record is a duplicate when some existing record matches it on every
unique field that both records populate. Fields populated on only one side
are not compared; a pair with no comparable field is not a duplicate. New
records are compared against stored records only, never against each other.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ecoextract.infra.errors import ConfigurationError
from .semantic import SemanticJudge
from .similarity import SimilarityStrategy, canonicalize


logger = logging.getLogger(__name__)

METHODS = ("llm", "embedding", "jaccard")


@dataclass
class DeduplicationResult:
    kept_records: List[Dict[str, Any]]
    duplicate_count: int
    kept_indices: List[int] = field(default_factory=list)


def _canonical_fields(record: Dict[str, Any], unique_fields: List[str]) -> Dict[str, str]:
    values = {}
    for name in unique_fields:
        value = canonicalize(record.get(name))
        if value:
            values[name] = value
    return values


def _keep(new_records: List[Dict[str, Any]], indices: List[int]) -> DeduplicationResult:
    kept = [new_records[i] for i in indices]
    return DeduplicationResult(
        kept_records=kept,
        duplicate_count=len(new_records) - len(kept),
        kept_indices=list(indices),
    )


def find_match(
    new_values: Dict[str, str],
    existing_values: List[Dict[str, str]],
    strategy: SimilarityStrategy,
    threshold: float,
) -> Optional[int]:
    """Index of the first existing record matching on all comparable fields."""
    for j, existing in enumerate(existing_values):
        compared = [name for name in new_values if name in existing]
        if not compared:
            continue
        if all(strategy.similarity(new_values[name], existing[name]) >= threshold for name in compared):
            return j
    return None


def deduplicate(
    new_records: List[Dict[str, Any]],
    existing_records: List[Dict[str, Any]],
    unique_fields: List[str],
    method: str,
    threshold: float = 0.9,
    strategy: Optional[SimilarityStrategy] = None,
    judge: Optional[SemanticJudge] = None,
) -> DeduplicationResult:
    """
    Filter new_records against existing_records.

    Args:
        new_records: Candidate records from this extraction
        existing_records: Every stored record for the document, soft-deleted
            and human-edited rows included
        unique_fields: Fields that jointly identify a record
        method: "jaccard", "embedding" or "llm"
        threshold: Minimum per-field similarity for jaccard/embedding
        strategy: Similarity strategy for jaccard/embedding
        judge: Semantic judge for llm

    Returns:
        DeduplicationResult with the kept records in their original order
    """
    if method not in METHODS:
        raise ConfigurationError(f"Unknown deduplication method: {method}")

    all_indices = list(range(len(new_records)))
    if not new_records or not existing_records:
        return _keep(new_records, all_indices)

    logger.info(
        f"Deduplicating {len(new_records)} new records against {len(existing_records)} existing "
        f"(method={method}, key fields: {', '.join(unique_fields)})"
    )

    if method == "llm":
        if judge is None:
            raise ConfigurationError("llm deduplication requires a semantic judge")
        indices = judge.unique_indices(new_records, existing_records, unique_fields)
        if not indices:
            return _keep(new_records, all_indices)
        unique = sorted({i for i in indices if 0 <= i < len(new_records)})
        if not unique:
            logger.warning("Judge returned no valid indices %s, keeping all %d new records", indices, len(new_records))
            return _keep(new_records, all_indices)
        return _keep(new_records, unique)

    if strategy is None:
        raise ConfigurationError(f"{method} deduplication requires a similarity strategy")

    new_values = [_canonical_fields(r, unique_fields) for r in new_records]
    existing_values = [_canonical_fields(r, unique_fields) for r in existing_records]
    strategy.prepare(
        {v for values in new_values + existing_values for v in values.values()}
    )

    kept = []
    for i, values in enumerate(new_values):
        match = find_match(values, existing_values, strategy, threshold)
        if match is None:
            kept.append(i)
        else:
            logger.debug(f"Record {i}: duplicate of existing record {match}")

    result = _keep(new_records, kept)
    logger.info(f"Deduplication complete: {len(result.kept_records)} unique, {result.duplicate_count} duplicates")
    return result
