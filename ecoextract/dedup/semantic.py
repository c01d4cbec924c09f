import json
import logging
from typing import Any, Dict, List, Optional

from ecoextract.infra.llm import StructuredLLM


logger = logging.getLogger(__name__)

UNIQUE_INDICES_FORMAT = {
    "type": "json_schema",
    "json_schema": {
        "name": "deduplication",
        "schema": {
            "type": "object",
            "properties": {
                "unique_indices": {
                    "type": "array",
                    "items": {"type": "integer"},
                    "description": "0-based indices of new records that duplicate no existing record",
                },
            },
            "required": ["unique_indices"],
            "additionalProperties": False,
        },
    },
}


def _restrict(records: List[Dict[str, Any]], fields: List[str]) -> List[Dict[str, Any]]:
    return [
        {"index": i, **{name: record.get(name) for name in fields}}
        for i, record in enumerate(records)
    ]


class SemanticJudge:
    """Asks one model which new records are not already stored.

    A single call per document. Failure of any kind returns None so the
    engine keeps every new record.
    """

    def __init__(
        self,
        llm: StructuredLLM,
        model: str,
        prompt: str,
        timeout: Optional[int] = None,
    ):
        self.llm = llm
        self.model = model
        self.prompt = prompt
        self.timeout = timeout

    def build_context(
        self,
        new_records: List[Dict[str, Any]],
        existing_records: List[Dict[str, Any]],
        unique_fields: List[str],
    ) -> str:
        return (
            f"Key fields: {', '.join(unique_fields)}\n\n"
            f"Existing records:\n{json.dumps(_restrict(existing_records, unique_fields), ensure_ascii=False, default=str)}\n\n"
            f"New records:\n{json.dumps(_restrict(new_records, unique_fields), ensure_ascii=False, default=str)}\n"
        )

    def unique_indices(
        self,
        new_records: List[Dict[str, Any]],
        existing_records: List[Dict[str, Any]],
        unique_fields: List[str],
    ) -> Optional[List[int]]:
        context = self.build_context(new_records, existing_records, unique_fields)
        try:
            result = self.llm.call(
                self.prompt,
                context,
                UNIQUE_INDICES_FORMAT,
                [self.model],
                "deduplication",
                timeout=self.timeout,
            )
        except Exception as e:
            logger.warning(f"Semantic deduplication failed, keeping all records: {e}")
            return None

        indices = result.data.get("unique_indices")
        if not isinstance(indices, list):
            logger.warning("Semantic deduplication returned no unique_indices, keeping all records")
            return None

        return [i for i in indices if isinstance(i, int) and not isinstance(i, bool)]
