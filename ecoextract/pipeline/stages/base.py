from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple

from ecoextract.infra.logger import PipelineLogger
from ecoextract.pipeline.context import PipelineContext
from ecoextract.pipeline.status import CASCADE, StageName


class BaseStage(ABC):
    """One unit of per-document work.

    run() persists the stage's payload and returns stats for logging; it
    raises on failure and the orchestrator records the error as the stage's
    status. Statuses themselves are written only by the orchestrator.
    """
    name: StageName = None

    def __init__(self, context: PipelineContext):
        self.context = context
        self.store = context.store
        self.config = context.config

    @property
    def invalidates(self) -> Tuple[StageName, ...]:
        return CASCADE[self.name]

    @property
    def status_column(self) -> str:
        return f"{self.name.value}_status"

    def data_exists(self, document: Dict[str, Any]) -> Optional[bool]:
        """Data predicate for desync detection; None means not checked."""
        return None

    @abstractmethod
    def run(self, document: Dict[str, Any], logger: PipelineLogger) -> Dict[str, Any]:
        pass

    @staticmethod
    def reasoning(data: Dict[str, Any]) -> Optional[str]:
        """Free-text reasoning the model returned beside its records, if any."""
        value = data.get("reasoning")
        if not isinstance(value, str) or not value.strip():
            return None
        return value.strip()

    @staticmethod
    def require_content(document: Dict[str, Any]) -> str:
        content = document.get("document_content")
        if not content or not str(content).strip():
            raise ValueError("No document content found in database")
        return content
