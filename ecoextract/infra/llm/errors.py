from typing import List, Optional


class LLMError(Exception):
    """Base class for LLM call failures."""


class MalformedResponseError(LLMError):
    """Response was missing expected keys or did not contain valid JSON."""


class RefusalError(LLMError):
    """Provider declined to process the content."""

    def __init__(self, message: str, model: Optional[str] = None):
        super().__init__(message)
        self.model = model


class AllModelsFailedError(LLMError):
    """Every model in the fallback chain failed.

    Attributes:
        error_log: One line per failed attempt, each prefixed with a timestamp
    """

    def __init__(self, step_name: str, error_log: List[str]):
        self.step_name = step_name
        self.error_log = list(error_log)
        detail = "; ".join(error_log) if error_log else "no models configured"
        super().__init__(f"{step_name}: all models failed ({detail})")
