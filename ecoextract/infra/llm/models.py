from dataclasses import dataclass, field
from typing import Any, List, Optional


@dataclass
class StructuredResult:
    """
    Outcome of a structured LLM call over a model fallback chain.

    Attributes:
        data: Parsed JSON returned by the successful model
        model_used: Model that produced `data`
        error_log: One timestamped line per failed attempt before success
        prompt_tokens: Usage reported by the successful call
        completion_tokens: Usage reported by the successful call
    """
    data: Any
    model_used: str
    error_log: List[str] = field(default_factory=list)
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def models_tried(self) -> int:
        return len(self.error_log) + 1

    def format_log(self) -> Optional[str]:
        return "\n".join(self.error_log) if self.error_log else None
