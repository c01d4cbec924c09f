"""
Model routing and fallback logic for LLM requests.

Provides ModelRouter to walk an ordered list of models, advancing to the
next when the current one fails or refuses.
"""

from typing import List, Optional, Tuple


class ModelRouter:
    """
    Manages model selection with fallback strategy.

    Router instances are per-call and not shared across threads.

    Example:
        >>> router = ModelRouter(["anthropic/claude-sonnet-4.5", "openai/gpt-4o"])
        >>> router.get_current()
        'anthropic/claude-sonnet-4.5'
        >>> router.next_model()
        'openai/gpt-4o'
        >>> router.has_fallback()
        False
    """

    def __init__(self, models: List[str]):
        if not models:
            raise ValueError("model list cannot be empty")

        self.models = list(models)
        self.current_index = 0
        self.attempts: List[Tuple[str, bool]] = []

    def get_current(self) -> str:
        return self.models[self.current_index]

    def has_fallback(self) -> bool:
        return self.current_index < len(self.models) - 1

    def next_model(self) -> Optional[str]:
        """
        Record the current model as failed and advance.

        Returns:
            Next model name if available, None if no more fallbacks
        """
        self.attempts.append((self.get_current(), False))

        if not self.has_fallback():
            return None

        self.current_index += 1
        return self.models[self.current_index]

    def mark_success(self):
        self.attempts.append((self.get_current(), True))

    def get_attempt_history(self) -> List[Tuple[str, bool]]:
        """
        Example:
            [("anthropic/claude-sonnet-4.5", False), ("openai/gpt-4o", True)]
        """
        return self.attempts.copy()

    def get_models_attempted(self) -> List[str]:
        return [model for model, _ in self.attempts]

    def __repr__(self):
        return (f"ModelRouter(current={self.get_current()}, "
                f"attempts={len(self.attempts)}, "
                f"has_fallback={self.has_fallback()})")
