import logging
from datetime import datetime
from typing import Dict, List, Optional

import requests

from ecoextract.infra.llm.client import LLMClient
from ecoextract.infra.llm.errors import AllModelsFailedError, LLMError
from ecoextract.infra.llm.models import StructuredResult
from ecoextract.infra.llm.router import ModelRouter


class StructuredLLM:
    """Structured-output calls tried over an ordered model list.

    Given a system prompt, the document context and a response format, each
    model is tried in turn until one returns a JSON object. Refusals, provider
    errors and unusable responses move on to the next model; every failure is
    kept as a timestamped line so callers can persist what happened.
    """

    def __init__(self, client: LLMClient, logger: Optional[logging.Logger] = None):
        self.client = client
        self.logger = logger or logging.getLogger(__name__)

    def call(
        self,
        system_prompt: str,
        context: str,
        response_format: Optional[Dict],
        models: List[str],
        step_name: str,
        timeout: Optional[int] = None,
    ) -> StructuredResult:
        """
        Raises:
            AllModelsFailedError: No model produced a usable response
        """
        router = ModelRouter(models)
        error_log: List[str] = []

        model = router.get_current()
        while model is not None:
            try:
                data, parsed = self.client.call_json(
                    model,
                    system_prompt,
                    context,
                    response_format=response_format,
                    timeout=timeout,
                )
                if not isinstance(data, dict):
                    raise LLMError(f"expected a JSON object, got {type(data).__name__}")

                router.mark_success()
                if error_log:
                    self.logger.info(
                        f"{step_name}: {model} succeeded after {len(error_log)} failed model(s)"
                    )
                return StructuredResult(
                    data=data,
                    model_used=model,
                    error_log=error_log,
                    prompt_tokens=parsed.prompt_tokens,
                    completion_tokens=parsed.completion_tokens,
                )

            except (LLMError, requests.exceptions.RequestException, ValueError) as e:
                timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
                error_log.append(f"[{timestamp}] {model}: {type(e).__name__}: {e}")
                self.logger.warning(f"{step_name}: {model} failed ({e})")
                model = router.next_model()

        raise AllModelsFailedError(step_name, error_log)
