import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ecoextract.infra.llm.errors import MalformedResponseError, RefusalError


REFUSAL_FINISH_REASONS = {"content_filter", "refusal"}

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


@dataclass
class ParsedResponse:
    content: Optional[str]
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    model_used: str
    finish_reason: Optional[str] = None


class ResponseParser:
    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)

    def parse_chat_completion(self, result: Dict[str, Any], model: str) -> ParsedResponse:
        try:
            choice = result['choices'][0]
            message = choice['message']
            content = message.get('content')
            finish_reason = choice.get('finish_reason') or choice.get('native_finish_reason')
            usage = result.get('usage') or {}
        except (KeyError, IndexError, TypeError) as e:
            response_keys = list(result.keys()) if isinstance(result, dict) else type(result).__name__
            self.logger.error(
                f"Malformed API response from OpenRouter: model={model}, "
                f"error={type(e).__name__}: {e}, response_keys={response_keys}"
            )
            raise MalformedResponseError(
                f"Malformed API response from OpenRouter: missing '{e.args[0] if e.args else 'expected key'}'"
            )

        refusal = message.get('refusal')
        if refusal or finish_reason in REFUSAL_FINISH_REASONS:
            raise RefusalError(
                f"{model} declined to process content: {refusal or finish_reason}",
                model=model,
            )

        self.logger.debug(
            f"Parsed chat completion: model={model}, "
            f"content_length={len(content) if content else 0}, finish_reason={finish_reason}"
        )

        return ParsedResponse(
            content=content,
            prompt_tokens=usage.get('prompt_tokens', 0),
            completion_tokens=usage.get('completion_tokens', 0),
            total_tokens=usage.get('total_tokens', 0),
            model_used=result.get('model') or model,
            finish_reason=finish_reason,
        )

    def parse_json_content(self, parsed: ParsedResponse) -> Any:
        """Decode the message content as JSON (markdown fences tolerated)."""
        content = (parsed.content or "").strip()
        if not content:
            raise MalformedResponseError(f"{parsed.model_used} returned empty content")

        fenced = _FENCE_RE.match(content)
        if fenced:
            content = fenced.group(1)

        try:
            return json.loads(content)
        except json.JSONDecodeError as e:
            raise MalformedResponseError(
                f"{parsed.model_used} returned invalid JSON: {e}"
            ) from e
