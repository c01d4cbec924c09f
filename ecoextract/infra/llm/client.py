"""
LLM client for the OpenRouter API.

Orchestrates transport, retry and parsing layers:
- OpenRouterTransport: HTTP requests
- RetryPolicy: Retry logic with backoff and nonce
- ResponseParser: Response extraction, malformed handling, refusal detection
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from ecoextract.infra.llm.openrouter import (
    OpenRouterTransport,
    ParsedResponse,
    ResponseParser,
    RetryPolicy,
)


class LLMClient:
    """
    Orchestrates OpenRouter API calls with retry and parsing.

    Refusals are not retried: the same model would decline the same content,
    so they surface immediately for the router to fall back.
    """

    def __init__(
        self,
        api_key: str,
        timeout: int = 300,
        max_retries: int = 3,
        logger: Optional[logging.Logger] = None,
        transport: Optional[OpenRouterTransport] = None,
    ):
        self.logger = logger or logging.getLogger(__name__)
        self.timeout = timeout
        self.transport = transport or OpenRouterTransport(api_key, logger=self.logger)
        self.retry = RetryPolicy(logger=self.logger, max_retries=max_retries)
        self.parser = ResponseParser(logger=self.logger)

    def _build_payload(
        self,
        model: str,
        messages: List[Dict[str, str]],
        temperature: float,
        max_tokens: Optional[int],
        response_format: Optional[Dict],
    ) -> Dict[str, Any]:
        payload = {
            "model": model,
            "messages": [dict(m) for m in messages],
            "temperature": temperature,
        }

        if max_tokens:
            payload["max_tokens"] = max_tokens

        if response_format:
            payload["response_format"] = response_format

        return payload

    def call(
        self,
        model: str,
        messages: List[Dict[str, str]],
        temperature: float = 0.0,
        max_tokens: Optional[int] = None,
        timeout: Optional[int] = None,
        response_format: Optional[Dict] = None,
    ) -> ParsedResponse:
        """
        Make an LLM API call with automatic retries.

        Args:
            model: OpenRouter model name (e.g., "anthropic/claude-sonnet-4.5")
            messages: List of message dicts with 'role' and 'content'
            temperature: Sampling temperature (0.0-1.0)
            max_tokens: Maximum tokens to generate (None = no limit)
            timeout: Request timeout in seconds (default: client timeout)
            response_format: Optional structured output schema
                           {"type": "json_schema", "json_schema": {...}}

        Raises:
            RefusalError: Provider declined the content
            MalformedResponseError: Response unusable after retries
            requests.exceptions.RequestException: On non-retryable errors
        """
        payload = self._build_payload(model, messages, temperature, max_tokens, response_format)
        request_timeout = timeout or self.timeout

        def _make_call():
            result = self.transport.post(payload, request_timeout)
            return self.parser.parse_chat_completion(result, model)

        return self.retry.execute_with_retry(_make_call, payload)

    def call_json(
        self,
        model: str,
        system_prompt: str,
        user_prompt: str,
        response_format: Optional[Dict] = None,
        timeout: Optional[int] = None,
        temperature: float = 0.0,
    ) -> Tuple[Any, ParsedResponse]:
        """
        System + user prompt call whose content is decoded as JSON.

        Invalid JSON is retried like any other malformed response.
        """
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]
        payload = self._build_payload(model, messages, temperature, None, response_format)
        request_timeout = timeout or self.timeout

        def _make_call():
            result = self.transport.post(payload, request_timeout)
            parsed = self.parser.parse_chat_completion(result, model)
            return self.parser.parse_json_content(parsed), parsed

        return self.retry.execute_with_retry(_make_call, payload)
