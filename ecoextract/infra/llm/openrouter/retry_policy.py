import time
import uuid
import random
import logging
import requests
from typing import Callable, Dict, Any, TypeVar, Optional

from ecoextract.infra.llm.errors import MalformedResponseError

T = TypeVar('T')


class RetryPolicy:
    """Retries a single model's request on transient failures.

    Malformed responses, timeouts, 5xx and 413/422/429 are retried with a
    jittered delay. Other HTTP errors and refusals propagate immediately so the
    router can move on to the next model.
    """

    def __init__(
        self,
        logger: Optional[logging.Logger] = None,
        max_retries: int = 3,
        base_delay: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.logger = logger or logging.getLogger(__name__)
        self.max_retries = max(1, max_retries)
        self.base_delay = base_delay
        self._sleep = sleep

    def _delay(self) -> float:
        return max(0.0, self.base_delay + random.uniform(-1.5, 1.5))

    def execute_with_retry(
        self,
        fn: Callable[[], T],
        payload: Dict[str, Any]
    ) -> T:
        model = payload.get('model', 'unknown')

        for attempt in range(self.max_retries):
            is_last = attempt == self.max_retries - 1
            try:
                result = fn()
                if attempt > 0:
                    self.logger.debug(f"{model}: request succeeded after {attempt + 1} attempts")
                return result

            except MalformedResponseError as e:
                if is_last:
                    raise
                delay = self._delay()
                self.logger.debug(f"{model}: malformed response ({e}), retrying in {delay:.1f}s")
                self._sleep(delay)

            except requests.exceptions.HTTPError as e:
                status_code = e.response.status_code if e.response is not None else 0
                if is_last or not self._is_retryable(status_code):
                    raise

                if status_code in (413, 422):
                    self._inject_nonce(payload, attempt)

                delay = self._delay()
                self.logger.debug(f"{model}: HTTP {status_code}, retrying in {delay:.1f}s")
                self._sleep(delay)

            except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
                if is_last:
                    raise
                delay = self._delay()
                self.logger.debug(f"{model}: {type(e).__name__}, retrying in {delay:.1f}s")
                self._sleep(delay)

    @staticmethod
    def _is_retryable(status: int) -> bool:
        return status >= 500 or status in (413, 422, 429)

    def _inject_nonce(self, payload: Dict[str, Any], attempt: int):
        # Cache-busting marker on the last user message
        nonce = uuid.uuid4().hex[:16]

        for msg in reversed(payload.get('messages', [])):
            if msg.get('role') != 'user':
                continue
            content = msg.get('content', '')
            if isinstance(content, str):
                msg['content'] = f"{content}\n<!-- retry_{attempt}_id: {nonce} -->"
            break
