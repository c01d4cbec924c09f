import logging
import requests
from typing import Dict, Any, Optional


OPENROUTER_URL = "https://openrouter.ai/api/v1/chat/completions"


class OpenRouterTransport:
    def __init__(
        self,
        api_key: str,
        logger: Optional[logging.Logger] = None,
        site_url: str = "https://github.com/ecoextract/ecoextract",
        site_name: str = "ecoextract",
        base_url: str = OPENROUTER_URL,
        session: Optional[requests.Session] = None,
    ):
        self.logger = logger or logging.getLogger(__name__)
        self.api_key = api_key
        self.site_url = site_url
        self.site_name = site_name
        self.base_url = base_url
        self.session = session or requests.Session()

    def post(self, payload: Dict[str, Any], timeout: int = 300) -> Dict[str, Any]:
        model = payload.get('model', 'unknown')

        self.logger.debug(
            f"OpenRouter API request: model={model}, timeout={timeout}, "
            f"structured={'response_format' in payload}, "
            f"num_messages={len(payload.get('messages', []))}"
        )

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": self.site_url,
            "X-Title": self.site_name
        }

        response = self.session.post(
            self.base_url,
            headers=headers,
            json=payload,
            timeout=timeout
        )

        self.logger.debug(
            f"OpenRouter API response: model={model}, status_code={response.status_code}"
        )

        response.raise_for_status()

        return response.json()
