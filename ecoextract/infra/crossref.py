import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests


CROSSREF_URL = "https://api.crossref.org/works"


class CrossRefClient:
    """Thin transport over the CrossRef works API.

    A DOI that CrossRef does not know returns None; any other HTTP error is
    raised for the caller to report.
    """

    def __init__(
        self,
        mailto: Optional[str] = None,
        timeout: int = 30,
        logger: Optional[logging.Logger] = None,
        base_url: str = CROSSREF_URL,
        session: Optional[requests.Session] = None,
    ):
        self.logger = logger or logging.getLogger(__name__)
        self.mailto = mailto
        self.timeout = timeout
        self.base_url = base_url
        self.session = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        agent = "ecoextract (https://github.com/ecoextract/ecoextract)"
        if self.mailto:
            agent = f"{agent}; mailto:{self.mailto}"
        return {"User-Agent": agent}

    def _get(self, url: str, params: Optional[Dict[str, Any]] = None) -> requests.Response:
        if self.mailto:
            params = {**(params or {}), "mailto": self.mailto}
        response = self.session.get(url, params=params, headers=self._headers(), timeout=self.timeout)
        self.logger.debug(f"CrossRef response: url={url}, status_code={response.status_code}")
        return response

    def get_work(self, doi: str) -> Optional[Dict[str, Any]]:
        response = self._get(f"{self.base_url}/{quote(doi.strip(), safe='/')}")
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response.json().get("message") or None

    def search(self, title: str, author: Optional[str] = None, rows: int = 5) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"query.bibliographic": title, "rows": rows}
        if author:
            params["query.author"] = author
        response = self._get(self.base_url, params=params)
        response.raise_for_status()
        return (response.json().get("message") or {}).get("items") or []
