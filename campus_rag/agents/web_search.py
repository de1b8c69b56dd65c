"""
Web search collaborators.
"""

import asyncio
from typing import Any, Dict, List

import requests

from ..core.errors import CollaboratorUnavailableError
from .agent import IWebSearch, WebResult


class NullWebSearch(IWebSearch):
    """No external search configured: every search finds nothing."""

    async def search(self, query: str, max_results: int = 5) -> List[WebResult]:
        return []

    def get_status(self) -> Dict[str, Any]:
        return {"collaborator": "NullWebSearch", "status": "disabled"}


class HttpWebSearch(IWebSearch):
    """
    JSON search endpoint client (SearxNG-compatible).

    Expects a response body of the form
    {"results": [{"title": ..., "content": ..., "url": ...}, ...]}.
    The blocking request runs in a worker thread.
    """

    def __init__(self, url: str, timeout_sec: float = 10.0, session: requests.Session = None):
        self.url = url
        self.timeout_sec = timeout_sec
        self.session = session or requests.Session()

    def _fetch(self, query: str) -> Dict[str, Any]:
        response = self.session.get(
            self.url,
            params={"q": query, "format": "json"},
            timeout=self.timeout_sec
        )
        response.raise_for_status()
        return response.json()

    async def search(self, query: str, max_results: int = 5) -> List[WebResult]:
        try:
            body = await asyncio.to_thread(self._fetch, query)
        except requests.RequestException as e:
            raise CollaboratorUnavailableError("web_search", f"request failed: {e}", e) from e
        except ValueError as e:
            raise CollaboratorUnavailableError("web_search", f"invalid JSON: {e}", e) from e

        if not isinstance(body, dict) or not isinstance(body.get("results", []), list):
            raise CollaboratorUnavailableError("web_search", "malformed response body")

        results = []
        for item in body.get("results", []):
            if not isinstance(item, dict):
                continue
            snippet = (item.get("content") or item.get("snippet") or "").strip()
            title = (item.get("title") or "").strip()
            if not snippet and not title:
                continue
            results.append(WebResult(title=title, snippet=snippet, url=item.get("url")))
            if len(results) >= max_results:
                break
        return results

    def get_status(self) -> Dict[str, Any]:
        return {"collaborator": "HttpWebSearch", "url": self.url, "status": "ready"}
