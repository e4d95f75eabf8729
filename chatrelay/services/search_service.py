from __future__ import annotations

from typing import List

import httpx

from chatrelay.logging_config import logger
from chatrelay.models import SourceAttribution


class SearchService:
    """
    Web search through a JSON endpoint returning `[{title, href, body}]`.
    Any failure yields no results.
    """

    def __init__(self, http: httpx.AsyncClient, *, url: str) -> None:
        self.http = http
        self.url = url

    async def search(self, query: str, *, amount: int = 1) -> List[SourceAttribution]:
        try:
            resp = await self.http.get(
                self.url,
                params={"q": query, "max_results": amount, "region": "en-us"},
            )
        except httpx.HTTPError as exc:
            logger.debug("search for %r failed: %s", query, exc)
            return []
        if resp.status_code != 200:
            logger.debug("search for %r returned status %s", query, resp.status_code)
            return []

        try:
            data = resp.json()
        except ValueError:
            return []
        if not isinstance(data, list):
            return []

        results: List[SourceAttribution] = []
        for entry in data[:amount]:
            if not isinstance(entry, dict) or not entry.get("href"):
                continue
            results.append(
                SourceAttribution(
                    title=str(entry.get("title") or ""),
                    url=str(entry["href"]),
                    description=str(entry.get("body") or ""),
                    query=query,
                )
            )
        return results


__all__ = ["SearchService"]
