"""
Streaming client for an OpenAI-style completions API.

One client is bound to one credential; the underlying httpx.AsyncClient is
shared across sessions. Errors are classified into `UpstreamAPIError`
so the conversation retry loop can decide what to do with them.
"""

from __future__ import annotations

import json
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import httpx

from chatrelay.conversation.exceptions import (
    GenerationError,
    GenerationErrorType,
    UpstreamAPIError,
)
from chatrelay.logging_config import logger
from chatrelay.models import CompletionChoice, CompletionData
from chatrelay.utils import maybe_await

ProgressCallback = Callable[[CompletionData], Union[Awaitable[None], None]]


def _error_fields(text: str) -> tuple[Optional[str], Optional[str]]:
    try:
        body = json.loads(text)
    except (TypeError, ValueError):
        return None, None
    error = body.get("error") if isinstance(body, dict) else None
    if not isinstance(error, dict):
        return None, None
    error_id = error.get("code") or error.get("type")
    message = error.get("message")
    return (
        str(error_id) if error_id is not None else None,
        str(message) if message is not None else None,
    )


class UpstreamClient:
    def __init__(self, http: httpx.AsyncClient, *, base_url: str) -> None:
        self.http = http
        self.base_url = base_url.rstrip("/")
        self.token: Optional[str] = None

    async def setup(self, token: str) -> None:
        self.token = token

    def headers(self) -> Dict[str, str]:
        if self.token is None:
            raise RuntimeError("API is not initialized")
        return {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
        }

    def _error(self, url: str, status_code: int, text: str) -> UpstreamAPIError:
        error_id, message = _error_fields(text)
        return UpstreamAPIError(
            endpoint=url, status_code=status_code, error_id=error_id, message=message
        )

    async def complete(
        self, body: Dict[str, Any], progress: Optional[ProgressCallback] = None
    ) -> CompletionData:
        """
        Stream a completion and return the accumulated result.
        `progress` receives the accumulated text after every chunk.
        """
        url = f"{self.base_url}/completions"
        payload = {**body, "stream": True}
        latest: Optional[CompletionData] = None
        done = False

        try:
            async with self.http.stream("POST", url, headers=self.headers(), json=payload) as resp:
                if resp.status_code != 200:
                    text = (await resp.aread()).decode("utf-8", errors="ignore")
                    logger.warning(
                        "completion request to %s failed with status %s: %s",
                        url,
                        resp.status_code,
                        text,
                    )
                    raise self._error(url, resp.status_code, text)

                async for line in resp.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    data = line[len("data:"):].strip()
                    if data == "[DONE]":
                        done = True
                        break
                    try:
                        chunk = json.loads(data)
                    except ValueError:
                        continue
                    choices = chunk.get("choices") if isinstance(chunk, dict) else None
                    if not choices:
                        continue

                    previous = latest.response.text if latest is not None else ""
                    latest = CompletionData(
                        created=chunk.get("created"),
                        usage=chunk.get("usage"),
                        response=CompletionChoice(
                            text=previous + (choices[0].get("text") or ""),
                            finish_reason=choices[0].get("finish_reason"),
                        ),
                    )
                    if progress is not None:
                        await maybe_await(progress(latest))
        except httpx.HTTPError as exc:
            logger.warning("completion transport error for %s: %s", url, exc)
            raise UpstreamAPIError(
                endpoint=url, status_code=None, message=str(exc)
            ) from exc

        if latest is None:
            # Stream closed without any content, finished or not.
            raise GenerationError(GenerationErrorType.EMPTY)
        if not done:
            logger.debug("completion stream from %s closed without [DONE]", url)
        return latest

    async def moderate(self, text: str) -> Dict[str, Any]:
        url = f"{self.base_url}/moderations"
        try:
            resp = await self.http.post(url, headers=self.headers(), json={"input": text})
        except httpx.HTTPError as exc:
            raise UpstreamAPIError(endpoint=url, status_code=None, message=str(exc)) from exc
        if resp.status_code != 200:
            raise self._error(url, resp.status_code, resp.text)
        return resp.json()


__all__ = ["ProgressCallback", "UpstreamClient"]
