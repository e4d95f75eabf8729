from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

from chatrelay.logging_config import logger
from chatrelay.upstream.openai_client import UpstreamClient


@dataclass
class ModerationResult:
    flagged: bool
    highest_category: Optional[str]
    highest_score: float
    scores: Dict[str, float]


async def check(client: UpstreamClient, text: str) -> Optional[ModerationResult]:
    """
    Run the prompt through the upstream moderation endpoint.
    Returns None when the check could not be performed.
    """
    try:
        data = await client.moderate(text)
    except Exception as exc:
        logger.debug("moderation check skipped: %s", exc)
        return None

    results = data.get("results") if isinstance(data, dict) else None
    if not results:
        return None
    result = results[0]

    scores = {
        str(key): float(value)
        for key, value in (result.get("category_scores") or {}).items()
        if isinstance(value, (int, float))
    }
    highest = max(scores.items(), key=lambda item: item[1], default=(None, 0.0))
    return ModerationResult(
        flagged=bool(result.get("flagged")),
        highest_category=highest[0],
        highest_score=highest[1],
        scores=scores,
    )


__all__ = ["ModerationResult", "check"]
