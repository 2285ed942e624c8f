"""Polling of the local studio for asynchronous artifact completion."""

import asyncio
from dataclasses import dataclass
from typing import AsyncIterator, Iterable, Optional, Tuple

import structlog

from .models import StudioArtifact

log = structlog.get_logger()

# Substring of the studio artifact type for each content type
ARTIFACT_KEYS = {
    "podcast": "audio",
    "slides": "slide",
    "infographic": "infographic",
}

POLL_START_PROGRESS = 50
POLL_MAX_PROGRESS = 95


@dataclass(frozen=True)
class PollResult:
    """One studio-status observation for a single artifact."""

    attempt: int
    state: str  # pending | completed | failed | error
    progress: int
    url: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in ("completed", "failed")


def progress_for_attempt(attempt: int) -> int:
    """Heuristic progress ramp: 52, 54, ... capped at 95. Not a real percentage."""
    return POLL_START_PROGRESS + min(attempt * 2, POLL_MAX_PROGRESS - POLL_START_PROGRESS)


def match_artifact(artifacts: Iterable[StudioArtifact], content_type: str) -> Optional[StudioArtifact]:
    key = ARTIFACT_KEYS.get(content_type, content_type)
    for artifact in artifacts:
        if key in (artifact.type or ""):
            return artifact
    return None


def classify_artifact(artifact: Optional[StudioArtifact]) -> Tuple[str, Optional[str]]:
    """Map a studio artifact to (state, url). Completion requires a URL."""
    if artifact is None:
        return "pending", None
    if artifact.status == "completed" and artifact.content_url:
        return "completed", artifact.content_url
    if artifact.status == "failed":
        return "failed", None
    return "pending", None


async def poll_studio(
    client,
    notebook_id: str,
    content_type: str,
    max_attempts: int,
    interval: float,
) -> AsyncIterator[PollResult]:
    """Yield at most ``max_attempts`` observations, stopping at a terminal one.

    A failed status request yields an ``error`` observation and polling goes
    on; a single miss never decides the outcome.
    """
    for attempt in range(1, max_attempts + 1):
        await asyncio.sleep(interval)

        try:
            status = await client.get_studio_status(notebook_id)
        except Exception as e:
            log.warning("Studio status poll failed",
                        notebook_id=notebook_id,
                        content_type=content_type,
                        attempt=attempt,
                        error=str(e))
            yield PollResult(attempt, "error", progress_for_attempt(attempt), error=str(e))
            continue

        state, url = classify_artifact(match_artifact(status.artifacts, content_type))
        progress = 100 if state == "completed" else progress_for_attempt(attempt)
        yield PollResult(attempt, state, progress, url=url)
        if state in ("completed", "failed"):
            return
