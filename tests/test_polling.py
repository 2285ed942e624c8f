"""Tests for studio status polling."""

import asyncio

from notebooklm_unified.errors import MCPServerError
from notebooklm_unified.models import StudioArtifact
from notebooklm_unified.polling import (
    classify_artifact,
    match_artifact,
    poll_studio,
    progress_for_attempt,
)
from tests.conftest import FakeLocalBackend

AUDIO_DONE = {"type": "audio_overview", "status": "completed", "audio_url": "https://a/1.mp3"}
AUDIO_RUNNING = {"type": "audio_overview", "status": "in_progress"}


def collect(client, content_type="podcast", max_attempts=5):
    async def run():
        return [poll async for poll in poll_studio(client, "nb-1", content_type, max_attempts, 0)]
    return asyncio.run(run())


def test_progress_ramp_is_capped():
    assert progress_for_attempt(1) == 52
    assert progress_for_attempt(10) == 70
    assert progress_for_attempt(22) == 94
    assert progress_for_attempt(23) == 95
    assert progress_for_attempt(60) == 95


def test_match_artifact_by_type_substring():
    artifacts = [
        StudioArtifact(type="slide_deck", status="completed"),
        StudioArtifact(type="audio_overview", status="in_progress"),
    ]
    assert match_artifact(artifacts, "podcast").type == "audio_overview"
    assert match_artifact(artifacts, "slides").type == "slide_deck"
    assert match_artifact(artifacts, "infographic") is None


def test_completed_without_url_is_still_pending():
    assert classify_artifact(StudioArtifact(type="audio", status="completed")) == ("pending", None)
    assert classify_artifact(StudioArtifact(type="audio", status="failed")) == ("failed", None)
    assert classify_artifact(None) == ("pending", None)


def test_poll_stops_at_completion():
    client = FakeLocalBackend(statuses=[
        {"artifacts": [AUDIO_RUNNING]},
        {"artifacts": [AUDIO_DONE]},
    ])

    polls = collect(client)

    assert [(p.attempt, p.state, p.progress) for p in polls] == [(1, "pending", 52), (2, "completed", 100)]
    assert polls[-1].url == "https://a/1.mp3"
    assert polls[-1].is_terminal


def test_poll_is_finite():
    """Never-finishing artifacts produce exactly max_attempts observations."""
    client = FakeLocalBackend(statuses=[{"artifacts": [AUDIO_RUNNING]}])

    polls = collect(client, max_attempts=3)

    assert [p.state for p in polls] == ["pending"] * 3
    assert [p.progress for p in polls] == [52, 54, 56]


def test_poll_errors_do_not_end_polling():
    client = FakeLocalBackend(statuses=[
        MCPServerError("connection reset"),
        {"artifacts": [AUDIO_DONE]},
    ])

    polls = collect(client)

    assert [p.state for p in polls] == ["error", "completed"]
    assert "connection reset" in polls[0].error


def test_poll_stops_on_failure():
    client = FakeLocalBackend(statuses=[{"artifacts": [{"type": "slide_deck", "status": "failed"}]}])

    polls = collect(client, content_type="slides")

    assert [p.state for p in polls] == ["failed"]
