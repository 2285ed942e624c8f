"""Tests for data models."""

import pytest
from pydantic import ValidationError

from notebooklm_unified.models import (
    GenerationRequest,
    GenerationResult,
    InfographicResult,
    PodcastResult,
    QueueItem,
    Slide,
    StudioArtifact,
    StudioStatus,
)


def test_generation_request_defaults():
    """Test GenerationRequest creation and default values."""
    request = GenerationRequest(title="Breathing basics", source_content="text", outputs=["podcast"])

    assert request.title == "Breathing basics"
    assert request.outputs == ["podcast"]
    assert request.question is None
    assert request.language == "he"
    assert request.focus_prompt is None


def test_generation_request_rejects_empty_source():
    """Whitespace-only source content is a validation error."""
    with pytest.raises(ValidationError, match="source_content"):
        GenerationRequest(title="t", source_content="   \n", outputs=["podcast"])


def test_generation_request_needs_something_to_do():
    """Test that a request without outputs or question is rejected."""
    with pytest.raises(ValidationError, match="at least one output"):
        GenerationRequest(title="t", source_content="text", question="   ")


def test_generation_request_dedupes_outputs_in_order():
    request = GenerationRequest(
        title="t", source_content="text", outputs=["slides", "podcast", "slides"]
    )
    assert request.outputs == ["slides", "podcast"]


def test_generation_request_rejects_unknown_output():
    with pytest.raises(ValidationError):
        GenerationRequest(title="t", source_content="text", outputs=["video"])


def test_generation_result_terminal_states():
    """Test is_terminal for every status."""
    assert GenerationResult(type="podcast", status="completed").is_terminal
    assert GenerationResult(type="podcast", status="failed").is_terminal
    assert not GenerationResult(type="podcast", status="processing").is_terminal
    assert not GenerationResult(type="podcast").is_terminal


def test_queue_item_progress_is_clamped():
    """Test QueueItem progress bounds."""
    high = QueueItem(id="1", batch_id="b", content_type="podcast", progress_percent=140)
    low = QueueItem(id="2", batch_id="b", content_type="podcast", progress_percent=-5)
    missing = QueueItem(id="3", batch_id="b", content_type="podcast", progress_percent=None)

    assert high.progress_percent == 100
    assert low.progress_percent == 0
    assert missing.progress_percent == 0
    assert missing.settings == {}


def test_studio_artifact_content_url_fallbacks():
    """Test that any of the known URL fields is picked up."""
    assert StudioArtifact(type="audio", audio_url="https://a/1.mp3").content_url == "https://a/1.mp3"
    assert StudioArtifact(type="slide_deck", slide_deck_url="https://s/1").content_url == "https://s/1"
    assert StudioArtifact(type="infographic", url="https://i/1").content_url == "https://i/1"
    assert StudioArtifact(type="audio").content_url is None


def test_studio_status_tolerates_missing_artifacts():
    assert StudioStatus.model_validate({"artifacts": None}).artifacts == []
    assert StudioStatus.model_validate({}).artifacts == []


def test_slide_accepts_camel_case_and_bullet_lists():
    """Test Slide with the field shapes models actually return."""
    slide = Slide.model_validate({
        "title": "Posture",
        "content": ["Stand tall", "Relax shoulders"],
        "speakerNotes": "Demonstrate first",
    })

    assert slide.content == "Stand tall\nRelax shoulders"
    assert slide.speaker_notes == "Demonstrate first"
    assert slide.model_dump(by_alias=True)["speakerNotes"] == "Demonstrate first"


def test_result_payloads_dump_with_aliases():
    podcast = PodcastResult(script="[Host]: hi")
    infographic = InfographicResult(description="d", key_points=["a"])

    assert podcast.model_dump(by_alias=True, exclude_none=True) == {"script": "[Host]: hi"}
    assert infographic.model_dump(by_alias=True)["keyPoints"] == ["a"]
