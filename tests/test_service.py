"""Tests for the service wiring."""

import asyncio

import pytest

from notebooklm_unified import config
from notebooklm_unified.errors import ConfigurationError
from notebooklm_unified.models import GenerationRequest
from notebooklm_unified.queue_store import SqliteQueueStore
from notebooklm_unified.service import NotebookLMService, build_queue_store
from tests.conftest import FakeCloudBackend, FakeLocalBackend, running


def test_adapters_follow_saved_settings(settings_store):
    settings_store.update(local_mcp_url="http://localhost:4000/", gemini_api_key="saved-key")

    service = NotebookLMService(settings_store)

    assert service.local.base_url == "http://localhost:4000"
    assert service.cloud.api_key == "saved-key"
    assert service.processor is None


def test_update_settings_rebuilds_changed_adapters(settings_store):
    service = NotebookLMService(settings_store)
    local_before = service.local

    service.update_settings(mode="cloud")
    assert service.local is local_before

    service.update_settings(local_mcp_url="http://localhost:5000")
    assert service.local is not local_before
    assert service.local.base_url == "http://localhost:5000"
    assert service.orchestrator.selector.local is service.local


def test_enqueue_needs_a_store(settings_store):
    service = NotebookLMService(settings_store)
    request = GenerationRequest(title="t", source_content="text", outputs=["podcast"])

    with pytest.raises(RuntimeError, match="No queue store"):
        asyncio.run(service.enqueue(request))


def test_status_reports_local_server(settings_store, fake_server):
    async def scenario():
        async with running(fake_server) as url:
            service = NotebookLMService(settings_store)
            service.update_settings(local_mcp_url=url)
            return await service.get_status()

    status = asyncio.run(scenario())

    assert status.local_available is True
    assert status.active_backend == "local"


def test_build_queue_store(tmp_path, monkeypatch):
    monkeypatch.setattr(config, "QUEUE_DB", tmp_path / "queue.sqlite")
    monkeypatch.setattr(config, "SUPABASE_URL", None)

    assert isinstance(build_queue_store("sqlite"), SqliteQueueStore)
    with pytest.raises(ConfigurationError):
        build_queue_store("supabase")


def test_processor_uses_service_orchestrator(settings_store, tmp_path):
    store = SqliteQueueStore(tmp_path / "queue.sqlite")
    service = NotebookLMService(settings_store, store=store, processor_options={"max_items": 2})

    assert service.processor.orchestrator is service.orchestrator
    assert service.processor.max_items == 2


def make_service(settings_store, tmp_path, local=None, cloud=None, mode="auto"):
    settings_store.update(mode=mode)
    service = NotebookLMService(settings_store, store=SqliteQueueStore(tmp_path / "queue.sqlite"))
    service.selector.local = local or FakeLocalBackend(healthy=False)
    service.selector.cloud = cloud or FakeCloudBackend(configured=False)
    return service


def make_request(**kwargs):
    fields = {
        "title": "Breathing basics",
        "source_content": "Inhale through the nose and exhale slowly.",
        "outputs": ["podcast"],
        "question": "What supports the voice?",
    }
    fields.update(kwargs)
    return GenerationRequest(**fields)


def test_submit_runs_immediately_when_local_is_up(settings_store, tmp_path):
    """Answers are stored right away; the studio job keeps its notebook as task id."""
    local = FakeLocalBackend(healthy=True)
    service = make_service(settings_store, tmp_path, local=local)
    seen = []

    result = asyncio.run(service.submit(make_request(), on_progress=seen.append))

    items = {item.content_type: item for item in result.items}
    assert result.processed_immediately is True
    assert items["podcast"].status == "processing"
    assert items["podcast"].task_id == "nb-1"
    assert items["question"].status == "completed"
    assert items["question"].answer == "Local answer"
    assert {item.batch_id for item in result.items} == {result.batch_id}
    assert "get_studio_status" not in local.call_names()
    assert seen


def test_submit_runs_immediately_in_the_cloud(settings_store, tmp_path):
    service = make_service(settings_store, tmp_path, cloud=FakeCloudBackend(), mode="cloud")

    result = asyncio.run(service.submit(make_request(outputs=["podcast", "slides"])))

    items = {item.content_type: item for item in result.items}
    assert {item.status for item in result.items} == {"completed"}
    assert items["podcast"].transcript.startswith("[Host]")
    assert "Intro" in items["slides"].description
    assert items["question"].answer == "Cloud answer"


def test_submit_queues_when_no_backend_is_up(settings_store, tmp_path):
    service = make_service(settings_store, tmp_path)

    result = asyncio.run(service.submit(make_request()))

    assert result.processed_immediately is False
    assert {item.status for item in result.items} == {"pending"}
    assert all(item.progress_percent == 0 for item in result.items)


def test_submit_can_be_forced_to_queue(settings_store, tmp_path):
    local = FakeLocalBackend(healthy=True)
    service = make_service(settings_store, tmp_path, local=local)

    result = asyncio.run(service.submit(make_request(), process_immediately=False))

    pending = asyncio.run(service.store.fetch_pending_batch(result.batch_id))
    assert [item.content_type for item in pending] == ["podcast", "question"]
    assert local.calls == []
