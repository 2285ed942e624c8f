"""Pytest configuration and fixtures."""

import hashlib
import json
import os
import pathlib
from contextlib import asynccontextmanager
from types import SimpleNamespace

import pytest
import vcr
from aiohttp import web
from aiohttp.test_utils import TestServer

from notebooklm_unified.errors import MCPServerError
from notebooklm_unified.models import (
    GenerationResult,
    InfographicResult,
    PodcastResult,
    Slide,
    SlidesResult,
    StudioStatus,
)
from notebooklm_unified.settings import SettingsStore

# Calculate hash of prompts.py for cassette invalidation
PROMPTS_HASH = hashlib.sha256(
    (pathlib.Path(__file__).parent.parent / "notebooklm_unified" / "prompts.py").read_bytes()
).hexdigest()[:8]


def cassette(name: str) -> str:
    """Generate cassette filename with prompt hash."""
    return f"fixtures/{name}_{PROMPTS_HASH}.yaml"


@pytest.fixture
def my_vcr():
    """VCR fixture for recording/replaying HTTP interactions."""
    return vcr.VCR(
        cassette_library_dir="tests",
        filter_headers=[("authorization", "DUMMY"), ("x-goog-api-key", "DUMMY")],
        record_mode="once",
    )


def live_guard():
    """Check if live testing is enabled."""
    if not os.getenv("NOTEBOOKLM_LIVE"):
        pytest.skip("Live backends disabled (set NOTEBOOKLM_LIVE=1)")


# --- Fake local MCP server -------------------------------------------------


class FakeNotebookLM:
    """In-process stand-in for ``notebooklm-mcp --transport http``."""

    def __init__(self):
        self.healthy = True
        self.session_id = "session-1"
        self.sse = False
        self.initialize_calls = 0
        self.calls = []
        self.replies = {
            "notebook_list": {"notebooks": [{"id": "nb-1", "title": "Breathing basics"}]},
            "notebook_create": {"notebook_id": "nb-1"},
            "notebook_add_text": {"success": True},
            "audio_overview_create": {"success": True, "status": "in_progress"},
            "slide_deck_create": {"success": True, "status": "in_progress"},
            "infographic_create": {"success": True, "status": "in_progress"},
            "notebook_query": {"answer": "Breathe from the diaphragm."},
            "notebook_delete": {"success": True},
        }
        self.artifacts = []
        self.failing_tools = {}
        self.raw_text_tools = {}

    def tool_names(self):
        return [name for name, _ in self.calls]

    async def health(self, request):
        if not self.healthy:
            return web.json_response({"status": "down"}, status=503)
        return web.json_response({"status": "healthy"})

    async def mcp(self, request):
        body = await request.json()
        if body["method"] == "initialize":
            self.initialize_calls += 1
            return web.json_response(
                {"jsonrpc": "2.0", "id": body["id"], "result": {"protocolVersion": "2025-03-26"}},
                headers={"mcp-session-id": self.session_id},
            )

        if request.headers.get("Mcp-Session-Id") != self.session_id:
            return web.json_response(
                {"jsonrpc": "2.0", "id": body["id"], "error": {"code": -32000, "message": "Bad session"}}
            )

        name = body["params"]["name"]
        self.calls.append((name, body["params"]["arguments"]))
        result = self._tool_result(name)
        payload = {"jsonrpc": "2.0", "id": body["id"], "result": result}
        if self.sse:
            return web.Response(
                text=f"event: message\ndata: {json.dumps(payload)}\n\n",
                content_type="text/event-stream",
            )
        return web.json_response(payload)

    def _tool_result(self, name):
        if name in self.failing_tools:
            return {"isError": True, "content": [{"type": "text", "text": self.failing_tools[name]}]}
        if name in self.raw_text_tools:
            return {"content": [{"type": "text", "text": self.raw_text_tools[name]}]}
        if name == "studio_status":
            reply = {"artifacts": self.artifacts}
        else:
            reply = self.replies.get(name, {})
        return {"content": [{"type": "text", "text": json.dumps(reply)}]}

    def make_app(self):
        app = web.Application()
        app.router.add_get("/health", self.health)
        app.router.add_post("/mcp", self.mcp)
        return app


@asynccontextmanager
async def running(fake: FakeNotebookLM):
    """Serve ``fake`` on a free local port and yield its base URL."""
    server = TestServer(fake.make_app())
    await server.start_server()
    try:
        yield str(server.make_url("/"))
    finally:
        await server.close()


@pytest.fixture
def fake_server():
    return FakeNotebookLM()


# --- Fake openai client ----------------------------------------------------


class FakeCompletions:
    """Replays canned replies; the last one repeats."""

    def __init__(self, replies):
        self.replies = list(replies)
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=reply))])


def fake_openai(*replies):
    return SimpleNamespace(chat=SimpleNamespace(completions=FakeCompletions(replies)))


# --- Fake adapters ---------------------------------------------------------


class FakeLocalBackend:
    """Local adapter double with scripted studio status reports."""

    def __init__(self, healthy=True, fail_on=(), statuses=None, answer="Local answer"):
        self.healthy = healthy
        self.fail_on = set(fail_on)
        self.statuses = list(statuses or [])
        self.answer = answer
        self.calls = []
        self.resets = 0

    def call_names(self):
        return [name for name, _ in self.calls]

    def _record(self, name, *args):
        self.calls.append((name, args))
        if name in self.fail_on:
            raise MCPServerError(f"{name} rejected")

    async def check_health(self):
        self.calls.append(("check_health", ()))
        return self.healthy

    async def create_notebook(self, title):
        self._record("create_notebook", title)
        return "nb-1"

    async def add_text_source(self, notebook_id, text, title):
        self._record("add_text_source", notebook_id, title)

    async def _start(self, name, content_type, notebook_id):
        self._record(name, notebook_id)
        return GenerationResult(type=content_type, status="processing", task_id=notebook_id, data={})

    async def create_audio_overview(self, notebook_id, language="he", focus_prompt=None):
        return await self._start("create_audio_overview", "podcast", notebook_id)

    async def create_slide_deck(self, notebook_id, language="he", focus_prompt=None):
        return await self._start("create_slide_deck", "slides", notebook_id)

    async def create_infographic(self, notebook_id, language="he", focus_prompt=None):
        return await self._start("create_infographic", "infographic", notebook_id)

    async def query_notebook(self, notebook_id, question):
        self._record("query_notebook", notebook_id, question)
        return self.answer

    async def get_studio_status(self, notebook_id):
        self.calls.append(("get_studio_status", (notebook_id,)))
        if not self.statuses:
            return StudioStatus()
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        if isinstance(status, Exception):
            raise status
        return StudioStatus.model_validate(status)

    def reset_session(self):
        self.resets += 1


class FakeCloudBackend:
    """Cloud adapter double; ``errors`` maps a method name to exceptions raised in turn."""

    def __init__(self, configured=True, fail_on=(), errors=None):
        self.configured = configured
        self.fail_on = set(fail_on)
        self.errors = {name: list(queue) for name, queue in (errors or {}).items()}
        self.calls = []

    def call_names(self):
        return [name for name, _ in self.calls]

    def _record(self, name, **kwargs):
        self.calls.append((name, kwargs))
        if name in self.fail_on:
            raise RuntimeError(f"{name} exploded")
        pending = self.errors.get(name)
        if pending:
            raise pending.pop(0)

    def is_configured(self):
        return self.configured

    async def generate_podcast_script(self, title, content, language="he", focus_prompt=None):
        self._record("generate_podcast_script", title=title, language=language)
        return PodcastResult(script="[Host]: Welcome.\n[Co-host]: Let's breathe.")

    async def generate_slides(self, title, content, language="he", focus_prompt=None):
        self._record("generate_slides", title=title, language=language)
        return SlidesResult(slides=[Slide(title="Intro", content="Breathe in", speaker_notes="Slowly")])

    async def generate_infographic_content(self, title, content, language="he", focus_prompt=None):
        self._record("generate_infographic_content", title=title, language=language)
        return InfographicResult(description=title, key_points=["Inhale", "Exhale"])

    async def answer_question(self, content, question):
        self._record("answer_question", question=question)
        return "Cloud answer"


@pytest.fixture
def settings_store(tmp_path):
    store = SettingsStore(tmp_path / "settings.json")
    store.load()
    return store


@pytest.fixture
def sample_source():
    return (
        "Diaphragmatic breathing supports the voice. Inhale through the nose, "
        "let the belly expand, and exhale slowly on a hiss."
    )
