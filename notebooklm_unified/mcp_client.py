"""Client for a local notebooklm-mcp server running with ``--transport http``.

The server speaks JSON-RPC over a single ``/mcp`` endpoint and answers either
with plain JSON or with a server-sent event stream. A session is opened once
with an ``initialize`` handshake; the session id travels back in the
``mcp-session-id`` header and must accompany every tool call.
"""

import asyncio
import itertools
import json
from typing import Any, Dict, List, Optional

import aiohttp
import structlog

from .config import (
    DEFAULT_LANGUAGE,
    MCP_CLIENT_NAME,
    MCP_HEALTH_TIMEOUT,
    MCP_INIT_TIMEOUT,
    MCP_TOOL_TIMEOUT,
    NOTEBOOKLM_MCP_URL,
)
from .errors import MCPServerError, MCPSessionError
from .models import GenerationResult, ParsedResponse, RawText, Structured, StudioStatus
from .utils import parse_sse_payload

log = structlog.get_logger()

PROTOCOL_VERSION = "2025-03-26"
BASE_HEADERS = {
    "Content-Type": "application/json",
    "Accept": "application/json, text/event-stream",
}


def parse_tool_result(result: Dict[str, Any]) -> ParsedResponse:
    """Turn an MCP ``tools/call`` result into a ``Structured`` or ``RawText`` reply.

    ``structuredContent`` wins when present. Otherwise the first text block is
    parsed as JSON, and if that is not a JSON object the raw text is kept.
    """
    structured = result.get("structuredContent")
    if isinstance(structured, dict):
        return Structured(structured)

    content = result.get("content") or []
    first = content[0] if content and isinstance(content[0], dict) else {}
    text = first.get("text")
    if not text:
        return Structured({})

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        return RawText(text)
    if isinstance(parsed, dict):
        return Structured(parsed)
    return RawText(text)


def _describe(parsed: ParsedResponse) -> str:
    if isinstance(parsed, RawText):
        return parsed.text[:200]
    return json.dumps(parsed.payload, ensure_ascii=False)[:200]


class LocalMCPClient:
    """Session-holding adapter for the local NotebookLM MCP server."""

    def __init__(
        self,
        base_url: str = NOTEBOOKLM_MCP_URL,
        health_timeout: float = MCP_HEALTH_TIMEOUT,
        init_timeout: float = MCP_INIT_TIMEOUT,
        tool_timeout: float = MCP_TOOL_TIMEOUT,
        client_name: str = MCP_CLIENT_NAME,
    ):
        self.base_url = base_url.rstrip("/")
        self.health_timeout = health_timeout
        self.init_timeout = init_timeout
        self.tool_timeout = tool_timeout
        self.client_name = client_name
        self.session_id: Optional[str] = None
        self._request_ids = itertools.count(2)  # id 1 is the handshake

    async def check_health(self) -> bool:
        """Return True if the server answers its health endpoint in time."""
        timeout = aiohttp.ClientTimeout(total=self.health_timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(f"{self.base_url}/health") as response:
                    if response.status != 200:
                        return False
                    data = await response.json(content_type=None)
                    return isinstance(data, dict) and data.get("status") == "healthy"
        except Exception as e:
            log.debug("MCP health check failed", url=self.base_url, error=repr(e))
            return False

    async def init_session(self) -> str:
        """Open an MCP session, or return the one already held."""
        if self.session_id:
            return self.session_id

        payload = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "initialize",
            "params": {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {},
                "clientInfo": {"name": self.client_name, "version": "1.0"},
            },
        }
        timeout = aiohttp.ClientTimeout(total=self.init_timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(f"{self.base_url}/mcp", json=payload, headers=BASE_HEADERS) as response:
                    session_id = response.headers.get("mcp-session-id")
        except asyncio.TimeoutError as e:
            raise MCPSessionError(f"MCP handshake timed out after {self.init_timeout}s") from e
        except aiohttp.ClientError as e:
            raise MCPSessionError(f"MCP handshake failed: {e}") from e

        if not session_id:
            raise MCPSessionError("Failed to get MCP session ID")

        self.session_id = session_id
        log.info("MCP session initialized", session_id=session_id)
        return session_id

    def reset_session(self) -> None:
        """Forget the session so the next call performs a fresh handshake."""
        if self.session_id:
            log.warning("Resetting MCP session", session_id=self.session_id)
        self.session_id = None

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> ParsedResponse:
        """Invoke one MCP tool and parse its reply."""
        session_id = await self.init_session()

        payload = {
            "jsonrpc": "2.0",
            "id": next(self._request_ids),
            "method": "tools/call",
            "params": {"name": name, "arguments": arguments},
        }
        headers = {**BASE_HEADERS, "Mcp-Session-Id": session_id}
        timeout = aiohttp.ClientTimeout(total=self.tool_timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(f"{self.base_url}/mcp", json=payload, headers=headers) as response:
                    if not 200 <= response.status < 300:
                        raise MCPServerError(f"MCP server error: {response.status} {response.reason}")
                    text = await response.text()
        except asyncio.TimeoutError as e:
            raise MCPServerError(f"MCP tool {name} timed out after {self.tool_timeout}s") from e
        except aiohttp.ClientError as e:
            raise MCPServerError(f"MCP tool {name} request failed: {e}") from e

        try:
            data = parse_sse_payload(text)
        except json.JSONDecodeError as e:
            raise MCPServerError(f"Malformed MCP reply for {name}: {e}") from e

        if not isinstance(data, dict):
            raise MCPServerError(f"Unexpected MCP reply for {name}")
        if data.get("error"):
            error = data["error"]
            message = error.get("message") if isinstance(error, dict) else None
            raise MCPServerError(f"MCP RPC error: {message or json.dumps(error)}")

        result = data.get("result")
        if not isinstance(result, dict):
            raise MCPServerError("Empty MCP result")

        parsed = parse_tool_result(result)
        if result.get("isError"):
            raise MCPServerError(f"MCP tool {name} failed: {_describe(parsed)}")

        log.debug("MCP tool call completed", tool=name, shape=type(parsed).__name__)
        return parsed

    async def list_notebooks(self) -> List[Dict[str, Any]]:
        parsed = await self.call_tool("notebook_list", {})
        if isinstance(parsed, Structured):
            return parsed.payload.get("notebooks") or []
        return []

    async def create_notebook(self, title: str) -> str:
        parsed = await self.call_tool("notebook_create", {"title": title})

        notebook_id = None
        if isinstance(parsed, Structured):
            # The server has replied both as {notebook_id} and {notebook: {id}}
            notebook = parsed.payload.get("notebook")
            notebook_id = parsed.payload.get("notebook_id") or (
                notebook.get("id") if isinstance(notebook, dict) else None
            )
        if not notebook_id:
            raise MCPServerError(f"Failed to create notebook: {_describe(parsed)}")

        log.info("Notebook created", notebook_id=notebook_id, title=title)
        return notebook_id

    async def add_text_source(self, notebook_id: str, text: str, title: str) -> None:
        await self.call_tool("notebook_add_text", {
            "notebook_id": notebook_id,
            "text": text,
            "title": title,
        })
        log.info("Source added", notebook_id=notebook_id, chars=len(text))

    async def create_audio_overview(
        self,
        notebook_id: str,
        format: str = "deep_dive",  # deep_dive | brief | critique | debate
        length: str = "default",  # short | default | long
        language: str = DEFAULT_LANGUAGE,
        focus_prompt: Optional[str] = None,
    ) -> GenerationResult:
        return await self._create_artifact("podcast", "audio_overview_create", notebook_id, {
            "format": format,
            "length": length,
            "language": language,
            "focus_prompt": focus_prompt or "",
        })

    async def create_slide_deck(
        self,
        notebook_id: str,
        format: str = "detailed_deck",  # detailed_deck | presenter_slides
        length: str = "default",
        language: str = DEFAULT_LANGUAGE,
        focus_prompt: Optional[str] = None,
    ) -> GenerationResult:
        return await self._create_artifact("slides", "slide_deck_create", notebook_id, {
            "format": format,
            "length": length,
            "language": language,
            "focus_prompt": focus_prompt or "",
        })

    async def create_infographic(
        self,
        notebook_id: str,
        orientation: str = "landscape",  # landscape | portrait | square
        detail_level: str = "standard",  # concise | standard | detailed
        language: str = DEFAULT_LANGUAGE,
        focus_prompt: Optional[str] = None,
    ) -> GenerationResult:
        return await self._create_artifact("infographic", "infographic_create", notebook_id, {
            "orientation": orientation,
            "detail_level": detail_level,
            "language": language,
            "focus_prompt": focus_prompt or "",
        })

    async def _create_artifact(
        self, content_type: str, tool: str, notebook_id: str, options: Dict[str, Any]
    ) -> GenerationResult:
        """Ask the studio to start an artifact; returns once the job is accepted."""
        parsed = await self.call_tool(tool, {"notebook_id": notebook_id, **options, "confirm": True})

        if isinstance(parsed, Structured):
            payload = parsed.payload
            if payload.get("success") is False or payload.get("status") in ("error", "failed"):
                raise MCPServerError(
                    f"{content_type} generation was rejected: {payload.get('error') or _describe(parsed)}"
                )
            data = payload
        else:
            data = {"raw": parsed.text}

        log.info("Studio job accepted", content_type=content_type, notebook_id=notebook_id)
        return GenerationResult(
            type=content_type,
            status="processing",
            data=data,
            url=data.get("url"),
            task_id=notebook_id,
        )

    async def get_studio_status(self, notebook_id: str) -> StudioStatus:
        parsed = await self.call_tool("studio_status", {"notebook_id": notebook_id})
        if isinstance(parsed, RawText):
            raise MCPServerError(f"Unreadable studio status: {_describe(parsed)}")
        return StudioStatus.model_validate(parsed.payload)

    async def query_notebook(self, notebook_id: str, question: str) -> str:
        parsed = await self.call_tool("notebook_query", {
            "notebook_id": notebook_id,
            "query": question,
        })
        if isinstance(parsed, RawText):
            return parsed.text
        answer = parsed.payload.get("answer")
        if answer:
            return str(answer)
        return json.dumps(parsed.payload, ensure_ascii=False)

    async def delete_notebook(self, notebook_id: str) -> None:
        await self.call_tool("notebook_delete", {"notebook_id": notebook_id, "confirm": True})
        log.info("Notebook deleted", notebook_id=notebook_id)
