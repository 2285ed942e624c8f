"""Wires settings, adapters, selector, orchestrator and queue processor together."""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import structlog

from . import config
from .gemini_client import GeminiClient
from .mcp_client import LocalMCPClient
from .models import BackendStatus, GenerationRequest, GenerationResult, QueueItem
from .orchestrator import ContentOrchestrator, ProgressCallback
from .processor import QueueProcessor
from .queue_store import QueueStore, SqliteQueueStore, SupabaseQueueStore, submit_request
from .selector import BackendSelector
from .settings import BackendSettings, SettingsStore

log = structlog.get_logger()


@dataclass
class SubmitResult:
    batch_id: str
    items: List[QueueItem]
    processed_immediately: bool


def build_queue_store(backend: str = config.QUEUE_BACKEND) -> QueueStore:
    """Create the configured queue store. Raises ConfigurationError without credentials."""
    if backend == "sqlite":
        return SqliteQueueStore(config.QUEUE_DB)
    return SupabaseQueueStore(config.SUPABASE_URL, config.SUPABASE_SERVICE_ROLE_KEY)


class NotebookLMService:
    """Explicitly constructed entry point for both the immediate and the queued path."""

    def __init__(
        self,
        settings: SettingsStore,
        store: Optional[QueueStore] = None,
        processor_options: Optional[Dict[str, Any]] = None,
    ):
        self.settings = settings
        self.store = store
        self.processor_options = processor_options or {}
        self._build()

    @classmethod
    def from_config(cls, settings_path: Path = config.SETTINGS_FILE, store: Optional[QueueStore] = None):
        settings = SettingsStore(settings_path)
        settings.load()
        return cls(settings, store=store)

    def _build(self) -> None:
        current = self.settings.current
        self.local = LocalMCPClient(base_url=current.local_mcp_url or config.NOTEBOOKLM_MCP_URL)
        self.cloud = GeminiClient(api_key=current.gemini_api_key or config.GEMINI_API_KEY)
        self.selector = BackendSelector(self.settings, self.local, self.cloud)
        self.orchestrator = ContentOrchestrator(self.selector)
        self.processor = (
            QueueProcessor(self.store, self.orchestrator, **self.processor_options)
            if self.store is not None else None
        )

    def update_settings(self, **changes: Any) -> BackendSettings:
        """Persist new settings; rebuild adapters whose endpoint or key changed."""
        before = self.settings.current
        after = self.settings.update(**changes)
        if (after.local_mcp_url, after.gemini_api_key) != (before.local_mcp_url, before.gemini_api_key):
            log.info("Backend configuration changed, rebuilding clients")
            self._build()
        return after

    async def get_status(self) -> BackendStatus:
        return await self.selector.get_status()

    async def generate_content(
        self, request: GenerationRequest, on_progress: Optional[ProgressCallback] = None
    ) -> List[GenerationResult]:
        return await self.orchestrator.generate_content(request, on_progress)

    async def enqueue(
        self, request: GenerationRequest, settings: Optional[Dict[str, Any]] = None
    ) -> Tuple[str, List[QueueItem]]:
        if self.store is None:
            raise RuntimeError("No queue store configured")
        return await submit_request(self.store, request, settings)

    async def submit(
        self,
        request: GenerationRequest,
        process_immediately: Optional[bool] = None,
        settings: Optional[Dict[str, Any]] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> SubmitResult:
        """Persist a request and, when a backend is up, run it right away.

        With ``process_immediately`` left as None the decision follows the
        current backend status. Immediate rows are written as ``processing``
        and each result is stored on its row; studio jobs keep their task id
        for ``check_item`` or the worker's stuck recovery. Otherwise the rows
        wait as ``pending`` for the queue processor.
        """
        if self.store is None:
            raise RuntimeError("No queue store configured")
        if process_immediately is None:
            process_immediately = (await self.get_status()).active_backend is not None

        status = "processing" if process_immediately else "pending"
        batch_id, items = await submit_request(self.store, request, settings, status=status)
        if process_immediately and items:
            await self.processor.run_claimed_batch(items, wait_for_artifacts=False, on_progress=on_progress)
            items = [await self.store.get_item(item.id) for item in items]

        log.info("Request submitted", batch_id=batch_id, processed_immediately=process_immediately)
        return SubmitResult(batch_id=batch_id, items=items, processed_immediately=process_immediately)
