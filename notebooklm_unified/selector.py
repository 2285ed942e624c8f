"""Backend selection from the saved mode and live availability checks."""

import structlog

from .gemini_client import GeminiClient
from .mcp_client import LocalMCPClient
from .models import BackendStatus
from .settings import SettingsStore

log = structlog.get_logger()


def resolve_backend(mode: str, local_available: bool, cloud_available: bool):
    """Pick the active backend for ``mode``; None when nothing can serve it."""
    if mode == "local":
        return "local" if local_available else None
    if mode == "cloud":
        return "cloud" if cloud_available else None
    # auto: prefer the free local server
    if local_available:
        return "local"
    if cloud_available:
        return "cloud"
    return None


class BackendSelector:
    """Computes a fresh ``BackendStatus`` on every call.

    Nothing is cached: the local server can be started or stopped at any time,
    and the mode is re-read from the settings store each time.
    """

    def __init__(self, settings: SettingsStore, local: LocalMCPClient, cloud: GeminiClient):
        self.settings = settings
        self.local = local
        self.cloud = cloud

    async def get_status(self) -> BackendStatus:
        mode = self.settings.current.mode
        local_available = await self.local.check_health()
        cloud_available = self.cloud.is_configured()

        status = BackendStatus(
            mode=mode,
            local_available=local_available,
            cloud_available=cloud_available,
            active_backend=resolve_backend(mode, local_available, cloud_available),
        )
        log.debug("Backend status", **status.model_dump())
        return status
