"""Persisted backend preferences (mode, local server URL, cloud credential)."""

from pathlib import Path
from typing import Any, Optional

import structlog
from pydantic import BaseModel, ValidationError

from .models import BackendMode

log = structlog.get_logger()


class BackendSettings(BaseModel):
    """User-configurable backend selection."""

    mode: BackendMode = "auto"
    local_mcp_url: Optional[str] = None  # falls back to NOTEBOOKLM_MCP_URL
    gemini_api_key: Optional[str] = None  # falls back to GEMINI_API_KEY


class SettingsStore:
    """Loads backend settings from a JSON file once and saves every update."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._settings = BackendSettings()

    @property
    def current(self) -> BackendSettings:
        return self._settings

    def load(self) -> BackendSettings:
        if not self.path.exists():
            log.info("No saved settings, using defaults", path=str(self.path))
            self._settings = BackendSettings()
            return self._settings

        try:
            self._settings = BackendSettings.model_validate_json(
                self.path.read_text(encoding="utf-8")
            )
        except (OSError, ValidationError) as e:
            log.error("Failed to load settings, using defaults", path=str(self.path), error=str(e))
            self._settings = BackendSettings()
        return self._settings

    def update(self, **changes: Any) -> BackendSettings:
        """Merge ``changes`` into the current settings and persist them."""
        merged = self._settings.model_dump()
        merged.update(changes)
        self._settings = BackendSettings.model_validate(merged)
        self.save()
        return self._settings

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(self._settings.model_dump_json(indent=2), encoding="utf-8")
        log.info("Settings saved", path=str(self.path), mode=self._settings.mode)
