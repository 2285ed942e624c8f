"""Utility functions for text parsing, timestamps and file I/O."""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import structlog

log = structlog.get_logger()

CONTENT_TYPE_LABELS = {
    "podcast": "Podcast",
    "slides": "Slides",
    "infographic": "Infographic",
    "question": "Question",
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def find_json_object(text: str) -> Optional[str]:
    """Return the first balanced ``{...}`` block in ``text``, or None.

    Braces inside JSON string literals are skipped, so a ``}`` in a slide title
    does not end the block early.
    """
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(text)):
            char = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return text[start:index + 1]
        # Unbalanced from this brace on; try the next opening brace
        start = text.find("{", start + 1)
    return None


def extract_json_object(text: str) -> Optional[Dict[str, Any]]:
    """Best-effort parse of the first JSON object embedded in free text."""
    block = find_json_object(text or "")
    if block is None:
        return None
    try:
        parsed = json.loads(block)
    except json.JSONDecodeError as e:
        log.warning("Embedded JSON block did not parse", error=str(e))
        return None
    return parsed if isinstance(parsed, dict) else None


def parse_sse_payload(text: str) -> Any:
    """Decode a reply that is either plain JSON or a server-sent event stream."""
    for line in text.splitlines():
        if line.startswith("data: "):
            return json.loads(line[len("data: "):])
    return json.loads(text)


def item_title(title: str, content_type: str) -> str:
    """Queue row title for one output of a batch, e.g. ``"Breathing - Podcast"``."""
    return f"{title} - {CONTENT_TYPE_LABELS.get(content_type, content_type)}"


def load_source_file(file_path: Path) -> str:
    """Load source text for a generation request."""
    if not file_path.exists():
        raise FileNotFoundError(f"Source file not found: {file_path}")

    text = file_path.read_text(encoding="utf-8")
    log.info("Loaded source content", chars=len(text), file=str(file_path))
    return text
