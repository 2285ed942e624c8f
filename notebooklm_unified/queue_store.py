"""Persisted job queue: Supabase table in production, SQLite for local runs."""

import asyncio
import json
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Protocol, Tuple

import structlog
from supabase import create_client

from .config import QUEUE_TABLE
from .errors import ConfigurationError
from .models import GenerationRequest, QueueItem
from .utils import item_title, utc_now

log = structlog.get_logger()

CLAIM_PROGRESS = 10
ITEM_FIELDS = set(QueueItem.model_fields)
JSON_COLUMNS = ("settings",)

# Columns of the notebooklm_content table this package reads and writes
TABLE_COLUMNS = (
    "id", "notebook_id", "created_by", "content_type", "source_content", "title",
    "notebook_name", "prompt", "status", "progress_percent", "task_id", "content_url",
    "answer", "transcript", "description", "error_message", "settings", "created_at",
    "updated_at",
)


class QueueStore(Protocol):
    """Storage contract for queued generation work."""

    async def insert_items(self, items: List[QueueItem]) -> List[QueueItem]:
        """Persist new pending rows."""

    async def get_item(self, item_id: str) -> Optional[QueueItem]:
        """Fetch one row by id."""

    async def fetch_pending(self, limit: int) -> List[QueueItem]:
        """Return up to ``limit`` pending rows, oldest first."""

    async def fetch_pending_batch(self, batch_id: str) -> List[QueueItem]:
        """Return every pending row of one batch, oldest first."""

    async def fetch_stale_processing(self, older_than: datetime) -> List[QueueItem]:
        """Return processing rows last updated before ``older_than``."""

    async def claim_pending(self, item_ids: List[str]) -> List[QueueItem]:
        """Move the still-pending rows among ``item_ids`` to processing; return them."""

    async def update_item(self, item_id: str, **fields: Any) -> None:
        """Apply a partial update to one row."""

    async def list_recent(self, limit: int = 10) -> List[QueueItem]:
        """Return the most recently created rows."""


def row_to_item(row: Dict[str, Any]) -> QueueItem:
    """Map a ``notebooklm_content`` row to a QueueItem (batch id lives in ``notebook_id``)."""
    data = dict(row)
    data["batch_id"] = data.pop("notebook_id", None) or data.get("batch_id")
    for column in JSON_COLUMNS:
        if isinstance(data.get(column), str):
            data[column] = json.loads(data[column])
    return QueueItem.model_validate({k: v for k, v in data.items() if k in ITEM_FIELDS})


def item_to_row(item: QueueItem, mode: str = "json") -> Dict[str, Any]:
    row = item.model_dump(mode=mode, exclude_none=True)
    row["notebook_id"] = row.pop("batch_id")
    return {column: value for column, value in row.items() if column in TABLE_COLUMNS}


def _update_row(fields: Dict[str, Any]) -> Dict[str, Any]:
    row = dict(fields)
    if "batch_id" in row:
        row["notebook_id"] = row.pop("batch_id")
    unknown = set(row) - set(TABLE_COLUMNS)
    if unknown:
        raise ValueError(f"Unknown queue columns: {sorted(unknown)}")
    updated_at = row.get("updated_at") or utc_now()
    row["updated_at"] = updated_at.isoformat() if isinstance(updated_at, datetime) else updated_at
    return row


def build_batch(
    request: GenerationRequest,
    settings: Optional[Dict[str, Any]] = None,
    status: str = "pending",
) -> Tuple[str, List[QueueItem]]:
    """One row per requested output plus a question row, all sharing a batch id.

    Rows start ``processing`` when the caller runs the batch right away.
    """
    batch_id = str(uuid.uuid4())
    progress = CLAIM_PROGRESS if status == "processing" else 0
    row_settings = {"language": request.language}
    if request.focus_prompt:
        row_settings["focus_prompt"] = request.focus_prompt
    row_settings.update(settings or {})
    items = [
        QueueItem(
            id=str(uuid.uuid4()),
            batch_id=batch_id,
            content_type=output,
            notebook_name=request.title,
            title=item_title(request.title, output),
            source_content=request.source_content,
            settings=dict(row_settings),
            status=status,
            progress_percent=progress,
        )
        for output in request.outputs
    ]
    if request.question:
        items.append(QueueItem(
            id=str(uuid.uuid4()),
            batch_id=batch_id,
            content_type="question",
            notebook_name=request.title,
            title=request.question[:100],
            prompt=request.question,
            source_content=request.source_content,
            settings=dict(row_settings),
            status=status,
            progress_percent=progress,
        ))
    return batch_id, items


async def submit_request(
    store: QueueStore,
    request: GenerationRequest,
    settings: Optional[Dict[str, Any]] = None,
    status: str = "pending",
) -> Tuple[str, List[QueueItem]]:
    """Persist a request as one batch of queue rows.

    ``request`` is already validated, so an empty source never reaches the store.
    """
    batch_id, items = build_batch(request, settings, status)
    created = await store.insert_items(items)
    log.info("Batch queued", batch_id=batch_id, items=len(created), title=request.title, status=status)
    return batch_id, created


class SupabaseQueueStore:
    """Queue rows in the Supabase ``notebooklm_content`` table.

    The supabase client is synchronous; every query runs in the default executor.
    """

    def __init__(self, url: Optional[str], key: Optional[str], table: str = QUEUE_TABLE, client: Any = None):
        if client is None:
            if not url or not key:
                raise ConfigurationError("Missing SUPABASE_URL or SUPABASE_SERVICE_ROLE_KEY")
            client = create_client(url, key)
        self.client = client
        self.table = table

    async def _execute(self, build) -> List[Dict[str, Any]]:
        loop = asyncio.get_running_loop()
        response = await loop.run_in_executor(None, lambda: build(self.client.table(self.table)).execute())
        return response.data or []

    async def insert_items(self, items: List[QueueItem]) -> List[QueueItem]:
        if not items:
            return []
        rows = [item_to_row(item) for item in items]
        data = await self._execute(lambda table: table.insert(rows))
        return [row_to_item(row) for row in data]

    async def get_item(self, item_id: str) -> Optional[QueueItem]:
        data = await self._execute(lambda table: table.select("*").eq("id", item_id).limit(1))
        return row_to_item(data[0]) if data else None

    async def fetch_pending(self, limit: int) -> List[QueueItem]:
        data = await self._execute(
            lambda table: table.select("*").eq("status", "pending").order("created_at").limit(limit)
        )
        return [row_to_item(row) for row in data]

    async def fetch_pending_batch(self, batch_id: str) -> List[QueueItem]:
        data = await self._execute(
            lambda table: table.select("*").eq("notebook_id", batch_id).eq("status", "pending").order("created_at")
        )
        return [row_to_item(row) for row in data]

    async def fetch_stale_processing(self, older_than: datetime) -> List[QueueItem]:
        data = await self._execute(
            lambda table: table.select("*").eq("status", "processing").lt("updated_at", older_than.isoformat())
        )
        return [row_to_item(row) for row in data]

    async def claim_pending(self, item_ids: List[str]) -> List[QueueItem]:
        if not item_ids:
            return []
        changes = _update_row({"status": "processing", "progress_percent": CLAIM_PROGRESS})
        # The status guard makes the claim conditional per row
        data = await self._execute(
            lambda table: table.update(changes).in_("id", item_ids).eq("status", "pending")
        )
        return [row_to_item(row) for row in data]

    async def update_item(self, item_id: str, **fields: Any) -> None:
        changes = _update_row(fields)
        await self._execute(lambda table: table.update(changes).eq("id", item_id))

    async def list_recent(self, limit: int = 10) -> List[QueueItem]:
        data = await self._execute(
            lambda table: table.select("*").order("created_at", desc=True).limit(limit)
        )
        return [row_to_item(row) for row in data]


def _sqlite_ts(value: Any) -> Any:
    # Fixed-width UTC timestamps so string comparison orders correctly
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")
    return value


class SqliteQueueStore:
    """Single-file queue for running the worker without Supabase.

    sqlite3 is blocking, so every query runs in the default executor.
    """

    COLUMNS = TABLE_COLUMNS

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.init_database()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    async def _run(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    def init_database(self) -> None:
        """Create the queue table if needed."""
        db_exists = self.db_path.exists()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS queue_items(
                    id TEXT PRIMARY KEY,
                    notebook_id TEXT NOT NULL,
                    created_by TEXT NOT NULL,
                    content_type TEXT NOT NULL,
                    source_content TEXT,
                    title TEXT,
                    notebook_name TEXT,
                    prompt TEXT,
                    status TEXT NOT NULL DEFAULT 'pending',
                    progress_percent INTEGER NOT NULL DEFAULT 0,
                    task_id TEXT,
                    content_url TEXT,
                    answer TEXT,
                    transcript TEXT,
                    description TEXT,
                    error_message TEXT,
                    settings TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_queue_status ON queue_items(status, created_at)")

        if db_exists:
            log.debug("Queue database connected", db_path=str(self.db_path))
        else:
            log.info("Queue database created", db_path=str(self.db_path))

    @staticmethod
    def _encode(column: str, value: Any) -> Any:
        if column in JSON_COLUMNS and value is not None:
            return json.dumps(value, ensure_ascii=False)
        return _sqlite_ts(value)

    def _select(self, where: str, params: tuple = (), order: str = "created_at, rowid", limit: Optional[int] = None):
        sql = f"SELECT * FROM queue_items WHERE {where} ORDER BY {order}"
        if limit is not None:
            sql += " LIMIT ?"
            params = (*params, limit)
        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [row_to_item(dict(row)) for row in rows]

    def _insert_sync(self, items: List[QueueItem]) -> List[QueueItem]:
        now = utc_now()
        rows = []
        for item in items:
            row = {column: None for column in self.COLUMNS}
            row.update(item_to_row(item.model_copy(update={
                "created_at": item.created_at or now,
                "updated_at": item.updated_at or now,
            }), mode="python"))
            rows.append(row)

        placeholders = ", ".join("?" for _ in self.COLUMNS)
        with self._connect() as conn:
            conn.executemany(
                f"INSERT INTO queue_items({', '.join(self.COLUMNS)}) VALUES ({placeholders})",
                [tuple(self._encode(c, row[c]) for c in self.COLUMNS) for row in rows],
            )
        return [self._get_sync(item.id) for item in items]

    def _get_sync(self, item_id: str) -> Optional[QueueItem]:
        found = self._select("id = ?", (item_id,))
        return found[0] if found else None

    def _claim_sync(self, item_ids: List[str]) -> List[QueueItem]:
        marks = ", ".join("?" for _ in item_ids)
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            claimable = [
                row["id"] for row in conn.execute(
                    f"SELECT id FROM queue_items WHERE status = 'pending' AND id IN ({marks})", item_ids
                ).fetchall()
            ]
            if claimable:
                claim_marks = ", ".join("?" for _ in claimable)
                conn.execute(
                    f"UPDATE queue_items SET status = 'processing', progress_percent = ?, updated_at = ? "
                    f"WHERE id IN ({claim_marks})",
                    (CLAIM_PROGRESS, _sqlite_ts(utc_now()), *claimable),
                )
        claimed = [self._get_sync(item_id) for item_id in item_ids if item_id in claimable]
        return [item for item in claimed if item is not None]

    def _update_sync(self, item_id: str, fields: Dict[str, Any]) -> None:
        row = _update_row(fields)
        row["updated_at"] = fields.get("updated_at") or utc_now()

        assignments = ", ".join(f"{column} = ?" for column in row)
        with self._connect() as conn:
            conn.execute(
                f"UPDATE queue_items SET {assignments} WHERE id = ?",
                (*(self._encode(c, v) for c, v in row.items()), item_id),
            )

    async def insert_items(self, items: List[QueueItem]) -> List[QueueItem]:
        return await self._run(self._insert_sync, items)

    async def get_item(self, item_id: str) -> Optional[QueueItem]:
        return await self._run(self._get_sync, item_id)

    async def fetch_pending(self, limit: int) -> List[QueueItem]:
        return await self._run(lambda: self._select("status = 'pending'", limit=limit))

    async def fetch_pending_batch(self, batch_id: str) -> List[QueueItem]:
        return await self._run(lambda: self._select("notebook_id = ? AND status = 'pending'", (batch_id,)))

    async def fetch_stale_processing(self, older_than: datetime) -> List[QueueItem]:
        return await self._run(lambda: self._select(
            "status = 'processing' AND updated_at < ?", (_sqlite_ts(older_than),)
        ))

    async def claim_pending(self, item_ids: List[str]) -> List[QueueItem]:
        if not item_ids:
            return []
        return await self._run(self._claim_sync, item_ids)

    async def update_item(self, item_id: str, **fields: Any) -> None:
        await self._run(self._update_sync, item_id, fields)

    async def list_recent(self, limit: int = 10) -> List[QueueItem]:
        return await self._run(lambda: self._select("1 = 1", order="created_at DESC, rowid DESC", limit=limit))
