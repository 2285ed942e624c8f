"""Queue processor: drains pending batches and reconciles slow studio jobs.

Each cycle first recovers stuck rows, then processes pending batches one at a
time. The status guard in ``claim_pending`` is the only coordination with
other processors; see DESIGN.md for the remaining race.
"""

import asyncio
import json
from dataclasses import asdict, dataclass
from datetime import timedelta
from typing import Any, Dict, List, Optional

import structlog

from . import prompts
from .config import (
    DEFAULT_LANGUAGE,
    MAX_ITEMS_PER_CYCLE,
    MAX_POLL_ATTEMPTS,
    POLL_INTERVAL,
    SESSION_RESET_THRESHOLD,
    STALE_AFTER_MINUTES,
    WATCH_INTERVAL,
)
from .errors import MCPError, NoBackendAvailableError, NotebookLMError, QueueItemNotFoundError
from .models import STUDIO_TYPES, GenerationRequest, GenerationResult, QueueItem
from .orchestrator import ContentOrchestrator
from .polling import (
    POLL_MAX_PROGRESS,
    POLL_START_PROGRESS,
    classify_artifact,
    match_artifact,
    poll_studio,
)
from .queue_store import QueueStore
from .utils import utc_now

log = structlog.get_logger()


@dataclass
class CycleReport:
    """What one processing cycle did."""

    reset_to_pending: int = 0
    recovered: int = 0
    batches: int = 0
    completed: int = 0
    failed: int = 0
    still_processing: int = 0


def result_columns(content_type: str, data: Any) -> Dict[str, Any]:
    """Map a completed cloud payload onto existing table columns.

    Podcast scripts go to ``transcript``; slide decks and infographic copy are
    stored as JSON in ``description``.
    """
    if data is None:
        return {}
    if content_type == "podcast" and isinstance(data, dict) and data.get("script"):
        return {"transcript": data["script"]}
    return {"description": json.dumps(data, ensure_ascii=False)}


class QueueProcessor:
    """Moves queue rows through pending -> processing -> completed | failed."""

    def __init__(
        self,
        store: QueueStore,
        orchestrator: ContentOrchestrator,
        stale_after: timedelta = timedelta(minutes=STALE_AFTER_MINUTES),
        max_items: int = MAX_ITEMS_PER_CYCLE,
        poll_interval: float = POLL_INTERVAL,
        max_poll_attempts: Optional[Dict[str, int]] = None,
        session_reset_threshold: int = SESSION_RESET_THRESHOLD,
    ):
        self.store = store
        self.orchestrator = orchestrator
        self.stale_after = stale_after
        self.max_items = max_items
        self.poll_interval = poll_interval
        self.max_poll_attempts = {**MAX_POLL_ATTEMPTS, **(max_poll_attempts or {})}
        self.session_reset_threshold = session_reset_threshold
        self._protocol_failures = 0

    @property
    def local(self):
        return self.orchestrator.selector.local

    async def run_once(self) -> CycleReport:
        """Recover stuck rows, then drain pending batches once."""
        report = CycleReport()
        await self.recover_stuck_items(report)
        await self.process_pending(report)
        log.info("Queue cycle finished", **asdict(report))
        return report

    async def watch(self, interval: float = WATCH_INTERVAL, max_cycles: Optional[int] = None) -> None:
        """Run cycles forever (or ``max_cycles`` times) with a pause in between."""
        cycle = 0
        while max_cycles is None or cycle < max_cycles:
            try:
                await self.run_once()
            except Exception as e:
                log.error("Queue cycle failed", error=str(e))
            cycle += 1
            if max_cycles is not None and cycle >= max_cycles:
                break
            log.info("Waiting before next cycle", seconds=interval)
            await asyncio.sleep(interval)

    async def recover_stuck_items(self, report: Optional[CycleReport] = None) -> CycleReport:
        """Reset never-started rows and pick up studio jobs that finished unseen."""
        report = report or CycleReport()
        cutoff = utc_now() - self.stale_after
        stuck = await self.store.fetch_stale_processing(cutoff)
        if not stuck:
            return report

        log.info("Checking stuck items", count=len(stuck))
        for item in stuck:
            if not item.task_id:
                # Never reached the backend
                await self.store.update_item(item.id, status="pending", progress_percent=0)
                report.reset_to_pending += 1
                log.info("Reset stuck item to pending", item_id=item.id)
                continue

            if item.content_type not in STUDIO_TYPES:
                log.warning("Stuck item has no studio artifact to check", item_id=item.id,
                            content_type=item.content_type)
                continue

            try:
                status = await self.local.get_studio_status(item.task_id)
            except Exception as e:
                log.warning("Stuck item check failed, leaving it for the next cycle",
                            item_id=item.id, task_id=item.task_id, error=str(e))
                continue

            state, url = classify_artifact(match_artifact(status.artifacts, item.content_type))
            if state == "completed":
                await self.store.update_item(item.id, status="completed", progress_percent=100, content_url=url)
                report.recovered += 1
                report.completed += 1
                log.info("Found completed stuck item", item_id=item.id, url=url)
            elif state == "failed":
                await self.store.update_item(item.id, status="failed",
                                             error_message=f"{item.content_type} generation failed")
                report.recovered += 1
                report.failed += 1
                log.warning("Stuck item failed in the studio", item_id=item.id)
        return report

    async def check_item(self, item_id: str) -> QueueItem:
        """Poll the studio once for one processing row and store what it reports."""
        item = await self.store.get_item(item_id)
        if item is None:
            raise QueueItemNotFoundError(f"Queue item not found: {item_id}")
        if item.status != "processing":
            log.info("Item is not processing, nothing to check", item_id=item_id, status=item.status)
            return item
        if not item.task_id or item.content_type not in STUDIO_TYPES:
            raise NotebookLMError(f"No task_id found for item {item_id}")

        status = await self.local.get_studio_status(item.task_id)
        state, url = classify_artifact(match_artifact(status.artifacts, item.content_type))
        if state == "completed":
            await self.store.update_item(item.id, status="completed", progress_percent=100, content_url=url)
            log.info("Studio artifact completed", item_id=item.id, url=url)
        elif state == "failed":
            await self.store.update_item(item.id, status="failed",
                                         error_message=f"{item.content_type} generation failed")
            log.warning("Studio artifact failed", item_id=item.id)
        else:
            progress = POLL_START_PROGRESS
            if status.summary is not None:
                ratio = status.summary.completed / max(status.summary.total, 1)
                progress = min(round(ratio * 100), POLL_MAX_PROGRESS)
            await self.store.update_item(item.id, progress_percent=progress)
            log.info("Studio artifact still processing", item_id=item.id, progress=progress)

        return await self.store.get_item(item.id)

    async def process_pending(self, report: Optional[CycleReport] = None) -> CycleReport:
        """Process the oldest pending batches, one batch at a time."""
        report = report or CycleReport()
        pending = await self.store.fetch_pending(self.max_items)
        if not pending:
            log.info("No pending items")
            return report

        status = await self.orchestrator.selector.get_status()
        if status.active_backend is None:
            log.warning("No backend available, leaving items pending",
                        pending=len(pending), mode=status.mode)
            return report

        batch_ids = list(dict.fromkeys(item.batch_id for item in pending))
        log.info("Found pending items", count=len(pending), batches=len(batch_ids))

        for batch_id in batch_ids:
            # Pull the whole batch so one request never spans two notebooks
            items = await self.store.fetch_pending_batch(batch_id)
            if items:
                await self.process_batch(items, report)
        return report

    async def process_batch(self, items: List[QueueItem], report: Optional[CycleReport] = None) -> CycleReport:
        """Claim a batch, run one orchestration for it and write the results back."""
        report = report or CycleReport()
        claimed = await self.store.claim_pending([item.id for item in items])
        if not claimed:
            log.warning("Batch already claimed elsewhere", batch_id=items[0].batch_id)
            return report
        return await self.run_claimed_batch(claimed, report)

    async def run_claimed_batch(
        self,
        claimed: List[QueueItem],
        report: Optional[CycleReport] = None,
        wait_for_artifacts: bool = True,
        on_progress=None,
    ) -> CycleReport:
        """Orchestrate rows that are already ``processing`` and persist each result.

        With ``wait_for_artifacts`` off, acknowledged studio jobs keep their
        task id and are left for ``check_item`` or stuck recovery.
        """
        report = report or CycleReport()
        batch_id = claimed[0].batch_id
        report.batches += 1
        log.info("Processing batch", batch_id=batch_id,
                 content_types=[item.content_type for item in claimed])

        finalized = set()
        try:
            request = self._build_request(claimed)
            results = await self.orchestrator.generate_content(request, on_progress)
            self._protocol_failures = 0

            by_type = {result.type: result for result in results}
            waiting = []
            for item in claimed:
                result = by_type.get(item.content_type)
                if result is None:
                    await self._fail(item, f"No result produced for {item.content_type}", report)
                    finalized.add(item.id)
                elif result.status == "completed":
                    await self._complete(item, result, report)
                    finalized.add(item.id)
                elif result.status == "failed":
                    await self._fail(item, result.error or "Generation failed", report)
                    finalized.add(item.id)
                else:
                    # Studio job accepted; completion arrives through polling
                    await self.store.update_item(item.id, task_id=result.task_id,
                                                 progress_percent=POLL_START_PROGRESS)
                    waiting.append((item, result.task_id))

            for item, task_id in waiting:
                if wait_for_artifacts and await self._wait_for_artifact(item, task_id, report):
                    finalized.add(item.id)
                else:
                    report.still_processing += 1

        except NoBackendAvailableError as e:
            log.warning("Backend went away, returning batch to the queue", batch_id=batch_id, error=str(e))
            for item in claimed:
                await self.store.update_item(item.id, status="pending", progress_percent=0)
            report.batches -= 1

        except Exception as e:
            self._note_batch_failure(e)
            message = str(e) or repr(e)
            log.error("Batch failed", batch_id=batch_id, error=message)
            for item in claimed:
                if item.id not in finalized:
                    await self._fail(item, message, report)

        return report

    def _build_request(self, items: List[QueueItem]) -> GenerationRequest:
        first = items[0]
        question_item = next((item for item in items if item.content_type == "question"), None)
        question = None
        if question_item is not None:
            question = question_item.prompt or prompts.DEFAULT_QUESTION

        return GenerationRequest(
            title=first.notebook_name or first.title or "Untitled content",
            source_content=next((item.source_content for item in items if item.source_content), ""),
            outputs=[item.content_type for item in items if item.content_type in STUDIO_TYPES],
            question=question,
            language=first.settings.get("language", DEFAULT_LANGUAGE),
            focus_prompt=first.settings.get("focus_prompt"),
        )

    async def _complete(self, item: QueueItem, result: GenerationResult, report: CycleReport) -> None:
        fields = {"status": "completed", "progress_percent": 100}
        if item.content_type == "question":
            data = result.data
            fields["answer"] = data.get("answer", "") if isinstance(data, dict) else str(data or "")
        else:
            fields.update(result_columns(item.content_type, result.data))
        if result.url:
            fields["content_url"] = result.url
        if result.task_id:
            fields["task_id"] = result.task_id

        await self.store.update_item(item.id, **fields)
        report.completed += 1
        log.info("Item completed", item_id=item.id, content_type=item.content_type)

    async def _fail(self, item: QueueItem, message: str, report: CycleReport) -> None:
        await self.store.update_item(item.id, status="failed", error_message=message)
        report.failed += 1
        log.error("Item failed", item_id=item.id, content_type=item.content_type, error=message)

    async def _wait_for_artifact(self, item: QueueItem, task_id: str, report: CycleReport) -> bool:
        """Poll the studio for one artifact. Returns True once the row is final."""
        max_attempts = self.max_poll_attempts.get(item.content_type, 30)
        last_progress = POLL_START_PROGRESS
        log.info("Waiting for studio generation", item_id=item.id,
                 content_type=item.content_type, max_attempts=max_attempts)

        async for poll in poll_studio(self.local, task_id, item.content_type, max_attempts, self.poll_interval):
            if poll.state == "completed":
                await self.store.update_item(item.id, status="completed", progress_percent=100,
                                             content_url=poll.url)
                report.completed += 1
                log.info("Studio artifact completed", item_id=item.id, url=poll.url)
                return True
            if poll.state == "failed":
                await self._fail(item, f"{item.content_type} generation failed", report)
                return True
            if poll.progress > last_progress:
                await self.store.update_item(item.id, progress_percent=poll.progress)
                last_progress = poll.progress

        # Slow and stuck are the same case: stuck recovery will look again
        log.warning("Timeout waiting for completion, will retry on a later run",
                    item_id=item.id, attempts=max_attempts)
        return False

    def _note_batch_failure(self, error: Exception) -> None:
        if not isinstance(error, MCPError):
            self._protocol_failures = 0
            return
        self._protocol_failures += 1
        if self._protocol_failures >= self.session_reset_threshold:
            self.local.reset_session()
            self._protocol_failures = 0
