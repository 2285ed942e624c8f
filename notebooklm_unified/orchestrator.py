"""Drives one generation request through whichever backend is active."""

import inspect
from typing import Any, Awaitable, Callable, List, Optional, Union

import openai
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from .config import CLOUD_RETRY_ATTEMPTS
from .errors import NoBackendAvailableError
from .models import GenerationRequest, GenerationResult
from .selector import BackendSelector

log = structlog.get_logger()

ProgressCallback = Callable[[GenerationResult], Union[None, Awaitable[None]]]

TRANSIENT_CLOUD_ERRORS = (
    openai.RateLimitError,
    openai.APITimeoutError,
    openai.APIConnectionError,
)


def create_cloud_retry_decorator(attempts: int, wait=None):
    """Create a retry decorator for transient Gemini failures."""
    return retry(
        stop=stop_after_attempt(attempts),
        wait=wait or wait_exponential_jitter(initial=2, max=30, jitter=1),
        retry=retry_if_exception_type(TRANSIENT_CLOUD_ERRORS),
        reraise=True,
    )


class ContentOrchestrator:
    """Runs the per-output pipeline and converts adapter errors into results.

    Outputs are processed one at a time in request order and the question is
    always last. A failing output becomes a ``failed`` result and never stops
    its siblings; only errors before any output starts (no backend, notebook
    creation, adding the source) escape ``generate_content``.
    """

    def __init__(
        self,
        selector: BackendSelector,
        retry_attempts: int = CLOUD_RETRY_ATTEMPTS,
        retry_wait=None,
    ):
        self.selector = selector
        self.retry_attempts = max(1, retry_attempts)
        self.retry_wait = retry_wait

    async def generate_content(
        self,
        request: GenerationRequest,
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[GenerationResult]:
        status = await self.selector.get_status()
        if status.active_backend is None:
            log.error("No backend available", **status.model_dump())
            raise NoBackendAvailableError(status.mode)

        log.info("Starting content generation",
                 backend=status.active_backend,
                 title=request.title,
                 outputs=list(request.outputs),
                 question=bool(request.question))

        if status.active_backend == "local":
            results = await self._generate_with_local(request, on_progress)
        else:
            results = await self._generate_with_cloud(request, on_progress)

        log.info("Content generation finished",
                 backend=status.active_backend,
                 completed=sum(1 for r in results if r.status == "completed"),
                 processing=sum(1 for r in results if r.status == "processing"),
                 failed=sum(1 for r in results if r.status == "failed"))
        return results

    async def _generate_with_local(
        self, request: GenerationRequest, on_progress: Optional[ProgressCallback]
    ) -> List[GenerationResult]:
        local = self.selector.local

        # One notebook holds the source for every output of the request
        notebook_id = await local.create_notebook(request.title)
        await local.add_text_source(notebook_id, request.source_content, request.title)

        creators = {
            "podcast": local.create_audio_overview,
            "slides": local.create_slide_deck,
            "infographic": local.create_infographic,
        }

        results = []
        for output in request.outputs:
            create = creators[output]

            async def start_artifact(create=create):
                return await create(
                    notebook_id,
                    language=request.language,
                    focus_prompt=request.focus_prompt,
                )

            results.append(await self._run_step(output, start_artifact, on_progress))

        if request.question:
            async def ask():
                answer = await local.query_notebook(notebook_id, request.question)
                return GenerationResult(
                    type="question",
                    status="completed",
                    data={"answer": answer},
                    task_id=notebook_id,
                )

            results.append(await self._run_step("question", ask, on_progress))

        return results

    async def _generate_with_cloud(
        self, request: GenerationRequest, on_progress: Optional[ProgressCallback]
    ) -> List[GenerationResult]:
        cloud = self.selector.cloud
        generators = {
            "podcast": cloud.generate_podcast_script,
            "slides": cloud.generate_slides,
            "infographic": cloud.generate_infographic_content,
        }

        results = []
        for output in request.outputs:
            generate = generators[output]

            async def build(output=output, generate=generate):
                payload = await self._call_cloud(
                    generate,
                    title=request.title,
                    content=request.source_content,
                    language=request.language,
                    focus_prompt=request.focus_prompt,
                )
                return GenerationResult(
                    type=output,
                    status="completed",
                    data=payload.model_dump(by_alias=True, exclude_none=True),
                )

            results.append(await self._run_step(output, build, on_progress))

        if request.question:
            async def ask():
                answer = await self._call_cloud(
                    cloud.answer_question, request.source_content, request.question
                )
                return GenerationResult(type="question", status="completed", data={"answer": answer})

            results.append(await self._run_step("question", ask, on_progress))

        return results

    async def _call_cloud(self, func, *args: Any, **kwargs: Any):
        @create_cloud_retry_decorator(self.retry_attempts, self.retry_wait)
        async def _attempt():
            return await func(*args, **kwargs)

        return await _attempt()

    async def _run_step(
        self,
        result_type: str,
        step: Callable[[], Awaitable[GenerationResult]],
        on_progress: Optional[ProgressCallback],
    ) -> GenerationResult:
        """Run one output with failure isolation, reporting both transitions."""
        await self._notify(on_progress, GenerationResult(type=result_type, status="processing"))

        try:
            result = await step()
        except Exception as e:
            log.error("Output generation failed", type=result_type, error=str(e) or repr(e))
            result = GenerationResult(type=result_type, status="failed", error=str(e) or repr(e))

        await self._notify(on_progress, result)
        return result

    @staticmethod
    async def _notify(on_progress: Optional[ProgressCallback], result: GenerationResult) -> None:
        if on_progress is None:
            return
        try:
            outcome = on_progress(result.model_copy(deep=True))
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            log.warning("Progress callback failed", type=result.type, status=result.status, error=str(e))
