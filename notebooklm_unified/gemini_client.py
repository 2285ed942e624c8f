"""Gemini client for stateless, one-call-per-artifact content generation.

Gemini is reached through its OpenAI-compatible endpoint, so the regular
``openai`` SDK does the HTTP work. There is no retry here; the orchestrator
decides whether a failed call is worth repeating.
"""

import asyncio
from typing import Any, Dict, List, Optional

import openai
import structlog
from pydantic import ValidationError

from . import prompts
from .config import (
    CLOUD_TIMEOUT,
    DEFAULT_LANGUAGE,
    GEMINI_API_KEY,
    GEMINI_BASE_URL,
    MAX_OUTPUT_TOKENS,
    MODEL_NAME,
    TEMPERATURE,
)
from .errors import BackendNotConfiguredError, NotebookLMError
from .models import InfographicResult, PodcastResult, Slide, SlidesResult
from .utils import extract_json_object

log = structlog.get_logger()


class GeminiClient:
    """Cloud backend: podcast scripts, slide decks, infographic copy and Q&A."""

    def __init__(
        self,
        api_key: Optional[str] = GEMINI_API_KEY,
        model: str = MODEL_NAME,
        base_url: str = GEMINI_BASE_URL,
        temperature: float = TEMPERATURE,
        max_tokens: int = MAX_OUTPUT_TOKENS,
        timeout: float = CLOUD_TIMEOUT,
        client: Optional[Any] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self._client = client

    def is_configured(self) -> bool:
        """True when a credential is present. Makes no network call."""
        return bool(self.api_key)

    def _get_client(self):
        if self._client is None:
            # One outbound request per call; retries belong to the orchestrator
            self._client = openai.OpenAI(api_key=self.api_key, base_url=self.base_url, max_retries=0)
        return self._client

    async def call_chat(self, prompt: str, system_instruction: Optional[str] = None) -> str:
        """Send one system + user exchange and return the reply text."""
        if not self.is_configured():
            raise BackendNotConfiguredError("Gemini API key not configured")

        messages: List[Dict[str, str]] = []
        if system_instruction:
            messages.append({"role": "system", "content": system_instruction.strip()})
        messages.append({"role": "user", "content": prompt})

        client = self._get_client()
        loop = asyncio.get_running_loop()
        try:
            response = await loop.run_in_executor(
                None,
                lambda: client.chat.completions.create(
                    model=self.model,
                    messages=messages,
                    temperature=self.temperature,
                    max_tokens=self.max_tokens,
                    timeout=self.timeout,
                )
            )
        except Exception as e:
            log.error("Gemini API call failed", error=str(e), model=self.model)
            raise

        return response.choices[0].message.content or ""

    async def generate_podcast_script(
        self,
        title: str,
        content: str,
        language: str = DEFAULT_LANGUAGE,
        focus_prompt: Optional[str] = None,
    ) -> PodcastResult:
        prompt = prompts.PROMPT_PODCAST.format(
            title=title,
            focus=prompts.focus_line(focus_prompt),
            content=content,
            language=prompts.language_name(language),
        )
        script = await self.call_chat(prompt, prompts.SYSTEM_PODCAST)
        if not script.strip():
            raise NotebookLMError("Gemini returned an empty podcast script")

        log.info("Podcast script generated", title=title, chars=len(script))
        return PodcastResult(script=script)

    async def generate_slides(
        self,
        title: str,
        content: str,
        language: str = DEFAULT_LANGUAGE,
        focus_prompt: Optional[str] = None,
    ) -> SlidesResult:
        prompt = prompts.PROMPT_SLIDES.format(
            title=title,
            focus=prompts.focus_line(focus_prompt),
            content=content,
            language=prompts.language_name(language),
        )
        response = await self.call_chat(prompt, prompts.SYSTEM_SLIDES)

        parsed = extract_json_object(response)
        if parsed and isinstance(parsed.get("slides"), list) and parsed["slides"]:
            try:
                result = SlidesResult.model_validate(parsed)
                log.info("Slides generated", title=title, count=len(result.slides))
                return result
            except ValidationError as e:
                log.warning("Slides JSON has an unexpected shape", error=str(e))

        log.warning("Failed to parse slides JSON, returning the raw text as one slide", title=title)
        return SlidesResult(slides=[Slide(title=title, content=response)])

    async def generate_infographic_content(
        self,
        title: str,
        content: str,
        language: str = DEFAULT_LANGUAGE,
        focus_prompt: Optional[str] = None,
    ) -> InfographicResult:
        prompt = prompts.PROMPT_INFOGRAPHIC.format(
            title=title,
            focus=prompts.focus_line(focus_prompt),
            content=content,
            language=prompts.language_name(language),
        )
        response = await self.call_chat(prompt, prompts.SYSTEM_INFOGRAPHIC)

        parsed = extract_json_object(response)
        if parsed is not None:
            key_points = parsed.pop("key_points", None)
            parsed["description"] = parsed.get("description") or title
            parsed["keyPoints"] = parsed.get("keyPoints") or key_points or []
            try:
                result = InfographicResult.model_validate(parsed)
                log.info("Infographic content generated", title=title, key_points=len(result.key_points))
                return result
            except ValidationError as e:
                log.warning("Infographic JSON has an unexpected shape", error=str(e))

        log.warning("Failed to parse infographic JSON, using a summary fallback", title=title)
        return InfographicResult(description=title, key_points=[content[:200]])

    async def answer_question(self, content: str, question: str) -> str:
        prompt = prompts.PROMPT_QUESTION.format(content=content, question=question)
        answer = await self.call_chat(prompt, prompts.SYSTEM_QUESTION)
        log.info("Question answered", chars=len(answer))
        return answer
