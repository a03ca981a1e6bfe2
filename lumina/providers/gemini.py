"""External AI service boundary (Gemini search, extraction, imagery, explanations)."""

from __future__ import annotations

import json
import logging
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import httpx

from lumina.core.models import SearchResult, Source
from lumina.core.prompts import render_prompt
from lumina.core.settings import Settings

logger = logging.getLogger(__name__)

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"

# Raw search text sent to extraction is cut to this many characters
EXTRACTION_INPUT_LIMIT = 5000

NO_RESULTS_TEXT = "No results found."
NO_EXPLANATION_TEXT = "Could not generate explanation."

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


@dataclass(frozen=True)
class ExtractedItem:
    """Structured metadata extracted from raw search text."""

    title: str
    author: str
    description: str
    content: str


@dataclass
class HealthCheckResult:
    """Result of a provider health check."""

    healthy: bool
    provider: str
    model: str
    message: str
    latency_ms: int | None = None


class AIServiceError(Exception):
    """Error during a call to the external AI service."""

    def __init__(
        self,
        message: str,
        capability: str,
        retriable: bool = False,
        malformed: bool = False,
    ):
        super().__init__(message)
        self.capability = capability
        self.retriable = retriable
        self.malformed = malformed


class AIService(ABC):
    """The three ingestion capabilities plus reader explanations.

    Every method may be slow and may raise AIServiceError.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @abstractmethod
    async def search(self, query: str) -> SearchResult:
        """Grounded search. Sources are de-duplicated by URI."""
        ...

    @abstractmethod
    async def extract_structured_item(self, raw_text: str) -> ExtractedItem:
        """Extract {title, author, description, content} from raw text.

        Raises:
            AIServiceError: With `malformed=True` if the answer cannot be parsed.
        """
        ...

    @abstractmethod
    async def synthesize_image(self, title: str, description: str) -> str | None:
        """Generate a cover image; returns a data URI or None."""
        ...

    @abstractmethod
    async def explain(self, text: str, context: str) -> str:
        ...

    @abstractmethod
    async def health_check(self) -> HealthCheckResult:
        ...


def parse_extracted_item(raw: str) -> ExtractedItem:
    """Parse the JSON answer of the extraction call.

    Raises:
        AIServiceError: If the text is not a JSON object with `title` and `content`.
    """
    text = (raw or "").strip()
    fenced = _FENCE_RE.match(text)
    if fenced:
        text = fenced.group(1)
    if not text:
        raise AIServiceError("Empty extraction response", capability="extract", malformed=True)

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise AIServiceError(
            f"Extraction response is not JSON: {e}", capability="extract", malformed=True
        ) from e

    if not isinstance(data, dict):
        raise AIServiceError("Extraction response is not an object", capability="extract", malformed=True)

    title = data.get("title")
    content = data.get("content")
    if not isinstance(title, str) or not title.strip():
        raise AIServiceError("Extraction response lacks a title", capability="extract", malformed=True)
    if not isinstance(content, str) or not content.strip():
        raise AIServiceError("Extraction response lacks content", capability="extract", malformed=True)

    author = data.get("author")
    description = data.get("description")
    return ExtractedItem(
        title=title.strip(),
        author=author.strip() if isinstance(author, str) and author.strip() else "Unknown",
        description=description.strip() if isinstance(description, str) else "",
        content=content,
    )


def extract_sources(candidate: dict[str, Any]) -> list[Source]:
    """Citation sources from a candidate's grounding metadata."""
    chunks = (candidate.get("groundingMetadata") or {}).get("groundingChunks") or []
    sources: list[Source] = []
    for chunk in chunks:
        web = chunk.get("web") if isinstance(chunk, dict) else None
        if not web or not web.get("uri"):
            continue
        sources.append(Source(title=web.get("title") or web["uri"], uri=web["uri"]))
    return sources


def _candidate_text(candidate: dict[str, Any]) -> str:
    parts = (candidate.get("content") or {}).get("parts") or []
    return "".join(p.get("text", "") for p in parts if isinstance(p, dict))


class GeminiService(AIService):
    """Gemini REST API client. One request per call, no retries."""

    def __init__(
        self,
        api_key: str,
        text_model: str = "gemini-2.5-flash",
        image_model: str = "imagen-4.0-generate-001",
        timeout: float = 60.0,
        base_url: str = GEMINI_BASE_URL,
    ) -> None:
        self._api_key = api_key
        self._text_model = text_model
        self._image_model = image_model
        self._timeout = timeout
        self._base_url = base_url.rstrip("/")

    @property
    def name(self) -> str:
        return "Gemini"

    @property
    def text_model(self) -> str:
        return self._text_model

    async def _post(self, path: str, body: dict[str, Any], capability: str) -> dict[str, Any]:
        if not self._api_key:
            raise AIServiceError("GEMINI_API_KEY is not set", capability=capability)

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(
                    f"{self._base_url}/{path}",
                    headers={
                        "x-goog-api-key": self._api_key,
                        "Content-Type": "application/json",
                    },
                    json=body,
                )
                response.raise_for_status()
                return response.json()

        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status in (401, 403):
                raise AIServiceError("Gemini API key rejected", capability=capability) from e
            if status == 404:
                raise AIServiceError(f"Model not available for {capability}", capability=capability) from e
            if status == 429:
                raise AIServiceError("Gemini rate limit reached", capability=capability, retriable=True) from e
            raise AIServiceError(
                f"Gemini API error: {status} - {e.response.text}",
                capability=capability,
                retriable=status >= 500,
            ) from e

        except httpx.TimeoutException as e:
            raise AIServiceError(
                f"Gemini request timed out after {self._timeout}s", capability=capability, retriable=True
            ) from e

        except httpx.HTTPError as e:
            raise AIServiceError(f"Connection error: {e}", capability=capability, retriable=True) from e

        except ValueError as e:
            raise AIServiceError(
                f"Gemini returned invalid JSON: {e}", capability=capability, malformed=True
            ) from e

    async def _generate(self, prompt: str, capability: str, **extra: Any) -> dict[str, Any]:
        body: dict[str, Any] = {"contents": [{"role": "user", "parts": [{"text": prompt}]}], **extra}
        data = await self._post(f"models/{self._text_model}:generateContent", body, capability)
        candidates = data.get("candidates") or []
        return candidates[0] if candidates else {}

    async def search(self, query: str) -> SearchResult:
        candidate = await self._generate(
            render_prompt("grounded_search", query=query),
            capability="search",
            tools=[{"google_search": {}}],
        )
        text = _candidate_text(candidate).strip() or NO_RESULTS_TEXT
        sources = extract_sources(candidate)
        logger.info(f"Search '{query}' returned {len(text)} chars, {len(sources)} source(s)")
        return SearchResult(text=text, sources=tuple(sources))

    async def extract_structured_item(self, raw_text: str) -> ExtractedItem:
        candidate = await self._generate(
            render_prompt("extract_item", raw_text=raw_text[:EXTRACTION_INPUT_LIMIT]),
            capability="extract",
            generationConfig={"responseMimeType": "application/json"},
        )
        return parse_extracted_item(_candidate_text(candidate))

    async def synthesize_image(self, title: str, description: str) -> str | None:
        body = {
            "instances": [{"prompt": render_prompt("cover_image", title=title, description=description)}],
            "parameters": {"sampleCount": 1, "aspectRatio": "16:9"},
        }
        data = await self._post(f"models/{self._image_model}:predict", body, capability="image")
        predictions = data.get("predictions") or []
        b64 = predictions[0].get("bytesBase64Encoded") if predictions else None
        if not b64:
            return None
        mime = predictions[0].get("mimeType") or "image/png"
        return f"data:{mime};base64,{b64}"

    async def explain(self, text: str, context: str) -> str:
        candidate = await self._generate(
            render_prompt("explain_selection", text=text, context=context),
            capability="explain",
        )
        return _candidate_text(candidate).strip() or NO_EXPLANATION_TEXT

    async def health_check(self) -> HealthCheckResult:
        """Check API connectivity and authentication with a tiny request."""
        if not self._api_key:
            return HealthCheckResult(
                healthy=False,
                provider=self.name,
                model=self._text_model,
                message="API key not set",
            )

        start = time.monotonic()
        try:
            await self._generate("Say 'OK'", capability="health")
        except AIServiceError as e:
            return HealthCheckResult(
                healthy=False,
                provider=self.name,
                model=self._text_model,
                message=str(e),
            )
        return HealthCheckResult(
            healthy=True,
            provider=self.name,
            model=self._text_model,
            message="Connected",
            latency_ms=int((time.monotonic() - start) * 1000),
        )


def get_ai_service(settings: Settings | None = None) -> AIService:
    """Factory for the configured AI service."""
    s = settings or Settings.from_env()
    return GeminiService(
        api_key=s.gemini_api_key,
        text_model=s.text_model,
        image_model=s.image_model,
        timeout=s.ai_timeout_seconds,
    )
