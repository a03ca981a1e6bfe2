"""Tests for the Gemini service boundary."""

import json
from unittest.mock import MagicMock, patch

import httpx
import pytest

from lumina.core.settings import Settings
from lumina.providers.gemini import (
    EXTRACTION_INPUT_LIMIT,
    NO_EXPLANATION_TEXT,
    NO_RESULTS_TEXT,
    AIServiceError,
    GeminiService,
    extract_sources,
    get_ai_service,
    parse_extracted_item,
)


def _response(payload):
    response = MagicMock()
    response.json.return_value = payload
    response.raise_for_status = MagicMock()
    return response


def _text_payload(text, grounding=None):
    candidate = {"content": {"parts": [{"text": text}]}}
    if grounding is not None:
        candidate["groundingMetadata"] = {"groundingChunks": grounding}
    return {"candidates": [candidate]}


@pytest.fixture
def service():
    return GeminiService(api_key="test-key")


class TestParseExtractedItem:
    def test_valid_json(self):
        item = parse_extracted_item(json.dumps({
            "title": "Dune",
            "author": "Frank Herbert",
            "description": "Desert planet.",
            "content": "# Dune\n\nSpice.",
        }))
        assert item.title == "Dune"
        assert item.author == "Frank Herbert"
        assert item.content.startswith("# Dune")

    def test_code_fence_is_stripped(self):
        raw = '```json\n{"title": "T", "content": "C"}\n```'
        item = parse_extracted_item(raw)
        assert item.title == "T"
        assert item.author == "Unknown"
        assert item.description == ""

    @pytest.mark.parametrize("raw", ["", "not json", "[1, 2]", '{"title": "T"}', '{"content": "C"}'])
    def test_malformed(self, raw):
        with pytest.raises(AIServiceError) as exc_info:
            parse_extracted_item(raw)
        assert exc_info.value.malformed is True
        assert exc_info.value.capability == "extract"


def test_extract_sources_skips_non_web_chunks():
    candidate = {
        "groundingMetadata": {
            "groundingChunks": [
                {"web": {"uri": "https://a.example", "title": "A"}},
                {"retrievedContext": {"uri": "gs://x"}},
                {"web": {"uri": "https://b.example"}},
            ]
        }
    }
    sources = extract_sources(candidate)
    assert [s.uri for s in sources] == ["https://a.example", "https://b.example"]
    assert sources[1].title == "https://b.example"


@pytest.mark.asyncio
class TestGeminiService:
    async def test_missing_api_key(self):
        with pytest.raises(AIServiceError, match="GEMINI_API_KEY"):
            await GeminiService(api_key="").search("books")

    async def test_search_dedupes_sources(self, service):
        payload = _text_payload(
            "Top sci-fi of 2024...",
            grounding=[
                {"web": {"uri": "https://a.example", "title": "A"}},
                {"web": {"uri": "https://a.example", "title": "A dup"}},
                {"web": {"uri": "https://b.example", "title": "B"}},
            ],
        )

        async def mock_post(*args, **kwargs):
            return _response(payload)

        with patch("httpx.AsyncClient.post", side_effect=mock_post) as post:
            result = await service.search("sci-fi books 2024")

        assert result.text == "Top sci-fi of 2024..."
        assert [s.title for s in result.sources] == ["A", "B"]
        body = post.call_args.kwargs["json"]
        assert body["tools"] == [{"google_search": {}}]
        assert "sci-fi books 2024" in body["contents"][0]["parts"][0]["text"]
        assert post.call_args.kwargs["headers"]["x-goog-api-key"] == "test-key"

    async def test_search_empty_text_defaults(self, service):
        async def mock_post(*args, **kwargs):
            return _response({"candidates": []})

        with patch("httpx.AsyncClient.post", side_effect=mock_post):
            result = await service.search("anything")

        assert result.text == NO_RESULTS_TEXT
        assert result.sources == ()

    async def test_extract_truncates_input_and_requests_json(self, service):
        payload = _text_payload(json.dumps({"title": "T", "author": "A", "description": "D", "content": "C"}))

        async def mock_post(*args, **kwargs):
            return _response(payload)

        with patch("httpx.AsyncClient.post", side_effect=mock_post) as post:
            item = await service.extract_structured_item("x" * (EXTRACTION_INPUT_LIMIT + 500))

        assert item.title == "T"
        body = post.call_args.kwargs["json"]
        assert body["generationConfig"] == {"responseMimeType": "application/json"}
        prompt = body["contents"][0]["parts"][0]["text"]
        assert "x" * EXTRACTION_INPUT_LIMIT in prompt
        assert "x" * (EXTRACTION_INPUT_LIMIT + 1) not in prompt

    async def test_extract_malformed(self, service):
        async def mock_post(*args, **kwargs):
            return _response(_text_payload("Sorry, I cannot do that"))

        with patch("httpx.AsyncClient.post", side_effect=mock_post):
            with pytest.raises(AIServiceError) as exc_info:
                await service.extract_structured_item("raw")
        assert exc_info.value.malformed is True

    async def test_synthesize_image_returns_data_uri(self, service):
        async def mock_post(*args, **kwargs):
            return _response({"predictions": [{"bytesBase64Encoded": "QUJD", "mimeType": "image/png"}]})

        with patch("httpx.AsyncClient.post", side_effect=mock_post) as post:
            image = await service.synthesize_image("Dune", "Desert planet")

        assert image == "data:image/png;base64,QUJD"
        assert ":predict" in post.call_args.args[0]
        assert post.call_args.kwargs["json"]["parameters"]["aspectRatio"] == "16:9"

    async def test_synthesize_image_none_when_empty(self, service):
        async def mock_post(*args, **kwargs):
            return _response({"predictions": []})

        with patch("httpx.AsyncClient.post", side_effect=mock_post):
            assert await service.synthesize_image("T", "D") is None

    async def test_explain_empty_answer(self, service):
        async def mock_post(*args, **kwargs):
            return _response(_text_payload("   "))

        with patch("httpx.AsyncClient.post", side_effect=mock_post):
            assert await service.explain("ethical AI", "context") == NO_EXPLANATION_TEXT

    async def test_rate_limit_is_retriable_and_not_retried(self, service):
        request = httpx.Request("POST", "https://example.test")
        error_response = httpx.Response(429, request=request, text="slow down")
        calls = []

        async def mock_post(*args, **kwargs):
            calls.append(1)
            return error_response

        with patch("httpx.AsyncClient.post", side_effect=mock_post):
            with pytest.raises(AIServiceError) as exc_info:
                await service.search("q")

        assert exc_info.value.retriable is True
        assert len(calls) == 1

    async def test_auth_error(self, service):
        request = httpx.Request("POST", "https://example.test")

        async def mock_post(*args, **kwargs):
            return httpx.Response(403, request=request)

        with patch("httpx.AsyncClient.post", side_effect=mock_post):
            with pytest.raises(AIServiceError, match="rejected") as exc_info:
                await service.search("q")
        assert exc_info.value.retriable is False

    async def test_timeout(self, service):
        async def mock_post(*args, **kwargs):
            raise httpx.ReadTimeout("too slow")

        with patch("httpx.AsyncClient.post", side_effect=mock_post):
            with pytest.raises(AIServiceError, match="timed out"):
                await service.search("q")

    async def test_health_check_without_key(self):
        result = await GeminiService(api_key="").health_check()
        assert result.healthy is False
        assert result.message == "API key not set"

    async def test_health_check_ok(self, service):
        async def mock_post(*args, **kwargs):
            return _response(_text_payload("OK"))

        with patch("httpx.AsyncClient.post", side_effect=mock_post):
            result = await service.health_check()
        assert result.healthy is True
        assert result.latency_ms is not None


def test_factory_uses_settings():
    settings = Settings(
        app_env="test",
        db_path=":memory:",
        gemini_api_key="k",
        text_model="gemini-test",
        image_model="imagen-test",
        ai_timeout_seconds=5.0,
        log_level="INFO",
    )
    service = get_ai_service(settings)
    assert isinstance(service, GeminiService)
    assert service.text_model == "gemini-test"
