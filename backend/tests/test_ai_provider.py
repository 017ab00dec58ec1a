"""Tests for the OpenRouter provider client.

The client never raises on provider errors; every failure comes back as an
unsuccessful ProviderResult.
"""

import json
from unittest.mock import patch

import httpx
import pytest

from app.services.ai_provider import TEXT_MODELS, AIProviderClient

_RealAsyncClient = httpx.AsyncClient


def _mock_transport(handler):
    """Patch httpx.AsyncClient so every client routes through handler."""

    def factory(*args, **kwargs):
        kwargs["transport"] = httpx.MockTransport(handler)
        return _RealAsyncClient(*args, **kwargs)

    return patch("app.services.ai_provider.httpx.AsyncClient", side_effect=factory)


@pytest.fixture
def client() -> AIProviderClient:
    return AIProviderClient(api_key="sk-test", base_url="https://provider.test/api/v1", timeout=5)


# ============================================================================
# Image Generation Tests
# ============================================================================


class TestGenerateImage:
    async def test_returns_data_url(self, client):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "choices": [
                        {
                            "message": {
                                "content": "",
                                "images": [{"image_url": {"url": "data:image/png;base64,AAAA"}}],
                            }
                        }
                    ]
                },
            )

        with _mock_transport(handler):
            result = await client.generate_image("a quiet harbor", "anime")

        assert result.success is True
        assert result.output == "data:image/png;base64,AAAA"
        assert seen["url"] == "https://provider.test/api/v1/chat/completions"
        assert seen["auth"] == "Bearer sk-test"
        assert seen["body"]["modalities"] == ["image", "text"]
        assert "anime" in seen["body"]["messages"][0]["content"]

    async def test_raw_base64_is_wrapped(self, client):
        def handler(request):
            return httpx.Response(
                200,
                json={"choices": [{"message": {"images": [{"image_url": {"url": "BBBB"}}]}}]},
            )

        with _mock_transport(handler):
            result = await client.generate_image("a harbor")

        assert result.result_url == "data:image/png;base64,BBBB"

    async def test_no_image_is_failure(self, client):
        def handler(request):
            return httpx.Response(200, json={"choices": [{"message": {"content": "sorry"}}]})

        with _mock_transport(handler):
            result = await client.generate_image("a harbor")

        assert result.success is False
        assert result.error == "Provider returned no image"


# ============================================================================
# Text Generation Tests
# ============================================================================


class TestGenerateText:
    async def test_uses_selected_model(self, client):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"choices": [{"message": {"content": "Hello!"}}]})

        with _mock_transport(handler):
            result = await client.generate_text("say hello", "openai")

        assert result.success is True
        assert result.output == "Hello!"
        assert seen["body"]["model"] == TEXT_MODELS["openai"]
        assert seen["body"]["max_tokens"] == 500


# ============================================================================
# Failure Handling Tests
# ============================================================================


class TestFailures:
    async def test_http_error(self, client):
        with _mock_transport(lambda request: httpx.Response(503, json={"error": "busy"})):
            result = await client.generate_text("hello")

        assert result.success is False
        assert result.error == "Provider error: HTTP 503"

    async def test_transport_error(self, client):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with _mock_transport(handler):
            result = await client.generate_image("hello")

        assert result.success is False
        assert result.error == "Provider unavailable"

    async def test_malformed_payload(self, client):
        with _mock_transport(lambda request: httpx.Response(200, json={"choices": []})):
            result = await client.generate_text("hello")

        assert result.success is False
        assert result.error == "Malformed provider response"

    async def test_missing_api_key(self):
        unconfigured = AIProviderClient(api_key="", base_url="https://provider.test")
        with patch.object(unconfigured, "api_key", ""):
            result = await unconfigured.generate_text("hello")

        assert result.success is False
        assert result.error == "AI provider API key not configured"
