"""OpenRouter-backed AI provider client.

The provider is an opaque external call: both entry points return a
ProviderResult and never raise on HTTP or provider errors, so the caller
decides whether a failure needs a refund.
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional

import httpx

from app.core.config import settings

logger = logging.getLogger(__name__)

# Text providers exposed to clients, mapped to OpenRouter model ids
TEXT_MODELS: dict[str, str] = {
    "openai": "openai/gpt-4o",
    "gemini": "google/gemini-1.5-pro",
    "gptMini": "openai/gpt-4o-mini",
}

DEFAULT_TEXT_PROVIDER = "gemini"
TEXT_MAX_TOKENS = 500

STYLE_HINTS: dict[str, str] = {
    "realistic": "photorealistic, natural lighting, high detail",
    "anime": "anime illustration, clean line art, vibrant colors",
    "abstract": "abstract art, bold shapes, expressive color",
}


@dataclass
class ProviderResult:
    """Outcome of a provider invocation."""

    success: bool
    result_url: Optional[str] = None  # Data URL for images
    text: Optional[str] = None
    error: Optional[str] = None
    latency_ms: int = 0

    @property
    def output(self) -> Optional[str]:
        """The payload to store on the generation job."""
        return self.result_url if self.result_url is not None else self.text


class AIProviderClient:
    """Client for image and text generation through OpenRouter."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.api_key = api_key or settings.OPENROUTER_API_KEY
        self.base_url = (base_url or settings.AI_PROVIDER_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.AI_PROVIDER_TIMEOUT_SECONDS

        if not self.api_key:
            logger.warning("OpenRouter API key not configured")

    def _get_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": settings.WORDPRESS_URL,
            "X-Title": settings.PROJECT_NAME,
        }

    async def _post_completion(self, payload: dict) -> tuple[Optional[dict], Optional[str], int]:
        """POST a chat completion. Returns (message, error, latency_ms)."""
        if not self.api_key:
            return None, "AI provider API key not configured", 0

        start_time = time.time()
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.base_url}/chat/completions",
                    headers=self._get_headers(),
                    json=payload,
                )
            latency_ms = int((time.time() - start_time) * 1000)
            response.raise_for_status()
            data = response.json()
            message = data["choices"][0]["message"]
            if not isinstance(message, dict):
                raise TypeError("message is not an object")
            return message, None, latency_ms

        except httpx.HTTPStatusError as e:
            logger.warning(
                f"AI provider returned {e.response.status_code} for model {payload['model']}"
            )
            return None, f"Provider error: HTTP {e.response.status_code}", 0
        except (httpx.TimeoutException, httpx.TransportError) as e:
            logger.warning(f"AI provider request failed for model {payload['model']}: {e}")
            return None, "Provider unavailable", 0
        except (KeyError, IndexError, TypeError, ValueError) as e:
            logger.warning(f"AI provider returned an unexpected payload: {e}")
            return None, "Malformed provider response", 0

    async def generate_image(self, prompt: str, style: str = "realistic") -> ProviderResult:
        """Generate a single 1024x1024 image.

        Args:
            prompt: Validated image prompt
            style: One of STYLE_HINTS

        Returns:
            ProviderResult with a data URL on success
        """
        hint = STYLE_HINTS.get(style, STYLE_HINTS["realistic"])
        payload = {
            "model": settings.AI_IMAGE_MODEL,
            "messages": [{"role": "user", "content": f"{prompt}. Style: {hint}"}],
            "modalities": ["image", "text"],
            "image_config": {"size": "1024x1024"},
        }

        message, error, latency_ms = await self._post_completion(payload)
        if error:
            return ProviderResult(success=False, error=error)

        images = message.get("images") or []
        if not images:
            return ProviderResult(success=False, error="Provider returned no image")

        image_url = images[0].get("image_url", {}).get("url")
        if not image_url:
            return ProviderResult(success=False, error="Provider returned no image")
        if not image_url.startswith("data:"):
            image_url = f"data:image/png;base64,{image_url}"

        logger.debug(f"Image generated with {settings.AI_IMAGE_MODEL} in {latency_ms}ms")
        return ProviderResult(success=True, result_url=image_url, latency_ms=latency_ms)

    async def generate_text(
        self, prompt: str, provider: str = DEFAULT_TEXT_PROVIDER
    ) -> ProviderResult:
        """Generate text with the selected provider.

        Args:
            prompt: Validated text prompt
            provider: Key into TEXT_MODELS

        Returns:
            ProviderResult with the generated text on success
        """
        model = TEXT_MODELS.get(provider, settings.AI_TEXT_MODEL)
        payload = {
            "model": model,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": TEXT_MAX_TOKENS,
        }

        message, error, latency_ms = await self._post_completion(payload)
        if error:
            return ProviderResult(success=False, error=error)

        content = message.get("content")
        if not content:
            return ProviderResult(success=False, error="Provider returned no text")

        logger.debug(f"Text generated with {model} in {latency_ms}ms")
        return ProviderResult(success=True, text=content, latency_ms=latency_ms)


_client: Optional[AIProviderClient] = None


def get_ai_provider() -> AIProviderClient:
    """Get the shared AI provider client."""
    global _client
    if _client is None:
        _client = AIProviderClient()
    return _client
