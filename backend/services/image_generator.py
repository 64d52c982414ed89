"""
Image generation with transparent model fallback.

``ImageBackend`` talks to an OpenAI-compatible ``/v1/images/generations``
endpoint. ``ImageFallbackGenerator`` tries the user's preferred model first
and falls back to the default model when that attempt fails.
"""
import logging
from dataclasses import dataclass
from typing import Dict, Optional

import httpx

from config import (
    IMAGE_API_BASE_URL,
    IMAGE_API_KEY,
    IMAGE_MODEL_IDS,
    IMAGE_TIMEOUT_S,
    FALLBACK_IMAGE_MODEL,
)

logger = logging.getLogger(__name__)

FALLBACK_NOTE = (
    "*(Note: The premium image model failed, so I used a faster fallback "
    "to generate this image.)*"
)


class ImageBackendError(Exception):
    """Raised when the image backend fails or returns an unusable response."""


@dataclass
class ImageResult:
    """A generated image and how it was produced."""
    image_base64: str
    used_fallback: bool
    model_used: str


class ImageBackend:
    """HTTP client for an OpenAI-compatible image generation endpoint."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        model_ids: Optional[Dict[str, str]] = None,
        timeout_s: float = IMAGE_TIMEOUT_S,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        base_url = (base_url or IMAGE_API_BASE_URL).rstrip("/")
        if not base_url.endswith("/v1"):
            base_url = f"{base_url}/v1"
        self.url = f"{base_url}/images/generations"
        self.api_key = api_key or IMAGE_API_KEY
        self.model_ids = IMAGE_MODEL_IDS if model_ids is None else model_ids
        self.timeout_s = timeout_s
        self._transport = transport

    async def generate(self, prompt: str, model: str) -> str:
        """
        Generate one image.

        Args:
            prompt: Image description
            model: Friendly model name (mapped through IMAGE_MODEL_IDS)

        Returns:
            Base64-encoded image data

        Raises:
            ImageBackendError: On transport errors or malformed responses
        """
        body = {
            "model": self.model_ids.get(model, model),
            "prompt": prompt,
            "n": 1,
            "response_format": "b64_json",
        }
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}

        try:
            async with httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport) as client:
                resp = await client.post(self.url, json=body, headers=headers)
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ImageBackendError(f"Image generation failed for model {model}: {e}") from e

        try:
            return data["data"][0]["b64_json"]
        except (KeyError, IndexError, TypeError) as e:
            raise ImageBackendError(f"Unexpected image response format: {data!r}") from e


class ImageFallbackGenerator:
    """Generates images with the preferred model, falling back on failure."""

    def __init__(self, backend: ImageBackend, fallback_model: str = FALLBACK_IMAGE_MODEL):
        self.backend = backend
        self.fallback_model = fallback_model

    async def generate(self, prompt: str, preferred_model: str) -> ImageResult:
        """
        Generate an image, substituting the fallback model if needed.

        Args:
            prompt: Image description
            preferred_model: The user's preferred image model

        Returns:
            ImageResult with ``used_fallback`` set when the fallback produced it

        Raises:
            ImageBackendError: If both attempts fail
        """
        try:
            image = await self.backend.generate(prompt, preferred_model)
            return ImageResult(image_base64=image, used_fallback=False, model_used=preferred_model)
        except Exception as e:
            if preferred_model == self.fallback_model:
                raise
            logger.warning(
                f"Image model {preferred_model} failed, falling back to {self.fallback_model}: {e}"
            )

        image = await self.backend.generate(prompt, self.fallback_model)
        logger.info(f"Image generated with fallback model {self.fallback_model}")
        return ImageResult(image_base64=image, used_fallback=True, model_used=self.fallback_model)
