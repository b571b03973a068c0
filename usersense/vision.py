"""Transport to the hosted multimodal model."""

from __future__ import annotations

import base64
import io
from typing import Optional, Sequence

import openai
from loguru import logger
from openai import OpenAI
from PIL import Image, UnidentifiedImageError

from usersense.config import DEFAULT_MODELS
from usersense.errors import ModelUnavailable, VisionError
from usersense.models import VIEWPORT_HEIGHT, VIEWPORT_WIDTH


class VisionClient:
    """One instruction + one screenshot in, raw model text out."""

    def complete(self, system: str, prompt: str, image_png: bytes, timeout: float) -> str:
        raise NotImplementedError


def normalize_screenshot(image_png: bytes) -> bytes:
    """Resample the screenshot onto the logical viewport so model coordinates share one space."""
    try:
        with Image.open(io.BytesIO(image_png)) as image:
            if image.size == (VIEWPORT_WIDTH, VIEWPORT_HEIGHT):
                return image_png
            resized = image.convert("RGB").resize((VIEWPORT_WIDTH, VIEWPORT_HEIGHT), Image.BILINEAR)
    except (UnidentifiedImageError, OSError) as exc:
        logger.debug(f"  • Screenshot left as-is, could not decode: {exc}")
        return image_png
    buffer = io.BytesIO()
    resized.save(buffer, format="PNG")
    return buffer.getvalue()


def encode_image(image_png: bytes) -> str:
    return base64.b64encode(normalize_screenshot(image_png)).decode("ascii")


class OpenAIVisionClient(VisionClient):
    """
    Chat-completions client that walks an ordered list of candidate models.

    A model the account cannot use (404 / 403) is skipped and the next candidate
    is tried; any other failure stops the walk and surfaces as ``VisionError``.
    The first model that answers is remembered for later calls.
    """

    def __init__(self, models: Sequence[str] = DEFAULT_MODELS, client: Optional[OpenAI] = None, temperature: float = 0.2):
        if not models:
            raise ValueError("at least one model candidate is required")
        self.models = list(models)
        self.temperature = temperature
        self._client = client
        self._preferred: Optional[str] = None

    def _get_client(self) -> OpenAI:
        if self._client is None:
            try:
                self._client = OpenAI()
            except openai.OpenAIError as exc:
                raise VisionError(f"OpenAI client unavailable: {exc}") from exc
        return self._client

    def _candidates(self):
        if self._preferred:
            yield self._preferred
        for model in self.models:
            if model != self._preferred:
                yield model

    def _call(self, model: str, system: str, prompt: str, image_png: bytes, timeout: float) -> str:
        client = self._get_client()
        try:
            response = client.with_options(timeout=timeout, max_retries=0).chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": system},
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": prompt},
                            {
                                "type": "image_url",
                                "image_url": {"url": f"data:image/png;base64,{encode_image(image_png)}"},
                            },
                        ],
                    },
                ],
                response_format={"type": "json_object"},
                temperature=self.temperature,
            )
        except (openai.NotFoundError, openai.PermissionDeniedError) as exc:
            raise ModelUnavailable(model, str(exc)) from exc
        except openai.APITimeoutError as exc:
            raise VisionError(f"{model} timed out after {timeout:.1f}s") from exc
        except openai.OpenAIError as exc:
            raise VisionError(f"{model} request failed: {exc}") from exc

        try:
            return response.choices[0].message.content or ""
        except (AttributeError, IndexError) as exc:
            raise VisionError(f"{model} returned an unexpected payload") from exc

    def complete(self, system: str, prompt: str, image_png: bytes, timeout: float) -> str:
        if timeout <= 0:
            raise VisionError("no time left in the run budget")
        unavailable = []
        for model in self._candidates():
            try:
                text = self._call(model, system, prompt, image_png, timeout)
            except ModelUnavailable as exc:
                logger.debug(f"  • {exc}; trying next candidate")
                unavailable.append(model)
                continue
            if self._preferred != model:
                logger.debug(f"🤖 Using vision model: {model}")
                self._preferred = model
            return text
        raise VisionError(f"No compatible vision model found (tried: {', '.join(unavailable)})")
