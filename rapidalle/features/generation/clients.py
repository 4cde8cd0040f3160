"""
Provider clients for the generation pipeline.

- CaptionClient: Groq chat completions, returns the caption or None.
- ImageClient: OpenAI images.generate (n=1), returns url and/or b64_json.

Every provider exception is wrapped in PipelineStepError so the queue
retries the run.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import groq
import openai

from rapidalle.core.config import settings
from rapidalle.features.generation.errors import PipelineStepError
from rapidalle.features.generation.prompts import CAPTION_SYSTEM_PROMPT

logger = logging.getLogger("rapidalle")

SMALL_SIZES = {"256x256", "512x512"}


def openai_model_for_size(size: str, large_model: Optional[str] = None, small_model: Optional[str] = None) -> str:
    """dall-e-3 only renders 1024+ sizes; smaller squares go to the small model."""
    if size in SMALL_SIZES:
        return small_model or settings.IMAGE_MODEL_SMALL
    return large_model or settings.IMAGE_MODEL


@dataclass(frozen=True)
class GeneratedImage:
    url: Optional[str] = None
    b64_json: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not (self.url or self.b64_json)


class CaptionClient:
    def __init__(
        self,
        client=None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        timeout: Optional[float] = None,
    ):
        self.timeout = timeout or settings.PROVIDER_TIMEOUT_SECONDS
        self.client = client or groq.Groq(api_key=settings.GROQ_API_KEY, timeout=self.timeout)
        self.model = model or settings.CAPTION_MODEL
        self.temperature = settings.CAPTION_TEMPERATURE if temperature is None else temperature

    def complete(self, prompt: str, system_prompt: str = CAPTION_SYSTEM_PROMPT) -> Optional[str]:
        try:
            result = self.client.chat.completions.create(
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": prompt},
                ],
                model=self.model,
                temperature=self.temperature,
                max_tokens=512,
            )
        except Exception as e:
            logger.error(f"caption.provider_error: {e}")
            raise PipelineStepError(str(e), "caption") from e

        choices = getattr(result, "choices", None) or []
        if not choices or not getattr(choices[0].message, "content", None):
            return None
        return choices[0].message.content


class ImageClient:
    def __init__(self, client=None, quality: Optional[str] = None, timeout: Optional[float] = None):
        self.timeout = timeout or settings.PROVIDER_TIMEOUT_SECONDS
        self.client = client or openai.OpenAI(api_key=settings.OPENAI_API_KEY, timeout=self.timeout)
        self.quality = quality or settings.IMAGE_QUALITY

    def generate(self, prompt: str, size: str) -> GeneratedImage:
        model = openai_model_for_size(size)
        kwargs = {"model": model, "prompt": prompt, "size": size, "n": 1}
        if model == "dall-e-3":
            kwargs["quality"] = self.quality
        try:
            result = self.client.images.generate(**kwargs)
        except Exception as e:
            logger.error(f"image.provider_error: {e}")
            raise PipelineStepError(str(e), "image") from e

        data = getattr(result, "data", None) or []
        if not data:
            return GeneratedImage()
        first = data[0]
        return GeneratedImage(url=getattr(first, "url", None), b64_json=getattr(first, "b64_json", None))
