"""
Generation pipeline: caption -> image -> re-host -> persist.

Caption and image failures raise PipelineStepError and fail the attempt.
Re-hosting and persistence run after the content exists; their failures
are recorded as PersistenceWarning on the result and never fail the run,
so "generated" and "persisted" are reported separately.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from rapidalle.core.logging import log_event
from rapidalle.core.metrics import persistence_failures_total, rehost_failures_total
from rapidalle.features.artifacts.service import create_image, create_prompt
from rapidalle.features.generation.clients import CaptionClient, ImageClient
from rapidalle.features.generation.errors import PersistenceWarning, PipelineStepError
from rapidalle.features.generation.gate import GenerationRequest
from rapidalle.features.generation.prompts import build_caption_prompt, build_image_prompt
from rapidalle.features.media.host import CloudinaryHost, MediaHostError

logger = logging.getLogger("rapidalle")


@dataclass
class PipelineResult:
    text: str
    image_url: Optional[str]
    image_base64: Optional[str]
    generated: bool = True
    persisted: bool = False
    rehosted: bool = False
    prompt_id: Optional[str] = None
    image_id: Optional[str] = None
    warnings: List[PersistenceWarning] = field(default_factory=list)

    def output(self) -> dict:
        return {
            "text": self.text,
            "image": self.image_url,
            "imageBase64": self.image_base64,
        }


class GenerationPipeline:
    def __init__(
        self,
        caption_client: CaptionClient,
        image_client: ImageClient,
        media_host: Optional[CloudinaryHost] = None,
    ):
        self.caption_client = caption_client
        self.image_client = image_client
        self.media_host = media_host

    def _caption(self, request: GenerationRequest) -> str:
        caption = self.caption_client.complete(
            build_caption_prompt(request.theme, request.description, request.size)
        )
        if not caption or not caption.strip():
            raise PipelineStepError("No content, retrying", "caption")
        return caption

    def _image(self, request: GenerationRequest):
        image = self.image_client.generate(
            build_image_prompt(request.theme, request.description, request.size),
            request.size,
        )
        if image.is_empty:
            raise PipelineStepError("No image, retrying", "image")
        return image

    def _rehost(self, result: PipelineResult, run_id: str) -> None:
        if self.media_host is None or not self.media_host.configured:
            return
        if result.image_url:
            source = result.image_url
        else:
            source = f"data:image/png;base64,{result.image_base64}"
        try:
            result.image_url = self.media_host.upload(source, public_id=run_id)
            result.rehosted = True
        except MediaHostError as e:
            rehost_failures_total.inc()
            result.warnings.append(PersistenceWarning(step="rehost", message=str(e)))
            log_event("warning", "pipeline.rehost_failed", run_id=run_id, event_type="pipeline.rehost_failed", extra={"error": e})

    def _persist(self, result: PipelineResult, request: GenerationRequest, run_id: str, user_id: str) -> None:
        try:
            prompt = create_prompt(user_id, request.theme, request.description)
            image = create_image(
                user_id,
                url=result.image_url or "",
                base64=None if result.rehosted else result.image_base64,
                run_id=run_id,
                size=request.size,
                prompt_id=prompt.id,
            )
        except SQLAlchemyError as e:
            persistence_failures_total.inc()
            result.warnings.append(PersistenceWarning(step="persist", message=str(e)))
            log_event("warning", "pipeline.persist_failed", user_id=user_id, run_id=run_id, event_type="pipeline.persist_failed", extra={"error": e})
            return

        result.prompt_id = prompt.id
        result.image_id = image.id
        result.persisted = True
        log_event("info", "pipeline.persisted", user_id=user_id, run_id=run_id, event_type="pipeline.persisted")

    def run(self, request: GenerationRequest, run_id: str, user_id: str) -> PipelineResult:
        caption = self._caption(request)
        image = self._image(request)

        log_event(
            "info",
            "pipeline.generated",
            user_id=user_id,
            run_id=run_id,
            event_type="pipeline.generated",
            extra={"has_url": bool(image.url), "has_base64": bool(image.b64_json), "size": request.size},
        )

        result = PipelineResult(text=caption, image_url=image.url, image_base64=image.b64_json)
        self._rehost(result, run_id)
        self._persist(result, request, run_id, user_id)
        return result
