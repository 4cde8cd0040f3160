"""Prompt-enhancement helper: a plain assistant completion for the prompt editor."""

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, field_validator

from rapidalle.core.auth import get_current_user_id
from rapidalle.core.errors import ProviderError
from rapidalle.core.services import Services, get_services
from rapidalle.features.generation.errors import PipelineStepError
from rapidalle.features.generation.prompts import COMPLETION_SYSTEM_PROMPT

router = APIRouter(prefix="/api", tags=["completion"])


class CompletionRequest(BaseModel):
    content: str = Field(..., max_length=4000)

    @field_validator("content")
    @classmethod
    def content_required(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("content is required")
        return value


@router.post("/completion")
def completion(
    body: CompletionRequest,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
):
    client = services.caption_client_factory()
    try:
        text = client.complete(body.content, system_prompt=COMPLETION_SYSTEM_PROMPT)
    except PipelineStepError as e:
        raise ProviderError(f"Completion failed: {e.message}")
    if not text:
        raise ProviderError("Completion returned no content")
    return {"text": text}
