"""Saved prompt API."""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, field_validator

from rapidalle.core.auth import get_current_user_id
from rapidalle.core.errors import NotFoundError, ValidationError
from rapidalle.features.artifacts.service import (
    create_prompt,
    delete_prompt,
    get_prompts_by_user,
    update_prompt,
)

router = APIRouter(prefix="/api/prompts", tags=["prompts"])


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    if not value:
        raise ValueError("must not be empty")
    return value


class PromptCreateRequest(BaseModel):
    theme: str = Field(..., max_length=1000)
    description: str = Field(..., max_length=1000)

    @field_validator("theme", "description")
    @classmethod
    def not_empty(cls, value: str) -> str:
        return _clean(value)


class PromptUpdateRequest(BaseModel):
    theme: Optional[str] = Field(None, max_length=1000)
    description: Optional[str] = Field(None, max_length=1000)

    @field_validator("theme", "description")
    @classmethod
    def not_empty(cls, value: Optional[str]) -> Optional[str]:
        return _clean(value)


@router.get("")
def list_prompts(user_id: str = Depends(get_current_user_id)):
    return {"prompts": [p.model_dump(mode="json", by_alias=True) for p in get_prompts_by_user(user_id)]}


@router.post("")
def add_prompt(body: PromptCreateRequest, user_id: str = Depends(get_current_user_id)):
    prompt = create_prompt(user_id, body.theme, body.description)
    return prompt.model_dump(mode="json", by_alias=True)


@router.patch("/{prompt_id}")
def edit_prompt(prompt_id: str, body: PromptUpdateRequest, user_id: str = Depends(get_current_user_id)):
    if body.theme is None and body.description is None:
        raise ValidationError("Nothing to update", details={"field": "body"})
    prompt = update_prompt(user_id, prompt_id, theme=body.theme, description=body.description)
    if prompt is None:
        raise NotFoundError(f"Prompt {prompt_id} not found")
    return prompt.model_dump(mode="json", by_alias=True)


@router.delete("/{prompt_id}")
def remove_prompt(prompt_id: str, user_id: str = Depends(get_current_user_id)):
    if not delete_prompt(user_id, prompt_id):
        raise NotFoundError(f"Prompt {prompt_id} not found")
    return {"deleted": True}
