"""Prompt and Image records plus the run summary built from them."""

from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


class Prompt(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    user_id: str = Field(alias="userId")
    theme: str
    description: str
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")


class Image(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    user_id: str = Field(alias="userId")
    url: str
    base64: Optional[str] = None
    run_id: Optional[str] = Field(default=None, alias="runId")
    size: Optional[str] = None
    prompt_id: Optional[str] = Field(default=None, alias="promptId")
    created_at: datetime = Field(alias="createdAt")
    prompt: Optional[Prompt] = None


class RunSummary(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    run_id: str = Field(alias="runId")
    image_count: int = Field(alias="imageCount")
    started_at: datetime = Field(alias="startedAt")
    completed_at: datetime = Field(alias="completedAt")
    images: List[Image] = Field(default_factory=list)
