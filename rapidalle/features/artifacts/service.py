"""
Artifact store: prompts and generated images.

Ids are UUID strings. Lists are newest first. Runs are reconstructed from
the images they produced, since the queue forgets finished jobs.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import delete, insert, select, update

from rapidalle.core.cache import FlatCache, library_key
from rapidalle.core.database import as_utc, get_db_session, images, prompts
from rapidalle.features.users.service import get_or_create_user
from rapidalle.models.artifact import Image, Prompt, RunSummary


def _ensure_user(user_id: str) -> None:
    get_or_create_user(user_id, defaults={"credits": 0})


def _row_to_prompt(row) -> Prompt:
    return Prompt(
        id=row.id,
        user_id=row.user_id,
        theme=row.theme,
        description=row.description,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


def _row_to_image(row, prompt: Optional[Prompt] = None) -> Image:
    return Image(
        id=row.id,
        user_id=row.user_id,
        url=row.url,
        base64=row.base64,
        run_id=row.run_id,
        size=row.size,
        prompt_id=row.prompt_id,
        created_at=as_utc(row.created_at),
        prompt=prompt,
    )


# ---- prompts ----

def create_prompt(user_id: str, theme: str, description: str) -> Prompt:
    _ensure_user(user_id)
    now = datetime.now(timezone.utc)
    prompt_id = str(uuid4())
    with get_db_session() as session:
        session.execute(
            insert(prompts).values(
                id=prompt_id,
                user_id=user_id,
                theme=theme,
                description=description,
                created_at=now,
                updated_at=now,
            )
        )
    return Prompt(id=prompt_id, user_id=user_id, theme=theme, description=description, created_at=now, updated_at=now)


def get_prompts_by_user(user_id: str) -> List[Prompt]:
    with get_db_session() as session:
        rows = session.execute(
            select(prompts)
            .where(prompts.c.user_id == user_id)
            .order_by(prompts.c.created_at.desc(), prompts.c.id)
        ).all()
        return [_row_to_prompt(row) for row in rows]


def get_prompt_by_id(user_id: str, prompt_id: str) -> Optional[Prompt]:
    with get_db_session() as session:
        row = session.execute(
            select(prompts).where(prompts.c.id == prompt_id, prompts.c.user_id == user_id)
        ).first()
        return _row_to_prompt(row) if row else None


def update_prompt(
    user_id: str,
    prompt_id: str,
    theme: Optional[str] = None,
    description: Optional[str] = None,
) -> Optional[Prompt]:
    values: Dict[str, Any] = {}
    if theme is not None:
        values["theme"] = theme
    if description is not None:
        values["description"] = description
    if not values:
        return get_prompt_by_id(user_id, prompt_id)

    values["updated_at"] = datetime.now(timezone.utc)
    with get_db_session() as session:
        result = session.execute(
            update(prompts)
            .where(prompts.c.id == prompt_id, prompts.c.user_id == user_id)
            .values(**values)
        )
        if result.rowcount == 0:
            return None
    return get_prompt_by_id(user_id, prompt_id)


def delete_prompt(user_id: str, prompt_id: str) -> bool:
    with get_db_session() as session:
        # Images outlive their prompt
        session.execute(update(images).where(images.c.prompt_id == prompt_id).values(prompt_id=None))
        result = session.execute(
            delete(prompts).where(prompts.c.id == prompt_id, prompts.c.user_id == user_id)
        )
        return result.rowcount > 0


# ---- images ----

def _prompts_by_id(session, prompt_ids) -> Dict[str, Prompt]:
    ids = {pid for pid in prompt_ids if pid}
    if not ids:
        return {}
    rows = session.execute(select(prompts).where(prompts.c.id.in_(ids))).all()
    return {row.id: _row_to_prompt(row) for row in rows}


def _images_with_prompts(session, rows) -> List[Image]:
    linked = _prompts_by_id(session, [row.prompt_id for row in rows])
    return [_row_to_image(row, linked.get(row.prompt_id)) for row in rows]


def create_image(
    user_id: str,
    url: str,
    base64: Optional[str] = None,
    run_id: Optional[str] = None,
    size: Optional[str] = None,
    prompt_id: Optional[str] = None,
) -> Image:
    _ensure_user(user_id)
    now = datetime.now(timezone.utc)
    image_id = str(uuid4())
    with get_db_session() as session:
        session.execute(
            insert(images).values(
                id=image_id,
                user_id=user_id,
                url=url or "",
                base64=base64,
                run_id=run_id,
                size=size,
                prompt_id=prompt_id,
                created_at=now,
            )
        )
    return Image(
        id=image_id,
        user_id=user_id,
        url=url or "",
        base64=base64,
        run_id=run_id,
        size=size,
        prompt_id=prompt_id,
        created_at=now,
    )


def get_images_by_user(user_id: str) -> List[Image]:
    with get_db_session() as session:
        rows = session.execute(
            select(images)
            .where(images.c.user_id == user_id)
            .order_by(images.c.created_at.desc(), images.c.id)
        ).all()
        return _images_with_prompts(session, rows)


def get_image_by_id(image_id: str) -> Optional[Image]:
    with get_db_session() as session:
        row = session.execute(select(images).where(images.c.id == image_id)).first()
        if not row:
            return None
        return _images_with_prompts(session, [row])[0]


def get_images_by_run_id(run_id: str) -> List[Image]:
    with get_db_session() as session:
        rows = session.execute(
            select(images)
            .where(images.c.run_id == run_id)
            .order_by(images.c.created_at.desc(), images.c.id)
        ).all()
        return _images_with_prompts(session, rows)


def update_image(
    image_id: str,
    url: Optional[str] = None,
    base64: Optional[str] = None,
    prompt_id: Optional[str] = None,
) -> Optional[Image]:
    values: Dict[str, Any] = {}
    if url is not None:
        values["url"] = url
    if base64 is not None:
        values["base64"] = base64
    if prompt_id is not None:
        values["prompt_id"] = prompt_id
    if values:
        with get_db_session() as session:
            result = session.execute(update(images).where(images.c.id == image_id).values(**values))
            if result.rowcount == 0:
                return None
    return get_image_by_id(image_id)


def delete_image(image_id: str) -> bool:
    with get_db_session() as session:
        result = session.execute(delete(images).where(images.c.id == image_id))
        return result.rowcount > 0


# ---- runs / library ----

def list_runs(user_id: str) -> List[RunSummary]:
    """Group the user's images by run id, most recently completed first."""
    grouped: Dict[str, List[Image]] = {}
    for image in get_images_by_user(user_id):
        if image.run_id:
            grouped.setdefault(image.run_id, []).append(image)

    summaries = []
    for run_id, run_images in grouped.items():
        stamps = [img.created_at for img in run_images]
        summaries.append(
            RunSummary(
                run_id=run_id,
                image_count=len(run_images),
                started_at=min(stamps),
                completed_at=max(stamps),
                images=run_images,
            )
        )
    summaries.sort(key=lambda s: s.completed_at, reverse=True)
    return summaries


def get_library(user_id: str, cache: FlatCache) -> List[Dict[str, Any]]:
    """Gallery view, cache-first under library:<user_id>."""
    key = library_key(user_id)
    cached = cache.get(key)
    if cached is not None:
        return cached

    payload = [image.model_dump(mode="json", by_alias=True) for image in get_images_by_user(user_id)]
    cache.set(key, payload)
    cache.save()
    return payload


def invalidate_library(user_id: str, cache: FlatCache) -> None:
    cache.invalidate(library_key(user_id))
    cache.save(force=True)
