"""Gallery API: cached library view plus single-image routes (owner only)."""

from fastapi import APIRouter, Depends

from rapidalle.core.auth import get_current_user_id
from rapidalle.core.errors import NotFoundError, PermissionError
from rapidalle.core.services import Services, get_services
from rapidalle.features.artifacts.service import delete_image, get_image_by_id, get_library, invalidate_library

router = APIRouter(prefix="/api", tags=["library"])


def _owned_image(image_id: str, user_id: str):
    image = get_image_by_id(image_id)
    if image is None:
        raise NotFoundError(f"Image {image_id} not found")
    if image.user_id != user_id:
        raise PermissionError("Image belongs to another user")
    return image


@router.get("/library")
def library(user_id: str = Depends(get_current_user_id), services: Services = Depends(get_services)):
    return {"images": get_library(user_id, services.cache)}


@router.get("/images/{image_id}")
def get_image(image_id: str, user_id: str = Depends(get_current_user_id)):
    return _owned_image(image_id, user_id).model_dump(mode="json", by_alias=True)


@router.delete("/images/{image_id}")
def remove_image(
    image_id: str,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
):
    _owned_image(image_id, user_id)
    deleted = delete_image(image_id)
    invalidate_library(user_id, services.cache)
    return {"deleted": deleted}
