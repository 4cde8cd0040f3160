"""
Generation API.

POST /api/generate admits a request through the generation gate and
returns the run handle; the image itself is produced asynchronously by
the worker.
"""

import json

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from rapidalle.core.auth import get_current_user_id
from rapidalle.core.errors import ValidationError
from rapidalle.core.services import Services, get_services

router = APIRouter(prefix="/api", tags=["generate"])


async def _read_payload(request: Request) -> dict:
    raw = await request.body()
    if not raw:
        return {}
    try:
        payload = json.loads(raw)
    except ValueError:
        raise ValidationError("Request body must be valid JSON", details={"field": "body"})
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object", details={"field": "body"})
    return payload


@router.post("/generate")
async def generate(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
):
    """
    Start a generation run.

    Returns:
        200 {"runId", "accessToken"} with X-RateLimit-* headers

    Errors:
        400 VALIDATION_ERROR, 402 NO_CREDITS, 429 RATE_LIMIT_EXCEEDED,
        500 TRIGGER_ERROR
    """
    payload = await _read_payload(request)
    result = services.gate.submit(user_id, payload)
    return JSONResponse(
        content=result.handle.to_dict(),
        headers=result.rate_limit.headers(),
    )
