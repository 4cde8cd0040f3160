"""
Run status API.

Single-run routes authenticate with the run access token returned by
POST /api/generate (Authorization: Bearer <accessToken>). The run list is
built from persisted images and uses the normal user session.
"""

from fastapi import APIRouter, Depends, Header
from typing import Optional

from rapidalle.core.auth import get_current_user_id
from rapidalle.core.errors import PermissionError
from rapidalle.core.services import Services, get_services
from rapidalle.features.artifacts.service import list_runs
from rapidalle.features.generation.runner import verify_run_token

router = APIRouter(prefix="/api/runs", tags=["runs"])


def _require_run_token(run_id: str, authorization: Optional[str], services: Services) -> dict:
    if not authorization or not authorization.startswith("Bearer "):
        raise PermissionError("Run access token required")
    return verify_run_token(authorization[7:], run_id, services.runner.token_secret)


@router.get("")
def get_runs(user_id: str = Depends(get_current_user_id)):
    return {"runs": [run.model_dump(mode="json", by_alias=True) for run in list_runs(user_id)]}


@router.get("/{run_id}")
def get_run(
    run_id: str,
    authorization: Optional[str] = Header(None),
    services: Services = Depends(get_services),
):
    _require_run_token(run_id, authorization, services)
    return services.runner.fetch_status(run_id).to_dict()


@router.post("/{run_id}/cancel")
def cancel_run(
    run_id: str,
    authorization: Optional[str] = Header(None),
    services: Services = Depends(get_services),
):
    _require_run_token(run_id, authorization, services)
    return services.runner.cancel(run_id).to_dict()
