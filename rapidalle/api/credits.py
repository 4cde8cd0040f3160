from fastapi import APIRouter, Depends

from rapidalle.core.auth import get_current_user_id
from rapidalle.core.services import Services, get_services
from rapidalle.features.credits.service import get_credit_summary

router = APIRouter(prefix="/api", tags=["credits"])


@router.get("/credits")
def credits(user_id: str = Depends(get_current_user_id), services: Services = Depends(get_services)):
    """Balance, plan and the remaining generation quota for the current window."""
    summary = get_credit_summary(user_id)
    quota = services.limiter.peek(user_id)
    summary["rateLimit"] = {
        "limit": quota.limit,
        "remaining": quota.remaining,
        "resetTime": quota.reset_time,
    }
    return summary
