"""
rapidalle/models/usage_event.py

UsageEvent model for the credit ledger.
"""

from datetime import datetime
from typing import Optional, Dict, Any
from pydantic import BaseModel, ConfigDict


class UsageEvent(BaseModel):
    """
    UsageEvent records one credit movement.

    Features:
    - image.generate: credits debited for a generation (credits > 0)
    - billing.<pack>: credits granted by a purchase or renewal (credits < 0)
    - admin.set_balance: administrative balance change

    Metadata can include:
    - run_id: Generation run that consumed the credit
    - stripe_event_id: Billing event that granted the credit
    """
    model_config = ConfigDict(frozen=True)

    user_id: str
    feature: str
    credits: int
    occurred_at: datetime
    metadata: Optional[Dict[str, Any]] = None
