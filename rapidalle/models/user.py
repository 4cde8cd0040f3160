from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class User(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    credits: int = 0
    subscription_tier: Optional[str] = Field(default=None, alias="subscriptionTier")
    billing_customer_id: Optional[str] = Field(default=None, alias="billingCustomerId")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")

    @staticmethod
    def default_name(user_id: str) -> str:
        return f"User {user_id}"

    @staticmethod
    def default_email(user_id: str) -> str:
        return f"{user_id}@example.com"
