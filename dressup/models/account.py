"""
dressup/models/account.py

Account and identity models.

The `users` row is owned by Supabase; these models are the typed view the
service works with.
"""

from typing import Literal, Optional
from pydantic import BaseModel, ConfigDict

PlanName = Literal["free", "light", "basic", "pro"]


class Identity(BaseModel):
    """Authenticated caller, as reported by the auth backend."""
    model_config = ConfigDict(frozen=True)

    user_id: str
    email: Optional[str] = None


class Account(BaseModel):
    """
    Account represents one row of the `users` table.

    Constraint: credits_used <= credits_total is expected but only enforced
    by the callers that consume credits.
    """
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    email: Optional[str] = None
    plan: PlanName = "free"
    credits_total: int = 0
    credits_used: int = 0
    stripe_customer_id: Optional[str] = None
    period_end: Optional[int] = None  # unix seconds

    @property
    def remaining(self) -> int:
        return max(0, (self.credits_total or 0) - (self.credits_used or 0))
