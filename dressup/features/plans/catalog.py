"""
dressup/features/plans/catalog.py

Plan catalog: the single price -> (plan, credit allowance) table.

Handles:
- Plan ranking (free < light < basic < pro)
- Plan -> Stripe price resolution
- Stripe price -> plan/credits resolution
"""

from dataclasses import dataclass
from typing import Dict, Optional

from dressup.core.config import Settings, settings as default_settings


PLAN_RANK: Dict[str, int] = {
    "free": 0,
    "light": 1,
    "basic": 2,
    "pro": 3,
}

PAID_PLANS = ("light", "basic", "pro")


@dataclass(frozen=True)
class PlanEntry:
    plan: str
    credits: int
    price_id: Optional[str] = None


class PlanCatalog:
    """Price table built from configuration."""

    def __init__(
        self,
        prices: Dict[str, Optional[str]],
        credits: Dict[str, int],
    ):
        self._entries: Dict[str, PlanEntry] = {}
        for plan in PLAN_RANK:
            self._entries[plan] = PlanEntry(
                plan=plan,
                credits=int(credits.get(plan, 0)),
                price_id=(prices.get(plan) or None) if plan in PAID_PLANS else None,
            )
        self._by_price: Dict[str, PlanEntry] = {
            entry.price_id: entry for entry in self._entries.values() if entry.price_id
        }

    @classmethod
    def from_settings(cls, cfg: Optional[Settings] = None) -> "PlanCatalog":
        cfg = cfg or default_settings
        return cls(
            prices={
                "light": cfg.STRIPE_PRICE_LIGHT,
                "basic": cfg.STRIPE_PRICE_BASIC,
                "pro": cfg.STRIPE_PRICE_PRO,
            },
            credits={
                "free": cfg.CREDITS_FREE,
                "light": cfg.CREDITS_LIGHT,
                "basic": cfg.CREDITS_BASIC,
                "pro": cfg.CREDITS_PRO,
            },
        )

    def entry(self, plan: str) -> Optional[PlanEntry]:
        return self._entries.get(plan)

    def free_entry(self) -> PlanEntry:
        return self._entries["free"]

    def price_for_plan(self, plan: Optional[str]) -> Optional[str]:
        """Stripe price id for a purchasable plan, or None (free/unknown/unconfigured)."""
        if plan not in PAID_PLANS:
            return None
        return self._entries[plan].price_id

    def plan_for_price(self, price_id: Optional[str]) -> Optional[PlanEntry]:
        if not price_id:
            return None
        return self._by_price.get(price_id)

    @staticmethod
    def rank(plan: Optional[str]) -> int:
        return PLAN_RANK.get(plan or "free", 0)

    def is_downgrade(self, current: str, target: str) -> bool:
        """Only strictly lower targets count as a downgrade."""
        return self.rank(target) < self.rank(current)
