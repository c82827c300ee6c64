"""
Account domain service.
- get_or_create_account(store, identity, catalog)
- consume_generation(store, account)
"""

import logging

from dressup.core.errors import ConflictError, PaymentRequiredError
from dressup.features.accounts.provider import AccountStore, AccountStoreError
from dressup.features.plans.catalog import PlanCatalog
from dressup.models.account import Account, Identity

logger = logging.getLogger("dressup")


def get_or_create_account(store: AccountStore, identity: Identity, catalog: PlanCatalog) -> Account:
    """Load the caller's row, creating the free default on first use."""
    existing = store.get_account(identity.user_id)
    if existing:
        return existing

    free = catalog.free_entry()
    logger.info(f"[accounts] creating default account for {identity.user_id}")
    return store.create_account(identity, plan=free.plan, credits_total=free.credits)


def consume_generation(store: AccountStore, account: Account) -> None:
    """
    Spend one credit before a generation runs.

    The remaining-credit check here is advisory; the `consume_credit`
    database function re-checks and increments in one statement.
    """
    if account.remaining <= 0:
        raise PaymentRequiredError("No credits")
    try:
        store.consume_credit(account.id)
    except AccountStoreError as e:
        raise ConflictError("Consume failed", code="consume_failed", extra={"detail": str(e)})
