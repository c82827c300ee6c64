"""
Billing service orchestrator.

Pure-ish business logic that coordinates:
- Customer management (find-or-create, persisted on the account row)
- Checkout and portal sessions
- Deferred downgrades and their cancellation
- Billing summary for the client

All Stripe-specific code is in stripe_provider.py; every function takes its
collaborators as arguments.
"""
import logging
from typing import Optional, Dict, Any

from dressup.core.errors import NotFoundError, ValidationError
from dressup.features.accounts.provider import AccountStore
from dressup.features.accounts.service import get_or_create_account
from dressup.features.billing.provider import PaymentsProvider, SubscriptionInfo
from dressup.features.plans.catalog import PlanCatalog
from dressup.models.account import Account, Identity

logger = logging.getLogger("dressup")


def ensure_customer(store: AccountStore, payments: PaymentsProvider, account: Account) -> str:
    """
    Ensure a Stripe customer exists for the account.

    Reuses the stored id unless Stripe no longer knows it, in which case a
    new customer is created and persisted.

    Returns:
        Stripe customer ID

    Raises:
        PaymentsError: If Stripe calls fail
    """
    if account.stripe_customer_id:
        if payments.customer_exists(account.stripe_customer_id):
            return account.stripe_customer_id
        logger.warning(
            f"[billing] customer {account.stripe_customer_id} unknown to Stripe for user {account.id}, recreating"
        )

    customer_id = payments.create_customer(account.id, account.email)
    store.set_customer_id(account.id, customer_id)
    logger.info(f"[billing] linked customer {customer_id} to user {account.id}")
    return customer_id


def start_checkout(
    store: AccountStore,
    payments: PaymentsProvider,
    catalog: PlanCatalog,
    identity: Identity,
    plan: Optional[str],
    app_url: str,
) -> str:
    """
    Start a subscription checkout for a paid plan.

    Returns:
        Checkout URL

    Raises:
        ValidationError: If plan is unknown or has no configured price
        PaymentsError: If checkout creation fails
    """
    # Validate before touching Stripe
    price_id = catalog.price_for_plan(plan)
    if not price_id:
        raise ValidationError("invalid plan", code="invalid_plan")

    account = get_or_create_account(store, identity, catalog)
    customer_id = ensure_customer(store, payments, account)

    return payments.create_checkout_session(
        customer_id=customer_id,
        price_id=price_id,
        success_url=f"{app_url}/?success=1",
        cancel_url=f"{app_url}/?canceled=1",
        metadata={"user_id": identity.user_id, "plan": plan},
    )


def start_portal(
    store: AccountStore,
    payments: PaymentsProvider,
    catalog: PlanCatalog,
    identity: Identity,
    app_url: str,
) -> str:
    """
    Start billing portal session for customer self-service.

    Returns:
        Portal URL
    """
    account = get_or_create_account(store, identity, catalog)
    customer_id = ensure_customer(store, payments, account)
    return payments.create_portal_session(customer_id=customer_id, return_url=f"{app_url}/settings")


def _active_subscription(
    store: AccountStore, payments: PaymentsProvider, identity: Identity
) -> tuple[Optional[str], Optional[SubscriptionInfo]]:
    account = store.get_account(identity.user_id)
    customer_id = account.stripe_customer_id if account else None
    if not customer_id:
        return None, None
    return customer_id, payments.get_active_subscription(customer_id)


def get_pending_change(
    store: AccountStore,
    payments: PaymentsProvider,
    catalog: PlanCatalog,
    identity: Identity,
) -> Optional[Dict[str, Any]]:
    """
    Describe the plan change waiting at the end of the current cycle.

    Returns:
        {"next_plan", "next_price_id", "start_date_unix"} or None
    """
    _, subscription = _active_subscription(store, payments, identity)
    if not subscription or not subscription.schedule_id:
        return None

    schedule = payments.retrieve_schedule(subscription.schedule_id)
    if len(schedule.phases) < 2:
        return None

    next_phase = schedule.phases[1]
    next_price_id = next_phase.items[0].price_id if next_phase.items else None
    mapped = catalog.plan_for_price(next_price_id)
    return {
        "next_plan": mapped.plan if mapped else None,
        "next_price_id": next_price_id,
        "start_date_unix": next_phase.start_date,
    }


def schedule_downgrade(
    store: AccountStore,
    payments: PaymentsProvider,
    catalog: PlanCatalog,
    identity: Identity,
    target_plan: Optional[str] = None,
    target_price_id: Optional[str] = None,
) -> str:
    """
    Schedule a switch to a cheaper plan at the end of the current period.

    Idempotent: an open schedule already carrying a next phase is returned
    as is. An open schedule with only its current phase is reused and
    given the target phase instead of creating a second one.

    Returns:
        Schedule ID

    Raises:
        ValidationError: Missing/unknown target, or target is not strictly lower
        NotFoundError: No linked customer or no active subscription
    """
    target_price = target_price_id or catalog.price_for_plan(target_plan)
    if not target_price:
        raise ValidationError("Bad request: target plan/price required", code="invalid_plan")
    target = catalog.plan_for_price(target_price)
    if not target:
        raise ValidationError("Unknown target price", code="invalid_plan")

    customer_id, subscription = _active_subscription(store, payments, identity)
    if not customer_id:
        raise NotFoundError("Customer not linked")
    if not subscription:
        raise NotFoundError("Active subscription not found")

    current = catalog.plan_for_price(subscription.price_id)
    current_plan = current.plan if current else "free"
    if not catalog.is_downgrade(current_plan, target.plan):
        raise ValidationError("Only downgrades are allowed here.", code="not_a_downgrade")

    existing = payments.find_open_schedule(customer_id, subscription.subscription_id)
    if existing and len(existing.phases) >= 2:
        logger.info(f"[billing] downgrade already scheduled: {existing.schedule_id}")
        return existing.schedule_id

    if existing:
        # A canceled change leaves the schedule attached with only its current phase
        schedule_id = payments.extend_schedule(existing, subscription, target_price)
    else:
        schedule_id = payments.create_downgrade_schedule(subscription, target_price)
    logger.info(
        f"[billing] scheduled downgrade {current_plan} -> {target.plan} for user {identity.user_id} ({schedule_id})"
    )
    return schedule_id


def cancel_schedule(store: AccountStore, payments: PaymentsProvider, identity: Identity) -> bool:
    """
    Cancel a pending plan change by collapsing the schedule to its current phase.

    Returns:
        True if a schedule was collapsed, False if there was nothing to cancel
    """
    _, subscription = _active_subscription(store, payments, identity)
    if not subscription or not subscription.schedule_id:
        return False

    payments.collapse_schedule(subscription.schedule_id, subscription)
    logger.info(f"[billing] canceled pending change {subscription.schedule_id} for user {identity.user_id}")
    return True


def get_billing_summary(store: AccountStore, catalog: PlanCatalog, identity: Identity) -> Dict[str, Any]:
    """
    Get the caller's plan and credit usage.

    Returns:
        {
            "plan": str,
            "credits_total": int,
            "credits_used": int,
            "remaining": int,
            "period_end": int | None (unix seconds)
        }
    """
    account = get_or_create_account(store, identity, catalog)
    return {
        "plan": account.plan,
        "credits_total": account.credits_total,
        "credits_used": account.credits_used,
        "remaining": account.remaining,
        "period_end": account.period_end,
    }
