"""
Stripe webhook processing.

1. Verify signature (no side effects on failure)
2. Skip event types we do not handle
3. Check idempotency (skip if already processed)
4. Map the event's price to plan/credits through the plan catalog
5. Update the account rows linked to the Stripe customer

Rows are keyed by stripe_customer_id and written last-write-wins.
"""
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from dressup.core.logging import log_event
from dressup.features.accounts.provider import AccountStore
from dressup.features.billing.provider import PaymentsProvider
from dressup.features.plans.catalog import PlanCatalog, PlanEntry

logger = logging.getLogger("dressup")

# Subscription states that keep the paid plan's entitlements
ENTITLED_STATUSES = frozenset({"active", "trialing", "past_due", "unpaid"})

# Invoices that open a billing cycle; payloads without a reason count as one
CYCLE_BILLING_REASONS = frozenset({"subscription_cycle", "subscription_create"})


@dataclass
class WebhookOutcome:
    """What processing an event did."""
    event_id: Optional[str]
    event_type: str
    handled: bool = False
    duplicate: bool = False
    customer_id: Optional[str] = None
    plan: Optional[str] = None
    rows_updated: int = 0


@dataclass
class _Context:
    store: AccountStore
    payments: PaymentsProvider
    catalog: PlanCatalog


def _id_of(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        return value.get("id")
    return value or None


def _plan_fields(entry: PlanEntry, period_end: Optional[int]) -> Dict[str, Any]:
    fields: Dict[str, Any] = {"plan": entry.plan, "credits_total": entry.credits}
    if period_end:
        fields["period_end"] = period_end
    return fields


def _unmapped(outcome: WebhookOutcome, price_id: Optional[str]) -> WebhookOutcome:
    logger.warning(
        f"[webhook] price not mapped: {price_id}",
        extra={"event_type": outcome.event_type, "customer_id": outcome.customer_id},
    )
    return outcome


def _handle_checkout_completed(ctx: _Context, obj: Dict[str, Any], outcome: WebhookOutcome) -> WebhookOutcome:
    if obj.get("mode") != "subscription":
        return outcome

    customer_id = _id_of(obj.get("customer"))
    outcome.customer_id = customer_id
    price_id = None
    period_end = None

    subscription_id = _id_of(obj.get("subscription"))
    if subscription_id:
        subscription = ctx.payments.retrieve_subscription(subscription_id)
        price_id = subscription.price_id
        period_end = subscription.current_period_end
    if not price_id and obj.get("id"):
        price_id = ctx.payments.checkout_price_id(obj["id"])

    entry = ctx.catalog.plan_for_price(price_id)
    if not entry:
        return _unmapped(outcome, price_id)
    if not customer_id:
        logger.warning("[webhook] checkout session without customer", extra={"event_type": outcome.event_type})
        return outcome

    fields = _plan_fields(entry, period_end)
    fields["credits_used"] = 0
    outcome.plan = entry.plan
    outcome.rows_updated = ctx.store.update_by_customer(customer_id, fields)

    if outcome.rows_updated == 0:
        # Customer created outside create-checkout; link it through the session metadata
        user_id = (obj.get("metadata") or {}).get("user_id") or obj.get("client_reference_id")
        if user_id:
            ctx.store.set_customer_id(user_id, customer_id)
            outcome.rows_updated = ctx.store.update_by_customer(customer_id, fields)
    return outcome


def _handle_subscription_changed(ctx: _Context, obj: Dict[str, Any], outcome: WebhookOutcome) -> WebhookOutcome:
    customer_id = _id_of(obj.get("customer"))
    outcome.customer_id = customer_id
    status = obj.get("status")
    if status not in ENTITLED_STATUSES:
        logger.info(f"[webhook] subscription status {status} leaves plan unchanged", extra={"customer_id": customer_id})
        return outcome

    items = (obj.get("items") or {}).get("data") or []
    first_item = items[0] if items else {}
    price_id = _id_of(first_item.get("price"))
    entry = ctx.catalog.plan_for_price(price_id)
    if not entry:
        return _unmapped(outcome, price_id)
    if not customer_id:
        return outcome

    period_end = obj.get("current_period_end") or first_item.get("current_period_end")
    fields = _plan_fields(entry, period_end)

    account = ctx.store.get_account_by_customer(customer_id)
    if account is None:
        logger.warning("[webhook] no account linked to customer", extra={"customer_id": customer_id})
        return outcome
    if account.plan != entry.plan:
        fields["credits_used"] = 0

    outcome.plan = entry.plan
    outcome.rows_updated = ctx.store.update_by_customer(customer_id, fields)
    return outcome


def _invoice_subscription_line(invoice: Dict[str, Any]) -> Dict[str, Any]:
    lines = (invoice.get("lines") or {}).get("data") or []
    for line in lines:
        if line.get("type") == "subscription" or line.get("subscription") or line.get("parent"):
            return line
    return lines[0] if lines else {}


def _line_price_id(line: Dict[str, Any]) -> Optional[str]:
    price = _id_of(line.get("price"))
    if price:
        return price
    # Newer API versions nest the price under pricing.price_details
    details = (line.get("pricing") or {}).get("price_details") or {}
    return _id_of(details.get("price"))


def _invoice_subscription_id(invoice: Dict[str, Any]) -> Optional[str]:
    subscription_id = _id_of(invoice.get("subscription"))
    if subscription_id:
        return subscription_id
    details = (invoice.get("parent") or {}).get("subscription_details") or {}
    return _id_of(details.get("subscription"))


def _handle_invoice_paid(ctx: _Context, obj: Dict[str, Any], outcome: WebhookOutcome) -> WebhookOutcome:
    customer_id = _id_of(obj.get("customer"))
    outcome.customer_id = customer_id
    subscription_id = _invoice_subscription_id(obj)

    # Line items are the source of truth; the subscription object can lag
    line = _invoice_subscription_line(obj)
    price_id = _line_price_id(line)
    period_end = (line.get("period") or {}).get("end")

    if not subscription_id and not price_id:
        return outcome
    if (not price_id or not period_end) and subscription_id:
        subscription = ctx.payments.retrieve_subscription(subscription_id)
        price_id = price_id or subscription.price_id
        period_end = period_end or subscription.current_period_end

    entry = ctx.catalog.plan_for_price(price_id)
    if not entry:
        return _unmapped(outcome, price_id)
    if not customer_id:
        return outcome

    fields = _plan_fields(entry, period_end)
    # Proration and manual invoices do not open a new cycle
    billing_reason = obj.get("billing_reason")
    if billing_reason is None or billing_reason in CYCLE_BILLING_REASONS:
        fields["credits_used"] = 0
    outcome.plan = entry.plan
    outcome.rows_updated = ctx.store.update_by_customer(customer_id, fields)
    return outcome


def _handle_subscription_deleted(ctx: _Context, obj: Dict[str, Any], outcome: WebhookOutcome) -> WebhookOutcome:
    customer_id = _id_of(obj.get("customer"))
    outcome.customer_id = customer_id
    if not customer_id:
        return outcome

    free = ctx.catalog.free_entry()
    outcome.plan = free.plan
    outcome.rows_updated = ctx.store.update_by_customer(
        customer_id,
        {"plan": free.plan, "credits_total": free.credits, "credits_used": 0, "period_end": None},
    )
    return outcome


HANDLERS: Dict[str, Callable[[_Context, Dict[str, Any], WebhookOutcome], WebhookOutcome]] = {
    "checkout.session.completed": _handle_checkout_completed,
    "customer.subscription.created": _handle_subscription_changed,
    "customer.subscription.updated": _handle_subscription_changed,
    "invoice.payment_succeeded": _handle_invoice_paid,
    "invoice.paid": _handle_invoice_paid,
    "customer.subscription.deleted": _handle_subscription_deleted,
}


def _dedupe_key(event: Dict[str, Any], obj: Dict[str, Any]) -> Optional[str]:
    # invoice.paid and invoice.payment_succeeded fire for the same invoice;
    # only the first may reset the credit counter.
    if event["type"].startswith("invoice.") and obj.get("id"):
        return f"invoice:{obj['id']}"
    return event.get("id")


def process_webhook_event(
    store: AccountStore,
    payments: PaymentsProvider,
    catalog: PlanCatalog,
    body: bytes,
    sig_header: Optional[str],
) -> WebhookOutcome:
    """
    Process a Stripe webhook delivery.

    Returns:
        WebhookOutcome

    Raises:
        WebhookSignatureError: If the signature is invalid (nothing is written)
        PaymentsError / AccountStoreError: If a side effect fails; the event is
            forgotten again so the provider's redelivery can retry it
    """
    event = payments.construct_event(body, sig_header)
    event_type = event["type"]
    obj = (event.get("data") or {}).get("object") or {}
    outcome = WebhookOutcome(event_id=event.get("id"), event_type=event_type)

    handler = HANDLERS.get(event_type)
    if handler is None:
        logger.info(f"[webhook] ignoring {event_type}", extra={"event_id": outcome.event_id})
        return outcome

    key = _dedupe_key(event, obj)
    if key and not store.record_event(key, event_type):
        logger.info(f"[webhook] duplicate {event_type} skipped", extra={"event_id": outcome.event_id})
        outcome.duplicate = True
        return outcome

    try:
        outcome = handler(_Context(store, payments, catalog), obj, outcome)
    except Exception:
        if key:
            store.forget_event(key)
        raise

    outcome.handled = True
    log_event(
        "info",
        f"[webhook] {event_type} applied",
        customer_id=outcome.customer_id,
        event_type=event_type,
        extra={"event_id": outcome.event_id, "plan": outcome.plan, "rows_updated": outcome.rows_updated},
    )
    return outcome
