"""
Stripe payments provider implementation.

Implements PaymentsProvider protocol using the Stripe API.
Handles webhook signature verification and normalizes SDK objects.
"""
import json
import logging
from typing import Dict, Any, List, Optional

import stripe

from dressup.features.billing.provider import (
    PaymentsError,
    ScheduleInfo,
    SchedulePhase,
    SubscriptionInfo,
    SubscriptionItem,
    WebhookSignatureError,
)

logger = logging.getLogger("dressup")

# Schedules in these states no longer drive the subscription
CLOSED_SCHEDULE_STATUSES = ("canceled", "released", "completed")


def _get(obj: Any, key: str, default: Any = None) -> Any:
    """Key lookup that works for dicts and Stripe objects alike."""
    if obj is None:
        return default
    try:
        value = obj[key]
    except (KeyError, TypeError, IndexError):
        return default
    return default if value is None else value


def _id_of(value: Any) -> Optional[str]:
    """Expandable fields arrive either as an id string or as an object."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return _get(value, "id")


def _items_of(container: Any) -> List[SubscriptionItem]:
    items: List[SubscriptionItem] = []
    for item in container or []:
        price_id = _id_of(_get(item, "price"))
        if price_id:
            items.append(SubscriptionItem(price_id=price_id, quantity=_get(item, "quantity", 1)))
    return items


def _subscription_info(sub: Any) -> SubscriptionInfo:
    raw_items = _get(_get(sub, "items"), "data", [])
    first_item = raw_items[0] if raw_items else None
    # Newer API versions moved the period bounds onto the subscription items
    period_start = _get(sub, "current_period_start") or _get(first_item, "current_period_start")
    period_end = _get(sub, "current_period_end") or _get(first_item, "current_period_end")
    return SubscriptionInfo(
        subscription_id=_get(sub, "id"),
        customer_id=_id_of(_get(sub, "customer")),
        status=_get(sub, "status", "unknown"),
        items=_items_of(raw_items),
        current_period_start=period_start,
        current_period_end=period_end,
        schedule_id=_id_of(_get(sub, "schedule")),
    )


def _schedule_info(schedule: Any) -> ScheduleInfo:
    phases = [
        SchedulePhase(
            start_date=_get(phase, "start_date"),
            end_date=_get(phase, "end_date"),
            items=_items_of(_get(phase, "items", [])),
        )
        for phase in _get(schedule, "phases", [])
    ]
    return ScheduleInfo(
        schedule_id=_get(schedule, "id"),
        subscription_id=_id_of(_get(schedule, "subscription")),
        status=_get(schedule, "status", "unknown"),
        phases=phases,
        current_phase_start=_get(_get(schedule, "current_phase"), "start_date"),
    )


def _phase_items(items: List[SubscriptionItem]) -> List[Dict[str, Any]]:
    return [{"price": item.price_id, "quantity": item.quantity or 1} for item in items]


class StripeProvider:
    """Stripe implementation of PaymentsProvider protocol."""

    def __init__(self, secret_key: Optional[str], webhook_secret: Optional[str] = None):
        """
        Initialize Stripe provider.

        Args:
            secret_key: Stripe secret key
            webhook_secret: Stripe webhook signing secret
        """
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret

        if not self.secret_key:
            raise PaymentsError("STRIPE_SECRET_KEY not configured")

        stripe.api_key = self.secret_key

    def construct_event(self, body: bytes, sig_header: Optional[str]) -> Dict[str, Any]:
        """Verify Stripe webhook signature and decode the event."""
        if not self.webhook_secret:
            raise WebhookSignatureError("STRIPE_WEBHOOK_SECRET not configured")
        if not sig_header:
            raise WebhookSignatureError("Missing stripe-signature header")

        try:
            payload = body.decode("utf-8")
            stripe.WebhookSignature.verify_header(payload, sig_header, self.webhook_secret)
            event = json.loads(payload)
        except ValueError as e:
            raise WebhookSignatureError(f"Invalid payload: {e}")
        except stripe.SignatureVerificationError as e:
            raise WebhookSignatureError(f"Invalid signature: {e}")

        if not isinstance(event, dict) or "type" not in event:
            raise WebhookSignatureError("Invalid payload: not a Stripe event")
        return event

    def create_customer(self, user_id: str, email: Optional[str] = None) -> str:
        """Create Stripe customer for user."""
        customer_data: Dict[str, Any] = {
            "metadata": {"user_id": user_id}
        }
        if email:
            customer_data["email"] = email
        try:
            customer = stripe.Customer.create(**customer_data)
            return customer["id"]
        except stripe.StripeError as e:
            raise PaymentsError(f"Stripe customer creation failed: {e}")

    def customer_exists(self, customer_id: str) -> bool:
        try:
            customer = stripe.Customer.retrieve(customer_id)
        except stripe.InvalidRequestError as e:
            if e.code == "resource_missing" or "No such customer" in str(e):
                return False
            raise PaymentsError(f"Stripe customer lookup failed: {e}")
        except stripe.StripeError as e:
            raise PaymentsError(f"Stripe customer lookup failed: {e}")
        return not _get(customer, "deleted", False)

    def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: Optional[Dict[str, str]] = None
    ) -> str:
        """Create Stripe checkout session."""
        try:
            session = stripe.checkout.Session.create(
                customer=customer_id,
                line_items=[{"price": price_id, "quantity": 1}],
                mode="subscription",
                success_url=success_url,
                cancel_url=cancel_url,
                allow_promotion_codes=True,
                metadata=metadata or {},
            )
            return session["url"]
        except stripe.StripeError as e:
            raise PaymentsError(f"Stripe checkout session creation failed: {e}")

    def create_portal_session(self, customer_id: str, return_url: str) -> str:
        """Create Stripe billing portal session."""
        try:
            session = stripe.billing_portal.Session.create(
                customer=customer_id,
                return_url=return_url,
            )
            return session["url"]
        except stripe.StripeError as e:
            raise PaymentsError(f"Stripe portal session creation failed: {e}")

    def get_active_subscription(self, customer_id: str) -> Optional[SubscriptionInfo]:
        try:
            subs = stripe.Subscription.list(
                customer=customer_id,
                status="active",
                expand=["data.items.data.price"],
                limit=1,
            )
        except stripe.StripeError as e:
            raise PaymentsError(f"Stripe subscription lookup failed: {e}")
        data = _get(subs, "data", [])
        return _subscription_info(data[0]) if data else None

    def retrieve_subscription(self, subscription_id: str) -> SubscriptionInfo:
        try:
            return _subscription_info(stripe.Subscription.retrieve(subscription_id))
        except stripe.StripeError as e:
            raise PaymentsError(f"Stripe subscription lookup failed: {e}")

    def checkout_price_id(self, session_id: str) -> Optional[str]:
        try:
            session = stripe.checkout.Session.retrieve(session_id, expand=["line_items"])
        except stripe.StripeError as e:
            raise PaymentsError(f"Stripe checkout session lookup failed: {e}")
        line_items = _get(_get(session, "line_items"), "data", [])
        if not line_items:
            return None
        return _id_of(_get(line_items[0], "price"))

    def find_open_schedule(self, customer_id: str, subscription_id: str) -> Optional[ScheduleInfo]:
        try:
            schedules = stripe.SubscriptionSchedule.list(customer=customer_id, limit=10)
        except stripe.StripeError as e:
            raise PaymentsError(f"Stripe schedule lookup failed: {e}")
        for schedule in _get(schedules, "data", []):
            info = _schedule_info(schedule)
            if info.subscription_id == subscription_id and info.status not in CLOSED_SCHEDULE_STATUSES:
                return info
        return None

    def retrieve_schedule(self, schedule_id: str) -> ScheduleInfo:
        try:
            schedule = stripe.SubscriptionSchedule.retrieve(schedule_id, expand=["phases.items.price"])
        except stripe.StripeError as e:
            raise PaymentsError(f"Stripe schedule lookup failed: {e}")
        return _schedule_info(schedule)

    def _set_downgrade_phases(
        self, schedule: ScheduleInfo, subscription: SubscriptionInfo, target_price_id: str
    ) -> None:
        # The first phase must keep the start of the phase already running
        start_date = schedule.current_phase_start or (
            schedule.phases[0].start_date if schedule.phases else subscription.current_period_start
        )
        stripe.SubscriptionSchedule.modify(
            schedule.schedule_id,
            end_behavior="release",
            phases=[
                {
                    "items": _phase_items(subscription.items),
                    "start_date": start_date,
                    "end_date": subscription.current_period_end,
                    "proration_behavior": "none",
                },
                {
                    "items": [{"price": target_price_id, "quantity": 1}],
                    "proration_behavior": "none",
                },
            ],
        )

    def create_downgrade_schedule(self, subscription: SubscriptionInfo, target_price_id: str) -> str:
        # A schedule created from a subscription cannot take phases in the
        # same call; the phases are set with a follow-up modify.
        idempotency_key = f"sched-dg-{subscription.subscription_id}-{target_price_id}"
        try:
            info = _schedule_info(
                stripe.SubscriptionSchedule.create(
                    from_subscription=subscription.subscription_id,
                    idempotency_key=idempotency_key,
                )
            )
            if info.status in CLOSED_SCHEDULE_STATUSES:
                # Replayed response of an earlier attempt that was rolled back
                info = _schedule_info(
                    stripe.SubscriptionSchedule.create(
                        from_subscription=subscription.subscription_id,
                        idempotency_key=f"{idempotency_key}-after-{info.schedule_id}",
                    )
                )
        except stripe.StripeError as e:
            raise PaymentsError(f"Stripe schedule creation failed: {e}")

        try:
            self._set_downgrade_phases(info, subscription, target_price_id)
        except stripe.StripeError as e:
            self._release_schedule(info.schedule_id)
            raise PaymentsError(f"Stripe schedule creation failed: {e}")
        return info.schedule_id

    def extend_schedule(
        self, schedule: ScheduleInfo, subscription: SubscriptionInfo, target_price_id: str
    ) -> str:
        try:
            self._set_downgrade_phases(schedule, subscription, target_price_id)
        except stripe.StripeError as e:
            raise PaymentsError(f"Stripe schedule update failed: {e}")
        return schedule.schedule_id

    def _release_schedule(self, schedule_id: str) -> None:
        """Detach a half-built schedule so it stops shadowing the subscription."""
        try:
            stripe.SubscriptionSchedule.release(schedule_id)
        except stripe.StripeError as e:
            logger.error(f"[stripe] failed to release schedule {schedule_id}: {e}")

    def collapse_schedule(self, schedule_id: str, subscription: SubscriptionInfo) -> None:
        try:
            current = self.retrieve_schedule(schedule_id)
            phase: Dict[str, Any] = {
                "items": _phase_items(subscription.items),
                "proration_behavior": "none",
            }
            phase["start_date"] = current.current_phase_start or "now"
            stripe.SubscriptionSchedule.modify(
                schedule_id,
                end_behavior="release",
                phases=[phase],
            )
        except stripe.StripeError as e:
            raise PaymentsError(f"Stripe schedule update failed: {e}")
