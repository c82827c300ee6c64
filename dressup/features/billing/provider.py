"""
Payments provider protocol.

Defines the interface for the payments provider (Stripe).
Handlers and services only see these plain types, never SDK objects.
"""
from typing import Protocol, Dict, Any, List, Optional
from dataclasses import dataclass, field


@dataclass
class SubscriptionItem:
    price_id: str
    quantity: int = 1


@dataclass
class SubscriptionInfo:
    """Normalized view of a provider subscription."""
    subscription_id: str
    customer_id: Optional[str]
    status: str
    items: List[SubscriptionItem] = field(default_factory=list)
    current_period_start: Optional[int] = None
    current_period_end: Optional[int] = None
    schedule_id: Optional[str] = None

    @property
    def price_id(self) -> Optional[str]:
        return self.items[0].price_id if self.items else None


@dataclass
class SchedulePhase:
    start_date: Optional[int]
    end_date: Optional[int]
    items: List[SubscriptionItem] = field(default_factory=list)


@dataclass
class ScheduleInfo:
    """Normalized view of a subscription schedule."""
    schedule_id: str
    subscription_id: Optional[str]
    status: str
    phases: List[SchedulePhase] = field(default_factory=list)
    current_phase_start: Optional[int] = None


class PaymentsProvider(Protocol):
    """
    Protocol for the payments provider.

    Implementations must handle:
    - Customer creation and validation
    - Checkout and portal session creation
    - Subscription and schedule lookups
    - Deferred downgrades through subscription schedules
    - Webhook signature verification
    """

    def construct_event(self, body: bytes, sig_header: Optional[str]) -> Dict[str, Any]:
        """
        Verify a webhook signature and decode the event.

        Raises:
            WebhookSignatureError: If the header, secret or signature is invalid
        """
        ...

    def create_customer(self, user_id: str, email: Optional[str] = None) -> str:
        ...

    def customer_exists(self, customer_id: str) -> bool:
        """False when the provider no longer knows the id (e.g. test/live key mismatch)."""
        ...

    def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> str:
        """
        Create a subscription checkout session.

        Returns:
            Checkout session URL
        """
        ...

    def create_portal_session(self, customer_id: str, return_url: str) -> str:
        ...

    def get_active_subscription(self, customer_id: str) -> Optional[SubscriptionInfo]:
        ...

    def retrieve_subscription(self, subscription_id: str) -> SubscriptionInfo:
        ...

    def checkout_price_id(self, session_id: str) -> Optional[str]:
        """Price of the first line item of a checkout session."""
        ...

    def find_open_schedule(self, customer_id: str, subscription_id: str) -> Optional[ScheduleInfo]:
        """Non-canceled schedule attached to the subscription, if any."""
        ...

    def retrieve_schedule(self, schedule_id: str) -> ScheduleInfo:
        ...

    def create_downgrade_schedule(self, subscription: SubscriptionInfo, target_price_id: str) -> str:
        """
        Two-phase schedule: current items until period end, then the target price.

        Returns:
            Schedule ID
        """
        ...

    def extend_schedule(
        self, schedule: ScheduleInfo, subscription: SubscriptionInfo, target_price_id: str
    ) -> str:
        """Re-add the target phase to an open schedule left with only its current phase."""
        ...

    def collapse_schedule(self, schedule_id: str, subscription: SubscriptionInfo) -> None:
        """Drop future phases, keeping only the current items."""
        ...


class PaymentsError(Exception):
    """Base exception for payments provider errors."""
    pass


class WebhookSignatureError(PaymentsError):
    """Exception for webhook verification errors."""
    pass
