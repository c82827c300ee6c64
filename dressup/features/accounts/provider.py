"""
Account backend protocols.

Defines the narrow interfaces the handlers use for the hosted auth and
database backend, so Supabase can be swapped for fakes in tests.
"""
from typing import Protocol, Dict, Any, Optional

from dressup.models.account import Account, Identity


class AuthBackend(Protocol):
    """Exchanges access tokens for identities."""

    def get_user(self, token: str) -> Optional[Identity]:
        """
        Look up the user owning an access token.

        Returns:
            Identity, or None when the backend rejects the token
        """
        ...


class AccountStore(Protocol):
    """
    Row access for the `users` and `stripe_events` tables.

    Every method is a single round trip to the database.
    """

    def get_account(self, user_id: str) -> Optional[Account]:
        ...

    def create_account(self, identity: Identity, *, plan: str, credits_total: int) -> Account:
        ...

    def get_account_by_customer(self, customer_id: str) -> Optional[Account]:
        ...

    def set_customer_id(self, user_id: str, customer_id: str) -> None:
        ...

    def update_by_customer(self, customer_id: str, fields: Dict[str, Any]) -> int:
        """
        Update every row linked to a Stripe customer.

        Returns:
            Number of rows updated
        """
        ...

    def consume_credit(self, user_id: str) -> None:
        """
        Atomically increment credits_used for one generation.

        Raises:
            AccountStoreError: If the database refuses (e.g. no credits left)
        """
        ...

    def record_event(self, event_id: str, event_type: str) -> bool:
        """
        Remember a processed webhook event.

        Returns:
            True if newly recorded, False if the event was seen before
        """
        ...

    def forget_event(self, event_id: str) -> None:
        ...


class AccountStoreError(Exception):
    """Base exception for account backend errors."""
    pass
