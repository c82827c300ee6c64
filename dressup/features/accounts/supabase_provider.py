"""
Supabase implementations of the account backend protocols.

Uses the service-role key, so row-level security does not apply; every
query is scoped explicitly by user id or Stripe customer id.
"""
import logging
from typing import Any, Dict, Optional

from supabase import AuthError, Client, PostgrestAPIError, create_client

from dressup.features.accounts.provider import AccountStoreError
from dressup.models.account import Account, Identity

logger = logging.getLogger("dressup")

ACCOUNT_COLUMNS = "id,email,plan,credits_total,credits_used,stripe_customer_id,period_end"
UNIQUE_VIOLATION = "23505"


def create_service_client(url: Optional[str], service_role_key: Optional[str]) -> Client:
    if not url or not service_role_key:
        raise AccountStoreError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be configured")
    try:
        return create_client(url, service_role_key)
    except Exception as e:
        # supabase-py rejects malformed URLs/keys at construction time
        raise AccountStoreError(f"Supabase client creation failed: {e}") from e


class SupabaseAuthBackend:
    """AuthBackend backed by Supabase auth."""

    def __init__(self, client: Client):
        self._client = client

    def get_user(self, token: str) -> Optional[Identity]:
        try:
            response = self._client.auth.get_user(token)
        except AuthError as e:
            logger.debug(f"Token rejected by auth backend: {e}")
            return None
        user = getattr(response, "user", None) if response else None
        if not user or not getattr(user, "id", None):
            return None
        return Identity(user_id=str(user.id), email=getattr(user, "email", None))


class SupabaseAccountStore:
    """AccountStore backed by the Supabase `users` and `stripe_events` tables."""

    def __init__(self, client: Client, table: str = "users", events_table: str = "stripe_events"):
        self._client = client
        self._table = table
        self._events_table = events_table

    def _first(self, column: str, value: str) -> Optional[Account]:
        try:
            result = (
                self._client.table(self._table)
                .select(ACCOUNT_COLUMNS)
                .eq(column, value)
                .limit(1)
                .execute()
            )
        except PostgrestAPIError as e:
            raise AccountStoreError(f"select {self._table} failed: {e.message}") from e
        if not result.data:
            return None
        return Account.model_validate(result.data[0])

    def get_account(self, user_id: str) -> Optional[Account]:
        return self._first("id", user_id)

    def get_account_by_customer(self, customer_id: str) -> Optional[Account]:
        return self._first("stripe_customer_id", customer_id)

    def create_account(self, identity: Identity, *, plan: str, credits_total: int) -> Account:
        row = {
            "id": identity.user_id,
            "email": identity.email,
            "plan": plan,
            "credits_total": credits_total,
            "credits_used": 0,
        }
        try:
            result = self._client.table(self._table).upsert(row, on_conflict="id", ignore_duplicates=True).execute()
        except PostgrestAPIError as e:
            raise AccountStoreError(f"insert {self._table} failed: {e.message}") from e
        if result.data:
            return Account.model_validate(result.data[0])
        # Row already existed (concurrent first sign-in); read it back.
        existing = self.get_account(identity.user_id)
        if existing is None:
            raise AccountStoreError(f"account {identity.user_id} missing after insert")
        return existing

    def set_customer_id(self, user_id: str, customer_id: str) -> None:
        try:
            self._client.table(self._table).update({"stripe_customer_id": customer_id}).eq("id", user_id).execute()
        except PostgrestAPIError as e:
            raise AccountStoreError(f"update stripe_customer_id failed: {e.message}") from e

    def update_by_customer(self, customer_id: str, fields: Dict[str, Any]) -> int:
        try:
            result = (
                self._client.table(self._table)
                .update(fields)
                .eq("stripe_customer_id", customer_id)
                .execute()
            )
        except PostgrestAPIError as e:
            raise AccountStoreError(f"update {self._table} failed: {e.message}") from e
        return len(result.data or [])

    def consume_credit(self, user_id: str) -> None:
        try:
            self._client.rpc("consume_credit", {"p_user_id": user_id}).execute()
        except PostgrestAPIError as e:
            raise AccountStoreError(e.message or "consume_credit failed") from e

    def record_event(self, event_id: str, event_type: str) -> bool:
        try:
            self._client.table(self._events_table).insert({"id": event_id, "type": event_type}).execute()
        except PostgrestAPIError as e:
            if e.code == UNIQUE_VIOLATION:
                return False
            raise AccountStoreError(f"insert {self._events_table} failed: {e.message}") from e
        return True

    def forget_event(self, event_id: str) -> None:
        try:
            self._client.table(self._events_table).delete().eq("id", event_id).execute()
        except PostgrestAPIError as e:
            raise AccountStoreError(f"delete {self._events_table} failed: {e.message}") from e
