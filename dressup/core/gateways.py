"""
Request-time access to the process-wide gateways.

Gateways are built once in the app lifespan and parked on `app.state`.
Handlers receive them through these dependencies; tests swap them with
`app.dependency_overrides`.
"""
from starlette.requests import Request

from dressup.core.config import Settings, settings
from dressup.core.errors import AppError, BillingDisabledError
from dressup.features.accounts.provider import AccountStore, AuthBackend
from dressup.features.billing.provider import PaymentsProvider
from dressup.features.imaging.gemini import GeminiClient
from dressup.features.plans.catalog import PlanCatalog


class NotConfiguredError(AppError):
    code = "not_configured"
    status_code = 503


def get_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or settings


def get_catalog(request: Request) -> PlanCatalog:
    catalog = getattr(request.app.state, "catalog", None)
    return catalog or PlanCatalog.from_settings(get_settings(request))


def get_auth_backend(request: Request) -> AuthBackend:
    backend = getattr(request.app.state, "auth_backend", None)
    if backend is None:
        raise NotConfiguredError("Auth backend not configured")
    return backend


def get_account_store(request: Request) -> AccountStore:
    store = getattr(request.app.state, "account_store", None)
    if store is None:
        raise NotConfiguredError("Database not configured")
    return store


def get_payments(request: Request) -> PaymentsProvider:
    payments = getattr(request.app.state, "payments", None)
    if payments is None:
        raise BillingDisabledError("Billing disabled")
    return payments


def get_image_client(request: Request) -> GeminiClient:
    client = getattr(request.app.state, "image_client", None)
    if client is None:
        raise NotConfiguredError("Image client not initialised")
    return client
