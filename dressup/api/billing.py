"""
Billing API routes.

- POST /api/stripe/create-checkout: Start a subscription checkout
- POST /api/stripe/create-portal: Open the billing portal
- GET  /api/stripe/pending-change: Plan change scheduled for the next cycle
- POST /api/stripe/schedule-downgrade: Switch to a cheaper plan at period end
- POST /api/stripe/cancel-schedule: Drop a pending plan change
- POST /api/stripe/webhook: Handle Stripe webhooks
- GET  /api/billing/summary: Plan and credit usage of the caller
"""
import logging
from contextlib import contextmanager
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, ConfigDict

from dressup.core.auth import require_identity
from dressup.core.config import Settings
from dressup.core.errors import UpstreamError, ValidationError
from dressup.core.gateways import get_account_store, get_catalog, get_payments, get_settings
from dressup.features.accounts.provider import AccountStore, AccountStoreError
from dressup.features.billing.provider import PaymentsError, PaymentsProvider, WebhookSignatureError
from dressup.features.billing.service import (
    cancel_schedule,
    get_billing_summary,
    get_pending_change,
    schedule_downgrade,
    start_checkout,
    start_portal,
)
from dressup.features.billing.webhook import process_webhook_event
from dressup.features.plans.catalog import PlanCatalog
from dressup.models.account import Identity

logger = logging.getLogger("dressup")

router = APIRouter(prefix="/api/stripe", tags=["billing"])
summary_router = APIRouter(prefix="/api/billing", tags=["billing"])


class CheckoutRequest(BaseModel):
    """Request to create checkout session."""
    plan: Optional[str] = None


class UrlResponse(BaseModel):
    url: str


class DowngradeRequest(BaseModel):
    """Target of a deferred downgrade; targetPriceId wins when both are set."""
    model_config = ConfigDict(populate_by_name=True)

    targetPlan: Optional[str] = None
    targetPriceId: Optional[str] = None


class DowngradeResponse(BaseModel):
    ok: bool = True
    scheduled: bool = True
    scheduleId: str


class CancelScheduleResponse(BaseModel):
    ok: bool = True
    canceled: bool


class BillingSummaryResponse(BaseModel):
    plan: str
    credits_total: int
    credits_used: int
    remaining: int
    period_end: Optional[int] = None  # unix seconds


@contextmanager
def gateway_errors():
    """Map gateway failures onto API errors."""
    try:
        yield
    except (PaymentsError, AccountStoreError) as e:
        logger.error(f"[billing] gateway call failed: {e}")
        raise UpstreamError("Billing provider error", extra={"detail": str(e)})


def app_url(request: Request, cfg: Settings) -> str:
    return (cfg.PUBLIC_APP_URL or str(request.base_url)).rstrip("/")


@router.post("/create-checkout", response_model=UrlResponse)
def create_checkout(
    body: CheckoutRequest,
    request: Request,
    identity: Identity = Depends(require_identity),
    store: AccountStore = Depends(get_account_store),
    payments: PaymentsProvider = Depends(get_payments),
    catalog: PlanCatalog = Depends(get_catalog),
    cfg: Settings = Depends(get_settings),
):
    """
    Create Stripe checkout session.

    Returns:
        {"url": "https://checkout.stripe.com/..."}

    Errors:
        400: Unknown or unconfigured plan (Stripe is not called)
        401: No valid bearer token
        503: Billing disabled
        500: Stripe API error
    """
    with gateway_errors():
        url = start_checkout(store, payments, catalog, identity, body.plan, app_url(request, cfg))
    return {"url": url}


@router.post("/create-portal", response_model=UrlResponse)
def create_portal(
    request: Request,
    identity: Identity = Depends(require_identity),
    store: AccountStore = Depends(get_account_store),
    payments: PaymentsProvider = Depends(get_payments),
    catalog: PlanCatalog = Depends(get_catalog),
    cfg: Settings = Depends(get_settings),
):
    """Create Stripe billing portal session; returns to <app>/settings."""
    with gateway_errors():
        url = start_portal(store, payments, catalog, identity, app_url(request, cfg))
    return {"url": url}


@router.get("/pending-change")
def pending_change(
    identity: Identity = Depends(require_identity),
    store: AccountStore = Depends(get_account_store),
    payments: PaymentsProvider = Depends(get_payments),
    catalog: PlanCatalog = Depends(get_catalog),
) -> Dict[str, Any]:
    with gateway_errors():
        pending = get_pending_change(store, payments, catalog, identity)
    return {"pending": pending}


@router.post("/schedule-downgrade", response_model=DowngradeResponse)
def create_downgrade_schedule(
    body: DowngradeRequest,
    identity: Identity = Depends(require_identity),
    store: AccountStore = Depends(get_account_store),
    payments: PaymentsProvider = Depends(get_payments),
    catalog: PlanCatalog = Depends(get_catalog),
):
    """
    Schedule a downgrade for the end of the current billing period.

    Errors:
        400: Missing/unknown target, or target is not strictly lower
        404: No linked customer or no active subscription
    """
    if not body.targetPlan and not body.targetPriceId:
        raise ValidationError("Bad request: target plan/price required", code="invalid_plan")

    with gateway_errors():
        schedule_id = schedule_downgrade(
            store,
            payments,
            catalog,
            identity,
            target_plan=body.targetPlan,
            target_price_id=body.targetPriceId,
        )
    return DowngradeResponse(scheduleId=schedule_id)


@router.post("/cancel-schedule", response_model=CancelScheduleResponse)
def cancel_pending_change(
    identity: Identity = Depends(require_identity),
    store: AccountStore = Depends(get_account_store),
    payments: PaymentsProvider = Depends(get_payments),
):
    with gateway_errors():
        canceled = cancel_schedule(store, payments, identity)
    return CancelScheduleResponse(canceled=canceled)


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="stripe-signature"),
    store: AccountStore = Depends(get_account_store),
    payments: PaymentsProvider = Depends(get_payments),
    catalog: PlanCatalog = Depends(get_catalog),
):
    """
    Handle Stripe webhook events.

    The raw body is required for signature verification.

    Errors:
        400: Missing/invalid signature (nothing is written)
        500: A side effect failed; Stripe redelivers
    """
    body = await request.body()
    try:
        await run_in_threadpool(process_webhook_event, store, payments, catalog, body, stripe_signature)
    except WebhookSignatureError as e:
        logger.warning(f"[webhook] rejected: {e}")
        raise ValidationError("Invalid signature", code="invalid_signature")
    except (PaymentsError, AccountStoreError) as e:
        logger.error(f"[webhook] processing failed: {e}")
        raise UpstreamError("Webhook processing failed", extra={"detail": str(e)})

    return {"received": True}


@summary_router.get("/summary", response_model=BillingSummaryResponse)
def billing_summary(
    identity: Identity = Depends(require_identity),
    store: AccountStore = Depends(get_account_store),
    catalog: PlanCatalog = Depends(get_catalog),
):
    with gateway_errors():
        return get_billing_summary(store, catalog, identity)
