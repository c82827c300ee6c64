"""
Test Stripe webhook ingestion.

Deliveries are signed with the real Stripe scheme; the fake store records
what each event changed.
"""
import json

import pytest

from dressup.tests.fakes import PRICE_BASIC, PRICE_PRO, make_event, sign_payload

URL = "/api/stripe/webhook"
PERIOD_END = 1_702_592_000
NEXT_PERIOD_END = 1_705_270_400


def deliver(client, payload, signature=None):
    headers = {"stripe-signature": signature or sign_payload(payload), "content-type": "application/json"}
    return client.post(URL, content=payload, headers=headers)


@pytest.fixture
def alice(store, payments):
    store.seed("user_alice", stripe_customer_id="cus_alice")
    payments.add_subscription("cus_alice", PRICE_BASIC, subscription_id="sub_alice", period_end=PERIOD_END)
    return store.row("user_alice")


def checkout_completed(event_id="evt_checkout", customer="cus_alice", metadata=None):
    return make_event(
        "checkout.session.completed",
        {
            "id": "cs_1",
            "object": "checkout.session",
            "mode": "subscription",
            "customer": customer,
            "subscription": "sub_alice",
            "metadata": metadata or {"user_id": "user_alice", "plan": "basic"},
        },
        event_id=event_id,
    )


def subscription_event(event_type, price_id, event_id, status="active"):
    return make_event(
        event_type,
        {
            "id": "sub_alice",
            "object": "subscription",
            "customer": "cus_alice",
            "status": status,
            "current_period_end": PERIOD_END,
            "items": {"data": [{"price": {"id": price_id}}]},
        },
        event_id=event_id,
    )


def invoice_event(event_type, event_id, invoice_id="in_1", price_id=PRICE_PRO, billing_reason=None):
    invoice = {
        "id": invoice_id,
        "object": "invoice",
        "customer": "cus_alice",
        "subscription": "sub_alice",
        "lines": {
            "data": [
                {
                    "type": "subscription",
                    "price": {"id": price_id},
                    "period": {"start": PERIOD_END, "end": NEXT_PERIOD_END},
                }
            ]
        },
    }
    if billing_reason:
        invoice["billing_reason"] = billing_reason
    return make_event(event_type, invoice, event_id=event_id)


def test_checkout_subscription_update_and_invoice_sequence(client, alice, store):
    resp = deliver(client, checkout_completed())
    assert resp.status_code == 200
    assert resp.json() == {"received": True}
    assert alice["plan"] == "basic"
    assert alice["credits_total"] == 500
    assert alice["credits_used"] == 0
    assert alice["period_end"] == PERIOD_END

    # Same plan: usage is kept
    alice["credits_used"] = 7
    deliver(client, subscription_event("customer.subscription.updated", PRICE_BASIC, "evt_upd_1"))
    assert alice["credits_used"] == 7

    # Plan change: usage resets and the allowance follows the new plan
    deliver(client, subscription_event("customer.subscription.updated", PRICE_PRO, "evt_upd_2"))
    assert alice["plan"] == "pro"
    assert alice["credits_total"] == 1200
    assert alice["credits_used"] == 0

    # Renewal: new cycle
    alice["credits_used"] = 300
    deliver(client, invoice_event("invoice.payment_succeeded", "evt_inv_1"))
    assert alice["credits_used"] == 0
    assert alice["period_end"] == NEXT_PERIOD_END


def test_tampered_body_is_rejected_without_side_effects(client, alice, store):
    payload = checkout_completed()
    signature = sign_payload(payload)
    tampered = payload.replace("cus_alice", "cus_mallory")

    resp = deliver(client, tampered, signature=signature)

    assert resp.status_code == 400
    assert resp.json()["code"] == "invalid_signature"
    assert alice["plan"] == "free"
    assert store.events == {}


def test_wrong_secret_is_rejected(client, alice):
    payload = checkout_completed()
    resp = deliver(client, payload, signature=sign_payload(payload, secret="whsec_other"))
    assert resp.status_code == 400
    assert alice["plan"] == "free"


def test_missing_signature_header_is_rejected(client, alice):
    resp = client.post(URL, content=checkout_completed())
    assert resp.status_code == 400


def test_duplicate_event_is_a_noop(client, alice, store):
    payload = checkout_completed()
    assert deliver(client, payload).status_code == 200

    alice["credits_used"] = 42
    resp = deliver(client, payload)

    assert resp.status_code == 200
    assert alice["credits_used"] == 42


def test_invoice_paid_and_payment_succeeded_reset_once(client, alice, store):
    store.rows["user_alice"].update(plan="pro", credits_total=1200)
    deliver(client, invoice_event("invoice.paid", "evt_a"))
    alice["credits_used"] = 5

    deliver(client, invoice_event("invoice.payment_succeeded", "evt_b"))

    assert alice["credits_used"] == 5


def test_invoice_line_with_nested_price_details(client, alice):
    payload = json.loads(invoice_event("invoice.paid", "evt_nested"))
    line = payload["data"]["object"]["lines"]["data"][0]
    del line["price"]
    line["pricing"] = {"price_details": {"price": PRICE_PRO}}
    body = json.dumps(payload)

    assert deliver(client, body).status_code == 200
    assert alice["plan"] == "pro"


def test_subscription_deleted_returns_to_free(client, alice):
    deliver(client, subscription_event("customer.subscription.updated", PRICE_PRO, "evt_up"))
    alice["credits_used"] = 99

    deliver(client, subscription_event("customer.subscription.deleted", PRICE_PRO, "evt_del", status="canceled"))

    assert alice["plan"] == "free"
    assert alice["credits_total"] == 10
    assert alice["credits_used"] == 0
    assert alice["period_end"] is None


def test_inactive_subscription_status_leaves_plan(client, alice):
    deliver(client, subscription_event("customer.subscription.updated", PRICE_PRO, "evt_inc", status="incomplete"))
    assert alice["plan"] == "free"


def test_unmapped_price_is_acknowledged_without_update(client, alice):
    resp = deliver(client, subscription_event("customer.subscription.updated", "price_legacy", "evt_legacy"))
    assert resp.status_code == 200
    assert alice["plan"] == "free"


def test_checkout_links_customer_through_metadata(client, store, payments):
    store.seed("user_alice")
    payments.add_subscription("cus_new", PRICE_BASIC, subscription_id="sub_alice", period_end=PERIOD_END)

    resp = deliver(client, checkout_completed(customer="cus_new"))

    assert resp.status_code == 200
    row = store.row("user_alice")
    assert row["stripe_customer_id"] == "cus_new"
    assert row["plan"] == "basic"


def test_failed_side_effect_is_retried_on_redelivery(client, alice, store):
    payload = checkout_completed()
    store.fail_updates = True

    resp = deliver(client, payload)

    assert resp.status_code == 500
    assert resp.json()["code"] == "upstream_error"
    assert store.events == {}

    store.fail_updates = False
    assert deliver(client, payload).status_code == 200
    assert alice["plan"] == "basic"


def test_unhandled_event_type_is_acknowledged(client, alice, store):
    resp = deliver(client, make_event("customer.created", {"id": "cus_alice"}, event_id="evt_other"))
    assert resp.status_code == 200
    assert store.events == {}


def test_proration_invoice_keeps_usage(client, alice):
    alice.update(plan="pro", credits_total=1200, credits_used=40)

    proration = invoice_event(
        "invoice.paid", "evt_prorate", invoice_id="in_prorate", billing_reason="subscription_update"
    )
    deliver(client, proration)

    assert alice["credits_used"] == 40
    assert alice["plan"] == "pro"


def test_cycle_invoice_resets_usage(client, alice):
    alice.update(plan="pro", credits_total=1200, credits_used=40)

    renewal = invoice_event("invoice.paid", "evt_cycle", invoice_id="in_cycle", billing_reason="subscription_cycle")
    deliver(client, renewal)

    assert alice["credits_used"] == 0
    assert alice["period_end"] == NEXT_PERIOD_END
