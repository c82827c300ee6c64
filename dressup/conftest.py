# dressup/conftest.py
import os

import httpx
import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("SKIP_ENV_VALIDATION", "1")

from dressup.core.config import Settings  # noqa: E402
from dressup.core.gateways import (  # noqa: E402
    get_account_store,
    get_auth_backend,
    get_catalog,
    get_image_client,
    get_payments,
    get_settings,
)
from dressup.features.imaging.gemini import GeminiClient  # noqa: E402
from dressup.features.plans.catalog import PlanCatalog  # noqa: E402
from dressup.main import app  # noqa: E402
from dressup.models.account import Identity  # noqa: E402
from dressup.tests.fakes import (  # noqa: E402
    PRICE_BASIC,
    PRICE_LIGHT,
    PRICE_PRO,
    WEBHOOK_SECRET,
    FakeAccountStore,
    FakeAuth,
    FakePayments,
)

ALICE_TOKEN = "token-alice"


@pytest.fixture
def test_settings():
    """Settings independent of the developer's environment and .env file."""
    return Settings(
        _env_file=None,
        ENV="test",
        GEMINI_API_KEY="gemini-test-key",
        GEMINI_ENDPOINT="https://gemini.test/v1beta",
        STRIPE_SECRET_KEY="sk_test_fake",
        STRIPE_WEBHOOK_SECRET=WEBHOOK_SECRET,
        STRIPE_PRICE_LIGHT=PRICE_LIGHT,
        STRIPE_PRICE_BASIC=PRICE_BASIC,
        STRIPE_PRICE_PRO=PRICE_PRO,
        PUBLIC_APP_URL="https://app.example.com",
    )


@pytest.fixture
def catalog(test_settings):
    return PlanCatalog.from_settings(test_settings)


@pytest.fixture
def auth():
    return FakeAuth({ALICE_TOKEN: Identity(user_id="user_alice", email="alice@example.com")})


@pytest.fixture
def store():
    return FakeAccountStore()


@pytest.fixture
def payments():
    return FakePayments()


@pytest.fixture
def gemini_responses():
    """Queue of (status, json_body) answers for the mocked Gemini endpoint."""
    return []


@pytest.fixture
def gemini_requests():
    return []


@pytest.fixture
def image_client(test_settings, gemini_responses, gemini_requests):
    def handler(request: httpx.Request) -> httpx.Response:
        gemini_requests.append(request)
        if not gemini_responses:
            return httpx.Response(500, json={"error": {"message": "no canned response"}})
        status, body = gemini_responses.pop(0)
        return httpx.Response(status, json=body)

    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GeminiClient(
        api_key=test_settings.GEMINI_API_KEY,
        endpoint=test_settings.GEMINI_ENDPOINT,
        timeout=5.0,
        http_client=http,
    )


@pytest.fixture
def client(test_settings, catalog, auth, store, payments, image_client):
    """TestClient with every gateway replaced by an in-memory fake."""
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_catalog] = lambda: catalog
    app.dependency_overrides[get_auth_backend] = lambda: auth
    app.dependency_overrides[get_account_store] = lambda: store
    app.dependency_overrides[get_payments] = lambda: payments
    app.dependency_overrides[get_image_client] = lambda: image_client
    try:
        yield TestClient(app, raise_server_exceptions=False)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {ALICE_TOKEN}"}
