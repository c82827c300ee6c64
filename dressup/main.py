import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

# Load env from dressup/.env
package_dir = os.path.dirname(os.path.abspath(__file__))
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv(dotenv_path=os.path.join(package_dir, ".env"))

# Import after dotenv is loaded
from dressup.core.config import Settings, billing_enabled, settings, validate_config  # noqa: E402
from dressup.core.logging import configure_logging  # noqa: E402
from dressup.core.middleware.request_id import RequestIdMiddleware  # noqa: E402
from dressup.core.validation import validate_env  # noqa: E402
from dressup.core.errors import (  # noqa: E402
    AppError,
    app_error_handler,
    http_error_handler,
    request_validation_error_handler,
    unhandled_exception_handler,
)
from dressup.api import billing, health, images  # noqa: E402
from dressup.features.accounts.provider import AccountStoreError  # noqa: E402
from dressup.features.accounts.supabase_provider import (  # noqa: E402
    SupabaseAccountStore,
    SupabaseAuthBackend,
    create_service_client,
)
from dressup.features.billing.provider import PaymentsError  # noqa: E402
from dressup.features.billing.stripe_provider import StripeProvider  # noqa: E402
from dressup.features.imaging.gemini import GeminiClient  # noqa: E402
from dressup.features.plans.catalog import PlanCatalog  # noqa: E402

configure_logging(settings.ENV)
validate_env()
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))

logger = logging.getLogger("dressup")


def build_gateways(app: FastAPI, cfg: Settings) -> None:
    """Construct the process-wide gateways; missing config leaves a gateway unset."""
    app.state.settings = cfg
    app.state.catalog = PlanCatalog.from_settings(cfg)
    app.state.image_client = GeminiClient(
        api_key=cfg.GEMINI_API_KEY,
        endpoint=cfg.GEMINI_ENDPOINT,
        timeout=cfg.GEMINI_TIMEOUT_SECONDS,
    )

    app.state.auth_backend = None
    app.state.account_store = None
    try:
        client = create_service_client(cfg.SUPABASE_URL, cfg.SUPABASE_SERVICE_ROLE_KEY)
        app.state.auth_backend = SupabaseAuthBackend(client)
        app.state.account_store = SupabaseAccountStore(client)
    except AccountStoreError as e:
        logger.warning(f"Supabase unavailable, auth and accounts disabled: {e}")

    app.state.payments = None
    if billing_enabled(cfg):
        try:
            app.state.payments = StripeProvider(cfg.STRIPE_SECRET_KEY, cfg.STRIPE_WEBHOOK_SECRET)
        except PaymentsError as e:
            logger.warning(f"Stripe unavailable, billing disabled: {e}")
    else:
        logger.info("STRIPE_SECRET_KEY not set, billing disabled")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting DressUp backend...")
    build_gateways(app, settings)
    try:
        yield
    finally:
        image_client = getattr(app.state, "image_client", None)
        if image_client is not None:
            await image_client.aclose()
        logger.info("Stopping DressUp backend...")


app = FastAPI(title="DressUp - Backend", lifespan=lifespan)

# Middlewares
app.add_middleware(RequestIdMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(StarletteHTTPException, http_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_error_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.CORS_ALLOW_ORIGINS.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router, tags=["health"])
app.include_router(health.root_router, tags=["health"])
app.include_router(billing.router, tags=["billing"])
app.include_router(billing.summary_router, tags=["billing"])
app.include_router(images.router, tags=["images"])
