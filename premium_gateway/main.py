import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from premium_gateway.config import Settings, load_settings
from premium_gateway.database import build_engine, build_session_factory, init_db
from premium_gateway.errors import ServiceError
from premium_gateway.paypal import PayPalClient
from premium_gateway.reconciler import Reconciler
from premium_gateway.routers import auth, paypal, subscriptions, users, webhook
from premium_gateway.store import UserStore

logger = logging.getLogger(__name__)


def _validation_fields(exc: RequestValidationError) -> list[dict[str, str]]:
    fields = []
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        fields.append({"field": ".".join(location) or "body", "message": error.get("msg", "Invalid value")})
    return fields


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[UserStore] = None,
    provider: Optional[PayPalClient] = None,
) -> FastAPI:
    """Build the application with its collaborators.

    Anything not passed in is constructed from settings, which are loaded from
    the environment when omitted (raising ConfigError on missing credentials).
    """
    settings = settings or load_settings()
    if store is None:
        engine = build_engine(settings.database_url)
        init_db(engine)
        store = UserStore(build_session_factory(engine))
    provider = provider or PayPalClient.from_settings(settings)

    app = FastAPI(
        title="Premium Gateway",
        description="PayPal checkout and subscription proxy with premium entitlements",
        version="1.0.0",
    )
    app.state.settings = settings
    app.state.store = store
    app.state.provider = provider
    app.state.reconciler = Reconciler(store, provider, webhook_id=settings.paypal_webhook_id)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.allowed_origins),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "Accept"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger.info("%s %s (origin=%s)", request.method, request.url.path, request.headers.get("origin"))
        return await call_next(request)

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        content = {"success": False, "error": exc.message}
        content.update(exc.extra(expose_details=settings.expose_provider_errors))
        return JSONResponse(status_code=exc.status_code, content=content)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": "Invalid request.", "fields": _validation_fields(exc)},
        )

    app.include_router(paypal.router)
    app.include_router(subscriptions.router)
    app.include_router(users.router)
    app.include_router(auth.router)
    app.include_router(webhook.router)

    @app.get("/api/health-check")
    def health_check():
        return {
            "success": True,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "status": "ok",
        }

    @app.get("/", response_class=PlainTextResponse)
    def read_root():
        return "PayPal server is running"

    return app
