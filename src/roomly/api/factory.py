"""FastAPI application factory."""

from __future__ import annotations

from fastapi import FastAPI, Request, Response

from roomly.config import Settings, load_settings
from roomly.gateway.adapter import GatewayAdapter
from roomly.gateway.client import RazorpayClient
from roomly.observability.correlation import CORRELATION_ID_HEADER, correlation_scope
from roomly.observability.logging import configure_logging, get_logger
from roomly.services.notifier import DbNotifier, Notifier

from .routers import public
from .routes import bookings, payments, webhooks

logger = get_logger(__name__)


def create_app(
    settings: Settings | None = None,
    gateway: GatewayAdapter | None = None,
    notifier: Notifier | None = None,
) -> FastAPI:
    """Create the FastAPI app with its collaborators wired in.

    Args:
        settings: Configuration; read from the environment when omitted.
        gateway: Gateway adapter; a RazorpayClient over ``settings`` by default.
        notifier: Notifier; the database-backed inbox by default.

    Raises:
        ConfigurationError: Required gateway settings are missing.
    """
    configure_logging()

    if settings is None:
        settings = load_settings()

    app = FastAPI(
        title="Roomly",
        docs_url=None,
        redoc_url=None,
    )
    app.state.settings = settings
    app.state.gateway = gateway if gateway is not None else RazorpayClient(settings)
    app.state.notifier = notifier if notifier is not None else DbNotifier()

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next) -> Response:
        with correlation_scope(request.headers.get(CORRELATION_ID_HEADER)) as cid:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = cid
            return response

    app.include_router(public.router)
    app.include_router(payments.router)
    app.include_router(webhooks.router)
    app.include_router(bookings.router)

    logger.info("application created")
    return app
