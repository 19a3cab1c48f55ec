"""
main.py — FastAPI Entry Point for the Checkout Service

This module provides the REST API of the checkout / payment-settlement
pipeline. It is the composition root: store clients, the gateway client and
the orchestrator are built once at startup and released at shutdown.

Responsibilities:
    • Start a payment attempt for a cart and hand back the gateway redirect URL
    • Proxy gateway status checks
    • Settle successful payments into orders, mark failed payments
    • Cancel orders that have not been accepted yet
    • Provide system health information
"""

import math
from contextlib import asynccontextmanager
from typing import Optional

import redis
from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .clients import GatewayClient
from .config import Settings, load_settings
from .db import RedisCartStore, SqlCatalog, SqlOrderStore, SqlPaymentStore, init_db, make_engine
from .errors import CheckoutError, InvalidInput, Unauthorized
from .logging_config import get_logger, setup_logging
from .models import CheckoutRequest, TransactionRequest
from .workflow import SettlementOrchestrator

log = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Builds the production collaborators unless an orchestrator was injected.

    Startup fails fast (ConfigurationError) when the gateway configuration is
    incomplete.
    """
    if app.state.orchestrator is not None:
        yield
        return

    settings = app.state.settings or load_settings()
    log.info("Checkout-Service startet...")
    engine = make_engine(settings.database_url)
    init_db(engine)
    redis_client = redis.Redis.from_url(settings.redis_url)
    gateway = GatewayClient(settings)

    app.state.orchestrator = SettlementOrchestrator(
        settings=settings,
        catalog=SqlCatalog(engine),
        payments=SqlPaymentStore(engine),
        orders=SqlOrderStore(engine),
        carts=RedisCartStore(redis_client),
        gateway=gateway,
    )
    log.info("Checkout-Service bereit.")
    try:
        yield
    finally:
        log.info("Checkout-Service fährt herunter.")
        gateway.close()
        redis_client.close()
        engine.dispose()
        app.state.orchestrator = None


def get_orchestrator(request: Request) -> SettlementOrchestrator:
    return request.app.state.orchestrator


def current_user(x_user_id: Optional[str] = Header(None)) -> str:
    """Caller identity as resolved by the upstream session layer."""
    if not x_user_id:
        raise Unauthorized("user not found")
    return x_user_id


def format_amount(raw: str) -> str:
    """Normalizes a numeric amount the way the gateway prints it ('100', '100.5')."""
    try:
        value = float(raw)
    except ValueError:
        raise InvalidInput("invalid total_amount format") from None
    if not math.isfinite(value):
        raise InvalidInput("invalid total_amount format")
    if value.is_integer():
        return str(int(value))
    return repr(value)


async def handle_checkout_error(request: Request, exc: CheckoutError):
    if exc.status_code >= 500:
        log.error(f"{request.method} {request.url.path} fehlgeschlagen: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message, "success": False})


async def handle_validation_error(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"error": str(exc.errors()), "success": False})


def create_app(orchestrator: Optional[SettlementOrchestrator] = None, settings: Optional[Settings] = None) -> FastAPI:
    """
    Application factory.

    Args:
        orchestrator: Pre-built orchestrator (tests); when None, the lifespan builds one.
        settings: Settings to use instead of reading the environment.
    """
    app = FastAPI(title="Checkout Service", lifespan=lifespan)
    app.state.orchestrator = orchestrator
    app.state.settings = settings
    app.add_exception_handler(CheckoutError, handle_checkout_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)

    @app.post("/payment-service/initiate-payment")
    def initiate_payment(
            body: CheckoutRequest,
            user_id: str = Depends(current_user),
            orchestrator: SettlementOrchestrator = Depends(get_orchestrator),
    ):
        """
        Starts a payment attempt for the submitted cart.

        Returns:
            dict: `{"url": <gateway redirect>, "success": true}`.
        """
        log.info(f"[User: {user_id}] Checkout mit {len(body.cart_items)} Positionen angefordert.")
        url = orchestrator.initiate(user_id, body.cart_items)
        return {"url": url, "success": True}

    @app.get("/payment-service/check-status")
    def check_status(
            transaction_uuid: str = Query(""),
            product_code: str = Query(""),
            total_amount: str = Query(""),
            user_id: str = Depends(current_user),
            orchestrator: SettlementOrchestrator = Depends(get_orchestrator),
    ):
        """Proxies the gateway status check. Never changes state."""
        if not transaction_uuid or not product_code or not total_amount:
            raise InvalidInput("transaction_uuid, product_code, and total_amount are required")
        status = orchestrator.check_status(transaction_uuid, product_code, format_amount(total_amount))
        return {"success": True, "data": status.model_dump()}

    @app.post("/payment-service/process-successful-payment")
    def process_successful_payment(
            body: TransactionRequest,
            user_id: str = Depends(current_user),
            orchestrator: SettlementOrchestrator = Depends(get_orchestrator),
    ):
        """Settles a payment the gateway reported as successful. Safe to repeat."""
        order = orchestrator.settle(body.transaction_uuid)
        return {"success": True, "order": order.to_json(), "message": "Order created successfully"}

    @app.post("/payment-service/process-failed-payment")
    def process_failed_payment(
            body: TransactionRequest,
            user_id: str = Depends(current_user),
            orchestrator: SettlementOrchestrator = Depends(get_orchestrator),
    ):
        status = orchestrator.fail(body.transaction_uuid, user_id)
        return {"success": True, "status": status.value}

    @app.post("/payment-service/reconcile")
    def reconcile_payment(
            body: TransactionRequest,
            user_id: str = Depends(current_user),
            orchestrator: SettlementOrchestrator = Depends(get_orchestrator),
    ):
        """Polls the gateway for a stored payment and settles or fails it accordingly."""
        status, order = orchestrator.reconcile(body.transaction_uuid)
        return {"success": True, "data": status.model_dump(), "order": order.to_json() if order else None}

    @app.put("/orders/user/{order_id}/cancel")
    def cancel_order(
            order_id: str,
            user_id: str = Depends(current_user),
            orchestrator: SettlementOrchestrator = Depends(get_orchestrator),
    ):
        order = orchestrator.cancel(user_id, order_id)
        return {"success": True, "order": order.to_json(), "message": "Order cancelled successfully"}

    @app.get("/health")
    def health_check():
        """
        Simple health check endpoint for monitoring systems and container orchestrators.
        """
        return {"status": "ok"}

    return app


# Initialization
setup_logging()
app = create_app()
