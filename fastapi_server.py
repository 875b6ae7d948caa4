#!/usr/bin/env python3
"""
FastAPI Storefront Gateway - HTTP entry point for checkout, payment checks,
warranty claims and the Sakurupiah payment callback
"""

import json
import logging
import time
from datetime import datetime, timezone
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

# Import centralized configuration
from config import AppConfig, get_config


# Configure logging early to capture all startup logs including lifespan
class _JsonLogFormatter(logging.Formatter):
    """Single structured JSON log format for production"""
    def format(self, record):
        log_data = {
            'timestamp': datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            'level': record.levelname,
            'component': record.name,
            'message': record.getMessage(),
        }
        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)
        return json.dumps(log_data, default=str)

_handler = logging.StreamHandler()
_handler.setFormatter(_JsonLogFormatter())
logging.root.handlers = [_handler]
logging.root.setLevel(logging.INFO)

# SECURITY: Prevent API key leakage in HTTP request logs
logging.getLogger("httpx").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

import database
from api.dependencies import ShopServices
from api.routes import history, payments, warranty
from services.checkout import CheckoutService
from services.errors import (
    ConfigError, GatewayError, NotFound, ProviderError, ProvisionFailed, ShopError, UserExists,
    WarrantyRejected,
)
from services.history import HistoryService
from services.notifications import EmailSender, NotificationDispatcher, TelegramNotifier
from services.provisioning import ProvisioningOrchestrator
from services.pterodactyl import PanelRegistry
from services.reconciler import PaymentReconciler, TransactionLocks
from services.sakurupiah import SakurupiahService
from services.transaction_store import TransactionStore
from services.warranty import WarrantyService

_service_status = {
    'database': False,
    'payment_gateway': False,
    'panels': False,
}


def build_services(config: AppConfig) -> ShopServices:
    """Wire every component from one configuration snapshot"""
    store = TransactionStore(config.database.encryption_key)
    gateway = SakurupiahService(config.payment)
    panels = PanelRegistry.from_config(config.panels)
    orchestrator = ProvisioningOrchestrator(panels)
    dispatcher = NotificationDispatcher(
        EmailSender(config.email, config.app_name, config.community_link),
        TelegramNotifier(config.telegram),
    )
    locks = TransactionLocks()

    return ShopServices(
        config=config,
        store=store,
        gateway=gateway,
        checkout=CheckoutService(store, gateway, panels, config.fee),
        reconciler=PaymentReconciler(store, gateway, orchestrator, dispatcher, locks=locks),
        warranty=WarrantyService(store, panels, orchestrator, dispatcher, config.warranty, locks=locks),
        history=HistoryService(store),
        dispatcher=dispatcher,
    )


def create_app(services: Optional[ShopServices] = None) -> FastAPI:
    """
    Build the FastAPI application.

    With prebuilt services (tests) the lifespan skips configuration loading
    and database initialization.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage FastAPI lifecycle - ALWAYS STARTS, degraded when dependencies are missing"""
        logger.info("=" * 80)
        logger.info("🚀 STARTING PANEL STOREFRONT GATEWAY")
        logger.info("=" * 80)

        if services is not None:
            app.state.services = services
        else:
            config = get_config()

            # Validate configuration - don't crash on failure, just warn
            validation = config.validate()
            if not validation['valid']:
                logger.warning("⚠️ Configuration issues detected:")
                for issue in validation['issues']:
                    logger.warning(f"  • {issue}")

            try:
                await database.init_database()
                _service_status['database'] = True
            except database.DatabaseError as e:
                logger.error(f"❌ Database initialization failed: {e} - payments will be unavailable")

            app.state.services = build_services(config)
            _service_status['payment_gateway'] = app.state.services.gateway.is_available()
            _service_status['panels'] = any(p.is_configured() for p in config.panels.values())

        logger.info("📡 Routes:")
        logger.info("   • POST /api/payments              - checkout")
        logger.info("   • POST /api/payments/{id}/check   - payment status check")
        logger.info("   • POST /api/webhook/sakurupiah    - Sakurupiah callback")
        logger.info("   • POST /api/warranty/{id}/claim   - warranty claim")

        yield

        await app.state.services.dispatcher.drain()
        if services is None:
            database.close_connection_pool()
        logger.info("🛑 Panel storefront gateway stopped")

    app = FastAPI(
        title="Panel Storefront API",
        description="Pterodactyl panel storefront with QRIS payments",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(payments.router, prefix="/api", tags=["payments"])
    app.include_router(history.router, prefix="/api", tags=["history"])
    app.include_router(warranty.router, prefix="/api", tags=["warranty"])

    @app.get("/health", include_in_schema=False)
    @app.get("/api/health", include_in_schema=False)
    async def health_check():
        """Health check for monitoring - ALWAYS returns 200 OK"""
        successful = sum(1 for status in _service_status.values() if status)
        total = len(_service_status)
        if services is not None or successful == total:
            overall_status = "healthy"
        elif successful > 0:
            overall_status = "degraded"
        else:
            overall_status = "critical"
        return {
            "status": overall_status,
            "http_server": "operational",
            "timestamp": int(time.time()),
            "services": {name: ("up" if ok else "down") for name, ok in _service_status.items()},
        }

    @app.post("/api/webhook/sakurupiah", include_in_schema=False)
    async def sakurupiah_webhook(request: Request):
        """
        Payment callback. The body only tells us which transaction to look at;
        the gateway status poll inside reconcile stays authoritative.
        """
        shop: ShopServices = request.app.state.services
        raw_body = await request.body()
        signature = request.headers.get("X-Callback-Signature", "")

        if not shop.gateway.verify_callback_signature(raw_body, signature):
            logger.warning("🚫 SAKURUPIAH WEBHOOK: invalid signature")
            raise HTTPException(status_code=401, detail="Invalid signature")

        try:
            payload = json.loads(raw_body)
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid JSON payload") from None

        merchant_ref = payload.get("merchant_ref") if isinstance(payload, dict) else None
        if not merchant_ref:
            raise HTTPException(status_code=400, detail="Missing merchant_ref")

        logger.info(f"📥 SAKURUPIAH WEBHOOK: callback for {merchant_ref} (status {payload.get('status')!r})")
        try:
            result = await shop.reconciler.reconcile(merchant_ref)
        except (ProvisionFailed, ConfigError) as e:
            # Transaction is terminal now; acknowledge so the provider stops retrying
            logger.error(f"❌ SAKURUPIAH WEBHOOK: {merchant_ref} could not be provisioned: {e}")
            return {"success": True, "status": "failed"}
        return {"success": True, "status": result.status.value}

    def _error(status_code: int, message: str) -> JSONResponse:
        return JSONResponse(
            status_code=status_code,
            content={"error": message, "timestamp": int(time.time())}
        )

    @app.exception_handler(NotFound)
    async def not_found_handler(request: Request, exc: NotFound):
        return _error(404, str(exc) or "Not found")

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError):
        logger.error(f"❌ Gateway error on {request.url.path}: {exc}")
        return _error(502, "Tidak dapat memverifikasi pembayaran saat ini, coba lagi nanti")

    @app.exception_handler(ProvisionFailed)
    async def provision_failed_handler(request: Request, exc: ProvisionFailed):
        return _error(502, "Gagal membuat panel, silakan hubungi admin")

    @app.exception_handler(ProviderError)
    async def provider_error_handler(request: Request, exc: ProviderError):
        logger.error(f"❌ Panel API error on {request.url.path}: {exc}")
        return _error(502, "Gagal menghubungi panel, coba lagi nanti")

    @app.exception_handler(WarrantyRejected)
    async def warranty_rejected_handler(request: Request, exc: WarrantyRejected):
        return JSONResponse(
            status_code=409,
            content={"error": str(exc), "reason": exc.reason, "timestamp": int(time.time())}
        )

    @app.exception_handler(UserExists)
    async def user_exists_handler(request: Request, exc: UserExists):
        return JSONResponse(
            status_code=409,
            content={"error": str(exc), "reason": f"{exc.field}_taken", "timestamp": int(time.time())}
        )

    @app.exception_handler(ConfigError)
    async def config_error_handler(request: Request, exc: ConfigError):
        logger.error(f"❌ Configuration error on {request.url.path}: {exc}")
        return _error(500, "Konfigurasi server tidak valid, hubungi admin")

    @app.exception_handler(ShopError)
    async def shop_error_handler(request: Request, exc: ShopError):
        logger.error(f"❌ Unhandled shop error on {request.url.path}: {exc}")
        return _error(500, "Internal server error")

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=422,
            content={"error": "Invalid request", "details": jsonable_encoder(exc.errors()), "timestamp": int(time.time())}
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """Handle HTTP exceptions"""
        return _error(exc.status_code, exc.detail)

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle general exceptions"""
        logger.exception(f"❌ Unhandled exception: {exc}")
        return _error(500, "Internal server error")

    return app


app = create_app()

# Development server
if __name__ == "__main__":
    uvicorn.run(
        "fastapi_server:app",
        host="0.0.0.0",
        port=5000,
        reload=False,
        log_level="info"
    )
