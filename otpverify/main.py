"""
FastAPI application for email code verification.

Run command:
    uvicorn otpverify.main:app
"""
import logging

from fastapi import FastAPI

from . import __version__
from .core.config import settings, validate_config
from .exception_handlers import register_exception_handlers
from .routers import email_otp

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    """Build the API app: validated config, verification routes and error mapping."""
    validate_config()

    app = FastAPI(title=f"{settings.APP_NAME} verification", version=__version__)

    @app.get("/healthz")
    async def healthz():
        """Liveness probe. No dependency checks."""
        return {
            "ok": True,
            "service": "otpverify",
            "version": __version__,
            "status": "healthy",
        }

    app.include_router(email_otp.router)
    register_exception_handlers(app)

    logger.info(f"[STARTUP] App created (ENV={settings.ENV}, store={settings.OTP_STORE_BACKEND})")
    return app


app = create_app()
