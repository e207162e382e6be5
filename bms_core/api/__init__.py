"""
Funds Movement API Application Factory
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .dependencies import BankingSystem, get_banking_system
from .accounts import router as accounts_router
from .transactions import router as transactions_router
from .admin import router as admin_router
from .notifications import router as notifications_router
from ..errors import (
    BankingError, NotFound, ValidationFailed, PolicyViolation,
    AuthorizationDenied, ConflictState, StepUpFailed
)
from ..logging_config import get_logger


logger = get_logger("bms.api")

# HTTP status per error category
ERROR_STATUS = [
    (NotFound, 404),
    (ValidationFailed, 400),
    (PolicyViolation, 422),
    (AuthorizationDenied, 403),
    (ConflictState, 409),
    (StepUpFailed, 401),
]


def status_for(error: BankingError) -> int:
    for category, status_code in ERROR_STATUS:
        if isinstance(error, category):
            return status_code
    return 400


def create_app(system: Optional[BankingSystem] = None) -> FastAPI:
    """
    Create and configure the FastAPI application

    Args:
        system: Pre-built banking system; the global instance is used otherwise
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        banking = system or get_banking_system()
        banking.start()
        try:
            yield
        finally:
            banking.shutdown()

    app = FastAPI(
        title="BMS Funds Movement API",
        description="Deposits, withdrawals and OTP-gated transfers with an audited ledger",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )

    if system is not None:
        app.dependency_overrides[get_banking_system] = lambda: system

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(BankingError)
    async def banking_error_handler(request: Request, exc: BankingError):
        status_code = status_for(exc)
        if status_code >= 403:
            logger.warning(f"{request.method} {request.url.path} rejected: {exc.message}")
        return JSONResponse(
            status_code=status_code,
            content={"error": exc.code, "error_type": type(exc).__name__, "detail": exc.message}
        )

    # Include routers
    app.include_router(accounts_router, prefix="/accounts", tags=["Accounts"])
    app.include_router(transactions_router, prefix="/transactions", tags=["Transactions"])
    app.include_router(admin_router, prefix="/admin", tags=["Admin"])
    app.include_router(notifications_router, prefix="/notifications", tags=["Notifications"])

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "bms_funds_api",
            "version": "1.0.0"
        }

    return app
