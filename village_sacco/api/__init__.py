"""
Village SACCO API Application Factory
"""

from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..errors import (
    SaccoError, ValidationError, PermissionDenied, NotFound, DuplicatePendingApplication,
    InvalidStateTransition, InsufficientFunds, StorageFailure
)
from ..logging_config import get_logger, log_action
from ..system import SaccoSystem, build_system
from .loans import router as loans_router
from .admin import router as admin_router
from .savings import router as savings_router


ERROR_STATUS_CODES = {
    ValidationError: 400,
    PermissionDenied: 403,
    NotFound: 404,
    DuplicatePendingApplication: 409,
    InvalidStateTransition: 400,
    InsufficientFunds: 400,
    StorageFailure: 503,
}

logger = get_logger("sacco.api")


def status_code_for(error: SaccoError) -> int:
    """HTTP status of a core error, resolved through its class hierarchy"""
    for cls in type(error).__mro__:
        if cls in ERROR_STATUS_CODES:
            return ERROR_STATUS_CODES[cls]
    return 500


def create_app(system: Optional[SaccoSystem] = None) -> FastAPI:
    """Create and configure the FastAPI application around a SACCO system"""
    app = FastAPI(
        title="Village SACCO API",
        description="Loans, repayments and savings for a village savings and credit cooperative",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )
    app.state.system = system or build_system()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(SaccoError)
    async def sacco_error_handler(request: Request, exc: SaccoError):
        status_code = status_code_for(exc)
        log_action(
            logger, "warning" if status_code < 500 else "error", exc.message,
            action="request_failed", resource=request.url.path,
            extra={"error": exc.error_code, "status_code": status_code}
        )
        return JSONResponse(status_code=status_code, content=exc.to_dict())

    app.include_router(loans_router, prefix="/loans", tags=["Loans"])
    app.include_router(admin_router, prefix="/admin", tags=["Admin"])
    app.include_router(savings_router, prefix="/savings", tags=["Savings"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "village_sacco_api",
            "version": __version__
        }

    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "Village SACCO API",
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "loans": "/loans",
                "admin": "/admin",
                "savings": "/savings",
            }
        }

    return app
