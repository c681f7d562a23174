"""
Microfinance Back-Office API Application Factory
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .customers import router as customers_router
from .loans import router as loans_router
from .payments import router as payments_router
from .calendar import router as calendar_router
from .approvals import router as approvals_router
from .team import router as team_router
from .collections import router as collections_router
from .system import BackOfficeSystem, get_back_office
from ..config import get_config
from ..logging_config import setup_logging


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    config = get_config()
    setup_logging(level=config.log_level, log_format=config.log_format, log_file=config.log_file)

    app = FastAPI(
        title="Microfinance Back-Office API",
        description="EMI schedules, collections and approvals for a microfinance office",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(customers_router, prefix="/customers", tags=["Customers"])
    app.include_router(loans_router, prefix="/loans", tags=["Loans"])
    app.include_router(payments_router, prefix="/payments", tags=["Payments"])
    app.include_router(calendar_router, prefix="/calendar", tags=["EMI Calendar"])
    app.include_router(approvals_router, prefix="/requests", tags=["Requests"])
    app.include_router(team_router, prefix="/team", tags=["Team"])
    app.include_router(collections_router, prefix="/collections", tags=["Collections"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "microfinance_api",
            "version": "1.0.0"
        }

    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "Microfinance Back-Office API",
            "version": "1.0.0",
            "currency": config.currency_code,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "customers": "/customers",
                "loans": "/loans",
                "payments": "/payments",
                "calendar": "/calendar",
                "requests": "/requests",
                "team": "/team",
                "collections": "/collections",
            }
        }

    return app


__all__ = ["create_app", "BackOfficeSystem", "get_back_office"]
