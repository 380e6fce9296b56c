"""
Loan Engine API Application Factory
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn

from .loan_types import router as loan_types_router
from .loans import router as loans_router
from .payments import router as payments_router
from .notifications import router as notifications_router
from .sms import router as sms_router
from .admin import router as admin_router
from .. import __version__


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Microfinance Loan Engine API",
        description="Loan schedules, payment ledger and payment reminders",
        version=__version__,
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

    app.include_router(loan_types_router, prefix="/loan-types", tags=["Loan Types"])
    app.include_router(loans_router, prefix="/loans", tags=["Loans"])
    app.include_router(payments_router, prefix="/payments", tags=["Payments"])
    app.include_router(notifications_router, prefix="/notifications", tags=["Notifications"])
    app.include_router(sms_router, prefix="/sms", tags=["SMS"])
    app.include_router(admin_router, prefix="/admin", tags=["Admin"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "microfinance_api",
            "version": __version__
        }

    return app


app = create_app()


def run_server(host: str = "0.0.0.0", port: int = 8090, debug: bool = False):
    """Run the FastAPI server"""
    uvicorn.run(
        "microfinance.api:app",
        host=host,
        port=port,
        reload=debug,
        log_level="info"
    )
