from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from dotenv import load_dotenv
from starlette.middleware.cors import CORSMiddleware
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
import os
import logging
from pathlib import Path
from typing import Optional
from datetime import datetime

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

from permissions import PermissionChecker
from audit_service import AuditService
from revenue_sync import RevenueSynchronizer
from email_service import PaymentNotifier, PaymentSlipMailer
from currency_service import CurrencyService
from payment_routes import create_payment_routes, create_currency_routes
from reconciliation.payment_numbering import PaymentNumberAllocator, ensure_payment_indexes
from reconciliation.payment_service import PaymentReconciliationService
from reconciliation.pdf_service import PaymentHistoryPDFGenerator

ENVIRONMENT = os.environ.get('ENVIRONMENT', 'development')
CORS_ORIGINS = [o.strip() for o in os.environ.get('CORS_ORIGINS', '*').split(',') if o.strip()]

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def create_app(
    db: AsyncIOMotorDatabase,
    mailer: Optional[PaymentSlipMailer] = None,
    currency_service: Optional[CurrencyService] = None,
    allocator: Optional[PaymentNumberAllocator] = None,
    environment: str = ENVIRONMENT
) -> FastAPI:
    """Build the API for a database"""
    app = FastAPI(
        title="Payment Reconciliation Service",
        version="1.0.0",
        description="Invoice payments, balances and revenue reconciliation"
    )

    # Initialize services
    audit_service = AuditService(db)
    permission_checker = PermissionChecker(db)
    pdf_generator = PaymentHistoryPDFGenerator()
    service = PaymentReconciliationService(
        db,
        revenue_sync=RevenueSynchronizer(db),
        allocator=allocator or PaymentNumberAllocator.default(db),
        audit_service=audit_service,
    )
    notifier = PaymentNotifier(db, mailer or PaymentSlipMailer(pdf_generator=pdf_generator))
    currency_service = currency_service or CurrencyService()

    app.state.db = db
    app.state.payment_service = service
    app.state.notifier = notifier

    app.include_router(create_payment_routes(permission_checker, service, notifier, pdf_generator))
    app.include_router(create_currency_routes(currency_service, permission_checker))

    @app.get("/api/health")
    async def health_check():
        return {
            "status": "healthy",
            "timestamp": datetime.utcnow(),
            "version": "1.0.0"
        }

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception(f"[SERVER] Unhandled error on {request.method} {request.url.path}")
        content = {"message": "Internal server error", "error_code": "INTERNAL_ERROR"}
        if environment != "production":
            content["error"] = str(exc)
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=content)

    @app.on_event("startup")
    async def create_indexes():
        await ensure_payment_indexes(db)

    @app.on_event("shutdown")
    async def drain_notifications():
        await notifier.drain()

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_credentials=True,
        allow_origins=CORS_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    return app


# MongoDB connection
mongo_url = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
client = AsyncIOMotorClient(mongo_url)
db = client[os.environ.get('DB_NAME', 'payments')]

app = create_app(db)


@app.on_event("shutdown")
async def shutdown_db_client():
    client.close()
