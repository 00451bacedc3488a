"""FastAPI application exposing the error surface and health check of the workflow engine."""
import logging

from fastapi import Depends, FastAPI
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .config import settings
from .database import get_db
from .domain_errors import DomainError
from .problem_details import domain_error_handler

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

VERSION = "1.0.0"

# Create app
app = FastAPI(
    title=settings.APP_NAME,
    version=VERSION,
    description="Order-fulfillment workflow orchestration engine",
    debug=settings.DEBUG,
)

# Production safety checks (fail closed on a store without row-level security).
if settings.ENV.lower() == "production" and settings.is_sqlite:
    raise RuntimeError("DATABASE_URL must point to PostgreSQL in production.")

app.add_exception_handler(DomainError, domain_error_handler)


@app.get("/api/v1/system/health")
def health_check(db: Session = Depends(get_db)):
    """Health check endpoint."""
    database = "ok"
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("Database health check failed")
        database = "unavailable"
    return {
        "status": "ok" if database == "ok" else "degraded",
        "version": VERSION,
        "database": database,
    }


@app.get("/")
def root():
    """Root endpoint."""
    return {
        "message": f"{settings.APP_NAME} API",
        "version": VERSION,
        "docs": "/docs",
    }
