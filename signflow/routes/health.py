"""
Health check and monitoring endpoints.
"""
import time
import logging
from fastapi import APIRouter, Depends
from signflow.db import check_database_health
from signflow.services.email import get_sendgrid_client
from signflow.services.factory import ConventionServices, get_services
from signflow.core.settings import settings

logger = logging.getLogger("signflow.health")
router = APIRouter(tags=["Health"])


@router.get("/health")
async def health_check():
    """Basic health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": time.time(),
        "environment": settings.environment,
        "version": "1.0.0"
    }


@router.get("/health/detailed")
async def detailed_health_check(services: ConventionServices = Depends(get_services)):
    """Detailed health check with service status."""
    start_time = time.time()

    health_status = {
        "status": "healthy",
        "timestamp": time.time(),
        "environment": settings.environment,
        "services": {}
    }

    # Check document store
    store_ok = services.store.ping()
    health_status["services"]["store"] = {
        "status": "healthy" if store_ok else "unhealthy",
        "backend": settings.store_backend,
        "cached_conventions": len(services.cache),
    }
    if not store_ok:
        health_status["status"] = "degraded"

    # Check database (only meaningful for the SQL backend)
    if not settings.is_demo:
        db_health = await check_database_health()
        health_status["services"]["database"] = db_health
        if db_health["status"] != "healthy":
            health_status["status"] = "degraded"

    # Check SendGrid
    if get_sendgrid_client():
        health_status["services"]["email"] = {"status": "configured", "provider": "sendgrid"}
    else:
        health_status["services"]["email"] = {"status": "not_configured", "note": "Email sending disabled"}

    response_time = (time.time() - start_time) * 1000
    health_status["response_time_ms"] = round(response_time, 2)
    return health_status
