"""
Health checks backing the Kubernetes readiness and liveness endpoints.

Checks:
- Database connectivity
- Payment gateway configuration
"""
from typing import Any, Dict, Optional

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from order_fulfillment.config import get_settings
from order_fulfillment.database.connection import get_session_factory

logger = structlog.get_logger(__name__)


class HealthCheckError(Exception):
    """Raised when health check fails."""

    pass


class HealthCheck:
    """
    Health check service for monitoring system dependencies.

    Provides:
    - Database connectivity check
    - Payment gateway configuration check
    - Overall system health status
    """

    def __init__(
        self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None
    ) -> None:
        """
        Initialize health check service.

        Args:
            session_factory: Optional session factory (defaults to the application one)
        """
        self.settings = get_settings()
        self._session_factory = session_factory

    async def check_database(self) -> Dict[str, Any]:
        """
        Check database connectivity.

        Raises:
            HealthCheckError: If database check fails
        """
        try:
            session_factory = self._session_factory or get_session_factory()
            async with session_factory() as db:
                result = await db.execute(text("SELECT 1"))
                result.scalar()
        except Exception as e:
            logger.error("database_health_check_failed", error=str(e))
            raise HealthCheckError(f"Database health check failed: {str(e)}")

        return {
            "status": "healthy",
            "service": "database",
            "message": "Database connection successful",
        }

    async def check_payment_gateway(self) -> Dict[str, Any]:
        """
        Check that the configured payment gateway can be used.

        Raises:
            HealthCheckError: If the gateway is misconfigured
        """
        gateway = self.settings.payment_gateway
        if gateway == "stripe" and not self.settings.stripe_secret_key:
            logger.error("payment_gateway_health_check_failed", gateway=gateway)
            raise HealthCheckError("Stripe gateway selected but no secret key configured")

        return {
            "status": "healthy",
            "service": "payment_gateway",
            "message": f"Payment gateway '{gateway}' configured",
        }

    async def check_all(self) -> Dict[str, Any]:
        """
        Run every check and aggregate the results.

        Returns:
            Dict[str, Any]: Overall status plus per-service results
        """
        checks: Dict[str, Any] = {}
        healthy = True

        for name, check in (
            ("database", self.check_database),
            ("payment_gateway", self.check_payment_gateway),
        ):
            try:
                checks[name] = await check()
            except HealthCheckError as e:
                healthy = False
                checks[name] = {"status": "unhealthy", "service": name, "message": str(e)}

        return {"status": "healthy" if healthy else "unhealthy", "checks": checks}

    async def liveness(self) -> Dict[str, Any]:
        """Liveness only reports that the process is serving requests."""
        return {"status": "healthy", "message": "Service is alive"}

    async def readiness(self) -> Dict[str, Any]:
        """Readiness requires every dependency to be healthy."""
        return await self.check_all()
