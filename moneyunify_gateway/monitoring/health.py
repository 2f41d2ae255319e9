"""
Health checks for liveness/readiness probes.

Checks:
- Payment record store connectivity
- Gateway configuration (enabled, auth id present)
- Redis connectivity, when an in-flight lock server is configured
"""
from typing import Any, Dict, Optional

import redis.asyncio as aioredis
import structlog

from moneyunify_gateway.config import Settings
from moneyunify_gateway.database.store import PaymentRecordStore

logger = structlog.get_logger(__name__)


class HealthCheckError(Exception):
    """Raised when health check fails."""

    pass


class HealthCheck:
    """Health check service for the gateway's dependencies."""

    def __init__(
        self,
        store: PaymentRecordStore,
        settings: Settings,
        redis_client: Optional[aioredis.Redis] = None,
    ) -> None:
        self.store = store
        self.settings = settings
        self.redis_client = redis_client

    async def check_store(self) -> Dict[str, Any]:
        """
        Check payment record store connectivity.

        Raises:
            HealthCheckError: If the store cannot be reached
        """
        try:
            await self.store.ping()
        except Exception as e:
            logger.error("store_health_check_failed", error=str(e))
            raise HealthCheckError(f"Store health check failed: {str(e)}")

        return {
            "status": "healthy",
            "service": "store",
            "message": "Store connection successful",
        }

    async def check_gateway(self) -> Dict[str, Any]:
        """
        Check the gateway can take payments.

        No network call is made; verification traffic already exercises
        the provider and the circuit breaker tracks its availability.

        Raises:
            HealthCheckError: If the gateway is disabled or has no auth id
        """
        if not self.settings.enabled:
            raise HealthCheckError("Gateway is disabled")
        if not self.settings.auth_id:
            raise HealthCheckError("Gateway auth id is not configured")

        return {
            "status": "healthy",
            "service": "moneyunify",
            "message": "Gateway configured",
            "sandbox": self.settings.sandbox,
            "currency": self.settings.currency,
        }

    async def check_redis(self) -> Dict[str, Any]:
        """
        Check Redis connectivity.

        Raises:
            HealthCheckError: If Redis check fails
        """
        try:
            await self.redis_client.ping()
        except Exception as e:
            logger.error("redis_health_check_failed", error=str(e))
            raise HealthCheckError(f"Redis health check failed: {str(e)}")

        return {
            "status": "healthy",
            "service": "redis",
            "message": "Redis connection successful",
        }

    async def check_all(self) -> Dict[str, Any]:
        """
        Run all health checks.

        Returns:
            Dict[str, Any]: Overall health status
        """
        probes = {"store": self.check_store, "moneyunify": self.check_gateway}
        if self.redis_client is not None:
            probes["redis"] = self.check_redis

        checks: Dict[str, Any] = {}
        all_healthy = True
        for name, probe in probes.items():
            try:
                checks[name] = await probe()
            except HealthCheckError as e:
                checks[name] = {"status": "unhealthy", "service": name, "error": str(e)}
                all_healthy = False

        return {
            "status": "healthy" if all_healthy else "unhealthy",
            "checks": checks,
        }

    async def liveness(self) -> Dict[str, Any]:
        """Liveness probe: the process is running. No dependency checks."""
        return {
            "status": "alive",
            "message": "Application is running",
        }

    async def readiness(self) -> Dict[str, Any]:
        """Readiness probe: every dependency is available."""
        return await self.check_all()
