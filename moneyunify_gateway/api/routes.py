"""
API routes for MoneyUnify checkout, polling and sweeping.
"""
from typing import Any, Dict

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from moneyunify_gateway.bootstrap import Services
from moneyunify_gateway.exceptions import (
    GatewayDisabledError,
    PaymentAlreadyInitiated,
    PaymentRecordNotFound,
    PaymentValidationError,
    ProviderRejected,
    ProviderUnavailable,
)
from moneyunify_gateway.integrations.order_system import OrderNotFound

from .schemas import (
    CheckoutRequest,
    HealthCheckResponse,
    PaymentRecordResponse,
    PollRequest,
    PollResponse,
    SweepResponse,
)

logger = structlog.get_logger(__name__)

# Create routers
payment_router = APIRouter(tags=["payments"])
admin_router = APIRouter(prefix="/admin", tags=["admin"])
monitoring_router = APIRouter(tags=["monitoring"])


def get_services(request: Request) -> Services:
    """Services attached to the application by ``create_app``."""
    return request.app.state.services


@payment_router.post(
    "/checkout",
    response_model=PaymentRecordResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start a payment",
    description="Push a MoneyUnify approval prompt to the payer's phone",
)
async def checkout(
    request: CheckoutRequest,
    services: Services = Depends(get_services),
) -> PaymentRecordResponse:
    """Start a MoneyUnify payment for an order."""
    logger.info("api_checkout_request", order_id=request.order_id)

    try:
        record = await services.initiator.initiate(request.order_id, request.phone)

    except (PaymentValidationError, ProviderRejected) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    except PaymentAlreadyInitiated as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    except OrderNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    except (ProviderUnavailable, GatewayDisabledError) as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    return PaymentRecordResponse.from_record(record)


@payment_router.post(
    "/poll",
    response_model=PollResponse,
    summary="Poll payment status",
    description="Verify a pending payment and report approved, failed or waiting",
)
async def poll(
    request: PollRequest,
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    """Server-side poll used by the buyer's status page."""
    try:
        result = await services.engine.poll(request.order_id)
    except PaymentRecordNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    return {"order_id": request.order_id, "status": result.value}


@payment_router.get(
    "/payments/{order_id}",
    response_model=PaymentRecordResponse,
    summary="Get payment record",
    description="Transaction id, payer phone and status of an order's payment",
)
async def get_payment(
    order_id: str,
    services: Services = Depends(get_services),
) -> PaymentRecordResponse:
    """Read an order's payment record without contacting the provider."""
    record = await services.store.get(order_id)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payment not found")
    return PaymentRecordResponse.from_record(record)


@admin_router.post(
    "/sweep",
    response_model=SweepResponse,
    summary="Run a sweep",
    description="Verify the oldest pending payments now",
)
async def run_sweep(services: Services = Depends(get_services)) -> Dict[str, Any]:
    """Manual sweep over the configured batch size."""
    report = await services.engine.sweep(limit=services.settings.sweep_batch_size)
    logger.info("api_manual_sweep", **report.to_dict())
    return report.to_dict()


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Check health of all system dependencies",
)
async def health(services: Services = Depends(get_services)) -> Dict[str, Any]:
    """Overall health check."""
    return await services.health.check_all()


@monitoring_router.get(
    "/health/live",
    response_model=HealthCheckResponse,
    summary="Liveness probe",
)
async def liveness(services: Services = Depends(get_services)) -> Dict[str, Any]:
    """Liveness probe endpoint."""
    return await services.health.liveness()


@monitoring_router.get(
    "/health/ready",
    response_model=HealthCheckResponse,
    summary="Readiness probe",
)
async def readiness(services: Services = Depends(get_services)) -> Dict[str, Any]:
    """Readiness probe endpoint."""
    result = await services.health.readiness()
    if result["status"] != "healthy":
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result)
    return result


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    include_in_schema=False,
)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
