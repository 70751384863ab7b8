"""
Dues Microservice API

Membership dues billing: payment recording and reconciliation, payer
assignment, billing frequency, onboarding, reports and the overdue sweep.
"""

import hmac
from contextlib import asynccontextmanager
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from core.config import get_settings
from core.logger import setup_service_logger
from core.nats_client import get_event_bus

from .dues_service import DuesService
from .factory import DuesServices, create_dues_services
from .models import (
    ApproachingEligibilityResponse,
    AssignPayerRequest,
    AssignPayerResponse,
    ChangeFrequencyRequest,
    ChangeFrequencyResponse,
    ErrorType,
    HealthResponse,
    MarkAgreementSignedRequest,
    MembershipResponse,
    OnboardingInviteResponse,
    OrchestrateOnboardingRequest,
    OrchestrateOnboardingResponse,
    OverdueReportResponse,
    OverdueSweepRequest,
    OverdueSweepResponse,
    PreviewPaymentRequest,
    PreviewPaymentResponse,
    RecordOnboardingPaymentRequest,
    RecordPaymentRequest,
    RecordPaymentResponse,
    RemovePayerResponse,
    ServiceInfo,
    SwitchToManualResponse,
)
from .onboarding_service import OnboardingService
from .overdue_sweep import OverdueSweepService
from .payer_service import PayerService
from .routes_registry import BASE_PATH, SERVICE_METADATA, get_route_summary

# Initialize configuration
settings = get_settings()
config = settings.service

# Configure logger
logger = setup_service_logger("dues_service", level=settings.logging.log_level.upper())

# Global variables
services: Optional[DuesServices] = None
event_bus = None
SERVICE_PORT = config.service_port or 8250

ERROR_STATUS_CODES = {
    ErrorType.NOT_FOUND: 404,
    ErrorType.VALIDATION: 400,
    ErrorType.EXTERNAL_SERVICE: 502,
    ErrorType.PERSISTENCE: 500,
    ErrorType.ROLLED_BACK: 500,
    ErrorType.COMPENSATION_FAILED: 500,
    ErrorType.INTERNAL: 500,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle management"""
    global services, event_bus

    try:
        # Initialize NATS JetStream event bus
        if settings.infra.nats_enabled:
            try:
                event_bus = await get_event_bus("dues_service", config=settings.infra)
                logger.info("Event bus initialized successfully")
            except Exception as e:
                logger.warning(f"Failed to initialize event bus: {e}. Continuing without events.")
                event_bus = None

        # Create dues services using factory
        services = create_dues_services(config=settings, event_bus=event_bus)

        # Initialize repository connection
        await services.repository.initialize()

        route_meta = get_route_summary()
        logger.info(
            f"Dues service started on port {SERVICE_PORT} "
            f"({route_meta['route_count']} routes under {route_meta['base_path']})"
        )
        yield

    except Exception as e:
        logger.error(f"Failed to initialize dues service: {e}")
        raise
    finally:
        # Cleanup
        if event_bus:
            try:
                await event_bus.close()
                logger.info("Dues event bus closed")
            except Exception as e:
                logger.error(f"Error closing event bus: {e}")

        if services:
            await services.close()
            logger.info("Dues service connections closed")


# Create FastAPI app
app = FastAPI(
    title="Dues Service",
    description="Membership dues billing and status lifecycle",
    version=SERVICE_METADATA["version"],
    lifespan=lifespan,
)


# ====================
# Dependency Injection
# ====================


def _require_services() -> DuesServices:
    if not services:
        raise HTTPException(status_code=503, detail="Dues service not initialized")
    return services


async def get_dues_service() -> DuesService:
    """Get dues service instance"""
    return _require_services().dues


async def get_payer_service() -> PayerService:
    """Get payer service instance"""
    return _require_services().payer


async def get_sweep_service() -> OverdueSweepService:
    """Get overdue sweep service instance"""
    return _require_services().sweep


async def get_onboarding_service() -> OnboardingService:
    """Get onboarding service instance"""
    return _require_services().onboarding


async def get_cron_secret() -> str:
    """Shared secret for scheduled job endpoints"""
    return config.cron_secret


def _raise_for_failure(result) -> None:
    if not result.success:
        status_code = ERROR_STATUS_CODES.get(result.error_type, 500)
        raise HTTPException(status_code=status_code, detail=result.message)


# ====================
# Health Check and Service Info
# ====================


@app.get(f"{BASE_PATH}/health")
@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check"""
    dependencies = {}

    # Check database connection
    try:
        if services and services.repository.db:
            is_healthy = await services.repository.db.health_check()
            dependencies["database"] = "healthy" if is_healthy else "unhealthy"
        else:
            dependencies["database"] = "unhealthy"
    except Exception:
        dependencies["database"] = "unhealthy"

    if settings.infra.nats_enabled:
        dependencies["event_bus"] = "healthy" if event_bus and event_bus.is_connected else "unhealthy"

    return HealthResponse(
        status="healthy" if all(v == "healthy" for v in dependencies.values()) else "degraded",
        service="dues_service",
        port=SERVICE_PORT,
        version=SERVICE_METADATA["version"],
        dependencies=dependencies,
    )


@app.get(f"{BASE_PATH}/info", response_model=ServiceInfo)
async def get_service_info():
    """Get service information"""
    return ServiceInfo(
        service="dues_service",
        version=SERVICE_METADATA["version"],
        description="Membership dues billing and status lifecycle",
        capabilities=SERVICE_METADATA["capabilities"],
    )


# ====================
# Payments API
# ====================


@app.post(f"{BASE_PATH}/payments", response_model=RecordPaymentResponse)
async def record_payment(
    request: RecordPaymentRequest,
    service: DuesService = Depends(get_dues_service)
):
    """Record a payment (or settle a pending invoice)"""
    try:
        result = await service.record_payment(
            membership_id=request.membership_id,
            member_id=request.member_id,
            payment_type=request.type,
            method=request.method,
            amount=request.amount,
            months_credited=request.months_credited,
            check_number=request.check_number,
            zelle_transaction_id=request.zelle_transaction_id,
            notes=request.notes,
            recorded_by=request.recorded_by,
            pending_payment_id=request.pending_payment_id,
            organization_id=request.organization_id,
            paid_at=request.paid_at,
            stripe_payment_intent_id=request.stripe_payment_intent_id,
        )
        _raise_for_failure(result)
        return result

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error recording payment: {e}")
        raise HTTPException(status_code=500, detail=f"Internal server error: {str(e)}")


@app.post(f"{BASE_PATH}/payments/preview", response_model=PreviewPaymentResponse)
async def preview_payment(
    request: PreviewPaymentRequest,
    service: DuesService = Depends(get_dues_service)
):
    """Preview the effect of a payment"""
    try:
        result = await service.preview_payment(
            membership_id=request.membership_id,
            payment_type=request.type,
            months_credited=request.months_credited,
        )
        _raise_for_failure(result)
        return result

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error previewing payment: {e}")
        raise HTTPException(status_code=500, detail=f"Internal server error: {str(e)}")


# ====================
# Membership API
# ====================


@app.get(f"{BASE_PATH}/memberships/{{membership_id}}", response_model=MembershipResponse)
async def get_membership(
    membership_id: str,
    service: DuesService = Depends(get_dues_service)
):
    """Get membership with standing and display label"""
    try:
        result = await service.get_membership(membership_id)
        _raise_for_failure(result)
        return result

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error getting membership: {e}")
        raise HTTPException(status_code=500, detail=f"Internal server error: {str(e)}")


@app.post(f"{BASE_PATH}/memberships/{{membership_id}}/payer", response_model=AssignPayerResponse)
async def assign_payer(
    membership_id: str,
    request: AssignPayerRequest,
    service: PayerService = Depends(get_payer_service)
):
    """Assign a payer to a membership"""
    try:
        result = await service.assign_payer(
            membership_id=membership_id,
            payer_member_id=request.payer_member_id,
            organization_id=request.organization_id,
        )
        _raise_for_failure(result)
        return result

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error assigning payer: {e}")
        raise HTTPException(status_code=500, detail=f"Internal server error: {str(e)}")


@app.delete(f"{BASE_PATH}/memberships/{{membership_id}}/payer", response_model=RemovePayerResponse)
async def remove_payer(
    membership_id: str,
    service: PayerService = Depends(get_payer_service)
):
    """Remove the payer from a membership"""
    try:
        result = await service.remove_payer(membership_id)
        _raise_for_failure(result)
        return result

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error removing payer: {e}")
        raise HTTPException(status_code=500, detail=f"Internal server error: {str(e)}")


@app.post(
    f"{BASE_PATH}/memberships/{{membership_id}}/billing-frequency",
    response_model=ChangeFrequencyResponse,
)
async def change_billing_frequency(
    membership_id: str,
    request: ChangeFrequencyRequest,
    service: DuesService = Depends(get_dues_service)
):
    """Change the billing frequency of a membership"""
    try:
        result = await service.change_billing_frequency(membership_id, request.billing_frequency)
        _raise_for_failure(result)
        return result

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error changing billing frequency: {e}")
        raise HTTPException(status_code=500, detail=f"Internal server error: {str(e)}")


@app.post(f"{BASE_PATH}/memberships/{{membership_id}}/agreement", response_model=MembershipResponse)
async def mark_agreement_signed(
    membership_id: str,
    request: Optional[MarkAgreementSignedRequest] = None,
    service: DuesService = Depends(get_dues_service)
):
    """Record the signed membership agreement"""
    try:
        signed_at = request.signed_at if request else None
        result = await service.mark_agreement_signed(membership_id, signed_at=signed_at)
        _raise_for_failure(result)
        return result

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error marking agreement signed: {e}")
        raise HTTPException(status_code=500, detail=f"Internal server error: {str(e)}")


@app.post(
    f"{BASE_PATH}/memberships/{{membership_id}}/switch-to-manual",
    response_model=SwitchToManualResponse,
)
async def switch_to_manual(
    membership_id: str,
    service: PayerService = Depends(get_payer_service)
):
    """Cancel auto-pay and move the membership to manual payments"""
    try:
        result = await service.switch_to_manual(membership_id)
        _raise_for_failure(result)
        return result

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error switching to manual payments: {e}")
        raise HTTPException(status_code=500, detail=f"Internal server error: {str(e)}")


# ====================
# Reports API
# ====================


@app.get(
    f"{BASE_PATH}/organizations/{{organization_id}}/reports/overdue",
    response_model=OverdueReportResponse,
)
async def get_overdue_report(
    organization_id: str,
    as_of: Optional[date] = Query(None, description="Report date (defaults to today)"),
    service: DuesService = Depends(get_dues_service)
):
    """Memberships overdue beyond the organization's grace period"""
    try:
        result = await service.get_overdue_report(organization_id, as_of=as_of)
        _raise_for_failure(result)
        return result

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error getting overdue report: {e}")
        raise HTTPException(status_code=500, detail=f"Internal server error: {str(e)}")


@app.get(
    f"{BASE_PATH}/organizations/{{organization_id}}/reports/approaching-eligibility",
    response_model=ApproachingEligibilityResponse,
)
async def get_approaching_eligibility_report(
    organization_id: str,
    window_months: int = Query(5, ge=1, le=60),
    limit: int = Query(100, ge=1, le=500),
    service: DuesService = Depends(get_dues_service)
):
    """Memberships close to the eligibility threshold"""
    try:
        result = await service.get_approaching_eligibility_report(
            organization_id, window_months=window_months, limit=limit
        )
        _raise_for_failure(result)
        return result

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error getting approaching eligibility report: {e}")
        raise HTTPException(status_code=500, detail=f"Internal server error: {str(e)}")


# ====================
# Onboarding API
# ====================


@app.post(f"{BASE_PATH}/onboarding", response_model=OrchestrateOnboardingResponse)
async def orchestrate_onboarding(
    request: OrchestrateOnboardingRequest,
    service: OnboardingService = Depends(get_onboarding_service)
):
    """Run (or retry a step of) the onboarding saga"""
    try:
        result = await service.orchestrate_onboarding(
            membership_id=request.membership_id,
            payment_method=request.payment_method,
            include_enrollment_fee=request.include_enrollment_fee,
            retry_step=request.retry_step,
        )
        # Partial failures are reported per step in the body
        if not result.steps:
            _raise_for_failure(result)
        return result

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error orchestrating onboarding: {e}")
        raise HTTPException(status_code=500, detail=f"Internal server error: {str(e)}")


@app.post(f"{BASE_PATH}/onboarding/{{invite_id}}/payments", response_model=OnboardingInviteResponse)
async def record_onboarding_payment(
    invite_id: str,
    request: RecordOnboardingPaymentRequest,
    service: OnboardingService = Depends(get_onboarding_service)
):
    """Record enrollment fee and/or dues against an onboarding invite"""
    try:
        result = await service.record_onboarding_payment(
            invite_id=invite_id,
            method=request.method,
            recorded_by=request.recorded_by,
            enrollment_fee_paid=request.enrollment_fee_paid,
            dues_paid=request.dues_paid,
            check_number=request.check_number,
            zelle_transaction_id=request.zelle_transaction_id,
            notes=request.notes,
        )
        _raise_for_failure(result)
        return result

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error recording onboarding payment: {e}")
        raise HTTPException(status_code=500, detail=f"Internal server error: {str(e)}")


# ====================
# Scheduled Jobs API
# ====================


@app.post(f"{BASE_PATH}/cron/overdue-sweep", response_model=OverdueSweepResponse)
async def run_overdue_sweep(
    request: Optional[OverdueSweepRequest] = None,
    x_cron_secret: Optional[str] = Header(default=None),
    cron_secret: str = Depends(get_cron_secret),
    service: OverdueSweepService = Depends(get_sweep_service)
):
    """Run the overdue sweep (cron only)"""
    if not cron_secret:
        raise HTTPException(status_code=503, detail="Cron secret not configured")
    if not x_cron_secret or not hmac.compare_digest(x_cron_secret.encode(), cron_secret.encode()):
        raise HTTPException(status_code=401, detail="Invalid cron secret")

    try:
        return await service.run_overdue_sweep(as_of=request.as_of if request else None)
    except Exception as e:
        logger.error(f"Error running overdue sweep: {e}")
        raise HTTPException(status_code=500, detail=f"Internal server error: {str(e)}")


# ====================
# Error Handling
# ====================


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    logger.error(f"Unhandled exception in {request.url}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Internal server error occurred"}
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "microservices.dues_service.main:app",
        host=config.service_host,
        port=SERVICE_PORT,
        reload=config.debug,
        log_level=settings.logging.log_level.lower(),
    )
