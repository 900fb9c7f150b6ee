"""
Ad Campaign Microservice API

Paid advertisement placements for marketplace shops: pricing, slot rotation,
payment and review, and the daily expiry / auto-renewal cycle.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse

from core.config import setup_service_logger
from core.config_manager import ConfigManager
from core.nats_client import get_event_bus

from .ad_campaign_repository import AdCampaignRepository
from .ad_campaign_service import AdCampaignService
from .factory import close_clients, create_ad_campaign_service
from .lifecycle_scheduler import AdLifecycleScheduler, create_lifecycle_job
from .models import (
    AdCampaign,
    AdCampaignCreateRequest,
    AdCampaignListResponse,
    AdCampaignStatus,
    AnalyticsSummary,
    AutoRenewRequest,
    ContentUpdateRequest,
    DisplayFeedResponse,
    HealthCheckResponse,
    LifecycleRunRequest,
    LifecycleRunResponse,
    PaymentCompletedRequest,
    PriceBreakdown,
    PricingCatalogResponse,
    PricingUpdateRequest,
    RejectRequest,
    RenewRequest,
    SlotOverviewResponse,
)
from .protocols import (
    AdCampaignNotFoundError,
    AdCampaignServiceError,
    AdCampaignValidationError,
    InvalidAdTypeError,
    InvalidDurationError,
    InvalidTransitionError,
    LinkTargetInvalidError,
    MediaRequiredError,
    NotSlotBasedError,
    PaymentNotCompletedError,
    RepositoryError,
    SlotUnavailableError,
    UnauthorizedError,
)
from .routes_registry import BASE_PATH, SERVICE_METADATA, get_route_summary

# Initialize configuration manager
config_manager = ConfigManager("ad_campaign_service")
config = config_manager.get_service_config()

# Configure logging
logger = setup_service_logger("ad_campaign_service", level=config.log_level.upper())

if config.debug:
    config_manager.print_config_summary(show_secrets=False)

# Global variables
ad_campaign_service: Optional[AdCampaignService] = None
repository: Optional[AdCampaignRepository] = None
lifecycle: Optional[AdLifecycleScheduler] = None
event_bus = None  # NATS event bus
scheduler = None  # APScheduler for the lifecycle cycle
SERVICE_PORT = config.service_port or 8290


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle management"""
    global ad_campaign_service, repository, lifecycle, event_bus, scheduler

    try:
        # Initialize NATS JetStream event bus
        if config.nats_enabled:
            try:
                event_bus = await get_event_bus("ad_campaign_service")
                logger.info("✅ Event bus initialized successfully")
            except Exception as e:
                logger.warning(
                    f"⚠️  Failed to initialize event bus: {e}. Continuing without event publishing."
                )
                event_bus = None

        ad_campaign_service = create_ad_campaign_service(
            config=config_manager, event_bus=event_bus
        )

        repository = ad_campaign_service.repository
        await repository.initialize()

        try:
            await ad_campaign_service.load_pricing()
        except RepositoryError as e:
            logger.warning(f"⚠️  Could not load persisted pricing, using defaults: {e}")

        lifecycle = AdLifecycleScheduler(ad_campaign_service)

        # Subscribe to events if event bus is available
        if event_bus:
            try:
                from .events import get_event_handlers

                handler_map = get_event_handlers(ad_campaign_service)
                for pattern, handler_func in handler_map.items():
                    await event_bus.subscribe_to_events(
                        pattern=pattern,
                        handler=handler_func,
                        durable=f"ad-campaign-{pattern.replace('.', '-').replace('*', 'all')}-consumer",
                    )
                    logger.info(f"✅ Subscribed to {pattern}")
            except Exception as e:
                logger.warning(f"⚠️  Failed to subscribe to events: {e}")

        # Start the lifecycle scheduler (APScheduler)
        try:
            scheduler = create_lifecycle_job(lifecycle)
            scheduler.start()
            logger.info("✅ Ad lifecycle scheduler started")
        except Exception as e:
            logger.warning(f"⚠️  Failed to start lifecycle scheduler: {e}")
            scheduler = None

        logger.info(f"✅ Ad campaign service started on port {SERVICE_PORT}")
        yield

    except Exception as e:
        logger.error(f"Failed to initialize ad campaign service: {e}")
        raise
    finally:
        if scheduler:
            try:
                scheduler.shutdown(wait=False)
                logger.info("✅ Ad lifecycle scheduler stopped")
            except Exception as e:
                logger.error(f"❌ Failed to stop scheduler: {e}")

        if event_bus:
            try:
                await event_bus.close()
                logger.info("Ad campaign event bus closed")
            except Exception as e:
                logger.error(f"Error closing event bus: {e}")

        if ad_campaign_service:
            await close_clients(ad_campaign_service)

        if repository:
            await repository.close()
            logger.info("Ad campaign service database connections closed")


# Create FastAPI application
app = FastAPI(
    title="Ad Campaign Service",
    description="Advertisement placements with slot rotation, review and auto-renewal",
    version=SERVICE_METADATA["version"],
    lifespan=lifespan,
)


# ====================
# Exception Handlers
# ====================

ERROR_STATUS = {
    AdCampaignNotFoundError: status.HTTP_404_NOT_FOUND,
    InvalidAdTypeError: status.HTTP_400_BAD_REQUEST,
    InvalidDurationError: status.HTTP_400_BAD_REQUEST,
    NotSlotBasedError: status.HTTP_400_BAD_REQUEST,
    LinkTargetInvalidError: status.HTTP_400_BAD_REQUEST,
    MediaRequiredError: status.HTTP_400_BAD_REQUEST,
    SlotUnavailableError: status.HTTP_409_CONFLICT,
    InvalidTransitionError: status.HTTP_409_CONFLICT,
    PaymentNotCompletedError: status.HTTP_409_CONFLICT,
    UnauthorizedError: status.HTTP_403_FORBIDDEN,
    AdCampaignValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    RepositoryError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def status_for(exc: AdCampaignServiceError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@app.exception_handler(AdCampaignServiceError)
async def ad_campaign_error_handler(request: Request, exc: AdCampaignServiceError):
    code = status_for(exc)
    if code >= 500:
        logger.error(f"{type(exc).__name__} on {request.url.path}: {exc}")
    content = {"detail": str(exc), "error": type(exc).__name__}
    if isinstance(exc, InvalidTransitionError) and exc.current_status is not None:
        content["current_status"] = exc.current_status.value
    return JSONResponse(status_code=code, content=content)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error", "error": type(exc).__name__},
    )


# ====================
# Dependencies
# ====================


async def get_ad_campaign_service() -> AdCampaignService:
    """Get ad campaign service instance"""
    if not ad_campaign_service:
        raise HTTPException(status_code=503, detail="Ad campaign service not initialized")
    return ad_campaign_service


async def get_lifecycle() -> AdLifecycleScheduler:
    if not lifecycle:
        raise HTTPException(status_code=503, detail="Lifecycle scheduler not initialized")
    return lifecycle


def get_auth_context(request: Request) -> dict:
    """Extract auth context from request headers"""
    user_id = request.headers.get("X-User-ID")
    return {
        "user_id": user_id,
        "shop_id": request.headers.get("X-Shop-ID") or user_id,
        "role": request.headers.get("X-User-Role", "user"),
    }


def require_shop(auth: dict = Depends(get_auth_context)) -> str:
    if not auth["shop_id"]:
        raise UnauthorizedError("X-Shop-ID or X-User-ID header is required")
    return auth["shop_id"]


def require_admin(auth: dict = Depends(get_auth_context)) -> str:
    if auth["role"] != "admin" or not auth["user_id"]:
        raise UnauthorizedError("Admin role is required")
    return auth["user_id"]


# ====================
# Health and Service Info
# ====================


@app.get(f"{BASE_PATH}/health")
@app.get("/health", response_model=HealthCheckResponse)
async def health_check():
    """Basic health check"""
    dependencies = {}

    try:
        if repository:
            dependencies["database"] = "healthy" if await repository.health_check() else "unhealthy"
        else:
            dependencies["database"] = "unhealthy"
    except Exception:
        dependencies["database"] = "unhealthy"

    try:
        if event_bus and hasattr(event_bus, 'is_connected'):
            dependencies["event_bus"] = "healthy" if event_bus.is_connected else "unhealthy"
        else:
            dependencies["event_bus"] = "not_configured"
    except Exception:
        dependencies["event_bus"] = "unhealthy"

    dependencies["scheduler"] = "healthy" if scheduler and scheduler.running else "not_configured"

    overall = "healthy" if all(v in ["healthy", "not_configured"] for v in dependencies.values()) else "degraded"

    return HealthCheckResponse(
        status=overall,
        service="ad_campaign_service",
        port=SERVICE_PORT,
        version=SERVICE_METADATA["version"],
        timestamp=datetime.now(timezone.utc).isoformat(),
        dependencies=dependencies,
    )


@app.get("/health/detailed", response_model=HealthCheckResponse)
async def health_check_detailed():
    """Detailed health check with full dependencies"""
    return await health_check()


@app.get("/info")
async def service_info():
    return {**SERVICE_METADATA, "routes": get_route_summary()}


# ====================
# Pricing, Slots and Display
# ====================


@app.get(f"{BASE_PATH}/pricing", response_model=PricingCatalogResponse)
async def get_pricing(service: AdCampaignService = Depends(get_ad_campaign_service)):
    """Ad plan catalogue with duration discounts"""
    return service.pricing_catalog()


@app.get(f"{BASE_PATH}/pricing/quote", response_model=PriceBreakdown)
async def get_quote(
    ad_type: str,
    duration: int,
    service: AdCampaignService = Depends(get_ad_campaign_service),
):
    return service.quote(ad_type, duration)


@app.get(f"{BASE_PATH}/slots/{{ad_type}}", response_model=SlotOverviewResponse)
async def get_slots(
    ad_type: str,
    owner_id: str = Depends(require_shop),
    service: AdCampaignService = Depends(get_ad_campaign_service),
):
    """Slot overview; available_slots lists the slots the caller can still book"""
    return await service.slot_overview(ad_type, owner_id)


@app.get(f"{BASE_PATH}/display/{{ad_type}}", response_model=DisplayFeedResponse)
async def get_display_feed(
    ad_type: str,
    slot_number: Optional[int] = None,
    service: AdCampaignService = Depends(get_ad_campaign_service),
):
    return await service.active_for_display(ad_type, slot_number=slot_number)


# ====================
# Admin
# ====================


@app.put(f"{BASE_PATH}/admin/pricing", response_model=PricingCatalogResponse)
async def update_pricing(
    request: PricingUpdateRequest,
    admin_id: str = Depends(require_admin),
    service: AdCampaignService = Depends(get_ad_campaign_service),
):
    logger.info(f"Pricing update by {admin_id}")
    return await service.update_pricing(
        ad_type=request.ad_type,
        monthly_rate=request.monthly_rate,
        is_active=request.is_active,
        is_free=request.is_free,
        duration_discounts=request.duration_discounts,
    )


@app.post(f"{BASE_PATH}/admin/lifecycle/run", response_model=LifecycleRunResponse)
async def run_lifecycle(
    request: Optional[LifecycleRunRequest] = None,
    admin_id: str = Depends(require_admin),
    scheduler_jobs: AdLifecycleScheduler = Depends(get_lifecycle),
):
    """Run warnings, expiry and auto-renewal once, optionally at an explicit time"""
    now = request.now if request and request.now else None
    logger.info(f"Lifecycle cycle triggered by {admin_id} (now={now})")
    result = await scheduler_jobs.run_cycle(now)
    return LifecycleRunResponse(**result)


# ====================
# Campaigns
# ====================


@app.post(BASE_PATH, response_model=AdCampaign, status_code=status.HTTP_201_CREATED)
async def create_campaign(
    request: AdCampaignCreateRequest,
    owner_id: str = Depends(require_shop),
    service: AdCampaignService = Depends(get_ad_campaign_service),
):
    return await service.create_campaign(
        owner_id=owner_id,
        ad_type=request.ad_type,
        duration=request.duration,
        title=request.title,
        slot_number=request.slot_number,
        media=request.media,
        media_type=request.media_type,
        link_url=request.link_url,
        product_id=request.product_id,
        description=request.description,
        auto_renew=request.auto_renew,
    )


@app.get(BASE_PATH, response_model=AdCampaignListResponse)
async def list_campaigns(
    status_filter: Optional[AdCampaignStatus] = Query(None, alias="status"),
    ad_type: Optional[str] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    admin_id: str = Depends(require_admin),
    service: AdCampaignService = Depends(get_ad_campaign_service),
):
    """Admin listing of all campaigns"""
    campaigns, total = await service.list_campaigns(
        status=status_filter, ad_type=ad_type, page=page, page_size=page_size
    )
    return AdCampaignListResponse(campaigns=campaigns, total=total, page=page, page_size=page_size)


@app.get(f"{BASE_PATH}/mine", response_model=AdCampaignListResponse)
async def list_my_campaigns(
    status_filter: Optional[AdCampaignStatus] = Query(None, alias="status"),
    owner_id: str = Depends(require_shop),
    service: AdCampaignService = Depends(get_ad_campaign_service),
):
    campaigns = await service.list_owner_campaigns(owner_id, status=status_filter)
    return AdCampaignListResponse(campaigns=campaigns, total=len(campaigns), page=1, page_size=len(campaigns))


@app.get(f"{BASE_PATH}/{{campaign_id}}", response_model=AdCampaign)
async def get_campaign(
    campaign_id: str,
    auth: dict = Depends(get_auth_context),
    service: AdCampaignService = Depends(get_ad_campaign_service),
):
    if auth["role"] == "admin":
        return await service.get_campaign(campaign_id)
    if not auth["shop_id"]:
        raise UnauthorizedError("X-Shop-ID or X-User-ID header is required")
    return await service.get_owner_campaign(campaign_id, auth["shop_id"])


@app.put(f"{BASE_PATH}/{{campaign_id}}/content", response_model=AdCampaign)
async def update_content(
    campaign_id: str,
    request: ContentUpdateRequest,
    owner_id: str = Depends(require_shop),
    service: AdCampaignService = Depends(get_ad_campaign_service),
):
    return await service.update_content(
        campaign_id,
        owner_id,
        title=request.title,
        description=request.description,
        media=request.media,
        media_type=request.media_type,
        link_url=request.link_url,
    )


@app.put(f"{BASE_PATH}/{{campaign_id}}/auto-renew", response_model=AdCampaign)
async def set_auto_renew(
    campaign_id: str,
    request: AutoRenewRequest,
    owner_id: str = Depends(require_shop),
    service: AdCampaignService = Depends(get_ad_campaign_service),
):
    return await service.set_auto_renew(campaign_id, owner_id, request.enabled)


# ====================
# Lifecycle Transitions
# ====================


@app.post(f"{BASE_PATH}/{{campaign_id}}/payment", response_model=AdCampaign)
async def record_payment(
    campaign_id: str,
    request: PaymentCompletedRequest,
    auth: dict = Depends(get_auth_context),
    service: AdCampaignService = Depends(get_ad_campaign_service),
):
    """Payment completion reported by the owner's checkout or by an admin"""
    if auth["role"] != "admin":
        if not auth["shop_id"]:
            raise UnauthorizedError("X-Shop-ID or X-User-ID header is required")
        await service.get_owner_campaign(campaign_id, auth["shop_id"])
    return await service.on_payment_completed(
        campaign_id, payment_id=request.payment_id, method=request.payment_method
    )


@app.post(f"{BASE_PATH}/{{campaign_id}}/approve", response_model=AdCampaign)
async def approve_campaign(
    campaign_id: str,
    admin_id: str = Depends(require_admin),
    service: AdCampaignService = Depends(get_ad_campaign_service),
):
    return await service.approve(campaign_id, admin_id)


@app.post(f"{BASE_PATH}/{{campaign_id}}/reject", response_model=AdCampaign)
async def reject_campaign(
    campaign_id: str,
    request: RejectRequest,
    admin_id: str = Depends(require_admin),
    service: AdCampaignService = Depends(get_ad_campaign_service),
):
    return await service.reject(campaign_id, admin_id, request.reason)


@app.post(f"{BASE_PATH}/{{campaign_id}}/cancel", response_model=AdCampaign)
async def cancel_campaign(
    campaign_id: str,
    owner_id: str = Depends(require_shop),
    service: AdCampaignService = Depends(get_ad_campaign_service),
):
    return await service.cancel(campaign_id, owner_id)


@app.post(f"{BASE_PATH}/{{campaign_id}}/renew", response_model=AdCampaign)
async def renew_campaign(
    campaign_id: str,
    request: RenewRequest,
    owner_id: str = Depends(require_shop),
    service: AdCampaignService = Depends(get_ad_campaign_service),
):
    return await service.renew(campaign_id, owner_id, request.duration, request.payment_id)


# ====================
# Analytics
# ====================


@app.post(f"{BASE_PATH}/{{campaign_id}}/view", status_code=status.HTTP_204_NO_CONTENT)
async def record_view(
    campaign_id: str,
    service: AdCampaignService = Depends(get_ad_campaign_service),
):
    await service.record_view(campaign_id)


@app.post(f"{BASE_PATH}/{{campaign_id}}/click", status_code=status.HTTP_204_NO_CONTENT)
async def record_click(
    campaign_id: str,
    service: AdCampaignService = Depends(get_ad_campaign_service),
):
    await service.record_click(campaign_id)


@app.get(f"{BASE_PATH}/{{campaign_id}}/analytics", response_model=AnalyticsSummary)
async def get_analytics(
    campaign_id: str,
    owner_id: str = Depends(require_shop),
    service: AdCampaignService = Depends(get_ad_campaign_service),
):
    return await service.analytics_summary(campaign_id, owner_id)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=config.service_host, port=SERVICE_PORT)
