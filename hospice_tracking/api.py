"""
HTTP API for the tracking service.

Endpoints:
1. Webhook: /api/webhooks/tracking - provider push updates (POST) and URL verification (GET)
2. Tracking: /api/tracking - on-demand status with stored fallback
3. Registration: /api/tracking/register - refresh one delivery or register all
4. Deliveries: /api/deliveries - staff CRUD
"""

from datetime import datetime
from typing import Optional

import psutil
from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import ORJSONResponse
from pydantic import BaseModel
from pydantic.alias_generators import to_camel

from hospice_tracking import __version__
from hospice_tracking.config import TrackingConfig, get_config
from hospice_tracking.deliveries import DeliveryNotFoundError, DeliveryService
from hospice_tracking.models import Delivery, DeliveryCreate, DeliveryUpdate, RegistrationResult
from hospice_tracking.storage import DeliveryStore
from hospice_tracking.tracking import TrackingManager, TrackingProviderAPI, WebhookReconciler


# ===== Request models =====

class TrackRequest(BaseModel):
    """On-demand tracking lookup."""
    tracking_url: Optional[str] = None
    tracking_number: Optional[str] = None
    delivery_id: Optional[str] = None

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class RegisterRequest(BaseModel):
    """Refresh one delivery, or register all when no id is given."""
    delivery_id: Optional[str] = None

    class Config:
        alias_generator = to_camel
        populate_by_name = True


def _delivery_payload(delivery: Delivery, registration: Optional[RegistrationResult]) -> dict:
    return {
        "delivery": delivery.model_dump(mode="json"),
        "registration": registration.model_dump(mode="json") if registration else None,
    }


def create_app(
    config: Optional[TrackingConfig] = None,
    store: Optional[DeliveryStore] = None,
    provider: Optional[TrackingProviderAPI] = None,
) -> FastAPI:
    """Build the FastAPI application and its collaborators."""
    config = config or get_config()
    store = store or DeliveryStore.from_config(config)
    store.init_schema()

    tracking = TrackingManager(config, store, provider=provider)
    reconciler = WebhookReconciler(config, store)
    deliveries = DeliveryService(store, tracking)
    started_at = datetime.utcnow()

    app = FastAPI(
        title="Hospice Delivery Tracking",
        version=__version__,
        default_response_class=ORJSONResponse,
    )
    app.state.config = config
    app.state.store = store
    app.state.tracking = tracking
    app.state.reconciler = reconciler
    app.state.deliveries = deliveries

    # ===== Webhook =====

    @app.post("/api/webhooks/tracking")
    @app.post("/api/webhooks/17track")
    async def tracking_webhook(request: Request, sign: Optional[str] = Header(None)):
        """
        Provider push endpoint.

        Always answers 200 for valid pushes, matched or not, so the provider
        does not retry. A bad signature is the only rejection.
        """
        raw_body = await request.body()
        status_code, ack = await run_in_threadpool(reconciler.handle, raw_body, sign)
        return ORJSONResponse(ack.model_dump(by_alias=True, exclude_none=True), status_code=status_code)

    @app.get("/api/webhooks/tracking")
    @app.get("/api/webhooks/17track")
    async def webhook_verification():
        """URL verification used by the provider."""
        return {"status": "ok", "message": "Tracking webhook endpoint is active"}

    # ===== Tracking =====

    @app.post("/api/tracking")
    async def get_tracking(payload: TrackRequest):
        if not (payload.tracking_url or payload.tracking_number or payload.delivery_id):
            raise HTTPException(status_code=400, detail="Tracking URL is required")

        response = await tracking.track(
            tracking_url=payload.tracking_url,
            tracking_number=payload.tracking_number,
            delivery_id=payload.delivery_id,
        )
        return response.model_dump(by_alias=True, exclude_none=True)

    @app.post("/api/tracking/register")
    async def register_tracking(payload: Optional[RegisterRequest] = None):
        if payload and payload.delivery_id:
            result = await tracking.refresh_delivery(payload.delivery_id)
        else:
            result = await tracking.register_all()
        return result.model_dump(mode="json")

    # ===== Deliveries =====

    @app.get("/api/deliveries")
    def list_deliveries(patient_id: Optional[str] = None):
        return [d.model_dump(mode="json") for d in deliveries.list_deliveries(patient_id)]

    @app.post("/api/deliveries", status_code=201)
    async def create_delivery(payload: DeliveryCreate):
        delivery, registration = await deliveries.create_delivery(payload)
        return _delivery_payload(delivery, registration)

    @app.patch("/api/deliveries/{delivery_id}")
    async def update_delivery(delivery_id: str, payload: DeliveryUpdate):
        try:
            delivery, registration = await deliveries.update_delivery(delivery_id, payload)
        except DeliveryNotFoundError:
            raise HTTPException(status_code=404, detail="Delivery not found")
        return _delivery_payload(delivery, registration)

    @app.delete("/api/deliveries/{delivery_id}")
    async def delete_delivery(delivery_id: str):
        try:
            await deliveries.delete_delivery(delivery_id)
        except DeliveryNotFoundError:
            raise HTTPException(status_code=404, detail="Delivery not found")
        return {"success": True}

    # ===== Health =====

    @app.get("/api/health")
    async def health_check():
        process = psutil.Process()
        return {
            "status": "healthy",
            "version": __version__,
            "timestamp": datetime.utcnow().isoformat(),
            "uptime_seconds": int((datetime.utcnow() - started_at).total_seconds()),
            "tracking_api_configured": tracking.is_configured,
            "webhook_signature_required": config.signature_required,
            "memory_mb": round(process.memory_info().rss / (1024 ** 2), 1),
        }

    return app
