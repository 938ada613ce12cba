"""
Data models for the delivery tracking service.
Defines deliveries, tracking responses and the results reported back to
callers of the best-effort tracking integration.

Flow:
1. Staff record a delivery (optionally with a tracking link)
2. The tracking number is registered with the external provider
3. The provider pushes status changes to the webhook
4. Family views read the stored status
"""

from enum import Enum
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel


class DeliveryStatus(str, Enum):
    """Canonical status stored on a delivery."""
    ORDERED = "ordered"
    SHIPPED = "shipped"
    IN_TRANSIT = "in_transit"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    EXCEPTION = "exception"


class TrackingBucket(str, Enum):
    """Lifecycle buckets the provider vocabulary is normalized into."""
    LABEL_CREATED = "label_created"
    IN_TRANSIT = "in_transit"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    EXCEPTION = "exception"


# ===== Deliveries =====

class Delivery(BaseModel):
    """A physical shipment associated with a patient."""

    id: str
    patient_id: Optional[str] = None
    item_name: str

    # Carrier / tracking
    carrier: Optional[str] = None  # free text, e.g. "UPS"
    tracking_number: Optional[str] = None
    tracking_url: Optional[str] = None

    # Status
    status: DeliveryStatus = DeliveryStatus.ORDERED
    estimated_delivery: Optional[str] = None
    estimated_delivery_date: Optional[datetime] = None
    last_update: Optional[datetime] = None
    delivered_at: Optional[datetime] = None

    notes: Optional[str] = None

    # Metadata
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
        use_enum_values = True


class DeliveryCreate(BaseModel):
    """Staff input for a new delivery."""

    patient_id: str
    item_name: str
    carrier: Optional[str] = None
    tracking_number: Optional[str] = None
    tracking_url: Optional[str] = None
    status: DeliveryStatus = DeliveryStatus.ORDERED
    estimated_delivery: Optional[str] = None
    notes: Optional[str] = None

    class Config:
        use_enum_values = True


class DeliveryUpdate(BaseModel):
    """Staff edit of an existing delivery. Only fields that are set are applied."""

    item_name: Optional[str] = None
    carrier: Optional[str] = None
    tracking_number: Optional[str] = None
    tracking_url: Optional[str] = None
    status: Optional[DeliveryStatus] = None
    estimated_delivery: Optional[str] = None
    notes: Optional[str] = None

    class Config:
        use_enum_values = True


class FamilyMember(BaseModel):
    """Family contact used for provider notification emails."""

    id: str
    patient_id: str
    name: str
    email: Optional[str] = None
    is_primary: bool = False

    class Config:
        from_attributes = True


# ===== Tracking responses =====

class TrackingEvent(BaseModel):
    """One step on the family-facing tracking timeline."""

    status: str
    location: Optional[str] = None
    timestamp: str = ""
    is_completed: bool = False

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class TrackingResponse(BaseModel):
    """Normalized tracking view of a shipment."""

    tracking_number: Optional[str] = None
    carrier: Optional[str] = None
    current_status: str
    estimated_delivery: Optional[str] = None
    ship_to: Optional[str] = None
    events: list[TrackingEvent] = Field(default_factory=list)
    delivery_status: Optional[TrackingBucket] = None

    # Explanatory note when live tracking was not used
    error: Optional[str] = None

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        use_enum_values = True


# ===== Results =====

class RegistrationResult(BaseModel):
    """Outcome of registering a tracking number with the provider."""

    success: bool
    error: Optional[str] = None
    configured: bool = True

    tracking_number: Optional[str] = None
    carrier: Optional[str] = None
    carrier_code: Optional[int] = None
    already_registered: bool = False


class BulkRegistrationResult(BaseModel):
    """Aggregate outcome of a bulk registration run."""

    total: int = 0
    registered: int = 0
    failed: int = 0
    errors: list[str] = Field(default_factory=list)


class RefreshResult(BaseModel):
    """Outcome of an on-demand refresh of one delivery."""

    success: bool
    error: Optional[str] = None
    status: Optional[DeliveryStatus] = None
    updated: bool = False

    class Config:
        use_enum_values = True


class WebhookAck(BaseModel):
    """Acknowledgment returned to the provider for a webhook push."""

    success: bool = True
    message: str
    tracking_number: Optional[str] = None
    status: Optional[DeliveryStatus] = None
    updated: bool = False
    error: Optional[str] = None

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        use_enum_values = True
