"""
Status normalization.

Maps the provider's status vocabulary (numeric codes, v2.4 status names and
free-text event descriptions) onto the canonical delivery lifecycle. Every
function here is pure.
"""

from typing import Optional

from hospice_tracking.models import (
    DeliveryStatus,
    TrackingBucket,
    TrackingEvent,
    TrackingResponse,
)
from hospice_tracking.tracking.carriers import GENERIC_CARRIER_NAME, carrier_for_code
from hospice_tracking.tracking.payloads import ParsedTrack, StatusValue


MAX_EVENTS = 10

STATUS_LABELS = {
    TrackingBucket.LABEL_CREATED: "Label Created",
    TrackingBucket.IN_TRANSIT: "On the Way",
    TrackingBucket.OUT_FOR_DELIVERY: "Out for Delivery",
    TrackingBucket.DELIVERED: "Delivered",
    TrackingBucket.EXCEPTION: "Delivery Exception",
}
PICKED_UP_LABEL = "We Have Your Package"

# Provider status codes
CODE_NOT_FOUND = 0
CODE_IN_TRANSIT = 10
CODE_PICKED_UP = 30
CODE_OUT_FOR_DELIVERY = 35
CODE_DELIVERED = 40
CODE_ALERT = 50

# v2.4 status names, compared lowercased
STATUS_NAMES = {
    "delivered": TrackingBucket.DELIVERED,
    "outfordelivery": TrackingBucket.OUT_FOR_DELIVERY,
    "intransit": TrackingBucket.IN_TRANSIT,
    "availableforpickup": TrackingBucket.IN_TRANSIT,
    "inforeceived": TrackingBucket.LABEL_CREATED,
    "notfound": TrackingBucket.LABEL_CREATED,
    "exception": TrackingBucket.EXCEPTION,
    "deliveryfailure": TrackingBucket.EXCEPTION,
    "expired": TrackingBucket.EXCEPTION,
}

# Checked in order; the first phrase found wins
DESCRIPTION_OVERRIDES = (
    ("delivered", TrackingBucket.DELIVERED),
    ("out for delivery", TrackingBucket.OUT_FOR_DELIVERY),
    ("in transit", TrackingBucket.IN_TRANSIT),
    ("departed", TrackingBucket.IN_TRANSIT),
    ("arrived", TrackingBucket.IN_TRANSIT),
)

BUCKET_TO_STATUS = {
    TrackingBucket.LABEL_CREATED: DeliveryStatus.ORDERED,
    TrackingBucket.IN_TRANSIT: DeliveryStatus.IN_TRANSIT,
    TrackingBucket.OUT_FOR_DELIVERY: DeliveryStatus.OUT_FOR_DELIVERY,
    TrackingBucket.DELIVERED: DeliveryStatus.DELIVERED,
    TrackingBucket.EXCEPTION: DeliveryStatus.EXCEPTION,
}

Bucketed = tuple[TrackingBucket, str]


def _labelled(bucket: TrackingBucket) -> Bucketed:
    return bucket, STATUS_LABELS[bucket]


def bucket_for_code(status: StatusValue) -> Bucketed:
    """Bucket a provider status code (or v2.4 status name)."""
    if isinstance(status, str):
        text = status.strip()
        if not text.lstrip("-").isdigit():
            bucket = STATUS_NAMES.get(text.replace("_", "").lower(), TrackingBucket.LABEL_CREATED)
            return _labelled(bucket)
        status = int(text)

    if not isinstance(status, int) or isinstance(status, bool):
        return _labelled(TrackingBucket.LABEL_CREATED)

    if status in (CODE_DELIVERED, CODE_ALERT):
        return _labelled(TrackingBucket.DELIVERED)
    if status == CODE_OUT_FOR_DELIVERY:
        return _labelled(TrackingBucket.OUT_FOR_DELIVERY)
    if status == CODE_PICKED_UP:
        return TrackingBucket.IN_TRANSIT, PICKED_UP_LABEL
    if CODE_IN_TRANSIT <= status < CODE_OUT_FOR_DELIVERY:
        return _labelled(TrackingBucket.IN_TRANSIT)
    return _labelled(TrackingBucket.LABEL_CREATED)


def bucket_for_description(description: Optional[str]) -> Optional[Bucketed]:
    """Bucket implied by an event description, if it names a lifecycle step."""
    if not description:
        return None

    text = description.lower()
    for phrase, bucket in DESCRIPTION_OVERRIDES:
        if phrase in text:
            return _labelled(bucket)
    return None


def derive_bucket(status: StatusValue, description: Optional[str] = None) -> Bucketed:
    """
    Derive the lifecycle bucket for a status update.

    The latest event description overrides the numeric code whenever it
    names a lifecycle step.
    """
    return bucket_for_description(description) or bucket_for_code(status)


def stored_status_for(bucket: TrackingBucket) -> DeliveryStatus:
    return BUCKET_TO_STATUS[TrackingBucket(bucket)]


def bucket_for_stored(status: Optional[str]) -> Bucketed:
    """Bucket and label for a status read back from the delivery store."""
    if status == DeliveryStatus.SHIPPED:
        return TrackingBucket.IN_TRANSIT, PICKED_UP_LABEL

    for bucket, stored in BUCKET_TO_STATUS.items():
        if stored == status:
            return _labelled(bucket)
    return _labelled(TrackingBucket.LABEL_CREATED)


def build_default_milestones(bucket: TrackingBucket) -> list[TrackingEvent]:
    """Five-step timeline used when the provider has no granular events."""
    bucket = TrackingBucket(bucket)
    moving = bucket in (
        TrackingBucket.IN_TRANSIT,
        TrackingBucket.OUT_FOR_DELIVERY,
        TrackingBucket.DELIVERED,
    )
    steps = [
        ("Label Created", True),
        (PICKED_UP_LABEL, moving),
        ("On the Way", moving),
        ("Out for Delivery", bucket in (TrackingBucket.OUT_FOR_DELIVERY, TrackingBucket.DELIVERED)),
        ("Delivered", bucket == TrackingBucket.DELIVERED),
    ]
    return [TrackingEvent(status=label, is_completed=done, timestamp="") for label, done in steps]


def build_events(parsed: ParsedTrack, bucket: TrackingBucket) -> list[TrackingEvent]:
    """Most recent provider events in chronological order, or default milestones."""
    if not parsed.events:
        return build_default_milestones(bucket)

    recent = parsed.events[:MAX_EVENTS]
    return [
        TrackingEvent(
            status=event.description,
            location=event.location,
            timestamp=event.time or "",
            is_completed=True,
        )
        for event in reversed(recent)
    ]


def pending_estimate_text(carrier_name: str) -> str:
    return f"Estimated delivery date will be available when {carrier_name} receives the package."


def normalize(
    parsed: ParsedTrack,
    tracking_number: Optional[str] = None,
    carrier: Optional[str] = None,
) -> TrackingResponse:
    """Build the family-facing tracking view from a parsed provider payload."""
    bucket, label = derive_bucket(parsed.status, parsed.latest_description)

    if not carrier:
        known = carrier_for_code(parsed.carrier_code)
        carrier = known.name if known else GENERIC_CARRIER_NAME

    estimated = parsed.estimated_delivery
    if not estimated and bucket == TrackingBucket.LABEL_CREATED:
        estimated = pending_estimate_text(carrier)

    return TrackingResponse(
        tracking_number=tracking_number or parsed.number,
        carrier=carrier,
        current_status=label,
        estimated_delivery=estimated,
        ship_to=parsed.ship_to,
        events=build_events(parsed, bucket),
        delivery_status=bucket,
    )
