"""
Delivery Service.

Staff create, edit and delete deliveries here. The local write always commits
first; provider registration is best-effort afterwards and never rolls the
write back.
"""

from datetime import datetime
from typing import Optional
from loguru import logger

from hospice_tracking.models import (
    Delivery,
    DeliveryCreate,
    DeliveryStatus,
    DeliveryUpdate,
    RegistrationResult,
)
from hospice_tracking.storage import DeliveryStore
from hospice_tracking.tracking.carriers import extract_tracking_number
from hospice_tracking.tracking.tracking_manager import TrackingManager, run_blocking


# Optional text fields where an empty string means "clear"
NULLABLE_FIELDS = ("carrier", "tracking_number", "tracking_url", "estimated_delivery", "notes")


class DeliveryNotFoundError(Exception):
    """Raised when a staff action targets a delivery that does not exist."""

    def __init__(self, delivery_id: str):
        super().__init__(f"Delivery not found: {delivery_id}")
        self.delivery_id = delivery_id


def _effective_number(delivery: Delivery) -> Optional[str]:
    return delivery.tracking_number or extract_tracking_number(delivery.tracking_url)


class DeliveryService:
    """Delivery CRUD with tracking registration side effects."""

    def __init__(self, store: DeliveryStore, tracking: TrackingManager):
        self.store = store
        self.tracking = tracking

    def list_deliveries(self, patient_id: Optional[str] = None) -> list[Delivery]:
        return self.store.list_deliveries(patient_id)

    def get_delivery(self, delivery_id: str) -> Delivery:
        delivery = self.store.get(delivery_id)
        if delivery is None:
            raise DeliveryNotFoundError(delivery_id)
        return delivery

    async def create_delivery(
        self, data: DeliveryCreate
    ) -> tuple[Delivery, Optional[RegistrationResult]]:
        """Create a delivery, then register its tracking number if it has one."""
        delivery = await run_blocking(self.store.create, data)

        registration = None
        if delivery.tracking_number or delivery.tracking_url:
            registration = await self.tracking.register_tracking(
                delivery.id,
                tracking_number=delivery.tracking_number,
                tracking_url=delivery.tracking_url,
                carrier=delivery.carrier,
            )
            delivery = await run_blocking(self.store.get, delivery.id) or delivery

        return delivery, registration

    async def update_delivery(
        self, delivery_id: str, changes: DeliveryUpdate
    ) -> tuple[Delivery, Optional[RegistrationResult]]:
        """
        Apply a staff edit.

        When the tracking number changes, the old provider subscription is
        dropped and the new number registered.
        """
        existing = await run_blocking(self.get_delivery, delivery_id)

        fields = changes.model_dump(exclude_unset=True)
        for key in NULLABLE_FIELDS:
            if key in fields:
                fields[key] = fields[key] or None
        if fields.get("status") is None:
            fields.pop("status", None)

        # A number that was only ever derived from the old link follows the link
        if (
            "tracking_url" in fields
            and "tracking_number" not in fields
            and existing.tracking_number
            and existing.tracking_number == extract_tracking_number(existing.tracking_url)
        ):
            fields["tracking_number"] = extract_tracking_number(fields["tracking_url"])

        if "status" in fields and fields["status"] != existing.status:
            now = datetime.utcnow()
            fields["last_update"] = now
            if fields["status"] == DeliveryStatus.DELIVERED.value:
                fields["delivered_at"] = now

        updated = await run_blocking(self.store.update_fields, delivery_id, **fields) if fields else existing
        if updated is None:
            raise DeliveryNotFoundError(delivery_id)

        registration = None
        old_number = _effective_number(existing)
        new_number = _effective_number(updated)

        if new_number != old_number:
            if old_number:
                logger.bind(delivery_id=delivery_id).info(
                    f"Tracking number changed from {old_number} to {new_number}"
                )
                await self.tracking.deregister_tracking(old_number, existing.carrier)
            if new_number:
                registration = await self.tracking.register_tracking(
                    delivery_id,
                    tracking_number=updated.tracking_number,
                    tracking_url=updated.tracking_url,
                    carrier=updated.carrier,
                )
                updated = await run_blocking(self.store.get, delivery_id) or updated

        return updated, registration

    async def delete_delivery(self, delivery_id: str) -> None:
        """Delete a delivery and drop its provider subscription."""
        existing = await run_blocking(self.get_delivery, delivery_id)

        if not await run_blocking(self.store.delete, delivery_id):
            raise DeliveryNotFoundError(delivery_id)

        number = _effective_number(existing)
        if number and existing.status != DeliveryStatus.DELIVERED.value:
            await self.tracking.deregister_tracking(number, existing.carrier)
