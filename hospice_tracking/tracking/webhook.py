"""
Webhook reconciliation.
Applies provider push updates to the matching delivery, at most one write per
real status change.
"""

import hashlib
import hmac
from typing import Any, Optional
import orjson
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from hospice_tracking.config import TrackingConfig
from hospice_tracking.models import WebhookAck
from hospice_tracking.storage import DeliveryStore
from hospice_tracking.tracking.normalizer import derive_bucket, stored_status_for
from hospice_tracking.tracking.payloads import parse_webhook_track


# Events that carry a status update; anything else is acknowledged and ignored
STATUS_EVENTS = {"TRACKING_UPDATED"}


def compute_signature(raw_body: bytes, secret: str) -> str:
    """Provider signature: SHA-256 hex of ``body + "/" + secret``."""
    return hashlib.sha256(raw_body + b"/" + secret.encode("utf-8")).hexdigest()


class WebhookReconciler:
    """
    Reconciles provider webhook pushes against stored deliveries.

    Every recognised push is acknowledged with success so the provider does
    not retry; only a bad signature is rejected.
    """

    def __init__(self, config: TrackingConfig, store: DeliveryStore):
        self.config = config
        self.store = store

    def verify_signature(self, raw_body: bytes, signature: Optional[str]) -> bool:
        """Check the ``sign`` header. Always passes when no secret is configured."""
        if not self.config.webhook_secret:
            return True
        if not signature:
            return False

        expected = compute_signature(raw_body, self.config.webhook_secret)
        return hmac.compare_digest(expected, signature.strip().lower())

    def reconcile(self, payload: Any) -> WebhookAck:
        """
        Apply one webhook payload.

        Args:
            payload: Decoded webhook body ``{event, data: {number, track_info}}``

        Returns:
            WebhookAck (always success)
        """
        if not isinstance(payload, dict):
            logger.warning("Webhook payload is not an object, ignoring")
            return WebhookAck(message="Malformed payload")

        event = payload.get("event")
        if event and event not in STATUS_EVENTS:
            logger.info(f"Ignoring webhook event {event}")
            return WebhookAck(message="Event ignored")

        data = payload.get("data")
        if not isinstance(data, dict) or not data.get("number"):
            return WebhookAck(message="No tracking data")

        number = str(data["number"]).strip()
        log = logger.bind(tracking_number=number)

        parsed = parse_webhook_track(data)
        if not parsed.shape:
            log.info("Webhook carried no tracking info")
            return WebhookAck(message="No tracking data", tracking_number=number)

        bucket, label = derive_bucket(parsed.status, parsed.latest_description)
        new_status = stored_status_for(bucket)

        try:
            delivery = self.store.get_by_tracking_number(number)
        except SQLAlchemyError as e:
            log.error(f"Delivery lookup failed: {e}")
            return WebhookAck(
                message="Webhook processed",
                tracking_number=number,
                status=new_status,
                error="Delivery lookup failed",
            )

        if delivery is None:
            log.info(f"Delivery not found for tracking number {number}")
            return WebhookAck(message="Delivery not found", tracking_number=number)

        updated = False
        try:
            updated = self.store.update_status_if_changed(delivery.id, new_status)
        except SQLAlchemyError as e:
            log.error(f"Failed to update delivery {delivery.id}: {e}")

        if updated:
            log.info(f"Updated delivery {delivery.id} status to {new_status.value} ({label})")
        else:
            log.debug(f"Delivery {delivery.id} already at {new_status.value}")

        return WebhookAck(
            message="Webhook processed",
            tracking_number=number,
            status=new_status,
            updated=updated,
        )

    def handle(self, raw_body: bytes, signature: Optional[str] = None) -> tuple[int, WebhookAck]:
        """
        Verify, decode and reconcile a raw webhook request.

        Returns:
            Tuple of (HTTP status code, acknowledgment)
        """
        if not self.verify_signature(raw_body, signature):
            logger.warning("Webhook signature missing or invalid, rejecting payload")
            return 401, WebhookAck(success=False, message="Invalid signature", error="Invalid signature")

        try:
            payload = orjson.loads(raw_body)
        except orjson.JSONDecodeError as e:
            logger.warning(f"Malformed webhook body: {e}")
            return 200, WebhookAck(message="Malformed payload")

        logger.info(f"Tracking webhook received: {raw_body[:500]!r}")
        try:
            return 200, self.reconcile(payload)
        except Exception as e:
            # Acknowledged anyway so the provider does not retry a bad payload
            logger.exception(f"Failed to reconcile webhook payload: {e}")
            return 200, WebhookAck(message="Malformed payload", error=str(e))
