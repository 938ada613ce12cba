"""
Tracking Manager.
Registers deliveries with the tracking provider and serves on-demand status
refreshes, falling back to the stored delivery when live data is unavailable.
"""

import asyncio
from datetime import datetime
from functools import partial
from typing import Optional
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from hospice_tracking.config import TrackingConfig
from hospice_tracking.models import (
    BulkRegistrationResult,
    Delivery,
    RefreshResult,
    RegistrationResult,
    TrackingBucket,
    TrackingResponse,
)
from hospice_tracking.storage import ContactDirectory, DeliveryStore
from hospice_tracking.tracking.carriers import (
    Carrier,
    GENERIC_CARRIER_NAME,
    detect_carrier,
    detect_carrier_from_url,
    extract_tracking_number,
    find_carrier,
)
from hospice_tracking.tracking.normalizer import (
    build_default_milestones,
    bucket_for_stored,
    normalize,
    pending_estimate_text,
    stored_status_for,
)
from hospice_tracking.tracking.payloads import parse_track_response
from hospice_tracking.tracking.provider_api import (
    ProviderError,
    TrackingProviderAPI,
    build_registration_item,
)


NOT_CONFIGURED_ERROR = "Tracking API not configured"
NO_NUMBER_ERROR = "Could not extract tracking number"
NOT_CONFIGURED_NOTE = "Live tracking requires API configuration. Showing the last known status."
LIVE_UNAVAILABLE_NOTE = "Live tracking is temporarily unavailable. Showing the last known status."
NO_NUMBER_NOTE = "No tracking number could be determined. Showing the last known status."
PROCESSING_ERROR_NOTE = "Unable to process tracking information"


async def run_blocking(func, *args, **kwargs):
    """Run a blocking store call in the default executor."""
    loop = asyncio.get_event_loop()
    return await loop.run_in_executor(None, partial(func, *args, **kwargs))


class TrackingManager:
    """
    Manages provider registration and pull-based status checks.

    Features:
    - Carrier auto-detection and tracking number backfill
    - Soft-failure registration (never raises to the caller)
    - Throttled bulk registration
    - Live refresh with fallback to stored status
    """

    def __init__(
        self,
        config: TrackingConfig,
        store: DeliveryStore,
        provider: Optional[TrackingProviderAPI] = None,
        contacts: Optional[ContactDirectory] = None,
    ):
        self.config = config
        self.store = store
        self.provider = provider or TrackingProviderAPI.from_config(config)
        self.contacts = contacts or ContactDirectory(store)

    @property
    def is_configured(self) -> bool:
        return self.provider.is_configured

    # ===== Store helpers =====

    async def _load(self, delivery_id: Optional[str]) -> Optional[Delivery]:
        if not delivery_id:
            return None
        try:
            return await run_blocking(self.store.get, delivery_id)
        except SQLAlchemyError as e:
            logger.error(f"Failed to load delivery {delivery_id}: {e}")
            return None

    async def _safe_update(self, delivery_id: str, **fields) -> None:
        try:
            await run_blocking(self.store.update_fields, delivery_id, **fields)
        except SQLAlchemyError as e:
            logger.error(f"Failed to update delivery {delivery_id}: {e}")

    async def _backfill(self, delivery: Delivery, number: str, carrier: Optional[Carrier]) -> None:
        """Fill empty tracking number / carrier fields once detection succeeded."""
        fields = {}
        if not delivery.tracking_number:
            fields["tracking_number"] = number
        if carrier and not delivery.carrier:
            fields["carrier"] = carrier.name
        if fields:
            logger.bind(delivery_id=delivery.id).debug(f"Backfilling delivery fields: {fields}")
            await self._safe_update(delivery.id, **fields)

    async def _notification_email(self, delivery: Optional[Delivery]) -> Optional[str]:
        if delivery is None:
            return None
        try:
            return await run_blocking(self.contacts.notification_email, delivery.patient_id)
        except SQLAlchemyError as e:
            logger.warning(f"Contact lookup failed for patient {delivery.patient_id}: {e}")
            return None

    # ===== Registration =====

    async def register_tracking(
        self,
        delivery_id: str,
        tracking_number: Optional[str] = None,
        tracking_url: Optional[str] = None,
        carrier: Optional[str] = None,
        email: Optional[str] = None,
        order_no: Optional[str] = None,
        order_time: Optional[str] = None,
        note: Optional[str] = None,
    ) -> RegistrationResult:
        """
        Register a tracking number with the provider for push updates.

        The delivery id is sent as the provider tag. Failures are reported in
        the result, never raised.

        Args:
            delivery_id: Local delivery the subscription belongs to
            tracking_number: Tracking number (extracted from the URL if missing)
            tracking_url: Carrier tracking URL
            carrier: Carrier display name, if known
            email: Notification email (looked up from family contacts if missing)

        Returns:
            RegistrationResult
        """
        log = logger.bind(delivery_id=delivery_id)

        if not self.provider.is_configured:
            log.info("No TRACKING_API_KEY configured, skipping registration")
            return RegistrationResult(success=False, configured=False, error=NOT_CONFIGURED_ERROR)

        number = (tracking_number or "").strip() or extract_tracking_number(tracking_url)
        if not number:
            log.warning(f"Could not extract tracking number from {tracking_url!r}")
            return RegistrationResult(success=False, error=NO_NUMBER_ERROR)

        detected = find_carrier(carrier) or detect_carrier(tracking_url, number)
        carrier_name = detected.name if detected else carrier
        carrier_code = detected.code if detected else None

        delivery = await self._load(delivery_id)
        if delivery is not None:
            await self._backfill(delivery, number, detected)
        if email is None:
            email = await self._notification_email(delivery)

        item = build_registration_item(
            number,
            tag=delivery_id,
            carrier_code=carrier_code,
            email=email,
            order_no=order_no,
            order_time=order_time,
            note=note,
        )
        details = {"tracking_number": number, "carrier": carrier_name, "carrier_code": carrier_code}

        log.info(f"Registering tracking number {number} (carrier={carrier_name or 'auto'})")
        try:
            response = await self.provider.register([item])
        except ProviderError as e:
            log.warning(f"Tracking registration failed: {e}")
            return RegistrationResult(success=False, error=str(e), **details)

        if response.accepted:
            fields = {"tracking_number": number}
            if detected and not (delivery and delivery.carrier):
                fields["carrier"] = detected.name
            await self._safe_update(delivery_id, **fields)
            log.info(f"Tracking number {number} registered")
            return RegistrationResult(success=True, **details)

        if response.rejected:
            rejection = response.rejected[0]
            if rejection.is_already_registered:
                log.info(f"Tracking number {number} already registered")
                return RegistrationResult(success=True, already_registered=True, **details)
            log.warning(f"Tracking registration rejected: {rejection.error_message}")
            return RegistrationResult(success=False, error=rejection.error_message, **details)

        return RegistrationResult(success=False, error="Unknown registration response", **details)

    async def register_all(self, delay: Optional[float] = None) -> BulkRegistrationResult:
        """
        Register every undelivered delivery that has a tracking URL.

        Calls are made one at a time with a fixed delay between them to stay
        under the provider's rate limits.
        """
        delay = self.config.registration_delay if delay is None else delay

        try:
            deliveries = await run_blocking(self.store.list_pending_registration)
        except SQLAlchemyError as e:
            logger.error(f"Failed to fetch deliveries for registration: {e}")
            return BulkRegistrationResult(errors=[f"Failed to fetch deliveries: {e}"])

        results = BulkRegistrationResult(total=len(deliveries))

        if not self.provider.is_configured:
            results.failed = len(deliveries)
            results.errors.append(NOT_CONFIGURED_ERROR)
            return results

        calls = 0
        for delivery in deliveries:
            number = delivery.tracking_number or extract_tracking_number(delivery.tracking_url)
            if not number:
                results.failed += 1
                results.errors.append(f"Delivery {delivery.id}: {NO_NUMBER_ERROR}")
                continue

            if calls:
                await asyncio.sleep(delay)
            calls += 1

            result = await self.register_tracking(
                delivery.id,
                tracking_number=number,
                tracking_url=delivery.tracking_url,
                carrier=delivery.carrier,
            )
            if result.success:
                results.registered += 1
            else:
                results.failed += 1
                results.errors.append(f"Delivery {delivery.id}: {result.error}")

        logger.info(
            f"Bulk registration: {results.registered}/{results.total} registered, "
            f"{results.failed} failed"
        )
        return results

    async def deregister_tracking(self, tracking_number: str, carrier: Optional[str] = None) -> bool:
        """Drop the provider subscription for a tracking number. Soft-fails."""
        if not self.provider.is_configured or not tracking_number:
            return False

        known = find_carrier(carrier) or detect_carrier(tracking_number=tracking_number)
        try:
            response = await self.provider.delete_tracking(
                tracking_number, known.code if known else None
            )
        except ProviderError as e:
            logger.warning(f"Failed to deregister {tracking_number}: {e}")
            return False

        if response.accepted:
            logger.info(f"Tracking number {tracking_number} deregistered")
            return True

        reason = response.rejected[0].error_message if response.rejected else "unknown response"
        logger.warning(f"Deregistration of {tracking_number} rejected: {reason}")
        return False

    # ===== Pull-based status =====

    async def _fetch_live(self, number: str, carrier: Optional[Carrier]) -> Optional[TrackingResponse]:
        try:
            body = await self.provider.get_track_info(number, carrier.code if carrier else None)
        except ProviderError as e:
            logger.warning(f"Live tracking lookup failed for {number}: {e}")
            return None

        parsed = parse_track_response(body)
        if parsed is None:
            logger.warning(f"No tracking data returned for {number}")
            return None

        logger.debug(f"Parsed {parsed.shape} tracking payload for {number}")
        return normalize(parsed, tracking_number=number, carrier=carrier.name if carrier else None)

    async def _write_back(self, delivery_id: str, response: TrackingResponse) -> bool:
        """Persist a refreshed status. Returns True if the status changed."""
        status = stored_status_for(response.delivery_status)

        extra = {}
        estimated = response.estimated_delivery
        if estimated and estimated != pending_estimate_text(response.carrier or GENERIC_CARRIER_NAME):
            extra["estimated_delivery"] = estimated

        try:
            changed = await run_blocking(self.store.update_status_if_changed, delivery_id, status, extra)
            if not changed:
                await run_blocking(
                    self.store.update_fields, delivery_id, last_update=datetime.utcnow(), **extra
                )
        except SQLAlchemyError as e:
            logger.error(f"Failed to store refreshed status for {delivery_id}: {e}")
            return False

        if changed:
            logger.bind(delivery_id=delivery_id).info(f"Delivery status refreshed to {status.value}")
        return changed

    async def track(
        self,
        tracking_url: Optional[str] = None,
        tracking_number: Optional[str] = None,
        delivery_id: Optional[str] = None,
    ) -> TrackingResponse:
        """
        Current tracking view for a shipment.

        Uses the provider when configured; otherwise, or when the provider
        fails, answers from the stored delivery with an explanatory note.
        Never raises.
        """
        try:
            delivery = await self._load(delivery_id)
            if delivery is not None:
                tracking_url = tracking_url or delivery.tracking_url
            number = (
                tracking_number
                or (delivery.tracking_number if delivery else None)
                or extract_tracking_number(tracking_url)
            )

            if not self.provider.is_configured:
                note = NOT_CONFIGURED_NOTE
            elif not number:
                note = NO_NUMBER_NOTE
            else:
                carrier = detect_carrier(tracking_url, number)
                response = await self._fetch_live(number, carrier)
                if response is not None:
                    if delivery is not None:
                        await self._write_back(delivery.id, response)
                    return response
                note = LIVE_UNAVAILABLE_NOTE

            return self.build_from_store(tracking_url, delivery, note, tracking_number=number)

        except Exception as e:
            logger.exception(f"Error processing tracking info: {e}")
            return TrackingResponse(
                current_status="Label Created",
                events=build_default_milestones(TrackingBucket.LABEL_CREATED),
                delivery_status=TrackingBucket.LABEL_CREATED,
                error=PROCESSING_ERROR_NOTE,
            )

    def build_from_store(
        self,
        tracking_url: Optional[str],
        delivery: Optional[Delivery],
        note: Optional[str] = None,
        tracking_number: Optional[str] = None,
    ) -> TrackingResponse:
        """Tracking view built only from the stored delivery row."""
        number = (
            (delivery.tracking_number if delivery else None)
            or tracking_number
            or extract_tracking_number(tracking_url)
        )

        url_carrier = detect_carrier_from_url(tracking_url)
        if url_carrier:
            carrier = url_carrier.name
        elif delivery and delivery.carrier:
            carrier = delivery.carrier
        else:
            carrier = GENERIC_CARRIER_NAME

        bucket, label = bucket_for_stored(delivery.status if delivery else None)

        if delivery and delivery.estimated_delivery:
            estimated = delivery.estimated_delivery
        elif bucket == TrackingBucket.LABEL_CREATED:
            estimated = pending_estimate_text(carrier)
        elif bucket == TrackingBucket.DELIVERED and delivery and delivery.delivered_at:
            estimated = f"Delivered on {delivery.delivered_at:%m/%d/%Y}"
        else:
            estimated = "Check carrier website for estimated delivery."

        return TrackingResponse(
            tracking_number=number,
            carrier=carrier,
            current_status=label,
            estimated_delivery=estimated,
            events=build_default_milestones(bucket),
            delivery_status=bucket,
            error=note,
        )

    async def refresh_delivery(self, delivery_id: str) -> RefreshResult:
        """
        Re-register and pull the current status of one delivery.

        Returns:
            RefreshResult with the derived status and whether it changed
        """
        delivery = await self._load(delivery_id)
        if delivery is None or not (delivery.tracking_url or delivery.tracking_number):
            return RefreshResult(success=False, error="Delivery not found or no tracking URL")

        number = delivery.tracking_number or extract_tracking_number(delivery.tracking_url)
        if not number:
            return RefreshResult(success=False, error=NO_NUMBER_ERROR)

        if not self.provider.is_configured:
            return RefreshResult(success=False, error=NOT_CONFIGURED_ERROR)

        await self.register_tracking(
            delivery_id,
            tracking_number=number,
            tracking_url=delivery.tracking_url,
            carrier=delivery.carrier,
        )

        carrier = find_carrier(delivery.carrier) or detect_carrier(delivery.tracking_url, number)
        response = await self._fetch_live(number, carrier)
        if response is None:
            return RefreshResult(success=False, error="No tracking data returned")

        updated = await self._write_back(delivery_id, response)
        return RefreshResult(
            success=True,
            status=stored_status_for(response.delivery_status),
            updated=updated,
        )
