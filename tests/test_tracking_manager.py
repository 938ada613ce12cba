"""Tests for tracking registration and pull-based refresh."""

import threading
from unittest.mock import AsyncMock, call, patch

import pytest

from hospice_tracking.models import DeliveryCreate, DeliveryStatus
from hospice_tracking.storage import ContactDirectory
from hospice_tracking.tracking.tracking_manager import (
    NOT_CONFIGURED_ERROR,
    NOT_CONFIGURED_NOTE,
    TrackingManager,
    run_blocking,
)


UPS_URL = "https://www.ups.com/track?tracknum=1Z999AA10123456784"
UPS_NUMBER = "1Z999AA10123456784"


def create(store, **fields):
    data = {"patient_id": "patient-1", "item_name": "Hospital bed"}
    data.update(fields)
    return store.create(DeliveryCreate(**data))


class TestRegistration:
    """Tests for TrackingManager.register_tracking."""

    @pytest.mark.asyncio
    async def test_not_configured(self, config, store, make_provider):
        """Test registration without an API key reports, never raises."""
        delivery = create(store, tracking_url=UPS_URL)
        provider = make_provider(configured=False)
        manager = TrackingManager(config, store, provider=provider)

        result = await manager.register_tracking(delivery.id, tracking_url=UPS_URL)

        assert result.success is False
        assert result.configured is False
        assert result.error == NOT_CONFIGURED_ERROR
        assert provider.registered == []

    @pytest.mark.asyncio
    async def test_accepted(self, configured, store, make_provider):
        """Test an accepted registration stores number and carrier."""
        delivery = create(store, tracking_url=UPS_URL)
        ContactDirectory(store).add_family_member("patient-1", "Ana", "ana@example.com", is_primary=True)
        provider = make_provider()
        manager = TrackingManager(configured, store, provider=provider)

        result = await manager.register_tracking(delivery.id, tracking_url=UPS_URL)

        assert result.success is True
        assert result.tracking_number == UPS_NUMBER
        assert result.carrier == "UPS"
        assert result.carrier_code == 100002

        item = provider.registered[0]
        assert item["number"] == UPS_NUMBER
        assert item["carrier"] == 100002
        assert item["tag"] == delivery.id
        assert item["email"] == "ana@example.com"

        stored = store.get(delivery.id)
        assert stored.tracking_number == UPS_NUMBER
        assert stored.carrier == "UPS"

    @pytest.mark.asyncio
    async def test_already_registered(self, configured, store, make_provider):
        """Test an already-registered rejection counts as success."""
        delivery = create(store, tracking_number=UPS_NUMBER)
        provider = make_provider(register_body={
            "code": 0,
            "data": {
                "accepted": [],
                "rejected": [{"number": UPS_NUMBER, "error": {"code": -18019901, "message": "already registered"}}],
            },
        })
        manager = TrackingManager(configured, store, provider=provider)

        result = await manager.register_tracking(delivery.id, tracking_number=UPS_NUMBER)

        assert result.success is True
        assert result.already_registered is True

    @pytest.mark.asyncio
    async def test_rejected(self, configured, store, make_provider):
        """Test other rejections surface the provider message."""
        delivery = create(store, tracking_number=UPS_NUMBER)
        provider = make_provider(register_body={
            "code": 0,
            "data": {
                "accepted": [],
                "rejected": [{"number": UPS_NUMBER, "error": {"code": -18010012, "message": "Invalid number"}}],
            },
        })
        manager = TrackingManager(configured, store, provider=provider)

        result = await manager.register_tracking(delivery.id, tracking_number=UPS_NUMBER)

        assert result.success is False
        assert result.error == "Invalid number"

    @pytest.mark.asyncio
    async def test_provider_error(self, configured, store, make_provider):
        """Test transport failures are reported as soft errors."""
        delivery = create(store, tracking_number=UPS_NUMBER)
        manager = TrackingManager(configured, store, provider=make_provider(error="timed out"))

        result = await manager.register_tracking(delivery.id, tracking_number=UPS_NUMBER)

        assert result.success is False
        assert "timed out" in result.error

    @pytest.mark.asyncio
    async def test_no_number(self, configured, store, make_provider):
        """Test links without a tracking number are rejected locally."""
        delivery = create(store, tracking_url="https://example.com/help")
        provider = make_provider()
        manager = TrackingManager(configured, store, provider=provider)

        result = await manager.register_tracking(delivery.id, tracking_url="https://example.com/help")

        assert result.success is False
        assert result.error == "Could not extract tracking number"
        assert provider.registered == []


class TestBulkRegistration:
    """Tests for TrackingManager.register_all."""

    @pytest.mark.asyncio
    async def test_register_all(self, configured, store, make_provider):
        """Test undelivered deliveries with links are registered."""
        create(store, tracking_url=UPS_URL)
        create(store, tracking_url="https://www.fedex.com/fedextrack/?tracknumbers=123456789012")
        create(store, tracking_url="https://example.com/help")
        create(store, tracking_url=UPS_URL, status=DeliveryStatus.DELIVERED)
        create(store)
        provider = make_provider()
        manager = TrackingManager(configured, store, provider=provider)

        result = await manager.register_all(delay=0)

        assert result.total == 3
        assert result.registered == 2
        assert result.failed == 1
        assert len(result.errors) == 1
        assert len(provider.registered) == 2

    @pytest.mark.asyncio
    async def test_register_all_not_configured(self, config, store, make_provider):
        """Test bulk registration without a key fails every candidate."""
        create(store, tracking_url=UPS_URL)
        manager = TrackingManager(config, store, provider=make_provider(configured=False))

        result = await manager.register_all(delay=0)

        assert result.total == 1
        assert result.failed == 1
        assert result.errors == [NOT_CONFIGURED_ERROR]

    @pytest.mark.asyncio
    async def test_register_all_spaces_provider_calls(self, configured, store, make_provider):
        """Test the delay is awaited between provider calls only."""
        create(store, tracking_url=UPS_URL)
        create(store, tracking_url="https://example.com/help")
        create(store, tracking_url="https://www.fedex.com/fedextrack/?tracknumbers=123456789012")
        create(store, tracking_url="https://tools.usps.com/go/TrackConfirmAction?tLabels=9400111899223197428490")
        provider = make_provider()
        manager = TrackingManager(configured, store, provider=provider)

        with patch("hospice_tracking.tracking.tracking_manager.asyncio.sleep", new_callable=AsyncMock) as sleep:
            result = await manager.register_all(delay=0.2)

        assert result.registered == 3
        assert result.failed == 1
        assert len(provider.registered) == 3
        assert sleep.await_count == len(provider.registered) - 1
        assert sleep.await_args_list == [call(0.2), call(0.2)]


class TestTrack:
    """Tests for on-demand tracking with fallback."""

    @pytest.mark.asyncio
    async def test_fallback_by_delivery_id(self, config, store, make_provider):
        """Test a lookup by id alone uses the stored tracking URL."""
        delivery = create(store, tracking_url=UPS_URL, status=DeliveryStatus.IN_TRANSIT)
        manager = TrackingManager(config, store, provider=make_provider(configured=False))

        response = await manager.track(delivery_id=delivery.id)

        assert response.current_status == "On the Way"
        assert response.carrier == "UPS"
        assert response.tracking_number == UPS_NUMBER

    @pytest.mark.asyncio
    async def test_fallback_without_key(self, config, store, make_provider):
        """Test the stored status is shown with an explanatory note."""
        delivery = create(store, tracking_url=UPS_URL, status=DeliveryStatus.IN_TRANSIT)
        manager = TrackingManager(config, store, provider=make_provider(configured=False))

        response = await manager.track(tracking_url=UPS_URL, delivery_id=delivery.id)
        data = response.model_dump(by_alias=True)

        assert data["currentStatus"] == "On the Way"
        assert "requires API configuration" in data["error"]
        assert data["carrier"] == "UPS"
        assert data["trackingNumber"] == UPS_NUMBER
        assert len(data["events"]) == 5
        assert response.error == NOT_CONFIGURED_NOTE

    @pytest.mark.asyncio
    async def test_fallback_unknown_delivery(self, config, store, make_provider):
        """Test a bare URL falls back to the label-created view."""
        manager = TrackingManager(config, store, provider=make_provider(configured=False))

        response = await manager.track(tracking_url=UPS_URL)

        assert response.current_status == "Label Created"
        assert response.estimated_delivery == (
            "Estimated delivery date will be available when UPS receives the package."
        )

    @pytest.mark.asyncio
    async def test_live_lookup_writes_back(self, configured, store, make_provider, track_body):
        """Test a live lookup updates the stored delivery."""
        delivery = create(store, tracking_url=UPS_URL, tracking_number=UPS_NUMBER)
        provider = make_provider(track_body=track_body(UPS_NUMBER, 35, "Out For Delivery Today"))
        manager = TrackingManager(configured, store, provider=provider)

        response = await manager.track(tracking_url=UPS_URL, delivery_id=delivery.id)

        assert response.current_status == "Out for Delivery"
        assert response.error is None
        assert provider.lookups == [(UPS_NUMBER, 100002)]
        assert store.get(delivery.id).status == "out_for_delivery"

    @pytest.mark.asyncio
    async def test_live_failure_falls_back(self, configured, store, make_provider):
        """Test provider errors fall back to the stored status."""
        delivery = create(store, tracking_url=UPS_URL, status=DeliveryStatus.OUT_FOR_DELIVERY)
        manager = TrackingManager(configured, store, provider=make_provider(error="HTTP 503"))

        response = await manager.track(tracking_url=UPS_URL, delivery_id=delivery.id)

        assert response.current_status == "Out for Delivery"
        assert "temporarily unavailable" in response.error


class TestRefresh:
    """Tests for TrackingManager.refresh_delivery."""

    @pytest.mark.asyncio
    async def test_refresh(self, configured, store, make_provider, track_body):
        """Test refresh registers, pulls and stores the status."""
        delivery = create(store, tracking_url=UPS_URL)
        provider = make_provider(track_body=track_body(UPS_NUMBER, 40))
        manager = TrackingManager(configured, store, provider=provider)

        result = await manager.refresh_delivery(delivery.id)

        assert result.success is True
        assert result.status == "delivered"
        assert result.updated is True
        assert len(provider.registered) == 1

        stored = store.get(delivery.id)
        assert stored.status == "delivered"
        assert stored.delivered_at is not None

    @pytest.mark.asyncio
    async def test_refresh_missing_delivery(self, configured, store, make_provider):
        """Test unknown deliveries report an error."""
        manager = TrackingManager(configured, store, provider=make_provider())

        result = await manager.refresh_delivery("missing")

        assert result.success is False
        assert result.error == "Delivery not found or no tracking URL"


class TestRunBlocking:
    """Tests for moving store calls off the event loop."""

    @pytest.mark.asyncio
    async def test_runs_in_worker_thread(self):
        """Test the call runs outside the event loop thread."""
        loop_thread = threading.get_ident()

        def work(value, scale=1):
            return threading.get_ident(), value * scale

        thread_id, result = await run_blocking(work, 3, scale=2)

        assert result == 6
        assert thread_id != loop_thread

    @pytest.mark.asyncio
    async def test_errors_propagate(self):
        """Test exceptions reach the awaiting caller."""
        with pytest.raises(ValueError):
            await run_blocking(int, "not a number")
