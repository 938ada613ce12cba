"""Tests for webhook reconciliation."""

import orjson
import pytest

from hospice_tracking.models import DeliveryCreate, DeliveryStatus
from hospice_tracking.tracking.webhook import WebhookReconciler, compute_signature


def push(number, status, description=""):
    """A TRACKING_UPDATED webhook body."""
    return {
        "event": "TRACKING_UPDATED",
        "data": {
            "number": number,
            "carrier": 100002,
            "track_info": {
                "latest_status": {"status": status},
                "latest_event": {"description": description},
            },
        },
    }


@pytest.fixture
def reconciler(config, store):
    """Create test webhook reconciler."""
    return WebhookReconciler(config, store)


@pytest.fixture
def delivery(store):
    """A delivery waiting on a UPS shipment."""
    return store.create(DeliveryCreate(
        patient_id="patient-1",
        item_name="Oxygen concentrator",
        carrier="UPS",
        tracking_number="1Z999AA10123456784",
        tracking_url="https://www.ups.com/track?tracknum=1Z999AA10123456784",
    ))


class TestReconcile:
    """Tests for WebhookReconciler.reconcile."""

    def test_departed_moves_to_in_transit(self, reconciler, store, delivery):
        """Test an in-transit push updates an ordered delivery."""
        ack = reconciler.reconcile(push(delivery.tracking_number, 10, "Departed Facility"))

        assert ack.success is True
        assert ack.message == "Webhook processed"
        assert ack.updated is True
        assert ack.status == "in_transit"

        stored = store.get(delivery.id)
        assert stored.status == "in_transit"
        assert stored.delivered_at is None
        assert stored.last_update is not None

    def test_delivered_stamps_delivered_at(self, reconciler, store, delivery):
        """Test a delivered push stamps the delivery time."""
        reconciler.reconcile(push(delivery.tracking_number, 40))

        stored = store.get(delivery.id)
        assert stored.status == "delivered"
        assert stored.delivered_at is not None

    def test_repeat_push_is_idempotent(self, reconciler, store, delivery):
        """Test a repeated push writes once."""
        first = reconciler.reconcile(push(delivery.tracking_number, 35))
        after_first = store.get(delivery.id)

        second = reconciler.reconcile(push(delivery.tracking_number, 35))
        after_second = store.get(delivery.id)

        assert first.updated is True
        assert second.updated is False
        assert second.success is True
        assert after_second.last_update == after_first.last_update
        assert after_second.updated_at == after_first.updated_at

    def test_unknown_tracking_number(self, reconciler, store, delivery):
        """Test a push for an unknown number is acknowledged without writes."""
        ack = reconciler.reconcile(push("1Z000000000000000", 40))

        assert ack.success is True
        assert ack.message == "Delivery not found"
        assert store.get(delivery.id).status == "ordered"
        assert store.get(delivery.id).updated_at is None

    def test_unknown_code_defaults_to_ordered(self, reconciler, store, delivery):
        """Test unrecognised codes fall back to the lifecycle start."""
        store.update_fields(delivery.id, status=DeliveryStatus.IN_TRANSIT)

        ack = reconciler.reconcile(push(delivery.tracking_number, 0))

        assert ack.status == "ordered"
        assert store.get(delivery.id).status == "ordered"

    def test_other_events_ignored(self, reconciler, store, delivery):
        """Test non-status events are acknowledged and ignored."""
        payload = push(delivery.tracking_number, 40)
        payload["event"] = "TRACKING_STOPPED"

        ack = reconciler.reconcile(payload)

        assert ack.success is True
        assert ack.message == "Event ignored"
        assert store.get(delivery.id).status == "ordered"

    def test_missing_data(self, reconciler):
        """Test payloads without tracking data."""
        assert reconciler.reconcile({"event": "TRACKING_UPDATED"}).message == "No tracking data"
        assert reconciler.reconcile({"data": {"number": "1Z999AA10123456784"}}).message == "No tracking data"
        assert reconciler.reconcile([1, 2]).message == "Malformed payload"


class TestSignature:
    """Tests for webhook signature checks."""

    def test_no_secret_accepts_anything(self, reconciler):
        """Test verification is skipped without a secret."""
        assert reconciler.verify_signature(b"{}", None) is True

    def test_valid_signature(self, config, store, delivery):
        """Test a correctly signed push is applied."""
        config.webhook_secret = "s3cret"
        reconciler = WebhookReconciler(config, store)
        body = orjson.dumps(push(delivery.tracking_number, 40))

        status_code, ack = reconciler.handle(body, compute_signature(body, "s3cret"))

        assert status_code == 200
        assert ack.updated is True

    def test_bad_signature_rejected(self, config, store, delivery):
        """Test a wrong or missing signature is rejected without writes."""
        config.webhook_secret = "s3cret"
        reconciler = WebhookReconciler(config, store)
        body = orjson.dumps(push(delivery.tracking_number, 40))

        status_code, ack = reconciler.handle(body, "deadbeef")
        assert status_code == 401
        assert ack.success is False

        status_code, _ = reconciler.handle(body, None)
        assert status_code == 401
        assert store.get(delivery.id).status == "ordered"

    def test_malformed_body(self, reconciler):
        """Test undecodable bodies are acknowledged."""
        status_code, ack = reconciler.handle(b"not json")

        assert status_code == 200
        assert ack.message == "Malformed payload"


class TestMalformedContent:
    """Tests for pushes with unexpected field types."""

    @pytest.mark.parametrize("description", [123, ["a"], {"text": "Delivered"}, None])
    def test_non_text_description(self, reconciler, store, delivery, description):
        """Test odd description types fall back to the status code."""
        payload = push(delivery.tracking_number, 10)
        payload["data"]["track_info"]["latest_event"]["description"] = description

        status_code, ack = reconciler.handle(orjson.dumps(payload))

        assert status_code == 200
        assert ack.success is True
        assert ack.status == "in_transit"
        assert store.get(delivery.id).status == "in_transit"

    def test_non_text_events(self, reconciler, delivery):
        """Test event lists with odd field types still parse."""
        payload = push(delivery.tracking_number, 40)
        payload["data"]["track_info"]["tracking"] = {
            "providers": [{"events": [{"description": 7, "location": ["x"], "time_iso": {}}]}]
        }

        status_code, ack = reconciler.handle(orjson.dumps(payload))

        assert status_code == 200
        assert ack.status == "delivered"

    def test_unexpected_error_acknowledged(self, reconciler, delivery, monkeypatch):
        """Test a failure while reconciling is still acknowledged."""
        def broken(payload):
            raise AttributeError("unexpected shape")

        monkeypatch.setattr(reconciler, "reconcile", broken)

        status_code, ack = reconciler.handle(orjson.dumps(push(delivery.tracking_number, 40)))

        assert status_code == 200
        assert ack.success is True
        assert ack.message == "Malformed payload"
