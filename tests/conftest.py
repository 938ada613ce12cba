"""Shared fixtures for tracking tests."""

import pytest

from hospice_tracking.config import TrackingConfig
from hospice_tracking.storage import DeliveryStore
from hospice_tracking.tracking.provider_api import ProviderError, ProviderResponse


class FakeProvider:
    """In-memory stand-in for the tracking provider API."""

    def __init__(self, configured=True, register_body=None, track_body=None, error=None):
        self.configured = configured
        self.register_body = register_body
        self.track_body = track_body
        self.error = error
        self.registered = []
        self.deleted = []
        self.lookups = []

    @property
    def is_configured(self):
        return self.configured

    async def register(self, items):
        if self.error:
            raise ProviderError(self.error)
        self.registered.extend(items)
        body = self.register_body or {
            "code": 0,
            "data": {"accepted": [{"number": i["number"]} for i in items], "rejected": []},
        }
        return ProviderResponse.from_body(body)

    async def get_track_info(self, number, carrier_code=None):
        if self.error:
            raise ProviderError(self.error)
        self.lookups.append((number, carrier_code))
        return self.track_body

    async def delete_tracking(self, number, carrier_code=None):
        if self.error:
            raise ProviderError(self.error)
        self.deleted.append((number, carrier_code))
        return ProviderResponse.from_body(
            {"code": 0, "data": {"accepted": [{"number": number}], "rejected": []}}
        )


def accepted_track_body(number, status, description="", events=None, carrier=None):
    """A get-tracking-info body in the current provider format."""
    return {
        "code": 0,
        "data": {
            "accepted": [
                {
                    "number": number,
                    "carrier": carrier,
                    "track_info": {
                        "latest_status": {"status": status},
                        "latest_event": {"description": description, "location": "Louisville, KY"},
                        "tracking": {"providers": [{"events": events or []}]},
                    },
                }
            ],
            "rejected": [],
        },
    }


@pytest.fixture
def config(tmp_path):
    """Create test configuration without a provider key."""
    return TrackingConfig(
        database_url=f"sqlite:///{tmp_path / 'tracking.db'}",
        log_file=str(tmp_path / "logs" / "tracking.log"),
        registration_delay=0,
    )


@pytest.fixture
def configured(config):
    """Test configuration with a provider key."""
    config.tracking_api_key = "test-key"
    return config


@pytest.fixture
def store(config):
    """Create test delivery store."""
    store = DeliveryStore(config.database_url)
    store.init_schema()
    yield store
    store.engine.dispose()


@pytest.fixture
def track_body():
    """Builder for get-tracking-info bodies."""
    return accepted_track_body


@pytest.fixture
def make_provider():
    """Factory for fake providers."""
    return FakeProvider
