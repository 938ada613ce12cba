"""
External tracking provider API.
Registers tracking numbers for push updates and fetches current tracking info
across all carriers through one multi-carrier API.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Optional
import aiohttp
from loguru import logger

from hospice_tracking.config import TrackingConfig


# Rejection codes meaning the number is already being tracked
ALREADY_REGISTERED_CODES = {0, -18019901}


class ProviderError(Exception):
    """Raised when the tracking provider cannot be reached or answers badly."""


@dataclass
class Rejection:
    """An item the provider refused."""

    number: Optional[str]
    error_code: Optional[int] = None
    error_message: str = "Registration rejected"

    @property
    def is_already_registered(self) -> bool:
        return self.error_code in ALREADY_REGISTERED_CODES


@dataclass
class ProviderResponse:
    """Accepted/rejected split of a provider batch response."""

    body: dict = field(default_factory=dict)
    accepted: list[dict] = field(default_factory=list)
    rejected: list[Rejection] = field(default_factory=list)

    @classmethod
    def from_body(cls, body: Any) -> "ProviderResponse":
        if not isinstance(body, dict):
            raise ProviderError("Malformed provider response")

        data = body.get("data") if isinstance(body.get("data"), dict) else {}
        accepted = [a for a in data.get("accepted") or [] if isinstance(a, dict)]

        rejected = []
        for item in data.get("rejected") or []:
            if not isinstance(item, dict):
                continue
            error = item.get("error") if isinstance(item.get("error"), dict) else {}
            rejected.append(Rejection(
                number=item.get("number"),
                error_code=error.get("code"),
                error_message=error.get("message") or "Registration rejected",
            ))

        return cls(body=body, accepted=accepted, rejected=rejected)


def build_registration_item(
    number: str,
    tag: str,
    carrier_code: Optional[int] = None,
    email: Optional[str] = None,
    order_no: Optional[str] = None,
    order_time: Optional[str] = None,
    note: Optional[str] = None,
) -> dict:
    """Build one register request item, omitting unset fields."""
    item = {
        "number": number,
        "carrier": carrier_code,
        "tag": tag,
        "email": email,
        "order_no": order_no,
        "order_time": order_time,
        "note": note,
    }
    return {k: v for k, v in item.items() if v is not None}


class TrackingProviderAPI:
    """
    Multi-carrier tracking provider integration.

    Requires a provider API key, sent in the ``17token`` header. Without a
    key the client reports itself unconfigured and callers skip it.
    """

    REGISTER_PATH = "/register"
    TRACK_INFO_PATH = "/gettrackinfo"
    DELETE_PATH = "/deletetrack"

    def __init__(self, api_key: str, base_url: str, timeout: float = 15.0):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: TrackingConfig) -> "TrackingProviderAPI":
        return cls(
            api_key=config.tracking_api_key,
            base_url=config.tracking_api_url,
            timeout=config.request_timeout,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _get_headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "17token": self.api_key,
        }

    async def _post(self, path: str, payload: list[dict]) -> Any:
        """POST a JSON array to the provider and return the decoded body."""
        if not self.is_configured:
            raise ProviderError("Tracking API not configured")

        url = f"{self.base_url}{path}"
        try:
            async with aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as session:
                async with session.post(url, json=payload, headers=self._get_headers()) as resp:
                    if resp.status != 200:
                        error = await resp.text()
                        raise ProviderError(f"Provider returned {resp.status}: {error[:200]}")
                    try:
                        return await resp.json(content_type=None)
                    except ValueError as e:
                        raise ProviderError(f"Provider returned invalid JSON: {e}") from e

        except asyncio.TimeoutError as e:
            raise ProviderError(f"Provider request timed out after {self.timeout}s") from e
        except aiohttp.ClientError as e:
            raise ProviderError(f"Provider connection error: {e}") from e

    async def register(self, items: list[dict]) -> ProviderResponse:
        """Register tracking numbers for push notifications."""
        body = await self._post(self.REGISTER_PATH, items)
        logger.debug(f"Provider register response: {body}")
        return ProviderResponse.from_body(body)

    async def get_track_info(self, number: str, carrier_code: Optional[int] = None) -> Any:
        """Fetch current tracking info. Returns the raw body for the payload parsers."""
        item = {"number": number}
        if carrier_code is not None:
            item["carrier"] = carrier_code
        return await self._post(self.TRACK_INFO_PATH, [item])

    async def delete_tracking(self, number: str, carrier_code: Optional[int] = None) -> ProviderResponse:
        """Stop tracking a number and drop its push subscription."""
        item = {"number": number}
        if carrier_code is not None:
            item["carrier"] = carrier_code
        body = await self._post(self.DELETE_PATH, [item])
        return ProviderResponse.from_body(body)
