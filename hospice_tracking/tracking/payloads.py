"""
Parsers for the tracking provider's payload shapes.

The provider has shipped more than one response format. Each format is a
shape class that knows how to find its items in a response body and how to
turn one item into a ParsedTrack. Shapes are tried in SHAPES order.
"""

from dataclasses import dataclass, field
from typing import Any, Optional, Union


StatusValue = Union[int, str, None]


@dataclass
class ParsedEvent:
    """One carrier scan event."""

    description: str
    location: Optional[str] = None
    time: Optional[str] = None


@dataclass
class ParsedTrack:
    """Shape-independent view of one tracked shipment."""

    number: Optional[str] = None
    status: StatusValue = None  # numeric code or v2.4 status name
    latest_description: str = ""
    latest_location: Optional[str] = None
    carrier_code: Optional[int] = None
    estimated_delivery: Optional[str] = None
    ship_to: Optional[str] = None
    events: list[ParsedEvent] = field(default_factory=list)  # newest first
    shape: str = ""


def _dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _list(value: Any) -> list:
    return value if isinstance(value, list) else []


def _str(value: Any) -> Optional[str]:
    """Text value or None; numbers are kept as their text form."""
    if isinstance(value, str):
        return value or None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None


def _int_or_none(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class AcceptedTrackShape:
    """Current format: ``data.accepted[*].track_info`` (also used by webhooks)."""

    name = "accepted"

    @staticmethod
    def items(body: dict) -> list[dict]:
        return [i for i in _list(_dict(body.get("data")).get("accepted")) if isinstance(i, dict)]

    @staticmethod
    def matches_item(item: dict) -> bool:
        return isinstance(item.get("track_info"), dict)

    @classmethod
    def parse_item(cls, item: dict) -> ParsedTrack:
        info = _dict(item.get("track_info"))
        latest_status = _dict(info.get("latest_status"))
        latest_event = _dict(info.get("latest_event"))

        events = []
        for provider in _list(_dict(info.get("tracking")).get("providers")):
            for event in _list(_dict(provider).get("events")):
                event = _dict(event)
                events.append(ParsedEvent(
                    description=_str(event.get("description")) or "",
                    location=_str(event.get("location")),
                    time=_str(event.get("time_iso")) or _str(event.get("time_utc")),
                ))
            if events:
                break

        estimate = _dict(_dict(info.get("time_metrics")).get("estimated_delivery_date"))
        estimated_delivery = _str(estimate.get("to")) or _str(estimate.get("from"))

        address = _dict(_dict(info.get("shipping_info")).get("recipient_address"))
        ship_to = ", ".join(p for p in (_str(address.get("city")), _str(address.get("state"))) if p) or None

        return ParsedTrack(
            number=_str(item.get("number")),
            status=latest_status.get("status"),
            latest_description=_str(latest_event.get("description")) or "",
            latest_location=_str(latest_event.get("location")),
            carrier_code=_int_or_none(item.get("carrier")),
            estimated_delivery=estimated_delivery,
            ship_to=ship_to,
            events=events,
            shape=cls.name,
        )


class LegacyTrackShape:
    """Legacy format: ``data[*].track`` with single-letter keys."""

    name = "legacy"

    @staticmethod
    def items(body: dict) -> list[dict]:
        return [i for i in _list(body.get("data")) if isinstance(i, dict)]

    @staticmethod
    def matches_item(item: dict) -> bool:
        return isinstance(item.get("track"), dict)

    @classmethod
    def parse_item(cls, item: dict) -> ParsedTrack:
        track = _dict(item.get("track"))
        latest = _dict(track.get("z0"))

        events = [
            ParsedEvent(
                description=_str(_dict(e).get("z")) or "",
                location=_str(_dict(e).get("c")),
                time=_str(_dict(e).get("a")),
            )
            for e in _list(track.get("z1"))
        ]

        return ParsedTrack(
            number=_str(item.get("no")) or _str(item.get("number")),
            status=_int_or_none(track.get("e")),
            latest_description=_str(latest.get("z")) or "",
            latest_location=_str(latest.get("c")),
            carrier_code=_int_or_none(track.get("w1")),
            events=events,
            shape=cls.name,
        )


SHAPES = (AcceptedTrackShape, LegacyTrackShape)


def parse_track_response(body: Any) -> Optional[ParsedTrack]:
    """
    Parse a get-tracking-info response body.

    Returns the first item of the first shape that recognises the body, or
    None when no shape does.
    """
    if not isinstance(body, dict):
        return None

    for shape in SHAPES:
        for item in shape.items(body):
            if shape.matches_item(item):
                return shape.parse_item(item)
    return None


def parse_webhook_track(data: Any) -> ParsedTrack:
    """
    Parse the ``data`` object of a webhook push.

    Unrecognised content yields an empty ParsedTrack so that status derivation
    falls back to the default bucket.
    """
    data = _dict(data)
    for shape in SHAPES:
        if shape.matches_item(data):
            return shape.parse_item(data)
    return ParsedTrack(number=_str(data.get("number")))
