"""Geometry builders and test doubles shared by the tests."""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from geosentinel.detection.channels import HttpResponse


def square(center_lon: float = 0.0, center_lat: float = 0.0, half: float = 1.0) -> Dict[str, Any]:
    """Axis-aligned square polygon."""
    return {
        "type": "Polygon",
        "coordinates": [
            [
                [center_lon - half, center_lat - half],
                [center_lon + half, center_lat - half],
                [center_lon + half, center_lat + half],
                [center_lon - half, center_lat + half],
                [center_lon - half, center_lat - half],
            ]
        ],
    }


def point(lon: float, lat: float) -> Dict[str, Any]:
    return {"type": "Point", "coordinates": [lon, lat]}


def feature(geometry: Dict[str, Any], **properties: Any) -> Dict[str, Any]:
    return {"type": "Feature", "geometry": geometry, "properties": properties}


def monitor_doc(**overrides: Any) -> Dict[str, Any]:
    """A valid scheduled monitor document comparing 'vehicles' against 'zones'."""
    doc: Dict[str, Any] = {
        "name": "vehicles-in-zones",
        "target": {"layer_name": "vehicles"},
        "zone": {"layer_name": "zones"},
        "trigger": {"kind": "schedule", "expression": "0 0 1 1 *"},
        "evaluation": {"predicate_type": "geoWithin"},
    }
    doc.update(overrides)
    return doc


class FakeClock:
    """Controllable clock returning timezone-aware UTC datetimes."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


class FakeSender:
    """HttpSender recording every request and replaying queued responses."""

    def __init__(self) -> None:
        self.calls: List[Dict[str, Any]] = []
        self.responses: List[HttpResponse] = []
        self.default = HttpResponse(ok=True, status=200, json_body={"_id": "incident-1"})

    def queue(self, response: HttpResponse) -> None:
        self.responses.append(response)

    async def send(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        body: Optional[Any] = None,
    ) -> HttpResponse:
        self.calls.append({"method": method, "url": url, "headers": headers, "body": body})
        if self.responses:
            return self.responses.pop(0)
        return self.default
