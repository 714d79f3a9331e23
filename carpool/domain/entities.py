"""
Domain value objects.

Rides and bookings live as ORM documents (see ``infrastructure.models``);
the pieces of them that carry their own rules are modelled here.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Mapping

from .enums import RideStatus
from .exceptions import ValidationError


@dataclass(frozen=True)
class Location:
    """A named, geocoded point (home, office, pickup spot...)."""

    id: str
    name: str
    latitude: float
    longitude: float
    address: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Location":
        try:
            return cls(
                id=str(data["id"]),
                name=str(data["name"]),
                latitude=float(data["latitude"]),
                longitude=float(data["longitude"]),
                address=str(data.get("address") or ""),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationError(f"Invalid location: {exc}") from exc

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class SeatState:
    """Result of a seat reconciliation."""

    booked_seats: int
    available_seats: int
    status: RideStatus
