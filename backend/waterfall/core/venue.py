"""Venue — fixed value object for where a cycle's event takes place.

Invariants:
    - Immutable (frozen dataclass); latitude in [-90, 90], longitude in [-180, 180]
    - capacity >= 1 (physical room size, informational; seat capacity lives on Cycle)
    - Core never handles raw venue dicts — conversion happens at the boundary

Design Decisions:
    - Validation in __post_init__ as well as in the API schema: the store also
      rebuilds Venues from JSON columns, so the value object guards itself
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class Venue:
    name: str
    address: str
    latitude: float
    longitude: float
    capacity: int

    def __post_init__(self):
        if not self.name.strip():
            raise ValueError("venue name cannot be empty")
        if not -90.0 <= self.latitude <= 90.0:
            raise ValueError(f"latitude out of range: {self.latitude}")
        if not -180.0 <= self.longitude <= 180.0:
            raise ValueError(f"longitude out of range: {self.longitude}")
        if self.capacity < 1:
            raise ValueError(f"venue capacity must be >= 1, got {self.capacity}")

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "address": self.address,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "capacity": self.capacity,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Venue":
        return cls(
            name=str(data["name"]),
            address=str(data.get("address", "")),
            latitude=float(data["latitude"]),
            longitude=float(data["longitude"]),
            capacity=int(data["capacity"]),
        )
