"""Static building catalogue for the campus.

Each ``BuildingConfig`` carries the building's display name, nominal
capacity (used for occupancy ratios), and the rooms that are restricted
outside business hours.  The catalogue is external configuration: the
query engine only reads it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Final

__all__ = [
    "BuildingConfig",
    "BUILDINGS",
    "BUILDING_MAP",
    "get_building",
    "is_restricted_room",
]


@dataclass(frozen=True, slots=True)
class BuildingConfig:
    """Immutable descriptor for a single campus building."""

    name: str
    capacity: int
    """Nominal occupant capacity; must be positive."""

    restricted_rooms: frozenset[str] = field(default_factory=frozenset)
    """Rooms where access outside business hours raises an alert."""

    def __post_init__(self) -> None:
        if self.capacity <= 0:
            msg = f"Building {self.name!r} must have a positive capacity"
            raise ValueError(msg)


BUILDINGS: Final[tuple[BuildingConfig, ...]] = (
    BuildingConfig(
        name="Library",
        capacity=150,
        restricted_rooms=frozenset({"Archives"}),
    ),
    BuildingConfig(name="Student Center", capacity=200),
    BuildingConfig(
        name="Science Building",
        capacity=100,
        restricted_rooms=frozenset({"Lab 205"}),
    ),
    BuildingConfig(
        name="Engineering",
        capacity=80,
        restricted_rooms=frozenset({"Workshop"}),
    ),
    BuildingConfig(
        name="Admin Building",
        capacity=50,
        restricted_rooms=frozenset({"IT Support"}),
    ),
)

BUILDING_MAP: Final[dict[str, BuildingConfig]] = {b.name: b for b in BUILDINGS}


def get_building(name: str) -> BuildingConfig | None:
    """Look up a building by exact name; ``None`` when unknown."""
    return BUILDING_MAP.get(name)


def is_restricted_room(building: str, room: str) -> bool:
    config = BUILDING_MAP.get(building)
    return config is not None and room in config.restricted_rooms
