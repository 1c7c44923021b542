"""Tests for directory loading, default policies, and the building catalogue."""

from __future__ import annotations

from pathlib import Path

import orjson
import pytest

from config.campus import BUILDINGS, BuildingConfig, get_building, is_restricted_room
from src.data.seed import default_policies, load_directory
from src.models.enums import UserRole


class TestLoadDirectory:
    def test_no_path_is_empty(self) -> None:
        assert load_directory(None) == ([], [])

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_directory(tmp_path / "absent.json")

    def test_valid_and_invalid_records(self, tmp_path: Path) -> None:
        path = tmp_path / "directory.json"
        path.write_bytes(orjson.dumps({
            "users": [
                {"id": "1", "name": "Alice Johnson", "role": "student", "consent_given": True},
                {"id": "2", "name": "No Role"},
            ],
            "consents": [
                {"user_id": "1", "consent_given": True, "data_types": ["location"]},
                {"consent_given": False},
            ],
        }))
        users, consents = load_directory(path)
        assert [u.id for u in users] == ["1"], "the record without a role is skipped"
        assert users[0].role == UserRole.STUDENT
        assert [c.user_id for c in consents] == ["1"]
        assert consents[0].data_types == frozenset({"location"})


class TestDefaultPolicies:
    def test_catalogue(self) -> None:
        policies = {p.id: p for p in default_policies()}
        assert set(policies) == {"location-tracking", "activity-monitoring", "social-interactions"}
        assert policies["location-tracking"].is_required is True
        assert policies["social-interactions"].is_active is False

    def test_fresh_copies(self) -> None:
        assert default_policies()[0] is not default_policies()[0]


class TestBuildings:
    def test_lookup(self) -> None:
        library = get_building("Library")
        assert library is not None and library.capacity > 0
        assert get_building("Moon Base") is None

    def test_restricted_rooms(self) -> None:
        assert is_restricted_room("Science Building", "Lab 205") is True
        assert is_restricted_room("Science Building", "Lab 101") is False
        assert is_restricted_room("Moon Base", "Lab 205") is False

    def test_names_are_unique(self) -> None:
        names = [b.name for b in BUILDINGS]
        assert len(names) == len(set(names))

    def test_capacity_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            BuildingConfig(name="Shed", capacity=0)
