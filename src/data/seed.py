"""Startup seeding: default collection policies and directory records.

The policy catalogue is built in code; identities and consent records
come from an optional JSON file handed over by the user-management
collaborator.  Designed to run once when the service container is built.
"""

from __future__ import annotations

from pathlib import Path

import orjson
import structlog

from src.models.enums import DataType
from src.models.privacy import ConsentRecord, PrivacyPolicy
from src.models.user import UserIdentity

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Policies
# ---------------------------------------------------------------------------


def default_policies() -> list[PrivacyPolicy]:
    """The collection policies every campus starts with."""
    return [
        PrivacyPolicy(
            id="location-tracking",
            title="Location Tracking",
            description="Collect building and room positions for campus safety and occupancy.",
            data_types=frozenset({
                DataType.LOCATION.value,
                DataType.BUILDING_ENTRY.value,
                DataType.ROOM_OCCUPANCY.value,
            }),
            purpose="Campus safety, emergency response, and capacity management",
            retention_period="2 years",
            is_required=True,
            is_active=True,
        ),
        PrivacyPolicy(
            id="activity-monitoring",
            title="Activity Monitoring",
            description="Derive movement patterns and dwell times from location reports.",
            data_types=frozenset({
                DataType.MOVEMENT_PATTERNS.value,
                DataType.TIMESTAMPS.value,
                DataType.DURATION_TRACKING.value,
            }),
            purpose="Space utilisation analytics",
            retention_period="1 year",
            is_required=False,
            is_active=True,
        ),
        PrivacyPolicy(
            id="social-interactions",
            title="Social Interactions",
            description="Detect co-location of users to study group formation.",
            data_types=frozenset({
                DataType.PROXIMITY.value,
                DataType.INTERACTION_FREQUENCY.value,
                DataType.GROUP_FORMATION.value,
            }),
            purpose="Research into collaborative space usage",
            retention_period="6 months",
            is_required=False,
            is_active=False,
        ),
    ]


# ---------------------------------------------------------------------------
# Directory
# ---------------------------------------------------------------------------


def load_directory(path: Path | None) -> tuple[list[UserIdentity], list[ConsentRecord]]:
    """Parse a directory JSON file into identities and consent records.

    Expected shape::

        {
          "users": [{"id": "1", "name": "...", "role": "student", ...}],
          "consents": [{"user_id": "1", "consent_given": true, ...}]
        }

    A missing *path* yields an empty directory.  Records that fail
    validation are skipped and logged.

    Raises
    ------
    FileNotFoundError
        If *path* is given but does not exist.
    orjson.JSONDecodeError
        If the file is not valid JSON.
    """
    if path is None:
        logger.info("seed.no_directory_file")
        return [], []

    if not path.exists():
        raise FileNotFoundError(f"Directory file not found: {path}")

    raw = orjson.loads(path.read_bytes())

    users: list[UserIdentity] = []
    for item in raw.get("users", []):
        try:
            users.append(UserIdentity.model_validate(item))
        except Exception:
            logger.warning("seed.user_parse_error", user_id=item.get("id", "unknown"), exc_info=True)

    consents: list[ConsentRecord] = []
    for item in raw.get("consents", []):
        try:
            consents.append(ConsentRecord.model_validate(item))
        except Exception:
            logger.warning("seed.consent_parse_error", user_id=item.get("user_id", "unknown"), exc_info=True)

    logger.info("seed.directory_loaded", source=str(path), users=len(users), consents=len(consents))
    return users, consents
