"""Typed user preferences.

Preferences are stored as a JSON string on the user row.  Parsing merges the
stored values over ``DEFAULT_PREFERENCES`` one level deep (``focus_hours`` is
merged on its own), so older rows missing newer fields still produce a
complete object.  Unknown capability keys are dropped.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)

KNOWN_CAPABILITIES: tuple[str, ...] = (
    "daily-briefings",
    "meeting-prep",
    "smart-reminders",
    "vc-updates",
    "market-insights",
    "executive-memory",
)


class FocusHours(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    start: str = "09:00"
    end: str = "11:00"


class CommunicationSettings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    briefing_schedule: str = Field("daily-morning", alias="briefingSchedule")
    focus_hours: FocusHours = Field(default_factory=FocusHours, alias="focusHours")
    meeting_prep_timing: str = Field("30min", alias="meetingPrepTiming")


class UserPreferences(BaseModel):
    """Capability toggles, interests and communication settings for one user."""

    model_config = ConfigDict(populate_by_name=True)

    interests: list[str] = Field(default_factory=list)
    text_input: str = Field("", alias="textInput")
    capabilities: dict[str, bool] = Field(
        default_factory=lambda: {key: False for key in KNOWN_CAPABILITIES},
    )
    communication_settings: CommunicationSettings = Field(
        default_factory=CommunicationSettings, alias="communicationSettings",
    )
    last_updated: str | None = Field(None, alias="lastUpdated")


DEFAULT_PREFERENCES = UserPreferences()


def _merge(raw: dict[str, Any]) -> dict[str, Any]:
    defaults = DEFAULT_PREFERENCES.model_dump(by_alias=True)
    merged = {**defaults, **raw}

    capabilities = {**defaults["capabilities"]}
    for key, enabled in (raw.get("capabilities") or {}).items():
        if key in KNOWN_CAPABILITIES:
            capabilities[key] = bool(enabled)
    merged["capabilities"] = capabilities

    raw_comms = raw.get("communicationSettings") or {}
    comms = {**defaults["communicationSettings"], **raw_comms}
    comms["focusHours"] = {
        **defaults["communicationSettings"]["focusHours"],
        **(raw_comms.get("focusHours") or {}),
    }
    merged["communicationSettings"] = comms
    return merged


def parse_user_preferences(raw: str | None) -> UserPreferences:
    """Parse the stored JSON string, falling back to defaults when unusable."""
    if not raw:
        return DEFAULT_PREFERENCES.model_copy(deep=True)
    try:
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("preferences must be a JSON object")
        return UserPreferences.model_validate(_merge(data))
    except (ValueError, ValidationError) as exc:
        logger.error("Error parsing user preferences: %s", exc)
        return DEFAULT_PREFERENCES.model_copy(deep=True)


def stringify_user_preferences(preferences: UserPreferences) -> str:
    """Serialise for storage, stamping ``lastUpdated``."""
    stamped = preferences.model_copy(
        update={"last_updated": datetime.now(UTC).isoformat()},
    )
    return stamped.model_dump_json(by_alias=True)


def enabled_capabilities(preferences: UserPreferences) -> list[str]:
    return [key for key, enabled in preferences.capabilities.items() if enabled]


def has_capability(preferences: UserPreferences, capability: str) -> bool:
    return preferences.capabilities.get(capability) is True


def with_capability(
    preferences: UserPreferences, capability: str, enabled: bool,
) -> UserPreferences:
    """Return a copy with *capability* toggled.  Unknown keys are rejected."""
    if capability not in KNOWN_CAPABILITIES:
        raise ValueError(f"Unknown capability: {capability}")
    capabilities = {**preferences.capabilities, capability: enabled}
    return preferences.model_copy(update={"capabilities": capabilities})
