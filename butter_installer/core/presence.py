"""Process-wide "current activity" state.

A presence channel mirrors what the launcher is doing (choosing a version,
installing, playing) to an external observer. The installer drives it
through explicit lifecycle calls instead of reaching for a global.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from typing import Protocol

import structlog

from butter_installer.core.types import GameVersion

logger = structlog.get_logger()


@dataclass(frozen=True)
class Activity:
    """Snapshot of the current activity."""

    details: str
    state: str | None = None
    started_at: float = field(default_factory=time.time)


class PresenceChannel(Protocol):
    """Lifecycle of a presence side channel."""

    def connect(self) -> None: ...

    def set_state(self, details: str, state: str | None = None) -> None: ...

    def clear(self) -> None: ...

    def disconnect(self) -> None: ...


class LocalPresence:
    """In-process presence channel that records and logs activity changes."""

    CHOOSING_VERSION = "Choosing Version"

    def __init__(self) -> None:
        self.connected = False
        self.activity: Activity | None = None
        self.history: list[Activity] = []

    def connect(self) -> None:
        self.connected = True
        logger.info("presence_connected")
        self.set_state(self.CHOOSING_VERSION)

    def set_state(self, details: str, state: str | None = None) -> None:
        if self.activity is not None and self.activity.details == details:
            # Keep the original start time when only the state line changes
            self.activity = replace(self.activity, state=state)
        else:
            self.activity = Activity(details=details, state=state)
        self.history.append(self.activity)
        logger.debug("presence_updated", details=details, state=state)

    def clear(self) -> None:
        logger.debug("presence_cleared")
        self.activity = None

    def disconnect(self) -> None:
        self.clear()
        self.connected = False
        logger.info("presence_disconnected")


def installing_activity(version: GameVersion) -> tuple[str, str]:
    """Details and state lines shown while a build installs."""
    return "Installing", version.display_name
