"""Payroll period session state machine with transition validation."""

from __future__ import annotations

import logging
from enum import Enum

logger = logging.getLogger(__name__)


class SessionStatus(str, Enum):
    """Editing session status values."""

    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    DIRTY = "dirty"
    SAVING = "saving"
    ERROR = "error"


class InvalidTransitionError(Exception):
    """Raised when an invalid state transition is attempted."""

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class PeriodSessionStateMachine:
    """State machine for one period editing session.

    Allowed transitions:
    - idle → loading
    - loading → ready
    - loading → idle (load failed)
    - ready → dirty
    - ready → loading (period change)
    - dirty → saving
    - dirty → loading (period change, unsaved edits discarded)
    - saving → ready
    - saving → error
    - error → dirty
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        SessionStatus.IDLE: [SessionStatus.LOADING],
        SessionStatus.LOADING: [SessionStatus.READY, SessionStatus.IDLE],
        SessionStatus.READY: [SessionStatus.DIRTY, SessionStatus.LOADING],
        SessionStatus.DIRTY: [SessionStatus.SAVING, SessionStatus.LOADING],
        SessionStatus.SAVING: [SessionStatus.READY, SessionStatus.ERROR],
        SessionStatus.ERROR: [SessionStatus.DIRTY],
    }

    # Statuses where rows can be edited
    EDITABLE = {
        SessionStatus.READY,
        SessionStatus.DIRTY,
    }

    def __init__(self, status: SessionStatus = SessionStatus.IDLE):
        self.status = status

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)

    @classmethod
    def can_edit(cls, status: str) -> bool:
        return status in cls.EDITABLE

    def transition(self, to_status: SessionStatus) -> None:
        self.validate_transition(self.status.value, to_status.value)
        logger.debug("Period session %s -> %s", self.status.value, to_status.value)
        self.status = to_status

    @property
    def is_dirty(self) -> bool:
        return self.status == SessionStatus.DIRTY
