"""
Exception hierarchy for the daily distribution run.

Only failures that abort a whole run are exceptions. Missing market context
and malformed generator output degrade to documented defaults, per-user
write failures are captured on ``UserFeedResult``, and telemetry failures
are logged and dropped.
"""

from __future__ import annotations


class SignalDeskError(Exception):
    """Base class for all run-level failures."""


class UpstreamFailure(SignalDeskError):
    """Market context could not be loaded or the idea generator raised.

    Attributes:
        step: Pipeline step that failed, e.g. ``"load_context"``.
    """

    def __init__(self, step: str, message: str) -> None:
        super().__init__(f"{step}: {message}")
        self.step = step


class PersistenceFailure(SignalDeskError):
    """The canonical idea pool for a date could not be replaced."""
