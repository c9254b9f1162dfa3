"""
Exception types raised by the chart engine.

Only malformed input and calendar failures are fatal. Recoverable conditions
(missing longitude, longitude sign mismatch, lookup defaults) are reported
through the diagnostics block of the analysis instead of being raised.
"""


class BaziError(Exception):
    """Base class for every error raised by the engine."""


class InvalidBirthInput(BaziError, ValueError):
    """Unparseable datetime, unknown timezone, unknown gender or bad longitude."""


class CalendarResolutionError(BaziError, RuntimeError):
    """The calendar collaborator could not produce pillars for a date."""
