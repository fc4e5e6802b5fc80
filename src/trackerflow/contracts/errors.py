"""Exception types raised across subsystem boundaries.

Evaluation never raises for bad runtime data (those become warnings or
``None`` results). These exceptions are for configuration and definition
errors that a caller must fix before anything can run.
"""


class TrackerflowError(Exception):
    """Base class for all trackerflow errors."""


class DefinitionError(TrackerflowError, ValueError):
    """Raised when a dynamic-options definition or connector is invalid."""


class SettingsError(TrackerflowError):
    """Raised when settings cannot be loaded or fail validation."""
