"""Exceptions raised by the download series pipeline."""


class DownloadSeriesError(Exception):
    """Base class for all pipeline errors."""

    pass


class ConfigError(DownloadSeriesError, ValueError):
    """Exception raised when a configuration value cannot be used."""

    pass


class InvariantViolation(DownloadSeriesError, ValueError):
    """Exception raised when stored data contradicts the series invariants.

    Always fatal for the cycle: nothing is written once this is raised.
    """

    pass


class InvalidGapError(InvariantViolation):
    """Exception raised when the gap to the last snapshot is not positive."""

    pass


class NegativeDeltaError(InvariantViolation):
    """Exception raised when a negative total reaches a shape-based strategy."""

    pass


class StoreError(DownloadSeriesError):
    """Exception raised when a write to the series store fails."""

    pass
