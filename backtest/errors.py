"""Exceptions raised by the simulator.

Per-round data problems are recoverable (skip the round); configuration and
ordering problems are not. A bust is a result status, not an exception.
"""


class SkippableInputError(ValueError):
    """A round that cannot be traded. The run skips it and continues."""

    def __init__(self, reason: str, detail: str = ""):
        self.reason = reason
        self.detail = detail
        super().__init__(f"{reason}: {detail}" if detail else reason)


class ConfigurationError(ValueError):
    """Invalid simulation parameters. Raised before any round is processed."""


class OrderingError(ValueError):
    """Rounds were not supplied in ascending epoch / lock time order."""
