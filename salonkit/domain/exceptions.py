"""
Domain-specific exception hierarchy for salonkit.

Remote failures are never raised; they travel as ``Err`` results. These
exceptions cover programming and configuration mistakes only.
"""


class SalonKitError(Exception):
    """Base class for all application-level errors."""


class ConfigurationError(SalonKitError):
    """Raised when the client is wired up with unusable settings."""


class InvalidTransitionError(SalonKitError):
    """Raised when a checkout session is moved out of a terminal state."""
