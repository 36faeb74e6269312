"""Error taxonomy for the wire-fitted learner."""

from __future__ import annotations


class WireFitError(Exception):
    """Base class for all wire-fitting errors."""


class DimensionMismatchError(WireFitError, ValueError):
    """Raised when a state, action or approximator output has the wrong length."""


class InvalidSequenceError(WireFitError, RuntimeError):
    """Raised when choose/update calls do not alternate."""


class ConfigurationError(WireFitError, ValueError):
    """Raised for invalid construction-time or call parameters."""


class NumericDegeneracyError(ConfigurationError):
    """Raised when the interpolator smoothing constant cannot keep distances positive."""
