"""Wire-fitted Q-learning for continuous states and actions."""

from .approximator import BackpropTrainer, MLPApproximator
from .config import LearnerConfig, load_config
from .errors import (
    ConfigurationError,
    DimensionMismatchError,
    InvalidSequenceError,
    NumericDegeneracyError,
    WireFitError,
)
from .interpolator import WireFitInterpolator, make_interpolator
from .learner import WireFitQLearn, build_learner
from .types import Wire

__all__ = [
    "BackpropTrainer",
    "MLPApproximator",
    "LearnerConfig",
    "load_config",
    "ConfigurationError",
    "DimensionMismatchError",
    "InvalidSequenceError",
    "NumericDegeneracyError",
    "WireFitError",
    "WireFitInterpolator",
    "make_interpolator",
    "WireFitQLearn",
    "build_learner",
    "Wire",
]
