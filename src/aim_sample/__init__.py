"""AIM validation sample design package."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("aim-sample")
except PackageNotFoundError:  # pragma: no cover
    __version__ = "0.0.0"

from . import config, strata  # re-export for convenience
from .errors import (
    EmptyPopulation,
    InputReadFailure,
    InvalidInput,
    OutputWriteFailure,
    SampleDesignError,
    SamplingFailure,
)

__all__ = [
    "config",
    "strata",
    "SampleDesignError",
    "InputReadFailure",
    "InvalidInput",
    "EmptyPopulation",
    "SamplingFailure",
    "OutputWriteFailure",
    "__version__",
]
