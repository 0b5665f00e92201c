"""Exceptions raised by the sample-design pipeline.

Every failure is fatal for the run; ``pipeline.main`` logs the message and
exits non-zero. Nothing is retried.
"""
from __future__ import annotations

from typing import Iterable


class SampleDesignError(Exception):
    """Base class for all sample-design failures."""


class InputReadFailure(SampleDesignError):
    """A source file, layer or remote dataset is missing or malformed."""


class InvalidInput(SampleDesignError):
    """Records reached the size calculator without a usable stratum label."""

    def __init__(self, message: str, identifiers: Iterable[str] = ()) -> None:
        self.identifiers = [str(i) for i in identifiers]
        if self.identifiers:
            shown = ", ".join(self.identifiers[:20])
            more = len(self.identifiers) - 20
            if more > 0:
                shown += f" (+{more} more)"
            message = f"{message}: {shown}"
        super().__init__(message)


class EmptyPopulation(SampleDesignError):
    """No stratum has enough records to be sampled."""


class SamplingFailure(SampleDesignError):
    """The spatially balanced sampler failed or returned an inconsistent sample."""


class OutputWriteFailure(SampleDesignError):
    """The sample could not be written to its destination."""
