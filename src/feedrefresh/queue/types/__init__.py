"""Queue value types."""

from .job_options import JobOptions
from .job_outcome import JobOutcome

__all__ = [
    "JobOptions",
    "JobOutcome",
]
