"""
codeduel - Head-to-head coding competitions between language models.

Every model attempts the same test-defined challenge; the fastest passing
solution wins, and everyone gets one more shot at beating it.
"""

from codeduel.controller import JobController
from codeduel.models.job import JobConfig, ModelResult
from codeduel.parser import parse_evidence, parse_report, parse_transcript

__version__ = "0.1.0"
__all__ = [
    "JobConfig",
    "JobController",
    "ModelResult",
    "__version__",
    "parse_evidence",
    "parse_report",
    "parse_transcript",
]
