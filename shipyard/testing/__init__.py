"""Test execution: serial artifacts, concurrent doctests."""

from .controller import TestController
from .doctests import DocBlock, DoctestScheduler, extract_blocks
from .results import ArtifactRun, ArtifactState, TestReport
from .runner import ProcessResult, ProcessRunner, RecordingRunner, SubprocessRunner

__all__ = [
    "ArtifactRun",
    "ArtifactState",
    "DocBlock",
    "DoctestScheduler",
    "ProcessResult",
    "ProcessRunner",
    "RecordingRunner",
    "SubprocessRunner",
    "TestController",
    "TestReport",
    "extract_blocks",
]
