"""Build units, job resolution and the compiler worker pool."""

from .compiler import CommandCompiler, CompileRequest, CompileResult, Compiler, RecordingCompiler
from .dispatcher import BuildDispatcher, BuildOutcome
from .jobs import resolve_jobs
from .units import ArtifactKind, BuildUnit, CompileMode, UnitKey

__all__ = [
    "ArtifactKind",
    "BuildDispatcher",
    "BuildOutcome",
    "BuildUnit",
    "CommandCompiler",
    "CompileMode",
    "CompileRequest",
    "CompileResult",
    "Compiler",
    "RecordingCompiler",
    "UnitKey",
    "resolve_jobs",
]
