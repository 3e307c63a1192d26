"""Workspace-aware test orchestration and registry publishing."""

__version__ = "0.1.0"
from .config import GlobalOptions, ShipyardConfig, load_config
from .errors import (
    AuthError,
    BuildFailure,
    ConfigurationError,
    LockMismatch,
    NetworkError,
    PropagationTimeout,
    PublishFailure,
    PublishRejected,
    ShipyardError,
    TestFailure,
    UploadError,
)
from .ops import Context, TestOptions, load_context, publish, run_benches, run_tests

__all__ = [
    "__version__",
    "AuthError",
    "BuildFailure",
    "ConfigurationError",
    "Context",
    "GlobalOptions",
    "LockMismatch",
    "NetworkError",
    "PropagationTimeout",
    "PublishFailure",
    "PublishRejected",
    "ShipyardConfig",
    "ShipyardError",
    "TestFailure",
    "TestOptions",
    "UploadError",
    "load_config",
    "load_context",
    "publish",
    "run_benches",
    "run_tests",
]
