"""Error taxonomy shared by the test and publish commands."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple


FAILURE_EXIT_CODE = 101


class ShipyardError(RuntimeError):
    """Base class for every error surfaced to the command line."""

    exit_code: int = FAILURE_EXIT_CODE

    def details(self) -> List[str]:
        return []


class ConfigurationError(ShipyardError):
    """Raised when flags or manifests describe an invalid request."""


class NetworkError(ShipyardError):
    """Raised when a network operation cannot reach the registry."""


class AuthError(ShipyardError):
    """Raised when no usable registry token was resolved."""


class LockMismatch(ShipyardError):
    """Raised under ``--locked`` when the lock state would change."""


class PublishRejected(ShipyardError):
    """Raised when preflight checks refuse to publish a package."""


class UploadError(ShipyardError):
    """Raised when the registry refuses an upload."""


class PublishFailure(ShipyardError):
    """Raised after a workspace publish in which some packages were not published."""

    def __init__(self, message: str, details: Sequence[str] = ()) -> None:
        super().__init__(message)
        self._details = list(details)

    def details(self) -> List[str]:
        return list(self._details)


class PropagationTimeout(ShipyardError):
    """Raised by the index poller; the publish pipeline downgrades it to a warning."""

    def __init__(self, name: str, version: str, timeout: float) -> None:
        super().__init__(
            f"timed out waiting for {name} v{version} to be available in the registry index "
            f"after {timeout:g}s"
        )
        self.name = name
        self.version = version
        self.timeout = timeout


@dataclass(frozen=True)
class UnitFailure:
    package: str
    target: str
    mode: str
    message: str

    def describe(self) -> str:
        return f"{self.package} ({self.target}, {self.mode}): {self.message}"


class BuildFailure(ShipyardError):
    """Raised when one or more compiler invocations fail."""

    def __init__(self, failures: Sequence[UnitFailure]) -> None:
        self.failures: Tuple[UnitFailure, ...] = tuple(failures)
        if len(self.failures) == 1:
            message = f"could not compile `{self.failures[0].package}` ({self.failures[0].target})"
        else:
            message = f"could not compile {len(self.failures)} build units"
        super().__init__(message)

    def details(self) -> List[str]:
        return [failure.describe() for failure in self.failures]


@dataclass(frozen=True)
class CaseFailure:
    package: str
    target: str
    case: Optional[str] = None

    def describe(self) -> str:
        if self.case:
            return f"{self.package} {self.target}: {self.case}"
        return f"{self.package} {self.target}"


class TestFailure(ShipyardError):
    """Raised after a test run that reported failing cases."""

    __test__ = False  # keep pytest from collecting this class

    def __init__(self, failures: Sequence[CaseFailure], *, stopped_early: bool = False) -> None:
        self.failures: Tuple[CaseFailure, ...] = tuple(failures)
        self.stopped_early = stopped_early
        targets = sorted({f"{failure.package}/{failure.target}" for failure in self.failures})
        message = f"test failed in {len(targets)} target(s): {', '.join(targets)}"
        if stopped_early:
            message += " (use --no-fail-fast to run all targets)"
        super().__init__(message)

    def details(self) -> List[str]:
        return [failure.describe() for failure in self.failures]


__all__ = [
    "FAILURE_EXIT_CODE",
    "AuthError",
    "BuildFailure",
    "CaseFailure",
    "ConfigurationError",
    "LockMismatch",
    "NetworkError",
    "PropagationTimeout",
    "PublishFailure",
    "PublishRejected",
    "ShipyardError",
    "TestFailure",
    "UnitFailure",
    "UploadError",
]
