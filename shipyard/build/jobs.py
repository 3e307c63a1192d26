"""Job-count resolution for the build worker pool."""

from __future__ import annotations

import os
from typing import Optional

from ..errors import ConfigurationError


def available_parallelism() -> int:
    return os.cpu_count() or 1


def resolve_jobs(
    requested: Optional[int],
    *,
    configured: Optional[int] = None,
    cores: Optional[int] = None,
) -> int:
    """Return the worker count for ``-j``.

    ``None`` falls back to the configured value and then the core count.
    Negative values count down from the core count and never drop below 1.
    Zero is rejected wherever it comes from.
    """

    total = cores if cores is not None else available_parallelism()
    value = requested if requested is not None else configured
    if value is None:
        return max(total, 1)
    if value == 0:
        raise ConfigurationError("jobs may not be 0")
    if value < 0:
        return max(total + value, 1)
    return value
