"""User-facing status output."""

from __future__ import annotations

import json
import sys
from typing import IO, Mapping, Optional, Sequence

from .config import COLOR_CHOICES, MESSAGE_FORMATS

_GREEN = "\033[1;32m"
_YELLOW = "\033[1;33m"
_RED = "\033[1;31m"
_CYAN = "\033[1;36m"
_RESET = "\033[0m"


class Shell:
    """Writes right-aligned status lines to stderr, or JSON events to stdout."""

    def __init__(
        self,
        *,
        message_format: str = "human",
        color: str = "auto",
        quiet: bool = False,
        verbose: int = 0,
        out: Optional[IO[str]] = None,
        err: Optional[IO[str]] = None,
    ) -> None:
        if message_format not in MESSAGE_FORMATS:
            raise ValueError(f"unknown message format {message_format!r}")
        if color not in COLOR_CHOICES:
            raise ValueError(f"unknown color choice {color!r}")
        self.message_format = message_format
        self.color = color
        self.quiet = quiet
        self.verbose = verbose
        self._out = out
        self._err = err

    @property
    def out(self) -> IO[str]:
        return self._out or sys.stdout

    @property
    def err(self) -> IO[str]:
        return self._err or sys.stderr

    @property
    def is_json(self) -> bool:
        return self.message_format == "json"

    def _colored(self, text: str, code: str) -> str:
        enabled = self.color == "always" or (self.color == "auto" and _isatty(self.err))
        return f"{code}{text}{_RESET}" if enabled else text

    def status(self, verb: str, message: str) -> None:
        if self.is_json:
            self.event(verb.lower().replace("-", "_"), message=message)
            return
        if self.quiet:
            return
        print(f"{self._colored(f'{verb:>12}', _GREEN)} {message}", file=self.err)

    def note(self, message: str) -> None:
        if self.is_json or self.quiet:
            return
        print(f"{self._colored('note', _CYAN)}: {message}", file=self.err)

    def warn(self, message: str) -> None:
        if self.is_json:
            self.event("warning", message=message)
            return
        print(f"{self._colored('warning', _YELLOW)}: {message}", file=self.err)

    def error(self, message: str, details: Sequence[str] = ()) -> None:
        if self.is_json:
            self.event("error", message=message, details=list(details))
            return
        print(f"{self._colored('error', _RED)}: {message}", file=self.err)
        if not details:
            return
        if self.message_format == "short":
            for line in details:
                print(f"    {line.splitlines()[0] if line else line}", file=self.err)
            return
        print("", file=self.err)
        for line in details:
            print(f"    {line}", file=self.err)

    def stdout(self, text: str) -> None:
        if not self.is_json:
            print(text, file=self.out)

    def event(self, reason: str, **fields: object) -> None:
        payload: Mapping[str, object] = {"reason": reason, **fields}
        print(json.dumps(payload, default=str), file=self.out)


def _isatty(stream: IO[str]) -> bool:
    isatty = getattr(stream, "isatty", None)
    return bool(isatty and isatty())
