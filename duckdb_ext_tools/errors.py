"""
Errors — taxonomy of terminal failures, each with its own exit code.

Every error ends the current invocation; nothing here is retried.
The CLI maps ``exit_code`` straight onto the process exit status.
"""
from __future__ import annotations

from typing import Iterable, Optional


class PackError(Exception):
    """Base class for all packaging failures."""

    exit_code: int = 1


class ConfigError(PackError):
    """A required parameter is missing and cannot be derived."""

    exit_code = 3


class EngineVersionUnresolved(ConfigError):
    """No DuckDB dependency in the manifest and no explicit version."""


class FieldTooLong(ConfigError):
    """A metadata value does not fit its fixed-width footer field."""

    def __init__(self, field: str, value: str, width: int):
        self.field = field
        self.value = value
        self.width = width
        size = len(value.encode("utf-8"))
        super().__init__(
            f"{field} {value!r} is {size} bytes; the footer field holds at most {width}"
        )


class ArtifactNotFound(PackError):
    """Zero or several cdylib artifacts qualify for packaging."""

    exit_code = 4

    def __init__(self, message: str, candidates: Iterable[str] = ()):
        self.candidates = list(candidates)
        if self.candidates:
            listing = "\n".join(f"  - {c}" for c in self.candidates)
            message = f"{message}\ncandidates:\n{listing}"
        super().__init__(message)


class UnknownPlatform(PackError):
    """Target triple has no entry in the platform table."""

    exit_code = 5

    def __init__(self, triple: str, known: Iterable[str]):
        self.triple = triple
        self.known = sorted(known)
        listing = "\n".join(f"  - {t}" for t in self.known)
        super().__init__(
            f"no DuckDB platform known for target triple {triple!r}; "
            f"pass --duckdb-platform explicitly or build for one of:\n{listing}"
        )


class BuildFailed(PackError):
    """cargo exited non-zero, was killed, or could not be started."""

    exit_code = 6

    def __init__(self, message: str, returncode: Optional[int] = None):
        self.returncode = returncode
        super().__init__(message)


class IoError(PackError):
    """Filesystem failure while reading the library or writing the extension."""

    exit_code = 7


class MalformedFooter(PackError):
    """Bytes do not end with a valid extension metadata footer."""

    exit_code = 8
