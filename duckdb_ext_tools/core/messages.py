"""
Build messages — cargo's ``--message-format=json`` stdout as tagged variants.

Each stdout line is one JSON object whose ``reason`` field says what kind
of event it is.  Only ``compiler-artifact`` is modelled in full; the other
known reasons keep the few fields worth logging, and anything else becomes
an UnknownMessage so new cargo versions never break parsing.

Usage::

    for artifact in library_artifacts(iter_messages(proc.stdout)):
        ...
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Literal, Optional, Tuple, Type, Union

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)


# ── Variants ─────────────────────────────────────────────────────────────────

class Target(BaseModel):
    name: str
    kind: List[str] = Field(default_factory=list)
    crate_types: List[str] = Field(default_factory=list)
    src_path: Optional[str] = None


class CompilerArtifact(BaseModel):
    reason: Literal["compiler-artifact"] = "compiler-artifact"
    package_id: str
    manifest_path: Optional[str] = None
    target: Target
    filenames: List[str] = Field(default_factory=list)
    fresh: bool = False


class CompilerMessage(BaseModel):
    reason: Literal["compiler-message"] = "compiler-message"
    package_id: Optional[str] = None
    message: dict = Field(default_factory=dict)

    @property
    def level(self) -> str:
        return str(self.message.get("level", ""))

    @property
    def rendered(self) -> str:
        return str(self.message.get("rendered") or self.message.get("message") or "")


class BuildScriptExecuted(BaseModel):
    reason: Literal["build-script-executed"] = "build-script-executed"
    package_id: Optional[str] = None
    out_dir: Optional[str] = None


class BuildFinished(BaseModel):
    reason: Literal["build-finished"] = "build-finished"
    success: bool


class UnknownMessage(BaseModel):
    reason: str


BuildMessage = Union[
    CompilerArtifact, CompilerMessage, BuildScriptExecuted, BuildFinished, UnknownMessage
]

_VARIANTS: Dict[str, Type[BaseModel]] = {
    "compiler-artifact": CompilerArtifact,
    "compiler-message": CompilerMessage,
    "build-script-executed": BuildScriptExecuted,
    "build-finished": BuildFinished,
}


# ── Parsing ──────────────────────────────────────────────────────────────────

def parse_message(line: str) -> Optional[BuildMessage]:
    """
    Parse one stdout line.  Returns None for blank or non-JSON lines.

    A line with a known reason whose payload does not validate is kept as
    an UnknownMessage rather than dropped.
    """
    line = line.strip()
    if not line:
        return None
    try:
        payload = json.loads(line)
    except json.JSONDecodeError:
        logger.debug("skipping non-JSON build output: %.120s", line)
        return None
    if not isinstance(payload, dict) or not isinstance(payload.get("reason"), str):
        logger.debug("skipping build output without a reason: %.120s", line)
        return None

    reason = payload["reason"]
    variant = _VARIANTS.get(reason)
    if variant is None:
        return UnknownMessage(reason=reason)
    try:
        return variant.model_validate(payload)
    except ValidationError as e:
        logger.warning("unreadable %s message: %s", reason, e.errors()[0].get("msg"))
        return UnknownMessage(reason=reason)


def iter_messages(lines: Iterable[str]) -> Iterator[BuildMessage]:
    """Lazily parse a stream of lines, skipping the ones that are not messages."""
    for line in lines:
        message = parse_message(line)
        if message is not None:
            yield message


# ── Library artifacts ────────────────────────────────────────────────────────

@dataclass(frozen=True)
class LibraryArtifact:
    """One dynamic library produced by the build."""

    path: Path
    crate_name: str
    target_kind: frozenset
    package_id: str

    def describe(self) -> str:
        return f"{self.crate_name}: {self.path}"


def parse_package_id(package_id: str) -> Tuple[Optional[str], Optional[str]]:
    """
    Split a cargo package id into (name, version).

    Handles both spec formats:
      ``path+file:///src/quack#0.4.0``
      ``registry+https://github.com/rust-lang/crates.io-index#duckdb@1.4.2``
    and the legacy ``quack 0.4.0 (path+file:///src/quack)``.
    """
    if "#" in package_id:
        url, fragment = package_id.rsplit("#", 1)
        if "@" in fragment:
            name, version = fragment.split("@", 1)
            return name, version
        name = url.rstrip("/").rsplit("/", 1)[-1] or None
        return name, fragment or None
    parts = package_id.split()
    if len(parts) >= 2:
        return parts[0], parts[1]
    return None, None


def library_artifacts(
    messages: Iterable[BuildMessage],
    kind: str = "cdylib",
    suffixes: Iterable[str] = (".so", ".dylib", ".dll"),
) -> Iterator[LibraryArtifact]:
    """
    Yield a LibraryArtifact for every dynamic-library file the build produced.

    Compiler diagnostics seen on the way are forwarded to the log.
    """
    suffixes = frozenset(suffixes)
    for message in messages:
        if isinstance(message, CompilerMessage):
            if message.rendered:
                log = logger.error if message.level == "error" else logger.warning
                log("%s", message.rendered.rstrip())
            continue
        if isinstance(message, BuildFinished) and not message.success:
            logger.warning("cargo reported build-finished with success=false")
            continue
        if not isinstance(message, CompilerArtifact):
            continue
        if kind not in message.target.kind:
            continue
        for filename in message.filenames:
            path = Path(filename)
            if path.suffix not in suffixes:
                continue
            yield LibraryArtifact(
                path=path,
                crate_name=message.target.name,
                target_kind=frozenset(message.target.kind),
                package_id=message.package_id,
            )
