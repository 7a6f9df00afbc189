"""
Build introspector — pick the library artifact and derive footer metadata.

Two steps, kept separate so each can be driven from fixtures:

  1. select_artifact   cdylib artifacts + manifest → the one library to pack
  2. resolve           artifact + manifest + overrides → Resolution

Every derivation is skipped when the caller supplied the value; a
derivation that would fail is never attempted in that case.
"""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Mapping, Optional, Sequence

from duckdb_ext_tools.core.manifest import ManifestData
from duckdb_ext_tools.core.messages import (
    BuildMessage,
    LibraryArtifact,
    library_artifacts,
    parse_package_id,
)
from duckdb_ext_tools.core.platform import find_known_triple, host_triple, resolve_platform
from duckdb_ext_tools.errors import ArtifactNotFound, ConfigError, EngineVersionUnresolved
from duckdb_ext_tools.io.schema import ExtensionMetadata
from duckdb_ext_tools.policy.profile import PackProfile

logger = logging.getLogger(__name__)

_REQ_OPERATOR = re.compile(r"^\s*(?:>=|<=|[=^~><])?\s*")
_EXACT_VERSION = re.compile(r"^\d+\.\d+\.\d+(?:[-+][0-9A-Za-z.+-]+)?$")


# ── Inputs / outputs ─────────────────────────────────────────────────────────

@dataclass(frozen=True)
class PackOverrides:
    """Caller-supplied values; each one bypasses its derivation."""

    extension_path: Optional[Path] = None
    extension_version: Optional[str] = None
    platform: Optional[str] = None
    engine_version: Optional[str] = None
    abi_type: Optional[str] = None


@dataclass(frozen=True)
class BuildContext:
    """How the build was invoked, as far as platform detection cares."""

    target_triple: Optional[str] = None

    @classmethod
    def from_build_args(
        cls,
        args: Sequence[str],
        environ: Optional[Mapping[str, str]] = None,
    ) -> "BuildContext":
        """``--target T`` / ``--target=T`` in cargo args, else $CARGO_BUILD_TARGET."""
        environ = os.environ if environ is None else environ
        args = list(args)
        for i, arg in enumerate(args):
            if arg == "--target" and i + 1 < len(args):
                return cls(target_triple=args[i + 1])
            if arg.startswith("--target="):
                return cls(target_triple=arg.split("=", 1)[1])
        return cls(target_triple=environ.get("CARGO_BUILD_TARGET") or None)


@dataclass(frozen=True)
class Resolution:
    """Everything the codec and writer need for one extension."""

    artifact: LibraryArtifact
    library_path: Path
    extension_path: Path
    metadata: ExtensionMetadata
    target_triple: Optional[str] = None


# ── Step 1: artifact selection ───────────────────────────────────────────────

def _normalize(name: str) -> str:
    return name.replace("-", "_")


def select_artifact(
    artifacts: Iterable[LibraryArtifact],
    package_name: Optional[str],
) -> LibraryArtifact:
    """
    Choose the library to pack.

    A single artifact whose crate name matches *package_name* wins.
    With no name match, a sole candidate is accepted.  Anything else is
    ambiguous.

    Raises
    ------
    ArtifactNotFound
        No cdylib artifact at all, or more than one plausible candidate.
    """
    # cargo may report the same file more than once (e.g. fresh + rebuilt)
    unique = {}
    for artifact in artifacts:
        unique.setdefault((artifact.crate_name, artifact.path), artifact)
    candidates: List[LibraryArtifact] = list(unique.values())
    logger.debug("cdylib candidates: %s", [c.describe() for c in candidates])

    if not candidates:
        raise ArtifactNotFound(
            "the build produced no cdylib artifact; "
            "set crate-type = [\"cdylib\"] under [lib] in Cargo.toml"
        )

    if package_name:
        wanted = _normalize(package_name)
        matches = [c for c in candidates if _normalize(c.crate_name) == wanted]
        if len(matches) == 1:
            return matches[0]
        if len(matches) > 1:
            raise ArtifactNotFound(
                f"several cdylib artifacts match package {package_name!r}",
                [c.describe() for c in matches],
            )

    if len(candidates) == 1:
        if package_name:
            logger.info(
                "no cdylib named after %s; using the only one built (%s)",
                package_name, candidates[0].crate_name,
            )
        return candidates[0]

    raise ArtifactNotFound(
        f"cannot tell which cdylib belongs to package {package_name!r}; "
        "pass -p/--package to cargo or --extension-path",
        [c.describe() for c in candidates],
    )


# ── Step 2: metadata derivation ──────────────────────────────────────────────

def _v(version: str) -> str:
    return version if version.startswith("v") else f"v{version}"


def derive_extension_version(manifest: ManifestData, artifact: Optional[LibraryArtifact]) -> str:
    version = manifest.package_version
    if version is None and artifact is not None:
        _, version = parse_package_id(artifact.package_id)
    if not version:
        raise ConfigError(
            f"{manifest.manifest_path} declares no package version; pass --extension-version"
        )
    return _v(version)


def derive_engine_version(manifest: ManifestData, engine_crates: Sequence[str]) -> str:
    """
    Version of the first engine crate the project depends on.

    The declared requirement is used with its operator stripped.  When it
    is not an exact x.y.z version the Cargo.lock resolution takes over.
    Crates only present in Cargo.lock (transitive) count as well.
    """
    for crate in engine_crates:
        if crate not in manifest.dependencies:
            continue
        requirement = manifest.dependencies[crate]
        declared = _REQ_OPERATOR.sub("", requirement.split(",")[0]).strip()
        if _EXACT_VERSION.match(declared):
            return _v(declared)
        locked = manifest.locked_versions.get(crate)
        if locked:
            logger.debug("%s requirement %r resolved to %s via Cargo.lock", crate, requirement, locked)
            return _v(locked)
        if declared:
            logger.warning(
                "%s requirement %r is not an exact version; the extension may not load",
                crate, requirement,
            )
            return _v(declared)

    for crate in engine_crates:
        locked = manifest.locked_versions.get(crate)
        if locked:
            logger.debug("%s found only in Cargo.lock at %s", crate, locked)
            return _v(locked)

    raise EngineVersionUnresolved(
        f"{manifest.manifest_path} has no dependency on any of "
        f"{', '.join(engine_crates)}; pass --duckdb-version"
    )


def resolve(
    artifact: LibraryArtifact,
    manifest: ManifestData,
    overrides: Optional[PackOverrides] = None,
    context: Optional[BuildContext] = None,
    profile: Optional[PackProfile] = None,
) -> Resolution:
    """Derive paths and metadata for *artifact*, honouring every override."""
    overrides = overrides or PackOverrides()
    context = context or BuildContext()
    profile = profile or PackProfile.default()

    if overrides.extension_path is not None:
        extension_path = Path(overrides.extension_path)
    else:
        stem = _normalize(manifest.package_name or artifact.crate_name)
        extension_path = artifact.path.parent / f"{stem}.{profile.extension_suffix}"

    extension_version = overrides.extension_version or derive_extension_version(manifest, artifact)
    engine_version = overrides.engine_version or derive_engine_version(manifest, profile.engine_crates)

    triple: Optional[str] = None
    if overrides.platform:
        platform = overrides.platform
    else:
        triple = context.target_triple or find_known_triple(artifact.path) or host_triple()
        platform = resolve_platform(triple)
        logger.debug("target triple %s → platform %s", triple, platform)

    metadata = ExtensionMetadata(
        abi_type=overrides.abi_type or profile.abi_type,
        extension_version=extension_version,
        platform=platform,
        engine_version=engine_version,
    )
    return Resolution(
        artifact=artifact,
        library_path=artifact.path,
        extension_path=extension_path,
        metadata=metadata,
        target_triple=triple,
    )


def introspect(
    messages: Iterable[BuildMessage],
    manifest: ManifestData,
    overrides: Optional[PackOverrides] = None,
    context: Optional[BuildContext] = None,
    profile: Optional[PackProfile] = None,
) -> Resolution:
    """select_artifact + resolve over a message stream."""
    profile = profile or PackProfile.default()
    artifacts = library_artifacts(
        messages, kind=profile.library_kind, suffixes=profile.library_suffixes
    )
    artifact = select_artifact(artifacts, manifest.package_name)
    return resolve(artifact, manifest, overrides, context, profile)
