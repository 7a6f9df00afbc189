"""
Manifest reader — the parts of Cargo.toml / Cargo.lock the packer needs.

Responsibilities:
  - Read the primary package name and version.
  - Collect declared dependency requirements, keyed by real crate name
    (renamed dependencies are resolved through ``package = "…"``).
  - Follow ``workspace = true`` inheritance to the workspace root.
  - Read resolved versions from Cargo.lock when one is present.

This module never runs cargo; it only reads files.
"""
from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from duckdb_ext_tools.errors import ConfigError

logger = logging.getLogger(__name__)

MANIFEST_NAME = "Cargo.toml"
LOCK_NAME = "Cargo.lock"


@dataclass(frozen=True)
class ManifestData:
    """What the introspector needs to know about the project."""

    manifest_path: Path
    package_name: Optional[str]          # None for a virtual workspace
    package_version: Optional[str]
    dependencies: Dict[str, str] = field(default_factory=dict)     # crate → requirement
    locked_versions: Dict[str, str] = field(default_factory=dict)  # crate → resolved


def _load_toml(path: Path) -> Dict[str, Any]:
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise ConfigError(f"manifest not found: {path}") from None
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"cannot read {path}: {e}") from None
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"{path} is not valid TOML: {e}") from None


def _find_workspace_root(manifest_path: Path, doc: Dict[str, Any]) -> Optional[Path]:
    """The manifest that declares [workspace] for *manifest_path*, if any."""
    if "workspace" in doc:
        return manifest_path
    for parent in manifest_path.parent.parents:
        candidate = parent / MANIFEST_NAME
        if not candidate.is_file():
            continue
        try:
            parent_doc = _load_toml(candidate)
        except ConfigError as e:
            logger.debug("ignoring unreadable parent manifest: %s", e)
            continue
        if "workspace" in parent_doc:
            return candidate
    return None


def find_manifest(start: Path) -> Path:
    """
    First Cargo.toml in *start* or one of its parents, as cargo finds it.

    Raises
    ------
    ConfigError
        If no directory up to the filesystem root holds one.
    """
    start = Path(start).resolve()
    for directory in (start, *start.parents):
        candidate = directory / MANIFEST_NAME
        if candidate.is_file():
            return candidate
    raise ConfigError(
        f"could not find {MANIFEST_NAME} in {start} or any parent directory"
    )


def _requirement(key: str, spec: Any, ws_deps: Dict[str, Any]) -> tuple[str, str]:
    """Resolve one dependency entry into (crate name, declared requirement)."""
    if isinstance(spec, str):
        return key, spec
    if not isinstance(spec, dict):
        return key, ""
    if spec.get("workspace") is True:
        inherited = ws_deps.get(key)
        if inherited is None:
            logger.warning("dependency %s inherits from workspace but is not declared there", key)
            return spec.get("package", key), ""
        return _requirement(key, inherited, {})
    version = spec.get("version", "")
    return spec.get("package", key), version if isinstance(version, str) else ""


def _collect_dependencies(doc: Dict[str, Any], ws_deps: Dict[str, Any]) -> Dict[str, str]:
    tables = [doc.get("dependencies") or {}]
    # platform-specific tables: [target.'cfg(…)'.dependencies]
    for target_table in (doc.get("target") or {}).values():
        if isinstance(target_table, dict):
            tables.append(target_table.get("dependencies") or {})

    deps: Dict[str, str] = {}
    for table in tables:
        for key, spec in table.items():
            name, requirement = _requirement(key, spec, ws_deps)
            deps.setdefault(name, requirement)
    return deps


def _read_lock(*directories: Path) -> Dict[str, str]:
    for directory in directories:
        lock_path = directory / LOCK_NAME
        if not lock_path.is_file():
            continue
        try:
            lock = _load_toml(lock_path)
        except ConfigError as e:
            logger.warning("ignoring %s", e)
            return {}
        versions: Dict[str, str] = {}
        for pkg in lock.get("package") or []:
            if not isinstance(pkg, dict):
                continue
            name, version = pkg.get("name"), pkg.get("version")
            if isinstance(name, str) and isinstance(version, str):
                versions.setdefault(name, version)
        logger.debug("read %d locked packages from %s", len(versions), lock_path)
        return versions
    return {}


def load_manifest(path: Path | str) -> ManifestData:
    """
    Read *path* (a Cargo.toml or the directory holding one).

    Raises
    ------
    ConfigError
        If the manifest is missing, unreadable, or inherits a version
        from a workspace that does not define one.
    """
    manifest_path = Path(path)
    if manifest_path.is_dir():
        manifest_path = manifest_path / MANIFEST_NAME
    manifest_path = manifest_path.resolve()

    doc = _load_toml(manifest_path)
    ws_path = _find_workspace_root(manifest_path, doc)
    ws_doc = doc if ws_path == manifest_path else (_load_toml(ws_path) if ws_path else {})
    workspace = ws_doc.get("workspace") or {}
    ws_deps = workspace.get("dependencies") or {}

    package = doc.get("package")
    if isinstance(package, dict):
        name = package.get("name")
        version = package.get("version")
        if isinstance(version, dict) and version.get("workspace") is True:
            version = (workspace.get("package") or {}).get("version")
            if version is None:
                raise ConfigError(
                    f"{manifest_path} inherits version.workspace but "
                    f"{ws_path or 'no workspace root'} defines no [workspace.package] version"
                )
        dependencies = _collect_dependencies(doc, ws_deps)
    else:
        # virtual workspace manifest
        name, version = None, None
        dependencies = {
            n: r for n, r in (_requirement(k, s, {}) for k, s in ws_deps.items())
        }

    lock_dirs = [manifest_path.parent]
    if ws_path is not None and ws_path.parent != manifest_path.parent:
        lock_dirs.append(ws_path.parent)

    return ManifestData(
        manifest_path=manifest_path,
        package_name=name if isinstance(name, str) else None,
        package_version=version if isinstance(version, str) else None,
        dependencies=dependencies,
        locked_versions=_read_lock(*lock_dirs),
    )
