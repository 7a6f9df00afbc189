"""
Packager runner — top-level orchestration: cargo build → extension file.

Stages run strictly in order:

    IDLE → BUILDING (optional) → LOCATING → RESOLVING → ENCODING → WRITING → DONE

and any failure moves the packager to FAILED with the error kept in
``failure``.  A Packager runs once.

``pack_library`` is the low-level path (encode + write) shared by the
``duckdb-ext-pack`` command and the last two stages of the Packager.
"""
import logging
import os
import subprocess
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, Iterator, List, Mapping, Optional, Sequence

from duckdb_ext_tools.config import Settings, settings as default_settings
from duckdb_ext_tools.core import footer
from duckdb_ext_tools.core.introspect import (
    BuildContext,
    PackOverrides,
    resolve,
    select_artifact,
)
from duckdb_ext_tools.core.library import LibraryMeta, inspect_library, sha256_file
from duckdb_ext_tools.core.manifest import find_manifest, load_manifest
from duckdb_ext_tools.core.messages import iter_messages, library_artifacts
from duckdb_ext_tools.core.platform import platform_arch
from duckdb_ext_tools.errors import BuildFailed, ConfigError, IoError
from duckdb_ext_tools.io.schema import ExtensionMetadata, LibraryInfo, PackReport
from duckdb_ext_tools.io.writer import write_extension, write_report
from duckdb_ext_tools.policy.profile import PackProfile

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    """Packager lifecycle."""
    IDLE = "IDLE"
    BUILDING = "BUILDING"
    LOCATING = "LOCATING"
    RESOLVING = "RESOLVING"
    ENCODING = "ENCODING"
    WRITING = "WRITING"
    DONE = "DONE"
    FAILED = "FAILED"


@dataclass(frozen=True)
class PackResult:
    """Outcome of one successful pack."""
    library_path: Path
    extension_path: Path
    metadata: ExtensionMetadata
    target_triple: Optional[str] = None
    report_path: Optional[Path] = None


# ── cargo ────────────────────────────────────────────────────────────────────

def cargo_executable(
    config: Optional[Settings] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> str:
    """Settings.CARGO, else $CARGO (set when run as a cargo subcommand), else cargo."""
    config = config or default_settings
    environ = os.environ if environ is None else environ
    return config.CARGO or environ.get("CARGO") or "cargo"


def cargo_build_command(
    cargo: str,
    manifest_path: Optional[Path],
    build_args: Sequence[str],
) -> List[str]:
    cmd = [cargo, "build", "--message-format=json-render-diagnostics"]
    if manifest_path is not None:
        cmd += ["--manifest-path", str(manifest_path)]
    cmd += list(build_args)
    return cmd


def stream_build_output(cmd: Sequence[str]) -> Iterator[str]:
    """
    Run *cmd* and yield its stdout line by line as it is produced.

    stderr is inherited so cargo's human-readable diagnostics reach the
    user untouched.  After stdout closes the exit status is checked; a
    non-zero or signal exit raises BuildFailed.  If the consumer stops
    early the process is killed.

    Raises
    ------
    BuildFailed
        If the process cannot be started or does not exit with 0.
    """
    logger.info("   Running %s", " ".join(cmd))
    try:
        proc = subprocess.Popen(
            list(cmd),
            stdout=subprocess.PIPE,
            stderr=None,
            text=True,
            encoding="utf-8",
            errors="replace",
        )
    except OSError as e:
        raise BuildFailed(f"cannot start {cmd[0]}: {e}") from e

    finished = False
    try:
        for line in proc.stdout:
            yield line
        finished = True
    finally:
        proc.stdout.close()
        if not finished and proc.poll() is None:
            proc.kill()
        returncode = proc.wait()

    if returncode < 0:
        raise BuildFailed(f"{cmd[0]} build was killed by signal {-returncode}", returncode)
    if returncode != 0:
        raise BuildFailed(f"{cmd[0]} build exited with status {returncode}", returncode)


# ── Low-level pack ───────────────────────────────────────────────────────────

def _read_tail(path: Path, size: int) -> bytes:
    with open(path, "rb") as f:
        f.seek(0, os.SEEK_END)
        end = f.tell()
        f.seek(max(0, end - size))
        return f.read()


def _check_library(library_path: Path, metadata: ExtensionMetadata) -> LibraryMeta:
    """Inspect the input and warn about likely mistakes; never fails on content."""
    meta = inspect_library(str(library_path))
    try:
        tail = _read_tail(library_path, footer.FOOTER_SIZE)
    except OSError as e:
        raise IoError(f"cannot read library {library_path}: {e}") from e
    if footer.has_footer(tail):
        logger.warning(
            "%s already ends with an extension footer; packing it again nests footers",
            library_path,
        )

    expected = platform_arch(metadata.platform)
    if meta.arch and expected and meta.arch != expected:
        logger.warning(
            "%s is a %s %s binary but the footer says platform %s",
            library_path, meta.format, meta.arch, metadata.platform,
        )
    return meta


def pack_library(
    library_path: Path,
    extension_path: Path,
    metadata: ExtensionMetadata,
    report_path: Optional[Path] = None,
    target_triple: Optional[str] = None,
    on_stage: Optional[Callable[[Stage], None]] = None,
) -> PackResult:
    """
    Encode *metadata* and write ``library + footer`` to *extension_path*.

    Raises
    ------
    FieldTooLong
        Before anything is written, if a value does not fit its field.
    IoError
        If the library cannot be read or the extension cannot be written.
    """
    library_path = Path(library_path)
    extension_path = Path(extension_path)
    enter = on_stage or (lambda stage: None)

    enter(Stage.ENCODING)
    logger.info("     Packing ABI Type (%s)", metadata.abi_type)
    logger.info("     Packing Extension Version (%s)", metadata.extension_version)
    logger.info("     Packing DuckDB Version (%s)", metadata.engine_version)
    logger.info("     Packing DuckDB Platform (%s)", metadata.platform)
    footer_bytes = footer.encode(metadata)
    lib_meta = _check_library(library_path, metadata)

    enter(Stage.WRITING)
    write_extension(library_path, extension_path, footer_bytes)

    written_report = None
    if report_path is not None:
        try:
            extension_sha256 = sha256_file(extension_path)
            extension_size = extension_path.stat().st_size
        except OSError as e:
            raise IoError(f"cannot read back {extension_path}: {e}") from e
        report = PackReport(
            library=LibraryInfo(
                path=lib_meta.path,
                sha256=lib_meta.sha256,
                size_bytes=lib_meta.size_bytes,
                format=lib_meta.format,
                arch=lib_meta.arch,
            ),
            extension_path=str(extension_path),
            extension_sha256=extension_sha256,
            extension_size_bytes=extension_size,
            metadata=metadata,
            target_triple=target_triple,
        )
        written_report = write_report(report, Path(report_path))
        logger.info("     Report saved (%s)", written_report)

    logger.info("    Finished DuckDB Extension (%s)", extension_path)
    return PackResult(
        library_path=library_path,
        extension_path=extension_path,
        metadata=metadata,
        target_triple=target_triple,
        report_path=written_report,
    )


# ── Packager ─────────────────────────────────────────────────────────────────

class Packager:
    """
    Build (optionally), locate the cdylib, derive metadata, and pack it.

    Pass ``build=False`` with *messages* (lines of cargo JSON output, e.g.
    a saved log) to skip running cargo.
    """

    def __init__(
        self,
        manifest_path: Optional[Path] = None,
        overrides: Optional[PackOverrides] = None,
        build_args: Sequence[str] = (),
        build: bool = True,
        messages: Optional[Iterable[str]] = None,
        report_path: Optional[Path] = None,
        config: Optional[Settings] = None,
        profile: Optional[PackProfile] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        self.manifest_path = Path(manifest_path) if manifest_path else None
        self.overrides = overrides or PackOverrides()
        self.build_args = list(build_args)
        self.build = build
        self.messages = messages
        self.report_path = report_path
        self.config = config or default_settings
        self.profile = profile or PackProfile.default()
        self.environ = os.environ if environ is None else environ

        self.stage = Stage.IDLE
        self.failure: Optional[Exception] = None
        self.history: List[Stage] = [Stage.IDLE]

    def _enter(self, stage: Stage) -> None:
        logger.debug("packager: %s → %s", self.stage.value, stage.value)
        self.stage = stage
        self.history.append(stage)

    def _build_lines(self) -> Iterator[str]:
        cmd = cargo_build_command(
            cargo_executable(self.config, self.environ),
            self.manifest_path,
            self.build_args,
        )
        yield from stream_build_output(cmd)
        # cargo exited 0; what remains is picking among its artifacts
        self._enter(Stage.LOCATING)

    def run(self) -> PackResult:
        if self.stage != Stage.IDLE:
            raise RuntimeError(f"Packager already ran (stage {self.stage.value})")
        try:
            result = self._run()
        except Exception as e:
            self.failure = e
            self._enter(Stage.FAILED)
            raise
        self._enter(Stage.DONE)
        return result

    def _run(self) -> PackResult:
        manifest = load_manifest(self.manifest_path or find_manifest(Path.cwd()))

        if self.build:
            self._enter(Stage.BUILDING)
            lines: Iterable[str] = self._build_lines()
        else:
            if self.messages is None:
                raise ConfigError("no build requested and no build output given")
            self._enter(Stage.LOCATING)
            lines = self.messages

        artifacts = library_artifacts(
            iter_messages(lines),
            kind=self.profile.library_kind,
            suffixes=self.profile.library_suffixes,
        )
        artifact = select_artifact(artifacts, manifest.package_name)
        logger.info("     Found Library (%s)", artifact.path)

        self._enter(Stage.RESOLVING)
        context = BuildContext.from_build_args(self.build_args, self.environ)
        resolution = resolve(artifact, manifest, self.overrides, context, self.profile)

        return pack_library(
            resolution.library_path,
            resolution.extension_path,
            resolution.metadata,
            report_path=self.report_path,
            target_triple=resolution.target_triple,
            on_stage=self._enter,
        )
