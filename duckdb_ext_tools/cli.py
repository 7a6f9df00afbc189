"""
Command-line entry points.

  duckdb-ext-pack     append the footer to an existing library
  duckdb-ext-build    cargo build, then pack the cdylib it produced
  duckdb-ext-inspect  print the footer of an extension file

All three also work as cargo subcommands (``cargo duckdb-ext-build``):
cargo passes the subcommand name as the first argument, which is dropped.
Exit status is 0 on success, otherwise the failing error's exit_code.
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

from duckdb_ext_tools import __version__
from duckdb_ext_tools.config import settings
from duckdb_ext_tools.core import footer
from duckdb_ext_tools.core.introspect import PackOverrides
from duckdb_ext_tools.errors import IoError, PackError
from duckdb_ext_tools.io.schema import ExtensionMetadata
from duckdb_ext_tools.runner import Packager, pack_library

logger = logging.getLogger("duckdb_ext_tools")


def _configure_logging(quiet: bool) -> None:
    level = logging.ERROR if quiet else getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )
    logging.getLogger("duckdb_ext_tools").setLevel(level)


def _argv(argv: Optional[Sequence[str]], command: str) -> List[str]:
    args = list(sys.argv[1:] if argv is None else argv)
    if args and args[0] == command:
        args = args[1:]
    return args


def _split_passthrough(args: List[str]) -> Tuple[List[str], List[str]]:
    """Everything after the first ``--`` goes to cargo verbatim."""
    if "--" in args:
        i = args.index("--")
        return args[:i], args[i + 1:]
    return args, []


def _guarded(action: Callable[[], None]) -> int:
    try:
        action()
    except PackError as e:
        logger.error("%s", e)
        return e.exit_code
    return 0


def _add_metadata_args(p: argparse.ArgumentParser, required: bool) -> None:
    p.add_argument("-o", "--extension-path", required=required, metavar="EXTENSION-PATH",
                   help="output extension file")
    p.add_argument("-v", "--extension-version", required=required, metavar="EXTENSION-VERSION",
                   help="extension version, e.g. v1.0.0")
    p.add_argument("-p", "--duckdb-platform", required=required, metavar="DUCKDB-PLATFORM",
                   help="DuckDB platform, e.g. osx_arm64, linux_amd64")
    p.add_argument("-d", "--duckdb-version", required=required, metavar="DUCKDB-VERSION",
                   help="DuckDB version the extension targets, e.g. v1.4.2")
    p.add_argument("-a", "--abi-type", default=settings.DEFAULT_ABI_TYPE, metavar="ABI-TYPE",
                   help="ABI type (default: %(default)s)")
    p.add_argument("-q", "--quiet", action="store_true", help="only print errors")
    p.add_argument("--report", type=Path, metavar="FILE",
                   help="also write a JSON pack report to FILE")
    p.add_argument("-V", "--version", action="version", version=f"%(prog)s {__version__}")


# ── duckdb-ext-pack ──────────────────────────────────────────────────────────

def build_pack_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="duckdb-ext-pack",
        description="Append DuckDB extension metadata to a dynamic library.",
    )
    p.add_argument("-i", "--library-path", required=True, type=Path, metavar="LIBRARY-PATH",
                   help="input dynamic library")
    _add_metadata_args(p, required=True)
    return p


def pack_main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_pack_parser().parse_args(_argv(argv, "duckdb-ext-pack"))
    _configure_logging(args.quiet)

    metadata = ExtensionMetadata(
        abi_type=args.abi_type,
        extension_version=args.extension_version,
        platform=args.duckdb_platform,
        engine_version=args.duckdb_version,
    )
    return _guarded(lambda: pack_library(
        args.library_path,
        Path(args.extension_path),
        metadata,
        report_path=args.report,
    ))


# ── duckdb-ext-build ─────────────────────────────────────────────────────────

def build_build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="duckdb-ext-build",
        description="Build with cargo and package the resulting cdylib as a DuckDB extension.",
        epilog="Arguments after -- are passed to `cargo build` unchanged.",
    )
    p.add_argument("-m", "--manifest-path", type=Path, metavar="MANIFEST-PATH",
                   help="path to Cargo.toml (default: nearest one in . or a parent)")
    p.add_argument("--messages", metavar="FILE",
                   help="read cargo JSON output from FILE ('-' for stdin) instead of building")
    _add_metadata_args(p, required=False)
    return p


def build_main(argv: Optional[Sequence[str]] = None) -> int:
    own, passthrough = _split_passthrough(_argv(argv, "duckdb-ext-build"))
    args = build_build_parser().parse_args(own)
    _configure_logging(args.quiet)

    overrides = PackOverrides(
        extension_path=Path(args.extension_path) if args.extension_path else None,
        extension_version=args.extension_version,
        platform=args.duckdb_platform,
        engine_version=args.duckdb_version,
        abi_type=args.abi_type,
    )

    def run() -> None:
        if args.messages is None:
            Packager(
                manifest_path=args.manifest_path,
                overrides=overrides,
                build_args=passthrough,
                report_path=args.report,
            ).run()
            return
        if args.messages == "-":
            _run_from(sys.stdin)
            return
        try:
            fh = open(args.messages, encoding="utf-8", errors="replace")
        except OSError as e:
            raise IoError(f"cannot read build output {args.messages}: {e}") from e
        with fh:
            _run_from(fh)

    def _run_from(lines) -> None:
        Packager(
            manifest_path=args.manifest_path,
            overrides=overrides,
            build_args=passthrough,
            build=False,
            messages=lines,
            report_path=args.report,
        ).run()

    return _guarded(run)


# ── duckdb-ext-inspect ───────────────────────────────────────────────────────

def build_inspect_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="duckdb-ext-inspect",
        description="Print the metadata footer of a DuckDB extension file.",
    )
    p.add_argument("extension", type=Path, help="extension file")
    p.add_argument("--json", action="store_true", help="print as JSON")
    p.add_argument("-V", "--version", action="version", version=f"%(prog)s {__version__}")
    return p


def inspect_main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_inspect_parser().parse_args(_argv(argv, "duckdb-ext-inspect"))
    _configure_logging(quiet=True)

    def run() -> None:
        try:
            with open(args.extension, "rb") as f:
                f.seek(0, 2)
                f.seek(max(0, f.tell() - footer.FOOTER_SIZE))
                tail = f.read()
        except OSError as e:
            raise IoError(f"cannot read {args.extension}: {e}") from e
        metadata = footer.decode(tail)
        if args.json:
            print(json.dumps(metadata.model_dump(), indent=2, sort_keys=True))
        else:
            for name, value in metadata.model_dump().items():
                print(f"{name}: {value}")

    return _guarded(run)


if __name__ == "__main__":
    raise SystemExit(build_main())
