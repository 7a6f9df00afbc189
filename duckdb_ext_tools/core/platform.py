"""
Platform resolver — map a Rust target triple to a DuckDB platform tag.

Pure lookup against a fixed table.  The host's own triple is derived
from the interpreter's view of the machine when no triple is given.
"""
import platform
from pathlib import PurePath
from types import MappingProxyType
from typing import Mapping, Optional, Union

from duckdb_ext_tools.errors import UnknownPlatform


PLATFORM_TABLE: Mapping[str, str] = MappingProxyType({
    # macOS
    "x86_64-apple-darwin":        "osx_amd64",
    "aarch64-apple-darwin":       "osx_arm64",
    # Linux, glibc
    "x86_64-unknown-linux-gnu":   "linux_amd64",
    "aarch64-unknown-linux-gnu":  "linux_arm64",
    # Linux, musl
    "x86_64-unknown-linux-musl":  "linux_amd64_musl",
    "aarch64-unknown-linux-musl": "linux_arm64_musl",
    # Windows
    "x86_64-pc-windows-msvc":     "windows_amd64",
    "aarch64-pc-windows-msvc":    "windows_arm64",
    "x86_64-pc-windows-gnu":      "windows_amd64_mingw",
})

_ARCH_ALIASES = {
    "x86_64": "x86_64",
    "amd64": "x86_64",
    "arm64": "aarch64",
    "aarch64": "aarch64",
}


def host_triple() -> str:
    """Best-effort Rust triple for the machine running this process."""
    system = platform.system()
    machine = platform.machine().lower()
    arch = _ARCH_ALIASES.get(machine, machine)

    if system == "Darwin":
        return f"{arch}-apple-darwin"
    if system == "Linux":
        libc, _ = platform.libc_ver()
        env = "gnu" if libc == "glibc" else "musl"
        return f"{arch}-unknown-linux-{env}"
    if system == "Windows":
        return f"{arch}-pc-windows-msvc"
    return f"{arch}-unknown-{system.lower()}"


def resolve_platform(triple: Optional[str] = None) -> str:
    """
    Return the DuckDB platform tag for *triple* (host triple if None).

    Raises
    ------
    UnknownPlatform
        If the triple is not in PLATFORM_TABLE.
    """
    if triple is None:
        triple = host_triple()
    try:
        return PLATFORM_TABLE[triple]
    except KeyError:
        raise UnknownPlatform(triple, PLATFORM_TABLE.keys()) from None


def find_known_triple(path: Union[str, PurePath]) -> Optional[str]:
    """First path component that is a known triple (target/<triple>/release/…)."""
    for part in PurePath(path).parts:
        if part in PLATFORM_TABLE:
            return part
    return None


def platform_arch(platform_tag: str) -> Optional[str]:
    """Architecture token of a platform tag: ``linux_amd64_musl`` → ``amd64``."""
    parts = platform_tag.split("_")
    if len(parts) < 2:
        return None
    return parts[1]
