"""
Library reader — identify the container format and CPU of a dynamic library.

Responsibilities:
  - Hash the file (SHA-256) and record its size.
  - Recognise ELF (via pyelftools), Mach-O and PE by their headers.
  - Report the architecture as a DuckDB platform token (amd64 / arm64).

Used only to cross-check the footer's platform against the binary; an
unrecognised file is not an error.
"""
import hashlib
import logging
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from elftools.common.exceptions import ELFError
from elftools.elf.elffile import ELFFile

from duckdb_ext_tools.errors import IoError

logger = logging.getLogger(__name__)

_ELF_ARCH = {
    "EM_X86_64": "amd64",
    "EM_AARCH64": "arm64",
}

_MACHO_MAGIC_64 = 0xFEEDFACF
_MACHO_FAT_MAGIC = 0xCAFEBABE
_MACHO_ARCH = {
    0x01000007: "amd64",
    0x0100000C: "arm64",
}

_PE_ARCH = {
    0x8664: "amd64",
    0xAA64: "arm64",
}


@dataclass(frozen=True)
class LibraryMeta:
    """Structural facts about a dynamic library file."""

    path: str
    sha256: str
    size_bytes: int
    format: str              # ELF | MACHO | PE | UNKNOWN
    arch: Optional[str] = None


def sha256_file(path: Path) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            h.update(chunk)
    return h.hexdigest()


def _elf_arch(path: Path) -> Optional[str]:
    with open(path, "rb") as f:
        elffile = ELFFile(f)
        machine = elffile.header.e_machine
    return _ELF_ARCH.get(machine)


def _macho_arch(head: bytes) -> Tuple[bool, Optional[str]]:
    if len(head) < 8:
        return False, None
    magic_le, cputype = struct.unpack_from("<Ii", head, 0)
    if magic_le == _MACHO_MAGIC_64:
        return True, _MACHO_ARCH.get(cputype & 0xFFFFFFFF)
    (magic_be,) = struct.unpack_from(">I", head, 0)
    if magic_be == _MACHO_FAT_MAGIC:
        # universal binary: several architectures, none authoritative
        return True, None
    return False, None


def _pe_arch(head: bytes) -> Tuple[bool, Optional[str]]:
    if len(head) < 0x40 or head[:2] != b"MZ":
        return False, None
    (pe_offset,) = struct.unpack_from("<I", head, 0x3C)
    if len(head) < pe_offset + 6 or head[pe_offset:pe_offset + 4] != b"PE\x00\x00":
        return False, None
    (machine,) = struct.unpack_from("<H", head, pe_offset + 4)
    return True, _PE_ARCH.get(machine)


def inspect_library(path: str) -> LibraryMeta:
    """
    Open *path* and return its format and architecture.

    Raises
    ------
    IoError
        If the file cannot be read.
    """
    p = Path(path)
    try:
        digest = sha256_file(p)
        size = p.stat().st_size
        with open(p, "rb") as f:
            head = f.read(4096)
    except OSError as e:
        raise IoError(f"cannot read library {p}: {e}") from e

    if head[:4] == b"\x7fELF":
        try:
            arch = _elf_arch(p)
        except (ELFError, ValueError, struct.error) as e:
            logger.warning("%s looks like ELF but does not parse: %s", p, e)
            arch = None
        return LibraryMeta(str(p), digest, size, "ELF", arch)

    is_macho, arch = _macho_arch(head)
    if is_macho:
        return LibraryMeta(str(p), digest, size, "MACHO", arch)

    is_pe, arch = _pe_arch(head)
    if is_pe:
        return LibraryMeta(str(p), digest, size, "PE", arch)

    return LibraryMeta(str(p), digest, size, "UNKNOWN")
