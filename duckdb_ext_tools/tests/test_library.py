"""Tests for dynamic-library format / architecture detection."""
import hashlib
import platform
import struct
import sys

import pytest

from duckdb_ext_tools.core.library import inspect_library
from duckdb_ext_tools.errors import IoError


def _macho(cputype: int) -> bytes:
    return struct.pack("<Ii", 0xFEEDFACF, cputype) + b"\x00" * 64


def _pe(machine: int) -> bytes:
    head = bytearray(0x80)
    head[:2] = b"MZ"
    struct.pack_into("<I", head, 0x3C, 0x40)
    head[0x40:0x44] = b"PE\x00\x00"
    struct.pack_into("<H", head, 0x44, machine)
    return bytes(head)


class TestInspectLibrary:

    @pytest.mark.skipif(sys.platform != "linux", reason="needs an ELF interpreter binary")
    def test_elf(self):
        meta = inspect_library(sys.executable)
        assert meta.format == "ELF"
        if platform.machine() in ("x86_64", "aarch64"):
            assert meta.arch in ("amd64", "arm64")

    def test_macho_arm64(self, tmp_path):
        p = tmp_path / "libquack.dylib"
        p.write_bytes(_macho(0x0100000C))
        meta = inspect_library(str(p))
        assert (meta.format, meta.arch) == ("MACHO", "arm64")

    def test_macho_universal(self, tmp_path):
        p = tmp_path / "libquack.dylib"
        p.write_bytes(struct.pack(">I", 0xCAFEBABE) + b"\x00" * 32)
        meta = inspect_library(str(p))
        assert (meta.format, meta.arch) == ("MACHO", None)

    def test_pe_amd64(self, tmp_path):
        p = tmp_path / "quack.dll"
        p.write_bytes(_pe(0x8664))
        meta = inspect_library(str(p))
        assert (meta.format, meta.arch) == ("PE", "amd64")

    def test_unknown(self, tmp_path):
        p = tmp_path / "libquack.so"
        data = b"not a binary at all"
        p.write_bytes(data)
        meta = inspect_library(str(p))
        assert meta.format == "UNKNOWN"
        assert meta.arch is None
        assert meta.size_bytes == len(data)
        assert meta.sha256 == hashlib.sha256(data).hexdigest()

    def test_broken_elf_is_not_fatal(self, tmp_path):
        p = tmp_path / "libquack.so"
        p.write_bytes(b"\x7fELF" + b"\xff" * 8)
        meta = inspect_library(str(p))
        assert meta.format == "ELF"
        assert meta.arch is None

    def test_missing(self, tmp_path):
        with pytest.raises(IoError):
            inspect_library(str(tmp_path / "nope.so"))

    def test_truncated_elf_header(self, tmp_path):
        p = tmp_path / "libquack.so"
        p.write_bytes(b"\x7fELF\x02\x01\x01\x00" + b"\x00" * 8)
        meta = inspect_library(str(p))
        assert (meta.format, meta.arch) == ("ELF", None)
