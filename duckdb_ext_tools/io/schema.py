"""
Schema — Pydantic models for the footer metadata and the pack report.

ExtensionMetadata is the codec's input/output record.
PackReport is the optional JSON receipt of one packaging run.

Runtime contract fields (present in every report):
  package_name, tool_version, schema_version.
"""
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from duckdb_ext_tools import PACKAGE_NAME, SCHEMA_VERSION, TOOL_VERSION


class ExtensionMetadata(BaseModel):
    """The four values DuckDB's loader reads from the footer."""

    model_config = ConfigDict(frozen=True)

    abi_type: str            # CPP | C_STRUCT | C_STRUCT_UNSTABLE
    extension_version: str   # e.g. v0.4.0
    platform: str            # e.g. osx_arm64
    engine_version: str      # DuckDB (or C API) version, e.g. v1.4.2


class LibraryInfo(BaseModel):
    path: str
    sha256: str
    size_bytes: int
    format: str              # ELF | MACHO | PE | UNKNOWN
    arch: Optional[str] = None


class PackReport(BaseModel):
    """Receipt of a single pack — pack_report.json."""

    package_name: str = PACKAGE_NAME
    tool_version: str = TOOL_VERSION
    schema_version: str = SCHEMA_VERSION

    library: LibraryInfo
    extension_path: str
    extension_sha256: str
    extension_size_bytes: int

    metadata: ExtensionMetadata
    target_triple: Optional[str] = None   # None when platform was given explicitly

    timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
