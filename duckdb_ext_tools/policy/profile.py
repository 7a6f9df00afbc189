"""
Profile — packaging knobs kept out of the core derivation logic.

Which crates count as "the DuckDB dependency", what the dynamic-library
marker is, and which file suffixes are dynamic libraries are policy, not
code.  Changing them is a profile change.
"""
from dataclasses import dataclass
from typing import FrozenSet, Tuple

from duckdb_ext_tools.config import settings


@dataclass(frozen=True)
class PackProfile:
    """Describes how artifacts are picked and how metadata is defaulted."""

    profile_id: str

    # Footer defaults
    abi_type: str
    extension_suffix: str

    # Artifact selection
    library_kind: str
    library_suffixes: FrozenSet[str]

    # Engine dependency lookup, in priority order
    engine_crates: Tuple[str, ...]

    @classmethod
    def default(cls) -> "PackProfile":
        """Profile for Rust extensions built against the duckdb crate."""
        return cls(
            profile_id="cargo-cdylib-duckdb",
            abi_type=settings.DEFAULT_ABI_TYPE,
            extension_suffix=settings.EXTENSION_SUFFIX,
            library_kind="cdylib",
            library_suffixes=frozenset({".so", ".dylib", ".dll"}),
            engine_crates=("duckdb", "libduckdb-sys"),
        )
