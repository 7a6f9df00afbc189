"""
duckdb_ext_tools — turn a compiled cdylib into a loadable DuckDB extension.

Appends the 534-byte extension metadata footer to a dynamic library and
derives the footer fields from cargo build output and Cargo.toml.
"""

__version__ = "0.3.0"
PACKAGE_NAME = "duckdb_ext_tools"
TOOL_VERSION = "v0.3"
SCHEMA_VERSION = "0.1"
