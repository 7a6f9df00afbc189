"""
Tool configuration
"""
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Settings sourced from DUCKDB_EXT_* environment variables or .env"""

    # Toolchain
    CARGO: str | None = None  # falls back to $CARGO, then "cargo"

    # Footer defaults
    DEFAULT_ABI_TYPE: str = "C_STRUCT_UNSTABLE"
    EXTENSION_SUFFIX: str = "duckdb_extension"

    # Logging
    LOG_LEVEL: str = "INFO"

    class Config:
        env_prefix = "DUCKDB_EXT_"
        env_file = ".env"
        case_sensitive = True


settings = Settings()
