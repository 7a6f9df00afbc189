"""
Writer — put the extension and its report on disk atomically.

Both writes go to a uniquely named temporary file in the destination
directory and are moved into place with os.replace, so the destination
either keeps its previous content or holds the complete new file.
"""
import json
import logging
import os
import shutil
import tempfile
from pathlib import Path

from duckdb_ext_tools.errors import IoError
from duckdb_ext_tools.io.schema import PackReport

logger = logging.getLogger(__name__)


def _temp_in(destination: Path) -> tuple:
    """mkstemp next to *destination*; the pid in the prefix names the owner."""
    fd, tmp = tempfile.mkstemp(
        dir=str(destination.parent),
        prefix=f".{destination.name}.{os.getpid()}.",
        suffix=".tmp",
    )
    return fd, Path(tmp)


def _discard(tmp: Path) -> None:
    try:
        tmp.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("could not remove temporary file %s: %s", tmp, e)


def write_extension(library_path: Path, extension_path: Path, footer: bytes) -> Path:
    """
    Write ``library bytes + footer`` to *extension_path*.

    The library's permission bits are carried over.  *library_path* and
    *extension_path* may be the same file.

    Raises
    ------
    IoError
        On any read, write or rename failure.  The destination is left
        untouched and the temporary file is removed.
    """
    library_path = Path(library_path)
    extension_path = Path(extension_path)

    logger.info("     Copying Library File (%s)", library_path)
    logger.info("     Writing Extension File (%s)", extension_path)

    try:
        extension_path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = _temp_in(extension_path)
    except OSError as e:
        raise IoError(f"cannot create a file next to {extension_path}: {e}") from e

    try:
        with os.fdopen(fd, "wb") as out:
            with open(library_path, "rb") as src:
                shutil.copyfileobj(src, out)
            out.write(footer)
            out.flush()
            os.fsync(out.fileno())
        shutil.copymode(library_path, tmp)
        os.replace(tmp, extension_path)
    except OSError as e:
        _discard(tmp)
        raise IoError(f"failed to write {extension_path}: {e}") from e
    except BaseException:
        _discard(tmp)
        raise

    return extension_path


def write_report(report: PackReport, report_path: Path) -> Path:
    """Write *report* as pretty JSON to *report_path*."""
    report_path = Path(report_path)
    try:
        report_path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = _temp_in(report_path)
    except OSError as e:
        raise IoError(f"cannot create a file next to {report_path}: {e}") from e

    try:
        with os.fdopen(fd, "w", encoding="utf-8") as out:
            out.write(
                json.dumps(
                    report.model_dump(mode="json"),
                    indent=2,
                    sort_keys=True,
                )
                + "\n"
            )
        os.replace(tmp, report_path)
    except OSError as e:
        _discard(tmp)
        raise IoError(f"failed to write {report_path}: {e}") from e
    except BaseException:
        _discard(tmp)
        raise

    return report_path
