"""
Footer codec — the 534-byte extension metadata trailer.

Layout (offsets relative to the start of the footer):

    0    22   start signature: WebAssembly custom section header
              00 93 04 10 "duckdb_signature" 80 04
    22   32   field 8  (reserved)
    54   32   field 7  (reserved)
    86   32   field 6  (reserved)
    118  32   field 5  abi_type
    150  32   field 4  extension_version
    182  32   field 3  engine_version
    214  32   field 2  platform
    246  32   field 1  magic "4"
    278  256  signature slot (zero-filled: unsigned extension)

Each field holds the UTF-8 bytes of its value right-padded with 0x00.
The loader reads fields from the end of the file backwards, which is why
field numbering runs in reverse.
"""
import logging
from typing import List, Tuple

from duckdb_ext_tools.errors import FieldTooLong, MalformedFooter
from duckdb_ext_tools.io.schema import ExtensionMetadata

logger = logging.getLogger(__name__)

START_SIGNATURE = b"\x00\x93\x04\x10duckdb_signature\x80\x04"
FIELD_WIDTH = 32
FIELD_COUNT = 8
SIGNATURE_WIDTH = 256
PAD_BYTE = b"\x00"
MAGIC = "4"

FOOTER_SIZE = len(START_SIGNATURE) + FIELD_COUNT * FIELD_WIDTH + SIGNATURE_WIDTH  # 534

# Metadata attributes in on-disk order; None marks a reserved field.
_FIELD_ORDER: Tuple = (
    None,
    None,
    None,
    "abi_type",
    "extension_version",
    "engine_version",
    "platform",
)


def _pad(value: str) -> bytes:
    raw = value.encode("utf-8")
    return raw + PAD_BYTE * (FIELD_WIDTH - len(raw))


def _check_widths(metadata: ExtensionMetadata) -> None:
    for name in _FIELD_ORDER:
        if name is None:
            continue
        value = getattr(metadata, name)
        if len(value.encode("utf-8")) > FIELD_WIDTH:
            raise FieldTooLong(name, value, FIELD_WIDTH)


def encode(metadata: ExtensionMetadata) -> bytes:
    """
    Encode *metadata* into exactly FOOTER_SIZE bytes.

    Raises
    ------
    FieldTooLong
        If any value exceeds FIELD_WIDTH bytes.  Checked before any
        bytes are produced; values are never truncated.
    """
    _check_widths(metadata)

    chunks: List[bytes] = [START_SIGNATURE]
    for name in _FIELD_ORDER:
        chunks.append(_pad("" if name is None else getattr(metadata, name)))
    chunks.append(_pad(MAGIC))
    chunks.append(PAD_BYTE * SIGNATURE_WIDTH)

    footer = b"".join(chunks)
    assert len(footer) == FOOTER_SIZE
    return footer


def _unpad(raw: bytes, name: str) -> str:
    try:
        return raw.rstrip(PAD_BYTE).decode("utf-8")
    except UnicodeDecodeError as e:
        raise MalformedFooter(f"footer field {name} is not valid UTF-8: {e}") from None


def decode(data: bytes) -> ExtensionMetadata:
    """
    Decode the footer at the end of *data*.

    *data* may be a bare footer or a whole extension file; only the last
    FOOTER_SIZE bytes are read.

    Raises
    ------
    MalformedFooter
        If *data* is too short, the start signature or the magic field
        does not match, or a field is not UTF-8.
    """
    if len(data) < FOOTER_SIZE:
        raise MalformedFooter(
            f"need at least {FOOTER_SIZE} bytes for a footer, got {len(data)}"
        )
    footer = data[-FOOTER_SIZE:]

    head = len(START_SIGNATURE)
    if footer[:head] != START_SIGNATURE:
        raise MalformedFooter("start signature does not match duckdb_signature header")

    fields = [
        footer[head + i * FIELD_WIDTH: head + (i + 1) * FIELD_WIDTH]
        for i in range(FIELD_COUNT)
    ]
    magic = _unpad(fields[-1], "magic")
    if magic != MAGIC:
        raise MalformedFooter(f"footer magic is {magic!r}, expected {MAGIC!r}")

    values = {
        name: _unpad(raw, name)
        for name, raw in zip(_FIELD_ORDER, fields)
        if name is not None
    }
    return ExtensionMetadata(**values)


def has_footer(data: bytes) -> bool:
    """True if *data* already ends with a decodable footer."""
    try:
        decode(data)
    except MalformedFooter:
        return False
    return True
