"""Normalise raw document bytes to UTF-8.

Specs exported from Windows tooling often start with a byte-order mark or
arrive as UTF-16. :func:`normalize` strips the mark and transcodes to UTF-8
so the loader only ever sees UTF-8. Bytes without a mark are passed through
untouched.
"""

from __future__ import annotations

import codecs
from pathlib import Path

from specgate.exceptions import EncodingError, IOError_

# UTF-32 marks come first: the UTF-32 LE mark begins with the UTF-16 LE mark.
_BOMS: tuple[tuple[bytes, str], ...] = (
    (codecs.BOM_UTF8, "utf-8"),
    (codecs.BOM_UTF32_LE, "utf-32-le"),
    (codecs.BOM_UTF32_BE, "utf-32-be"),
    (codecs.BOM_UTF16_LE, "utf-16-le"),
    (codecs.BOM_UTF16_BE, "utf-16-be"),
)


def detect_bom(data: bytes) -> tuple[str, int] | None:
    """Return ``(encoding, bom_length)`` for a leading BOM, or ``None``."""
    for bom, encoding in _BOMS:
        if data.startswith(bom):
            return encoding, len(bom)
    return None


def normalize(data: bytes) -> bytes:
    """Strip a leading byte-order mark and transcode to UTF-8.

    Args:
        data: Raw bytes as read from disk or the network.

    Returns:
        UTF-8 bytes without a BOM. When *data* has no BOM it is returned
        as-is.

    Raises:
        EncodingError: If the bytes after the BOM are malformed for the
            detected encoding.
    """
    detected = detect_bom(data)
    if detected is None:
        return data

    encoding, bom_length = detected
    body = data[bom_length:]
    if encoding == "utf-8":
        return body

    try:
        text = body.decode(encoding)
    except UnicodeDecodeError as exc:
        raise EncodingError(
            f"Malformed {encoding.upper()} input at byte {exc.start + bom_length}: {exc.reason}"
        ) from exc
    return text.encode("utf-8")


def read_normalized(path: str | Path) -> bytes:
    """Read *path* and return its contents normalised to UTF-8.

    Raises:
        IOError_: If the file cannot be read.
        EncodingError: If the contents cannot be transcoded.
    """
    file_path = Path(path)
    if not file_path.is_file():
        raise IOError_("File not found", path=str(path))
    try:
        raw = file_path.read_bytes()
    except OSError as exc:
        raise IOError_(f"Failed to read file: {exc}", path=str(path)) from exc
    return normalize(raw)
