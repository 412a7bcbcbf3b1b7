"""
Input boundary: address files to Queries.

Handles:
- Encoding detection with a Japanese fallback chain (utf-8, cp932, euc-jp)
- Line-oriented reading with aiofiles
- Blank lines and comment lines (# or //) are skipped
"""

import codecs
from pathlib import Path
from typing import AsyncIterator, Optional

import aiofiles
import chardet

from abr_core.models import Query

from .logging_utils import get_logger

logger = get_logger(__name__)

FALLBACK_ENCODINGS = ["utf-8", "cp932", "euc-jp"]

# chardet names that are narrower than the codec we should decode with
_ENCODING_ALIASES = {
    "ascii": "utf-8",
    "shift_jis": "cp932",
}

# Single-byte guesses decode anything, so only these detections are trusted
TRUSTED_ENCODINGS = {"utf-8", "utf-8-sig", "utf-16", "cp932", "euc-jp", "iso-2022-jp"}


def _decodes(raw: bytes, encoding: str) -> bool:
    try:
        codecs.getincrementaldecoder(encoding)().decode(raw, final=False)
    except (UnicodeDecodeError, LookupError):
        return False
    return True


def detect_encoding(file_path: Path, sample_size: int = 500000) -> str:
    """
    Detect an address file's encoding with fallback chain.

    Reads a sample, asks chardet, then confirms by decoding the sample.
    Falls back through utf-8, cp932 and euc-jp when detection is unsure.

    Args:
        file_path: Path to the input file
        sample_size: Number of bytes to sample (default: 500KB)

    Returns:
        str: Encoding to read the file with
    """
    with open(file_path, 'rb') as f:
        raw_data = f.read(sample_size)

    if raw_data.startswith(codecs.BOM_UTF8):
        return "utf-8-sig"

    result = chardet.detect(raw_data)
    detected_encoding = result['encoding']
    confidence = result['confidence'] or 0.0

    logger.info(f"Detected encoding: {detected_encoding} (confidence: {confidence:.2%})")

    if detected_encoding:
        detected_encoding = detected_encoding.lower()
        detected_encoding = _ENCODING_ALIASES.get(detected_encoding, detected_encoding)

    encoding_chain = []
    if detected_encoding in TRUSTED_ENCODINGS and confidence >= 0.6:
        encoding_chain.append(detected_encoding)
    encoding_chain.extend(FALLBACK_ENCODINGS)

    seen = set()
    encoding_chain = [
        enc for enc in encoding_chain
        if enc.lower() not in seen and not seen.add(enc.lower())
    ]

    for encoding in encoding_chain:
        if _decodes(raw_data, encoding):
            logger.info(f"Validated encoding: {encoding}")
            return encoding
        logger.debug(f"Encoding {encoding} failed, trying next...")

    logger.warning(
        "All encoding attempts failed, using UTF-8 with error replacement. "
        "Some characters may be corrupted."
    )
    return "utf-8"


def is_comment(line: str) -> bool:
    return line.startswith("#") or line.startswith("//")


async def read_queries(
    file_path: Path,
    encoding: Optional[str] = None,
) -> AsyncIterator[Query]:
    """
    Yield one Query per address line.

    Args:
        file_path: Input file, one address per line
        encoding: File encoding (auto-detected if None)
    """
    if encoding is None:
        encoding = detect_encoding(file_path)

    async with aiofiles.open(file_path, 'r', encoding=encoding, errors='replace') as f:
        async for line in f:
            address = line.strip()
            if not address or is_comment(address):
                continue
            yield Query.create(address)


__all__ = [
    "FALLBACK_ENCODINGS",
    "detect_encoding",
    "is_comment",
    "read_queries",
]
