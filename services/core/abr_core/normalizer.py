"""
Japanese address text normalization.

Handles:
- Full-width / half-width folding (NFKC)
- Chome numbers in arabic digits -> kanji ("1丁目" -> "一丁目")
- Banchi/go suffixes and hyphen variants -> internal separator ("3番25号" -> "3@25")
- Kanji numerals in numbering positions -> arabic ("二十二" -> "22")
- Glyph-variant folding for prefix matching against official names

None of these functions raise: text they do not recognize passes through.
"""

import re
import unicodedata
from typing import Optional

# Internal separator between block / residence / parcel numbers
SEPARATOR = "@"

KANJI_DIGITS = "〇一二三四五六七八九"
KANJI_UNITS = {"十": 10, "百": 100, "千": 1000}

_NUMERAL_CHARS = "0-9" + KANJI_DIGITS + "".join(KANJI_UNITS)
_KANJI_CHARS = KANJI_DIGITS + "".join(KANJI_UNITS)
NUMERAL = f"[{_NUMERAL_CHARS}]+"

DASHES = "-－﹣−‐⁃‑‒–—﹘―⎯⏤ーｰ─━"

# Characters a numbering number may follow. A kanji numeral after anything
# else belongs to a name (麻布十番, 三番町).
_LEAD = r"\s" + SEPARATOR + re.escape(DASHES) + "目番地の号、,"
NUMBERING = (
    rf"(?:(?<![^{_LEAD}])[{_NUMERAL_CHARS}]+"
    rf"|(?<![{_NUMERAL_CHARS}])[0-9]+)"
)
# A following number that is not a chome, left unconsumed
_NEXT_NUMBER = rf"(?=[{_NUMERAL_CHARS}])(?![{_NUMERAL_CHARS}]+丁目)"

# Glyphs written interchangeably in official data. The first glyph of each
# group is the marker every member is folded to.
VARIANT_GROUPS = (
    "ケヶヵがガ",
    "之ノの",
    "島嶋嶌",
    "広廣",
    "篭籠",
    "沢澤",
    "崎﨑嵜",
    "辺邊邉",
    "斎斉齋齊",
    "竜龍",
    "桧檜",
    "渕淵",
    "曽曾",
    "舘館",
    "鉄鐵",
    "祢禰",
    "穂穗",
    "恵惠",
    "徳德",
    "栄榮",
    "国國",
    "条條",
    "薮藪籔",
    "冨富",
    "槙槇",
    "鴬鶯",
    "峰峯",
    "蛍螢",
    "桜櫻",
    "浜濱",
    "関關",
)

_WILDCARD_TABLE = str.maketrans({
    glyph: group[0]
    for group in VARIANT_GROUPS
    for glyph in group[1:]
})

_CHOME = re.compile(r"([0-9]+)丁目")
_DASH = re.compile(rf"(?<=[{_NUMERAL_CHARS}])[{re.escape(DASHES)}](?=[{_NUMERAL_CHARS}])")
_BANCHI = re.compile(rf"({NUMBERING})番地?の?{_NEXT_NUMBER}")
_NO = re.compile(rf"({NUMBERING})の{_NEXT_NUMBER}")
_GO = re.compile(rf"(?<={SEPARATOR})({NUMERAL})号")
_SUFFIX = re.compile(rf"({NUMBERING})(?:番地|番|号)(?=$|[\s{SEPARATOR}、,])")
_KANJI_NUMBER = re.compile(
    rf"(?<![^{_LEAD}])[{_KANJI_CHARS}]+(?={SEPARATOR}|\s|$)"
    rf"|(?<={SEPARATOR})[{_KANJI_CHARS}]+(?![{_KANJI_CHARS}]|丁目)"
)
_CHOME_VARIANT = re.compile(rf"^([^0-9{SEPARATOR}\s]+?)([0-9]+){SEPARATOR}")
_NUMERIC_HEAD = re.compile(rf"^[\s{SEPARATOR}]*([0-9]+(?:{SEPARATOR}[0-9]+)*)")


def kanji_to_number(text: str) -> Optional[int]:
    """
    Parse a kanji numeral into an int.

    Positional digits ("二〇" -> 20) and unit notation ("二十二" -> 22,
    "千二百" -> 1200) are both accepted. Returns None for anything else.
    """
    if not text or any(ch not in _KANJI_CHARS for ch in text):
        return None

    if not any(ch in KANJI_UNITS for ch in text):
        return int("".join(str(KANJI_DIGITS.index(ch)) for ch in text))

    total = 0
    current = 0
    for ch in text:
        if ch in KANJI_UNITS:
            total += (current or 1) * KANJI_UNITS[ch]
            current = 0
        else:
            current = current * 10 + KANJI_DIGITS.index(ch)
    return total + current


def number_to_kanji(value: int) -> str:
    """Render 0-9999 in kanji unit notation (12 -> "十二"); larger values stay arabic."""
    if value == 0:
        return "〇"
    if value < 0 or value >= 10000:
        return str(value)

    parts = []
    for unit, mark in ((1000, "千"), (100, "百"), (10, "十")):
        digit, value = divmod(value, unit)
        if digit:
            parts.append(("" if digit == 1 else KANJI_DIGITS[digit]) + mark)
    if value:
        parts.append(KANJI_DIGITS[value])
    return "".join(parts)


def _kanji_run_to_arabic(match: re.Match) -> str:
    value = kanji_to_number(match.group(0))
    return match.group(0) if value is None else str(value)


def normalize_numerals(text: str) -> str:
    """
    Canonicalize the numbering part of an address.

    Examples:
        "1丁目3番地"   -> "一丁目3"
        "二十二番地"   -> "22"
        "3番25号"      -> "3@25"
        "23-10"        -> "23@10"
        "麻布十番1-2"  -> "麻布十番1@2"

    A kanji numeral directly after a name character is part of the name and
    is left alone. Idempotent on its own output.
    """
    if not text:
        return text

    text = unicodedata.normalize("NFKC", text)
    text = _CHOME.sub(lambda m: number_to_kanji(int(m.group(1))) + "丁目", text)
    text = _DASH.sub(SEPARATOR, text)
    # Only the suffix is consumed, so chained numbers ("1番2番3") all match
    text = _BANCHI.sub(rf"\1{SEPARATOR}", text)
    text = _NO.sub(rf"\1{SEPARATOR}", text)
    text = _GO.sub(r"\1", text)
    text = _SUFFIX.sub(r"\1", text)
    text = _KANJI_NUMBER.sub(_kanji_run_to_arabic, text)
    return text


def expand_wildcards(text: str) -> str:
    """
    Fold glyph variants to their group marker.

    The result has the same length as ``text``, so an offset into the pattern
    is also an offset into the original text.
    """
    return text.translate(_WILDCARD_TABLE)


def chome_variant(text: str) -> Optional[str]:
    """
    Read a leading "N@" after a town name as a chome.

    "森野2@2@22" -> "森野二丁目2@22". Returns None when the text has no such
    number.
    """
    match = _CHOME_VARIANT.match(text)
    if not match:
        return None
    chome = number_to_kanji(int(match.group(2))) + "丁目"
    return match.group(1) + chome + text[match.end():]


def split_numeric_head(text: str) -> tuple[str, str]:
    """
    Split off the leading run of separator-joined numbers.

    "1@3 東京ガーデン" -> ("1@3", " 東京ガーデン"). Returns ("", text) when the
    text does not start with a number.
    """
    match = _NUMERIC_HEAD.match(text)
    if not match:
        return "", text
    return match.group(1), text[match.end():]


def numeric_key(*parts: Optional[str]) -> str:
    """Build the lookup key for block / residence / parcel numbers ("23", "10" -> "23@10@")."""
    return "".join(f"{part}{SEPARATOR}" for part in parts if part)


__all__ = [
    "SEPARATOR",
    "VARIANT_GROUPS",
    "kanji_to_number",
    "number_to_kanji",
    "normalize_numerals",
    "expand_wildcards",
    "chome_variant",
    "split_numeric_head",
    "numeric_key",
]
