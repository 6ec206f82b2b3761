"""Query variant generation for the relational fallback.

A shopper may type a code with the wrong keyboard layout active, spell a
Russian word in Latin letters, or paste an article number with punctuation.
:func:`generate_variants` expands the raw query into the spellings worth
trying:

    1) keyboard layout conversion (``"ghjdjl"`` -> ``"провод"``),
    2) Cyrillic -> Latin transliteration (``"провод"`` -> ``"provod"``),
    3) Latin -> Cyrillic transliteration, single characters only,
    4) the query with everything except letters and digits stripped.

None of this is linguistically exact; the variants only widen recall.
"""
from __future__ import annotations

import logging
import re
from typing import Dict, List

logger = logging.getLogger(__name__)

RU_LAYOUT = "йцукенгшщзхъфывапролджэячсмитьбю"
EN_LAYOUT = "qwertyuiop[]asdfghjkl;'zxcvbnm,."

# Simple transliteration map (Russian -> Latin). This is not exhaustive but
# covers what shoppers type for product names.
RU_TO_LATIN = {
    "а": "a",
    "б": "b",
    "в": "v",
    "г": "g",
    "д": "d",
    "е": "e",
    "ё": "e",
    "ж": "zh",
    "з": "z",
    "и": "i",
    "й": "y",
    "к": "k",
    "л": "l",
    "м": "m",
    "н": "n",
    "о": "o",
    "п": "p",
    "р": "r",
    "с": "s",
    "т": "t",
    "у": "u",
    "ф": "f",
    "х": "h",
    "ц": "ts",
    "ч": "ch",
    "ш": "sh",
    "щ": "sch",
    "ъ": "",
    "ы": "y",
    "ь": "",
    "э": "e",
    "ю": "yu",
    "я": "ya",
}
# Single letters only, so digraphs such as "zh" are never reconstructed.
LATIN_TO_RU = {
    "a": "а",
    "b": "б",
    "v": "в",
    "g": "г",
    "d": "д",
    "e": "е",
    "z": "з",
    "i": "и",
    "k": "к",
    "l": "л",
    "m": "м",
    "n": "н",
    "o": "о",
    "p": "п",
    "r": "р",
    "s": "с",
    "t": "т",
    "u": "у",
    "f": "ф",
    "h": "х",
    "c": "ц",
    "y": "у",
}

_NON_CODE_RE = re.compile(r"[^0-9A-Za-zА-Яа-яЁё]+")


def _layout_tables() -> tuple[Dict[int, str], Dict[int, str]]:
    ru_to_en: Dict[int, str] = {}
    en_to_ru: Dict[int, str] = {}
    for ru, en in zip(RU_LAYOUT, EN_LAYOUT):
        ru_to_en[ord(ru)] = en
        ru_to_en[ord(ru.upper())] = en.upper()
        en_to_ru[ord(en)] = ru
        # Punctuation keys have no case; only letters get an uppercase pair.
        if en.isalpha():
            en_to_ru[ord(en.upper())] = ru.upper()
    return ru_to_en, en_to_ru


_RU_TO_EN_LAYOUT, _EN_TO_RU_LAYOUT = _layout_tables()
_TRANSLIT_TABLE = str.maketrans(RU_TO_LATIN)
_REVERSE_TRANSLIT_TABLE = str.maketrans(LATIN_TO_RU)


def convert_keyboard_layout(text: str) -> str:
    """Retype ``text`` as if the other keyboard layout had been active.

    RU -> EN is tried first; when it changes nothing, EN -> RU is returned.
    """

    converted = text.translate(_RU_TO_EN_LAYOUT)
    if converted != text:
        return converted
    return text.translate(_EN_TO_RU_LAYOUT)


def transliterate(text: str) -> str:
    """Lowercase and transliterate Cyrillic letters into Latin ones."""
    return text.lower().translate(_TRANSLIT_TABLE)


def to_cyrillic(text: str) -> str:
    """Lowercase and map single Latin letters onto Cyrillic look-alikes."""
    return text.lower().translate(_REVERSE_TRANSLIT_TABLE)


def normalize_code(text: str) -> str:
    """Strip everything but Latin/Cyrillic letters and digits."""
    if not text:
        return ""
    return _NON_CODE_RE.sub("", text)


def generate_variants(query: str) -> List[str]:
    """Return the original query followed by its unique alternate spellings."""

    if not query:
        return []
    variants = [query]
    for candidate in (
        convert_keyboard_layout(query),
        transliterate(query),
        to_cyrillic(query),
        normalize_code(query),
    ):
        if candidate and candidate not in variants:
            variants.append(candidate)
    logger.debug("generate_variants q=%r variants=%s", query, variants)
    return variants
