"""Regression tests for query variant generation."""

import pytest

from catalog_search.variants import (
    EN_LAYOUT,
    RU_LAYOUT,
    convert_keyboard_layout,
    generate_variants,
    normalize_code,
    to_cyrillic,
    transliterate,
)


def test_latin_code_gets_layout_and_lowercase_variants():
    assert generate_variants("X1") == ["X1", "Ч1", "x1"]


def test_wrong_layout_latin_recovers_russian_word():
    variants = generate_variants("ghbdtn")

    assert variants[0] == "ghbdtn"
    assert variants[1] == "привет"
    assert "гхбдтн" in variants


def test_cyrillic_query_gets_layout_and_transliteration():
    assert generate_variants("кабель") == ["кабель", "rf,tkm", "kabel"]


def test_dimension_code_variants_keep_order_and_strip_punctuation():
    variants = generate_variants("ВВГ-3х2.5")

    assert variants == ["ВВГ-3х2.5", "DDU-3[2.5", "vvg-3h2.5", "ввг-3х2.5", "ВВГ3х25"]


def test_empty_query_has_no_variants():
    assert generate_variants("") == []


@pytest.mark.parametrize(
    "query",
    ["X1", "кабель", "Розетка Legrand", "123", "a-b_c", "Щётка", "ghbdtn", "ЖЖЖ", "---", "hello world"],
)
def test_original_first_and_no_duplicates(query):
    variants = generate_variants(query)

    assert variants[0] == query
    assert len(variants) == len(set(variants))
    assert all(variants)


@pytest.mark.parametrize("word", ["привет", "кабель", "Розетка", "ЩИТ"])
def test_layout_conversion_round_trips_russian(word):
    converted = convert_keyboard_layout(word)

    assert all(ch.lower() in EN_LAYOUT for ch in converted)
    assert convert_keyboard_layout(converted) == word


@pytest.mark.parametrize("word", ["ghbdtn", "rf,tkm", "Hjptnrf"])
def test_layout_conversion_round_trips_latin(word):
    converted = convert_keyboard_layout(word)

    assert all(ch.lower() in RU_LAYOUT for ch in converted)
    assert convert_keyboard_layout(converted) == word


def test_layout_conversion_leaves_digits_alone():
    assert convert_keyboard_layout("12345") == "12345"


def test_transliterate_uses_multi_character_targets():
    assert transliterate("Щука") == "schuka"
    assert transliterate("ЖЁЛТЫЙ") == "zheltyy"
    assert transliterate("объект") == "obekt"


def test_reverse_transliteration_is_single_character_only():
    # Digraphs are not reconstructed: "zh" becomes two letters, not "ж".
    assert to_cyrillic("zhuk") == "зхук"
    assert to_cyrillic("Bosch") == "босцх"


def test_normalize_code_strips_separators():
    assert normalize_code("ABC-12.34/5") == "ABC12345"
    assert normalize_code("ВВГ-3х2,5") == "ВВГ3х25"
    assert normalize_code("") == ""
