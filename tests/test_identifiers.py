import pytest

from aduwatch.normalize import (
    AMENDMENT_DIGIT_OFFSET,
    amendment_digit,
    amendment_permit_numbers,
    permit_number_variants,
)


def test_variants_start_with_raw_and_cover_dash_and_zero_forms():
    v = permit_number_variants("21010-10000-01234")
    assert v[0] == "21010-10000-01234"
    assert "210101000001234" in v
    assert "21010-10000-1234" in v
    assert len(v) == len(set(v))


def test_compact_input_gets_dashed_form():
    v = permit_number_variants("210101000001234")
    assert v[0] == "210101000001234"
    assert "21010-10000-01234" in v


def test_tolerant_mode_adds_separators_and_suffixes():
    strict = permit_number_variants("21010-10000-01234")
    tolerant = permit_number_variants("21010-10000-01234", tolerant=True)
    assert tolerant[: len(strict)] == strict
    assert "21010 10000 01234" in tolerant
    assert "10000-01234" in tolerant
    assert "01234" in tolerant


@pytest.mark.parametrize("raw", ["ABC", "2101", "21-5", "21010-10000", "x" * 40])
def test_short_or_odd_identifiers_degrade_to_raw(raw):
    assert permit_number_variants(raw) == [raw]
    assert permit_number_variants(raw, tolerant=True) == [raw]


def test_empty_identifier_has_no_variants():
    assert permit_number_variants("") == []
    assert permit_number_variants(None) == []


@pytest.mark.parametrize("raw", ["21010-10000-01234", " 21010-10000-01234", "B-1", "210101000001234"])
def test_variants_are_deterministic_and_keep_raw(raw):
    first = permit_number_variants(raw, tolerant=True)
    assert first == permit_number_variants(raw, tolerant=True)
    assert first and first[0] == raw


def test_amendment_numbers_replace_sequence_digit():
    nbrs = amendment_permit_numbers("21010-10000-01234")
    assert AMENDMENT_DIGIT_OFFSET == 10
    assert nbrs == [f"21010-1000{n}-01234" for n in range(1, 10)]


def test_compact_form_uses_offset_nine():
    nbrs = amendment_permit_numbers("210101000001234", offset=9)
    assert nbrs[0] == "210101000101234"
    assert nbrs[-1] == "210101000901234"


def test_supplemental_base_is_not_its_own_amendment():
    nbrs = amendment_permit_numbers("21010-10003-01234")
    assert "21010-10003-01234" not in nbrs
    assert len(nbrs) == 8
    assert "21010-10000-01234" not in nbrs
    assert nbrs[0] == "21010-10001-01234"


def test_amendment_numbers_for_short_base_is_empty():
    assert amendment_permit_numbers("12345") == []


def test_amendment_digit():
    assert amendment_digit("21010-10003-01234") == 3
    assert amendment_digit("21010-10000-01234") == 0
    assert amendment_digit("short") is None
    assert amendment_digit("21010-1000X-01234") is None
