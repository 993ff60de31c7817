"""
Test suite for page/item range resolution.
"""

import logging

import pytest

from imgpipe.exceptions import RangeSpecError
from imgpipe.workflow.ranges import RangeResolver, RangeTerm, SelectedItem, parse_range


class TestRangeResolution:
    """Ordering, duplicates and output ordinals."""

    def test_mixed_terms(self):
        assert RangeResolver().resolve("1-3,5,7-9") == [1, 2, 3, 5, 7, 8, 9]

    def test_term_order_does_not_matter(self):
        resolver = RangeResolver()
        assert resolver.resolve("7-9,5,1-3") == resolver.resolve("1-3,5,7-9")

    def test_unordered_singles_sorted_with_contiguous_ordinals(self):
        items = list(parse_range("5,1,3").items())
        assert items == [
            SelectedItem(source=1, ordinal=1),
            SelectedItem(source=3, ordinal=2),
            SelectedItem(source=5, ordinal=3),
        ]

    def test_duplicates_retained(self):
        indices = RangeResolver().resolve("1-3,2,4-6,5")
        assert indices == [1, 2, 2, 3, 4, 5, 5, 6]
        assert len(indices) == 8

    def test_duplicates_get_their_own_ordinals(self):
        ordinals = [item.ordinal for item in parse_range("2,2").items()]
        assert ordinals == [1, 2]

    def test_single_item(self):
        assert RangeResolver().resolve("7") == [7]

    def test_integer_spec(self):
        assert RangeResolver().resolve(4) == [4]

    def test_len_of_bounded_selection(self):
        assert len(parse_range("1-3,5")) == 4


class TestOpenRanges:
    """'a-' ranges are deferred until the item count is known."""

    def test_open_range_is_single_unexpanded_term(self):
        selection = parse_range("5-")
        assert selection.terms == [RangeTerm(start=5, is_open=True)]
        assert not selection.is_bounded

    def test_open_range_needs_total(self):
        with pytest.raises(RangeSpecError, match="without a known item count"):
            parse_range("5-").indices()

    def test_open_range_has_no_length(self):
        with pytest.raises(TypeError):
            len(parse_range("5-"))

    def test_open_range_expands_with_total(self):
        assert parse_range("5-").indices(total=8) == [5, 6, 7, 8]

    def test_open_range_past_end_is_empty(self):
        assert parse_range("9-").indices(total=8) == []

    def test_all_and_empty_select_everything(self):
        assert parse_range("all").indices(total=3) == [1, 2, 3]
        assert parse_range("").indices(total=2) == [1, 2]

    def test_indices_beyond_total_dropped_with_warning(self, caplog):
        with caplog.at_level(logging.WARNING):
            assert parse_range("1,4,10").indices(total=5) == [1, 4]
        assert "beyond the last item" in caplog.text


class TestInvalidRanges:
    """Malformed specs fail validation."""

    def test_start_greater_than_end(self):
        with pytest.raises(RangeSpecError, match="start > end"):
            parse_range("5-3")

    def test_malformed_double_range(self):
        with pytest.raises(RangeSpecError, match="Malformed"):
            parse_range("1-2-3")

    @pytest.mark.parametrize("spec", ["1, 2", " 1", "1 -3"])
    def test_whitespace_rejected(self, spec):
        with pytest.raises(RangeSpecError, match="whitespace"):
            parse_range(spec)

    @pytest.mark.parametrize("spec", ["1,,2", "1,", ",3"])
    def test_empty_term_rejected(self, spec):
        with pytest.raises(RangeSpecError, match="empty term"):
            parse_range(spec)

    def test_zero_rejected(self):
        with pytest.raises(RangeSpecError, match="numbered from 1"):
            parse_range("0-3")

    @pytest.mark.parametrize("spec", ["a", "-3", "1-b", "3..5"])
    def test_non_numeric_rejected(self, spec):
        with pytest.raises(RangeSpecError):
            parse_range(spec)

    def test_non_string_rejected(self):
        with pytest.raises(RangeSpecError):
            RangeResolver().parse([1, 2])
