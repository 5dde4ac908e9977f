"""
Tests for diagnostic location extraction.
"""

import pytest

from engine.locations import (
    DEFAULT_RANGE_LENGTH,
    Extractor,
    LocationResolver,
    extract_location,
    validate_location,
)


def _assert_valid(loc):
    assert loc.start_line >= 1
    assert loc.start_column >= 1
    assert loc.end_line >= loc.start_line
    if loc.end_line == loc.start_line:
        assert loc.end_column > loc.start_column


class TestValidateLocation:
    """Clamping keeps every range 1-based and non-empty."""

    @pytest.mark.parametrize("coords", [
        (0, 0, 0, 0),
        (-5, -3, None, None),
        (10, 5, 3, 1),
        (4, 8, 4, 8),
        (4, 8, 4, 2),
        (1, None, None, None),
        ("7", "3", "7", "9"),
    ])
    def test_invariants_hold(self, coords):
        _assert_valid(validate_location(coords, "test", "low"))

    def test_missing_end_column_gets_default_width(self):
        loc = validate_location((3, 5, None, None), "test", "low")
        assert (loc.end_line, loc.end_column) == (3, 5 + DEFAULT_RANGE_LENGTH)

    def test_valid_range_is_untouched(self):
        loc = validate_location((2, 3, 4, 1), "test", "high")
        assert (loc.start_line, loc.start_column, loc.end_line, loc.end_column) == (2, 3, 4, 1)


class TestExtractorChain:
    """Shapes are tried in priority order; the first hit wins."""

    def test_complexity_beats_line_fields(self):
        raw = {
            "ruleFailure": "functionComplexity-iterative",
            "details": {
                "lineNumber": 99,
                "details": {"complexities": [{"name": "f", "metrics": {
                    "location": {"startLine": 12, "startColumn": 1, "endLine": 30, "endColumn": 2},
                }}]},
            },
        }
        result = extract_location(raw)
        assert result.found
        assert result.confidence == "high"
        assert result.location.source == "complexity-metrics"
        assert result.location.start_line == 12

    def test_location_object(self):
        raw = {"ruleFailure": "r", "details": {"location": {"line": 4, "column": 2}}}
        result = extract_location(raw)
        assert result.location.source == "location-object"
        assert (result.location.start_line, result.location.start_column) == (4, 2)

    def test_range_object(self):
        raw = {"ruleFailure": "r", "details": {"range": {
            "start": {"line": 2, "column": 3}, "end": {"line": 2, "column": 9}}}}
        result = extract_location(raw)
        assert result.location.source == "range-object"
        assert result.location.end_column == 9

    def test_matches_array_from_file_analysis(self):
        raw = {"ruleFailure": "sensitiveLogging-iterative", "details": {"details": {
            "matches": [{"match": "password = 'x'", "lineNumber": 7, "columnNumber": 5}],
        }}}
        result = extract_location(raw)
        assert result.location.source == "matches-array"
        assert result.confidence == "medium"
        assert (result.location.start_line, result.location.start_column) == (7, 5)
        assert result.location.end_column == 5 + len("password = 'x'")

    def test_details_array(self):
        raw = {"ruleFailure": "r", "details": {"details": [{"lineNumber": 3, "match": "abc"}]}}
        result = extract_location(raw)
        assert result.location.source == "details-array"
        assert result.location.end_column == 4

    def test_line_fields_are_low_confidence(self):
        result = extract_location({"ruleFailure": "r", "details": {"lineNumber": 8}})
        assert result.location.source == "line-fields"
        assert result.confidence == "low"
        assert result.found

    def test_file_level_rule(self):
        result = extract_location({"ruleFailure": "outdatedFramework-global", "details": {}})
        assert result.found
        assert result.location.source == "file-level-rule"
        assert (result.location.start_line, result.location.end_column) == (1, DEFAULT_RANGE_LENGTH)

    def test_fallback(self):
        result = extract_location({"ruleFailure": "unknown", "details": {"message": "x"}})
        assert not result.found
        assert result.confidence == "low"
        assert result.location.source == "fallback"
        _assert_valid(result.location)

    def test_failing_extractor_is_skipped(self):
        def boom(raw):
            raise RuntimeError("bad shape")

        resolver = LocationResolver([Extractor("boom", "high", boom)])
        resolver.add_extractor(Extractor("fixed", "low", lambda raw: (5, 1, 5, 3)))
        result = resolver.extract_location({"ruleFailure": "r"})
        assert result.location.source == "fixed"
        assert result.location.start_line == 5

    def test_unparseable_coordinates_fall_through(self):
        raw = {"ruleFailure": "r", "details": {"location": {"startLine": "abc"}, "lineNumber": 2}}
        result = extract_location(raw)
        assert result.location.source == "line-fields"
        assert result.location.start_line == 2
