"""
Diagnostic location resolution.

Facts report positions in many different shapes. Each known shape has
one extractor: a pure function from a raw issue payload to a candidate
range, or None when the shape does not match. Extractors run in priority
order and the first hit wins. New shapes are supported by appending an
extractor, never by deepening an existing one.

Every result is clamped so that lines/columns are >= 1, the end never
precedes the start, and a range is never zero-width.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, FrozenSet, List, Mapping, Optional, Sequence

from .types import Confidence, LocationExtractionResult, LocationInfo

logger = logging.getLogger(__name__)

DEFAULT_RANGE_LENGTH = 20

# Rules that are about a whole file or the whole repository. Having no
# position is the correct answer for them.
FILE_LEVEL_RULES: FrozenSet[str] = frozenset({
    "functionCount-iterative",
    "codeRhythm-iterative",
    "outdatedFramework-global",
    "outdatedDependency-global",
    "missingRequiredFiles-global",
    "nonStandardDirectoryStructure-global",
    "lowMigrationToNewComponentLib-global",
    "newSdkFeatureNotAdoped-global",
    "openaiAnalysisTestCriticality-global",
    "reactHooksMigration-global",
})

# (start_line, start_column, end_line, end_column); None means "not given"
Coords = Sequence[Optional[Any]]


@dataclass(frozen=True)
class Extractor:
    name: str
    confidence: Confidence
    fn: Callable[[Mapping[str, Any]], Optional[Coords]]


def _get(data: Any, *keys: str) -> Any:
    for key in keys:
        if not isinstance(data, Mapping):
            return None
        data = data.get(key)
    return data


def _details(raw: Mapping[str, Any]) -> Any:
    return raw.get("details")


def _inner_details(raw: Mapping[str, Any]) -> Any:
    return _get(raw, "details", "details")


def _from_location_object(loc: Any) -> Optional[Coords]:
    if not isinstance(loc, Mapping):
        return None
    start_line = loc.get("startLine", loc.get("line"))
    if start_line is None:
        return None
    start_column = loc.get("startColumn", loc.get("column"))
    return (start_line, start_column, loc.get("endLine"), loc.get("endColumn"))


def _from_range_object(rng: Any) -> Optional[Coords]:
    if not isinstance(rng, Mapping):
        return None
    if "start" in rng:
        start = rng.get("start") or {}
        end = rng.get("end") or {}
        if start.get("line") is None:
            return None
        return (start.get("line"), start.get("column"), end.get("line"), end.get("column"))
    return _from_location_object(rng)


def _span_end(column: Any, match: Any) -> Optional[int]:
    if isinstance(match, str) and match and column is not None:
        return int(column) + len(match)
    return None


# ============================================================================
# EXTRACTORS (priority order)
# ============================================================================

def extract_complexity_metrics(raw: Mapping[str, Any]) -> Optional[Coords]:
    """``complexities[0].metrics.location`` from AST complexity facts."""
    for container in (_inner_details(raw), _details(raw)):
        complexities = _get(container, "complexities")
        if isinstance(complexities, list) and complexities:
            coords = _from_location_object(_get(complexities[0], "metrics", "location"))
            if coords:
                return coords
    return None


def extract_location_object(raw: Mapping[str, Any]) -> Optional[Coords]:
    """A ``location`` object anywhere a fact commonly puts one."""
    for loc in (_get(raw, "details", "location"), raw.get("location"),
                _get(raw, "details", "details", "location")):
        coords = _from_location_object(loc)
        if coords:
            return coords
    return None


def extract_range_object(raw: Mapping[str, Any]) -> Optional[Coords]:
    for rng in (_get(raw, "details", "range"), raw.get("range"),
                _get(raw, "details", "details", "range")):
        coords = _from_range_object(rng)
        if coords:
            return coords
    return None


def extract_match_array(raw: Mapping[str, Any]) -> Optional[Coords]:
    """Regex matches carrying lineNumber/columnNumber or a range."""
    for matches in (_get(raw, "details", "details", "matches"), _get(raw, "details", "matches")):
        if not isinstance(matches, list) or not matches:
            continue
        first = matches[0]
        if not isinstance(first, Mapping):
            continue
        if first.get("lineNumber") is not None:
            column = first.get("columnNumber", 1)
            end = _span_end(column, first.get("match"))
            return (first["lineNumber"], column, first["lineNumber"], end)
        coords = _from_range_object(first.get("range"))
        if coords:
            return coords
    return None


def extract_details_array(raw: Mapping[str, Any]) -> Optional[Coords]:
    """A flat list of line-tagged entries."""
    for entries in (_inner_details(raw), _details(raw)):
        if not isinstance(entries, list) or not entries:
            continue
        first = entries[0]
        if isinstance(first, Mapping) and first.get("lineNumber") is not None:
            column = first.get("columnNumber", 1)
            end = _span_end(column, first.get("match"))
            return (first["lineNumber"], column, first["lineNumber"], end)
    return None


def extract_line_fields(raw: Mapping[str, Any]) -> Optional[Coords]:
    """Bare lineNumber/columnNumber, shallowest first, then legacy ``line``."""
    candidates = [
        _details(raw),
        _inner_details(raw),
        _get(raw, "details", "details", "details"),
        raw,
    ]
    for candidate in candidates:
        if isinstance(candidate, Mapping) and candidate.get("lineNumber") is not None:
            return (candidate["lineNumber"], candidate.get("columnNumber"), None, None)
    for candidate in (raw, _details(raw)):
        if isinstance(candidate, Mapping) and isinstance(candidate.get("line"), int):
            return (candidate["line"], candidate.get("column"), None, None)
    return None


def extract_file_level_rule(raw: Mapping[str, Any]) -> Optional[Coords]:
    if raw.get("ruleFailure") in FILE_LEVEL_RULES:
        return (1, 1, 1, DEFAULT_RANGE_LENGTH)
    return None


DEFAULT_EXTRACTORS: List[Extractor] = [
    Extractor("complexity-metrics", "high", extract_complexity_metrics),
    Extractor("location-object", "high", extract_location_object),
    Extractor("range-object", "high", extract_range_object),
    Extractor("matches-array", "medium", extract_match_array),
    Extractor("details-array", "medium", extract_details_array),
    Extractor("line-fields", "low", extract_line_fields),
    Extractor("file-level-rule", "medium", extract_file_level_rule),
]


def validate_location(coords: Coords, source: str, confidence: Confidence) -> LocationInfo:
    """Clamp raw coordinates into a consistent, non-empty 1-based range."""
    start_line, start_column, end_line, end_column = (list(coords) + [None] * 4)[:4]

    start_line = max(1, int(start_line))
    start_column = max(1, int(start_column)) if start_column is not None else 1
    end_line = max(start_line, int(end_line)) if end_line is not None else start_line
    if end_column is None:
        end_column = start_column + DEFAULT_RANGE_LENGTH
    end_column = max(1, int(end_column))
    if end_line == start_line and end_column <= start_column:
        end_column = start_column + 1

    return LocationInfo(start_line, start_column, end_line, end_column, source, confidence)


FALLBACK_LOCATION = LocationInfo(1, 1, 1, DEFAULT_RANGE_LENGTH, "fallback", "low")


class LocationResolver:
    """Runs the extractor chain over raw issue payloads."""

    def __init__(self, extractors: Optional[List[Extractor]] = None):
        self.extractors: List[Extractor] = list(extractors or DEFAULT_EXTRACTORS)

    def add_extractor(self, extractor: Extractor) -> None:
        """Append a new shape at the lowest priority."""
        self.extractors.append(extractor)

    def extract_location(self, raw: Mapping[str, Any]) -> LocationExtractionResult:
        for extractor in self.extractors:
            try:
                coords = extractor.fn(raw)
                if coords is None:
                    continue
                location = validate_location(coords, extractor.name, extractor.confidence)
            except Exception as e:
                logger.debug("Location extractor %s failed for %s: %s",
                             extractor.name, raw.get("ruleFailure"), e)
                continue
            return LocationExtractionResult(location, True, extractor.confidence)

        return LocationExtractionResult(FALLBACK_LOCATION, False, "low")


_default_resolver = LocationResolver()


def extract_location(raw: Dict[str, Any]) -> LocationExtractionResult:
    """Resolve a location with the default extractor chain."""
    return _default_resolver.extract_location(raw)
