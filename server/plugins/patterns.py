"""
Patterns plugin: regex predicates and repository-wide pattern ratios.
"""

import logging
import re
from typing import Any, Dict, List, Mapping, Optional, Pattern

from engine.registry import FactDefn, OperatorDefn, Plugin
from engine.types import REPO_GLOBAL_CHECK

logger = logging.getLogger(__name__)

_FLAG_MAP = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL}
_DELIMITED = re.compile(r"^/(.*)/([a-z]*)$", re.DOTALL)


def compile_pattern(pattern: str) -> Pattern[str]:
    """Compile ``pattern`` or ``/pattern/flags``. The g flag is accepted and ignored."""
    match = _DELIMITED.match(pattern)
    if not match:
        return re.compile(pattern)
    flags = 0
    for flag in match.group(2):
        flags |= _FLAG_MAP.get(flag, 0)
    return re.compile(match.group(1), flags)


def regex_match(fact_value: Any, compare_value: Any) -> bool:
    if not isinstance(fact_value, str) or not isinstance(compare_value, str):
        return False
    try:
        return compile_pattern(compare_value).search(fact_value) is not None
    except re.error as e:
        logger.error("regexMatch: invalid pattern %r: %s", compare_value, e)
        return False


def _as_list(value: Any) -> List[str]:
    if not value:
        return []
    return [value] if isinstance(value, str) else list(value)


def global_file_analysis(params: Dict[str, Any], almanac: Any) -> Dict[str, Any]:
    """Count pattern occurrences across every collected file.

    Params:
        newPatterns / legacyPatterns / patterns: regexes to count
        fileFilter: regex a file path must match to be counted
    """
    new_patterns = _as_list(params.get("newPatterns"))
    legacy_patterns = _as_list(params.get("legacyPatterns"))
    all_patterns = new_patterns + legacy_patterns + _as_list(params.get("patterns"))
    file_filter = re.compile(params.get("fileFilter") or ".*")

    files = almanac.fact_value("globalFileMetadata") or []
    pattern_data = [{"pattern": p, "count": 0, "files": []} for p in all_patterns]
    compiled = [re.compile(p) for p in all_patterns]

    for file in files:
        if file.get("fileName") == REPO_GLOBAL_CHECK or not file_filter.search(file.get("filePath", "")):
            continue
        content = file.get("fileContent") or ""
        if not content:
            continue
        for entry, regex in zip(pattern_data, compiled):
            matches = []
            for line_number, line in enumerate(content.split("\n"), start=1):
                for m in regex.finditer(line):
                    matches.append({"lineNumber": line_number, "columnNumber": m.start() + 1,
                                    "match": m.group(0)})
            if matches:
                entry["count"] += len(matches)
                entry["files"].append({"filePath": file.get("filePath"), "matches": matches})

    def _total(patterns: List[str]) -> int:
        return sum(e["count"] for e in pattern_data if e["pattern"] in patterns)

    return {
        "patternData": pattern_data,
        "summary": {
            "newPatternsTotal": _total(new_patterns),
            "legacyPatternsTotal": _total(legacy_patterns),
            "totalFiles": len(files),
        },
    }


def _ratio(fact_value: Any) -> Optional[float]:
    if not isinstance(fact_value, Mapping):
        return None
    summary = fact_value.get("summary") or {}
    new_total = summary.get("newPatternsTotal", 0)
    legacy_total = summary.get("legacyPatternsTotal", 0)
    total = new_total + legacy_total
    return new_total / total if total else 0.0


def global_pattern_ratio(fact_value: Any, compare_value: Any) -> bool:
    """Compare the new/(new+legacy) ratio with ``{"value": x, "comparison": "gte"|"lte"}``."""
    ratio = _ratio(fact_value)
    if ratio is None:
        return False
    if isinstance(compare_value, (int, float)) and not isinstance(compare_value, bool):
        threshold, comparison = float(compare_value), "gte"
    elif isinstance(compare_value, Mapping) and isinstance(compare_value.get("value"), (int, float)):
        threshold = float(compare_value["value"])
        comparison = compare_value.get("comparison", "gte")
    else:
        return False
    if comparison == "lte":
        return ratio <= threshold
    return ratio >= threshold


plugin = Plugin(
    name="xfiPluginPatterns",
    version="1.0.0",
    description="Regex predicates and repository-wide pattern adoption ratios",
    facts=[
        FactDefn("globalFileAnalysis", global_file_analysis,
                 "Pattern occurrence counts across all files"),
    ],
    operators=[
        OperatorDefn("regexMatch", regex_match, "A string matches a regular expression"),
        OperatorDefn("globalPatternRatio", global_pattern_ratio,
                     "Adoption ratio of new patterns over legacy ones"),
    ],
)
