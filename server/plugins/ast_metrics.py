"""
AST plugin: per-function complexity metrics computed with tree-sitter.

Both facts parse the current file and are marked for offloading, so the
engine runs them on the worker pool. Parsers are not shared between
threads; each thread builds its own from the languages loaded once by
the plugin's initialize hook.
"""

import logging
import os
import threading
from typing import Any, Dict, FrozenSet, List, Mapping, Optional

import tree_sitter

from engine.registry import FactDefn, OperatorDefn, Plugin, PluginContext
from engine.types import REPO_GLOBAL_CHECK

logger = logging.getLogger(__name__)

EXTENSION_LANGUAGES: Dict[str, str] = {
    ".py": "python",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".ts": "typescript",
    ".tsx": "tsx",
}

_JS_FUNCTIONS = frozenset({
    "function_declaration", "function_expression", "function", "arrow_function",
    "method_definition", "generator_function_declaration", "generator_function",
})

FUNCTION_KINDS: Dict[str, FrozenSet[str]] = {
    "python": frozenset({"function_definition"}),
    "javascript": _JS_FUNCTIONS,
    "typescript": _JS_FUNCTIONS,
    "tsx": _JS_FUNCTIONS,
}

_JS_DECISIONS = frozenset({
    "if_statement", "for_statement", "for_in_statement", "for_of_statement",
    "while_statement", "do_statement", "switch_case", "catch_clause",
    "ternary_expression", "conditional_expression",
})

DECISION_KINDS: Dict[str, FrozenSet[str]] = {
    "python": frozenset({
        "if_statement", "elif_clause", "for_statement", "while_statement",
        "except_clause", "case_clause", "conditional_expression", "boolean_operator",
    }),
    "javascript": _JS_DECISIONS,
    "typescript": _JS_DECISIONS,
    "tsx": _JS_DECISIONS,
}

# Structures that increase nesting depth
NESTING_KINDS = frozenset({
    "if_statement", "for_statement", "for_in_statement", "for_of_statement",
    "while_statement", "do_statement", "switch_statement", "try_statement",
    "match_statement", "with_statement",
})

_LOGICAL_OPERATORS = frozenset({"&&", "||", "??"})

DEFAULT_THRESHOLDS = {
    "cyclomaticComplexity": 20,
    "cognitiveComplexity": 30,
    "nestingDepth": 10,
    "parameterCount": 5,
    "returnCount": 10,
}

_languages: Dict[str, tree_sitter.Language] = {}
_languages_lock = threading.Lock()
_local = threading.local()


def load_languages() -> Dict[str, tree_sitter.Language]:
    """Load every supported grammar once per process."""
    with _languages_lock:
        if not _languages:
            import tree_sitter_javascript
            import tree_sitter_python
            import tree_sitter_typescript

            _languages["python"] = tree_sitter.Language(tree_sitter_python.language())
            _languages["javascript"] = tree_sitter.Language(tree_sitter_javascript.language())
            _languages["typescript"] = tree_sitter.Language(tree_sitter_typescript.language_typescript())
            _languages["tsx"] = tree_sitter.Language(tree_sitter_typescript.language_tsx())
            logger.debug("Loaded tree-sitter grammars: %s", ", ".join(sorted(_languages)))
        return _languages


def _parser(language: str) -> tree_sitter.Parser:
    parsers = getattr(_local, "parsers", None)
    if parsers is None:
        parsers = _local.parsers = {}
    if language not in parsers:
        parser = tree_sitter.Parser()
        parser.language = load_languages()[language]
        parsers[language] = parser
    return parsers[language]


def language_for(file_path: str) -> Optional[str]:
    return EXTENSION_LANGUAGES.get(os.path.splitext(file_path)[1].lower())


def _text(node: Any) -> str:
    if node is None or node.text is None:
        return ""
    return node.text.decode("utf-8", errors="ignore")


def _function_name(node: Any) -> str:
    name = node.child_by_field_name("name")
    if name is not None:
        return _text(name)
    parent = node.parent
    if parent is not None and parent.type in ("variable_declarator", "assignment_expression", "pair"):
        target = (parent.child_by_field_name("name") or parent.child_by_field_name("left")
                  or parent.child_by_field_name("key"))
        if target is not None:
            return _text(target)
    return "<anonymous>"


def _parameter_count(node: Any) -> int:
    params = node.child_by_field_name("parameters")
    if params is None:
        return 1 if node.child_by_field_name("parameter") is not None else 0
    return sum(1 for c in params.named_children if c.type != "comment")


def _is_decision(node: Any, language: str) -> bool:
    if node.type in DECISION_KINDS[language]:
        return True
    if node.type == "binary_expression":
        operator = node.child_by_field_name("operator")
        return operator is not None and operator.type in _LOGICAL_OPERATORS
    return False


def measure_function(node: Any, language: str) -> Dict[str, Any]:
    """Metrics for one function node, excluding nested functions."""
    functions = FUNCTION_KINDS[language]
    cyclomatic = 1
    cognitive = 0
    max_nesting = 0
    returns = 0

    stack = [(child, 0) for child in node.children]
    while stack:
        current, nesting = stack.pop()
        if current.type in functions:
            continue
        decision = _is_decision(current, language)
        nests = current.type in NESTING_KINDS
        if decision:
            cyclomatic += 1
        if nests:
            cognitive += 1 + nesting
            max_nesting = max(max_nesting, nesting + 1)
        elif decision:
            cognitive += 1
        if current.type == "return_statement":
            returns += 1
        child_nesting = nesting + 1 if nests else nesting
        stack.extend((child, child_nesting) for child in current.children)

    start_row, start_col = node.start_point
    end_row, end_col = node.end_point
    return {
        "name": _function_name(node),
        "cyclomaticComplexity": cyclomatic,
        "cognitiveComplexity": cognitive,
        "nestingDepth": max_nesting,
        "parameterCount": _parameter_count(node),
        "returnCount": returns,
        "lineCount": end_row - start_row + 1,
        "location": {
            "startLine": start_row + 1,
            "startColumn": start_col + 1,
            "endLine": end_row + 1,
            "endColumn": end_col + 1,
        },
    }


def find_functions(root: Any, language: str) -> List[Any]:
    functions = FUNCTION_KINDS[language]
    found = []
    stack = [root]
    while stack:
        node = stack.pop()
        if node.type in functions:
            found.append(node)
        stack.extend(reversed(node.children))
    return found


def analyze_source(content: str, language: str) -> List[Dict[str, Any]]:
    tree = _parser(language).parse(content.encode("utf-8"))
    return [measure_function(fn, language) for fn in find_functions(tree.root_node, language)]


def _current_file(almanac: Any) -> Optional[Mapping[str, Any]]:
    file_data = almanac.fact_value("fileData") or {}
    if file_data.get("fileName") == REPO_GLOBAL_CHECK or not file_data.get("fileContent"):
        return None
    if language_for(file_data.get("filePath", "")) is None:
        return None
    return file_data


def exceeds(metrics: Mapping[str, Any], thresholds: Mapping[str, Any]) -> bool:
    return any(key in thresholds and metrics.get(key, 0) >= thresholds[key]
               for key in DEFAULT_THRESHOLDS)


def function_complexity(params: Dict[str, Any], almanac: Any) -> Dict[str, Any]:
    """Functions in the current file, most complex first.

    With ``thresholds`` in params only functions exceeding at least one
    threshold are returned.
    """
    file_data = _current_file(almanac)
    if file_data is None:
        return {"complexities": []}
    metrics = analyze_source(file_data["fileContent"], language_for(file_data["filePath"]))
    thresholds = params.get("thresholds")
    if thresholds:
        metrics = [m for m in metrics if exceeds(m, thresholds)]
    metrics.sort(key=lambda m: (-m["cyclomaticComplexity"], m["location"]["startLine"]))
    return {"complexities": [{"name": m["name"], "metrics": m} for m in metrics]}


def function_count(params: Dict[str, Any], almanac: Any) -> Dict[str, Any]:
    file_data = _current_file(almanac)
    if file_data is None:
        return {"count": 0, "functions": []}
    metrics = analyze_source(file_data["fileContent"], language_for(file_data["filePath"]))
    return {"count": len(metrics), "functions": [m["name"] for m in metrics]}


def ast_complexity(fact_value: Any, compare_value: Any) -> bool:
    if not isinstance(fact_value, Mapping) or not fact_value.get("complexities"):
        return False
    if compare_value is True:
        return True
    if not isinstance(compare_value, Mapping):
        return False
    return any(exceeds(entry.get("metrics") or {}, compare_value)
               for entry in fact_value["complexities"])


def function_count_threshold(fact_value: Any, compare_value: Any) -> bool:
    """Compare a function count with a number or ``{"threshold", "comparison"}``."""
    count = fact_value.get("count", 0) if isinstance(fact_value, Mapping) else 0
    if isinstance(compare_value, (int, float)) and not isinstance(compare_value, bool):
        return count >= compare_value
    if not isinstance(compare_value, Mapping) or "threshold" not in compare_value:
        return count > 0
    threshold = compare_value["threshold"]
    comparison = compare_value.get("comparison", "gte")
    return {
        "gt": count > threshold,
        "lt": count < threshold,
        "lte": count <= threshold,
        "eq": count == threshold,
    }.get(comparison, count >= threshold)


def _initialize(context: PluginContext) -> None:
    load_languages()


plugin = Plugin(
    name="xfiPluginAst",
    version="1.0.0",
    description="Function complexity and counts from tree-sitter syntax trees",
    facts=[
        FactDefn("functionComplexity", function_complexity,
                 "Per-function complexity metrics", priority=2, offload=True),
        FactDefn("functionCount", function_count,
                 "Number of functions in the file", offload=True),
    ],
    operators=[
        OperatorDefn("astComplexity", ast_complexity,
                     "A function exceeds a complexity threshold"),
        OperatorDefn("functionCountThreshold", function_count_threshold,
                     "The function count meets a threshold"),
    ],
    initialize=_initialize,
)
