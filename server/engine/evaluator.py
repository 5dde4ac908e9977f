"""
Declarative condition/event rule evaluation.

Rules use the json-rules-engine shape: a condition tree of ``all`` /
``any`` / ``not`` nodes whose leaves compare a fact value against a
configured value with a named operator. When the tree holds, the rule's
event fires with its ``details`` resolved from the almanac.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from .errors import UnknownFactError, UnknownOperatorError
from .registry import FactDefn, OperatorDefn
from .types import RuleConfig, thaw

logger = logging.getLogger(__name__)

# fn, *args -> result, run somewhere other than the calling thread
Dispatcher = Callable[..., Any]

_PATH_TOKEN = re.compile(r"\.([A-Za-z_$][\w$-]*)|\[(\d+)\]|\['([^']+)'\]|\[\"([^\"]+)\"\]")


def resolve_path(value: Any, path: Optional[str]) -> Any:
    """Resolve a small JSONPath subset (``$.a.b``, ``$.a[0]``, ``$['a-b']``).

    Missing segments resolve to None.
    """
    if not path or path == "$":
        return value
    expr = path[1:] if path.startswith("$") else "." + path
    position = 0
    current = value
    while position < len(expr):
        match = _PATH_TOKEN.match(expr, position)
        if not match:
            raise ValueError(f"Unsupported path expression: {path}")
        position = match.end()
        key, index, quoted, dquoted = match.groups()
        if current is None:
            return None
        if index is not None:
            idx = int(index)
            if not isinstance(current, (list, tuple)) or idx >= len(current):
                return None
            current = current[idx]
        else:
            name = key or quoted or dquoted
            if isinstance(current, Mapping):
                current = current.get(name)
            else:
                current = getattr(current, name, None)
    return current


def _params_key(params: Optional[Mapping[str, Any]]) -> str:
    return json.dumps(thaw(params or {}), sort_keys=True, default=str)


class Almanac:
    """Per-unit fact cache plus runtime facts."""

    def __init__(self, facts: Optional[Mapping[str, FactDefn]] = None,
                 runtime: Optional[Dict[str, Any]] = None,
                 dispatcher: Optional[Dispatcher] = None):
        self._facts = dict(facts or {})
        self._runtime: Dict[str, Any] = dict(runtime or {})
        self._cache: Dict[tuple, Any] = {}
        self._dispatch = dispatcher

    def add_runtime_fact(self, name: str, value: Any) -> None:
        self._runtime[name] = value

    def has_fact(self, name: str) -> bool:
        return name in self._runtime or name in self._facts

    def snapshot(self) -> "Almanac":
        """A read-only view of the runtime facts, safe to hand to a worker."""
        return Almanac(runtime=dict(self._runtime))

    def fact_value(self, name: str, params: Optional[Mapping[str, Any]] = None,
                   path: Optional[str] = None) -> Any:
        if name in self._runtime:
            return resolve_path(self._runtime[name], path)

        fact = self._facts.get(name)
        if fact is None:
            raise UnknownFactError(name)

        key = (name, _params_key(params))
        if key in self._cache:
            value = self._cache[key]
        else:
            call_params = thaw(params or {})
            if fact.offload and self._dispatch is not None:
                value = self._dispatch(fact.fn, call_params, self.snapshot())
            else:
                value = fact.fn(call_params, self)
            self._cache[key] = value

        result_fact = (params or {}).get("resultFact")
        if result_fact:
            self.add_runtime_fact(result_fact, value)

        return resolve_path(value, path)


# ============================================================================
# BUILT-IN OPERATORS
# ============================================================================

def _safe_compare(op: Callable[[Any, Any], bool]) -> Callable[[Any, Any], bool]:
    def compare(a: Any, b: Any) -> bool:
        try:
            return bool(op(a, b))
        except TypeError:
            return False
    return compare


def _contains(a: Any, b: Any) -> bool:
    if a is None:
        return False
    return b in a


DEFAULT_OPERATORS: Dict[str, OperatorDefn] = {
    op.name: op for op in [
        OperatorDefn("equal", lambda a, b: a == b),
        OperatorDefn("notEqual", lambda a, b: a != b),
        OperatorDefn("in", _safe_compare(lambda a, b: a in b)),
        OperatorDefn("notIn", _safe_compare(lambda a, b: a not in b)),
        OperatorDefn("contains", _safe_compare(_contains)),
        OperatorDefn("doesNotContain", _safe_compare(lambda a, b: not _contains(a, b))),
        OperatorDefn("lessThan", _safe_compare(lambda a, b: a < b)),
        OperatorDefn("lessThanInclusive", _safe_compare(lambda a, b: a <= b)),
        OperatorDefn("greaterThan", _safe_compare(lambda a, b: a > b)),
        OperatorDefn("greaterThanInclusive", _safe_compare(lambda a, b: a >= b)),
    ]
}


# ============================================================================
# EVALUATION
# ============================================================================

@dataclass
class RuleResult:
    """Outcome of one rule against one almanac."""
    rule: RuleConfig
    fired: bool
    event_params: Dict[str, Any] = field(default_factory=dict)
    condition_type: str = "all"
    condition_details: Optional[Dict[str, Any]] = None
    all_conditions: List[Dict[str, Any]] = field(default_factory=list)


def _is_fact_reference(value: Any) -> bool:
    return isinstance(value, Mapping) and "fact" in value and set(value) <= {"fact", "params", "path"}


class RuleEvaluator:
    """Evaluates rules against an almanac using a fixed operator table."""

    def __init__(self, operators: Iterable[OperatorDefn] = ()):
        self.operators: Dict[str, OperatorDefn] = dict(DEFAULT_OPERATORS)
        for operator in operators:
            self.operators[operator.name] = operator

    def _operator(self, name: str) -> OperatorDefn:
        operator = self.operators.get(name)
        if operator is None:
            raise UnknownOperatorError(name)
        return operator

    def _evaluate(self, condition: Mapping[str, Any], almanac: Almanac,
                  trail: List[Dict[str, Any]]) -> bool:
        if "all" in condition:
            return all(self._evaluate(c, almanac, trail) for c in condition["all"])
        if "any" in condition:
            return any(self._evaluate(c, almanac, trail) for c in condition["any"])
        if "not" in condition:
            return not self._evaluate(condition["not"], almanac, trail)

        fact_value = almanac.fact_value(condition["fact"], condition.get("params"),
                                        condition.get("path"))
        compare_value = condition.get("value")
        if _is_fact_reference(compare_value):
            compare_value = almanac.fact_value(compare_value["fact"], compare_value.get("params"),
                                               compare_value.get("path"))
        else:
            compare_value = thaw(compare_value)

        result = bool(self._operator(condition["operator"]).fn(fact_value, compare_value))
        trail.append({
            "fact": condition["fact"],
            "operator": condition["operator"],
            "value": thaw(condition.get("value")),
            "params": thaw(condition.get("params") or {}),
            "path": condition.get("path"),
            "result": result,
        })
        return result

    def _resolve_event_params(self, rule: RuleConfig, almanac: Almanac) -> Dict[str, Any]:
        params = thaw(rule.event.get("params") or {})
        details = params.get("details")
        if _is_fact_reference(details):
            try:
                params["details"] = almanac.fact_value(details["fact"], details.get("params"),
                                                       details.get("path"))
            except UnknownFactError:
                logger.debug("Event detail fact %s for %s was never produced; keeping reference",
                             details["fact"], rule.name)
        return params

    def evaluate(self, rule: RuleConfig, almanac: Almanac) -> RuleResult:
        """Evaluate one rule. Fact and operator exceptions propagate."""
        trail: List[Dict[str, Any]] = []
        conditions = rule.conditions
        condition_type = "any" if "any" in conditions else "all"
        fired = self._evaluate(conditions, almanac, trail)

        result = RuleResult(rule=rule, fired=fired, condition_type=condition_type,
                            all_conditions=trail)
        if not fired:
            return result

        # The most specific condition is the last non-fileData leaf
        interesting = [c for c in trail if c["fact"] != "fileData"]
        result.condition_details = (interesting or trail or [None])[-1]
        result.event_params = self._resolve_event_params(rule, almanac)
        return result
