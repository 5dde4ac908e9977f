"""
Tests for condition evaluation, almanac caching and JSONPath resolution.
"""

import pytest

from engine.errors import UnknownFactError, UnknownOperatorError
from engine.evaluator import Almanac, RuleEvaluator, resolve_path
from engine.registry import FactDefn, OperatorDefn
from engine.types import RuleConfig


def _rule(conditions, params=None, name="r"):
    return RuleConfig.from_dict({
        "name": name,
        "conditions": conditions,
        "event": {"type": "warning", "params": params or {"message": "fired"}},
    })


class TestResolvePath:
    @pytest.mark.parametrize("path,expected", [
        (None, {"a": {"b": [1, {"c": 2}]}}),
        ("$", {"a": {"b": [1, {"c": 2}]}}),
        ("$.a.b[0]", 1),
        ("$.a.b[1].c", 2),
        ("$['a']['b'][1]['c']", 2),
        ("$.a.missing", None),
        ("$.a.b[5]", None),
    ])
    def test_paths(self, path, expected):
        assert resolve_path({"a": {"b": [1, {"c": 2}]}}, path) == expected

    def test_unsupported_expression(self):
        with pytest.raises(ValueError):
            resolve_path({}, "$..a")


class TestAlmanac:
    """Per-unit fact caching and runtime facts."""

    def test_fact_value_is_cached_per_params(self):
        calls = []

        def fact(params, almanac):
            calls.append(params)
            return params.get("n", 0) * 2

        almanac = Almanac({"double": FactDefn("double", fact)})
        assert almanac.fact_value("double", {"n": 2}) == 4
        assert almanac.fact_value("double", {"n": 2}) == 4
        assert almanac.fact_value("double", {"n": 3}) == 6
        assert len(calls) == 2

    def test_result_fact_is_stored(self):
        almanac = Almanac({"answer": FactDefn("answer", lambda p, a: {"value": 42})})
        almanac.fact_value("answer", {"resultFact": "saved"})
        assert almanac.fact_value("saved", path="$.value") == 42

    def test_unknown_fact(self):
        with pytest.raises(UnknownFactError):
            Almanac().fact_value("nope")

    def test_offloaded_fact_uses_dispatcher_with_snapshot(self):
        dispatched = []

        def dispatcher(fn, params, snapshot):
            dispatched.append(snapshot)
            return fn(params, snapshot)

        fact = FactDefn("heavy", lambda p, a: a.fact_value("fileData")["fileName"], offload=True)
        almanac = Almanac({"heavy": fact}, runtime={"fileData": {"fileName": "x.py"}},
                          dispatcher=dispatcher)
        assert almanac.fact_value("heavy") == "x.py"
        assert len(dispatched) == 1
        assert dispatched[0] is not almanac
        assert not dispatched[0].has_fact("heavy")


class TestRuleEvaluator:
    """all/any/not trees, fact references and event details."""

    @pytest.fixture
    def almanac(self):
        return Almanac(
            {"size": FactDefn("size", lambda p, a: {"count": 5, "limit": 3})},
            runtime={"fileData": {"fileName": "a.py"}, "threshold": 4},
        )

    def test_all_and_any(self, almanac):
        evaluator = RuleEvaluator()
        fires = _rule({"all": [
            {"fact": "size", "path": "$.count", "operator": "greaterThan", "value": 4},
            {"any": [
                {"fact": "fileData", "path": "$.fileName", "operator": "equal", "value": "b.py"},
                {"fact": "fileData", "path": "$.fileName", "operator": "equal", "value": "a.py"},
            ]},
        ]})
        assert evaluator.evaluate(fires, almanac).fired

    def test_not(self, almanac):
        rule = _rule({"all": [{"not": {"fact": "size", "path": "$.count",
                                       "operator": "lessThan", "value": 10}}]})
        assert not RuleEvaluator().evaluate(rule, almanac).fired

    def test_value_can_reference_a_fact(self, almanac):
        rule = _rule({"all": [{"fact": "size", "path": "$.count", "operator": "greaterThan",
                               "value": {"fact": "threshold"}}]})
        assert RuleEvaluator().evaluate(rule, almanac).fired

    def test_type_mismatch_is_false_not_error(self, almanac):
        rule = _rule({"all": [{"fact": "size", "operator": "greaterThan", "value": 1}]})
        assert not RuleEvaluator().evaluate(rule, almanac).fired

    def test_custom_operator(self, almanac):
        evaluator = RuleEvaluator([OperatorDefn("overLimit", lambda v, c: v["count"] > v["limit"])])
        rule = _rule({"all": [{"fact": "size", "operator": "overLimit", "value": True}]})
        assert evaluator.evaluate(rule, almanac).fired

    def test_unknown_operator_raises(self, almanac):
        rule = _rule({"all": [{"fact": "size", "operator": "mystery", "value": 1}]})
        with pytest.raises(UnknownOperatorError):
            RuleEvaluator().evaluate(rule, almanac)

    def test_event_details_resolved_from_result_fact(self, almanac):
        rule = _rule(
            {"all": [{"fact": "size", "params": {"resultFact": "sizeResult"},
                      "path": "$.count", "operator": "equal", "value": 5}]},
            params={"message": "too big", "details": {"fact": "sizeResult"}},
        )
        result = RuleEvaluator().evaluate(rule, almanac)
        assert result.fired
        assert result.event_params["details"] == {"count": 5, "limit": 3}
        assert result.condition_details["fact"] == "size"
        assert result.all_conditions[0]["result"] is True

    def test_unproduced_detail_fact_keeps_reference(self, almanac):
        rule = _rule(
            {"any": [{"fact": "size", "path": "$.count", "operator": "equal", "value": 5}]},
            params={"message": "m", "details": {"fact": "neverStored"}},
        )
        result = RuleEvaluator().evaluate(rule, almanac)
        assert result.condition_type == "any"
        assert result.event_params["details"] == {"fact": "neverStored"}

    def test_static_location_details_pass_through(self, almanac):
        rule = _rule(
            {"all": [{"fact": "size", "path": "$.count", "operator": "equal", "value": 5}]},
            params={"message": "m", "details": {"lineNumber": 4, "match": "x"}},
        )
        result = RuleEvaluator().evaluate(rule, almanac)
        assert result.event_params["details"] == {"lineNumber": 4, "match": "x"}
