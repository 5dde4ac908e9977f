"""
Tests for the execution engine: units, issue building, error recovery
and exemptions.
"""

from engine.registry import FactDefn, OperatorDefn, Plugin, PluginRegistry
from engine.runner import ExecutionEngine
from engine.telemetry import Telemetry
from engine.types import REPO_GLOBAL_CHECK, Exemption, FileData
from engine.workers import WorkerPool

from conftest import GLOBAL_ONLY, PER_FILE, execution_config, file_unit, future_date, make_rule


TODO_FILE = file_unit("/repo/src/app.py", "def main():\n    # TODO: remove\n    return 1\n")
CLEAN_FILE = file_unit("/repo/src/util.py", "def helper():\n    return 2\n")


def _recording_registry(seen, fail_on=None):
    def unit_name(params, almanac):
        name = almanac.fact_value("fileData")["fileName"]
        seen.append(name)
        if name == fail_on:
            raise RuntimeError(f"cannot analyze {name}")
        return name

    reg = PluginRegistry()
    reg.register_plugin(Plugin(
        name="recorder",
        version="1.0.0",
        facts=[FactDefn("unitName", unit_name)],
        operators=[OperatorDefn("always", lambda a, b: True)],
    ))
    return reg


def _unit_rule(name="unit-rule", level="warning", **extra):
    return make_rule(name, level=level, conditions={"all": [
        {"fact": "unitName", "operator": "always", "value": True},
    ]}, **extra)


class TestUnits:
    """Every file is one unit and the repository check is exactly one more."""

    def test_global_unit_evaluated_once_and_last(self):
        seen = []
        engine = ExecutionEngine(_recording_registry(seen))
        config = execution_config([_unit_rule()], ["unitName"], ["always"])
        report = engine.run([TODO_FILE, CLEAN_FILE], config)
        assert seen == ["app.py", "util.py", REPO_GLOBAL_CHECK]
        assert report.file_count == 2

    def test_global_issues_attach_to_sentinel(self):
        seen = []
        engine = ExecutionEngine(_recording_registry(seen))
        rule = make_rule("global-rule", conditions={"all": [
            GLOBAL_ONLY, {"fact": "unitName", "operator": "always", "value": True},
        ]})
        report = engine.run([TODO_FILE], execution_config([rule], ["unitName"], ["always"]))
        assert list(report.files) == [REPO_GLOBAL_CHECK]
        assert report.files[REPO_GLOBAL_CHECK][0].file_path == REPO_GLOBAL_CHECK

    def test_sentinel_in_input_is_not_duplicated(self):
        seen = []
        engine = ExecutionEngine(_recording_registry(seen))
        config = execution_config([_unit_rule()], ["unitName"], ["always"])
        engine.run([FileData.global_check(), TODO_FILE], config)
        assert seen.count(REPO_GLOBAL_CHECK) == 1
        assert seen[-1] == REPO_GLOBAL_CHECK

    def test_empty_input_still_runs_global_check(self):
        seen = []
        engine = ExecutionEngine(_recording_registry(seen))
        report = engine.run([], execution_config([_unit_rule()], ["unitName"], ["always"]))
        assert seen == [REPO_GLOBAL_CHECK]
        assert report.file_count == 0


class TestIssues:
    """Issue payloads built from fired rules."""

    def test_todo_rule_fires_with_location_and_snippet(self, registry):
        config = execution_config([make_rule()], ["repoFileAnalysis"], ["fileContains"])
        report = ExecutionEngine(registry).run([TODO_FILE, CLEAN_FILE], config)
        assert list(report.files) == ["/repo/src/app.py"]

        issue = report.files["/repo/src/app.py"][0]
        assert issue.rule_name == "todo-iterative"
        assert issue.level == "warning"
        assert issue.location.start_line == 2
        assert issue.location.source == "matches-array"
        assert issue.snippet == "# TODO: remove"

        details = issue.to_dict()["details"]
        assert details["message"] == "todo-iterative fired"
        assert details["filePath"] == "/repo/src/app.py"
        assert details["conditionDetails"]["fact"] == "repoFileAnalysis"
        assert details["details"]["summary"]["totalMatches"] == 1

    def test_duplicate_rules_are_deduplicated(self, registry):
        rule = make_rule()
        config = execution_config([rule, dict(rule)], ["repoFileAnalysis"], ["fileContains"])
        report = ExecutionEngine(registry).run([TODO_FILE], config)
        assert report.total_issues == 1

    def test_higher_priority_rules_run_first(self):
        seen = []
        engine = ExecutionEngine(_recording_registry(seen))
        rules = [_unit_rule("low", priority=1), _unit_rule("high", priority=5)]
        report = engine.run([TODO_FILE], execution_config(rules, ["unitName"], ["always"]))
        assert [i.rule_name for i in report.files["/repo/src/app.py"]] == ["high", "low"]

    def test_telemetry_for_warnings_and_fatalities(self):
        seen = []
        telemetry = Telemetry(enabled=True)
        engine = ExecutionEngine(_recording_registry(seen), telemetry=telemetry)
        rules = [_unit_rule("w", "warning"), _unit_rule("e", "error"), _unit_rule("f", "fatality")]
        report = engine.run([], execution_config(rules, ["unitName"], ["always"]))
        assert report.has_fatalities
        assert sorted(e["eventType"] for e in telemetry.sent) == ["fatality", "warning"]


class TestErrorRecovery:
    """A failing unit contributes zero issues and never stops the run."""

    def test_failing_unit_yields_no_issues(self, caplog):
        seen = []
        engine = ExecutionEngine(_recording_registry(seen, fail_on="app.py"))
        config = execution_config([_unit_rule()], ["unitName"], ["always"])
        report = engine.run([TODO_FILE, CLEAN_FILE], config)
        assert "/repo/src/app.py" not in report.files
        assert "/repo/src/util.py" in report.files
        assert REPO_GLOBAL_CHECK in report.files
        assert "cannot analyze app.py" in caplog.text

    def test_swallow_skips_only_the_failing_rule(self):
        seen = []
        engine = ExecutionEngine(_recording_registry(seen, fail_on="app.py"))
        rules = [
            _unit_rule("fragile", errorBehavior="swallow", priority=2),
            make_rule("plain", conditions={"all": [PER_FILE]}),
        ]
        report = engine.run([TODO_FILE], execution_config(rules, ["unitName"], ["always"]))
        assert [i.rule_name for i in report.files["/repo/src/app.py"]] == ["plain"]

    def test_on_error_action_runs(self, tmp_path):
        seen = []
        log_path = tmp_path / "errors.jsonl"
        engine = ExecutionEngine(_recording_registry(seen, fail_on="app.py"))
        rule = _unit_rule(errorBehavior="swallow",
                          onError={"action": "logToFile", "params": {"filePath": str(log_path)}})
        engine.run([TODO_FILE], execution_config([rule], ["unitName"], ["always"]))
        content = log_path.read_text()
        assert "cannot analyze app.py" in content
        assert "\"rule\": \"unit-rule\"" in content

    def test_unknown_fact_fails_unit(self, registry, caplog):
        rule = make_rule(conditions={"all": [{"fact": "notRegistered", "operator": "equal",
                                              "value": 1}]})
        config = execution_config([rule], ["notRegistered"], ["equal"])
        report = ExecutionEngine(registry).run([TODO_FILE], config)
        assert report.total_issues == 0
        assert "unregistered facts" in caplog.text


class TestExemptions:
    def test_exempt_issue_is_downgraded(self, registry):
        exemption = Exemption.from_dict({"repoUrl": "org/repo", "rule": "todo-iterative",
                                         "expirationDate": future_date()})
        config = execution_config([make_rule()], ["repoFileAnalysis"], ["fileContains"],
                                  exemptions=[exemption])
        report = ExecutionEngine(registry).run([TODO_FILE], config,
                                               repo_url="https://github.com/org/repo")
        issue = report.files["/repo/src/app.py"][0]
        assert issue.level == "exempt"
        assert issue.original_level == "warning"
        assert report.exempt_count == 1
        assert report.warning_count == 0


class TestOffload:
    def test_offloaded_fact_runs_on_worker(self, counting_registry):
        rule = make_rule(conditions={"all": [
            PER_FILE, {"fact": "contentLength", "operator": "atLeast", "value": 1},
        ]})
        config = execution_config([rule], ["contentLength"], ["atLeast"])
        with WorkerPool(max_workers=1) as pool:
            report = ExecutionEngine(counting_registry, worker_pool=pool).run(
                [TODO_FILE, CLEAN_FILE], config)
            assert pool.stats()["submitted"] == 2
        assert counting_registry.calls["count"] == 2
        assert report.total_issues == 2


class TestReport:
    def test_to_dict_orders_sentinel_last(self):
        seen = []
        engine = ExecutionEngine(_recording_registry(seen))
        report = engine.run([CLEAN_FILE, TODO_FILE],
                            execution_config([_unit_rule()], ["unitName"], ["always"]))
        data = report.to_dict()
        assert [d["filePath"] for d in data["issueDetails"]] == \
            ["/repo/src/app.py", "/repo/src/util.py", REPO_GLOBAL_CHECK]
        assert data["totalIssues"] == 3
        assert data["warningCount"] == 3
        assert data["fileCount"] == 2
