"""
Execution engine: evaluates an archetype's rules against analysis units.

Every real file is one unit and the repository sentinel is one more,
always evaluated last. Rules run on the orchestrating thread; facts
marked ``offload`` are dispatched to the worker pool and awaited. A unit
whose evaluation fails contributes zero issues and never stops the run.
"""

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .error_actions import ErrorActionContext, execute_error_action
from .errors import EvaluationError
from .evaluator import Almanac, RuleEvaluator, RuleResult
from .exemptions import ExemptionStore
from .locations import LocationResolver
from .registry import FactDefn, OperatorDefn, PluginRegistry, get_registry
from .telemetry import NULL_TELEMETRY, Telemetry
from .types import (
    REPO_GLOBAL_CHECK,
    ExecutionConfig,
    FileData,
    Issue,
    IssueReport,
    RuleConfig,
    freeze,
    sort_units,
    thaw,
)
from .workers import WorkerPool

logger = logging.getLogger(__name__)

# Seeded into every unit's almanac by the engine itself
SEEDED_FACTS = (
    "fileData", "dependencyData", "standardStructure", "repoPath", "globalFileMetadata",
)

# Levels reported to telemetry when a rule fires
TELEMETRY_LEVELS = frozenset({"warning", "fatality"})

MAX_SNIPPET_LENGTH = 200


def _snippet(content: str, line: int) -> Optional[str]:
    lines = content.splitlines()
    if 1 <= line <= len(lines):
        text = lines[line - 1].strip()
        return text[:MAX_SNIPPET_LENGTH] or None
    return None


class ExecutionEngine:
    """Runs resolved rules over files plus the repository sentinel."""

    def __init__(self, registry: Optional[PluginRegistry] = None,
                 worker_pool: Optional[WorkerPool] = None,
                 telemetry: Optional[Telemetry] = None,
                 location_resolver: Optional[LocationResolver] = None):
        self.registry = registry or get_registry()
        self.worker_pool = worker_pool
        self.telemetry = telemetry or NULL_TELEMETRY
        self.location_resolver = location_resolver or LocationResolver()

    # -- setup --------------------------------------------------------------

    def _enabled_facts(self, config: ExecutionConfig) -> Dict[str, FactDefn]:
        wanted = set(config.archetype.facts)
        facts = {f.name: f for f in self.registry.get_plugin_facts() if f.name in wanted}
        missing = wanted - set(facts) - set(SEEDED_FACTS)
        if missing:
            logger.warning("Archetype %s enables unregistered facts: %s",
                           config.name, ", ".join(sorted(missing)))
        return facts

    def _enabled_operators(self, config: ExecutionConfig) -> List[OperatorDefn]:
        wanted = set(config.archetype.operators)
        operators = [o for o in self.registry.get_plugin_operators() if o.name in wanted]
        missing = wanted - {o.name for o in operators}
        if missing:
            logger.warning("Archetype %s enables unregistered operators: %s",
                           config.name, ", ".join(sorted(missing)))
        return operators

    def _dispatch(self, fn: Any, params: Dict[str, Any], almanac: Almanac) -> Any:
        return self.worker_pool.run(fn, params, almanac, task_type="fact")

    def _almanac(self, facts: Mapping[str, FactDefn], unit: FileData, config: ExecutionConfig,
                 repo_path: Optional[str], installed: Mapping[str, str],
                 global_metadata: List[Dict[str, Any]]) -> Almanac:
        settings = config.archetype.config
        runtime = {
            "fileData": unit.to_dict(),
            "dependencyData": {
                "installedDependencyVersions": dict(installed),
                "minimumDependencyVersions": thaw(settings.minimum_dependency_versions),
            },
            "standardStructure": thaw(settings.standard_structure),
            "repoPath": repo_path,
            "globalFileMetadata": global_metadata,
        }
        dispatcher = self._dispatch if self.worker_pool is not None else None
        return Almanac(facts, runtime=runtime, dispatcher=dispatcher)

    # -- evaluation ---------------------------------------------------------

    def _run_error_action(self, rule: RuleConfig, unit: FileData, error: BaseException) -> None:
        if not rule.on_error or not rule.on_error.get("action"):
            return
        context = ErrorActionContext(
            rule_name=rule.name,
            file_path=unit.file_path,
            level=rule.event_type,
            error=error,
            params=thaw(rule.on_error.get("params") or {}),
        )
        outcome = execute_error_action(rule.on_error["action"], context, self.registry)
        if not outcome.success:
            logger.warning("Error action for %s did not succeed: %s", rule.name, outcome.error)

    def _build_issue(self, result: RuleResult, unit: FileData) -> Issue:
        rule = result.rule
        params = dict(result.event_params)
        message = params.get("message", "")
        details: Dict[str, Any] = {
            "message": message,
            "conditionDetails": result.condition_details,
            "allConditions": result.all_conditions,
            "conditionType": result.condition_type,
            "ruleDescription": rule.description,
            "recommendations": list(rule.recommendations),
            "filePath": unit.file_path,
            "fileName": unit.file_name,
        }
        details.update(params)

        raw = {"ruleFailure": rule.name, "level": rule.event_type, "details": details}
        extraction = self.location_resolver.extract_location(raw)
        snippet = None
        if extraction.found and not unit.is_global and unit.content:
            snippet = _snippet(unit.content, extraction.location.start_line)

        return Issue(
            rule_name=rule.name,
            level=rule.event_type,
            message=message,
            file_path=unit.file_path,
            details=freeze(details),
            location=extraction.location,
            snippet=snippet,
        )

    def evaluate_unit(self, unit: FileData, rules: Iterable[RuleConfig],
                      evaluator: RuleEvaluator, almanac: Almanac) -> List[Issue]:
        """Evaluate every rule against one unit.

        Raises:
            EvaluationError: a rule failed and does not swallow errors
        """
        issues: List[Issue] = []
        seen = set()
        for rule in rules:
            try:
                result = evaluator.evaluate(rule, almanac)
            except Exception as e:
                self._run_error_action(rule, unit, e)
                if rule.error_behavior == "swallow":
                    logger.warning("Rule %s failed on %s (swallowed): %s",
                                   rule.name, unit.file_path, e)
                    continue
                raise EvaluationError(rule.name, unit.file_path, e) from e

            if not result.fired:
                continue
            issue = self._build_issue(result, unit)
            key = f"{issue.rule_name}:{issue.level}:{issue.message}"
            if key in seen:
                continue
            seen.add(key)
            issues.append(issue)
        return issues

    def run(self, files: Iterable[FileData], config: ExecutionConfig,
            repo_url: Optional[str] = None, repo_path: Optional[str] = None,
            installed_dependencies: Optional[Mapping[str, str]] = None,
            all_files: Optional[Iterable[FileData]] = None) -> IssueReport:
        """Evaluate config's rules over files and the repository sentinel.

        all_files is what repository-wide facts see; it defaults to files.
        Pass the full file list when files is only the changed subset.
        """
        units = [f for f in sort_units(files) if not f.is_global]
        units.append(FileData.global_check())

        facts = self._enabled_facts(config)
        evaluator = RuleEvaluator(self._enabled_operators(config))
        rules = sorted(config.rules, key=lambda r: -r.priority)
        exempt = set(ExemptionStore(config.exemptions, self.telemetry)
                     .exempt_rules(repo_url, [r.name for r in rules]))
        installed = installed_dependencies or {}
        global_metadata = [f.to_dict() for f in (all_files if all_files is not None else units)
                           if not f.is_global]

        report = IssueReport(config.name)
        report.file_count = len(units) - 1
        logger.info("[%s] Evaluating %d rules over %d files plus the repository check",
                    config.correlation_id, len(rules), report.file_count)

        for unit in units:
            almanac = self._almanac(facts, unit, config, repo_path, installed, global_metadata)
            try:
                issues = self.evaluate_unit(unit, rules, evaluator, almanac)
            except EvaluationError as e:
                logger.error("[%s] Archetype %s: rule %s failed on %s: %s",
                             config.correlation_id, config.name, e.rule_name,
                             e.file_path, e.cause)
                issues = []
            except Exception as e:
                logger.error("[%s] Archetype %s: evaluation of %s failed: %s",
                             config.correlation_id, config.name, unit.file_path, e)
                issues = []

            issues = [i.exempted() if i.rule_name in exempt else i for i in issues]
            for issue in issues:
                if issue.level in TELEMETRY_LEVELS:
                    self.telemetry.send(issue.level, {
                        "archetype": config.name,
                        "rule": issue.rule_name,
                        "filePath": issue.file_path,
                        "message": issue.message,
                    })
            logger.debug("%s: %d issues", unit.file_path, len(issues))
            report.add(REPO_GLOBAL_CHECK if unit.is_global else unit.file_path, issues)

        return report
