"""
Tests for the built-in plugins' facts and operators.
"""

import json

import pytest

from engine.evaluator import Almanac
from engine.types import REPO_GLOBAL_CHECK
from plugins import BUILTIN_PLUGINS, register_builtin_plugins
from plugins.ast_metrics import (
    analyze_source,
    ast_complexity,
    function_complexity,
    function_count,
    function_count_threshold,
    language_for,
)
from plugins.dependency import (
    collect_installed_dependencies,
    outdated_framework,
    repo_dependency_analysis,
    satisfies,
    version_bounds,
)
from plugins.filesystem import (
    directory_structure,
    file_contains,
    mask_sensitive_data,
    missing_directories,
    non_standard_directory_structure,
    repo_file_analysis,
)
from plugins.patterns import compile_pattern, global_file_analysis, global_pattern_ratio, regex_match
from plugins.required_files import missing_required_files, missing_required_files_operator


def _almanac(file_name="app.js", content="", repo_path=None, **runtime):
    facts = {
        "fileData": {"fileName": file_name, "filePath": f"/repo/{file_name}",
                     "fileContent": content},
        "repoPath": repo_path,
    }
    facts.update(runtime)
    return Almanac(runtime=facts)


class TestRegistration:
    def test_builtin_plugins_register(self, registry):
        assert set(registry.get_plugin_names()) == {p.name for p in BUILTIN_PLUGINS}
        for name in ("repoFileAnalysis", "globalFileAnalysis", "repoDependencyAnalysis",
                     "missingRequiredFiles", "functionComplexity", "functionCount",
                     "directoryStructure"):
            assert registry.get_fact(name)
        assert registry.get_fact("functionComplexity").offload

    def test_registering_twice_is_harmless(self, registry):
        register_builtin_plugins(registry)
        assert len(registry.get_plugin_names()) == len(BUILTIN_PLUGINS)


class TestFilesystem:
    CONTENT = "const a = 1;\nconst password = 'hunter22';\nlog(password);\n"

    def test_matches_carry_positions(self):
        result = repo_file_analysis({"checkPattern": ["password"]}, _almanac(content=self.CONTENT))
        assert result["summary"]["totalMatches"] == 2
        first = result["matches"][0]
        assert (first["lineNumber"], first["columnNumber"]) == (2, 7)
        assert first["range"]["end"] == {"line": 2, "column": 15}
        assert "hunter22" not in first["context"]
        assert result["result"][0]["lineNumber"] == 2

    def test_capture_groups(self):
        result = repo_file_analysis({"checkPattern": r"const (\w+)", "captureGroups": True},
                                    _almanac(content=self.CONTENT))
        assert [m["groups"] for m in result["matches"]] == [["a"], ["password"]]

    def test_global_unit_has_no_matches(self):
        result = repo_file_analysis({"checkPattern": ["password"]},
                                    _almanac(REPO_GLOBAL_CHECK, self.CONTENT))
        assert result["matches"] == []

    def test_file_contains(self):
        assert file_contains({"result": [1]}, True)
        assert not file_contains({"result": []}, True)
        assert file_contains({"result": []}, False)
        assert not file_contains(None, True)

    def test_mask_sensitive_data(self):
        masked = mask_sensitive_data("api_key = 'abcdef123'")
        assert "abcdef123" not in masked
        assert masked.startswith("api_key = 'ab")

    def test_directory_structure(self, tmp_path):
        (tmp_path / "src" / "core").mkdir(parents=True)
        (tmp_path / "node_modules" / "x").mkdir(parents=True)
        dirs = directory_structure({}, _almanac(repo_path=str(tmp_path)))
        assert dirs == ["src", "src/core"]
        standard = {"src": {"core": None, "utils": None}}
        assert missing_directories(dirs, standard) == ["src/utils"]
        assert non_standard_directory_structure(dirs, standard)
        assert not non_standard_directory_structure(dirs + ["src/utils"], standard)
        assert directory_structure({}, _almanac(repo_path=None)) is None


class TestPatterns:
    def test_compile_pattern_flags(self):
        assert compile_pattern("/todo/i").search("TODO")
        assert compile_pattern("/^b/m").search("a\nb")
        assert compile_pattern("/x/g").search("x")
        assert compile_pattern("plain").search("plain text")

    def test_regex_match(self, caplog):
        assert regex_match("useEffect(() => {})", r"useEffect\(")
        assert not regex_match(42, "4")
        assert not regex_match("x", "(")
        assert "invalid pattern" in caplog.text

    def test_global_file_analysis_and_ratio(self):
        files = [
            {"fileName": "a.tsx", "filePath": "/r/a.tsx", "fileContent": "import { Button } from 'newlib';\n"},
            {"fileName": "b.tsx", "filePath": "/r/b.tsx", "fileContent": "import x from 'oldlib';\nimport y from 'oldlib';\n"},
            {"fileName": "c.md", "filePath": "/r/c.md", "fileContent": "oldlib newlib"},
        ]
        params = {"newPatterns": ["newlib"], "legacyPatterns": ["oldlib"], "fileFilter": r"\.tsx$"}
        result = global_file_analysis(params, _almanac(REPO_GLOBAL_CHECK, globalFileMetadata=files))
        assert result["summary"] == {"newPatternsTotal": 1, "legacyPatternsTotal": 2, "totalFiles": 3}
        legacy = result["patternData"][1]
        assert [f["filePath"] for f in legacy["files"]] == ["/r/b.tsx"]
        assert legacy["files"][0]["matches"][1]["lineNumber"] == 2

        assert global_pattern_ratio(result, {"value": 0.5, "comparison": "lte"})
        assert not global_pattern_ratio(result, {"value": 0.5, "comparison": "gte"})
        assert global_pattern_ratio(result, 0.3)
        assert not global_pattern_ratio(result, "bogus")
        assert not global_pattern_ratio(None, 0.3)


class TestDependency:
    @pytest.mark.parametrize("required,lower,upper", [
        ("^18.2.0", "18.2.0", "19.0.0"),
        ("^0.3.1", "0.3.1", "0.4.0"),
        ("^0.0.4", "0.0.4", "0.0.5"),
        ("~1.4.2", "1.4.2", "1.5.0"),
        (">=2.0.0", "2.0.0", None),
    ])
    def test_version_bounds(self, required, lower, upper):
        lo, hi = version_bounds(required)
        assert str(lo) == lower
        assert (str(hi) if hi else None) == upper

    @pytest.mark.parametrize("installed,required,expected", [
        ("18.3.1", "^18.2.0", True),
        ("17.0.2", "^18.2.0", False),
        ("19.0.0", "^18.2.0", False),
        ("19.0.0-rc.1", "^18.2.0", True),
        ("3.0.0", "2.0.0", True),
        ("latest", "^1.0.0", None),
    ])
    def test_satisfies(self, installed, required, expected):
        assert satisfies(installed, required) is expected

    def test_installed_versions_prefer_node_modules(self, tmp_path):
        (tmp_path / "package.json").write_text(json.dumps({
            "dependencies": {"react": "^17.0.0"},
            "devDependencies": {"jest": "^29.0.0"},
        }, indent=2))
        installed = tmp_path / "node_modules" / "react"
        installed.mkdir(parents=True)
        (installed / "package.json").write_text(json.dumps({"version": "17.0.2"}))
        assert collect_installed_dependencies(str(tmp_path)) == {"react": "17.0.2", "jest": "^29.0.0"}

    def test_repo_dependency_analysis(self, tmp_path):
        (tmp_path / "package.json").write_text(json.dumps({
            "dependencies": {"react": "17.0.2", "lodash": "4.17.21"},
        }, indent=2))
        almanac = _almanac(REPO_GLOBAL_CHECK, repo_path=str(tmp_path), dependencyData={
            "installedDependencyVersions": {},
            "minimumDependencyVersions": {"react": "^18.2.0", "lodash": "^4.0.0", "vue": "^3.0.0"},
        })
        failures = repo_dependency_analysis({}, almanac)
        assert len(failures) == 1
        failure = failures[0]
        assert failure["dependency"] == "react"
        assert failure["currentVersion"] == "17.0.2"
        assert failure["location"]["startLine"] == 3
        assert outdated_framework(failures, True)
        assert not outdated_framework([], True)


class TestRequiredFiles:
    def test_missing_files_case_insensitive(self, tmp_path):
        (tmp_path / "readme.md").write_text("x")
        (tmp_path / "docs").mkdir()
        (tmp_path / "docs" / "GUIDE.md").write_text("x")
        params = {"requiredFiles": ["README.md", "docs/guide.md", "LICENSE"]}
        result = missing_required_files(params, _almanac(repo_path=str(tmp_path)))
        assert result == {"missing": ["LICENSE"], "total": 3, "found": 2}
        assert missing_required_files_operator(result, True)

    def test_default_requires_readme(self, tmp_path):
        result = missing_required_files({}, _almanac(repo_path=str(tmp_path)))
        assert result["missing"] == ["README.md"]


PYTHON_SOURCE = """\
def tangled(a, b, c):
    if a:
        for x in b:
            if x and c:
                return x
    elif b:
        return 1
    return 0


def simple():
    return 1
"""

JS_SOURCE = """\
function pick(a) {
  return a ? 1 : 2;
}
const both = (x, y) => x && y;
"""


class TestAst:
    def test_language_for(self):
        assert language_for("a/b.py") == "python"
        assert language_for("c.TSX") == "tsx"
        assert language_for("d.go") is None

    def test_python_metrics(self):
        metrics = {m["name"]: m for m in analyze_source(PYTHON_SOURCE, "python")}
        tangled = metrics["tangled"]
        assert tangled["cyclomaticComplexity"] == 6
        assert tangled["nestingDepth"] == 3
        assert tangled["parameterCount"] == 3
        assert tangled["returnCount"] == 3
        assert tangled["location"]["startLine"] == 1
        assert tangled["location"]["startColumn"] == 1
        assert metrics["simple"]["cyclomaticComplexity"] == 1
        assert metrics["simple"]["location"]["startLine"] == 11

    def test_javascript_metrics(self):
        metrics = {m["name"]: m for m in analyze_source(JS_SOURCE, "javascript")}
        assert metrics["pick"]["cyclomaticComplexity"] == 2
        assert metrics["both"]["cyclomaticComplexity"] == 2
        assert metrics["both"]["parameterCount"] == 2

    def test_function_complexity_threshold_filter(self):
        almanac = _almanac("mod.py", PYTHON_SOURCE)
        everything = function_complexity({}, almanac)
        assert [c["name"] for c in everything["complexities"]] == ["tangled", "simple"]
        flagged = function_complexity({"thresholds": {"cyclomaticComplexity": 5}}, almanac)
        assert [c["name"] for c in flagged["complexities"]] == ["tangled"]
        assert ast_complexity(flagged, {"cyclomaticComplexity": 5})
        assert not ast_complexity(flagged, {"cyclomaticComplexity": 50})
        assert not ast_complexity({"complexities": []}, True)

    def test_function_count(self):
        result = function_count({}, _almanac("mod.py", PYTHON_SOURCE))
        assert result == {"count": 2, "functions": ["tangled", "simple"]}
        assert function_count_threshold(result, 2)
        assert function_count_threshold(result, {"threshold": 1, "comparison": "gt"})
        assert not function_count_threshold(result, {"threshold": 2, "comparison": "lt"})

    def test_unsupported_and_global_units(self):
        assert function_count({}, _almanac("main.go", "func main() {}")) == {"count": 0, "functions": []}
        assert function_complexity({}, _almanac(REPO_GLOBAL_CHECK, "")) == {"complexities": []}
