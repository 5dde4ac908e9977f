"""
Built-in archetype profiles.

This module defines the statically compiled archetypes, rules and
exemption defaults used when neither a config server nor a local config
directory provides them. Payloads are kept in their wire (JSON) shape so
they pass through the same schema validation as remote/local payloads.
"""

import copy
from enum import Enum
from typing import Any, Dict, List, Optional

from .types import REPO_GLOBAL_CHECK


class BuiltinArchetype(str, Enum):
    """Archetypes available without any external configuration."""
    NODE_FULLSTACK = "node-fullstack"
    JAVA_MICROSERVICE = "java-microservice"


# ============================================================================
# SHARED CONDITIONS
# ============================================================================

_PER_FILE = {"fact": "fileData", "path": "$.fileName", "operator": "notEqual",
             "value": REPO_GLOBAL_CHECK}
_GLOBAL_ONLY = {"fact": "fileData", "path": "$.fileName", "operator": "equal",
                "value": REPO_GLOBAL_CHECK}

_COMMON_BLACKLIST = [
    r".*\/\..*",
    r".*\.(log|lock)$",
    r".*\/(dist|coverage|build|node_modules|target)(\/.*|$)",
]


# ============================================================================
# RULES
# ============================================================================
#
# Naming: "-iterative" rules run once per file, "-global" rules once
# against the repository sentinel.
#
BUILTIN_RULES: Dict[str, Dict[str, Any]] = {
    "sensitiveLogging-iterative": {
        "name": "sensitiveLogging-iterative",
        "description": "Flags credentials and secrets written into source or logs",
        "recommendations": ["Load secrets from the environment or a secret manager"],
        "conditions": {"all": [
            _PER_FILE,
            {
                "fact": "repoFileAnalysis",
                "params": {
                    "checkPattern": [
                        r"(?i)(api[_-]?key|secret|password|token)\s*[:=]\s*['\"][^'\"]+['\"]",
                    ],
                    "resultFact": "fileResultsSensitive",
                },
                "operator": "fileContains",
                "value": True,
            },
        ]},
        "event": {"type": "warning", "params": {
            "message": "Potential sensitive data found in source",
            "details": {"fact": "fileResultsSensitive"},
        }},
    },
    "noDatabases-iterative": {
        "name": "noDatabases-iterative",
        "description": "Frontend code must not talk to databases directly",
        "conditions": {"all": [
            _PER_FILE,
            {
                "fact": "repoFileAnalysis",
                "params": {
                    "checkPattern": [r"\b(oracle|mongodb|mysql|postgres)\b"],
                    "resultFact": "fileResultsDatabases",
                },
                "operator": "fileContains",
                "value": True,
            },
        ]},
        "event": {"type": "error", "params": {
            "message": "Direct database usage detected",
            "details": {"fact": "fileResultsDatabases"},
        }},
        "errorBehavior": "swallow",
    },
    "functionComplexity-iterative": {
        "name": "functionComplexity-iterative",
        "description": "Functions should stay below complexity thresholds",
        "recommendations": ["Split long functions", "Reduce nesting with early returns"],
        "conditions": {"all": [
            _PER_FILE,
            {
                "fact": "functionComplexity",
                "params": {
                    "resultFact": "complexityResult",
                    "thresholds": {
                        "cyclomaticComplexity": 20,
                        "cognitiveComplexity": 30,
                        "nestingDepth": 10,
                        "parameterCount": 5,
                        "returnCount": 10,
                    },
                },
                "operator": "astComplexity",
                "value": {
                    "cyclomaticComplexity": 20,
                    "cognitiveComplexity": 30,
                    "nestingDepth": 10,
                    "parameterCount": 5,
                    "returnCount": 10,
                },
            },
        ]},
        "event": {"type": "warning", "params": {
            "message": "Functions detected with high complexity",
            "details": {"fact": "complexityResult"},
        }},
    },
    "functionCount-iterative": {
        "name": "functionCount-iterative",
        "description": "Files should not accumulate too many functions",
        "conditions": {"all": [
            _PER_FILE,
            {
                "fact": "functionCount",
                "params": {"resultFact": "functionCountResult"},
                "path": "$.count",
                "operator": "greaterThan",
                "value": 20,
            },
        ]},
        "event": {"type": "warning", "params": {
            "message": "File has too many functions",
            "details": {"fact": "functionCountResult"},
        }},
    },
    "outdatedFramework-global": {
        "name": "outdatedFramework-global",
        "description": "Core dependencies must meet the archetype minimum versions",
        "conditions": {"all": [
            _GLOBAL_ONLY,
            {
                "fact": "repoDependencyAnalysis",
                "params": {"resultFact": "repoDependencyResults"},
                "operator": "outdatedFramework",
                "value": True,
            },
        ]},
        "event": {"type": "fatality", "params": {
            "message": "Some core dependencies have fallen out of date",
            "details": {"fact": "repoDependencyResults"},
        }},
    },
    "nonStandardDirectoryStructure-global": {
        "name": "nonStandardDirectoryStructure-global",
        "description": "Repository layout should follow the archetype structure",
        "conditions": {"all": [
            _GLOBAL_ONLY,
            {
                "fact": "directoryStructure",
                "params": {"resultFact": "directoryStructureResult"},
                "operator": "nonStandardDirectoryStructure",
                "value": {"fact": "standardStructure"},
            },
        ]},
        "event": {"type": "warning", "params": {
            "message": "Directory structure does not match the standard",
        }},
    },
    "missingRequiredFiles-global": {
        "name": "missingRequiredFiles-global",
        "description": "Repositories must ship the required top-level files",
        "conditions": {"all": [
            _GLOBAL_ONLY,
            {
                "fact": "missingRequiredFiles",
                "params": {
                    "requiredFiles": ["README.md"],
                    "resultFact": "missingRequiredFilesResult",
                },
                "operator": "missingRequiredFiles",
                "value": True,
            },
        ]},
        "event": {"type": "warning", "params": {
            "message": "Required files are missing from the repository",
            "details": {"fact": "missingRequiredFilesResult"},
        }},
    },
}


# ============================================================================
# ARCHETYPES
# ============================================================================

BUILTIN_ARCHETYPES: Dict[str, Dict[str, Any]] = {
    BuiltinArchetype.NODE_FULLSTACK.value: {
        "name": "node-fullstack",
        "description": "Node.js services with a React frontend",
        "rules": [
            "sensitiveLogging-iterative",
            "noDatabases-iterative",
            "functionComplexity-iterative",
            "functionCount-iterative",
            "outdatedFramework-global",
            "nonStandardDirectoryStructure-global",
            "missingRequiredFiles-global",
        ],
        "operators": [
            "fileContains",
            "astComplexity",
            "outdatedFramework",
            "nonStandardDirectoryStructure",
            "missingRequiredFiles",
        ],
        "facts": [
            "repoFileAnalysis",
            "functionComplexity",
            "functionCount",
            "repoDependencyAnalysis",
            "directoryStructure",
            "missingRequiredFiles",
        ],
        "config": {
            "minimumDependencyVersions": {
                "commander": "^2.0.0",
                "nodemon": "^3.9.0",
            },
            "standardStructure": {
                "src": {
                    "core": None,
                    "utils": None,
                    "operators": None,
                    "rules": None,
                    "facts": None,
                },
            },
            "blacklistPatterns": list(_COMMON_BLACKLIST),
            "whitelistPatterns": [r".*\.(ts|tsx|js|jsx|md)$"],
        },
    },
    BuiltinArchetype.JAVA_MICROSERVICE.value: {
        "name": "java-microservice",
        "description": "Spring-style Java services",
        "rules": [
            "sensitiveLogging-iterative",
            "outdatedFramework-global",
            "nonStandardDirectoryStructure-global",
        ],
        "operators": [
            "fileContains",
            "outdatedFramework",
            "nonStandardDirectoryStructure",
        ],
        "facts": [
            "repoFileAnalysis",
            "repoDependencyAnalysis",
            "directoryStructure",
        ],
        "config": {
            "minimumDependencyVersions": {},
            "standardStructure": {
                "src": {
                    "main": {"java": None, "resources": None},
                    "test": {"java": None},
                },
            },
            "blacklistPatterns": list(_COMMON_BLACKLIST),
            "whitelistPatterns": [r".*\.(java|xml|properties|yml|md)$"],
        },
    },
}

# Exemptions shipped with the engine (none by default)
BUILTIN_EXEMPTIONS: Dict[str, List[Dict[str, Any]]] = {
    BuiltinArchetype.NODE_FULLSTACK.value: [],
    BuiltinArchetype.JAVA_MICROSERVICE.value: [],
}


def get_builtin_archetype(name: str) -> Optional[Dict[str, Any]]:
    """Return a private copy of a built-in archetype payload, or None."""
    payload = BUILTIN_ARCHETYPES.get(name)
    return copy.deepcopy(payload) if payload is not None else None


def get_builtin_rule(name: str) -> Optional[Dict[str, Any]]:
    payload = BUILTIN_RULES.get(name)
    return copy.deepcopy(payload) if payload is not None else None


def get_builtin_exemptions(name: str) -> List[Dict[str, Any]]:
    return copy.deepcopy(BUILTIN_EXEMPTIONS.get(name, []))


def list_builtin_archetypes() -> List[str]:
    return [a.value for a in BuiltinArchetype]
