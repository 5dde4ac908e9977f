"""
JSON schema validation for archetypes, rules and exemptions.

Every payload that crosses a trust boundary (remote server, local file,
repository override) is validated here before it is turned into one of
the frozen types in engine.types.
"""

from typing import Any, Dict, List

import jsonschema

from .errors import ValidationError
from .types import parse_timestamp

PROTOCOL_VERSION = "1"
ENGINE_VERSION = "0.1.0"

# Archetype and rule names used as URL path segments or file stems
NAME_PATTERN = r"^[a-zA-Z0-9-_]{1,50}$"

ARCHETYPE_JSON_SCHEMA = {
    "type": "object",
    "properties": {
        "name": {"type": "string", "pattern": NAME_PATTERN},
        "description": {"type": "string"},
        "version": {"type": ["string", "number"]},
        "rules": {
            "type": "array",
            "items": {"type": "string"},
            "minItems": 1,
        },
        "operators": {
            "type": "array",
            "items": {"type": "string"},
            "minItems": 1,
        },
        "facts": {
            "type": "array",
            "items": {"type": "string"},
            "minItems": 1,
        },
        "plugins": {
            "type": "array",
            "items": {"type": "string"},
        },
        "config": {
            "type": "object",
            "properties": {
                "minimumDependencyVersions": {
                    "type": "object",
                    "additionalProperties": {"type": "string"},
                },
                "standardStructure": {"type": ["object", "null"]},
                "blacklistPatterns": {"type": "array", "items": {"type": "string"}},
                "whitelistPatterns": {"type": "array", "items": {"type": "string"}},
            },
            "required": [
                "minimumDependencyVersions",
                "standardStructure",
                "blacklistPatterns",
                "whitelistPatterns",
            ],
        },
    },
    "required": ["name", "rules", "operators", "facts", "config"],
}

_CONDITION_LIST = {"type": "array", "items": {"$ref": "#/definitions/condition"}}

RULE_JSON_SCHEMA = {
    "type": "object",
    "definitions": {
        "condition": {
            "type": "object",
            "oneOf": [
                {"required": ["all"]},
                {"required": ["any"]},
                {"required": ["not"]},
                {"required": ["fact", "operator", "value"]},
            ],
            "properties": {
                "all": _CONDITION_LIST,
                "any": _CONDITION_LIST,
                "not": {"$ref": "#/definitions/condition"},
                "fact": {"type": "string"},
                "operator": {"type": "string"},
                "path": {"type": "string"},
                "params": {"type": "object"},
            },
        },
    },
    "properties": {
        "name": {"type": "string", "pattern": NAME_PATTERN},
        "description": {"type": "string"},
        "recommendations": {"type": "array", "items": {"type": "string"}},
        "priority": {"type": "integer"},
        "conditions": {
            "type": "object",
            "oneOf": [{"required": ["all"]}, {"required": ["any"]}],
            "properties": {
                "all": _CONDITION_LIST,
                "any": _CONDITION_LIST,
            },
        },
        "event": {
            "type": "object",
            "properties": {
                "type": {
                    "type": "string",
                    "enum": ["fatality", "error", "warning", "info", "hint", "exempt"],
                },
                "params": {"type": "object"},
            },
            "required": ["type", "params"],
        },
        "errorBehavior": {"type": "string", "enum": ["swallow", "fatal"]},
        "onError": {
            "type": "object",
            "properties": {
                "action": {"type": "string"},
                "params": {"type": "object"},
            },
            "required": ["action"],
        },
    },
    "required": ["name", "conditions", "event"],
}

EXEMPTION_JSON_SCHEMA = {
    "type": "object",
    "properties": {
        "repoUrl": {"type": "string", "minLength": 1},
        "rule": {"type": "string", "minLength": 1},
        "expirationDate": {"type": "string", "minLength": 1},
        "reason": {"type": "string"},
    },
    "required": ["repoUrl", "rule", "expirationDate"],
}

_ARCHETYPE_VALIDATOR = jsonschema.Draft7Validator(ARCHETYPE_JSON_SCHEMA)
_RULE_VALIDATOR = jsonschema.Draft7Validator(RULE_JSON_SCHEMA)
_EXEMPTION_VALIDATOR = jsonschema.Draft7Validator(EXEMPTION_JSON_SCHEMA)


def _collect_errors(validator: jsonschema.Draft7Validator, payload: Any) -> List[str]:
    errors = []
    for error in sorted(validator.iter_errors(payload), key=lambda e: [str(p) for p in e.path]):
        location = "/".join(str(p) for p in error.path) or "<root>"
        errors.append(f"{location}: {error.message}")
    return errors


def archetype_errors(payload: Any) -> List[str]:
    """Return validation messages for an archetype payload (empty when valid)."""
    return _collect_errors(_ARCHETYPE_VALIDATOR, payload)


def rule_errors(payload: Any) -> List[str]:
    return _collect_errors(_RULE_VALIDATOR, payload)


def exemption_errors(payload: Any) -> List[str]:
    errors = _collect_errors(_EXEMPTION_VALIDATOR, payload)
    if not errors:
        try:
            parse_timestamp(payload["expirationDate"])
        except ValueError:
            errors.append(f"expirationDate: not an ISO-8601 date: {payload['expirationDate']!r}")
    return errors


def validate_archetype(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Raise ValidationError unless payload is a valid archetype."""
    errors = archetype_errors(payload)
    if errors:
        name = payload.get("name", "<unnamed>") if isinstance(payload, dict) else "<invalid>"
        raise ValidationError("archetype", str(name), errors)
    return payload


def validate_rule(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Raise ValidationError unless payload is a valid rule."""
    errors = rule_errors(payload)
    if errors:
        name = payload.get("name", "<unnamed>") if isinstance(payload, dict) else "<invalid>"
        raise ValidationError("rule", str(name), errors)
    return payload


def validate_exemption(payload: Dict[str, Any]) -> Dict[str, Any]:
    errors = exemption_errors(payload)
    if errors:
        name = payload.get("rule", "<unnamed>") if isinstance(payload, dict) else "<invalid>"
        raise ValidationError("exemption", str(name), errors)
    return payload
