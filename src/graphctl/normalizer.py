"""Attribute canonicalization and fingerprinting.

Fingerprints decide between NoOp and Update, so two attribute sets that the
provider treats as identical must hash identically:

- Empty equivalence: {} / [] / "" / null / missing are the same for labels,
  env maps and descriptions
- Case-insensitive enums: "https" and "HTTPS" are the same protocol
- Whitespace in security rule expressions is not significant
- Unordered collections (rules by priority, backends, members) are sorted

The fingerprint is the SHA-256 of the canonical form serialized as JSON with
sorted keys.
"""

from __future__ import annotations

import hashlib
import json
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .models import PendingValue, Reference, ResourceType


class NormalizationType(str, Enum):
    """Types of normalization operations."""

    # Empty equivalence: [], {}, "", null, missing are equivalent
    EMPTY_EQUIVALENCE = "empty_equivalence"

    # Case normalization for enum-like strings
    CASE_INSENSITIVE = "case_insensitive"

    # Whitespace normalization for expressions
    WHITESPACE_NORMALIZE = "whitespace_normalize"

    # Array order independence
    ARRAY_UNORDERED = "array_unordered"

    # Default value equivalence
    DEFAULT_VALUE = "default_value"


@dataclass(frozen=True)
class NormalizationRule:
    """A single normalization rule.

    Attributes:
        resource_type: Resource type to match ("*" for all)
        path_pattern: Attribute path pattern without list indices (supports * and **)
        normalization_type: Type of normalization to apply
        params: Additional parameters for the normalization
        reason: Human-readable explanation
    """

    resource_type: str
    path_pattern: str
    normalization_type: NormalizationType
    params: dict[str, Any] = field(default_factory=dict)
    reason: str = ""

    def matches(self, resource_type: str, path: str) -> bool:
        """Check if this rule applies to a resource type and attribute path."""
        if self.resource_type != "*" and self.resource_type != resource_type:
            return False
        return self.path_pattern == "*" or _glob_match(path, self.path_pattern)


def _glob_match(value: str, pattern: str) -> bool:
    """Glob matching where * stays within one path segment and ** spans many."""
    regex = "^"
    i = 0
    while i < len(pattern):
        if pattern[i : i + 3] == "**.":
            regex += "(?:.*\\.)?"
            i += 3
        elif pattern[i : i + 2] == "**":
            regex += ".*"
            i += 2
        elif pattern[i] == "*":
            regex += "[^.]*"
            i += 1
        else:
            regex += re.escape(pattern[i])
            i += 1
    return re.match(regex + "$", value) is not None


DEFAULT_NORMALIZATION_RULES: list[NormalizationRule] = [
    # Empty equivalence
    NormalizationRule(
        resource_type="*",
        path_pattern="labels",
        normalization_type=NormalizationType.EMPTY_EQUIVALENCE,
        reason="Empty labels equal no labels",
    ),
    NormalizationRule(
        resource_type=ResourceType.COMPUTE_SERVICE.value,
        path_pattern="env",
        normalization_type=NormalizationType.EMPTY_EQUIVALENCE,
        reason="Empty environment equals no environment",
    ),
    NormalizationRule(
        resource_type="*",
        path_pattern="**.description",
        normalization_type=NormalizationType.EMPTY_EQUIVALENCE,
        reason="Empty description equals no description",
    ),
    NormalizationRule(
        resource_type="*",
        path_pattern="*_rules",
        normalization_type=NormalizationType.EMPTY_EQUIVALENCE,
        reason="No rules equals an empty rule list",
    ),
    NormalizationRule(
        resource_type=ResourceType.URL_MAP.value,
        path_pattern="path_matchers",
        normalization_type=NormalizationType.EMPTY_EQUIVALENCE,
        reason="No path matchers equals an empty list",
    ),
    NormalizationRule(
        resource_type=ResourceType.SECURITY_POLICY.value,
        path_pattern="rules",
        normalization_type=NormalizationType.EMPTY_EQUIVALENCE,
        reason="No rules equals an empty rule list",
    ),

    # Case insensitive enums
    NormalizationRule(
        resource_type="*",
        path_pattern="protocol",
        normalization_type=NormalizationType.CASE_INSENSITIVE,
        reason="Protocol names are case-insensitive",
    ),
    NormalizationRule(
        resource_type="*",
        path_pattern="ip_protocol",
        normalization_type=NormalizationType.CASE_INSENSITIVE,
        reason="Protocol names are case-insensitive",
    ),
    NormalizationRule(
        resource_type="*",
        path_pattern="load_balancing_scheme",
        normalization_type=NormalizationType.CASE_INSENSITIVE,
        reason="Scheme names are case-insensitive",
    ),
    NormalizationRule(
        resource_type=ResourceType.GLOBAL_ADDRESS.value,
        path_pattern="address_type",
        normalization_type=NormalizationType.CASE_INSENSITIVE,
        reason="Address types are case-insensitive",
    ),
    NormalizationRule(
        resource_type=ResourceType.GLOBAL_ADDRESS.value,
        path_pattern="ip_version",
        normalization_type=NormalizationType.CASE_INSENSITIVE,
        reason="IP versions are case-insensitive",
    ),
    NormalizationRule(
        resource_type=ResourceType.HTTPS_PROXY.value,
        path_pattern="quic_override",
        normalization_type=NormalizationType.CASE_INSENSITIVE,
        reason="QUIC override values are case-insensitive",
    ),
    NormalizationRule(
        resource_type=ResourceType.NETWORK_ENDPOINT_GROUP.value,
        path_pattern="network_endpoint_type",
        normalization_type=NormalizationType.CASE_INSENSITIVE,
        reason="Endpoint types are case-insensitive",
    ),
    NormalizationRule(
        resource_type=ResourceType.MANAGED_CERTIFICATE.value,
        path_pattern="domains",
        normalization_type=NormalizationType.CASE_INSENSITIVE,
        reason="DNS names are case-insensitive",
    ),

    # Whitespace
    NormalizationRule(
        resource_type=ResourceType.SECURITY_POLICY.value,
        path_pattern="rules.expression",
        normalization_type=NormalizationType.WHITESPACE_NORMALIZE,
        reason="Whitespace in rule expressions is not significant",
    ),

    # Array ordering for unordered collections
    NormalizationRule(
        resource_type=ResourceType.SECURITY_POLICY.value,
        path_pattern="rules",
        normalization_type=NormalizationType.ARRAY_UNORDERED,
        reason="Rules are evaluated by priority, not list position",
    ),
    NormalizationRule(
        resource_type=ResourceType.BACKEND_SERVICE.value,
        path_pattern="backends",
        normalization_type=NormalizationType.ARRAY_UNORDERED,
        reason="Backend order doesn't matter",
    ),
    NormalizationRule(
        resource_type=ResourceType.URL_MAP.value,
        path_pattern="*",
        normalization_type=NormalizationType.ARRAY_UNORDERED,
        reason="Host rules and path matchers are matched by content",
    ),

    # Default values
    NormalizationRule(
        resource_type=ResourceType.SECURITY_POLICY.value,
        path_pattern="rules.preview",
        normalization_type=NormalizationType.DEFAULT_VALUE,
        params={"default": False},
        reason="Preview mode defaults to false",
    ),
]


class AttributeNormalizer:
    """Canonicalizes plain attribute structures before hashing."""

    def __init__(
        self,
        rules: list[NormalizationRule] | None = None,
        enable_default_rules: bool = True,
    ) -> None:
        self._rules: list[NormalizationRule] = []
        if enable_default_rules:
            self._rules.extend(DEFAULT_NORMALIZATION_RULES)
        if rules:
            self._rules.extend(rules)

    def canonicalize(self, resource_type: ResourceType | str, attributes: dict[str, Any]) -> Any:
        """Return the canonical form of an attribute mapping.

        None values and values normalized to None are dropped.
        """
        type_name = resource_type.value if isinstance(resource_type, ResourceType) else resource_type
        return self._canonical(attributes, type_name, "") or {}

    def _canonical(self, value: Any, resource_type: str, path: str) -> Any:
        if isinstance(value, PendingValue):
            return {"$pending": str(value.reference)}
        if isinstance(value, Reference):
            return {"$ref": str(value)}
        if isinstance(value, dict):
            result = {}
            for key, item in value.items():
                child = self._canonical(item, resource_type, f"{path}.{key}" if path else str(key))
                if child is not None:
                    result[key] = child
            value = result
        elif isinstance(value, list | tuple | set | frozenset):
            value = [self._canonical(item, resource_type, path) for item in value]
        if path:
            value = self.normalize_value(value, resource_type, path)
        return value

    def normalize_value(self, value: Any, resource_type: str, path: str) -> Any:
        """Normalize a value based on applicable rules."""
        normalized = value
        for rule in self._rules:
            if rule.matches(resource_type, path):
                normalized = self._apply_normalization(normalized, rule)
        return normalized

    def _apply_normalization(self, value: Any, rule: NormalizationRule) -> Any:
        match rule.normalization_type:
            case NormalizationType.EMPTY_EQUIVALENCE:
                return self._normalize_empty(value)
            case NormalizationType.CASE_INSENSITIVE:
                return self._normalize_case(value)
            case NormalizationType.WHITESPACE_NORMALIZE:
                return self._normalize_whitespace(value)
            case NormalizationType.ARRAY_UNORDERED:
                return self._normalize_array_order(value)
            case NormalizationType.DEFAULT_VALUE:
                return rule.params.get("default") if value is None else value
            case _:
                return value

    def _normalize_empty(self, value: Any) -> Any:
        """[], {}, "" and null all become None."""
        if value in ("", [], {}):
            return None
        return value

    def _normalize_case(self, value: Any) -> Any:
        if isinstance(value, str):
            return value.lower()
        if isinstance(value, list):
            return [item.lower() if isinstance(item, str) else item for item in value]
        return value

    def _normalize_whitespace(self, value: Any) -> Any:
        if isinstance(value, str):
            return " ".join(value.split())
        return value

    def _normalize_array_order(self, value: Any) -> Any:
        if isinstance(value, list):
            return sorted(value, key=lambda item: json.dumps(item, sort_keys=True))
        return value


_default_normalizer = AttributeNormalizer()


def canonical_json(
    resource_type: ResourceType | str,
    attributes: dict[str, Any],
    normalizer: AttributeNormalizer | None = None,
) -> str:
    """Serialize the canonical form of attributes deterministically."""
    canonical = (normalizer or _default_normalizer).canonicalize(resource_type, attributes)
    return json.dumps(canonical, sort_keys=True, separators=(",", ":"), default=str)


def compute_fingerprint(
    resource_type: ResourceType | str,
    attributes: dict[str, Any],
    normalizer: AttributeNormalizer | None = None,
) -> str:
    """SHA-256 content hash of canonicalized attributes."""
    payload = canonical_json(resource_type, attributes, normalizer)
    return hashlib.sha256(payload.encode()).hexdigest()
