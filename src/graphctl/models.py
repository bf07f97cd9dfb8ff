"""Pydantic models for resource declarations with validation.

These models provide:
1. Typed per-resource attribute schemas (unknown keys rejected)
2. Validation at the boundary (fail fast, fail loudly)
3. Explicit References between resources, never string interpolation
"""

from __future__ import annotations

import ipaddress
import re
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError

# Provider naming rule shared by every resource type in the topology
NAME_PATTERN = r"^[a-z]([-a-z0-9]{0,61}[a-z0-9])?$"


class ResourceType(str, Enum):
    """Resource types of the serverless load-balancer topology."""

    COMPUTE_SERVICE = "ComputeService"
    IAM_BINDING = "IAMBinding"
    NETWORK_ENDPOINT_GROUP = "NetworkEndpointGroup"
    SECURITY_POLICY = "SecurityPolicy"
    BACKEND_SERVICE = "BackendService"
    URL_MAP = "UrlMap"
    MANAGED_CERTIFICATE = "ManagedCertificate"
    GLOBAL_ADDRESS = "GlobalAddress"
    HTTP_PROXY = "HttpProxy"
    HTTPS_PROXY = "HttpsProxy"
    FORWARDING_RULE = "ForwardingRule"


class DesiredState(str, Enum):
    """Whether a declared resource should exist."""

    PRESENT = "present"
    ABSENT = "absent"


# =============================================================================
# Identity and References
# =============================================================================


class ResourceId(BaseModel):
    """Unique (type, name) key of a resource."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: ResourceType
    name: Annotated[str, Field(pattern=NAME_PATTERN)]

    def __str__(self) -> str:
        return f"{self.type.value}/{self.name}"

    @classmethod
    def parse(cls, value: str) -> ResourceId:
        """Parse the rendered "Type/name" form.

        Raises:
            ValueError: If the value is not of the form "Type/name".
        """
        type_name, sep, name = value.partition("/")
        if not sep or not name:
            raise ValueError(f"expected 'Type/name', got '{value}'")
        return cls(type=ResourceType(type_name), name=name)


class Reference(BaseModel):
    """Pointer to an output field of another declared resource.

    YAML form: ``{ref: "GlobalAddress/lb-ip", field: "address"}``.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    target: ResourceId = Field(alias="ref")
    output: Annotated[str, Field(min_length=1, alias="field")] = "id"

    @field_validator("target", mode="before")
    @classmethod
    def parse_target(cls, v: Any) -> Any:
        if isinstance(v, str):
            return ResourceId.parse(v)
        return v

    def __str__(self) -> str:
        return f"{self.target}.{self.output}"


def ref(resource_type: ResourceType | str, name: str, output: str = "id") -> Reference:
    """Build a Reference to ``output`` of the resource ``resource_type/name``."""
    return Reference(
        target=ResourceId(type=ResourceType(resource_type), name=name),
        output=output,
    )


@dataclass(frozen=True)
class PendingValue:
    """Placeholder for an output only known after its producer is applied."""

    reference: Reference

    def __str__(self) -> str:
        return f"(known after apply: {self.reference})"


# Strict scalars: "30" is not an integer and "yes" is not a boolean
StrictBool = Annotated[bool, Field(strict=True)]


# =============================================================================
# Attribute Schemas
# =============================================================================


class Attributes(BaseModel):
    """Base attribute schema with common fields."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    description: str | None = None


class ComputeServiceAttributes(Attributes):
    """Private serverless service reachable only through the load balancer."""

    region: Annotated[str, Field(min_length=1)]
    image: Annotated[str, Field(min_length=1)]
    port: Annotated[int, Field(strict=True, ge=1, le=65535)] = 8080
    ingress: str = "internal-and-cloud-load-balancing"
    min_instances: Annotated[int, Field(strict=True, ge=0, le=1000)] = 0
    max_instances: Annotated[int, Field(strict=True, ge=1, le=1000)] = 100
    service_account: str | None = None
    env: dict[str, str] = Field(default_factory=dict)
    labels: dict[str, str] = Field(default_factory=dict)

    @field_validator("ingress")
    @classmethod
    def validate_ingress(cls, v: str) -> str:
        valid = {"all", "internal", "internal-and-cloud-load-balancing"}
        if v not in valid:
            raise ValueError(f"ingress must be one of {sorted(valid)}")
        return v

    @model_validator(mode="after")
    def validate_scaling(self) -> ComputeServiceAttributes:
        if self.min_instances > self.max_instances:
            raise ValueError("min_instances cannot exceed max_instances")
        return self


class IAMBindingAttributes(Attributes):
    """Authoritative member list for one role on a compute service."""

    service: str | Reference
    region: str | Reference
    role: str = "roles/run.invoker"
    members: Annotated[frozenset[str], Field(min_length=1)]

    @field_validator("role")
    @classmethod
    def validate_role(cls, v: str) -> str:
        if not v.startswith(("roles/", "projects/", "organizations/")):
            raise ValueError("role must be a predefined or custom role name")
        return v

    @field_validator("members")
    @classmethod
    def validate_members(cls, v: frozenset[str]) -> frozenset[str]:
        prefixes = ("user:", "serviceAccount:", "group:", "domain:", "principal:")
        for member in v:
            if member in ("allUsers", "allAuthenticatedUsers"):
                continue
            if not member.startswith(prefixes):
                raise ValueError(f"invalid IAM member '{member}'")
        return v


class NetworkEndpointGroupAttributes(Attributes):
    """Serverless network endpoint group pointing at a compute service."""

    region: str | Reference
    network_endpoint_type: str = "SERVERLESS"
    cloud_run_service: str | Reference

    @field_validator("network_endpoint_type")
    @classmethod
    def validate_endpoint_type(cls, v: str) -> str:
        if v.upper() != "SERVERLESS":
            raise ValueError("only SERVERLESS network endpoint groups are supported")
        return v


class SecurityRule(BaseModel):
    """Single security policy rule."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    priority: Annotated[int, Field(strict=True, ge=0, le=2147483646)]
    action: str
    src_ip_ranges: frozenset[str] | None = None
    expression: str | None = None
    preview: StrictBool = False
    description: str | None = None

    @field_validator("action")
    @classmethod
    def validate_action(cls, v: str) -> str:
        valid = {"allow", "deny(403)", "deny(404)", "deny(502)", "throttle", "rate_based_ban"}
        if v not in valid:
            raise ValueError(f"action must be one of {sorted(valid)}")
        return v

    @model_validator(mode="after")
    def validate_match(self) -> SecurityRule:
        if (self.src_ip_ranges is None) == (self.expression is None):
            raise ValueError("exactly one of src_ip_ranges or expression is required")
        return self


class SecurityPolicyAttributes(Attributes):
    """Web-application firewall policy attached to backend services."""

    default_action: str = "allow"
    rules: list[SecurityRule] = Field(default_factory=list)
    adaptive_protection: StrictBool = False

    @field_validator("default_action")
    @classmethod
    def validate_default_action(cls, v: str) -> str:
        valid = {"allow", "deny(403)", "deny(404)", "deny(502)"}
        if v not in valid:
            raise ValueError(f"default_action must be one of {sorted(valid)}")
        return v

    @field_validator("rules")
    @classmethod
    def validate_unique_priorities(cls, v: list[SecurityRule]) -> list[SecurityRule]:
        priorities = [rule.priority for rule in v]
        if len(priorities) != len(set(priorities)):
            raise ValueError("rule priorities must be unique")
        return v


class BackendAttachment(BaseModel):
    """Backend group attached to a backend service."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    group: str | Reference
    capacity_scaler: Annotated[float, Field(ge=0.0, le=1.0)] = 1.0


class BackendServiceAttributes(Attributes):
    """Global backend service in front of serverless endpoint groups."""

    backends: Annotated[list[BackendAttachment], Field(min_length=1)]
    protocol: str = "HTTPS"
    timeout_sec: Annotated[int, Field(strict=True, ge=1, le=86400)] = 30
    load_balancing_scheme: str = "EXTERNAL_MANAGED"
    security_policy: str | Reference | None = None
    enable_cdn: StrictBool = False
    log_sample_rate: Annotated[float, Field(ge=0.0, le=1.0)] | None = None

    @field_validator("protocol")
    @classmethod
    def validate_protocol(cls, v: str) -> str:
        valid = {"HTTP", "HTTPS", "HTTP2"}
        if v.upper() not in valid:
            raise ValueError(f"protocol must be one of {sorted(valid)}")
        return v

    @field_validator("load_balancing_scheme")
    @classmethod
    def validate_scheme(cls, v: str) -> str:
        valid = {"EXTERNAL", "EXTERNAL_MANAGED"}
        if v.upper() not in valid:
            raise ValueError(f"load_balancing_scheme must be one of {sorted(valid)}")
        return v


class UrlRedirect(BaseModel):
    """URL redirect action, used by HTTP-to-HTTPS redirect maps."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    https_redirect: StrictBool = True
    strip_query: StrictBool = False
    redirect_response_code: str = "MOVED_PERMANENTLY_DEFAULT"

    @field_validator("redirect_response_code")
    @classmethod
    def validate_code(cls, v: str) -> str:
        valid = {
            "MOVED_PERMANENTLY_DEFAULT",
            "FOUND",
            "SEE_OTHER",
            "TEMPORARY_REDIRECT",
            "PERMANENT_REDIRECT",
        }
        if v not in valid:
            raise ValueError(f"redirect_response_code must be one of {sorted(valid)}")
        return v


class PathRule(BaseModel):
    """Route a set of paths to a backend service."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    paths: Annotated[frozenset[str], Field(min_length=1)]
    service: str | Reference

    @field_validator("paths")
    @classmethod
    def validate_paths(cls, v: frozenset[str]) -> frozenset[str]:
        for path in v:
            if not path.startswith("/"):
                raise ValueError(f"path '{path}' must start with '/'")
        return v


class PathMatcher(BaseModel):
    """Named set of path rules with a default service."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: Annotated[str, Field(pattern=NAME_PATTERN)]
    default_service: str | Reference
    path_rules: list[PathRule] = Field(default_factory=list)


class HostRule(BaseModel):
    """Route a set of hosts to a path matcher."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    hosts: Annotated[frozenset[str], Field(min_length=1)]
    path_matcher: str


class UrlMapAttributes(Attributes):
    """URL map routing requests to backend services or redirecting them."""

    default_service: str | Reference | None = None
    default_url_redirect: UrlRedirect | None = None
    host_rules: list[HostRule] = Field(default_factory=list)
    path_matchers: list[PathMatcher] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_routing(self) -> UrlMapAttributes:
        if (self.default_service is None) == (self.default_url_redirect is None):
            raise ValueError("exactly one of default_service or default_url_redirect is required")
        names = [matcher.name for matcher in self.path_matchers]
        if len(names) != len(set(names)):
            raise ValueError("path matcher names must be unique")
        for rule in self.host_rules:
            if rule.path_matcher not in names:
                raise ValueError(f"host rule references unknown path matcher '{rule.path_matcher}'")
        return self


class ManagedCertificateAttributes(Attributes):
    """Provider-managed TLS certificate."""

    domains: Annotated[frozenset[str], Field(min_length=1, max_length=100)]

    @field_validator("domains")
    @classmethod
    def validate_domains(cls, v: frozenset[str]) -> frozenset[str]:
        for domain in v:
            if "*" in domain:
                raise ValueError(f"managed certificates do not support wildcards: '{domain}'")
            if not re.match(r"^[a-z0-9]([a-z0-9-]*[a-z0-9])?(\.[a-z0-9]([a-z0-9-]*[a-z0-9])?)+$", domain):
                raise ValueError(f"invalid domain '{domain}'")
        return v


class GlobalAddressAttributes(Attributes):
    """Static global IP address."""

    address: str | None = None
    address_type: str = "EXTERNAL"
    ip_version: str = "IPV4"
    labels: dict[str, str] = Field(default_factory=dict)

    @field_validator("address")
    @classmethod
    def validate_address(cls, v: str | None) -> str | None:
        if v is not None:
            try:
                ipaddress.ip_address(v)
            except ValueError as e:
                raise ValueError(f"address must be an IP address: {v}") from e
        return v

    @field_validator("address_type")
    @classmethod
    def validate_address_type(cls, v: str) -> str:
        if v.upper() not in {"EXTERNAL", "INTERNAL"}:
            raise ValueError("address_type must be EXTERNAL or INTERNAL")
        return v

    @field_validator("ip_version")
    @classmethod
    def validate_ip_version(cls, v: str) -> str:
        if v.upper() not in {"IPV4", "IPV6"}:
            raise ValueError("ip_version must be IPV4 or IPV6")
        return v


class HttpProxyAttributes(Attributes):
    """Target HTTP proxy."""

    url_map: str | Reference


class HttpsProxyAttributes(Attributes):
    """Target HTTPS proxy terminating TLS with managed certificates."""

    url_map: str | Reference
    ssl_certificates: Annotated[list[str | Reference], Field(min_length=1, max_length=15)]
    ssl_policy: str | None = None
    quic_override: str = "NONE"

    @field_validator("quic_override")
    @classmethod
    def validate_quic(cls, v: str) -> str:
        if v.upper() not in {"NONE", "ENABLE", "DISABLE"}:
            raise ValueError("quic_override must be NONE, ENABLE or DISABLE")
        return v


class ForwardingRuleAttributes(Attributes):
    """Global forwarding rule: the entry point of the load balancer."""

    target: str | Reference
    ip_address: str | Reference | None = None
    port_range: str = "443"
    ip_protocol: str = "TCP"
    load_balancing_scheme: str = "EXTERNAL_MANAGED"
    labels: dict[str, str] = Field(default_factory=dict)

    @field_validator("port_range")
    @classmethod
    def validate_port_range(cls, v: str) -> str:
        match = re.match(r"^(\d{1,5})(?:-(\d{1,5}))?$", v)
        if match is None:
            raise ValueError("port_range must be a port or a 'low-high' range")
        low = int(match.group(1))
        high = int(match.group(2) or low)
        if not (1 <= low <= high <= 65535):
            raise ValueError(f"invalid port range {v}")
        return v

    @field_validator("ip_protocol")
    @classmethod
    def validate_protocol(cls, v: str) -> str:
        if v.upper() != "TCP":
            raise ValueError("HTTP(S) forwarding rules only support TCP")
        return v


ATTRIBUTE_SCHEMAS: dict[ResourceType, type[Attributes]] = {
    ResourceType.COMPUTE_SERVICE: ComputeServiceAttributes,
    ResourceType.IAM_BINDING: IAMBindingAttributes,
    ResourceType.NETWORK_ENDPOINT_GROUP: NetworkEndpointGroupAttributes,
    ResourceType.SECURITY_POLICY: SecurityPolicyAttributes,
    ResourceType.BACKEND_SERVICE: BackendServiceAttributes,
    ResourceType.URL_MAP: UrlMapAttributes,
    ResourceType.MANAGED_CERTIFICATE: ManagedCertificateAttributes,
    ResourceType.GLOBAL_ADDRESS: GlobalAddressAttributes,
    ResourceType.HTTP_PROXY: HttpProxyAttributes,
    ResourceType.HTTPS_PROXY: HttpsProxyAttributes,
    ResourceType.FORWARDING_RULE: ForwardingRuleAttributes,
}


# =============================================================================
# Per-type Metadata
# =============================================================================

_COMMON_OUTPUTS = frozenset({"id", "name", "self_link"})

# Output fields a Reference may name, per target type
OUTPUT_FIELDS: dict[ResourceType, frozenset[str]] = {
    ResourceType.COMPUTE_SERVICE: _COMMON_OUTPUTS | {"uri", "region"},
    ResourceType.IAM_BINDING: _COMMON_OUTPUTS | {"etag", "members"},
    ResourceType.NETWORK_ENDPOINT_GROUP: _COMMON_OUTPUTS | {"region"},
    ResourceType.SECURITY_POLICY: _COMMON_OUTPUTS,
    ResourceType.BACKEND_SERVICE: _COMMON_OUTPUTS,
    ResourceType.URL_MAP: _COMMON_OUTPUTS,
    ResourceType.MANAGED_CERTIFICATE: _COMMON_OUTPUTS | {"status", "domains"},
    ResourceType.GLOBAL_ADDRESS: _COMMON_OUTPUTS | {"address"},
    ResourceType.HTTP_PROXY: _COMMON_OUTPUTS,
    ResourceType.HTTPS_PROXY: _COMMON_OUTPUTS,
    ResourceType.FORWARDING_RULE: _COMMON_OUTPUTS | {"ip_address"},
}

# Attributes fixed at creation: a change forces delete + create
IMMUTABLE_ATTRIBUTES: dict[ResourceType, frozenset[str]] = {
    ResourceType.COMPUTE_SERVICE: frozenset({"region"}),
    ResourceType.IAM_BINDING: frozenset({"service", "region", "role"}),
    # No update API: every attribute is fixed
    ResourceType.NETWORK_ENDPOINT_GROUP: frozenset(
        {"region", "network_endpoint_type", "cloud_run_service", "description"}
    ),
    ResourceType.SECURITY_POLICY: frozenset(),
    ResourceType.BACKEND_SERVICE: frozenset({"load_balancing_scheme"}),
    ResourceType.URL_MAP: frozenset(),
    ResourceType.MANAGED_CERTIFICATE: frozenset({"domains", "description"}),
    ResourceType.GLOBAL_ADDRESS: frozenset({"address", "address_type", "ip_version", "description"}),
    ResourceType.HTTP_PROXY: frozenset(),
    ResourceType.HTTPS_PROXY: frozenset(),
    ResourceType.FORWARDING_RULE: frozenset(
        {"ip_address", "ip_protocol", "port_range", "load_balancing_scheme", "description"}
    ),
}

# Attribute patterns that may point at other resources, with allowed target types.
# Patterns are dotted attribute paths with list indices removed.
REFERENCE_TARGETS: dict[ResourceType, dict[str, frozenset[ResourceType]]] = {
    ResourceType.COMPUTE_SERVICE: {},
    ResourceType.IAM_BINDING: {
        "service": frozenset({ResourceType.COMPUTE_SERVICE}),
        "region": frozenset({ResourceType.COMPUTE_SERVICE}),
    },
    ResourceType.NETWORK_ENDPOINT_GROUP: {
        "cloud_run_service": frozenset({ResourceType.COMPUTE_SERVICE}),
        "region": frozenset({ResourceType.COMPUTE_SERVICE}),
    },
    ResourceType.SECURITY_POLICY: {},
    ResourceType.BACKEND_SERVICE: {
        "backends.group": frozenset({ResourceType.NETWORK_ENDPOINT_GROUP}),
        "security_policy": frozenset({ResourceType.SECURITY_POLICY}),
    },
    ResourceType.URL_MAP: {
        "default_service": frozenset({ResourceType.BACKEND_SERVICE}),
        "path_matchers.default_service": frozenset({ResourceType.BACKEND_SERVICE}),
        "path_matchers.path_rules.service": frozenset({ResourceType.BACKEND_SERVICE}),
    },
    ResourceType.MANAGED_CERTIFICATE: {},
    ResourceType.GLOBAL_ADDRESS: {},
    ResourceType.HTTP_PROXY: {"url_map": frozenset({ResourceType.URL_MAP})},
    ResourceType.HTTPS_PROXY: {
        "url_map": frozenset({ResourceType.URL_MAP}),
        "ssl_certificates": frozenset({ResourceType.MANAGED_CERTIFICATE}),
    },
    ResourceType.FORWARDING_RULE: {
        "target": frozenset({ResourceType.HTTP_PROXY, ResourceType.HTTPS_PROXY}),
        "ip_address": frozenset({ResourceType.GLOBAL_ADDRESS}),
    },
}

# Reference attributes whose literal values are resource handles (names or
# pinned values). Region literals are locations, not handles.
HANDLE_ATTRIBUTES: dict[ResourceType, dict[str, frozenset[ResourceType]]] = {
    rtype: {pattern: targets for pattern, targets in patterns.items() if pattern != "region"}
    for rtype, patterns in REFERENCE_TARGETS.items()
}

# Declared attributes that are externally-stable handles of their producer
HANDLE_PRODUCER_FIELDS: dict[ResourceType, tuple[str, ...]] = {
    ResourceType.GLOBAL_ADDRESS: ("address",),
}


# =============================================================================
# Attribute Walking
# =============================================================================


def _join(prefix: str, part: str) -> str:
    return f"{prefix}.{part}" if prefix else part


def iter_attribute_values(
    value: Any, path: str = "", pattern: str = ""
) -> Iterator[tuple[str, str, Any]]:
    """Yield (path, pattern, leaf) for every leaf of an attribute structure.

    ``path`` keeps list indices ("backends.0.group"); ``pattern`` drops them
    ("backends.group") so it can be matched against REFERENCE_TARGETS.
    References are leaves.
    """
    if isinstance(value, BaseModel) and not isinstance(value, Reference):
        for name in type(value).model_fields:
            yield from iter_attribute_values(
                getattr(value, name), _join(path, name), _join(pattern, name)
            )
    elif isinstance(value, Mapping):
        for key, item in value.items():
            yield from iter_attribute_values(item, _join(path, str(key)), _join(pattern, str(key)))
    elif isinstance(value, list | tuple):
        for index, item in enumerate(value):
            yield from iter_attribute_values(item, _join(path, str(index)), pattern)
    elif isinstance(value, set | frozenset):
        for item in sorted(value, key=str):
            yield path, pattern, item
    else:
        yield path, pattern, value


def to_plain(value: Any) -> Any:
    """Convert an attribute structure to plain dicts and lists.

    Unset (None) fields are dropped, sets become sorted lists and References
    are kept as-is so they can be resolved later.
    """
    if isinstance(value, Reference | PendingValue):
        return value
    if isinstance(value, BaseModel):
        plain: dict[str, Any] = {}
        for name in type(value).model_fields:
            item = getattr(value, name)
            if item is not None:
                plain[name] = to_plain(item)
        return plain
    if isinstance(value, Mapping):
        return {key: to_plain(item) for key, item in value.items() if item is not None}
    if isinstance(value, list | tuple):
        return [to_plain(item) for item in value]
    if isinstance(value, set | frozenset):
        return sorted(to_plain(item) for item in value)
    return value


def substitute_references(value: Any, resolve: Callable[[Reference], Any]) -> Any:
    """Return a copy of a plain attribute structure with References resolved."""
    if isinstance(value, Reference):
        return resolve(value)
    if isinstance(value, dict):
        return {key: substitute_references(item, resolve) for key, item in value.items()}
    if isinstance(value, list):
        return [substitute_references(item, resolve) for item in value]
    return value


# =============================================================================
# Declarations
# =============================================================================


class ResourceSpec(BaseModel):
    """A named, typed declaration of desired infrastructure state."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: ResourceId
    attributes: Attributes | None = None
    desired_state: DesiredState = DesiredState.PRESENT

    @model_validator(mode="after")
    def validate_attributes(self) -> ResourceSpec:
        if self.attributes is None:
            if self.desired_state == DesiredState.PRESENT:
                raise ValueError(f"{self.id}: attributes are required for present resources")
            return self
        expected = ATTRIBUTE_SCHEMAS[self.id.type]
        if not isinstance(self.attributes, expected):
            raise ValueError(f"{self.id}: attributes must be {expected.__name__}")
        return self

    @property
    def type(self) -> ResourceType:
        return self.id.type

    @property
    def name(self) -> str:
        return self.id.name

    @property
    def present(self) -> bool:
        return self.desired_state == DesiredState.PRESENT

    def references(self) -> list[tuple[str, str, Reference]]:
        """All References in this declaration as (path, pattern, reference)."""
        return [
            (path, pattern, leaf)
            for path, pattern, leaf in iter_attribute_values(self.attributes)
            if isinstance(leaf, Reference)
        ]

    def desired_attributes(self) -> dict[str, Any]:
        """Plain desired attributes, References unresolved."""
        if self.attributes is None:
            return {}
        return to_plain(self.attributes)


def _format_errors(error: PydanticValidationError) -> list[tuple[str, str]]:
    problems = []
    for item in error.errors():
        loc = ".".join(str(x) for x in item["loc"]) or "<attributes>"
        problems.append((loc, item["msg"]))
    return problems


def declare(
    resource_type: ResourceType | str,
    name: str,
    attributes: Mapping[str, Any] | Attributes | None = None,
    desired_state: DesiredState | str = DesiredState.PRESENT,
) -> ResourceSpec:
    """Build a validated ResourceSpec.

    Raises:
        ValidationError: With the resource id and every offending attribute.
    """
    type_label = resource_type.value if isinstance(resource_type, ResourceType) else resource_type
    label = f"{type_label}/{name}"

    try:
        rtype = ResourceType(resource_type)
    except ValueError as e:
        valid = [t.value for t in ResourceType]
        raise ValidationError(label, [("type", f"unknown resource type; expected one of {valid}")]) from e

    try:
        state = DesiredState(desired_state)
    except ValueError as e:
        raise ValidationError(label, [("desiredState", "must be 'present' or 'absent'")]) from e

    try:
        rid = ResourceId(type=rtype, name=name)
    except PydanticValidationError as e:
        raise ValidationError(label, [("name", f"must match {NAME_PATTERN}")]) from e

    if attributes is None and state == DesiredState.ABSENT:
        return ResourceSpec(id=rid, desired_state=state)

    schema = ATTRIBUTE_SCHEMAS[rtype]
    if isinstance(attributes, Attributes):
        if not isinstance(attributes, schema):
            raise ValidationError(str(rid), [("attributes", f"expected {schema.__name__}")])
        attrs = attributes
    else:
        try:
            attrs = schema.model_validate(dict(attributes or {}))
        except PydanticValidationError as e:
            raise ValidationError(str(rid), _format_errors(e)) from e

    return ResourceSpec(id=rid, attributes=attrs, desired_state=state)


# =============================================================================
# Observed State
# =============================================================================


class ObservedState(BaseModel):
    """Last-known live representation of a resource.

    ``applied_attributes`` are the resolved attributes last sent to the
    provider and ``fingerprint`` is their canonical hash. ``generation`` is
    the compare-and-swap token maintained by the state store.
    """

    model_config = ConfigDict(extra="ignore")

    id: ResourceId
    live_attributes: dict[str, Any] = Field(default_factory=dict)
    applied_attributes: dict[str, Any] = Field(default_factory=dict)
    fingerprint: str
    dependencies: list[ResourceId] = Field(default_factory=list)
    generation: int = 0
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
