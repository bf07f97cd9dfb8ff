"""Resource drivers: translation between attributes and provider requests.

Each driver implements create/read/update/delete for one resource type over
the narrow ProviderClient protocol. Drivers never resolve references or
diff; they receive fully resolved snake_case attributes, build camelCase
request bodies, and turn provider responses into live attributes (the
outputs other resources may reference).

Provider errors (google.api_core.exceptions) are classified here into
RetryableProviderError and TerminalProviderError for the executor.
"""

from __future__ import annotations

import ipaddress
import logging
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, ClassVar, Protocol

from google.api_core import exceptions

from .errors import ProviderError, RetryableProviderError, TerminalProviderError
from .models import ResourceType

logger = logging.getLogger(__name__)

COMPUTE_ROOT = "https://compute.googleapis.com/compute/v1"
RUN_ROOT = "https://run.googleapis.com/v2"


@dataclass(frozen=True)
class Collection:
    """A provider REST collection.

    Attributes:
        api: "compute" or "run".
        plural: REST collection name, e.g. "backendServices".
        regional: Whether resources live under a region/location.
    """

    api: str
    plural: str
    regional: bool = False

    def path(self, project: str, name: str, region: str | None = None) -> str:
        """Relative resource path, usable as a reference in request bodies."""
        if self.api == "run":
            return f"projects/{project}/locations/{region}/{self.plural}/{name}"
        if self.regional:
            return f"projects/{project}/regions/{region}/{self.plural}/{name}"
        return f"projects/{project}/global/{self.plural}/{name}"

    def url(self, project: str, name: str, region: str | None = None) -> str:
        root = RUN_ROOT if self.api == "run" else COMPUTE_ROOT
        return f"{root}/{self.path(project, name, region)}"


RUN_SERVICES = Collection("run", "services", regional=True)
GLOBAL_ADDRESSES = Collection("compute", "addresses")
SSL_CERTIFICATES = Collection("compute", "sslCertificates")
NETWORK_ENDPOINT_GROUPS = Collection("compute", "networkEndpointGroups", regional=True)
SECURITY_POLICIES = Collection("compute", "securityPolicies")
BACKEND_SERVICES = Collection("compute", "backendServices")
URL_MAPS = Collection("compute", "urlMaps")
TARGET_HTTP_PROXIES = Collection("compute", "targetHttpProxies")
TARGET_HTTPS_PROXIES = Collection("compute", "targetHttpsProxies")
GLOBAL_FORWARDING_RULES = Collection("compute", "forwardingRules")


class ProviderClient(Protocol):
    """Narrow provider API used by drivers.

    Mutating calls block until the provider operation completes and return
    the resulting resource representation. Errors are raised as
    google.api_core.exceptions.GoogleAPICallError subclasses.
    """

    project: str

    def insert(
        self, collection: Collection, name: str, body: dict[str, Any], *, region: str | None = None
    ) -> dict[str, Any]: ...

    def get(self, collection: Collection, name: str, *, region: str | None = None) -> dict[str, Any]: ...

    def patch(
        self, collection: Collection, name: str, body: dict[str, Any], *, region: str | None = None
    ) -> dict[str, Any]: ...

    def delete(self, collection: Collection, name: str, *, region: str | None = None) -> None: ...

    def action(
        self,
        collection: Collection,
        name: str,
        verb: str,
        body: dict[str, Any] | None = None,
        *,
        region: str | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]: ...

    def get_iam_policy(self, collection: Collection, name: str, *, region: str | None = None) -> dict[str, Any]: ...

    def set_iam_policy(
        self, collection: Collection, name: str, policy: dict[str, Any], *, region: str | None = None
    ) -> dict[str, Any]: ...


# =============================================================================
# Error Classification
# =============================================================================

RETRYABLE_EXCEPTIONS: tuple[type[exceptions.GoogleAPICallError], ...] = (
    exceptions.TooManyRequests,
    exceptions.InternalServerError,
    exceptions.BadGateway,
    exceptions.ServiceUnavailable,
    exceptions.GatewayTimeout,
    exceptions.DeadlineExceeded,
    exceptions.Aborted,
)

# Provider messages meaning "a dependency exists but is not usable yet"
NOT_READY_MARKERS = (
    "resourceNotReady",
    "not ready",
    "resourceInUseByAnotherResource",
    "is being",
)


def classify_error(error: exceptions.GoogleAPICallError, *, eventual: bool = False) -> ProviderError:
    """Classify a provider error as retryable or terminal.

    Args:
        error: The provider exception.
        eventual: True while creating or updating, when a NotFound usually
            means a freshly created dependency is not visible yet.
    """
    message = f"{type(error).__name__}: {error.message}"
    code = error.code if isinstance(error.code, int) else None

    if isinstance(error, RETRYABLE_EXCEPTIONS):
        return RetryableProviderError(message, code=code)

    if isinstance(error, exceptions.FailedPrecondition | exceptions.BadRequest):
        text = str(error)
        if any(marker in text for marker in NOT_READY_MARKERS):
            return RetryableProviderError(message, code=code)

    if eventual and isinstance(error, exceptions.NotFound):
        return RetryableProviderError(message, code=code)

    return TerminalProviderError(message, code=code)


# =============================================================================
# Driver Base
# =============================================================================


class ResourceDriver(ABC):
    """Create/Read/Update/Delete for one resource type."""

    resource_type: ClassVar[ResourceType]
    collection: ClassVar[Collection]

    def __init__(self, client: ProviderClient) -> None:
        self.client = client

    @property
    def project(self) -> str:
        return self.client.project

    def region(self, attributes: dict[str, Any]) -> str | None:
        if not self.collection.regional:
            return None
        return last_segment(attributes["region"])

    @contextmanager
    def provider_call(self, action: str, name: str, *, eventual: bool = False) -> Iterator[None]:
        """Translate provider exceptions raised inside the block."""
        try:
            yield
        except exceptions.GoogleAPICallError as e:
            error = classify_error(e, eventual=eventual)
            logger.warning(
                "Provider call failed",
                extra={
                    "resource_type": self.resource_type.value,
                    "resource_name": name,
                    "action": action,
                    "retryable": error.retryable,
                    "error": str(error),
                },
            )
            raise error from e

    def create(self, name: str, attributes: dict[str, Any]) -> dict[str, Any]:
        """Create the resource, adopting it if it already exists."""
        region = self.region(attributes)
        body = self.to_body(name, attributes)
        try:
            with self.provider_call("create", name, eventual=True):
                response = self.client.insert(self.collection, name, body, region=region)
        except TerminalProviderError as e:
            if not isinstance(e.__cause__, exceptions.Conflict):
                raise
            # Left behind by a run that stopped before recording state
            logger.info(
                "Adopting existing resource",
                extra={"resource_type": self.resource_type.value, "resource_name": name},
            )
            return self.update(name, attributes)
        response = self.after_write(name, attributes, response)
        return self.to_live(name, attributes, response)

    def read(self, name: str, attributes: dict[str, Any]) -> dict[str, Any] | None:
        """Current live attributes, or None if the resource does not exist."""
        try:
            with self.provider_call("read", name):
                response = self.client.get(self.collection, name, region=self.region(attributes))
        except TerminalProviderError as e:
            if isinstance(e.__cause__, exceptions.NotFound):
                return None
            raise
        return self.to_live(name, attributes, response)

    def update(self, name: str, attributes: dict[str, Any]) -> dict[str, Any]:
        with self.provider_call("update", name, eventual=True):
            response = self.client.patch(
                self.collection, name, self.to_body(name, attributes), region=self.region(attributes)
            )
        response = self.after_write(name, attributes, response)
        return self.to_live(name, attributes, response)

    def delete(self, name: str, attributes: dict[str, Any]) -> None:
        """Delete the resource. Deleting a missing resource succeeds."""
        try:
            with self.provider_call("delete", name):
                self.client.delete(self.collection, name, region=self.region(attributes))
        except TerminalProviderError as e:
            if not isinstance(e.__cause__, exceptions.NotFound):
                raise
            logger.info(
                "Resource already gone",
                extra={"resource_type": self.resource_type.value, "resource_name": name},
            )

    @abstractmethod
    def to_body(self, name: str, attributes: dict[str, Any]) -> dict[str, Any]:
        """Provider request body for the given attributes."""

    def after_write(self, name: str, attributes: dict[str, Any], response: dict[str, Any]) -> dict[str, Any]:
        """Hook for follow-up calls a single insert/patch cannot express."""
        return response

    def to_live(self, name: str, attributes: dict[str, Any], response: dict[str, Any]) -> dict[str, Any]:
        region = self.region(attributes)
        live = {
            "id": self.collection.path(self.project, name, region),
            "name": name,
            "self_link": response.get("selfLink") or self.collection.url(self.project, name, region),
        }
        live.update(self.outputs(response))
        return live

    def outputs(self, response: dict[str, Any]) -> dict[str, Any]:
        """Type-specific outputs read from the provider response."""
        return {}

    def link(self, value: str, collection: Collection) -> str:
        """Expand a bare global resource name into a resource path."""
        if "/" in value:
            return value
        if collection.regional:
            raise TerminalProviderError(
                f"{self.resource_type.value}: '{value}' must be a reference or a "
                f"{collection.plural} resource path"
            )
        return collection.path(self.project, value)


def last_segment(value: str) -> str:
    """Name part of a resource path ("projects/p/.../services/api" -> "api")."""
    return value.rstrip("/").rsplit("/", 1)[-1]


def _without_none(body: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in body.items() if value is not None}


# =============================================================================
# Drivers
# =============================================================================

INGRESS_SETTINGS = {
    "all": "INGRESS_TRAFFIC_ALL",
    "internal": "INGRESS_TRAFFIC_INTERNAL_ONLY",
    "internal-and-cloud-load-balancing": "INGRESS_TRAFFIC_INTERNAL_LOAD_BALANCER",
}


class ComputeServiceDriver(ResourceDriver):
    """Serverless service on the Cloud Run v2 API."""

    resource_type = ResourceType.COMPUTE_SERVICE
    collection = RUN_SERVICES

    def to_body(self, name: str, attributes: dict[str, Any]) -> dict[str, Any]:
        container: dict[str, Any] = {
            "image": attributes["image"],
            "ports": [{"containerPort": attributes.get("port", 8080)}],
        }
        env = attributes.get("env") or {}
        if env:
            container["env"] = [{"name": key, "value": value} for key, value in sorted(env.items())]

        template: dict[str, Any] = {
            "containers": [container],
            "scaling": {
                "minInstanceCount": attributes.get("min_instances", 0),
                "maxInstanceCount": attributes.get("max_instances", 100),
            },
        }
        if attributes.get("service_account"):
            template["serviceAccount"] = attributes["service_account"]

        return _without_none(
            {
                "description": attributes.get("description"),
                "labels": attributes.get("labels") or None,
                "ingress": INGRESS_SETTINGS[attributes.get("ingress", "internal-and-cloud-load-balancing")],
                "template": template,
            }
        )

    def outputs(self, response: dict[str, Any]) -> dict[str, Any]:
        return {"uri": response.get("uri")}

    def to_live(self, name: str, attributes: dict[str, Any], response: dict[str, Any]) -> dict[str, Any]:
        live = super().to_live(name, attributes, response)
        live["region"] = self.region(attributes)
        return live


class IAMBindingDriver(ResourceDriver):
    """Authoritative member list for one role on a compute service.

    The binding is not a provider resource of its own: every call is a
    read-modify-write of the service IAM policy guarded by its etag.
    """

    resource_type = ResourceType.IAM_BINDING
    collection = RUN_SERVICES

    def to_body(self, name: str, attributes: dict[str, Any]) -> dict[str, Any]:
        return {"role": attributes["role"], "members": sorted(attributes["members"])}

    def _service(self, attributes: dict[str, Any]) -> str:
        return last_segment(attributes["service"])

    def _write_binding(self, name: str, attributes: dict[str, Any], members: list[str] | None) -> dict[str, Any]:
        service = self._service(attributes)
        region = self.region(attributes)
        role = attributes["role"]
        with self.provider_call("set_iam_policy", name, eventual=True):
            try:
                policy = self.client.get_iam_policy(self.collection, service, region=region)
                bindings = [b for b in policy.get("bindings", []) if b.get("role") != role]
                if members:
                    bindings.append({"role": role, "members": members})
                policy = {**policy, "bindings": bindings}
                return self.client.set_iam_policy(self.collection, service, policy, region=region)
            except exceptions.Conflict as e:
                # Concurrent policy change: the etag no longer matches
                raise exceptions.Aborted(str(e.message)) from e

    def create(self, name: str, attributes: dict[str, Any]) -> dict[str, Any]:
        policy = self._write_binding(name, attributes, self.to_body(name, attributes)["members"])
        return self._live(name, attributes, policy)

    def update(self, name: str, attributes: dict[str, Any]) -> dict[str, Any]:
        return self.create(name, attributes)

    def read(self, name: str, attributes: dict[str, Any]) -> dict[str, Any] | None:
        try:
            with self.provider_call("get_iam_policy", name):
                policy = self.client.get_iam_policy(
                    self.collection, self._service(attributes), region=self.region(attributes)
                )
        except TerminalProviderError as e:
            if isinstance(e.__cause__, exceptions.NotFound):
                return None
            raise
        if not any(b.get("role") == attributes["role"] for b in policy.get("bindings", [])):
            return None
        return self._live(name, attributes, policy)

    def delete(self, name: str, attributes: dict[str, Any]) -> None:
        try:
            self._write_binding(name, attributes, None)
        except RetryableProviderError as e:
            # The service itself is gone, and its policy with it
            if not isinstance(e.__cause__, exceptions.NotFound):
                raise

    def _live(self, name: str, attributes: dict[str, Any], policy: dict[str, Any]) -> dict[str, Any]:
        service_path = self.collection.path(self.project, self._service(attributes), self.region(attributes))
        members: list[str] = []
        for binding in policy.get("bindings", []):
            if binding.get("role") == attributes["role"]:
                members = sorted(binding.get("members", []))
        return {
            "id": f"{service_path}#{attributes['role']}",
            "name": name,
            "self_link": f"{self.collection.url(self.project, self._service(attributes), self.region(attributes))}:getIamPolicy",
            "etag": policy.get("etag"),
            "members": members,
        }


class NetworkEndpointGroupDriver(ResourceDriver):
    """Regional serverless NEG. Has no update API."""

    resource_type = ResourceType.NETWORK_ENDPOINT_GROUP
    collection = NETWORK_ENDPOINT_GROUPS

    def to_body(self, name: str, attributes: dict[str, Any]) -> dict[str, Any]:
        return _without_none(
            {
                "name": name,
                "description": attributes.get("description"),
                "networkEndpointType": attributes.get("network_endpoint_type", "SERVERLESS").upper(),
                "cloudRun": {"service": last_segment(attributes["cloud_run_service"])},
            }
        )

    def update(self, name: str, attributes: dict[str, Any]) -> dict[str, Any]:
        raise TerminalProviderError(f"NetworkEndpointGroup/{name} cannot be updated in place")

    def to_live(self, name: str, attributes: dict[str, Any], response: dict[str, Any]) -> dict[str, Any]:
        live = super().to_live(name, attributes, response)
        live["region"] = self.region(attributes)
        return live


class SecurityPolicyDriver(ResourceDriver):
    """Cloud Armor policy. Rules are reconciled one by one by priority."""

    resource_type = ResourceType.SECURITY_POLICY
    collection = SECURITY_POLICIES

    # Priority of the mandatory catch-all rule
    DEFAULT_RULE_PRIORITY = 2147483647

    def _rule(self, rule: dict[str, Any]) -> dict[str, Any]:
        if rule.get("expression"):
            match: dict[str, Any] = {"expr": {"expression": rule["expression"]}}
        else:
            match = {
                "versionedExpr": "SRC_IPS_V1",
                "config": {"srcIpRanges": sorted(rule.get("src_ip_ranges") or ["*"])},
            }
        return _without_none(
            {
                "priority": rule["priority"],
                "action": rule["action"],
                "preview": rule.get("preview", False),
                "description": rule.get("description"),
                "match": match,
            }
        )

    def _rules(self, attributes: dict[str, Any]) -> list[dict[str, Any]]:
        rules = [self._rule(rule) for rule in attributes.get("rules", [])]
        rules.append(
            {
                "priority": self.DEFAULT_RULE_PRIORITY,
                "action": attributes.get("default_action", "allow"),
                "description": "default rule",
                "match": {"versionedExpr": "SRC_IPS_V1", "config": {"srcIpRanges": ["*"]}},
            }
        )
        return rules

    def to_body(self, name: str, attributes: dict[str, Any]) -> dict[str, Any]:
        return _without_none(
            {
                "name": name,
                "description": attributes.get("description"),
                "type": "CLOUD_ARMOR",
                "rules": self._rules(attributes),
                "adaptiveProtectionConfig": {
                    "layer7DdosDefenseConfig": {"enable": attributes.get("adaptive_protection", False)}
                },
            }
        )

    def update(self, name: str, attributes: dict[str, Any]) -> dict[str, Any]:
        body = self.to_body(name, attributes)
        desired = {rule["priority"]: rule for rule in body.pop("rules")}

        with self.provider_call("update", name, eventual=True):
            current = self.client.patch(self.collection, name, body)
            existing = {rule["priority"]: rule for rule in current.get("rules", [])}

            for priority in sorted(set(existing) - set(desired)):
                self.client.action(self.collection, name, "removeRule", params={"priority": priority})
            for priority, rule in sorted(desired.items()):
                if priority not in existing:
                    self.client.action(self.collection, name, "addRule", rule)
                elif existing[priority] != rule:
                    self.client.action(
                        self.collection, name, "patchRule", rule, params={"priority": priority}
                    )
            response = self.client.get(self.collection, name)

        return self.to_live(name, attributes, response)


class BackendServiceDriver(ResourceDriver):
    """Global backend service. The security policy is attached separately."""

    resource_type = ResourceType.BACKEND_SERVICE
    collection = BACKEND_SERVICES

    def to_body(self, name: str, attributes: dict[str, Any]) -> dict[str, Any]:
        backends = [
            {
                "group": self.link(backend["group"], NETWORK_ENDPOINT_GROUPS),
                "capacityScaler": backend.get("capacity_scaler", 1.0),
            }
            for backend in attributes["backends"]
        ]
        body: dict[str, Any] = {
            "name": name,
            "description": attributes.get("description"),
            "protocol": attributes.get("protocol", "HTTPS").upper(),
            "timeoutSec": attributes.get("timeout_sec", 30),
            "loadBalancingScheme": attributes.get("load_balancing_scheme", "EXTERNAL_MANAGED").upper(),
            "backends": backends,
            "enableCDN": attributes.get("enable_cdn", False),
        }
        if attributes.get("log_sample_rate") is not None:
            body["logConfig"] = {"enable": True, "sampleRate": attributes["log_sample_rate"]}
        return _without_none(body)

    def after_write(self, name: str, attributes: dict[str, Any], response: dict[str, Any]) -> dict[str, Any]:
        policy = attributes.get("security_policy")
        desired = self.link(policy, SECURITY_POLICIES) if policy else None
        current = response.get("securityPolicy")
        if desired is None and current is None:
            return response
        if desired is not None and current is not None and current.endswith(desired):
            return response
        with self.provider_call("set_security_policy", name, eventual=True):
            return self.client.action(
                self.collection, name, "setSecurityPolicy", {"securityPolicy": desired}
            )


class UrlMapDriver(ResourceDriver):
    resource_type = ResourceType.URL_MAP
    collection = URL_MAPS

    def to_body(self, name: str, attributes: dict[str, Any]) -> dict[str, Any]:
        body: dict[str, Any] = {"name": name, "description": attributes.get("description")}
        if attributes.get("default_service"):
            body["defaultService"] = self.link(attributes["default_service"], BACKEND_SERVICES)
        redirect = attributes.get("default_url_redirect")
        if redirect:
            body["defaultUrlRedirect"] = {
                "httpsRedirect": redirect.get("https_redirect", True),
                "stripQuery": redirect.get("strip_query", False),
                "redirectResponseCode": redirect.get("redirect_response_code", "MOVED_PERMANENTLY_DEFAULT"),
            }
        if attributes.get("host_rules"):
            body["hostRules"] = [
                {"hosts": sorted(rule["hosts"]), "pathMatcher": rule["path_matcher"]}
                for rule in attributes["host_rules"]
            ]
        if attributes.get("path_matchers"):
            body["pathMatchers"] = [
                {
                    "name": matcher["name"],
                    "defaultService": self.link(matcher["default_service"], BACKEND_SERVICES),
                    "pathRules": [
                        {
                            "paths": sorted(rule["paths"]),
                            "service": self.link(rule["service"], BACKEND_SERVICES),
                        }
                        for rule in matcher.get("path_rules", [])
                    ],
                }
                for matcher in attributes["path_matchers"]
            ]
        return _without_none(body)


class ManagedCertificateDriver(ResourceDriver):
    """Provider-managed certificate. Has no update API."""

    resource_type = ResourceType.MANAGED_CERTIFICATE
    collection = SSL_CERTIFICATES

    def to_body(self, name: str, attributes: dict[str, Any]) -> dict[str, Any]:
        return _without_none(
            {
                "name": name,
                "description": attributes.get("description"),
                "type": "MANAGED",
                "managed": {"domains": sorted(attributes["domains"])},
            }
        )

    def update(self, name: str, attributes: dict[str, Any]) -> dict[str, Any]:
        raise TerminalProviderError(f"ManagedCertificate/{name} cannot be updated in place")

    def outputs(self, response: dict[str, Any]) -> dict[str, Any]:
        managed = response.get("managed", {})
        return {"status": managed.get("status"), "domains": sorted(managed.get("domains", []))}


class GlobalAddressDriver(ResourceDriver):
    """Static global address. Only labels can change after creation."""

    resource_type = ResourceType.GLOBAL_ADDRESS
    collection = GLOBAL_ADDRESSES

    def to_body(self, name: str, attributes: dict[str, Any]) -> dict[str, Any]:
        return _without_none(
            {
                "name": name,
                "description": attributes.get("description"),
                "address": attributes.get("address"),
                "addressType": attributes.get("address_type", "EXTERNAL").upper(),
                "ipVersion": attributes.get("ip_version", "IPV4").upper(),
                "labels": attributes.get("labels") or None,
            }
        )

    def update(self, name: str, attributes: dict[str, Any]) -> dict[str, Any]:
        with self.provider_call("update", name, eventual=True):
            current = self.client.get(self.collection, name)
            response = self.client.action(
                self.collection,
                name,
                "setLabels",
                {
                    "labels": attributes.get("labels") or {},
                    "labelFingerprint": current.get("labelFingerprint"),
                },
            )
        return self.to_live(name, attributes, response)

    def outputs(self, response: dict[str, Any]) -> dict[str, Any]:
        return {"address": response.get("address")}


class HttpProxyDriver(ResourceDriver):
    resource_type = ResourceType.HTTP_PROXY
    collection = TARGET_HTTP_PROXIES

    def to_body(self, name: str, attributes: dict[str, Any]) -> dict[str, Any]:
        return _without_none(
            {
                "name": name,
                "description": attributes.get("description"),
                "urlMap": self.link(attributes["url_map"], URL_MAPS),
            }
        )

    def update(self, name: str, attributes: dict[str, Any]) -> dict[str, Any]:
        with self.provider_call("update", name, eventual=True):
            response = self.client.action(
                self.collection, name, "setUrlMap", {"urlMap": self.link(attributes["url_map"], URL_MAPS)}
            )
        return self.to_live(name, attributes, response)


class HttpsProxyDriver(ResourceDriver):
    resource_type = ResourceType.HTTPS_PROXY
    collection = TARGET_HTTPS_PROXIES

    def to_body(self, name: str, attributes: dict[str, Any]) -> dict[str, Any]:
        return _without_none(
            {
                "name": name,
                "description": attributes.get("description"),
                "urlMap": self.link(attributes["url_map"], URL_MAPS),
                "sslCertificates": [
                    self.link(cert, SSL_CERTIFICATES) for cert in attributes["ssl_certificates"]
                ],
                "sslPolicy": attributes.get("ssl_policy"),
                "quicOverride": attributes.get("quic_override", "NONE").upper(),
            }
        )


class ForwardingRuleDriver(ResourceDriver):
    """Global forwarding rule. Target and labels are updated via actions."""

    resource_type = ResourceType.FORWARDING_RULE
    collection = GLOBAL_FORWARDING_RULES

    def _target(self, attributes: dict[str, Any]) -> str:
        # Bare names are ambiguous between HTTP and HTTPS proxies
        target = attributes["target"]
        if "/" not in target:
            raise TerminalProviderError(
                f"ForwardingRule target '{target}' must be a reference or a proxy resource path"
            )
        return target

    def to_body(self, name: str, attributes: dict[str, Any]) -> dict[str, Any]:
        ip_address = attributes.get("ip_address")
        if ip_address and not _is_ip(ip_address):
            ip_address = self.link(ip_address, GLOBAL_ADDRESSES)
        return _without_none(
            {
                "name": name,
                "description": attributes.get("description"),
                "target": self._target(attributes),
                "IPAddress": ip_address,
                "portRange": attributes.get("port_range", "443"),
                "IPProtocol": attributes.get("ip_protocol", "TCP").upper(),
                "loadBalancingScheme": attributes.get("load_balancing_scheme", "EXTERNAL_MANAGED").upper(),
                "labels": attributes.get("labels") or None,
            }
        )

    def update(self, name: str, attributes: dict[str, Any]) -> dict[str, Any]:
        with self.provider_call("update", name, eventual=True):
            current = self.client.get(self.collection, name)
            target = self._target(attributes)
            if not current.get("target", "").endswith(target):
                current = self.client.action(self.collection, name, "setTarget", {"target": target})
            labels = attributes.get("labels") or {}
            if (current.get("labels") or {}) != labels:
                current = self.client.action(
                    self.collection,
                    name,
                    "setLabels",
                    {"labels": labels, "labelFingerprint": current.get("labelFingerprint")},
                )
        return self.to_live(name, attributes, current)

    def outputs(self, response: dict[str, Any]) -> dict[str, Any]:
        return {"ip_address": response.get("IPAddress")}


def _is_ip(value: str) -> bool:
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


DRIVER_CLASSES: dict[ResourceType, type[ResourceDriver]] = {
    driver.resource_type: driver
    for driver in (
        ComputeServiceDriver,
        IAMBindingDriver,
        NetworkEndpointGroupDriver,
        SecurityPolicyDriver,
        BackendServiceDriver,
        UrlMapDriver,
        ManagedCertificateDriver,
        GlobalAddressDriver,
        HttpProxyDriver,
        HttpsProxyDriver,
        ForwardingRuleDriver,
    )
}


def build_drivers(client: ProviderClient) -> dict[ResourceType, ResourceDriver]:
    """One driver instance per resource type, sharing a provider client."""
    return {rtype: cls(client) for rtype, cls in DRIVER_CLASSES.items()}
