"""Declarations shared by the test suite."""

from __future__ import annotations

from typing import Any

from graphctl.models import ResourceSpec, ResourceType, declare, ref

T = ResourceType

LB_MEMBER = "serviceAccount:lb@demo-project.iam.gserviceaccount.com"


def edge_topology(cert_domains: tuple[str, ...] = ("www.example.com",)) -> list[ResourceSpec]:
    """Address, certificate, HTTPS proxy and forwarding rule.

    The proxy needs a URL map; a redirect-only map keeps the graph small.
    """
    return [
        declare(T.GLOBAL_ADDRESS, "ip", {}),
        declare(T.MANAGED_CERTIFICATE, "cert", {"domains": list(cert_domains)}),
        declare(T.URL_MAP, "redirect", {"default_url_redirect": {}}),
        declare(
            T.HTTPS_PROXY,
            "proxy",
            {
                "url_map": ref(T.URL_MAP, "redirect"),
                "ssl_certificates": [ref(T.MANAGED_CERTIFICATE, "cert")],
            },
        ),
        declare(
            T.FORWARDING_RULE,
            "rule",
            {
                "target": ref(T.HTTPS_PROXY, "proxy"),
                "ip_address": ref(T.GLOBAL_ADDRESS, "ip", "address"),
            },
        ),
    ]


def web_topology(
    *,
    backend_timeout: int = 30,
    overrides: dict[str, dict[str, Any]] | None = None,
    absent: tuple[str, ...] = (),
) -> list[ResourceSpec]:
    """Serverless service behind a global HTTPS load balancer.

    Args:
        backend_timeout: timeout_sec of the backend service.
        overrides: Attribute overrides by resource name.
        absent: Names declared absent.
    """
    overrides = overrides or {}
    declarations: list[tuple[ResourceType, str, dict[str, Any]]] = [
        (T.COMPUTE_SERVICE, "api", {"region": "us-central1", "image": "us-docker.pkg.dev/demo/api:1.0"}),
        (
            T.IAM_BINDING,
            "api-invoker",
            {
                "service": ref(T.COMPUTE_SERVICE, "api", "name"),
                "region": ref(T.COMPUTE_SERVICE, "api", "region"),
                "members": [LB_MEMBER],
            },
        ),
        (
            T.NETWORK_ENDPOINT_GROUP,
            "api-neg",
            {
                "region": ref(T.COMPUTE_SERVICE, "api", "region"),
                "cloud_run_service": ref(T.COMPUTE_SERVICE, "api", "name"),
            },
        ),
        (
            T.SECURITY_POLICY,
            "edge-waf",
            {
                "rules": [
                    {"priority": 1000, "action": "deny(403)", "src_ip_ranges": ["198.51.100.0/24"]},
                    {
                        "priority": 2000,
                        "action": "deny(403)",
                        "expression": "evaluatePreconfiguredWaf('sqli-v33-stable')",
                    },
                ]
            },
        ),
        (
            T.BACKEND_SERVICE,
            "api-backend",
            {
                "backends": [{"group": ref(T.NETWORK_ENDPOINT_GROUP, "api-neg")}],
                "security_policy": "edge-waf",
                "timeout_sec": backend_timeout,
            },
        ),
        (T.URL_MAP, "web-map", {"default_service": ref(T.BACKEND_SERVICE, "api-backend")}),
        (T.URL_MAP, "http-redirect", {"default_url_redirect": {"https_redirect": True}}),
        (T.MANAGED_CERTIFICATE, "web-cert", {"domains": ["www.example.com", "example.com"]}),
        (T.GLOBAL_ADDRESS, "web-ip", {"labels": {"app": "web"}}),
        (
            T.HTTPS_PROXY,
            "web-https",
            {
                "url_map": ref(T.URL_MAP, "web-map"),
                "ssl_certificates": [ref(T.MANAGED_CERTIFICATE, "web-cert")],
            },
        ),
        (T.HTTP_PROXY, "web-http", {"url_map": ref(T.URL_MAP, "http-redirect")}),
        (
            T.FORWARDING_RULE,
            "web-https-rule",
            {
                "target": ref(T.HTTPS_PROXY, "web-https"),
                "ip_address": ref(T.GLOBAL_ADDRESS, "web-ip", "address"),
                "port_range": "443",
            },
        ),
        (
            T.FORWARDING_RULE,
            "web-http-rule",
            {
                "target": ref(T.HTTP_PROXY, "web-http"),
                # Shared static address spelled by name
                "ip_address": "web-ip",
                "port_range": "80",
            },
        ),
    ]

    specs = []
    for rtype, name, attributes in declarations:
        if name in absent:
            specs.append(declare(rtype, name, None, "absent"))
            continue
        specs.append(declare(rtype, name, {**attributes, **overrides.get(name, {})}))
    return specs
