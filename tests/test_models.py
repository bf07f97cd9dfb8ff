"""Tests for resource declarations and attribute schemas."""

import pytest

from graphctl.errors import ValidationError
from graphctl.models import (
    DesiredState,
    PendingValue,
    Reference,
    ResourceId,
    ResourceType,
    declare,
    iter_attribute_values,
    ref,
    substitute_references,
    to_plain,
)


def problem_fields(error: ValidationError) -> list[str]:
    return [attribute for attribute, _ in error.problems]


class TestResourceId:
    """Tests for resource identities."""

    def test_str_form(self) -> None:
        rid = ResourceId(type=ResourceType.GLOBAL_ADDRESS, name="web-ip")
        assert str(rid) == "GlobalAddress/web-ip"

    def test_parse_round_trip(self) -> None:
        rid = ResourceId.parse("BackendService/api-backend")
        assert rid.type == ResourceType.BACKEND_SERVICE
        assert rid.name == "api-backend"

    def test_parse_requires_separator(self) -> None:
        with pytest.raises(ValueError):
            ResourceId.parse("GlobalAddress")

    def test_parse_rejects_unknown_type(self) -> None:
        with pytest.raises(ValueError):
            ResourceId.parse("Bucket/assets")

    def test_ids_are_hashable_and_equal_by_value(self) -> None:
        a = ResourceId.parse("UrlMap/web-map")
        b = ResourceId(type=ResourceType.URL_MAP, name="web-map")
        assert a == b
        assert len({a, b}) == 1


class TestReference:
    """Tests for explicit references."""

    def test_yaml_form(self) -> None:
        """References accept the {ref, field} form used in topology files."""
        reference = Reference.model_validate({"ref": "GlobalAddress/ip", "field": "address"})
        assert reference.target == ResourceId.parse("GlobalAddress/ip")
        assert reference.output == "address"

    def test_default_output_is_id(self) -> None:
        reference = Reference.model_validate({"ref": "ManagedCertificate/cert"})
        assert reference.output == "id"

    def test_ref_helper(self) -> None:
        reference = ref(ResourceType.HTTPS_PROXY, "proxy")
        assert str(reference) == "HttpsProxy/proxy.id"

    def test_pending_value_renders_reference(self) -> None:
        pending = PendingValue(ref("GlobalAddress", "ip", "address"))
        assert str(pending) == "(known after apply: GlobalAddress/ip.address)"


class TestDeclare:
    """Tests for declaration validation."""

    def test_valid_declaration(self) -> None:
        spec = declare(
            ResourceType.COMPUTE_SERVICE,
            "api",
            {"region": "us-central1", "image": "gcr.io/demo/api:1"},
        )
        assert spec.present
        assert spec.attributes.port == 8080
        assert spec.attributes.ingress == "internal-and-cloud-load-balancing"

    def test_type_given_as_string(self) -> None:
        spec = declare("GlobalAddress", "ip", {})
        assert spec.type == ResourceType.GLOBAL_ADDRESS

    def test_unknown_type(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            declare("Bucket", "assets", {})
        assert exc_info.value.resource_id == "Bucket/assets"
        assert problem_fields(exc_info.value) == ["type"]

    def test_invalid_name(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            declare(ResourceType.GLOBAL_ADDRESS, "Web_IP", {})
        assert problem_fields(exc_info.value) == ["name"]

    def test_invalid_desired_state(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            declare(ResourceType.GLOBAL_ADDRESS, "ip", {}, "deleted")
        assert problem_fields(exc_info.value) == ["desiredState"]

    def test_missing_required_attribute(self) -> None:
        """The error names the resource and every missing attribute."""
        with pytest.raises(ValidationError) as exc_info:
            declare(ResourceType.COMPUTE_SERVICE, "api", {"region": "us-central1"})
        assert exc_info.value.resource_id == "ComputeService/api"
        assert "image" in problem_fields(exc_info.value)
        assert "ComputeService/api" in str(exc_info.value)

    def test_unknown_attribute_rejected(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            declare(ResourceType.GLOBAL_ADDRESS, "ip", {"adress": "203.0.113.7"})
        assert problem_fields(exc_info.value) == ["adress"]

    def test_mistyped_integer_rejected(self) -> None:
        """Numeric strings are not silently coerced."""
        with pytest.raises(ValidationError) as exc_info:
            declare(
                ResourceType.BACKEND_SERVICE,
                "api-backend",
                {"backends": [{"group": "api-neg"}], "timeout_sec": "30"},
            )
        assert problem_fields(exc_info.value) == ["timeout_sec"]

    def test_mistyped_boolean_rejected(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            declare(
                ResourceType.BACKEND_SERVICE,
                "api-backend",
                {"backends": [{"group": "api-neg"}], "enable_cdn": "yes"},
            )
        assert problem_fields(exc_info.value) == ["enable_cdn"]

    def test_absent_without_attributes(self) -> None:
        spec = declare(ResourceType.COMPUTE_SERVICE, "api", None, "absent")
        assert spec.desired_state == DesiredState.ABSENT
        assert spec.attributes is None
        assert spec.desired_attributes() == {}

    def test_multiple_problems_reported(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            declare(ResourceType.COMPUTE_SERVICE, "api", {"port": 0})
        fields = problem_fields(exc_info.value)
        assert {"region", "image", "port"} <= set(fields)


class TestAttributeSchemas:
    """Tests for per-type semantic validation."""

    def test_scaling_bounds(self) -> None:
        with pytest.raises(ValidationError):
            declare(
                ResourceType.COMPUTE_SERVICE,
                "api",
                {"region": "us-central1", "image": "img", "min_instances": 5, "max_instances": 2},
            )

    def test_iam_member_prefix(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            declare(
                ResourceType.IAM_BINDING,
                "invoker",
                {"service": "api", "region": "us-central1", "members": ["lb@example.com"]},
            )
        assert problem_fields(exc_info.value) == ["members"]

    def test_iam_members_are_a_set(self) -> None:
        spec = declare(
            ResourceType.IAM_BINDING,
            "invoker",
            {
                "service": "api",
                "region": "us-central1",
                "members": ["user:b@example.com", "user:a@example.com", "user:a@example.com"],
            },
        )
        assert spec.desired_attributes()["members"] == ["user:a@example.com", "user:b@example.com"]

    def test_security_rule_needs_exactly_one_match(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            declare(
                ResourceType.SECURITY_POLICY,
                "waf",
                {
                    "rules": [
                        {
                            "priority": 10,
                            "action": "allow",
                            "src_ip_ranges": ["10.0.0.0/8"],
                            "expression": "true",
                        }
                    ]
                },
            )
        assert "exactly one" in str(exc_info.value)

    def test_security_rule_priorities_unique(self) -> None:
        rule = {"priority": 10, "action": "allow", "src_ip_ranges": ["10.0.0.0/8"]}
        with pytest.raises(ValidationError) as exc_info:
            declare(ResourceType.SECURITY_POLICY, "waf", {"rules": [rule, rule]})
        assert "unique" in str(exc_info.value)

    def test_url_map_needs_one_default(self) -> None:
        with pytest.raises(ValidationError):
            declare(ResourceType.URL_MAP, "web-map", {})
        with pytest.raises(ValidationError):
            declare(
                ResourceType.URL_MAP,
                "web-map",
                {"default_service": "api-backend", "default_url_redirect": {}},
            )

    def test_url_map_host_rule_must_name_matcher(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            declare(
                ResourceType.URL_MAP,
                "web-map",
                {
                    "default_service": "api-backend",
                    "host_rules": [{"hosts": ["example.com"], "path_matcher": "missing"}],
                },
            )
        assert "missing" in str(exc_info.value)

    def test_path_rules_must_be_absolute(self) -> None:
        with pytest.raises(ValidationError):
            declare(
                ResourceType.URL_MAP,
                "web-map",
                {
                    "default_service": "api-backend",
                    "path_matchers": [
                        {
                            "name": "api",
                            "default_service": "api-backend",
                            "path_rules": [{"paths": ["v1/*"], "service": "api-backend"}],
                        }
                    ],
                },
            )

    def test_managed_certificate_rejects_wildcards(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            declare(ResourceType.MANAGED_CERTIFICATE, "cert", {"domains": ["*.example.com"]})
        assert "wildcards" in str(exc_info.value)

    def test_global_address_must_be_ip(self) -> None:
        with pytest.raises(ValidationError):
            declare(ResourceType.GLOBAL_ADDRESS, "ip", {"address": "not-an-ip"})
        spec = declare(ResourceType.GLOBAL_ADDRESS, "ip", {"address": "203.0.113.7"})
        assert spec.attributes.address == "203.0.113.7"

    @pytest.mark.parametrize("port_range", ["443", "8000-8080"])
    def test_valid_port_ranges(self, port_range: str) -> None:
        spec = declare(
            ResourceType.FORWARDING_RULE, "rule", {"target": ref("HttpsProxy", "proxy"), "port_range": port_range}
        )
        assert spec.attributes.port_range == port_range

    @pytest.mark.parametrize("port_range", ["0", "80-79", "http", "70000"])
    def test_invalid_port_ranges(self, port_range: str) -> None:
        with pytest.raises(ValidationError):
            declare(ResourceType.FORWARDING_RULE, "rule", {"target": "proxy", "port_range": port_range})

    def test_https_proxy_certificate_limit(self) -> None:
        with pytest.raises(ValidationError):
            declare(
                ResourceType.HTTPS_PROXY,
                "proxy",
                {"url_map": "web-map", "ssl_certificates": [f"cert-{i}" for i in range(16)]},
            )


class TestAttributeWalking:
    """Tests for reference discovery and substitution."""

    def test_references_report_path_and_pattern(self) -> None:
        spec = declare(
            ResourceType.BACKEND_SERVICE,
            "api-backend",
            {
                "backends": [
                    {"group": "legacy-neg"},
                    {"group": ref(ResourceType.NETWORK_ENDPOINT_GROUP, "api-neg")},
                ],
                "security_policy": ref(ResourceType.SECURITY_POLICY, "waf", "name"),
            },
        )
        found = {(path, pattern, str(reference)) for path, pattern, reference in spec.references()}
        assert found == {
            ("backends.1.group", "backends.group", "NetworkEndpointGroup/api-neg.id"),
            ("security_policy", "security_policy", "SecurityPolicy/waf.name"),
        }

    def test_iter_attribute_values_yields_set_members(self) -> None:
        values = list(iter_attribute_values({"domains": frozenset({"b.example.com", "a.example.com"})}))
        assert values == [
            ("domains", "domains", "a.example.com"),
            ("domains", "domains", "b.example.com"),
        ]

    def test_to_plain_drops_none_and_sorts_sets(self) -> None:
        spec = declare(ResourceType.MANAGED_CERTIFICATE, "cert", {"domains": ["b.example.com", "a.example.com"]})
        assert to_plain(spec.attributes) == {"domains": ["a.example.com", "b.example.com"]}

    def test_desired_attributes_keep_references(self) -> None:
        address = ref(ResourceType.GLOBAL_ADDRESS, "ip", "address")
        spec = declare(ResourceType.FORWARDING_RULE, "rule", {"target": "proxy", "ip_address": address})
        assert spec.desired_attributes()["ip_address"] == address

    def test_substitute_references(self) -> None:
        address = ref(ResourceType.GLOBAL_ADDRESS, "ip", "address")
        plain = {"ip_address": address, "labels": {"a": "b"}, "list": [address]}
        resolved = substitute_references(plain, lambda reference: "203.0.113.7")
        assert resolved == {"ip_address": "203.0.113.7", "labels": {"a": "b"}, "list": ["203.0.113.7"]}
        # Original is untouched
        assert plain["ip_address"] == address
