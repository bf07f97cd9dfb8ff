"""Tests for the REST provider client."""

import pytest
from gcp_mock import FakeResponse, FakeSession
from google.api_core import exceptions

from graphctl import gcp_client
from graphctl.config import Config
from graphctl.drivers import (
    COMPUTE_ROOT,
    GLOBAL_ADDRESSES,
    NETWORK_ENDPOINT_GROUPS,
    RUN_ROOT,
    RUN_SERVICES,
    TARGET_HTTP_PROXIES,
    TARGET_HTTPS_PROXIES,
    URL_MAPS,
)
from graphctl.gcp_client import GoogleRestClient, create_provider_client

GLOBAL = f"{COMPUTE_ROOT}/projects/demo-project/global"
OPERATION_URL = f"{GLOBAL}/operations/operation-1"
RUN_SERVICE_URL = f"{RUN_ROOT}/projects/demo-project/locations/us-central1/services/api"
RUN_OPERATION = "projects/demo-project/locations/us-central1/operations/op-1"


def compute_operation(status: str, **extra: object) -> FakeResponse:
    return FakeResponse(
        200,
        {"kind": "compute#operation", "name": "operation-1", "status": status, "selfLink": OPERATION_URL, **extra},
    )


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def rest(session: FakeSession) -> GoogleRestClient:
    return GoogleRestClient("demo-project", session, poll_interval_seconds=0, operation_timeout_seconds=5)


class TestComputeOperations:
    """Mutations wait for the compute operation and return the fresh resource."""

    def test_insert_polls_until_done(self, rest: GoogleRestClient, session: FakeSession) -> None:
        session.add("POST", f"{GLOBAL}/addresses", compute_operation("RUNNING"))
        session.add("GET", OPERATION_URL, compute_operation("RUNNING"), compute_operation("DONE"))
        session.add("GET", f"{GLOBAL}/addresses/web-ip", FakeResponse(200, {"name": "web-ip", "address": "34.120.0.10"}))

        result = rest.insert(GLOBAL_ADDRESSES, "web-ip", {"name": "web-ip"})

        assert result["address"] == "34.120.0.10"
        assert [(r.method, r.url) for r in session.requests] == [
            ("POST", f"{GLOBAL}/addresses"),
            ("GET", OPERATION_URL),
            ("GET", OPERATION_URL),
            ("GET", f"{GLOBAL}/addresses/web-ip"),
        ]
        assert session.requests[0].json == {"name": "web-ip"}
        assert session.requests[0].params is None

    def test_operation_done_immediately(self, rest: GoogleRestClient, session: FakeSession) -> None:
        session.add("PATCH", f"{GLOBAL}/urlMaps/web-map", compute_operation("DONE"))
        session.add("GET", f"{GLOBAL}/urlMaps/web-map", FakeResponse(200, {"name": "web-map"}))

        rest.patch(URL_MAPS, "web-map", {"defaultService": "x"})

        assert [r.method for r in session.requests] == ["PATCH", "GET"]

    def test_operation_error(self, rest: GoogleRestClient, session: FakeSession) -> None:
        errors = [{"code": "RESOURCE_IN_USE_BY_ANOTHER_RESOURCE", "message": "used by forwardingRules/web-rule"}]
        session.add(
            "DELETE",
            f"{GLOBAL}/addresses/web-ip",
            compute_operation("DONE", error={"errors": errors}, httpErrorStatusCode=400),
        )

        with pytest.raises(exceptions.BadRequest) as exc_info:
            rest.delete(GLOBAL_ADDRESSES, "web-ip")

        assert "RESOURCE_IN_USE_BY_ANOTHER_RESOURCE" in exc_info.value.message

    def test_operation_deadline(self, session: FakeSession) -> None:
        rest = GoogleRestClient("demo-project", session, poll_interval_seconds=0.01, operation_timeout_seconds=0)
        session.add("DELETE", f"{GLOBAL}/addresses/web-ip", compute_operation("RUNNING"))
        session.add("GET", OPERATION_URL, compute_operation("RUNNING"))

        with pytest.raises(exceptions.DeadlineExceeded):
            rest.delete(GLOBAL_ADDRESSES, "web-ip")

    def test_regional_collection(self, rest: GoogleRestClient, session: FakeSession) -> None:
        collection = f"{COMPUTE_ROOT}/projects/demo-project/regions/us-central1/networkEndpointGroups"
        session.add("POST", collection, compute_operation("DONE"))
        session.add("GET", f"{collection}/api-neg", FakeResponse(200, {"name": "api-neg"}))

        rest.insert(NETWORK_ENDPOINT_GROUPS, "api-neg", {"name": "api-neg"}, region="us-central1")

        assert session.requests[0].url == collection


class TestHttpErrors:
    """HTTP failures surface as google-api-core exceptions."""

    @pytest.mark.parametrize(
        "status,error_class",
        [
            (400, exceptions.BadRequest),
            (403, exceptions.Forbidden),
            (404, exceptions.NotFound),
            (409, exceptions.Conflict),
            (429, exceptions.TooManyRequests),
            (503, exceptions.ServiceUnavailable),
        ],
    )
    def test_status_mapping(
        self, rest: GoogleRestClient, session: FakeSession, status: int, error_class: type
    ) -> None:
        session.add(
            "GET", f"{GLOBAL}/addresses/web-ip", FakeResponse(status, {"error": {"code": status, "message": "nope"}})
        )

        with pytest.raises(error_class) as exc_info:
            rest.get(GLOBAL_ADDRESSES, "web-ip")

        assert exc_info.value.code == status
        assert "nope" in exc_info.value.message

    def test_unrouted_is_not_found(self, rest: GoogleRestClient) -> None:
        with pytest.raises(exceptions.NotFound):
            rest.get(GLOBAL_ADDRESSES, "missing")

    def test_empty_body(self, rest: GoogleRestClient, session: FakeSession) -> None:
        session.add("GET", f"{GLOBAL}/addresses/web-ip", FakeResponse(200, None))

        assert rest.get(GLOBAL_ADDRESSES, "web-ip") == {}


class TestRunOperations:
    """Cloud Run long-running operations are polled on their name."""

    def test_insert_passes_service_id(self, rest: GoogleRestClient, session: FakeSession) -> None:
        collection = f"{RUN_ROOT}/projects/demo-project/locations/us-central1/services"
        session.add("POST", collection, FakeResponse(200, {"name": RUN_OPERATION, "done": False}))
        session.add(
            "GET",
            f"{RUN_ROOT}/{RUN_OPERATION}",
            FakeResponse(200, {"name": RUN_OPERATION, "done": False}),
            FakeResponse(200, {"name": RUN_OPERATION, "done": True}),
        )
        session.add("GET", RUN_SERVICE_URL, FakeResponse(200, {"name": "api", "uri": "https://api-abc123-uc.a.run.app"}))

        result = rest.insert(RUN_SERVICES, "api", {"template": {}}, region="us-central1")

        assert result["uri"] == "https://api-abc123-uc.a.run.app"
        assert session.requests[0].params == {"serviceId": "api"}
        assert [r.url for r in session.requests].count(f"{RUN_ROOT}/{RUN_OPERATION}") == 2

    def test_operation_error_maps_rpc_code(self, rest: GoogleRestClient, session: FakeSession) -> None:
        session.add(
            "DELETE",
            RUN_SERVICE_URL,
            FakeResponse(200, {"name": RUN_OPERATION, "done": True, "error": {"code": 7, "message": "denied"}}),
        )

        with pytest.raises(exceptions.Forbidden, match="denied"):
            rest.delete(RUN_SERVICES, "api", region="us-central1")


class TestActions:
    """Custom verbs."""

    def test_global_action(self, rest: GoogleRestClient, session: FakeSession) -> None:
        session.add("POST", f"{GLOBAL}/addresses/web-ip/setLabels", compute_operation("DONE"))
        session.add("GET", f"{GLOBAL}/addresses/web-ip", FakeResponse(200, {"name": "web-ip"}))

        rest.action(GLOBAL_ADDRESSES, "web-ip", "setLabels", {"labels": {"app": "web"}})

        assert session.requests[0].json == {"labels": {"app": "web"}}

    @pytest.mark.parametrize(
        "collection,verb",
        [
            (TARGET_HTTP_PROXIES, "setUrlMap"),
            (TARGET_HTTPS_PROXIES, "setUrlMap"),
            (TARGET_HTTPS_PROXIES, "setSslCertificates"),
        ],
    )
    def test_legacy_proxy_paths(self, rest: GoogleRestClient, session: FakeSession, collection, verb) -> None:
        legacy = f"{COMPUTE_ROOT}/projects/demo-project/{collection.plural}/web-proxy/{verb}"
        session.add("POST", legacy, compute_operation("DONE"))
        session.add("GET", f"{GLOBAL}/{collection.plural}/web-proxy", FakeResponse(200, {"name": "web-proxy"}))

        rest.action(collection, "web-proxy", verb, {})

        assert session.requests[0].url == legacy
        assert gcp_client.LEGACY_ACTION_PATHS >= {(collection.plural, verb)}


class TestIamPolicy:
    """IAM policy calls use the colon verb form."""

    def test_get_policy(self, rest: GoogleRestClient, session: FakeSession) -> None:
        session.add("GET", f"{RUN_SERVICE_URL}:getIamPolicy", FakeResponse(200, {"etag": "BwE0"}))

        assert rest.get_iam_policy(RUN_SERVICES, "api", region="us-central1") == {"etag": "BwE0"}

    def test_set_policy_wraps_body(self, rest: GoogleRestClient, session: FakeSession) -> None:
        policy = {"etag": "BwE0", "bindings": [{"role": "roles/run.invoker", "members": ["allUsers"]}]}
        session.add("POST", f"{RUN_SERVICE_URL}:setIamPolicy", FakeResponse(200, {**policy, "etag": "BwE1"}))

        result = rest.set_iam_policy(RUN_SERVICES, "api", policy, region="us-central1")

        assert result["etag"] == "BwE1"
        assert session.requests[0].json == {"policy": policy}

    def test_stale_etag(self, rest: GoogleRestClient, session: FakeSession) -> None:
        session.add(
            "POST",
            f"{RUN_SERVICE_URL}:setIamPolicy",
            FakeResponse(409, {"error": {"code": 409, "message": "etag mismatch"}}),
        )

        with pytest.raises(exceptions.Conflict):
            rest.set_iam_policy(RUN_SERVICES, "api", {"etag": "old"}, region="us-central1")


class TestCreateProviderClient:
    """Tests for create_provider_client."""

    def test_uses_application_default_credentials(self, monkeypatch: pytest.MonkeyPatch) -> None:
        seen: dict[str, object] = {}

        def fake_default(scopes: list[str]) -> tuple[object, str]:
            seen["scopes"] = scopes
            return object(), "demo-project"

        monkeypatch.setattr(gcp_client.google.auth, "default", fake_default)
        monkeypatch.setattr(gcp_client, "AuthorizedSession", lambda credentials: "session")

        rest = create_provider_client(Config(project="demo-project", operation_timeout_seconds=60))

        assert rest.project == "demo-project"
        assert seen["scopes"] == gcp_client.SCOPES
