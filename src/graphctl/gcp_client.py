"""REST ProviderClient for Compute Engine v1 and Cloud Run v2.

Authentication uses Application Default Credentials through google-auth;
no credentials are read from configuration. Mutating calls wait for the
long-running operation and then return the fresh resource.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import google.auth
import requests
from google.api_core import exceptions
from google.auth.transport.requests import AuthorizedSession

from .config import Config
from .drivers import COMPUTE_ROOT, RUN_ROOT, Collection

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/cloud-platform"]

DEFAULT_POLL_INTERVAL_SECONDS = 2.0
DEFAULT_REQUEST_TIMEOUT_SECONDS = 60.0

# google.rpc.Code -> HTTP status, for Cloud Run operation errors
RPC_TO_HTTP_STATUS = {
    1: 499,  # CANCELLED
    3: 400,  # INVALID_ARGUMENT
    4: 504,  # DEADLINE_EXCEEDED
    5: 404,  # NOT_FOUND
    6: 409,  # ALREADY_EXISTS
    7: 403,  # PERMISSION_DENIED
    8: 429,  # RESOURCE_EXHAUSTED
    9: 400,  # FAILED_PRECONDITION
    10: 409,  # ABORTED
    13: 500,  # INTERNAL
    14: 503,  # UNAVAILABLE
    16: 401,  # UNAUTHENTICATED
}

# Target proxy verbs that predate the /global/ URL scheme
LEGACY_ACTION_PATHS = {
    ("targetHttpProxies", "setUrlMap"),
    ("targetHttpsProxies", "setUrlMap"),
    ("targetHttpsProxies", "setSslCertificates"),
}


class GoogleRestClient:
    """Thin REST adapter implementing the ProviderClient protocol."""

    def __init__(
        self,
        project: str,
        session: requests.Session | None = None,
        *,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        operation_timeout_seconds: float = 1200,
    ) -> None:
        if session is None:
            credentials, _ = google.auth.default(scopes=SCOPES)
            session = AuthorizedSession(credentials)
        self.project = project
        self._session = session
        self._poll_interval = poll_interval_seconds
        self._request_timeout = request_timeout_seconds
        self._operation_timeout = operation_timeout_seconds

    # -------------------------------------------------------------------------
    # URLs
    # -------------------------------------------------------------------------

    def _collection_url(self, collection: Collection, region: str | None) -> str:
        if collection.api == "run":
            return f"{RUN_ROOT}/projects/{self.project}/locations/{region}/{collection.plural}"
        if collection.regional:
            return f"{COMPUTE_ROOT}/projects/{self.project}/regions/{region}/{collection.plural}"
        return f"{COMPUTE_ROOT}/projects/{self.project}/global/{collection.plural}"

    def _item_url(self, collection: Collection, name: str, region: str | None) -> str:
        return collection.url(self.project, name, region)

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    def _request(
        self,
        method: str,
        url: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        logger.debug("Provider request", extra={"method": method, "url": url})
        response = self._session.request(
            method, url, json=json, params=params, timeout=self._request_timeout
        )
        if response.status_code >= 400:
            raise exceptions.from_http_response(response)
        if not response.content:
            return {}
        return response.json()

    def _wait(self, operation: dict[str, Any], api: str) -> None:
        """Poll a long-running operation until it is done."""
        deadline = time.monotonic() + self._operation_timeout
        while not self._is_done(operation, api):
            if time.monotonic() > deadline:
                raise exceptions.DeadlineExceeded(
                    f"Operation {operation.get('name')} did not complete "
                    f"within {self._operation_timeout}s"
                )
            time.sleep(self._poll_interval)
            if api == "run":
                operation = self._request("GET", f"{RUN_ROOT}/{operation['name']}")
            else:
                operation = self._request("GET", operation["selfLink"])

        self._raise_operation_error(operation, api)

    @staticmethod
    def _is_done(operation: dict[str, Any], api: str) -> bool:
        if api == "run":
            return bool(operation.get("done"))
        # Compute returns the operation; anything else is already a resource
        if operation.get("kind") != "compute#operation":
            return True
        return operation.get("status") == "DONE"

    @staticmethod
    def _raise_operation_error(operation: dict[str, Any], api: str) -> None:
        error = operation.get("error")
        if not error:
            return
        if api == "run":
            status = RPC_TO_HTTP_STATUS.get(error.get("code", 13), 500)
            raise exceptions.from_http_status(status, error.get("message", "operation failed"))
        errors = error.get("errors", [])
        message = "; ".join(f"{e.get('code')}: {e.get('message')}" for e in errors) or "operation failed"
        raise exceptions.from_http_status(
            operation.get("httpErrorStatusCode", 400), message, errors=errors
        )

    # -------------------------------------------------------------------------
    # ProviderClient
    # -------------------------------------------------------------------------

    def insert(
        self, collection: Collection, name: str, body: dict[str, Any], *, region: str | None = None
    ) -> dict[str, Any]:
        params = None
        if collection.api == "run":
            params = {"serviceId": name}
        operation = self._request(
            "POST", self._collection_url(collection, region), json=body, params=params
        )
        self._wait(operation, collection.api)
        return self.get(collection, name, region=region)

    def get(self, collection: Collection, name: str, *, region: str | None = None) -> dict[str, Any]:
        return self._request("GET", self._item_url(collection, name, region))

    def patch(
        self, collection: Collection, name: str, body: dict[str, Any], *, region: str | None = None
    ) -> dict[str, Any]:
        operation = self._request("PATCH", self._item_url(collection, name, region), json=body)
        self._wait(operation, collection.api)
        return self.get(collection, name, region=region)

    def delete(self, collection: Collection, name: str, *, region: str | None = None) -> None:
        operation = self._request("DELETE", self._item_url(collection, name, region))
        self._wait(operation, collection.api)

    def action(
        self,
        collection: Collection,
        name: str,
        verb: str,
        body: dict[str, Any] | None = None,
        *,
        region: str | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        url = self._item_url(collection, name, region)
        if (collection.plural, verb) in LEGACY_ACTION_PATHS:
            url = url.replace("/global/", "/", 1)
        operation = self._request("POST", f"{url}/{verb}", json=body, params=params)
        self._wait(operation, collection.api)
        return self.get(collection, name, region=region)

    def get_iam_policy(self, collection: Collection, name: str, *, region: str | None = None) -> dict[str, Any]:
        return self._request("GET", f"{self._item_url(collection, name, region)}:getIamPolicy")

    def set_iam_policy(
        self, collection: Collection, name: str, policy: dict[str, Any], *, region: str | None = None
    ) -> dict[str, Any]:
        return self._request(
            "POST",
            f"{self._item_url(collection, name, region)}:setIamPolicy",
            json={"policy": policy},
        )


def create_provider_client(config: Config) -> GoogleRestClient:
    """Build the REST client for the configured project."""
    return GoogleRestClient(
        config.project,
        operation_timeout_seconds=config.operation_timeout_seconds,
    )
