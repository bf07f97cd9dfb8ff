"""Google Cloud API Mock for Integration Testing.

This module provides an in-memory implementation of the ProviderClient
protocol and of an authorized HTTP session, so the engine can be exercised
end to end without Google Cloud connectivity.

Key Features:
- In-memory resources keyed by relative resource path
- Generated outputs (selfLink, static addresses, service URIs)
- Referential checks: references to missing resources fail with NotFound,
  deleting a resource still in use fails with resourceInUseByAnotherResource
- Error injection and artificial latency per (verb, name)
- IAM policies with etag checks

Usage:
    from gcp_mock import FakeProviderClient

    client = FakeProviderClient()
    client.fail("insert", "web-ip", exceptions.ServiceUnavailable("busy"))
    engine = Engine(InMemoryStateStore(), build_drivers(client))
"""

from .provider import FakeProviderClient, RecordedCall
from .session import FakeResponse, FakeSession

__all__ = [
    "FakeProviderClient",
    "FakeResponse",
    "FakeSession",
    "RecordedCall",
]
