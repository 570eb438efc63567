"""Grafana API Mock for Integration Testing.

An in-memory implementation of Grafana's SSO settings API, served through
httpx.MockTransport so the real GrafanaSSOClient runs end to end without a
Grafana instance.

Key Features:
- In-memory provider settings (unknown keys kept as written)
- 404 for providers that were never configured
- Error injection: unreachable server, HTTP failures on GET or PUT,
  malformed settings payloads
- Request history for asserting on reads, writes and auth headers

Usage:
    from grafana_mock import MockGrafanaServer

    server = MockGrafanaServer(settings={"generic_oauth": {"clientId": "abc"}})
    async with server.client() as client:
        await sync_org_mapping(client, tenants)

    assert server.state.put_count == 1
"""

from .server import MockGrafanaServer, MockGrafanaState, RecordedRequest

__all__ = [
    "MockGrafanaServer",
    "MockGrafanaState",
    "RecordedRequest",
]
