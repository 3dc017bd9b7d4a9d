"""
Integration tests for the HTTP pull endpoint.

Tests cover:
- Successful pulls and the wire format
- Protocol version redirects
- Actor resolution from headers
- Error status codes
- Gzip compression
"""

import gzip
import json

import pytest
from fastapi.testclient import TestClient

from pullsync.cvr_server.actor import Actor
from pullsync.cvr_server.api.http_server import create_app
from pullsync.cvr_server.config import ActorMismatchPolicy, HttpConfig, SyncConfig
from pullsync.cvr_server.sync.pull import PullOrchestrator
from tests.conftest import WORKSPACE_ID

MEMBER_HEADERS = {
    "X-Actor-Type": "tenant-member",
    "X-Tenant-ID": WORKSPACE_ID,
    "X-Actor": json.dumps({"userID": "usr_alice", "email": "alice@acme.test"}),
}


def pull_body(cookie=None, group="cg_http", version=1):
    return {"pullVersion": version, "clientGroupID": group, "cookie": cookie}


class TestPullEndpoint:
    """Tests for POST /replicache/pull1."""

    @pytest.fixture
    def client(self, seeded, registry):
        app = create_app(PullOrchestrator(seeded, registry), HttpConfig(gzip_minimum_size=10))
        with TestClient(app) as client:
            yield client

    def test_first_pull(self, client):
        response = client.post("/replicache/pull1", json=pull_body(), headers=MEMBER_HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["cookie"] == 1
        assert body["patch"][0] == {"op": "clear"}
        assert body["patch"][1] == {"op": "put", "key": "/init", "value": True}
        assert body["lastMutationIDChanges"] == {}
        keys = {op["key"] for op in body["patch"][2:]}
        assert "/stage/stg_prod" in keys

    def test_second_pull_is_empty(self, client):
        first = client.post("/replicache/pull1", json=pull_body(), headers=MEMBER_HEADERS).json()

        second = client.post(
            "/replicache/pull1", json=pull_body(cookie=first["cookie"]), headers=MEMBER_HEADERS
        )

        assert second.json() == {"patch": [], "cookie": 1, "lastMutationIDChanges": {}}

    def test_other_pull_version_redirects(self, client):
        response = client.post(
            "/replicache/pull1",
            json=pull_body(version=0),
            headers=MEMBER_HEADERS,
            follow_redirects=False,
        )

        assert response.status_code == 307
        assert response.headers["location"] == "/replicache/pull"
        assert response.content == b""

    def test_missing_actor_headers(self, client):
        response = client.post("/replicache/pull1", json=pull_body())

        assert response.status_code == 401

    def test_member_without_tenant(self, client):
        headers = {"X-Actor-Type": "tenant-member", "X-Actor": "{}"}

        response = client.post("/replicache/pull1", json=pull_body(), headers=headers)

        assert response.status_code == 401

    def test_invalid_body(self, client):
        response = client.post(
            "/replicache/pull1", json={"pullVersion": 1}, headers=MEMBER_HEADERS
        )

        assert response.status_code == 422

    def test_gzip_when_accepted(self, client):
        response = client.post(
            "/replicache/pull1",
            json=pull_body(),
            headers={**MEMBER_HEADERS, "Accept-Encoding": "gzip"},
        )

        assert response.status_code == 200
        assert response.headers["content-encoding"] == "gzip"
        assert response.json()["cookie"] == 1

    def test_no_gzip_when_not_accepted(self, client):
        response = client.post(
            "/replicache/pull1",
            json=pull_body(),
            headers={**MEMBER_HEADERS, "Accept-Encoding": "identity"},
        )

        assert "content-encoding" not in response.headers
        assert json.loads(response.content)["cookie"] == 1
        with pytest.raises(OSError):
            gzip.decompress(response.content)

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestPullEndpointPolicies:
    """Error policies and custom actor resolution."""

    def test_actor_mismatch_error_is_forbidden(self, seeded, registry):
        config = SyncConfig(actor_mismatch=ActorMismatchPolicy.ERROR)
        app = create_app(PullOrchestrator(seeded, registry, config))

        with TestClient(app) as client:
            client.post("/replicache/pull1", json=pull_body(), headers=MEMBER_HEADERS)
            response = client.post(
                "/replicache/pull1",
                json=pull_body(cookie=1),
                headers={"X-Actor-Type": "account-holder", "X-Actor": '{"email": "eve@test"}'},
            )

        assert response.status_code == 403
        assert response.json()["error_code"] == "ACTOR_MISMATCH"

    def test_custom_actor_resolver(self, seeded, registry):
        resolver = lambda request: Actor.account_holder(request.headers["X-Email"])
        app = create_app(PullOrchestrator(seeded, registry), actor_resolver=resolver)

        with TestClient(app) as client:
            response = client.post(
                "/replicache/pull1", json=pull_body(), headers={"X-Email": "alice@acme.test"}
            )

        keys = {op["key"] for op in response.json()["patch"][2:]}
        assert keys == {"/user/usr_alice", f"/workspace/{WORKSPACE_ID}"}

    def test_custom_pull_path(self, seeded, registry):
        app = create_app(PullOrchestrator(seeded, registry), HttpConfig(pull_path="/sync/pull"))

        with TestClient(app) as client:
            response = client.post("/sync/pull", json=pull_body(), headers=MEMBER_HEADERS)

        assert response.status_code == 200
