import base64

import pytest
from fastapi.testclient import TestClient

import main
from fakes import FakeDockerClient
from onc import db
from onc.events import ContainerRemoved, IpamReady, NodeInfoUpdated
from onc.ipam import IpamUnavailable
from onc.runtime import AdapterState
from onc.settings import settings


class StubRouter:
    def fetch(self):
        return None


class StubAdapter:
    def __init__(self):
        self.client = FakeDockerClient()
        self.state = AdapterState()
        self.router = StubRouter()
        self.published = []
        self.attach_ok = True
        self.calls = []

    def publish(self, msg):
        self.published.append(msg)

    def attach_container(self, container_id, cidr):
        self.calls.append(("attach", container_id, cidr))
        return self.attach_ok

    def migrate_container(self, container_id, cidr):
        self.calls.append(("migrate", container_id, cidr))
        return self.attach_ok

    def modify_create_opts(self, opts):
        opts["Entrypoint"] = ["/w/w"]
        return opts

    def modify_network_opts(self, opts):
        raise IpamUnavailable("address allocator is not ready")


def _auth(user=settings.api_user, password=settings.api_password):
    token = base64.b64encode(f"{user}:{password}".encode()).decode()
    return {"Authorization": f"Basic {token}"}


@pytest.fixture
def adapter():
    stub = StubAdapter()
    main.app.dependency_overrides[main.get_adapter] = lambda: stub
    yield stub
    main.app.dependency_overrides.clear()


@pytest.fixture
def client(adapter):
    return TestClient(main.app)


def test_requires_basic_auth(client):
    assert client.get("/status").status_code == 401
    assert client.get("/status", headers=_auth(password="wrong")).status_code == 401


def test_status(client):
    r = client.get("/status", headers=_auth())
    assert r.status_code == 200
    body = r.json()
    assert body["started"] is False
    assert body["docker"] is True
    assert body["router_running"] is False


def test_events(client):
    db.log_event("WARN", "Migrating host node from cidr=10.81.0.7/16")
    r = client.get("/events", params={"limit": 5}, headers=_auth())
    assert r.status_code == 200
    assert r.json()[0]["message"].startswith("Migrating host node")


def test_node_info_is_queued(client, adapter):
    payload = {"peer_ips": ["10.0.0.2"], "trusted_subnets": ["10.0.0.0/8"], "node_number": 5}
    r = client.post("/node-info", json=payload, headers=_auth())
    assert r.status_code == 202
    msg = adapter.published[0]
    assert isinstance(msg, NodeInfoUpdated)
    assert msg.info.node_number == 5


def test_node_info_validation(client, adapter):
    r = client.post("/node-info", json={"peer_ips": ["not-an-ip"]}, headers=_auth())
    assert r.status_code == 422
    r = client.post("/node-info", json={"node_number": 300}, headers=_auth())
    assert r.status_code == 422
    assert adapter.published == []


def test_ipam_ready_and_container_removed(client, adapter):
    assert client.post("/ipam/ready", headers=_auth()).status_code == 202
    r = client.post("/containers/removed", json={"id": "abc", "attributes": {"x": "y"}}, headers=_auth())
    assert r.status_code == 202
    assert isinstance(adapter.published[0], IpamReady)
    assert adapter.published[1] == ContainerRemoved("abc", {"x": "y"})


def test_attach_and_migrate(client, adapter):
    r = client.post("/containers/abc/attach", json={"cidr": "10.81.128.4/16"}, headers=_auth())
    assert r.status_code == 200
    r = client.post("/containers/abc/migrate", json={"cidr": "10.81.128.4/16"}, headers=_auth())
    assert r.status_code == 200
    assert adapter.calls == [("attach", "abc", "10.81.128.4/16"), ("migrate", "abc", "10.81.128.4/16")]


def test_attach_failure_is_bad_gateway(client, adapter):
    adapter.attach_ok = False
    r = client.post("/containers/abc/attach", json={"cidr": "10.81.128.4/16"}, headers=_auth())
    assert r.status_code == 502


def test_attach_rejects_address_without_prefix(client):
    r = client.post("/containers/abc/attach", json={"cidr": "10.81.128.4"}, headers=_auth())
    assert r.status_code == 422


def test_container_opts(client):
    r = client.post("/container-opts", json={"opts": {"Image": "redis"}, "overlay": False}, headers=_auth())
    assert r.status_code == 200
    assert r.json()["Entrypoint"] == ["/w/w"]


def test_container_opts_before_allocator_ready(client):
    r = client.post("/container-opts", json={"opts": {"Image": "redis"}}, headers=_auth())
    assert r.status_code == 503
