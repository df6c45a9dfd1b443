"""Shared fixtures: isolated database, blocked network, fake upstream."""

import json
import socket
import sys
from pathlib import Path
from urllib.parse import urlparse

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]

# Prefer repo sources over any installed copy.
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

import config  # noqa: E402
import db  # noqa: E402
from pf_client import PropertyFinderClient  # noqa: E402

BASE_URL = "https://atlas.test"


@pytest.fixture(autouse=True)
def block_network(monkeypatch):
    real_connect = socket.socket.connect

    def guarded_connect(sock, address):
        host = address[0] if isinstance(address, tuple) else address
        if host not in ("127.0.0.1", "localhost"):
            raise RuntimeError("Network access blocked in tests")
        return real_connect(sock, address)

    monkeypatch.setattr(socket.socket, "connect", guarded_connect)


@pytest.fixture(autouse=True)
def isolated_db(tmp_path, monkeypatch):
    """Point every module at a fresh sqlite file and clear account env vars."""
    path = str(tmp_path / "backoffice.db")
    monkeypatch.setattr(config, "DB_PATH", path)
    for account in config.ACCOUNTS:
        monkeypatch.delenv(f"PF_API_KEY_{account['env_suffix']}", raising=False)
        monkeypatch.delenv(f"PF_API_SECRET_{account['env_suffix']}", raising=False)
    db.init_db()
    return path


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=None):
        self.status_code = status_code
        self._payload = payload
        if text is None:
            text = json.dumps(payload) if payload is not None else ""
        self.text = text

    @property
    def ok(self):
        return 200 <= self.status_code < 300

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON body")
        return self._payload


class FakeSession:
    """Stands in for requests.Session, answering from a (method, path) route table.

    A route value may be a FakeResponse, a list of them (consumed in order),
    an exception instance to raise, or a callable taking the call record.
    """

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls = []

    def request(self, method, url, headers=None, timeout=None, **kwargs):
        path = urlparse(url).path
        call = {"method": method, "path": path, "headers": headers or {}, "timeout": timeout, **kwargs}
        self.calls.append(call)

        key = (method, path)
        if key not in self.routes:
            raise AssertionError(f"Unexpected upstream call: {method} {path}")
        handler = self.routes[key]
        if isinstance(handler, list):
            handler = handler.pop(0) if len(handler) > 1 else handler[0]
        if isinstance(handler, Exception):
            raise handler
        if callable(handler):
            return handler(call)
        return handler

    def paths(self, method=None):
        return [c["path"] for c in self.calls if method is None or c["method"] == method]


def token_response(token="tok-1", expires_in=1800):
    return FakeResponse(200, {"accessToken": token, "expiresIn": expires_in})


@pytest.fixture
def fake_session():
    return FakeSession({("POST", "/v1/auth/token"): token_response()})


@pytest.fixture
def pf_client(fake_session):
    return PropertyFinderClient(base_url=BASE_URL, session=fake_session, timeout=5, publish_url_delay=0)


@pytest.fixture
def galahome_credential():
    from credentials import save_credential
    from models import Agent, Credential

    credential = Credential(
        account_id="galahome",
        api_key="key-1",
        api_secret="secret-1",
        license_number="CN-1100636",
        agents=[Agent(id=101, name="Sara Khan"), Agent(id=102, name="Omar Ali")],
    )
    return save_credential(credential)


def publish_routes(remote_id="9001", url="https://www.propertyfinder.ae/en/plp/buy/9001"):
    """Routes for a successful create -> publish -> read-back sequence."""
    return {
        ("POST", "/v1/listings"): FakeResponse(200, {"data": {"id": remote_id}}),
        ("POST", f"/v1/listings/{remote_id}/publish"): FakeResponse(200, {"data": {"id": remote_id}}),
        ("GET", f"/v1/listings/{remote_id}"): FakeResponse(
            200, {"data": {"id": remote_id, "portals": {"propertyfinder": {"url": url}}}}
        ),
    }
