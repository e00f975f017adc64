import json

import pytest
from starlette.applications import Starlette
from starlette.routing import Route
from starlette.testclient import TestClient

from paywall_proxy.models import FetchedResponse, ProxySettings
from paywall_proxy.core import server
from paywall_proxy.core.errors import FetchTimeoutError, TransportError
from paywall_proxy.core.pipeline import Unlocker
from paywall_proxy.core.rules import default_rule_table


class FakeFetcher:
    def __init__(self, response=None, error=None):
        self.response = response or FetchedResponse(
            status_code=200,
            headers={"x-frame-options": "DENY"},
            cookies=["nyt=1"],
            body="<script>x()</script><p>ok</p>",
        )
        self.error = error
        self.calls = 0

    async def fetch(self, url, headers):
        self.calls += 1
        if self.error:
            raise self.error
        return self.response


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def client(monkeypatch, fetcher):
    monkeypatch.setattr(server.controller, "unlocker", Unlocker(default_rule_table(), fetcher))
    app = Starlette(routes=[Route("/proxy", server.proxy_endpoint, methods=["POST"])])
    return TestClient(app)


def test_missing_url(client):
    resp = client.post("/proxy", json={})
    assert resp.status_code == 400
    assert resp.json() == {"error": "URL is required"}


def test_invalid_body(client):
    resp = client.post("/proxy", content=b"{nope", headers={"content-type": "application/json"})
    assert resp.status_code == 400


@pytest.mark.parametrize("url", ["nytimes.com/y", "http://[::1/x"])
def test_malformed_url(client, fetcher, url):
    resp = client.post("/proxy", json={"url": url})
    assert resp.status_code == 400
    assert url in resp.json()["error"]
    assert fetcher.calls == 0


def test_nofix(client, fetcher):
    resp = client.post("/proxy", json={"url": "https://nature.com/articles/1"})
    assert resp.status_code == 200
    assert resp.json()["status"] == "nofix"
    assert fetcher.calls == 0


def test_redirect(client, fetcher):
    resp = client.post("/proxy", json={"url": "https://inkl.com/story?sign-in=1"})
    assert resp.status_code == 200
    assert resp.json() == {"status": "redirect", "redirectedUrl": "https://inkl.com/story"}
    assert fetcher.calls == 0


def test_success_payload(client):
    resp = client.post("/proxy", json={"url": "https://nytimes.com/y"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "success"
    assert body["url"] == "https://nytimes.com/y"
    assert body["headers"]["x-frame-options"] == "SAMEORIGIN"
    assert body["cookies"] == ["nyt=1"]
    assert body["blockedScripts"] == []
    assert body["appliedPolicy"]["name"] == "The New York Times"
    assert body["content"].endswith("...")


@pytest.mark.parametrize(
    "error,kind",
    [
        (TransportError("connection refused"), "transport"),
        (FetchTimeoutError("timed out"), "timeout"),
    ],
)
def test_transport_failure(monkeypatch, error, kind):
    monkeypatch.setattr(
        server.controller, "unlocker", Unlocker(default_rule_table(), FakeFetcher(error=error))
    )
    app = Starlette(routes=[Route("/proxy", server.proxy_endpoint, methods=["POST"])])
    resp = TestClient(app).post("/proxy", json={"url": "https://bloomberg.com/x"})
    assert resp.status_code == 500
    assert resp.json() == {"error": f"Proxy error: {error}", "kind": kind}


@pytest.mark.asyncio
async def test_unlock_url_tool(monkeypatch, fetcher):
    monkeypatch.setattr(server.controller, "unlocker", Unlocker(default_rule_table(), fetcher))
    payload = json.loads(await server.unlock_url("https://lemonde.fr/x"))
    assert payload["status"] == "nofix"

    message = await server.unlock_url("not-a-url")
    assert message.startswith("Couldn't fetch that URL")

    message = await server.unlock_url("http://[::1/x")
    assert message.startswith("Couldn't fetch that URL")


@pytest.mark.asyncio
async def test_resolve_site_tool():
    payload = json.loads(await server.resolve_site("perthnow.com.au"))
    assert payload["excluded"] is True
    assert payload["rule"] is None

    payload = json.loads(await server.resolve_site("couriermail.com.au"))
    assert payload["group_match"] is True
    assert payload["rule"]["name"] == "Australia News Corp"


@pytest.mark.asyncio
async def test_list_site_rules_tool():
    payload = json.loads(await server.list_site_rules())
    assert payload["rules"]["Bloomberg"] == ["bloomberg.com"]
    assert payload["nofix"] == ["lemonde.fr", "nature.com"]


def test_settings_from_env():
    settings = ProxySettings.from_env(
        {
            "PAYWALL_PROXY_PORT": "4000",
            "PAYWALL_PROXY_FETCH_TIMEOUT": "2.5",
            "PAYWALL_PROXY_IMPERSONATE": "",
            "PAYWALL_PROXY_CORS_ORIGINS": "https://a.test, https://b.test",
        }
    )
    assert settings.port == 4000
    assert settings.fetch_timeout == 2.5
    assert settings.impersonate is None
    assert settings.cors_origins == ["https://a.test", "https://b.test"]
    assert ProxySettings.from_env({}).transport == "http"
