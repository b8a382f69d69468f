# tests/conftest.py
from __future__ import annotations

import json
from typing import Any
from urllib.parse import unquote

import httpx
import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from citydash.contracts.entity import Source
from citydash.core.config import settings
from citydash.core.db import create_engine
from citydash.core.store import SqlStore
from citydash.core.sync import BrokerClientFactory
from citydash.main import create_app

BROKER_URL = "http://broker.test:1026"
ENTITIES = "/ngsi-ld/v1/entities"


def problem(status: int, title: str, detail: str | None = None) -> httpx.Response:
    body: dict[str, Any] = {
        "type": "https://uri.etsi.org/ngsi-ld/errors/Test",
        "title": title,
    }
    if detail is not None:
        body["detail"] = detail
    return httpx.Response(status, json=body)


def _fresh(response: httpx.Response) -> httpx.Response:
    # A canned response may be served several times
    return httpx.Response(
        response.status_code, headers=response.headers, content=response.content
    )


class FakeBroker:
    """In-memory NGSI-LD broker partitioned by (Fiware-Service, ServicePath)."""

    def __init__(self) -> None:
        self.tenants: dict[tuple[str, str], dict[str, dict[str, Any]]] = {}
        self.requests: list[httpx.Request] = []
        self.failing_services: dict[str, httpx.Response] = {}
        self.overrides: dict[tuple[str, str], httpx.Response] = {}

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def add(
        self, entity: dict[str, Any], service: str = "", service_path: str = "/"
    ) -> None:
        self.tenants.setdefault((service, service_path), {})[entity["id"]] = entity

    def get(
        self, entity_id: str, service: str = "", service_path: str = "/"
    ) -> dict[str, Any] | None:
        return self.tenants.get((service, service_path), {}).get(entity_id)

    def override(self, method: str, path: str, response: httpx.Response) -> None:
        self.overrides[(method, path)] = response

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = unquote(request.url.raw_path.decode().split("?")[0])
        service = request.headers.get("Fiware-Service", "")
        service_path = request.headers.get("Fiware-ServicePath", "/")

        if (request.method, path) in self.overrides:
            return _fresh(self.overrides[(request.method, path)])
        if service in self.failing_services:
            return _fresh(self.failing_services[service])

        entities = self.tenants.setdefault((service, service_path), {})

        if path == ENTITIES:
            if request.method == "GET":
                wanted = request.url.params.get("type")
                return httpx.Response(
                    200,
                    json=[
                        e
                        for e in entities.values()
                        if not wanted or e.get("type") == wanted
                    ],
                )
            if request.method == "POST":
                body = json.loads(request.content)
                if body["id"] in entities:
                    return problem(409, "Already Exists", f"{body['id']} already exists")
                entities[body["id"]] = body
                return httpx.Response(201)

        if not path.startswith(ENTITIES + "/"):
            return problem(400, "Bad Request", f"unexpected path {path}")

        rest = path[len(ENTITIES) + 1 :]
        entity_id, attrs, attr_name = rest.partition("/attrs")
        entity = entities.get(entity_id)
        if entity is None:
            return problem(404, "Resource not found", f"{entity_id} not found")

        if not attrs:
            if request.method == "HEAD":
                return httpx.Response(204)
            if request.method == "GET":
                return httpx.Response(200, json=entity)
            if request.method == "DELETE":
                del entities[entity_id]
                return httpx.Response(204)
        elif not attr_name and request.method in ("PATCH", "POST"):
            entity.update(json.loads(request.content))
            return httpx.Response(204)
        elif attr_name and request.method == "DELETE":
            entity.pop(attr_name.lstrip("/"), None)
            return httpx.Response(204)

        return problem(400, "Bad Request", f"unsupported {request.method} {path}")


@pytest.fixture
def broker() -> FakeBroker:
    return FakeBroker()


@pytest.fixture
def clients(broker: FakeBroker) -> BrokerClientFactory:
    return BrokerClientFactory(transport=broker.transport)


@pytest_asyncio.fixture
async def store():
    s = SqlStore(create_engine("sqlite+aiosqlite://"))
    await s.init()
    yield s
    await s.close()


@pytest_asyncio.fixture
async def source(store: SqlStore) -> Source:
    return await store.create_source(
        Source(id="", name="city", broker_url=BROKER_URL)
    )


@pytest.fixture
def app(broker: FakeBroker, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(settings, "sources_config_paths", [])
    # Not initialized here: the lifespan does it on the app's own loop
    s = SqlStore(create_engine("sqlite+aiosqlite://"))
    return create_app(store=s, http_transport=broker.transport)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def api_source(client: TestClient) -> dict[str, Any]:
    resp = client.post(
        "/api/ngsi-sources", json={"name": "city", "brokerUrl": BROKER_URL}
    )
    assert resp.status_code == 201
    return resp.json()
