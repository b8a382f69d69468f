from __future__ import annotations

import httpx
from fastapi.testclient import TestClient

from conftest import ENTITIES

ENTITY_ID = "urn:ngsi-ld:Bench:1"


def _create(client: TestClient, source_id: str, **extra) -> dict:
    resp = client.post(
        "/api/ngsi-entities",
        json={
            "entityId": ENTITY_ID,
            "type": "https://smartdatamodels.org/dataModel.Urban/Bench",
            "sourceId": source_id,
            "attributes": {
                "name": {"type": "Property", "value": "Bench by the lake"},
                "seats": {"type": "Property", "value": 4},
            },
            **extra,
        },
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


class TestCrud:
    def test_create_syncs_to_broker(self, client: TestClient, broker, api_source) -> None:
        body = _create(client, api_source["id"])

        assert body["type"] == "Bench"
        assert body["shortId"] == "1"
        assert body["syncStatus"] == "synced"
        assert broker.get(ENTITY_ID)["seats"]["value"] == 4

    def test_create_records_broker_failure(self, client: TestClient, broker, api_source) -> None:
        broker.failing_services[""] = httpx.Response(500, json={"title": "Broker exploded"})

        body = _create(client, api_source["id"])

        assert body["syncStatus"] == "error"
        assert body["lastSyncError"] == "Broker exploded"

    def test_create_unknown_source(self, client: TestClient) -> None:
        resp = client.post(
            "/api/ngsi-entities",
            json={"entityId": ENTITY_ID, "type": "Bench", "sourceId": "nope"},
        )
        assert resp.status_code == 404

    def test_duplicate(self, client: TestClient, api_source) -> None:
        _create(client, api_source["id"])
        resp = client.post(
            "/api/ngsi-entities",
            json={"entityId": ENTITY_ID, "type": "Bench", "sourceId": api_source["id"]},
        )
        assert resp.status_code == 409
        assert resp.json()["detail"] == "Entity already exists"

    def test_patch_pushes_update(self, client: TestClient, broker, api_source) -> None:
        created = _create(client, api_source["id"])

        resp = client.patch(
            f"/api/ngsi-entities/{created['id']}",
            json={"attributes": {"seats": {"type": "Property", "value": 6}}},
        )

        assert resp.status_code == 200
        assert resp.json()["attributes"] == {"seats": {"type": "Property", "value": 6}}
        assert broker.get(ENTITY_ID)["seats"]["value"] == 6

    def test_get_and_delete(self, client: TestClient, broker, api_source) -> None:
        created = _create(client, api_source["id"])

        assert client.get(f"/api/ngsi-entities/{created['id']}").json()["entityId"] == ENTITY_ID

        resp = client.delete(f"/api/ngsi-entities/{created['id']}")
        assert resp.status_code == 200
        assert broker.get(ENTITY_ID) is None
        assert client.get(f"/api/ngsi-entities/{created['id']}").status_code == 404
        assert client.delete(f"/api/ngsi-entities/{created['id']}").status_code == 404


class TestActions:
    def test_fetch_live(self, client: TestClient, api_source) -> None:
        created = _create(client, api_source["id"])

        resp = client.get(f"/api/ngsi-entities/{created['id']}/fetch")

        assert resp.status_code == 200
        assert resp.json()["id"] == ENTITY_ID

    def test_fetch_missing_in_broker(self, client: TestClient, broker, api_source) -> None:
        created = _create(client, api_source["id"])
        broker.tenants[("", "/")].clear()

        resp = client.get(f"/api/ngsi-entities/{created['id']}/fetch")

        assert resp.status_code == 404
        assert "Force Resync" in resp.json()["detail"]

    def test_resync_recreates(self, client: TestClient, broker, api_source) -> None:
        created = _create(client, api_source["id"])
        broker.tenants[("", "/")].clear()

        resp = client.post(f"/api/ngsi-entities/{created['id']}/resync")

        assert resp.status_code == 200
        assert resp.json() == {
            "message": "Entity synced to Context Broker",
            "outcome": "created",
        }
        assert broker.get(ENTITY_ID) is not None

    def test_resync_broker_error(self, client: TestClient, broker, api_source) -> None:
        created = _create(client, api_source["id"])
        broker.failing_services[""] = httpx.Response(
            400, json={"title": "Bad request", "detail": "invalid attribute"}
        )

        resp = client.post(f"/api/ngsi-entities/{created['id']}/resync")

        assert resp.status_code == 400
        assert resp.json()["detail"] == "invalid attribute"
        record = client.get(f"/api/ngsi-entities/{created['id']}").json()
        assert record["syncStatus"] == "error"
        assert record["lastSyncError"] == "invalid attribute"

    def test_update_attrs(self, client: TestClient, broker, api_source) -> None:
        created = _create(client, api_source["id"])

        resp = client.post(
            f"/api/ngsi-entities/{created['id']}/update-attrs",
            json={"attributes": {"seats": {"type": "Property", "value": 2}}},
        )

        assert resp.status_code == 200
        assert resp.json() == {"message": "Attributes updated", "status": 204}
        assert broker.get(ENTITY_ID)["seats"]["value"] == 2

    def test_update_attrs_partial(self, client: TestClient, broker, api_source) -> None:
        created = _create(client, api_source["id"])
        report = {"updated": ["seats"], "notUpdated": [{"attributeName": "x", "reason": "bad"}]}
        broker.override(
            "PATCH", f"{ENTITIES}/{ENTITY_ID}/attrs", httpx.Response(207, json=report)
        )

        resp = client.post(
            f"/api/ngsi-entities/{created['id']}/update-attrs",
            json={"attributes": {"seats": 1, "x": 2}},
        )

        assert resp.json() == {
            "message": "Attributes partially updated",
            "status": 207,
            "multiStatus": report,
        }

    def test_update_attrs_empty(self, client: TestClient, api_source) -> None:
        created = _create(client, api_source["id"])
        resp = client.post(
            f"/api/ngsi-entities/{created['id']}/update-attrs", json={"attributes": {}}
        )
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Request body cannot be empty"

    def test_render(self, client: TestClient, api_source) -> None:
        created = _create(client, api_source["id"])

        resp = client.post(
            f"/api/ngsi-entities/{created['id']}/render",
            json={"template": "{{data.name}} ({{data.seats}} seats) {{data.colour}}"},
        )

        assert resp.status_code == 200
        body = resp.json()
        assert body["text"] == "Bench by the lake (4 seats) —"
        assert set(body["paths"]) == {"name", "seats"}

    def test_render_selected_attributes(self, client: TestClient, api_source) -> None:
        created = _create(
            client,
            api_source["id"],
            attributes={
                "name": {"type": "Property", "value": "Bench by the lake"},
                "seats": {"type": "Property", "value": 4},
                "surfaceTemperature": {
                    "type": "Property",
                    "value": 18.5,
                    "unitCode": "CEL",
                },
            },
        )

        resp = client.post(
            f"/api/ngsi-entities/{created['id']}/render",
            json={
                "template": "{{entityType}}",
                "attributeSelection": "exclude",
                "selectedAttributes": ["name"],
            },
        )

        assert resp.status_code == 200
        body = resp.json()
        assert body["text"] == "Bench"
        assert body["attributes"] == [
            {"name": "seats", "label": "Seats", "value": 4, "metadata": None},
            {
                "name": "surfaceTemperature",
                "label": "Surface Temperature",
                "value": 18.5,
                "metadata": {"unitCode": "CEL"},
            },
        ]

    def test_render_unknown_selection_mode(self, client: TestClient, api_source) -> None:
        created = _create(client, api_source["id"])

        resp = client.post(
            f"/api/ngsi-entities/{created['id']}/render",
            json={"template": "x", "attributeSelection": "some"},
        )

        assert resp.status_code == 422


class TestAttributeActions:
    def test_resync_reports_partial_update(
        self, client: TestClient, broker, api_source
    ) -> None:
        created = _create(client, api_source["id"])
        report = {"updated": ["seats"], "notUpdated": [{"attributeName": "name", "reason": "x"}]}
        broker.override(
            "PATCH", f"{ENTITIES}/{ENTITY_ID}/attrs", httpx.Response(207, json=report)
        )

        resp = client.post(f"/api/ngsi-entities/{created['id']}/resync")

        assert resp.status_code == 200
        assert resp.json() == {
            "message": "Entity partially synced to Context Broker",
            "outcome": "updated",
            "multiStatus": report,
        }
        record = client.get(f"/api/ngsi-entities/{created['id']}").json()
        assert record["syncStatus"] == "synced"
        assert record["lastSyncError"] == "Partially synced; not updated: name"

    def test_append_attrs(self, client: TestClient, broker, api_source) -> None:
        created = _create(client, api_source["id"])
        broker.requests.clear()

        resp = client.post(
            f"/api/ngsi-entities/{created['id']}/append-attrs",
            json={"attributes": {"colour": {"type": "Property", "value": "green"}}},
        )

        assert resp.status_code == 200
        assert resp.json() == {"message": "Attributes updated", "status": 204}
        assert [r.method for r in broker.requests] == ["POST"]
        assert broker.get(ENTITY_ID)["colour"]["value"] == "green"
        record = client.get(f"/api/ngsi-entities/{created['id']}").json()
        assert set(record["attributes"]) == {"name", "seats", "colour"}

    def test_delete_attr(self, client: TestClient, broker, api_source) -> None:
        created = _create(client, api_source["id"])

        resp = client.delete(f"/api/ngsi-entities/{created['id']}/attrs/seats")

        assert resp.status_code == 200
        assert resp.json() == {"message": "Attribute deleted"}
        assert "seats" not in broker.get(ENTITY_ID)
        record = client.get(f"/api/ngsi-entities/{created['id']}").json()
        assert set(record["attributes"]) == {"name"}

    def test_delete_attr_missing_record(self, client: TestClient) -> None:
        resp = client.delete("/api/ngsi-entities/nope/attrs/seats")
        assert resp.status_code == 404
