# tests/core/sync/test_discovery.py
from __future__ import annotations

import httpx
import pytest

from citydash.contracts.entity import SKIP_SYNC, EntityRecord, Source, SyncStatus
from citydash.core.errors import ConfigurationError, SourceNotFoundError
from citydash.core.ngsi.transport import NGSI_LD_DEFAULT_CONTEXT
from citydash.core.sync import BrokerClientFactory, DiscoveryService, ImportCandidate

from conftest import BROKER_URL, problem


@pytest.fixture
def discovery(store, clients) -> DiscoveryService:
    return DiscoveryService(store, clients=clients)


class TestDiscover:
    @pytest.mark.asyncio
    async def test_failing_scopes_are_isolated(self, store, broker, discovery):
        source = await store.create_source(
            Source(
                id="",
                name="city",
                broker_url=BROKER_URL,
                services=["a", "b"],
                service_paths=["/", "/x"],
            )
        )
        broker.add({"id": "urn:a:1", "type": "Bench"}, "a", "/")
        broker.add({"id": "urn:a:2", "type": "Bench"}, "a", "/x")
        broker.failing_services["b"] = problem(500, "Internal error", "tenant b is down")

        result = await discovery.discover_entities(source.id)

        assert [(e.id, e.service, e.service_path) for e in result.entities] == [
            ("urn:a:1", "a", "/"),
            ("urn:a:2", "a", "/x"),
        ]
        assert result.errors == ["b/: tenant b is down", "b/x: tenant b is down"]
        assert [r.headers["Fiware-Service"] for r in broker.requests] == ["a", "a", "b", "b"]
        assert result.total == 2

    @pytest.mark.asyncio
    async def test_list_request_shape(self, store, broker, discovery, source):
        await discovery.discover_entities(source.id)

        request = broker.requests[0]
        assert request.method == "GET"
        assert request.url.params["limit"] == "1000"
        assert request.url.params["options"] == "keyValues"
        assert request.url.params["local"] == "true"
        assert request.headers["Accept"] == "application/json"
        assert "Fiware-Service" not in request.headers

    @pytest.mark.asyncio
    async def test_already_synced_flag(self, store, broker, discovery, source):
        broker.add({"id": "urn:a:1", "type": "Bench"})
        broker.add({"id": "urn:a:2", "type": "Bench"})
        await store.create_entity(
            EntityRecord(entity_id="urn:a:1", type="Bench", source_id=source.id),
            context=SKIP_SYNC,
        )

        result = await discovery.discover_entities(source.id)

        flags = {e.id: e.already_synced for e in result.entities}
        assert flags == {"urn:a:1": True, "urn:a:2": False}
        assert result.already_synced == 1

    @pytest.mark.asyncio
    async def test_network_failure_is_reported_per_scope(self, store, discovery):
        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        service = DiscoveryService(
            store, clients=BrokerClientFactory(transport=httpx.MockTransport(refuse))
        )
        source = await store.create_source(
            Source(id="", name="down", broker_url=BROKER_URL, services=["a"])
        )

        result = await service.discover_entities(source.id)

        assert result.entities == []
        assert len(result.errors) == 1
        assert result.errors[0].startswith("a/: Broker at")

    @pytest.mark.asyncio
    async def test_unknown_source(self, discovery):
        with pytest.raises(SourceNotFoundError):
            await discovery.discover_entities("nope")

    @pytest.mark.asyncio
    async def test_missing_source_id(self, discovery):
        with pytest.raises(ConfigurationError):
            await discovery.discover_entities("")


class TestImport:
    @pytest.mark.asyncio
    async def test_duplicate_and_novel(self, store, broker, discovery, source):
        await store.create_entity(
            EntityRecord(entity_id="urn:dup", type="Bench", source_id=source.id),
            context=SKIP_SYNC,
        )

        result = await discovery.import_entities(
            source.id,
            [
                ImportCandidate(entity_id="urn:dup", type="Bench"),
                ImportCandidate(entity_id="urn:new:7", type="Bench"),
            ],
        )

        assert result.success == ["urn:new:7"]
        assert [(f.id, f.error) for f in result.failed] == [
            ("urn:dup", "Entity already exists")
        ]
        assert result.message == "Imported 1 entities"

    @pytest.mark.asyncio
    async def test_imported_record_is_synced_and_not_pushed(
        self, store, broker, discovery, source
    ):
        await discovery.import_entities(
            source.id,
            [
                ImportCandidate(
                    entity_id="urn:ngsi-ld:WeatherObserved:001",
                    type="https://smartdatamodels.org/dataModel.Weather/WeatherObserved",
                    service="city",
                    service_path="",
                    attributes={"temperature": {"type": "Property", "value": 20}},
                )
            ],
        )

        [record] = await store.find_entities(entity_id="urn:ngsi-ld:WeatherObserved:001")
        assert record.type == "WeatherObserved"
        assert record.short_id == "001"
        assert record.service == "city"
        assert record.service_path == "/"
        assert record.sync_status is SyncStatus.SYNCED
        assert record.last_sync_time is not None
        assert record.attributes["temperature"]["value"] == 20

        model = await store.get_data_model(record.data_model_id)
        assert model.model == "WeatherObserved"
        assert model.context_url == NGSI_LD_DEFAULT_CONTEXT

        assert broker.requests == []

    @pytest.mark.asyncio
    async def test_existing_data_model_is_reused(self, store, discovery, source):
        model = await store.create_data_model("Bench", "https://ctx.test/bench.jsonld")

        await discovery.import_entities(
            source.id,
            [
                ImportCandidate(entity_id="urn:b:1", type="https://x/Bench"),
                ImportCandidate(entity_id="urn:b:2", type="Bench"),
            ],
        )

        records = await store.find_entities(source_id=source.id)
        assert {r.data_model_id for r in records} == {model.id}

    @pytest.mark.asyncio
    async def test_empty_batch(self, discovery, source):
        with pytest.raises(ConfigurationError, match="Source ID and entities are required"):
            await discovery.import_entities(source.id, [])


class TestFetchDetails:
    @pytest.mark.asyncio
    async def test_envelope_is_split(self, broker, discovery, source):
        broker.add(
            {
                "id": "urn:b:1",
                "type": "Bench",
                "@context": "https://ctx.test/c.jsonld",
                "status": {"type": "Property", "value": "free"},
            },
            "city",
            "/park",
        )

        details = await discovery.fetch_entity_details(
            source.id, "urn:b:1", service="city", service_path="/park"
        )

        assert details.id == "urn:b:1"
        assert details.type == "Bench"
        assert details.attributes == {"status": {"type": "Property", "value": "free"}}
        assert broker.requests[0].headers["Fiware-Service"] == "city"

