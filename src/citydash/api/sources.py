# citydash/api/sources.py
"""Broker sources: registration, entity discovery and import."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from citydash.api.dependencies import get_discovery, get_store
from citydash.api.errors import http_error
from citydash.api.schemas import (
    DiscoveredEntitySchema,
    DiscoverRequest,
    DiscoverResponse,
    EntityDetailsResponse,
    FetchDetailsRequest,
    ImportFailureSchema,
    ImportRequest,
    ImportResponse,
    SourceCreateRequest,
    SourceResponse,
)
from citydash.contracts.entity import Source
from citydash.contracts.store import EntityStore
from citydash.core.sync import DiscoveryService, ImportCandidate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/ngsi-sources", tags=["ngsi-sources"])


@router.get("", response_model=list[SourceResponse], operation_id="list_sources")
async def list_sources(
    store: EntityStore = Depends(get_store),
) -> list[SourceResponse]:
    return [SourceResponse.from_contract(s) for s in await store.list_sources()]


@router.post(
    "",
    response_model=SourceResponse,
    status_code=201,
    operation_id="create_source",
)
async def create_source(
    body: SourceCreateRequest,
    store: EntityStore = Depends(get_store),
) -> SourceResponse:
    source = await store.create_source(
        Source(
            id="",
            name=body.name,
            broker_url=body.broker_url,
            auth_token=body.auth_token,
            services=body.services,
            service_paths=body.service_paths,
            proxy_url=body.proxy_url,
        )
    )
    return SourceResponse.from_contract(source)


@router.post(
    "/discover-entities",
    response_model=DiscoverResponse,
    response_model_exclude_none=True,
    operation_id="discover_entities",
)
async def discover_entities(
    body: DiscoverRequest,
    discovery: DiscoveryService = Depends(get_discovery),
) -> DiscoverResponse:
    """List what the source's broker holds, across every tenant scope."""
    try:
        result = await discovery.discover_entities(body.source_id or "")
    except Exception as exc:
        raise http_error(exc) from exc

    return DiscoverResponse(
        entities=[
            DiscoveredEntitySchema(
                id=e.id,
                type=e.type,
                service=e.service,
                service_path=e.service_path,
                already_synced=e.already_synced,
            )
            for e in result.entities
        ],
        total=result.total,
        already_synced=result.already_synced,
        errors=result.errors or None,
    )


@router.post(
    "/import-entities",
    response_model=ImportResponse,
    operation_id="import_entities",
)
async def import_entities(
    body: ImportRequest,
    discovery: DiscoveryService = Depends(get_discovery),
) -> ImportResponse:
    candidates = [
        ImportCandidate(
            entity_id=e.entity_id,
            type=e.type,
            service=e.service or "",
            service_path=e.service_path or "/",
            attributes=e.attributes,
        )
        for e in body.entities
    ]
    try:
        result = await discovery.import_entities(body.source_id or "", candidates)
    except Exception as exc:
        raise http_error(exc) from exc

    return ImportResponse(
        message=result.message,
        success=result.success,
        failed=[ImportFailureSchema(id=f.id, error=f.error) for f in result.failed],
    )


@router.post(
    "/fetch-entity-details",
    response_model=EntityDetailsResponse,
    operation_id="fetch_entity_details",
)
async def fetch_entity_details(
    body: FetchDetailsRequest,
    discovery: DiscoveryService = Depends(get_discovery),
) -> EntityDetailsResponse:
    try:
        details = await discovery.fetch_entity_details(
            body.source_id or "",
            body.entity_id or "",
            service=body.service,
            service_path=body.service_path,
        )
    except Exception as exc:
        raise http_error(exc) from exc

    return EntityDetailsResponse(
        id=details.id, type=details.type, attributes=details.attributes
    )
