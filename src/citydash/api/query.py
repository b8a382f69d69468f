# citydash/api/query.py
"""
Server-side entity query for widgets.

The browser cannot always reach a plain-HTTP broker from an HTTPS page, so
widgets ask this endpoint instead. No ``Link`` header is sent: brokers
would expand short type names stored without a context and find nothing.
"""
from __future__ import annotations

import json
import logging
from http import HTTPStatus
from typing import Any

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from citydash.api.dependencies import get_clients, get_store
from citydash.contracts.entity import TenantScope
from citydash.contracts.store import EntityStore
from citydash.core.ngsi.geojson import entities_to_feature_collection
from citydash.core.ngsi.transport import BrokerUnavailableError, NgsiError
from citydash.core.sync import BrokerClientFactory

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/ngsi", tags=["ngsi-query"])

NO_CACHE = {"Cache-Control": "no-cache, no-store, must-revalidate"}


def broker_error_body(exc: NgsiError) -> dict[str, Any]:
    status = exc.status or 502
    try:
        status_text = HTTPStatus(status).phrase
    except ValueError:
        status_text = ""
    details = exc.body
    if details is not None and not isinstance(details, str):
        details = json.dumps(details)
    return {
        "error": "Broker request failed",
        "status": status,
        "statusText": status_text,
        "details": details,
    }


@router.get("/entities", operation_id="query_entities")
async def query_entities(
    source_id: str | None = Query(default=None, alias="sourceId"),
    type: str | None = Query(default=None),
    ids: str | None = Query(default=None, description="Comma-separated entity ids"),
    tenant: str | None = Query(default=None),
    service_path: str | None = Query(default=None, alias="servicePath"),
    format: str = Query(default="json", pattern="^(json|geojson)$"),
    location_attr: str = Query(default="location", alias="locationAttr"),
    store: EntityStore = Depends(get_store),
    clients: BrokerClientFactory = Depends(get_clients),
) -> JSONResponse:
    if not source_id:
        return JSONResponse({"error": "Missing sourceId parameter"}, status_code=400)
    if not type:
        return JSONResponse({"error": "Missing type parameter"}, status_code=400)

    source = await store.get_source(source_id)
    if source is None:
        return JSONResponse({"error": "Source not found"}, status_code=404)
    if not source.broker_url:
        return JSONResponse(
            {"error": "Source has no broker URL configured"}, status_code=400
        )

    ops = clients.operations_for(
        source,
        TenantScope(service=tenant or "", service_path=service_path or ""),
        tenant_header=True,
    )
    wanted = [i for i in (ids or "").split(",") if i]

    try:
        entities = await ops.query_entities(type=type, ids=wanted, use_context=False)
        if format == "geojson":
            payload: Any = entities_to_feature_collection(
                entities, location_attr=location_attr
            )
        else:
            payload = entities
    except BrokerUnavailableError as exc:
        logger.warning("Entity query on source %s failed: %s", source_id, exc.reason)
        return JSONResponse(
            {"error": "Request failed", "message": exc.reason}, status_code=502
        )
    except NgsiError as exc:
        logger.warning(
            "Broker error on source %s: %s %s", source_id, exc.status, exc.reason
        )
        body = broker_error_body(exc)
        return JSONResponse(body, status_code=body["status"])
    except Exception as exc:
        logger.exception("Entity query on source %s failed", source_id)
        return JSONResponse(
            {"error": "Request failed", "message": str(exc) or type(exc).__name__},
            status_code=500,
        )
    return JSONResponse(payload, headers=NO_CACHE)
