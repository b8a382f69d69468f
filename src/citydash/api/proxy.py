# citydash/api/proxy.py
"""
Pass-through proxy for browser-side broker access.

Dashboards served over HTTPS cannot call plain-HTTP brokers directly. The
browser client asks ``/api/ngsi-proxy?broker=...&path=...&params=...``
and this endpoint forwards the GET, passing along the NGSI tenant and
context headers.
"""
from __future__ import annotations

import logging

import httpx
from fastapi import APIRouter, Query, Request, Response
from fastapi.responses import JSONResponse

from citydash.core.ngsi.transport import ENTITIES_PATH

logger = logging.getLogger(__name__)

router = APIRouter(tags=["ngsi-proxy"])

FORWARDED_HEADERS = (
    "ngsild-tenant",
    "ngsild-path",
    "fiware-service",
    "fiware-servicepath",
    "link",
)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, " + ", ".join(FORWARDED_HEADERS),
}


@router.get("/api/ngsi-proxy", operation_id="ngsi_proxy")
async def proxy(
    request: Request,
    broker: str | None = Query(default=None),
    path: str = Query(default=ENTITIES_PATH),
    params: str = Query(default=""),
) -> Response:
    if not broker:
        return JSONResponse({"error": "Missing broker URL parameter"}, status_code=400)

    target = f"{broker}{path}{'?' + params if params else ''}"
    headers = {
        name: request.headers[name]
        for name in FORWARDED_HEADERS
        if request.headers.get(name)
    }
    timeout = request.app.state.clients.timeout
    transport = request.app.state.clients.http_transport

    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            response = await client.get(target, headers=headers)
    except httpx.HTTPError as exc:
        logger.warning("Proxy request to %s failed: %s", target, exc)
        return JSONResponse(
            {"error": "Proxy request failed", "message": str(exc) or type(exc).__name__},
            status_code=502,
        )

    if not response.is_success:
        return JSONResponse(
            {
                "error": "Broker request failed",
                "status": response.status_code,
                "statusText": response.reason_phrase,
                "details": response.text,
            },
            status_code=response.status_code,
        )

    try:
        data = response.json()
    except ValueError as exc:
        logger.warning("Broker at %s returned non-JSON body", broker)
        return JSONResponse(
            {"error": "Proxy request failed", "message": str(exc)}, status_code=502
        )

    return JSONResponse(data, headers=CORS_HEADERS)


@router.options("/api/ngsi-proxy", include_in_schema=False)
async def proxy_preflight() -> Response:
    return Response(status_code=200, headers=CORS_HEADERS)
