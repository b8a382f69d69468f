# citydash/api/health.py
"""
Root-level health endpoint.
"""
from __future__ import annotations

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/health")
async def health(request: Request) -> dict:
    store = getattr(request.app.state, "store", None)
    sources = await store.list_sources() if store else []
    return {
        "status": "healthy",
        "store": "configured" if store else "not configured",
        "sources": len(sources),
    }
