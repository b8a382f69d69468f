# citydash/api/dependencies.py
"""
FastAPI dependencies resolving the services wired in ``create_app``.
"""
from __future__ import annotations

from fastapi import Request

from citydash.contracts.store import EntityStore
from citydash.core.sync import BrokerClientFactory, DiscoveryService, SyncReconciler


def get_store(request: Request) -> EntityStore:
    return request.app.state.store


def get_clients(request: Request) -> BrokerClientFactory:
    return request.app.state.clients


def get_discovery(request: Request) -> DiscoveryService:
    return request.app.state.discovery


def get_reconciler(request: Request) -> SyncReconciler:
    return request.app.state.reconciler
