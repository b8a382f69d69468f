# citydash/core/sync/clients.py
"""
Builds broker clients for a Source and tenant scope.

Every broker call in the sync layer goes through one factory so that the
timeout and, in tests, the HTTP transport are configured in one place.
"""
from __future__ import annotations

import logging

import httpx

from citydash.contracts.entity import Source, TenantScope
from citydash.core.config import settings
from citydash.core.errors import ConfigurationError
from citydash.core.ngsi.operations import NgsiLdOperations
from citydash.core.ngsi.transport import BrokerConfig, BrokerTransport

logger = logging.getLogger(__name__)


class BrokerClientFactory:
    def __init__(
        self,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float | None = None,
    ) -> None:
        self._transport = transport
        self._timeout = timeout if timeout is not None else settings.broker_timeout

    @property
    def http_transport(self) -> httpx.AsyncBaseTransport | None:
        return self._transport

    @property
    def timeout(self) -> float:
        return self._timeout

    def config_for(
        self,
        broker_url: str | None,
        scope: TenantScope | None = None,
        *,
        auth_token: str | None = None,
        tenant_header: bool = False,
    ) -> BrokerConfig:
        if not broker_url:
            raise ConfigurationError("Source broker URL not configured")
        scope = scope or TenantScope()
        return BrokerConfig(
            broker_url=broker_url,
            service=scope.service or None,
            service_path=scope.service_path or None,
            auth_token=auth_token,
            timeout=self._timeout,
            tenant_header=tenant_header,
        )

    def transport_for(
        self, source: Source, scope: TenantScope | None = None
    ) -> BrokerTransport:
        config = self.config_for(
            source.broker_url, scope, auth_token=source.auth_token
        )
        return BrokerTransport(config, transport=self._transport)

    def operations_for(
        self,
        source: Source,
        scope: TenantScope | None = None,
        context_url: str | None = None,
        *,
        tenant_header: bool = False,
    ) -> NgsiLdOperations:
        config = self.config_for(
            source.broker_url,
            scope,
            auth_token=source.auth_token,
            tenant_header=tenant_header,
        )
        return NgsiLdOperations(config, context_url, transport=self._transport)
