# citydash/core/ngsi/transport.py
"""
Thin async transport for NGSI-LD context brokers.

Attaches tenant scope and auth headers to every request and normalizes
broker failures into ``NgsiError``. Content negotiation headers
(``Accept``, ``Content-Type``, ``Link``) are left to each operation.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

import httpx

from citydash.core.config import settings

logger = logging.getLogger(__name__)

NGSI_LD_CORE_CONTEXT = (
    "https://uri.etsi.org/ngsi-ld/v1/ngsi-ld-core-context-v1.8.jsonld"
)
# Context assigned to data models created on import when none resolves
NGSI_LD_DEFAULT_CONTEXT = "https://uri.etsi.org/ngsi-ld/v1/ngsi-ld-core-context.jsonld"

JSON_LD_CONTEXT_REL = "http://www.w3.org/ns/json-ld#context"
ENTITIES_PATH = "/ngsi-ld/v1/entities"


def build_link_header(context_url: str) -> str:
    return f'<{context_url}>; rel="{JSON_LD_CONTEXT_REL}"; type="application/ld+json"'


class NgsiError(Exception):
    """Non-2xx broker response or failed broker call.

    ``type``, ``title`` and ``detail`` come from the NGSI-LD ProblemDetails
    body when the broker sent one.
    """

    def __init__(
        self,
        message: str,
        status: int | None = None,
        *,
        type: str | None = None,
        title: str | None = None,
        detail: str | None = None,
        body: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.type = type
        self.title = title
        self.detail = detail
        self.body = body

    @property
    def reason(self) -> str:
        """Most specific message available: detail, title, then message."""
        return self.detail or self.title or self.message


class EntityNotFoundError(NgsiError):
    """Broker answered 404."""


class ConflictError(NgsiError):
    """Broker answered 409 (entity already exists)."""


class BrokerUnavailableError(NgsiError):
    """Timeout, DNS failure, refused connection."""


def error_from_response(response: httpx.Response) -> NgsiError:
    problem: dict[str, Any] = {}
    body: Any = None
    try:
        body = response.json()
        if isinstance(body, dict):
            problem = body
    except ValueError:
        body = response.text or None

    title = problem.get("title")
    message = title or f"HTTP {response.status_code}: {response.reason_phrase}"

    if response.status_code == 404:
        cls: type[NgsiError] = EntityNotFoundError
    elif response.status_code == 409:
        cls = ConflictError
    else:
        cls = NgsiError

    return cls(
        message,
        response.status_code,
        type=problem.get("type"),
        title=title,
        detail=problem.get("detail"),
        body=body,
    )


@dataclass(frozen=True)
class BrokerConfig:
    """Where and as whom to talk to a broker.

    ``service`` / ``service_path`` select the tenant scope; blank values are
    not sent. With ``tenant_header`` the service is also sent as
    ``NGSILD-Tenant``.
    """

    broker_url: str
    service: str | None = None
    service_path: str | None = None
    auth_token: str | None = None
    timeout: float = field(default_factory=lambda: settings.broker_timeout)
    tenant_header: bool = False


class BrokerTransport:
    """Issues authenticated, tenant-scoped requests against one broker."""

    def __init__(
        self,
        config: BrokerConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._base = config.broker_url.rstrip("/")
        self._transport = transport

    @property
    def config(self) -> BrokerConfig:
        return self._config

    def base_headers(self) -> dict[str, str]:
        headers: dict[str, str] = {}

        service = (self._config.service or "").strip()
        if service:
            headers["Fiware-Service"] = service
            if self._config.tenant_header:
                headers["NGSILD-Tenant"] = service

        service_path = (self._config.service_path or "").strip()
        if service_path:
            headers["Fiware-ServicePath"] = service_path

        if self._config.auth_token:
            headers["X-Auth-Token"] = self._config.auth_token

        return headers

    async def request(
        self,
        method: str,
        path: str,
        *,
        headers: Mapping[str, str] | None = None,
        params: Mapping[str, Any] | None = None,
        json: Any = None,
    ) -> httpx.Response:
        """Send one request; raise ``NgsiError`` on any non-2xx outcome."""
        merged = {**self.base_headers(), **(headers or {})}

        async with httpx.AsyncClient(
            base_url=self._base,
            timeout=self._config.timeout,
            transport=self._transport,
        ) as client:
            try:
                response = await client.request(
                    method, path, headers=merged, params=params, json=json
                )
            except httpx.TimeoutException as exc:
                logger.warning("Broker timeout %s %s%s", method, self._base, path)
                raise BrokerUnavailableError(
                    f"Broker at {self._base} did not respond in time"
                ) from exc
            except httpx.TransportError as exc:
                logger.warning(
                    "Broker unreachable %s %s%s: %s", method, self._base, path, exc
                )
                raise BrokerUnavailableError(
                    f"Broker at {self._base} is unreachable"
                ) from exc

        if not response.is_success:
            error = error_from_response(response)
            logger.debug(
                "Broker error %s %s%s status=%s reason=%s",
                method,
                self._base,
                path,
                error.status,
                error.reason,
            )
            raise error

        return response
