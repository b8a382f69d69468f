# citydash/core/ngsi/operations.py
"""
NGSI-LD entity operations.

The broker's response representation depends on a mutually exclusive
header pair:

* compacted: ``Accept: application/json`` plus a ``Link`` header pointing
  at the JSON-LD context; short names, no ``@context`` in the body.
* embedded: ``Accept: application/ld+json`` and **no** ``Link`` header;
  the body carries ``@context``.

Writes always go out compacted (``Content-Type: application/json`` + Link).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Sequence
from urllib.parse import quote

import httpx

from citydash.core.ngsi.transport import (
    ENTITIES_PATH,
    NGSI_LD_CORE_CONTEXT,
    BrokerConfig,
    BrokerTransport,
    EntityNotFoundError,
    NgsiError,
    build_link_header,
)

logger = logging.getLogger(__name__)

MEDIA_JSON = "application/json"
MEDIA_JSON_LD = "application/ld+json"


class UpsertOutcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"


@dataclass(frozen=True)
class AttrsUpdateResult:
    """Outcome of an attribute PATCH/POST.

    A 207 means the broker applied only part of the request; its body is
    kept in ``multi_status`` for the caller to inspect.
    """

    status: int
    multi_status: Any = None

    @property
    def partial(self) -> bool:
        return self.status == 207


@dataclass(frozen=True)
class UpsertResult:
    """What an upsert did; ``attrs`` is set on the update branch."""

    outcome: UpsertOutcome
    attrs: AttrsUpdateResult | None = None

    @property
    def partial(self) -> bool:
        return self.attrs is not None and self.attrs.partial

    @property
    def multi_status(self) -> Any:
        return self.attrs.multi_status if self.attrs else None


def entity_path(entity_id: str) -> str:
    return f"{ENTITIES_PATH}/{quote(entity_id, safe='')}"


class NgsiLdOperations:
    """Entity CRUD against one broker and tenant scope."""

    def __init__(
        self,
        config: BrokerConfig,
        context_url: str | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._http = BrokerTransport(config, transport=transport)
        self._context_url = context_url or NGSI_LD_CORE_CONTEXT

    @property
    def context_url(self) -> str:
        return self._context_url

    def compacted_headers(self) -> dict[str, str]:
        return {"Accept": MEDIA_JSON, "Link": build_link_header(self._context_url)}

    def embedded_headers(self) -> dict[str, str]:
        # A Link header alongside application/ld+json violates NGSI-LD
        return {"Accept": MEDIA_JSON_LD}

    def write_headers(self) -> dict[str, str]:
        return {
            "Content-Type": MEDIA_JSON,
            "Link": build_link_header(self._context_url),
        }

    async def create_entity(self, entity: Mapping[str, Any]) -> None:
        """POST a new entity. A 409 raises ``ConflictError``."""
        await self._http.request(
            "POST", ENTITIES_PATH, headers=self.write_headers(), json=dict(entity)
        )
        logger.info("Created entity %s", entity.get("id"))

    async def get_entity(
        self,
        entity_id: str,
        *,
        embed_context: bool = False,
        attrs: Sequence[str] | None = None,
    ) -> dict[str, Any]:
        headers = self.embedded_headers() if embed_context else self.compacted_headers()
        params = {"attrs": ",".join(attrs)} if attrs else None
        response = await self._http.request(
            "GET", entity_path(entity_id), headers=headers, params=params
        )
        return response.json()

    async def update_entity_attrs(
        self, entity_id: str, attrs: Mapping[str, Any]
    ) -> AttrsUpdateResult:
        response = await self._http.request(
            "PATCH",
            f"{entity_path(entity_id)}/attrs",
            headers=self.write_headers(),
            json=dict(attrs),
        )
        return _attrs_result(entity_id, response)

    async def append_entity_attrs(
        self, entity_id: str, attrs: Mapping[str, Any]
    ) -> AttrsUpdateResult:
        """POST new attributes; existing ones are left as they are."""
        response = await self._http.request(
            "POST",
            f"{entity_path(entity_id)}/attrs",
            headers=self.write_headers(),
            json=dict(attrs),
        )
        return _attrs_result(entity_id, response)

    async def delete_entity_attr(self, entity_id: str, attr_name: str) -> None:
        await self._http.request(
            "DELETE",
            f"{entity_path(entity_id)}/attrs/{quote(attr_name, safe='')}",
            headers={"Link": build_link_header(self._context_url)},
        )

    async def delete_entity(self, entity_id: str) -> bool:
        """Delete an entity.

        Returns:
            ``True`` if the broker deleted it, ``False`` if it was already gone.
        """
        try:
            await self._http.request("DELETE", entity_path(entity_id))
        except EntityNotFoundError:
            logger.info("Entity %s already absent from broker", entity_id)
            return False
        logger.info("Deleted entity %s", entity_id)
        return True

    async def entity_exists(self, entity_id: str) -> bool:
        """HEAD probe. 404 means absent; every other failure propagates."""
        try:
            await self._http.request("HEAD", entity_path(entity_id))
        except EntityNotFoundError:
            return False
        return True

    async def upsert_entity(self, entity: Mapping[str, Any]) -> UpsertResult:
        """Create the entity if absent, else PATCH its attributes.

        Not atomic: another writer may create the entity between the probe
        and the write, in which case the create raises ``ConflictError``.
        A 207 on the update branch is returned in ``UpsertResult.attrs``.
        """
        entity_id = entity["id"]
        if await self.entity_exists(entity_id):
            attrs = {k: v for k, v in entity.items() if k not in ("id", "type")}
            result = await self.update_entity_attrs(entity_id, attrs)
            if result.partial:
                logger.warning(
                    "Partial update of %s: %s", entity_id, result.multi_status
                )
            return UpsertResult(UpsertOutcome.UPDATED, result)

        await self.create_entity(entity)
        return UpsertResult(UpsertOutcome.CREATED)

    async def query_entities(
        self,
        *,
        type: str | None = None,
        ids: Sequence[str] | None = None,
        q: str | None = None,
        attrs: Sequence[str] | None = None,
        limit: int | None = None,
        offset: int | None = None,
        options: str | None = None,
        local: bool | None = None,
        use_context: bool = True,
    ) -> list[dict[str, Any]]:
        """GET the entities collection.

        ``ids`` filters the broker's answer locally. Without ``use_context``
        only ``Accept: application/json`` is sent, which keeps brokers from
        expanding short type names stored without a context.
        """
        params: dict[str, Any] = {}
        if type:
            params["type"] = type
        if q:
            params["q"] = q
        if attrs:
            params["attrs"] = ",".join(attrs)
        if limit:
            params["limit"] = limit
        if offset:
            params["offset"] = offset
        if options:
            params["options"] = options
        if local is not None:
            params["local"] = "true" if local else "false"

        headers = self.compacted_headers() if use_context else {"Accept": MEDIA_JSON}
        response = await self._http.request(
            "GET", ENTITIES_PATH, headers=headers, params=params
        )
        try:
            data = response.json() if response.content else []
        except ValueError:
            data = None
        if not isinstance(data, list):
            raise NgsiError(
                "Broker returned an invalid entity collection",
                502,
                title="Invalid response",
                detail="Expected a JSON array of entities",
                body=response.text,
            )
        if ids:
            wanted = set(ids)
            data = [e for e in data if isinstance(e, Mapping) and e.get("id") in wanted]
        return data


def _attrs_result(entity_id: str, response: httpx.Response) -> AttrsUpdateResult:
    multi_status = None
    if response.status_code == 207:
        try:
            multi_status = response.json()
        except ValueError:
            multi_status = response.text
        logger.info("Broker returned multi-status for %s", entity_id)
    return AttrsUpdateResult(status=response.status_code, multi_status=multi_status)
