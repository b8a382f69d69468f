# citydash/api/schemas.py
"""
Request and response bodies.

JSON keys are camelCase (``sourceId``, ``alreadySynced``) to stay
compatible with the dashboard frontend; Python attributes are snake_case.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from citydash.contracts.entity import EntityRecord, Source


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# -- sources -------------------------------------------------------------------


class SourceCreateRequest(CamelModel):
    name: str
    broker_url: str
    auth_token: str | None = None
    services: list[str] = Field(default_factory=list)
    service_paths: list[str] = Field(default_factory=list)
    proxy_url: str | None = None


class SourceResponse(CamelModel):
    id: str
    name: str
    broker_url: str
    services: list[str]
    service_paths: list[str]
    proxy_url: str | None = None
    # The token itself is never echoed back
    has_auth_token: bool = False

    @classmethod
    def from_contract(cls, source: Source) -> "SourceResponse":
        return cls(
            id=source.id,
            name=source.name,
            broker_url=source.broker_url,
            services=list(source.services),
            service_paths=list(source.service_paths),
            proxy_url=source.proxy_url,
            has_auth_token=bool(source.auth_token),
        )


class DiscoverRequest(CamelModel):
    source_id: str | None = None


class DiscoveredEntitySchema(CamelModel):
    id: str
    type: str
    service: str
    service_path: str
    already_synced: bool


class DiscoverResponse(CamelModel):
    entities: list[DiscoveredEntitySchema]
    total: int
    already_synced: int
    errors: list[str] | None = None


class ImportEntitySchema(CamelModel):
    entity_id: str
    type: str
    service: str | None = None
    service_path: str | None = None
    attributes: dict[str, Any] = Field(default_factory=dict)


class ImportRequest(CamelModel):
    source_id: str | None = None
    entities: list[ImportEntitySchema] = Field(default_factory=list)


class ImportFailureSchema(CamelModel):
    id: str
    error: str


class ImportResponse(CamelModel):
    message: str
    success: list[str]
    failed: list[ImportFailureSchema]


class FetchDetailsRequest(CamelModel):
    source_id: str | None = None
    entity_id: str | None = None
    service: str | None = None
    service_path: str | None = None


class EntityDetailsResponse(CamelModel):
    id: str
    type: str
    attributes: dict[str, Any]


# -- entities ------------------------------------------------------------------


class EntityCreateRequest(CamelModel):
    entity_id: str
    type: str
    source_id: str
    data_model_id: str | None = None
    service: str = ""
    service_path: str = "/"
    attributes: dict[str, Any] = Field(default_factory=dict)


class EntityUpdateRequest(CamelModel):
    type: str | None = None
    data_model_id: str | None = None
    service: str | None = None
    service_path: str | None = None
    attributes: dict[str, Any] | None = None


class EntityResponse(CamelModel):
    id: str
    entity_id: str
    short_id: str | None = None
    type: str
    source_id: str
    data_model_id: str | None = None
    service: str
    service_path: str
    attributes: dict[str, Any]
    sync_status: str
    last_sync_time: datetime | None = None
    last_sync_error: str | None = None

    @classmethod
    def from_contract(cls, record: EntityRecord) -> "EntityResponse":
        return cls(
            id=record.id or "",
            entity_id=record.entity_id,
            short_id=record.short_id,
            type=record.type,
            source_id=record.source_id,
            data_model_id=record.data_model_id,
            service=record.service,
            service_path=record.service_path,
            attributes=record.attributes,
            sync_status=record.sync_status.value,
            last_sync_time=record.last_sync_time,
            last_sync_error=record.last_sync_error,
        )


class MessageResponse(CamelModel):
    message: str


class ResyncResponse(CamelModel):
    message: str
    outcome: str
    multi_status: Any = None


class UpdateAttrsRequest(CamelModel):
    attributes: dict[str, Any] = Field(default_factory=dict)


class UpdateAttrsResponse(CamelModel):
    message: str
    status: int
    multi_status: Any = None


class RenderRequest(CamelModel):
    template: str
    attribute_selection: Literal["all", "include", "exclude"] = "all"
    selected_attributes: list[str] = Field(default_factory=list)


class AttributeRowSchema(CamelModel):
    name: str
    label: str
    value: Any = None
    metadata: dict[str, Any] | None = None


class RenderResponse(CamelModel):
    text: str
    paths: list[str]
    attributes: list[AttributeRowSchema] = Field(default_factory=list)
