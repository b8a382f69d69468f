# citydash/api/entities.py
"""
Local entity records and their interactive broker actions.

Creating or updating a record goes through the store, whose listener
pushes the change to the broker and records the sync state; the response
carries that state.
"""
from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, Query

from citydash.api.dependencies import get_reconciler, get_store
from citydash.api.errors import http_error
from citydash.api.schemas import (
    AttributeRowSchema,
    EntityCreateRequest,
    EntityResponse,
    EntityUpdateRequest,
    MessageResponse,
    RenderRequest,
    RenderResponse,
    ResyncResponse,
    UpdateAttrsRequest,
    UpdateAttrsResponse,
)
from citydash.contracts.entity import EntityRecord, normalize_type, short_entity_id
from citydash.contracts.store import EntityStore
from citydash.core.errors import EntityRecordNotFoundError, SourceNotFoundError
from citydash.core.ngsi.attributes import (
    extract_attribute_paths,
    filter_attributes,
    format_attribute_name,
    get_attribute_metadata,
)
from citydash.core.ngsi.operations import AttrsUpdateResult
from citydash.core.ngsi.template import build_template_context, render_template
from citydash.core.sync import SyncReconciler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/ngsi-entities", tags=["ngsi-entities"])


async def _require_record(store: EntityStore, record_id: str) -> EntityRecord:
    record = await store.get_entity(record_id)
    if record is None:
        raise EntityRecordNotFoundError(record_id)
    return record


@router.post(
    "",
    response_model=EntityResponse,
    status_code=201,
    operation_id="create_entity",
)
async def create_entity(
    body: EntityCreateRequest,
    store: EntityStore = Depends(get_store),
) -> EntityResponse:
    try:
        if await store.get_source(body.source_id) is None:
            raise SourceNotFoundError(body.source_id)
        created = await store.create_entity(
            EntityRecord(
                entity_id=body.entity_id,
                short_id=short_entity_id(body.entity_id),
                type=normalize_type(body.type),
                source_id=body.source_id,
                data_model_id=body.data_model_id,
                service=body.service,
                service_path=body.service_path or "/",
                attributes=body.attributes,
            )
        )
        # Re-read: the post-save sync has written the outcome by now
        record = await _require_record(store, created.id or "")
    except Exception as exc:
        raise http_error(exc) from exc
    return EntityResponse.from_contract(record)


@router.get("/{record_id}", response_model=EntityResponse, operation_id="get_entity")
async def get_entity(
    record_id: str,
    store: EntityStore = Depends(get_store),
) -> EntityResponse:
    try:
        record = await _require_record(store, record_id)
    except Exception as exc:
        raise http_error(exc) from exc
    return EntityResponse.from_contract(record)


@router.patch(
    "/{record_id}", response_model=EntityResponse, operation_id="update_entity"
)
async def update_entity(
    record_id: str,
    body: EntityUpdateRequest,
    store: EntityStore = Depends(get_store),
) -> EntityResponse:
    changes: dict[str, Any] = body.model_dump(exclude_unset=True, exclude_none=True)
    if changes.get("type"):
        changes["type"] = normalize_type(changes["type"])
    try:
        await store.update_entity(record_id, changes)
        record = await _require_record(store, record_id)
    except Exception as exc:
        raise http_error(exc) from exc
    return EntityResponse.from_contract(record)


@router.delete(
    "/{record_id}", response_model=MessageResponse, operation_id="delete_entity"
)
async def delete_entity(
    record_id: str,
    store: EntityStore = Depends(get_store),
) -> MessageResponse:
    try:
        deleted = await store.delete_entity(record_id)
        if deleted is None:
            raise EntityRecordNotFoundError(record_id)
    except Exception as exc:
        raise http_error(exc) from exc
    return MessageResponse(message="Entity deleted")


@router.get("/{record_id}/fetch", operation_id="fetch_entity")
async def fetch_entity(
    record_id: str,
    embed_context: bool = Query(default=False, alias="embedContext"),
    reconciler: SyncReconciler = Depends(get_reconciler),
) -> dict[str, Any]:
    """Current state of the entity as the broker holds it."""
    try:
        return await reconciler.fetch_live(record_id, embed_context=embed_context)
    except Exception as exc:
        raise http_error(exc) from exc


@router.post(
    "/{record_id}/resync",
    response_model=ResyncResponse,
    response_model_exclude_none=True,
    operation_id="resync_entity",
)
async def resync_entity(
    record_id: str,
    reconciler: SyncReconciler = Depends(get_reconciler),
) -> ResyncResponse:
    try:
        report = await reconciler.resync(record_id)
    except Exception as exc:
        raise http_error(exc) from exc
    message = (
        "Entity partially synced to Context Broker"
        if report.partial
        else "Entity synced to Context Broker"
    )
    return ResyncResponse(
        message=message,
        outcome=report.outcome.value,
        multi_status=report.multi_status,
    )


def _attrs_response(result: AttrsUpdateResult) -> UpdateAttrsResponse:
    message = (
        "Attributes partially updated" if result.partial else "Attributes updated"
    )
    return UpdateAttrsResponse(
        message=message, status=result.status, multi_status=result.multi_status
    )


@router.post(
    "/{record_id}/update-attrs",
    response_model=UpdateAttrsResponse,
    response_model_exclude_none=True,
    operation_id="update_entity_attrs",
)
async def update_entity_attrs(
    record_id: str,
    body: UpdateAttrsRequest,
    reconciler: SyncReconciler = Depends(get_reconciler),
) -> UpdateAttrsResponse:
    try:
        result = await reconciler.update_attributes(record_id, body.attributes)
    except Exception as exc:
        raise http_error(exc) from exc
    return _attrs_response(result)


@router.post(
    "/{record_id}/append-attrs",
    response_model=UpdateAttrsResponse,
    response_model_exclude_none=True,
    operation_id="append_entity_attrs",
)
async def append_entity_attrs(
    record_id: str,
    body: UpdateAttrsRequest,
    reconciler: SyncReconciler = Depends(get_reconciler),
) -> UpdateAttrsResponse:
    try:
        result = await reconciler.append_attributes(record_id, body.attributes)
    except Exception as exc:
        raise http_error(exc) from exc
    return _attrs_response(result)


@router.delete(
    "/{record_id}/attrs/{attr_name}",
    response_model=MessageResponse,
    operation_id="delete_entity_attr",
)
async def delete_entity_attr(
    record_id: str,
    attr_name: str,
    reconciler: SyncReconciler = Depends(get_reconciler),
) -> MessageResponse:
    try:
        await reconciler.delete_attribute(record_id, attr_name)
    except Exception as exc:
        raise http_error(exc) from exc
    return MessageResponse(message="Attribute deleted")


@router.post(
    "/{record_id}/render", response_model=RenderResponse, operation_id="render_entity"
)
async def render_entity(
    record_id: str,
    body: RenderRequest,
    store: EntityStore = Depends(get_store),
) -> RenderResponse:
    """Render a card or popup template against the stored attributes.

    ``attributeSelection`` and ``selectedAttributes`` narrow the attribute
    rows returned for the card body; the template itself always sees every
    attribute.
    """
    try:
        record = await _require_record(store, record_id)
    except Exception as exc:
        raise http_error(exc) from exc

    entity = {"id": record.entity_id, "type": record.type, **record.attributes}
    context = build_template_context(entity)
    shown = filter_attributes(
        entity, body.attribute_selection, body.selected_attributes
    )
    return RenderResponse(
        text=render_template(body.template, context),
        paths=extract_attribute_paths(context["data"]),
        attributes=[
            AttributeRowSchema(
                name=name,
                label=format_attribute_name(name),
                value=value,
                metadata=get_attribute_metadata(entity[name]),
            )
            for name, value in shown.items()
        ],
    )
