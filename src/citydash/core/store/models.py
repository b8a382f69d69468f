from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from citydash.contracts.entity import (
    DataModel,
    EntityRecord,
    Source,
    SyncStatus,
)
from citydash.core.db import Base


def new_id() -> str:
    return uuid.uuid4().hex


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SourceRow(Base):
    __tablename__ = "ngsi_sources"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String, nullable=False, index=True)
    broker_url: Mapped[str] = mapped_column(String, nullable=False)
    auth_token: Mapped[str | None] = mapped_column(String, nullable=True)
    proxy_url: Mapped[str | None] = mapped_column(String, nullable=True)
    services: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    service_paths: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    def to_contract(self) -> Source:
        return Source(
            id=self.id,
            name=self.name,
            broker_url=self.broker_url,
            auth_token=self.auth_token,
            services=list(self.services or []),
            service_paths=list(self.service_paths or []),
            proxy_url=self.proxy_url,
        )


class DataModelRow(Base):
    __tablename__ = "ngsi_data_models"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    model: Mapped[str] = mapped_column(String, nullable=False, index=True)
    context_url: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    def to_contract(self) -> DataModel:
        return DataModel(id=self.id, model=self.model, context_url=self.context_url)


class EntityRow(Base):
    __tablename__ = "ngsi_entities"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    # The broker namespace is global: one local record per URN, whatever the source
    entity_id: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    short_id: Mapped[str | None] = mapped_column(String, nullable=True)
    type: Mapped[str] = mapped_column(String, nullable=False)
    source_id: Mapped[str] = mapped_column(
        ForeignKey(SourceRow.id), nullable=False, index=True
    )
    data_model_id: Mapped[str | None] = mapped_column(
        ForeignKey(DataModelRow.id), nullable=True
    )
    service: Mapped[str] = mapped_column(String, nullable=False, default="")
    service_path: Mapped[str] = mapped_column(String, nullable=False, default="/")
    attributes: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    sync_status: Mapped[str] = mapped_column(
        String, nullable=False, default=SyncStatus.PENDING.value
    )  # synced|pending|error
    last_sync_time: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_sync_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    def to_contract(self) -> EntityRecord:
        return EntityRecord(
            id=self.id,
            entity_id=self.entity_id,
            short_id=self.short_id,
            type=self.type,
            source_id=self.source_id,
            data_model_id=self.data_model_id,
            service=self.service,
            service_path=self.service_path,
            attributes=dict(self.attributes or {}),
            sync_status=SyncStatus(self.sync_status),
            last_sync_time=self.last_sync_time,
            last_sync_error=self.last_sync_error,
        )
