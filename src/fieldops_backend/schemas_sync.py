from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

MutationType = Literal["create", "update", "delete"]
StoredStatus = Literal["applied", "conflict", "rejected"]
PushStatus = Literal["applied", "conflict", "rejected", "duplicate"]


class SyncSchema(BaseModel):
    # Mobile clients speak camelCase; Python code keeps snake_case.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SyncMutation(SyncSchema):
    mutation_id: str = Field(min_length=1, max_length=64)
    # Optional on the wire; the route already names the entity type.
    entity_type: str | None = None
    type: MutationType
    entity_id: str = Field(min_length=1, max_length=64)
    data: dict[str, Any] | None = None
    client_updated_at: datetime


class PushResult(SyncSchema):
    mutation_id: str
    status: PushStatus
    server_entity: dict[str, Any] | None = None
    reason: str | None = None
    # Set on `duplicate`: the status recorded when the mutation was first processed.
    original_status: StoredStatus | None = None


class SyncPushRequest(SyncSchema):
    mutations: list[SyncMutation]


class SyncPushResponse(SyncSchema):
    results: list[PushResult]
    server_time: datetime


class SyncPullResponse(SyncSchema):
    data: list[dict[str, Any]]
    next_cursor: str | None = None
    has_more: bool
    server_time: datetime
