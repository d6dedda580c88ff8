from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, ClassVar, Literal, Mapping

from sqlalchemy.sql.elements import ColumnElement
from sqlmodel.ext.asyncio.session import AsyncSession

from fieldops_backend.models import TenantRow, as_utc, utc_now
from fieldops_backend.repositories import sync_repo
from fieldops_backend.sync_utils import isoformat, next_updated_at

EntityType = Literal["Client", "Quote", "WorkOrder", "Invoice", "Item", "Category"]
FieldKind = Literal["str", "bool", "int", "decimal", "datetime"]

_CENTS = Decimal("0.01")
# numeric(12, 2): at most 10 integer digits.
_MONEY_LIMIT = Decimal(10) ** 10


class EntityValidationError(ValueError):
    """Payload cannot be applied; the message becomes the PushResult reason."""


@dataclass(frozen=True)
class SyncField:
    key: str
    attr: str
    kind: FieldKind = "str"
    required: bool = False
    nullable: bool = True
    writable: bool = True
    max_length: int | None = None
    choices: frozenset[str] | None = None


@dataclass(frozen=True)
class ForeignRef:
    key: str
    target: EntityType
    entity_id: str


@dataclass(frozen=True)
class CurrentState:
    exists: bool
    updated_at: datetime | None = None
    owner_id: int | None = None
    deleted: bool = False
    row: TenantRow | None = None


def check_money(value: Decimal, *, key: str) -> Decimal:
    if abs(value) >= _MONEY_LIMIT:
        raise EntityValidationError(f"{key} too large")
    return value


def parse_money(value: object, *, key: str) -> Decimal:
    if isinstance(value, bool) or not isinstance(value, (int, float, str, Decimal)):
        raise EntityValidationError(f"invalid {key}")
    try:
        out = Decimal(str(value))
    except InvalidOperation:
        raise EntityValidationError(f"invalid {key}") from None
    if not out.is_finite():
        raise EntityValidationError(f"invalid {key}")
    # Bound before quantize: quantize itself fails past the context precision.
    check_money(out, key=key)
    return check_money(out.quantize(_CENTS), key=key)


def parse_datetime(value: object, *, key: str) -> datetime:
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        try:
            dt = datetime.fromisoformat(value.strip())
        except ValueError:
            raise EntityValidationError(f"invalid {key}") from None
    else:
        raise EntityValidationError(f"invalid {key}")
    out = as_utc(dt)
    assert out is not None
    return out


def coerce(field: SyncField, value: object) -> object:
    if value is None:
        return None

    if field.kind == "str":
        if not isinstance(value, str):
            raise EntityValidationError(f"invalid {field.key}")
        v = value.strip()
        if field.max_length is not None and len(v) > field.max_length:
            raise EntityValidationError(f"{field.key} too long")
        if field.choices is not None and v not in field.choices:
            raise EntityValidationError(f"invalid {field.key}: {v}")
        return v
    if field.kind == "bool":
        if not isinstance(value, bool):
            raise EntityValidationError(f"invalid {field.key}")
        return value
    if field.kind == "int":
        if isinstance(value, bool) or not isinstance(value, int):
            raise EntityValidationError(f"invalid {field.key}")
        return value
    if field.kind == "decimal":
        return parse_money(value, key=field.key)
    return parse_datetime(value, key=field.key)


def to_jsonable(value: object) -> object:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, datetime):
        return isoformat(value)
    return value


class EntityAdapter:
    """Wire fields, foreign references and derived-column hooks for one entity.

    Pull and push only talk to this interface.
    """

    entity_type: ClassVar[EntityType]
    # URL segment: /{path}/sync
    path: ClassVar[str]
    model: ClassVar[type[TenantRow]]
    fields: ClassVar[tuple[SyncField, ...]] = ()
    # (wire key, referenced entity type)
    foreign_keys: ClassVar[tuple[tuple[str, EntityType], ...]] = ()

    async def get_current(
        self, session: AsyncSession, entity_id: str, *, for_update: bool = False
    ) -> CurrentState:
        """Current server state of `entity_id` regardless of tenant."""
        row = await sync_repo.get_entity(session, self.model, entity_id, for_update=for_update)
        if row is None:
            return CurrentState(exists=False)
        return CurrentState(
            exists=True,
            updated_at=as_utc(row.updated_at),
            owner_id=int(row.user_id),
            deleted=row.deleted_at is not None,
            row=row,
        )

    def foreign_refs(self, data: Mapping[str, object]) -> list[ForeignRef]:
        refs: list[ForeignRef] = []
        for key, target in self.foreign_keys:
            value = data.get(key)
            if value is None:
                continue
            if not isinstance(value, str) or not value.strip():
                raise EntityValidationError(f"invalid {key}")
            refs.append(ForeignRef(key=key, target=target, entity_id=value.strip()))
        return refs

    def clean(self, data: Mapping[str, object], *, creating: bool) -> dict[str, object]:
        """Map wire keys onto model attributes; unknown and read-only keys are ignored."""
        values: dict[str, object] = {}
        for f in self.fields:
            if not f.writable:
                continue
            if f.key not in data:
                if creating and f.required:
                    raise EntityValidationError(f"missing {f.key}")
                continue
            v = coerce(f, data[f.key])
            if v is None or v == "":
                if f.required:
                    raise EntityValidationError(f"missing {f.key}")
                if not f.nullable:
                    continue
            values[f.attr] = v
        return values

    async def prepare(
        self,
        session: AsyncSession,
        *,
        user_id: int,
        row: TenantRow | None,
        values: dict[str, object],
        data: Mapping[str, object],
        creating: bool,
    ) -> None:
        """Entity rules run before `values` are assigned; may edit `values` in place."""

    def finalize(self, row: TenantRow) -> None:
        """Recompute derived columns after assignment."""

    async def create(
        self,
        session: AsyncSession,
        *,
        user_id: int,
        entity_id: str,
        data: Mapping[str, object],
        mutation_id: str,
        existing: TenantRow | None = None,
    ) -> TenantRow:
        """Insert a new row, or revive `existing` (a tombstone with the same id)."""
        values = self.clean(data, creating=True)
        await self.prepare(
            session, user_id=user_id, row=existing, values=values, data=data, creating=True
        )

        now = utc_now()
        if existing is None:
            row = self.model(id=entity_id, user_id=user_id, created_at=now, updated_at=now)
        else:
            row = existing
            row.deleted_at = None
            row.updated_at = next_updated_at(row.updated_at, server_now=now)
        for attr, v in values.items():
            setattr(row, attr, v)
        self.finalize(row)
        row.last_mutation_id = mutation_id

        session.add(row)
        await session.flush()
        return row

    async def update(
        self,
        session: AsyncSession,
        *,
        row: TenantRow,
        data: Mapping[str, object],
        mutation_id: str,
    ) -> TenantRow:
        values = self.clean(data, creating=False)
        await self.prepare(
            session, user_id=int(row.user_id), row=row, values=values, data=data, creating=False
        )

        for attr, v in values.items():
            setattr(row, attr, v)
        self.finalize(row)
        row.updated_at = next_updated_at(row.updated_at)
        row.last_mutation_id = mutation_id

        session.add(row)
        await session.flush()
        return row

    async def soft_delete(
        self, session: AsyncSession, *, row: TenantRow, mutation_id: str
    ) -> TenantRow:
        now = utc_now()
        row.updated_at = next_updated_at(row.updated_at, server_now=now)
        if row.deleted_at is None:
            row.deleted_at = now
        row.last_mutation_id = mutation_id

        session.add(row)
        await session.flush()
        return row

    def assigned_clause(self, *, user_id: int, anchor: datetime) -> ColumnElement[bool] | None:
        """Filter for the `assigned` scope; None means the entity is not assignment-bound."""
        return None

    def serialize_extra(self, row: Any, out: dict[str, object]) -> None:
        pass

    def serialize(self, row: TenantRow) -> dict[str, object]:
        out: dict[str, object] = {"id": row.id, "userId": row.user_id}
        for f in self.fields:
            out[f.key] = to_jsonable(getattr(row, f.attr))
        self.serialize_extra(row, out)
        out["createdAt"] = isoformat(row.created_at)
        out["updatedAt"] = isoformat(row.updated_at)
        out["deletedAt"] = isoformat(row.deleted_at)
        return out
