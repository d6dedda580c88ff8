from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Literal, cast

from fieldops_backend.models import as_utc

SyncScope = Literal["all", "recent", "assigned"]

# Token: "c1.<urlsafe-b64 JSON>.<hmac>"; the JSON carries the last-seen
# (updatedAt, id), the owning user, and the scope and anchor of the session.
_CURSOR_VERSION = "c1"
_SCOPES: frozenset[str] = frozenset({"all", "recent", "assigned"})


class InvalidCursorError(ValueError):
    pass


@dataclass(frozen=True)
class SyncCursor:
    user_id: int
    updated_at: datetime
    entity_id: str
    scope: SyncScope
    anchor: datetime


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _b64decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


def _sign(secret: str, message: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).digest()
    return _b64encode(digest)


def encode_cursor(cursor: SyncCursor, *, secret: str) -> str:
    updated_at = as_utc(cursor.updated_at)
    anchor = as_utc(cursor.anchor)
    assert updated_at is not None and anchor is not None
    body = json.dumps(
        {
            "u": int(cursor.user_id),
            "t": updated_at.isoformat(),
            "i": cursor.entity_id,
            "s": cursor.scope,
            "a": anchor.isoformat(),
        },
        separators=(",", ":"),
        sort_keys=True,
    )
    payload = f"{_CURSOR_VERSION}.{_b64encode(body.encode('utf-8'))}"
    return f"{payload}.{_sign(secret, payload)}"


def decode_cursor(token: str, *, secret: str) -> SyncCursor:
    """Verify and parse a cursor token; raises InvalidCursorError."""

    parts = (token or "").strip().split(".")
    if len(parts) != 3:
        raise InvalidCursorError("malformed cursor")

    version, body_b64, sig = parts
    if version != _CURSOR_VERSION:
        raise InvalidCursorError("unsupported cursor version")

    expected = _sign(secret, f"{version}.{body_b64}")
    if not secrets.compare_digest(sig, expected):
        raise InvalidCursorError("bad cursor signature")

    try:
        raw = cast(dict[str, object], json.loads(_b64decode(body_b64).decode("utf-8")))
        scope = str(raw["s"])
        if scope not in _SCOPES:
            raise InvalidCursorError("unknown cursor scope")
        updated_at = as_utc(datetime.fromisoformat(str(raw["t"])))
        anchor = as_utc(datetime.fromisoformat(str(raw["a"])))
        assert updated_at is not None and anchor is not None
        return SyncCursor(
            user_id=int(cast(int, raw["u"])),
            updated_at=updated_at,
            entity_id=str(raw["i"]),
            scope=cast(SyncScope, scope),
            anchor=anchor,
        )
    except InvalidCursorError:
        raise
    except (binascii.Error, UnicodeDecodeError, KeyError, TypeError, ValueError) as exc:
        raise InvalidCursorError("unreadable cursor") from exc
