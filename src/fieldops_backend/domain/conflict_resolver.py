from __future__ import annotations

from datetime import datetime
from typing import Literal

from fieldops_backend.models import as_utc

Decision = Literal["applied", "conflict"]


def resolve(server_updated_at: datetime | None, client_updated_at: datetime) -> Decision:
    """Pure last-write-wins decision.

    - No DB/network/time.
    - Server wins ties: the client must have seen a strictly newer state than
      the server holds for its write to apply.
    - `server_updated_at=None` means the entity does not exist yet.
    """

    if server_updated_at is None:
        return "applied"

    server = as_utc(server_updated_at)
    client = as_utc(client_updated_at)
    assert server is not None and client is not None
    if server >= client:
        return "conflict"
    return "applied"
