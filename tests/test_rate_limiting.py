from __future__ import annotations

from collections.abc import Awaitable, Callable

import pytest
from fastapi import HTTPException

from fieldops_backend.rate_limiting import (
    SCOPE_SYNC_PUSH,
    build_user_key,
    enforce_rate_limit,
    window_start_ms,
)


def test_window_start_aligns_to_window():
    assert window_start_ms(now_ms_value=125_500, window_seconds=60) == 120_000
    assert window_start_ms(now_ms_value=120_000, window_seconds=60) == 120_000
    # Degenerate windows fall back to "now".
    assert window_start_ms(now_ms_value=125_500, window_seconds=0) == 125_500


def test_build_user_key():
    assert build_user_key(7) == "user:7"


@pytest.mark.anyio
async def test_rate_limit_disabled_when_limit_not_positive(
    create_user: Callable[..., Awaitable[int]],
):
    user_id = await create_user("u_rl_off")
    for _ in range(5):
        await enforce_rate_limit(
            scope=SCOPE_SYNC_PUSH, key=build_user_key(user_id), limit=0, window_seconds=60
        )


@pytest.mark.anyio
async def test_rate_limit_returns_429_with_retry_after(
    create_user: Callable[..., Awaitable[int]],
):
    user_id = await create_user("u_rl_on")
    key = build_user_key(user_id)

    await enforce_rate_limit(scope=SCOPE_SYNC_PUSH, key=key, limit=1, window_seconds=3600)
    with pytest.raises(HTTPException) as excinfo:
        await enforce_rate_limit(scope=SCOPE_SYNC_PUSH, key=key, limit=1, window_seconds=3600)

    assert excinfo.value.status_code == 429
    headers = excinfo.value.headers or {}
    assert 1 <= int(headers["Retry-After"]) <= 3600

    # Counters are per scope.
    await enforce_rate_limit(scope="other_scope", key=key, limit=1, window_seconds=3600)
