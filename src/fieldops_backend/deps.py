from __future__ import annotations

from fastapi import Depends, HTTPException, Path, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from fieldops_backend.adapters.base import EntityAdapter
from fieldops_backend.adapters.registry import get_adapter_for_path
from fieldops_backend.db import get_session
from fieldops_backend.models import User

_bearer = HTTPBearer(auto_error=False)


async def get_current_user(
    request: Request,
    creds: HTTPAuthorizationCredentials | None = Depends(_bearer),
    # Dedicated session for auth so the push engine owns transaction boundaries
    # on its own request-scoped session.
    session: AsyncSession = Depends(get_session, use_cache=False),
) -> User:
    raw_token = creds.credentials if creds is not None else None
    token = raw_token.strip() if raw_token else ""
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="missing token")

    user = (await session.exec(select(User).where(User.api_token == token))).first()
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid token")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="user disabled")
    if user.id is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="user missing id"
        )

    request.state.auth_user_id = int(user.id)
    return user


def get_entity_adapter(entity: str = Path(min_length=1, max_length=32)) -> EntityAdapter:
    adapter = get_adapter_for_path(entity)
    if adapter is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="unknown entity")
    return adapter
