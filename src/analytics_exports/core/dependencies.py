"""FastAPI dependency injection for database sessions and the requesting owner.

Authentication happens upstream: the gateway forwards the authenticated
owner in the ``X-Owner-Id`` header.
"""

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from analytics_exports.core.database import get_session_factory

OWNER_HEADER = "X-Owner-Id"


async def get_async_session() -> AsyncGenerator[AsyncSession]:
    """Yield an async database session with per-request lifecycle."""
    factory = get_session_factory()
    async with factory() as session:
        yield session


async def get_owner_id(
    x_owner_id: Annotated[str | None, Header(alias=OWNER_HEADER)] = None,
) -> str:
    """Return the owner forwarded by the gateway.

    Raises:
        HTTPException: 401 if the header is missing or blank.
    """
    if x_owner_id is None or not x_owner_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Missing {OWNER_HEADER} header",
        )
    owner_id = x_owner_id.strip()
    if len(owner_id) > 100:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Owner id too long")
    return owner_id
