"""FastAPI dependency injection helpers."""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from carpool.domain.enums import UserRole
from carpool.infrastructure.changefeed import publish_pending_changes
from carpool.infrastructure.database import async_session_factory
from carpool.infrastructure.store import discard_pending_changes


async def get_db() -> AsyncSession:  # type: ignore[misc]
    """Yield an async DB session; commit on success, rollback on error.

    Change events recorded during the request are published only once the
    commit has succeeded.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            discard_pending_changes(session)
            raise
        await publish_pending_changes(session)


@dataclass(frozen=True)
class Actor:
    """The authenticated caller, as asserted by the upstream gateway."""

    user_id: str
    role: UserRole


async def get_actor(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> Actor:
    if not x_user_id or not x_user_role:
        raise HTTPException(status_code=401, detail="Missing user identity")
    try:
        role = UserRole(x_user_role.lower())
    except ValueError:
        raise HTTPException(status_code=401, detail="Unknown user role") from None
    return Actor(user_id=x_user_id, role=role)


async def get_driver(actor: Actor = Depends(get_actor)) -> Actor:
    if actor.role != UserRole.DRIVER:
        raise HTTPException(status_code=403, detail="Only drivers can do this")
    return actor
