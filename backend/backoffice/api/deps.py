import uuid
from typing import Annotated

from fastapi import Depends, HTTPException, Request, WebSocket, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.core.security import decode_access_token
from backoffice.db.session import get_db
from backoffice.models.user import User, UserRole
from backoffice.services.bulk import BulkOperationEngine, Operator
from backoffice.services.permissions import get_effective_permissions

security = HTTPBearer()


async def _user_from_token(db: AsyncSession, token: str | None) -> User | None:
    """Resolve a bearer token to its user, or None if it is invalid."""
    if not token:
        return None

    payload = decode_access_token(token)
    if payload is None:
        return None

    try:
        user_id = uuid.UUID(str(payload.get("sub")))
    except ValueError:
        return None

    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_current_user_websocket(
    websocket: WebSocket,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User | None:
    """
    Authenticate WebSocket connection using token from query parameter.

    Returns the authenticated user or None if authentication fails.
    """
    user = await _user_from_token(db, websocket.query_params.get("token"))
    if user is None or not user.is_active:
        return None
    return user


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    user = await _user_from_token(db, credentials.credentials)

    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token",
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User is inactive",
        )

    return user


async def require_admin(
    current_user: Annotated[User, Depends(get_current_user)],
) -> User:
    if current_user.role != UserRole.ADMIN.value:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return current_user


async def get_current_operator(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require_admin)],
) -> Operator:
    """The authenticated admin with their effective permission set."""
    return Operator(
        id=str(current_user.id),
        email=current_user.email,
        permissions=await get_effective_permissions(db, current_user),
    )


def get_bulk_engine(request: Request) -> BulkOperationEngine:
    """The engine created in the application lifespan."""
    return request.app.state.bulk_engine
