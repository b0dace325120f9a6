"""FastAPI dependencies shared by the routers: collections, current user and rate limiter."""
import logging
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Request
from motor.motor_asyncio import AsyncIOMotorCollection
from slowapi import Limiter
from slowapi.util import get_remote_address

from models.user import User
from services import auth_service

logger = logging.getLogger(__name__)

SESSION_COOKIE = "session_id"

# In-memory storage; limits are per process
limiter = Limiter(key_func=get_remote_address)


def _get_collection(request: Request, name: str) -> AsyncIOMotorCollection:
    collection = getattr(request.state, name, None)
    if collection is None:
        logger.error(f"Collection '{name}' not found in application state. Check MongoDB connection.")
        raise HTTPException(status_code=503, detail="Database service not available.")
    return collection


def get_users_collection(request: Request) -> AsyncIOMotorCollection:
    return _get_collection(request, "users_collection")


def get_sessions_collection(request: Request) -> AsyncIOMotorCollection:
    return _get_collection(request, "sessions_collection")


def get_transactions_collection(request: Request) -> AsyncIOMotorCollection:
    return _get_collection(request, "transactions_collection")


UsersCollectionDep = Annotated[AsyncIOMotorCollection, Depends(get_users_collection)]
SessionsCollectionDep = Annotated[AsyncIOMotorCollection, Depends(get_sessions_collection)]
TransactionsCollectionDep = Annotated[AsyncIOMotorCollection, Depends(get_transactions_collection)]


async def get_optional_user(
    request: Request,
    users: UsersCollectionDep,
    sessions: SessionsCollectionDep,
) -> Optional[User]:
    """The logged-in user, or None for anonymous and expired sessions."""
    session_id = request.cookies.get(SESSION_COOKIE)
    if not session_id:
        return None
    try:
        return await auth_service.get_user_for_session(sessions, users, session_id)
    except Exception as e:
        logger.error(f"Database error resolving session: {e}")
        raise HTTPException(status_code=503, detail="Database service not available.")


async def get_current_user(user: Annotated[Optional[User], Depends(get_optional_user)]) -> User:
    if user is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user


OptionalUserDep = Annotated[Optional[User], Depends(get_optional_user)]
CurrentUserDep = Annotated[User, Depends(get_current_user)]
