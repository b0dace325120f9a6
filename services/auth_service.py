"""Service layer for users and cookie-backed login sessions."""
import logging
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorCollection

from models.user import GitHubProfile, Session, User

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    # MongoDB hands back naive UTC datetimes, so everything is compared naive
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _user_from_document(doc) -> User:
    doc['id'] = str(doc.pop('_id'))
    return User(**doc)


async def upsert_github_user(users: AsyncIOMotorCollection, profile: GitHubProfile) -> User:
    """
    Returns the user linked to a GitHub account, creating it on first login.
    Profile fields are refreshed on every login; id and creation time never change.
    """
    profile_fields = {
        "username": profile.login,
        "name": profile.name or profile.login,
        "avatar_url": profile.avatar_url,
    }
    try:
        doc = await users.find_one({"github_id": profile.github_id})
        if doc:
            await users.update_one({"_id": doc["_id"]}, {"$set": profile_fields})
            doc.update(profile_fields)
        else:
            doc = {
                "_id": str(uuid.uuid4()),
                "github_id": profile.github_id,
                "created_at": utcnow(),
                **profile_fields,
            }
            await users.insert_one(doc)
            logger.info(f"Created user {doc['_id']} for GitHub account '{profile.login}'.")
    except Exception as e:
        logger.error(f"Database error saving GitHub user {profile.login}: {e}")
        raise ConnectionError(f"Database error saving user: {e}")
    logger.info(f"GitHub user '{profile.login}' signed in as {doc['_id']}.")
    return _user_from_document(doc)


async def get_user(users: AsyncIOMotorCollection, user_id: str) -> Optional[User]:
    doc = await users.find_one({"_id": user_id})
    return _user_from_document(doc) if doc else None


async def create_session(sessions: AsyncIOMotorCollection, user_id: str, ttl_days: int) -> Session:
    session = Session(
        id=secrets.token_urlsafe(32),
        user_id=user_id,
        expires_at=utcnow() + timedelta(days=ttl_days),
    )
    try:
        await sessions.insert_one({"_id": session.id, "user_id": session.user_id, "expires_at": session.expires_at})
    except Exception as e:
        logger.error(f"Database error creating session for user {user_id}: {e}")
        raise ConnectionError(f"Database error creating session: {e}")
    return session


async def get_user_for_session(
    sessions: AsyncIOMotorCollection,
    users: AsyncIOMotorCollection,
    session_id: str,
) -> Optional[User]:
    """
    Resolves a session cookie to its user.
    Expired sessions and sessions of vanished users are deleted on sight.
    """
    doc = await sessions.find_one({"_id": session_id})
    if not doc:
        return None
    if doc["expires_at"] <= utcnow():
        logger.info(f"Session for user {doc['user_id']} expired at {doc['expires_at']}, removing it.")
        await sessions.delete_one({"_id": session_id})
        return None
    user = await get_user(users, doc["user_id"])
    if user is None:
        logger.warning(f"Session references missing user {doc['user_id']}, removing it.")
        await sessions.delete_one({"_id": session_id})
    return user


async def delete_session(sessions: AsyncIOMotorCollection, session_id: str) -> int:
    result = await sessions.delete_one({"_id": session_id})
    return result.deleted_count
