"""API Routes for GitHub login and sessions"""
import logging
import secrets
from typing import Optional

import httpx
from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse

import config
from dependencies import (
    SESSION_COOKIE,
    OptionalUserDep,
    SessionsCollectionDep,
    UsersCollectionDep,
)
from services import auth_service
from utils import github_oauth

router = APIRouter(prefix="/auth")
logger = logging.getLogger(__name__)

STATE_COOKIE = "oauth_state"
STATE_MAX_AGE = 10 * 60


@router.get("/login", summary="Start GitHub Login", description="Redirects the browser to GitHub's OAuth consent page.")
async def login(request: Request):
    state = secrets.token_urlsafe(16)
    redirect_uri = str(request.url_for("auth_callback"))
    logger.info(f"GET /auth/login called. Redirect URI: {redirect_uri}")
    response = RedirectResponse(github_oauth.build_authorize_url(redirect_uri, state), status_code=302)
    response.set_cookie(
        STATE_COOKIE,
        state,
        max_age=STATE_MAX_AGE,
        path="/",
        httponly=True,
        samesite="lax",
        secure=request.url.scheme == "https",
    )
    return response


@router.get("/callback", name="auth_callback", summary="GitHub OAuth Callback", description="Exchanges the OAuth code, signs the user in and sets the session cookie.")
async def callback(
    request: Request,
    users: UsersCollectionDep,
    sessions: SessionsCollectionDep,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
):
    if not code:
        raise HTTPException(status_code=400, detail="No code provided")
    expected_state = request.cookies.get(STATE_COOKIE)
    if not state or not expected_state or not secrets.compare_digest(state, expected_state):
        logger.warning("OAuth callback rejected: state mismatch.")
        raise HTTPException(status_code=400, detail="Invalid OAuth state")

    try:
        profile = await github_oauth.authenticate(code)
    except github_oauth.GitHubOAuthError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except httpx.HTTPError as e:
        logger.error(f"GitHub request failed during login: {e}")
        raise HTTPException(status_code=502, detail="GitHub is not reachable.")

    try:
        user = await auth_service.upsert_github_user(users, profile)
        session = await auth_service.create_session(sessions, user.id, config.SESSION_TTL_DAYS)
    except ConnectionError as ce:
        logger.error(f"ConnectionError during login: {ce}")
        raise HTTPException(status_code=503, detail=str(ce))

    response = RedirectResponse(config.POST_LOGIN_REDIRECT, status_code=302)
    response.set_cookie(
        SESSION_COOKIE,
        session.id,
        max_age=config.SESSION_TTL_DAYS * 24 * 60 * 60,
        path="/",
        httponly=True,
        samesite="lax",
        secure=request.url.scheme == "https",
    )
    response.delete_cookie(STATE_COOKIE, path="/")
    return response


@router.get("/me", summary="Current User", description="Returns the signed-in user, or null.")
async def me(user: OptionalUserDep):
    return {"user": user.model_dump(mode="json", by_alias=True) if user else None}


@router.post("/logout", summary="Log Out", description="Deletes the session and clears its cookie.")
async def logout(request: Request, sessions: SessionsCollectionDep):
    session_id = request.cookies.get(SESSION_COOKIE)
    if session_id:
        deleted = await auth_service.delete_session(sessions, session_id)
        logger.info(f"POST /auth/logout: removed {deleted} session(s).")
    response = JSONResponse({"success": True})
    response.delete_cookie(SESSION_COOKIE, path="/")
    return response
