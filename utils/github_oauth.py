"""GitHub OAuth web-flow helpers."""
import logging
from typing import Optional
from urllib.parse import urlencode

import httpx

import config
from models.user import GitHubProfile

logger = logging.getLogger(__name__)

AUTHORIZE_URL = "https://github.com/login/oauth/authorize"
TOKEN_URL = "https://github.com/login/oauth/access_token"
USER_URL = "https://api.github.com/user"
TIMEOUT = 10.0


class GitHubOAuthError(Exception):
    """GitHub refused the code, or answered with something unusable."""


def build_authorize_url(redirect_uri: str, state: str) -> str:
    params = {
        "client_id": config.GITHUB_CLIENT_ID or "",
        "redirect_uri": redirect_uri,
        "scope": "read:user",
        "state": state,
    }
    return f"{AUTHORIZE_URL}?{urlencode(params)}"


async def exchange_code(client: httpx.AsyncClient, code: str) -> str:
    """Trades the callback code for an access token."""
    response = await client.post(
        TOKEN_URL,
        json={
            "client_id": config.GITHUB_CLIENT_ID,
            "client_secret": config.GITHUB_CLIENT_SECRET,
            "code": code,
        },
        headers={"Accept": "application/json"},
    )
    response.raise_for_status()
    data = response.json()
    if data.get("error"):
        logger.warning(f"GitHub rejected the OAuth code: {data.get('error')} ({data.get('error_description', '')})")
        raise GitHubOAuthError(data["error"])
    token = data.get("access_token")
    if not token:
        raise GitHubOAuthError("missing access_token")
    return token


async def fetch_profile(client: httpx.AsyncClient, access_token: str) -> GitHubProfile:
    response = await client.get(
        USER_URL,
        headers={
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/vnd.github+json",
            "User-Agent": "ai-ledger",
        },
    )
    response.raise_for_status()
    data = response.json()
    if "id" not in data or "login" not in data:
        raise GitHubOAuthError("unexpected user payload")
    return GitHubProfile(
        github_id=str(data["id"]),
        login=data["login"],
        name=data.get("name"),
        avatar_url=data.get("avatar_url"),
    )


async def authenticate(code: str, client: Optional[httpx.AsyncClient] = None) -> GitHubProfile:
    """
    Runs the code exchange and profile lookup.
    Raises GitHubOAuthError when GitHub refuses the code and httpx.HTTPError on transport/status failures.
    """
    if client is not None:
        token = await exchange_code(client, code)
        return await fetch_profile(client, token)
    async with httpx.AsyncClient(timeout=TIMEOUT) as own_client:
        token = await exchange_code(own_client, code)
        return await fetch_profile(own_client, token)
