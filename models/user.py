"""Pydantic models for users and login sessions"""
from datetime import datetime
from typing import Optional

from models.base import CamelModel


class User(CamelModel):
    id: str
    github_id: str
    username: str
    name: Optional[str] = None
    avatar_url: Optional[str] = None
    created_at: datetime


class Session(CamelModel):
    id: str
    user_id: str
    expires_at: datetime


class GitHubProfile(CamelModel):
    """The subset of https://api.github.com/user we keep."""
    github_id: str
    login: str
    name: Optional[str] = None
    avatar_url: Optional[str] = None
