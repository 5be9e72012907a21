"""
auth/models.py -- Domain dataclasses for account and session entities.

Pattern: Data class (pure data container, zero logic). Stores and services do
the work; the API layer maps these to Pydantic response models.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class User:
    """Represents a registered channel owner / viewer.

    refresh_token holds the single live refresh credential for the account
    (single-session-per-account model). Login and rotation overwrite it,
    logout sets it to None, and no other profile mutation touches it. A
    multi-session design would replace this field with a set of refresh
    credentials keyed by session id.

    hashed_password and refresh_token are never serialized to clients.
    """

    username: str
    email: str
    full_name: str
    hashed_password: str
    id: int | None = None
    refresh_token: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(frozen=True)
class TokenPair:
    """An access/refresh credential pair minted together by the issuer."""

    access_token: str
    refresh_token: str
