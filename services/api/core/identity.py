# services/api/core/identity.py
"""
Session identity for the active user.

Authentication itself happens upstream (the frontend's auth provider or a
gateway); by the time a request reaches us the caller's identity arrives as
headers. We only read it, never manage the login lifecycle.
"""
from __future__ import annotations

import urllib.parse
from dataclasses import dataclass, replace
from typing import Annotated, Any, Dict, Optional

from fastapi import Header, HTTPException, status

ANONYMOUS_NAME = "Anonymous"


@dataclass(frozen=True)
class SessionIdentity:
    user_id: str
    display_name: Optional[str] = None
    email: Optional[str] = None
    photo_url: Optional[str] = None

    def public_name(self) -> str:
        """Name shown on public memos: display name, else e-mail local part, else Anonymous."""
        if self.display_name and self.display_name.strip():
            return self.display_name.strip()
        if self.email and "@" in self.email:
            local = self.email.split("@")[0].strip()
            if local:
                return local
        return ANONYMOUS_NAME

    def with_profile(self, profile: Optional[Dict[str, Any]]) -> "SessionIdentity":
        """Profile settings override what the auth provider reports."""
        if not profile:
            return self
        name = (profile.get("display_name") or "").strip()
        photo = (profile.get("photo_url") or "").strip()
        return replace(
            self,
            display_name=name or self.display_name,
            photo_url=photo or self.photo_url,
        )


def get_identity(
    x_user_id: Annotated[Optional[str], Header()] = None,
    x_user_name: Annotated[Optional[str], Header()] = None,
    x_user_email: Annotated[Optional[str], Header()] = None,
    x_user_photo: Annotated[Optional[str], Header()] = None,
) -> SessionIdentity:
    """FastAPI dependency: build the identity from request headers or raise 401."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    return SessionIdentity(
        user_id=x_user_id.strip(),
        # display names may be percent-encoded (non-ASCII in headers)
        display_name=urllib.parse.unquote(x_user_name or "").strip() or None,
        email=(x_user_email or "").strip() or None,
        photo_url=(x_user_photo or "").strip() or None,
    )


def resolve_public_identity(storage, identity: SessionIdentity) -> SessionIdentity:
    """Apply the stored profile (if any) so public posts carry the chosen display name."""
    return identity.with_profile(storage.get_user_profile(identity.user_id))
