from __future__ import annotations
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Mapping, Optional

import httpx
from authlib.integrations.base_client import OAuthError
from authlib.integrations.starlette_client import OAuth
from fastapi import Request
from starlette.responses import Response

from .errors import IdentityProviderError

logger = logging.getLogger(__name__)

GOOGLE_DISCOVERY_URL = (
    "https://accounts.google.com/.well-known/openid-configuration"
)
SESSION_KEY = "identity"


def _first_value(items: Any) -> Optional[str]:
    # provider profiles carry lists like [{"value": "a@b.c"}, ...]
    if not items:
        return None
    first = items[0]
    if isinstance(first, Mapping):
        return first.get("value")
    return str(first)


@dataclass(frozen=True)
class Identity:
    id: str
    display_name: str
    email: str = ""
    photo: Optional[str] = None

    @classmethod
    def from_profile(cls, profile: Mapping[str, Any]) -> "Identity":
        """Build an Identity from an OpenID Connect userinfo document or a
        provider profile with ``displayName``/``emails``/``photos`` lists.
        """
        ident = profile.get("sub") or profile.get("id")
        if not ident:
            raise IdentityProviderError("profile has no subject id")
        email = (
            profile.get("email")
            or _first_value(profile.get("emails"))
            or ""
        )
        photo = profile.get("picture") or _first_value(profile.get("photos"))
        name = (
            profile.get("name")
            or profile.get("displayName")
            or email
            or str(ident)
        )
        return cls(id=str(ident), display_name=name, email=email,
                   photo=photo)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "displayName": self.display_name,
            "email": self.email,
            "photo": self.photo,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Identity":
        return cls(
            id=str(data["id"]),
            display_name=data.get("displayName") or str(data["id"]),
            email=data.get("email") or "",
            photo=data.get("photo"),
        )


# ----------------------------
# Session <-> Identity
# ----------------------------
def identity_from_session(session: Mapping[str, Any]) -> Optional[Identity]:
    data = session.get(SESSION_KEY)
    if not isinstance(data, Mapping) or not data.get("id"):
        return None
    return Identity.from_dict(data)


def store_identity(session: dict, identity: Identity) -> None:
    session[SESSION_KEY] = identity.to_dict()


# ----------------------------
# Identity Provider Interface
# ----------------------------
class IdentityProvider(ABC):
    name: str = "abstract"

    @abstractmethod
    async def authorize_redirect(
            self, request: Request, redirect_uri: str) -> Response: ...

    # raises IdentityProviderError on any handshake failure
    @abstractmethod
    async def complete(self, request: Request) -> Identity: ...


# ----------------------------
# Google implementation
# ----------------------------
class GoogleIdentityProvider(IdentityProvider):
    name = "google"

    def __init__(self, client_id: str, client_secret: str,
                 server_metadata_url: str = GOOGLE_DISCOVERY_URL) -> None:
        self.oauth = OAuth()
        self.oauth.register(
            name="google",
            client_id=client_id,
            client_secret=client_secret,
            server_metadata_url=server_metadata_url,
            client_kwargs={"scope": "openid email profile"},
        )

    @property
    def client(self):
        return self.oauth.google

    async def authorize_redirect(
            self, request: Request, redirect_uri: str) -> Response:
        return await self.client.authorize_redirect(request, redirect_uri)

    async def complete(self, request: Request) -> Identity:
        try:
            token = await self.client.authorize_access_token(request)
            userinfo = token.get("userinfo")
            if not userinfo:
                userinfo = await self.client.userinfo(token=token)
        except OAuthError as e:
            logger.warning("google handshake failed: %s", e.error)
            raise IdentityProviderError(str(e)) from e
        except httpx.HTTPError as e:
            logger.warning("google token exchange failed: %r", e)
            raise IdentityProviderError(str(e)) from e
        return Identity.from_profile(userinfo)
