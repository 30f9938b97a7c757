"""
possumbly.api.providers — OAuth2 Identity Providers
====================================================

Each provider knows how to build its consent URL and how to turn an
authorization ``code`` into an :class:`ExternalIdentity`.  Nothing else in
the app branches on the provider name.

A provider is enabled when both ``<NAME>_CLIENT_ID`` and
``<NAME>_CLIENT_SECRET`` are set.  The redirect URI is always
``{PUBLIC_URL}/auth/<name>/callback``.
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import Annotated, Any
from urllib.parse import urlencode

import httpx
from fastapi import Depends

from possumbly.api.deps import get_config
from possumbly.config import PossumblyConfig
from possumbly.services.identity_service import ExternalIdentity

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """The provider refused the code or returned an unusable profile."""


class IdentityProvider:
    """Base class for an OAuth2 authorization-code provider."""

    name: str = ""
    authorize_endpoint: str = ""
    token_endpoint: str = ""
    scope: str = ""

    def __init__(self, client_id: str, client_secret: str, redirect_uri: str) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri

    def authorize_url(self, state: str) -> str:
        query = urlencode({
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": self.scope,
            "state": state,
        })
        return f"{self.authorize_endpoint}?{query}"

    async def complete(self, code: str) -> ExternalIdentity:
        """Exchange *code* for a token and fetch the user's profile."""
        transport = httpx.AsyncHTTPTransport(retries=1)
        async with httpx.AsyncClient(timeout=10, transport=transport) as client:
            token_resp = await client.post(
                self.token_endpoint,
                data={
                    "grant_type": "authorization_code",
                    "code": code,
                    "redirect_uri": self.redirect_uri,
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                },
                headers={"Accept": "application/json"},
            )
            if token_resp.status_code != 200:
                raise ProviderError(f"{self.name} token exchange failed ({token_resp.status_code})")

            access_token = token_resp.json().get("access_token")
            if not access_token:
                raise ProviderError(f"{self.name} returned no access token")

            return await self.fetch_identity(client, access_token)

    async def fetch_identity(self, client: httpx.AsyncClient, access_token: str) -> ExternalIdentity:
        raise NotImplementedError

    @staticmethod
    async def _get_json(client: httpx.AsyncClient, url: str, access_token: str) -> Any:
        resp = await client.get(url, headers={
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
        })
        if resp.status_code != 200:
            raise ProviderError(f"Profile request failed ({resp.status_code}): {url}")
        return resp.json()


class GoogleProvider(IdentityProvider):
    name = "google"
    authorize_endpoint = "https://accounts.google.com/o/oauth2/v2/auth"
    token_endpoint = "https://oauth2.googleapis.com/token"
    scope = "openid profile email"

    async def fetch_identity(self, client, access_token):
        profile = await self._get_json(
            client, "https://openidconnect.googleapis.com/v1/userinfo", access_token
        )
        return ExternalIdentity(
            provider=self.name,
            provider_id=str(profile["sub"]),
            email=profile.get("email"),
            name=profile.get("name"),
            avatar_url=profile.get("picture"),
        )


class GitHubProvider(IdentityProvider):
    name = "github"
    authorize_endpoint = "https://github.com/login/oauth/authorize"
    token_endpoint = "https://github.com/login/oauth/access_token"
    scope = "user:email"

    async def fetch_identity(self, client, access_token):
        profile = await self._get_json(client, "https://api.github.com/user", access_token)
        email = profile.get("email")
        if not email:
            # Private addresses only come back from the emails endpoint
            emails = await self._get_json(
                client, "https://api.github.com/user/emails", access_token
            )
            primary = [e for e in emails if e.get("primary") and e.get("verified")]
            email = primary[0]["email"] if primary else None
        return ExternalIdentity(
            provider=self.name,
            provider_id=str(profile["id"]),
            email=email,
            name=profile.get("name") or profile.get("login"),
            avatar_url=profile.get("avatar_url"),
        )


class DiscordProvider(IdentityProvider):
    name = "discord"
    authorize_endpoint = "https://discord.com/oauth2/authorize"
    token_endpoint = "https://discord.com/api/v10/oauth2/token"
    scope = "identify email"

    async def fetch_identity(self, client, access_token):
        profile = await self._get_json(client, "https://discord.com/api/v10/users/@me", access_token)
        avatar = profile.get("avatar")
        return ExternalIdentity(
            provider=self.name,
            provider_id=str(profile["id"]),
            email=profile.get("email"),
            name=profile.get("username"),
            avatar_url=(
                f"https://cdn.discordapp.com/avatars/{profile['id']}/{avatar}.png"
                if avatar else None
            ),
        )


PROVIDER_CLASSES: dict[str, type[IdentityProvider]] = {
    cls.name: cls for cls in (GoogleProvider, GitHubProvider, DiscordProvider)
}


def configured_providers(public_url: str) -> dict[str, IdentityProvider]:
    """Instantiate every provider whose client credentials are present."""
    providers: dict[str, IdentityProvider] = {}
    for name, cls in PROVIDER_CLASSES.items():
        client_id = os.getenv(f"{name.upper()}_CLIENT_ID", "").strip()
        client_secret = os.getenv(f"{name.upper()}_CLIENT_SECRET", "").strip()
        if not client_id or not client_secret:
            logger.info("%s OAuth not configured (missing client id or secret)", name)
            continue
        providers[name] = cls(client_id, client_secret, f"{public_url}/auth/{name}/callback")
        logger.info("%s OAuth configured — callback %s", name, providers[name].redirect_uri)
    return providers


@lru_cache(maxsize=1)
def _providers_for(public_url: str) -> dict[str, IdentityProvider]:
    return configured_providers(public_url)


def get_identity_providers(
    cfg: Annotated[PossumblyConfig, Depends(get_config)],
) -> dict[str, IdentityProvider]:
    return _providers_for(cfg.public_url)
