"""
Session authentication against the external identity provider.

Handlers depend on ``get_current_user``, which reads the session token from
the request, asks the identity provider who it belongs to and returns an
``AuthenticatedUser``. Missing or rejected tokens raise ``AuthenticationError``.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

import aiohttp
from fastapi import Depends, Request

from newsdesk.errors import AuthenticationError, ConfigurationError, UpstreamError
from newsdesk.utils.config import get_auth_config

logger = logging.getLogger(__name__)

AUTH_UNAVAILABLE = "Authentication service unavailable"


@dataclass(frozen=True)
class AuthenticatedUser:
    """
    Identity resolved from a session token.
    """
    id: str
    email: Optional[str] = None


class SessionVerifier:
    """
    Resolves session tokens through the identity provider's user endpoint.
    """

    def __init__(self, base_url: Optional[str] = None, anon_key: Optional[str] = None, timeout: Optional[int] = None):
        config = get_auth_config()
        self.base_url = (base_url or config["url"] or "").rstrip("/")
        self.anon_key = anon_key or config["anon_key"]
        self.timeout = aiohttp.ClientTimeout(total=timeout or config["timeout"])

    async def verify(self, token: str) -> Optional[AuthenticatedUser]:
        """
        Look up the user owning a session token.

        Args:
            token: Access token issued by the identity provider

        Returns:
            The authenticated user, or None if the provider rejects the token

        Raises:
            UpstreamError: The provider failed or could not be reached
        """
        if not self.base_url or not self.anon_key:
            raise ConfigurationError("Auth service not configured")

        headers = {
            "apikey": self.anon_key,
            "Authorization": f"Bearer {token}",
        }

        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.get(f"{self.base_url}/auth/v1/user", headers=headers) as response:
                    if response.status in (401, 403):
                        return None
                    if response.status != 200:
                        logger.error(f"Session lookup returned HTTP {response.status}")
                        raise UpstreamError(AUTH_UNAVAILABLE)
                    data = await response.json()

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Session lookup failed: {e}")
            raise UpstreamError(AUTH_UNAVAILABLE) from e

        user_id = data.get("id") if isinstance(data, dict) else None
        if not user_id:
            return None
        return AuthenticatedUser(id=str(user_id), email=data.get("email"))


# Global verifier instance
session_verifier: Optional[SessionVerifier] = None


def get_session_verifier() -> SessionVerifier:
    """
    Get the global session verifier.

    Returns:
        Session verifier
    """
    global session_verifier
    if session_verifier is None:
        session_verifier = SessionVerifier()
    return session_verifier


def extract_token(request: Request) -> Optional[str]:
    """Read the session token from the Authorization header or the session cookie."""
    authorization = request.headers.get("Authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()

    cookie = request.cookies.get(get_auth_config()["cookie_name"])
    return cookie or None


async def get_current_user(
    request: Request,
    verifier: SessionVerifier = Depends(get_session_verifier),
) -> AuthenticatedUser:
    """
    FastAPI dependency guarding every authenticated endpoint.
    """
    token = extract_token(request)
    if not token:
        raise AuthenticationError()

    user = await verifier.verify(token)
    if user is None:
        raise AuthenticationError()
    return user
