"""Identity lookup against the Supabase auth service."""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from supabase import Client

from studio.services.storage import get_supabase_client

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    """Signed-in user as reported by the identity provider."""

    user_id: str
    email: Optional[str] = None
    full_name: Optional[str] = None


class IdentityProvider(ABC):
    """Resolves a bearer access token into an Identity."""

    @abstractmethod
    async def get_identity(self, access_token: str) -> Optional[Identity]:
        """Return the identity for ``access_token`` or None if it is not valid."""


class SupabaseIdentityProvider(IdentityProvider):
    """Validates Supabase JWTs by asking the auth server for the user."""

    def __init__(self, client: Optional[Client] = None):
        self.client = client or get_supabase_client()

    async def get_identity(self, access_token: str) -> Optional[Identity]:
        if not access_token:
            return None
        try:
            response = await asyncio.to_thread(self.client.auth.get_user, access_token)
        except Exception as e:
            logger.warning(f"Access token rejected by auth service: {e}")
            return None

        user = response.user if response else None
        if user is None:
            return None

        metadata = user.user_metadata or {}
        return Identity(
            user_id=user.id,
            email=user.email,
            full_name=metadata.get("full_name"),
        )


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Return the token from an ``Authorization: Bearer <token>`` header value."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()
