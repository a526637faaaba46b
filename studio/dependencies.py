"""FastAPI dependencies shared by the API endpoints."""

import logging
from typing import AsyncIterator, Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from studio.config import config
from studio.db.database import get_session_maker
from studio.db.repositories import ProfileRepository
from studio.services import factory
from studio.services.generation import EditOrchestrator
from studio.services.identity import (
    Identity,
    IdentityProvider,
    SupabaseIdentityProvider,
    extract_bearer_token,
)
from studio.services.image_provider import ImageGenerator
from studio.services.prompt_enhancer import PromptEnhancer
from studio.services.storage import BlobStore
from studio.tasks import GenerationQueue

logger = logging.getLogger(__name__)

_identity_provider: Optional[IdentityProvider] = None
_prompt_enhancer: Optional[PromptEnhancer] = None


async def get_db_session() -> AsyncIterator[AsyncSession]:
    """Yield a session for the duration of one request."""
    session_maker = get_session_maker()
    async with session_maker() as session:
        yield session


def get_identity_provider() -> IdentityProvider:
    global _identity_provider
    if _identity_provider is None:
        _identity_provider = SupabaseIdentityProvider()
    return _identity_provider


async def get_current_identity(
    authorization: Optional[str] = Header(default=None),
    provider: IdentityProvider = Depends(get_identity_provider),
    session: AsyncSession = Depends(get_db_session),
) -> Identity:
    """Resolve the bearer token and make sure the user has a profile."""
    token = extract_bearer_token(authorization)
    identity = await provider.get_identity(token) if token else None
    if identity is None:
        raise HTTPException(status_code=401, detail="You need to be signed in to do that.")

    _, created = await ProfileRepository(session).get_or_create(
        identity.user_id,
        username=identity.email,
        full_name=identity.full_name,
    )
    if created:
        logger.info(f"Created profile for user {identity.user_id}")
    return identity


def get_image_generator() -> ImageGenerator:
    return factory.get_image_generator()


def get_generated_blob_store() -> BlobStore:
    return factory.get_generated_store()


def get_products_blob_store() -> BlobStore:
    return factory.get_products_store()


def get_generation_queue() -> GenerationQueue:
    return GenerationQueue()


def get_prompt_enhancer() -> PromptEnhancer:
    global _prompt_enhancer
    if _prompt_enhancer is None:
        _prompt_enhancer = PromptEnhancer(
            api_key=config.openai_api_key,
            model=config.prompt_model,
        )
    return _prompt_enhancer


def get_edit_orchestrator(
    session: AsyncSession = Depends(get_db_session),
    generator: ImageGenerator = Depends(get_image_generator),
    blob_store: BlobStore = Depends(get_generated_blob_store),
) -> EditOrchestrator:
    return factory.build_edit_orchestrator(session, generator=generator, blob_store=blob_store)


def verify_admin_api_key(x_admin_api_key: Optional[str] = Header(default=None)) -> None:
    """Reject requests without the configured X-Admin-API-Key header."""
    if not config.admin_api_key or x_admin_api_key != config.admin_api_key:
        raise HTTPException(status_code=403, detail="Forbidden")
