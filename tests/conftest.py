"""
Shared pytest fixtures and test doubles.
"""

import base64
import uuid
from typing import AsyncGenerator, Dict, List, Optional, Union

import httpx
import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from studio.db.database import Base
from studio.db.models import Profile
from studio.db.repositories import ImageRepository
from studio.services.balance import BalanceLedger
from studio.services.image_provider import ImageGenerator
from studio.services.image_source import EncodedImage, ImageSourceResolver
from studio.services.persister import ArtifactPersister
from studio.services.storage import BlobStore


PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16 + b"fake-png-body"
PNG_BASE64 = base64.b64encode(PNG_BYTES).decode("ascii")
GENERATED_BYTES = b"\x89PNG\r\n\x1a\n" + b"generated"
GENERATED_BASE64 = base64.b64encode(GENERATED_BYTES).decode("ascii")


class InMemoryBlobStore(BlobStore):
    """Dictionary-backed bucket."""

    def __init__(self, bucket: str = "generated_images"):
        self.bucket = bucket
        self.objects: Dict[str, bytes] = {}
        self.content_types: Dict[str, str] = {}
        self.fail_upload = False
        self.fail_remove = False
        self.removed: List[str] = []

    async def upload(self, path: str, data: bytes, content_type: str) -> None:
        if self.fail_upload:
            raise RuntimeError("storage unavailable")
        if path in self.objects:
            raise RuntimeError(f"object {path} already exists")
        self.objects[path] = data
        self.content_types[path] = content_type

    async def get_public_url(self, path: str) -> str:
        return f"https://cdn.test/{self.bucket}/{path}"

    async def remove(self, paths: List[str]) -> None:
        if self.fail_remove:
            raise RuntimeError("storage unavailable")
        for path in paths:
            self.objects.pop(path, None)
            self.removed.append(path)


class FailingImageRepository(ImageRepository):
    """Image repository whose inserts always fail."""

    async def create(self, user_id: str, prompt: str, image_path: str):
        raise IntegrityError("INSERT INTO generated_images", {}, Exception("constraint failed"))


class ScriptedImageGenerator(ImageGenerator):
    """Returns (or raises) the scripted outcomes in order, then succeeds."""

    def __init__(self, outcomes: Optional[List[Union[EncodedImage, Exception]]] = None):
        self.outcomes = list(outcomes or [])
        self.calls: List[tuple] = []

    async def generate(self, prompt: str, reference: Optional[EncodedImage] = None) -> EncodedImage:
        self.calls.append((prompt, reference))
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        return EncodedImage(image_base64=GENERATED_BASE64, mime_type="image/png")


class RemoteImages:
    """httpx.MockTransport handler serving images by URL."""

    def __init__(self):
        self.images: Dict[str, tuple] = {}
        self.requests: List[str] = []

    def add(self, url: str, data: bytes = PNG_BYTES, content_type: str = "image/png") -> str:
        self.images[url] = (data, content_type)
        return url

    def __call__(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(url)
        if url not in self.images:
            return httpx.Response(404, text="not found")
        data, content_type = self.images[url]
        return httpx.Response(200, content=data, headers={"content-type": content_type})


@pytest.fixture
async def test_engine():
    """In-memory SQLite shared by every session of one test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def test_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    async with session_maker() as session:
        yield session


@pytest.fixture
def make_profile(test_session):
    """Create a profile with the given balance and return its ID."""

    async def _make(balance: int = 100) -> str:
        user_id = str(uuid.uuid4())
        test_session.add(Profile(id=user_id, username=f"user_{user_id[:8]}", token_balance=balance))
        await test_session.commit()
        return user_id

    return _make


@pytest.fixture
def blob_store() -> InMemoryBlobStore:
    return InMemoryBlobStore()


@pytest.fixture
def generator() -> ScriptedImageGenerator:
    return ScriptedImageGenerator()


@pytest.fixture
def remote_images() -> RemoteImages:
    return RemoteImages()


@pytest.fixture
async def http_client(remote_images) -> AsyncGenerator[httpx.AsyncClient, None]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(remote_images)) as client:
        yield client


@pytest.fixture
def resolver(http_client) -> ImageSourceResolver:
    return ImageSourceResolver(http_client=http_client)


@pytest.fixture
def ledger(test_session) -> BalanceLedger:
    return BalanceLedger(test_session)


@pytest.fixture
def persister(blob_store, test_session) -> ArtifactPersister:
    return ArtifactPersister(blob_store, ImageRepository(test_session))
