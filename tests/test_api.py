"""Tests for the HTTP API with every external service replaced."""

from typing import Dict, List, Optional

import httpx
import pytest

from studio.config import config
from studio.db.repositories import ImageRepository, PaymentRepository
from studio.dependencies import (
    get_db_session,
    get_edit_orchestrator,
    get_generated_blob_store,
    get_generation_queue,
    get_identity_provider,
    get_products_blob_store,
    get_prompt_enhancer,
)
from studio.main import app
from studio.services.balance import BalanceLedger
from studio.services.errors import ContentRejectedError
from studio.services.generation import EditOrchestrator
from studio.services.identity import Identity, IdentityProvider
from studio.services.payment import PaymentService
from studio.services.persister import ArtifactPersister
from tests.conftest import PNG_BASE64, InMemoryBlobStore

ALICE = Identity(user_id="alice-id", email="alice@example.com", full_name="Alice")
BOB = Identity(user_id="bob-id", email="bob@example.com")
AUTH = {"Authorization": "Bearer token-alice"}


class FakeIdentityProvider(IdentityProvider):
    tokens = {"token-alice": ALICE, "token-bob": BOB}

    async def get_identity(self, access_token: str) -> Optional[Identity]:
        return self.tokens.get(access_token)


class FakeQueue:
    def __init__(self):
        self.submitted: List[tuple] = []
        self.busy = False
        self.jobs: Dict[str, dict] = {}

    def submit(self, user_id: str, prompt: str, items: list) -> Optional[str]:
        if self.busy:
            return None
        self.submitted.append((user_id, prompt, items))
        return f"job-{len(self.submitted)}"

    def status(self, job_id: str, user_id: str) -> Optional[dict]:
        state = self.jobs.get(job_id)
        if state is None or state["user_id"] != user_id:
            return None
        return state


class FakeEnhancer:
    async def enhance(self, prompt: str) -> str:
        return f"Ultra-detailed studio photo: {prompt}"


@pytest.fixture
def products_store() -> InMemoryBlobStore:
    return InMemoryBlobStore("products")


@pytest.fixture
def queue() -> FakeQueue:
    return FakeQueue()


@pytest.fixture
async def client(
    test_session, blob_store, products_store, generator, resolver, queue, monkeypatch
):
    monkeypatch.setattr(config, "initial_tokens", 20)

    async def session_override():
        yield test_session

    def edit_orchestrator_override():
        return EditOrchestrator(
            BalanceLedger(test_session),
            resolver,
            generator,
            ArtifactPersister(blob_store, ImageRepository(test_session)),
        )

    app.dependency_overrides[get_db_session] = session_override
    app.dependency_overrides[get_identity_provider] = lambda: FakeIdentityProvider()
    app.dependency_overrides[get_generated_blob_store] = lambda: blob_store
    app.dependency_overrides[get_products_blob_store] = lambda: products_store
    app.dependency_overrides[get_generation_queue] = lambda: queue
    app.dependency_overrides[get_edit_orchestrator] = edit_orchestrator_override
    app.dependency_overrides[get_prompt_enhancer] = lambda: FakeEnhancer()

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()


async def _balance(test_session, user_id: str) -> Optional[int]:
    return await BalanceLedger(test_session).get_balance(user_id)


class TestAuth:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("headers", [{}, {"Authorization": "Bearer nope"}, {"Authorization": "token-alice"}])
    async def test_requests_without_valid_token_are_rejected(self, client, headers):
        response = await client.get("/balance", headers=headers)

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_first_request_creates_profile_with_welcome_tokens(self, client, test_session):
        response = await client.get("/balance", headers=AUTH)

        assert response.status_code == 200
        assert response.json() == {"user_id": "alice-id", "token_balance": 20}
        assert await _balance(test_session, "alice-id") == 20

    @pytest.mark.asyncio
    async def test_health_needs_no_token(self, client):
        response = await client.get("/health")

        assert response.json() == {"status": "ok"}


class TestProducts:

    @pytest.mark.asyncio
    async def test_upload_list_and_clear(self, client, products_store):
        response = await client.post("/products", headers=AUTH, json={
            "name": "Blue Mug", "image_base64": PNG_BASE64, "mime_type": "image/png",
        })
        assert response.status_code == 201
        product = response.json()
        assert product["image_path"].startswith("alice-id/")
        assert product["image_path"].endswith("Blue-Mug")
        assert product["src"] == f"https://cdn.test/products/{product['image_path']}"
        assert product["is_logo"] is False

        listed = (await client.get("/products", headers=AUTH)).json()
        assert [p["id"] for p in listed] == [product["id"]]

        response = await client.delete("/products", headers=AUTH)
        assert response.status_code == 204
        assert products_store.objects == {}
        assert (await client.get("/products", headers=AUTH)).json() == []

    @pytest.mark.asyncio
    async def test_unsupported_format_is_rejected(self, client, products_store):
        response = await client.post("/products", headers=AUTH, json={
            "name": "Doc", "image_base64": PNG_BASE64, "mime_type": "application/pdf",
        })

        assert response.status_code == 400
        assert response.json()["error_type"] == "InvalidRequestError"
        assert products_store.objects == {}

    @pytest.mark.asyncio
    async def test_products_are_private(self, client):
        await client.post("/products", headers=AUTH, json={
            "name": "Mug", "image_base64": PNG_BASE64, "mime_type": "image/png",
        })

        listed = await client.get("/products", headers={"Authorization": "Bearer token-bob"})

        assert listed.json() == []

    @pytest.mark.asyncio
    async def test_product_count_is_capped(self, client, products_store, monkeypatch):
        monkeypatch.setattr(config, "max_products", 7)
        image = {"image_base64": PNG_BASE64, "mime_type": "image/png"}
        for i in range(7):
            response = await client.post("/products", headers=AUTH, json={"name": f"P{i}", **image})
            assert response.status_code == 201

        eighth = await client.post("/products", headers=AUTH, json={"name": "P7", **image})
        logo = await client.post("/products", headers=AUTH, json={"name": "Logo", "is_logo": True, **image})

        assert eighth.status_code == 400
        assert eighth.json()["error_type"] == "InvalidRequestError"
        assert logo.status_code == 201
        assert len(products_store.objects) == 8

    @pytest.mark.asyncio
    async def test_oversized_upload_is_rejected(self, client, products_store, monkeypatch):
        monkeypatch.setattr(config, "max_upload_bytes", 10)

        response = await client.post("/products", headers=AUTH, json={
            "name": "Huge", "image_base64": PNG_BASE64, "mime_type": "image/png",
        })

        assert response.status_code == 400
        assert response.json()["error_type"] == "InvalidRequestError"
        assert products_store.objects == {}

    @pytest.mark.asyncio
    async def test_new_logo_replaces_old(self, client, products_store):
        logo = {"image_base64": PNG_BASE64, "mime_type": "image/png", "is_logo": True}
        first = (await client.post("/products", headers=AUTH, json={"name": "Old", **logo})).json()
        second = (await client.post("/products", headers=AUTH, json={"name": "New", **logo})).json()

        listed = (await client.get("/products", headers=AUTH)).json()

        assert [p["id"] for p in listed if p["is_logo"]] == [second["id"]]
        assert first["image_path"] not in products_store.objects
        assert list(products_store.objects) == [second["image_path"]]

    @pytest.mark.asyncio
    async def test_remove_logo(self, client, products_store):
        await client.post("/products", headers=AUTH, json={
            "name": "Mug", "image_base64": PNG_BASE64, "mime_type": "image/png",
        })
        logo = (await client.post("/products", headers=AUTH, json={
            "name": "Logo", "image_base64": PNG_BASE64, "mime_type": "image/png", "is_logo": True,
        })).json()

        response = await client.delete("/products/logo", headers=AUTH)

        assert response.status_code == 204
        assert logo["image_path"] not in products_store.objects
        listed = (await client.get("/products", headers=AUTH)).json()
        assert [p["name"] for p in listed] == ["Mug"]

        again = await client.delete("/products/logo", headers=AUTH)
        assert again.status_code == 404

    @pytest.mark.asyncio
    async def test_clear_keeps_logo(self, client, products_store):
        image = {"image_base64": PNG_BASE64, "mime_type": "image/png"}
        await client.post("/products", headers=AUTH, json={"name": "Mug", **image})
        logo = (await client.post("/products", headers=AUTH, json={"name": "Logo", "is_logo": True, **image})).json()

        response = await client.delete("/products", headers=AUTH)

        assert response.status_code == 204
        assert list(products_store.objects) == [logo["image_path"]]
        listed = (await client.get("/products", headers=AUTH)).json()
        assert [p["id"] for p in listed] == [logo["id"]]


class TestCreateGeneration:

    @pytest.mark.asyncio
    async def test_text_only_request_is_queued(self, client, queue):
        response = await client.post("/generations", headers=AUTH, json={"prompt": " a lemon "})

        assert response.status_code == 202
        assert response.json() == {"job_id": "job-1", "cost": 20, "total": 1}
        assert queue.submitted == [("alice-id", "a lemon", [])]

    @pytest.mark.asyncio
    async def test_products_become_url_items(self, client, queue):
        product = (await client.post("/products", headers=AUTH, json={
            "name": "Mug", "image_base64": PNG_BASE64, "mime_type": "image/png",
        })).json()

        response = await client.post("/generations", headers=AUTH, json={
            "prompt": "on a beach",
            "product_ids": [product["id"]],
            "images": [{"name": "Logo", "image_base64": PNG_BASE64, "mime_type": "image/png"}],
        })

        assert response.status_code == 202
        assert response.json()["cost"] == 20
        _, _, items = queue.submitted[0]
        assert items[0]["name"] == "Mug"
        assert items[0]["url"] == product["src"]
        assert items[0]["image_base64"] is None
        assert items[1]["name"] == "Logo"
        assert items[1]["image_base64"] == PNG_BASE64

    @pytest.mark.asyncio
    async def test_insufficient_balance_is_payment_required(self, client, queue):
        image = {"name": "P", "image_base64": PNG_BASE64, "mime_type": "image/png"}

        response = await client.post("/generations", headers=AUTH, json={
            "prompt": "studio", "images": [image, image, image],
        })

        assert response.status_code == 402
        assert response.json()["error_type"] == "ReservationFailedError"
        assert "required 24, available 20" in response.json()["error"]
        assert queue.submitted == []

    @pytest.mark.asyncio
    async def test_blank_prompt_is_bad_request(self, client, queue):
        response = await client.post("/generations", headers=AUTH, json={"prompt": "   "})

        assert response.status_code == 400
        assert queue.submitted == []

    @pytest.mark.asyncio
    async def test_unknown_product_is_not_found(self, client):
        response = await client.post("/generations", headers=AUTH, json={
            "prompt": "studio", "product_ids": ["does-not-exist"],
        })

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_repeated_product_is_generated_twice(self, client, queue):
        product = (await client.post("/products", headers=AUTH, json={
            "name": "Mug", "image_base64": PNG_BASE64, "mime_type": "image/png",
        })).json()

        response = await client.post("/generations", headers=AUTH, json={
            "prompt": "studio", "product_ids": [product["id"], product["id"]],
        })

        assert response.status_code == 202
        assert response.json()["total"] == 2
        _, _, items = queue.submitted[0]
        assert [item["name"] for item in items] == ["Mug", "Mug"]

    @pytest.mark.asyncio
    async def test_second_batch_while_running_is_conflict(self, client, queue):
        queue.busy = True

        response = await client.post("/generations", headers=AUTH, json={"prompt": "studio"})

        assert response.status_code == 409
        assert response.json()["error_type"] == "GenerationInProgressError"


class TestGenerationStatus:

    @pytest.mark.asyncio
    async def test_running_job_reports_progress(self, client, queue):
        queue.jobs["job-9"] = {
            "user_id": "alice-id", "job_id": "job-9", "status": "started",
            "progress": {"completed": 1, "total": 3}, "result": None,
        }

        body = (await client.get("/generations/job-9", headers=AUTH)).json()

        assert body["status"] == "started"
        assert body["progress"] == {"completed": 1, "total": 3}
        assert body["artifacts"] == []

    @pytest.mark.asyncio
    async def test_finished_job_lists_artifacts(self, client, queue):
        artifact = {
            "id": "img-1", "owner_id": "alice-id", "prompt": "studio",
            "storage_path": "alice-id/a.png", "public_url": "https://cdn.test/generated_images/alice-id/a.png",
        }
        queue.jobs["job-9"] = {
            "user_id": "alice-id", "job_id": "job-9", "status": "finished",
            "progress": {"completed": 1, "total": 1},
            "result": {"status": "done", "cost": 20, "artifacts": [artifact]},
        }

        body = (await client.get("/generations/job-9", headers=AUTH)).json()

        assert body["status"] == "done"
        assert body["cost"] == 20
        assert body["artifacts"][0]["public_url"] == artifact["public_url"]

    @pytest.mark.asyncio
    async def test_failed_job_reports_refund(self, client, queue):
        queue.jobs["job-9"] = {
            "user_id": "alice-id", "job_id": "job-9", "status": "finished",
            "progress": {"completed": 1, "total": 3},
            "result": {
                "status": "failed", "error": "The AI did not return a usable image. Your 24 tokens have been refunded.",
                "error_type": "GenerationFailedError", "refunded": 24, "completed": 1,
            },
        }

        body = (await client.get("/generations/job-9", headers=AUTH)).json()

        assert body["status"] == "failed"
        assert body["refunded"] == 24
        assert body["error_type"] == "GenerationFailedError"

    @pytest.mark.asyncio
    async def test_other_users_jobs_are_hidden(self, client, queue):
        queue.jobs["job-9"] = {"user_id": "bob-id", "job_id": "job-9", "status": "queued"}

        response = await client.get("/generations/job-9", headers=AUTH)

        assert response.status_code == 404


class TestEditImage:

    async def _gallery_image(self, test_session, remote_images) -> str:
        image = await ImageRepository(test_session).create("alice-id", "original", "alice-id/original.png")
        remote_images.add("https://cdn.test/generated_images/alice-id/original.png")
        return image.id

    @pytest.mark.asyncio
    async def test_edit_charges_sixteen(self, client, test_session, remote_images):
        await client.get("/balance", headers=AUTH)
        image_id = await self._gallery_image(test_session, remote_images)

        response = await client.post(f"/images/{image_id}/edit", headers=AUTH, json={"prompt": "blue background"})

        assert response.status_code == 201
        assert response.json()["prompt"] == "blue background"
        assert await _balance(test_session, "alice-id") == 4

        gallery = (await client.get("/images", headers=AUTH)).json()
        assert len(gallery) == 2

    @pytest.mark.asyncio
    async def test_rejected_edit_is_refunded(self, client, test_session, remote_images, generator):
        await client.get("/balance", headers=AUTH)
        image_id = await self._gallery_image(test_session, remote_images)
        generator.outcomes.append(ContentRejectedError("moderation_blocked"))

        response = await client.post(f"/images/{image_id}/edit", headers=AUTH, json={"prompt": "blue background"})

        assert response.status_code == 422
        assert response.json()["error_type"] == "ContentRejectedError"
        assert response.json()["refunded"] == 16
        assert await _balance(test_session, "alice-id") == 20

    @pytest.mark.asyncio
    async def test_cannot_edit_someone_elses_image(self, client, test_session, remote_images):
        await client.get("/balance", headers=AUTH)
        image_id = await self._gallery_image(test_session, remote_images)

        response = await client.post(
            f"/images/{image_id}/edit",
            headers={"Authorization": "Bearer token-bob"},
            json={"prompt": "blue background"},
        )

        assert response.status_code == 404


@pytest.mark.asyncio
async def test_prompt_enhancement(client):
    response = await client.post("/prompt/enhance", headers=AUTH, json={"prompt": "mug"})

    assert response.json() == {"prompt": "Ultra-detailed studio photo: mug"}


class TestCheckout:

    @pytest.mark.asyncio
    async def test_checkout_records_pending_payment(self, client, test_session, monkeypatch):
        def fake_create(user_id, package_key):
            return {
                "payment_id": "pay-1", "confirmation_url": "https://yoomoney.test/pay-1",
                "amount": "49.90", "tokens": 1000, "package": package_key, "status": "pending",
            }

        monkeypatch.setattr(PaymentService, "create_payment", staticmethod(fake_create))

        response = await client.post("/checkout", headers=AUTH, json={"package": "pro"})

        assert response.status_code == 200
        assert response.json()["confirmation_url"] == "https://yoomoney.test/pay-1"
        payment = await PaymentRepository(test_session).get_by_yookassa_id("pay-1")
        assert payment.tokens_amount == 1000
        assert payment.user_id == "alice-id"

    @pytest.mark.asyncio
    async def test_unknown_package(self, client):
        response = await client.post("/checkout", headers=AUTH, json={"package": "gold"})

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_webhook_credits_tokens_once(self, client, test_session):
        await client.get("/balance", headers=AUTH)
        await PaymentRepository(test_session).create(
            user_id="alice-id", yookassa_payment_id="pay-2", package="basic",
            tokens_amount=500, amount_value="29.90",
        )
        notification = {
            "event": "payment.succeeded",
            "object": {"id": "pay-2", "status": "succeeded", "paid": True, "amount": {"value": "29.90"}},
        }

        first = await client.post("/yookassa/webhook", json=notification)
        second = await client.post("/yookassa/webhook", json=notification)

        assert first.status_code == second.status_code == 200
        assert await _balance(test_session, "alice-id") == 520

    @pytest.mark.asyncio
    async def test_webhook_ignores_unknown_payments(self, client):
        response = await client.post("/yookassa/webhook", json={
            "event": "payment.succeeded", "object": {"id": "unknown", "paid": True},
        })

        assert response.status_code == 200


class TestAdminTokens:

    @pytest.mark.asyncio
    async def test_requires_admin_key(self, client, monkeypatch):
        monkeypatch.setattr(config, "admin_api_key", "secret")

        response = await client.post("/admin/users/alice-id/tokens", json={"amount": 10},
                                     headers={"X-Admin-API-Key": "wrong"})

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_credit_and_debit(self, client, test_session, monkeypatch):
        monkeypatch.setattr(config, "admin_api_key", "secret")
        admin = {"X-Admin-API-Key": "secret"}
        await client.get("/balance", headers=AUTH)

        added = await client.post("/admin/users/alice-id/tokens", json={"amount": 30}, headers=admin)
        assert added.json() == {"user_id": "alice-id", "old_balance": 20, "change": 30, "new_balance": 50}

        too_much = await client.post("/admin/users/alice-id/tokens", json={"amount": -60}, headers=admin)
        assert too_much.status_code == 400
        assert await _balance(test_session, "alice-id") == 50

    @pytest.mark.asyncio
    async def test_unknown_user(self, client, monkeypatch):
        monkeypatch.setattr(config, "admin_api_key", "secret")

        response = await client.post("/admin/users/nobody/tokens", json={"amount": 5},
                                     headers={"X-Admin-API-Key": "secret"})

        assert response.status_code == 404
