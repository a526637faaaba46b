"""FastAPI application for the product photo studio.

This module provides:
- Product and logo uploads, gallery listing
- Batch generation (queued on RQ) and single-image edit (inline)
- Prompt enhancement
- Token checkout through YooKassa and its webhook
- Admin token adjustment
"""

import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import List

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from studio.config import config
from studio.db.database import close_db, init_db
from studio.db.models import Product
from studio.db.repositories import (
    ImageRepository,
    PaymentRepository,
    ProductRepository,
    ProfileRepository,
)
from studio.dependencies import (
    get_current_identity,
    get_db_session,
    get_edit_orchestrator,
    get_generated_blob_store,
    get_generation_queue,
    get_products_blob_store,
    get_prompt_enhancer,
    verify_admin_api_key,
)
from studio.schemas import (
    ArtifactOut,
    BalanceOut,
    CheckoutCreate,
    EditCreate,
    GenerationAccepted,
    GenerationCreate,
    GenerationStatus,
    ProductCreate,
    ProductOut,
    PromptEnhanceIn,
    PromptEnhanceOut,
    TokenAdjustment,
)
from studio.services.balance import BalanceLedger
from studio.services.errors import (
    ContentRejectedError,
    GenerationAborted,
    GenerationInProgressError,
    InvalidRequestError,
    MetadataError,
    NoActiveIdentityError,
    ReservationFailedError,
    StorageError,
    StudioError,
)
from studio.services.generation import EditOrchestrator
from studio.services.identity import Identity
from studio.services.image_source import SourceItem
from studio.services.payment import TOKEN_PACKAGES, PaymentService
from studio.services.pricing import calculate_batch_cost
from studio.services.prompt_enhancer import PromptEnhancer
from studio.services.storage import BlobStore
from studio.tasks import GenerationQueue, close_redis_connection
from studio.utils.helpers import decode_base64_image, safe_file_name, validate_image_format

# Configure logging
logging.basicConfig(
    level=getattr(logging, config.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup: initialize database.
    Shutdown: close database and Redis connections.
    """
    logger.info("Starting application...")

    try:
        await init_db()
        logger.info("Database initialized")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise

    yield

    logger.info("Shutting down application...")
    close_redis_connection()
    await close_db()
    logger.info("Connections closed")


app = FastAPI(
    title="Product Photo Studio",
    description="Token-metered AI product photo generation",
    version="1.0.0",
    lifespan=lifespan,
)


def error_status(error: StudioError) -> int:
    """HTTP status for a workflow error."""
    if isinstance(error, GenerationAborted):
        return 422 if isinstance(error.cause, ContentRejectedError) else 502
    if isinstance(error, NoActiveIdentityError):
        return 401
    if isinstance(error, InvalidRequestError):
        return 400
    if isinstance(error, ReservationFailedError):
        return 402
    if isinstance(error, GenerationInProgressError):
        return 409
    if isinstance(error, (StorageError, MetadataError)):
        return 502
    return 400


@app.exception_handler(StudioError)
async def studio_error_handler(request: Request, exc: StudioError) -> JSONResponse:
    logger.warning(f"{request.method} {request.url.path} failed: {type(exc).__name__}: {exc}")
    body = {"error": str(exc), "error_type": type(exc).__name__}
    if isinstance(exc, GenerationAborted):
        body["error_type"] = type(exc.cause).__name__
        body["refunded"] = exc.refunded
    return JSONResponse(status_code=error_status(exc), content=body)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok"}


@app.get("/")
async def root():
    """Root endpoint with basic info."""
    return {
        "name": "Product Photo Studio",
        "version": "1.0.0",
        "status": "running",
    }


# ============== Account ==============

@app.get("/balance", response_model=BalanceOut)
async def get_balance(
    identity: Identity = Depends(get_current_identity),
    session: AsyncSession = Depends(get_db_session),
):
    balance = await BalanceLedger(session).get_balance(identity.user_id)
    return BalanceOut(user_id=identity.user_id, token_balance=balance or 0)


# ============== Products ==============

def _check_image(mime_type: str, image_base64: str) -> bytes:
    if not validate_image_format(mime_type=mime_type):
        raise InvalidRequestError("Unsupported image format. Use JPEG, PNG or WebP.")
    data = decode_base64_image(image_base64)
    if data is None:
        raise InvalidRequestError("The image data is not valid base64.")
    if len(data) > config.max_upload_bytes:
        limit_mb = config.max_upload_bytes / (1024 * 1024)
        raise InvalidRequestError(f"The image is too large. The limit is {limit_mb:g}MB.")
    return data


def _product_out(product: Product, src: str) -> ProductOut:
    return ProductOut(
        id=product.id,
        name=product.name,
        mime_type=product.mime_type,
        image_path=product.image_path,
        src=src,
        is_logo=product.is_logo,
    )


async def _remove_product(repo: ProductRepository, blob_store: BlobStore, product: Product) -> None:
    # Blob first, then row
    try:
        await blob_store.remove([product.image_path])
    except Exception as e:
        logger.error(f"Failed to remove {product.image_path}: {e}")
        raise StorageError(str(e)) from e
    await repo.delete(product)


@app.get("/products", response_model=List[ProductOut])
async def list_products(
    identity: Identity = Depends(get_current_identity),
    session: AsyncSession = Depends(get_db_session),
    blob_store: BlobStore = Depends(get_products_blob_store),
):
    products = await ProductRepository(session).list_for_user(identity.user_id)
    return [_product_out(p, await blob_store.get_public_url(p.image_path)) for p in products]


@app.post("/products", response_model=ProductOut, status_code=201)
async def upload_product(
    body: ProductCreate,
    identity: Identity = Depends(get_current_identity),
    session: AsyncSession = Depends(get_db_session),
    blob_store: BlobStore = Depends(get_products_blob_store),
):
    """
    Upload a product image, or the user's logo.

    At most ``MAX_PRODUCTS`` product images are kept per user. There is a
    single logo; uploading a new one replaces it.
    """
    data = _check_image(body.mime_type, body.image_base64)

    repo = ProductRepository(session)
    previous_logo = None
    if body.is_logo:
        previous_logo = await repo.get_logo(identity.user_id)
    elif await repo.count_for_user(identity.user_id) >= config.max_products:
        raise InvalidRequestError(f"You can upload up to {config.max_products} product images.")

    path = f"{identity.user_id}/{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}-{safe_file_name(body.name)}"

    try:
        await blob_store.upload(path, data, body.mime_type)
    except Exception as e:
        logger.error(f"Product upload to {path} failed: {e}")
        raise StorageError(str(e)) from e

    try:
        product = await repo.create(
            user_id=identity.user_id,
            name=body.name,
            mime_type=body.mime_type,
            image_path=path,
            is_logo=body.is_logo,
        )
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"Product row for {path} failed: {e}")
        await blob_store.remove([path])
        raise MetadataError(str(e)) from e

    if previous_logo is not None:
        await _remove_product(repo, blob_store, previous_logo)
        logger.info(f"Replaced logo {previous_logo.id} for user {identity.user_id}")

    logger.info(f"User {identity.user_id} uploaded product {product.id}")
    return _product_out(product, await blob_store.get_public_url(path))


@app.delete("/products", status_code=204)
async def clear_products(
    identity: Identity = Depends(get_current_identity),
    session: AsyncSession = Depends(get_db_session),
    blob_store: BlobStore = Depends(get_products_blob_store),
):
    """Remove all product images. The logo is kept."""
    repo = ProductRepository(session)
    products = [p for p in await repo.list_for_user(identity.user_id) if not p.is_logo]
    if not products:
        return Response(status_code=204)

    # Blobs first, then rows
    try:
        await blob_store.remove([p.image_path for p in products])
    except Exception as e:
        logger.error(f"Failed to remove product images for {identity.user_id}: {e}")
        raise StorageError(str(e)) from e

    removed = await repo.delete_for_user(identity.user_id)
    logger.info(f"Cleared {removed} product(s) for user {identity.user_id}")
    return Response(status_code=204)


@app.delete("/products/logo", status_code=204)
async def remove_logo(
    identity: Identity = Depends(get_current_identity),
    session: AsyncSession = Depends(get_db_session),
    blob_store: BlobStore = Depends(get_products_blob_store),
):
    repo = ProductRepository(session)
    logo = await repo.get_logo(identity.user_id)
    if logo is None:
        raise HTTPException(status_code=404, detail="No logo uploaded")

    await _remove_product(repo, blob_store, logo)
    logger.info(f"User {identity.user_id} removed logo {logo.id}")
    return Response(status_code=204)


# ============== Gallery & edit ==============

@app.get("/images", response_model=List[ArtifactOut])
async def list_images(
    identity: Identity = Depends(get_current_identity),
    session: AsyncSession = Depends(get_db_session),
    blob_store: BlobStore = Depends(get_generated_blob_store),
):
    images = await ImageRepository(session).list_for_user(identity.user_id)
    return [
        ArtifactOut(
            id=image.id,
            prompt=image.prompt,
            storage_path=image.image_path,
            public_url=await blob_store.get_public_url(image.image_path),
        )
        for image in images
    ]


@app.post("/images/{image_id}/edit", response_model=ArtifactOut, status_code=201)
async def edit_image(
    image_id: str,
    body: EditCreate,
    identity: Identity = Depends(get_current_identity),
    session: AsyncSession = Depends(get_db_session),
    blob_store: BlobStore = Depends(get_generated_blob_store),
    orchestrator: EditOrchestrator = Depends(get_edit_orchestrator),
):
    image = await ImageRepository(session).get_by_id(image_id)
    if image is None or image.user_id != identity.user_id:
        raise HTTPException(status_code=404, detail="Image not found")

    source_url = await blob_store.get_public_url(image.image_path)
    artifact = await orchestrator.run(identity.user_id, source_url, body.prompt)

    return ArtifactOut(
        id=artifact.id,
        prompt=artifact.prompt,
        storage_path=artifact.storage_path,
        public_url=artifact.public_url,
    )


# ============== Batch generation ==============

@app.post("/generations", response_model=GenerationAccepted, status_code=202)
async def create_generation(
    body: GenerationCreate,
    identity: Identity = Depends(get_current_identity),
    session: AsyncSession = Depends(get_db_session),
    products_store: BlobStore = Depends(get_products_blob_store),
    queue: GenerationQueue = Depends(get_generation_queue),
):
    prompt = body.prompt.strip()
    if not prompt:
        raise InvalidRequestError("Please describe the image you want to create.")

    items: List[SourceItem] = []

    products = await ProductRepository(session).get_many(identity.user_id, body.product_ids)
    if len(products) != len(body.product_ids):
        raise HTTPException(status_code=404, detail="Product not found")
    for product in products:
        items.append(SourceItem(
            name=product.name,
            mime_type=product.mime_type,
            url=await products_store.get_public_url(product.image_path),
        ))

    for image in body.images:
        _check_image(image.mime_type, image.image_base64)
        items.append(SourceItem(
            name=image.name,
            image_base64=image.image_base64,
            mime_type=image.mime_type,
        ))

    cost = calculate_batch_cost(len(items))

    # Early feedback only; the worker's debit is the real gate
    balance = await BalanceLedger(session).get_balance(identity.user_id)
    if balance is None or balance < cost:
        raise ReservationFailedError(required=cost, available=balance)

    job_id = queue.submit(identity.user_id, prompt, [item.to_dict() for item in items])
    if job_id is None:
        raise GenerationInProgressError()

    return GenerationAccepted(job_id=job_id, cost=cost, total=max(len(items), 1))


@app.get("/generations/{job_id}", response_model=GenerationStatus)
async def get_generation(
    job_id: str,
    identity: Identity = Depends(get_current_identity),
    queue: GenerationQueue = Depends(get_generation_queue),
):
    state = queue.status(job_id, identity.user_id)
    if state is None:
        raise HTTPException(status_code=404, detail="Generation not found")

    status = GenerationStatus(
        job_id=state["job_id"],
        status=state["status"],
        progress=state.get("progress"),
    )

    result = state.get("result")
    if result:
        status.status = result["status"]
        if result["status"] == "done":
            status.cost = result["cost"]
            status.artifacts = [
                ArtifactOut(
                    id=a["id"],
                    prompt=a["prompt"],
                    storage_path=a["storage_path"],
                    public_url=a["public_url"],
                )
                for a in result["artifacts"]
            ]
        else:
            status.error = result["error"]
            status.error_type = result.get("error_type")
            status.refunded = result.get("refunded")

    return status


# ============== Prompt enhancement ==============

@app.post("/prompt/enhance", response_model=PromptEnhanceOut)
async def enhance_prompt(
    body: PromptEnhanceIn,
    identity: Identity = Depends(get_current_identity),
    enhancer: PromptEnhancer = Depends(get_prompt_enhancer),
):
    enhanced = await enhancer.enhance(body.prompt)
    return PromptEnhanceOut(prompt=enhanced)


# ============== Checkout ==============

@app.post("/checkout")
async def create_checkout(
    body: CheckoutCreate,
    identity: Identity = Depends(get_current_identity),
    session: AsyncSession = Depends(get_db_session),
):
    if body.package not in TOKEN_PACKAGES:
        raise HTTPException(status_code=400, detail="Unknown package")

    payment = PaymentService.create_payment(identity.user_id, body.package)
    if payment is None:
        raise HTTPException(status_code=502, detail="Checkout is unavailable, please try again later")

    await PaymentRepository(session).create(
        user_id=identity.user_id,
        yookassa_payment_id=payment["payment_id"],
        package=payment["package"],
        tokens_amount=payment["tokens"],
        amount_value=payment["amount"],
        status=payment["status"],
    )

    return {
        "payment_id": payment["payment_id"],
        "confirmation_url": payment["confirmation_url"],
        "tokens": payment["tokens"],
    }


@app.post("/yookassa/webhook")
async def yookassa_webhook(
    request: Request,
    session: AsyncSession = Depends(get_db_session),
):
    """
    Handle YooKassa payment notifications.

    Tokens are credited once, on the first transition to "succeeded".
    """
    try:
        data = await request.json()
    except ValueError:
        logger.warning("YooKassa webhook with invalid JSON body")
        return Response(status_code=200)

    payment_data = PaymentService.parse_webhook_notification(data)
    if not payment_data:
        return Response(status_code=200)

    payment_id = payment_data["payment_id"]
    logger.info(
        f"YooKassa payment {payment_id}: event={payment_data['event']}, "
        f"status={payment_data['status']}, paid={payment_data['paid']}"
    )

    payment = await PaymentRepository(session).get_by_yookassa_id(payment_id)
    if payment is None:
        logger.warning(f"Payment {payment_id} not found in database")
        return Response(status_code=200)

    old_status = payment.status
    payment.status = payment_data["status"] or old_status
    payment.paid = payment_data["paid"]

    if payment_data["event"] == "payment.succeeded" and payment.paid and old_status != "succeeded":
        # The credit commits the status change in the same transaction
        if not await BalanceLedger(session).credit(payment.user_id, payment.tokens_amount):
            logger.error(f"Could not credit tokens for payment {payment_id}")
            return Response(status_code=500)
        logger.info(
            f"Payment {payment_id} succeeded: added {payment.tokens_amount} tokens "
            f"to user {payment.user_id}"
        )
    else:
        await session.commit()

    return Response(status_code=200)


# ============== Admin ==============

@app.post("/admin/users/{user_id}/tokens", dependencies=[Depends(verify_admin_api_key)])
async def admin_adjust_tokens(
    user_id: str,
    body: TokenAdjustment,
    session: AsyncSession = Depends(get_db_session),
):
    """
    Add (positive amount) or remove (negative amount) tokens.

    Requires X-Admin-API-Key header.
    """
    if body.amount == 0:
        raise HTTPException(status_code=400, detail="Amount must not be zero")

    if await ProfileRepository(session).get_by_id(user_id) is None:
        raise HTTPException(status_code=404, detail="User not found")

    ledger = BalanceLedger(session)
    old_balance = await ledger.get_balance(user_id)

    if body.amount > 0:
        ok = await ledger.credit(user_id, body.amount)
    else:
        ok = await ledger.debit(user_id, -body.amount)
    if not ok:
        raise HTTPException(status_code=400, detail="Balance cannot go below zero")

    return {
        "user_id": user_id,
        "old_balance": old_balance,
        "change": body.amount,
        "new_balance": await ledger.get_balance(user_id),
    }
