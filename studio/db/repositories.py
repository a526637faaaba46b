"""Repository classes for database CRUD operations."""

from typing import Optional, List, Sequence

from sqlalchemy import select, desc, delete, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from studio.config import config
from studio.db.models import Profile, Product, GeneratedImage, Payment


class ProfileRepository:
    """Repository for Profile CRUD operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, user_id: str) -> Optional[Profile]:
        """Get profile by identity-provider user ID."""
        result = await self.session.execute(
            select(Profile).where(Profile.id == user_id)
        )
        return result.scalar_one_or_none()

    async def get_or_create(
        self,
        user_id: str,
        username: Optional[str] = None,
        full_name: Optional[str] = None,
    ) -> tuple[Profile, bool]:
        """
        Get existing profile or create a new one.

        Returns:
            Tuple of (profile, created) where created is True if a new profile was created.
        """
        profile = await self.get_by_id(user_id)

        if profile is not None:
            return profile, False

        # New accounts start with the configured welcome balance
        profile = Profile(
            id=user_id,
            username=username,
            full_name=full_name,
            token_balance=config.initial_tokens,
        )
        self.session.add(profile)
        try:
            await self.session.commit()
        except IntegrityError:
            # A concurrent request created the profile first
            await self.session.rollback()
            return await self.get_by_id(user_id), False
        await self.session.refresh(profile)

        return profile, True


class ProductRepository:
    """Repository for Product CRUD operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        user_id: str,
        name: str,
        mime_type: str,
        image_path: str,
        is_logo: bool = False,
    ) -> Product:
        """Record an uploaded product or logo."""
        product = Product(
            user_id=user_id,
            name=name,
            mime_type=mime_type,
            image_path=image_path,
            is_logo=is_logo,
        )
        self.session.add(product)
        await self.session.commit()
        await self.session.refresh(product)

        return product

    async def list_for_user(self, user_id: str) -> List[Product]:
        """Get user's products in upload order (oldest first)."""
        result = await self.session.execute(
            select(Product)
            .where(Product.user_id == user_id)
            .order_by(Product.created_at)
        )
        return list(result.scalars().all())

    async def count_for_user(self, user_id: str, is_logo: bool = False) -> int:
        """Count the user's products (or logos)."""
        result = await self.session.execute(
            select(func.count())
            .select_from(Product)
            .where(Product.user_id == user_id)
            .where(Product.is_logo == is_logo)
        )
        return result.scalar_one()

    async def get_logo(self, user_id: str) -> Optional[Product]:
        """Get the user's logo, if one was uploaded."""
        result = await self.session.execute(
            select(Product)
            .where(Product.user_id == user_id)
            .where(Product.is_logo.is_(True))
            .order_by(desc(Product.created_at))
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def delete(self, product: Product) -> None:
        await self.session.delete(product)
        await self.session.commit()

    async def get_many(self, user_id: str, product_ids: Sequence[str]) -> List[Product]:
        """
        Get the user's products with the given IDs.

        The result follows the order of ``product_ids``; unknown IDs and
        products owned by someone else are skipped.
        """
        if not product_ids:
            return []
        result = await self.session.execute(
            select(Product)
            .where(Product.user_id == user_id)
            .where(Product.id.in_(product_ids))
        )
        by_id = {product.id: product for product in result.scalars().all()}
        return [by_id[pid] for pid in product_ids if pid in by_id]

    async def delete_for_user(self, user_id: str) -> int:
        """Delete the user's product rows, keeping the logo. Returns the number removed."""
        result = await self.session.execute(
            delete(Product)
            .where(Product.user_id == user_id)
            .where(Product.is_logo.is_(False))
        )
        await self.session.commit()
        return result.rowcount or 0


class ImageRepository:
    """Repository for GeneratedImage CRUD operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, user_id: str, prompt: str, image_path: str) -> GeneratedImage:
        """Insert the metadata row for a generated image."""
        image = GeneratedImage(
            user_id=user_id,
            prompt=prompt,
            image_path=image_path,
        )
        self.session.add(image)
        await self.session.commit()
        await self.session.refresh(image)

        return image

    async def get_by_id(self, image_id: str) -> Optional[GeneratedImage]:
        """Get generated image by ID."""
        result = await self.session.execute(
            select(GeneratedImage).where(GeneratedImage.id == image_id)
        )
        return result.scalar_one_or_none()

    async def list_for_user(
        self,
        user_id: str,
        limit: Optional[int] = None,
    ) -> List[GeneratedImage]:
        """
        Get user's gallery.

        Args:
            user_id: Owner's ID
            limit: Maximum number of images to return (all when None)

        Returns:
            List of GeneratedImage ordered by created_at descending
        """
        query = (
            select(GeneratedImage)
            .where(GeneratedImage.user_id == user_id)
            .order_by(desc(GeneratedImage.created_at))
        )
        if limit is not None:
            query = query.limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars().all())


class PaymentRepository:
    """Repository for Payment CRUD operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        user_id: str,
        yookassa_payment_id: str,
        package: str,
        tokens_amount: int,
        amount_value: str,
        status: str = "pending",
    ) -> Payment:
        """Record a payment created in YooKassa."""
        payment = Payment(
            user_id=user_id,
            yookassa_payment_id=yookassa_payment_id,
            package=package,
            tokens_amount=tokens_amount,
            amount_value=amount_value,
            status=status,
        )
        self.session.add(payment)
        await self.session.commit()
        await self.session.refresh(payment)

        return payment

    async def get_by_yookassa_id(self, yookassa_payment_id: str) -> Optional[Payment]:
        """Get payment by YooKassa payment ID."""
        result = await self.session.execute(
            select(Payment).where(Payment.yookassa_payment_id == yookassa_payment_id)
        )
        return result.scalar_one_or_none()
