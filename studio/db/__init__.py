"""Database module for the product photo studio."""

from studio.db.database import Base, get_session_maker, get_engine, init_db, close_db
from studio.db.models import Profile, Product, GeneratedImage, Payment
from studio.db.repositories import (
    ProfileRepository,
    ProductRepository,
    ImageRepository,
    PaymentRepository,
)

__all__ = [
    "Base",
    "get_session_maker",
    "get_engine",
    "init_db",
    "close_db",
    "Profile",
    "Product",
    "GeneratedImage",
    "Payment",
    "ProfileRepository",
    "ProductRepository",
    "ImageRepository",
    "PaymentRepository",
]
