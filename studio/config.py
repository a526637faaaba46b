"""Application configuration loaded from environment variables."""

import os
from dataclasses import dataclass
from dotenv import load_dotenv

load_dotenv()


@dataclass
class Config:
    """Application configuration."""

    # Database
    database_url: str

    # Redis
    redis_url: str

    # OpenAI
    openai_api_key: str
    image_model: str
    prompt_model: str

    # Supabase (storage + auth)
    supabase_url: str
    supabase_key: str
    generated_bucket: str
    products_bucket: str

    # YooKassa
    yookassa_shop_id: str
    yookassa_secret_key: str
    yookassa_return_url: str
    payment_currency: str

    # App settings
    initial_tokens: int
    max_products: int
    max_upload_bytes: int
    admin_api_key: str
    generation_lock_ttl: int
    log_level: str


def load_config() -> Config:
    """Load configuration from environment variables."""
    return Config(
        database_url=os.getenv("DATABASE_URL", ""),
        redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
        openai_api_key=os.getenv("OPENAI_API_KEY", ""),
        image_model=os.getenv("IMAGE_MODEL", "gpt-image-1"),
        prompt_model=os.getenv("PROMPT_MODEL", "gpt-4o-mini"),
        supabase_url=os.getenv("SUPABASE_URL", ""),
        supabase_key=os.getenv("SUPABASE_KEY", ""),
        generated_bucket=os.getenv("GENERATED_BUCKET", "generated_images"),
        products_bucket=os.getenv("PRODUCTS_BUCKET", "products"),
        yookassa_shop_id=os.getenv("YOOKASSA_SHOP_ID", ""),
        yookassa_secret_key=os.getenv("YOOKASSA_SECRET_KEY", ""),
        yookassa_return_url=os.getenv("YOOKASSA_RETURN_URL", ""),
        payment_currency=os.getenv("PAYMENT_CURRENCY", "RUB"),
        initial_tokens=int(os.getenv("INITIAL_TOKENS", "20")),
        max_products=int(os.getenv("MAX_PRODUCTS", "7")),
        max_upload_bytes=int(os.getenv("MAX_UPLOAD_BYTES", str(2 * 1024 * 1024))),
        admin_api_key=os.getenv("ADMIN_API_KEY", ""),
        # Upper bound for one batch; the latch expires even if a worker dies
        generation_lock_ttl=int(os.getenv("GENERATION_LOCK_TTL", "900")),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )


# Global config instance
config = load_config()
