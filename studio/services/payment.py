"""YooKassa payment service for token bundle purchases."""

import logging
import uuid
from typing import Optional, Dict, Any

from yookassa import Configuration, Payment

from studio.config import config

logger = logging.getLogger(__name__)


TOKEN_PACKAGES: Dict[str, Dict[str, Any]] = {
    "basic": {"name": "Basic", "tokens": 500, "price": "29.90"},
    "pro": {"name": "Professional", "tokens": 1000, "price": "49.90"},
    "premium": {"name": "Premium", "tokens": 1500, "price": "89.90"},
    "pack": {"name": "Token pack", "tokens": 400, "price": "35.00"},
}


def init_yookassa():
    """Initialize YooKassa SDK with credentials."""
    if config.yookassa_shop_id and config.yookassa_secret_key:
        Configuration.account_id = config.yookassa_shop_id
        Configuration.secret_key = config.yookassa_secret_key
        logger.info("YooKassa SDK initialized")
    else:
        logger.warning("YooKassa credentials not configured")


class PaymentService:
    """Service for creating YooKassa payments and reading their notifications."""

    @staticmethod
    def is_configured() -> bool:
        """Check if YooKassa is properly configured."""
        return bool(config.yookassa_shop_id and config.yookassa_secret_key)

    @staticmethod
    def create_payment(user_id: str, package_key: str) -> Optional[Dict[str, Any]]:
        """
        Create a hosted checkout for a token bundle.

        Args:
            user_id: Profile ID of the buyer
            package_key: Key in TOKEN_PACKAGES

        Returns:
            Dict with payment_id, confirmation_url, amount, tokens, package, status
            or None if failed
        """
        if not PaymentService.is_configured():
            logger.error("YooKassa not configured")
            return None

        package = TOKEN_PACKAGES.get(package_key)
        if package is None:
            logger.error(f"Unknown package: {package_key}")
            return None

        idempotence_key = str(uuid.uuid4())

        try:
            payment = Payment.create({
                "amount": {
                    "value": package["price"],
                    "currency": config.payment_currency,
                },
                "confirmation": {
                    "type": "redirect",
                    "return_url": config.yookassa_return_url,
                },
                "capture": True,
                "description": f"{package['name']} ({package['tokens']} tokens)",
                "metadata": {
                    "user_id": user_id,
                    "package": package_key,
                    "tokens": package["tokens"],
                },
            }, idempotence_key)
        except Exception as e:
            logger.error(f"Failed to create payment: {e}")
            return None

        logger.info(f"Created payment {payment.id} for user {user_id}, package {package_key}")

        return {
            "payment_id": payment.id,
            "confirmation_url": payment.confirmation.confirmation_url,
            "amount": package["price"],
            "tokens": package["tokens"],
            "package": package_key,
            "status": payment.status,
        }

    @staticmethod
    def parse_webhook_notification(data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Parse webhook notification from YooKassa.

        Returns:
            Parsed payment data or None if invalid
        """
        event = data.get("event")
        obj = data.get("object") or {}

        if not event or not obj or not obj.get("id"):
            logger.warning("Invalid webhook data: missing event or object")
            return None

        metadata = obj.get("metadata") or {}

        return {
            "event": event,
            "payment_id": obj["id"],
            "status": obj.get("status"),
            "paid": bool(obj.get("paid", False)),
            "user_id": metadata.get("user_id"),
            "package": metadata.get("package"),
            "amount": (obj.get("amount") or {}).get("value"),
        }


# Initialize on module load
init_yookassa()
