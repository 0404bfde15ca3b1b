"""
Configuration management for the storefront application.
Loads settings from environment variables and AWS Secrets Manager.
"""
import os
import json
import logging
from decimal import Decimal
from typing import List, Optional

import boto3

logger = logging.getLogger(__name__)


def _default_pin_codes() -> List[str]:
    """Kochi PIN codes 682001-682032"""
    return [f"6820{n:02d}" for n in range(1, 33)]


class Config:
    """Application configuration"""

    # Application settings
    APP_PORT: int = int(os.getenv("APP_PORT", "8000"))
    PROJECT_NAME: str = os.getenv("PROJECT_NAME", "ecfresh-storefront")
    REGION: str = os.getenv("REGION", "ap-south-1")

    # Backend selection: "memory" keeps everything in-process, "redis" persists,
    # "offline" has no identity or order store and places guest orders only
    STORE_BACKEND: str = os.getenv("STORE_BACKEND", "memory")
    STORAGE_NAMESPACE: str = os.getenv("STORAGE_NAMESPACE", "ecfresh")

    # Redis settings
    REDIS_HOST: str = os.getenv("REDIS_HOST", "localhost")
    REDIS_PORT: int = int(os.getenv("REDIS_PORT", "6379"))
    REDIS_AUTH_TOKEN: Optional[str] = os.getenv("REDIS_AUTH_TOKEN")
    REDIS_DB: int = int(os.getenv("REDIS_DB", "0"))
    REDIS_SSL: bool = os.getenv("REDIS_SSL", "false").lower() == "true"

    # Redis connection settings
    REDIS_SOCKET_CONNECT_TIMEOUT: int = 5
    REDIS_SOCKET_TIMEOUT: int = 5
    REDIS_RETRY_ON_TIMEOUT: bool = True
    REDIS_MAX_CONNECTIONS: int = 50

    # Pricing settings
    FREE_DELIVERY_THRESHOLD: Decimal = Decimal(os.getenv("FREE_DELIVERY_THRESHOLD", "500"))
    DELIVERY_FEE: Decimal = Decimal(os.getenv("DELIVERY_FEE", "40"))
    LOYALTY_ACCRUAL_RATE: Decimal = Decimal(os.getenv("LOYALTY_ACCRUAL_RATE", "0.10"))
    LOYALTY_UNLOCK_TARGET: Decimal = Decimal(os.getenv("LOYALTY_UNLOCK_TARGET", "3000"))
    LOYALTY_UNLOCK_REWARD: Decimal = Decimal(os.getenv("LOYALTY_UNLOCK_REWARD", "300"))

    # Delivery settings
    DELIVERY_WINDOW_DAYS: int = int(os.getenv("DELIVERY_WINDOW_DAYS", "3"))
    PREPARATION_CUTOFF_HOUR: int = int(os.getenv("PREPARATION_CUTOFF_HOUR", "14"))  # 2 PM
    SUPPORTED_PIN_CODES: List[str] = [
        p.strip() for p in os.getenv("SUPPORTED_PIN_CODES", "").split(",") if p.strip()
    ] or _default_pin_codes()

    # Checkout settings
    COLLABORATOR_TIMEOUT_SECONDS: float = float(os.getenv("COLLABORATOR_TIMEOUT_SECONDS", "10"))

    @classmethod
    def load_redis_secrets(cls) -> None:
        """Load Redis authentication token from AWS Secrets Manager"""
        if cls.REDIS_AUTH_TOKEN:
            return  # Already loaded from environment

        secret_name = os.getenv("REDIS_SECRET_NAME")
        if not secret_name:
            return  # No secret name provided, use no auth

        try:
            client = boto3.client("secretsmanager", region_name=cls.REGION)
            response = client.get_secret_value(SecretId=secret_name)
            secret_data = json.loads(response["SecretString"])

            cls.REDIS_AUTH_TOKEN = secret_data.get("auth_token")
            if "endpoint" in secret_data:
                cls.REDIS_HOST = secret_data["endpoint"]
        except Exception as e:
            logger.warning(f"Could not load Redis secrets from Secrets Manager: {e}")
            # Continue without auth token (may fail on connection)


# Load secrets at module import
Config.load_redis_secrets()
