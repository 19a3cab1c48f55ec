"""
config.py — Environment-sourced configuration

All gateway settings are a hard dependency of the checkout pipeline. They are
read from the environment once, at startup, and validated before the
application accepts traffic.
"""

import os
from typing import Mapping, Optional

from pydantic import BaseModel, Field

from .errors import ConfigurationError

SUCCESS_PATH = "/products/checkout/payment/success"
FAILURE_PATH = "/products/checkout/payment/failed"

REQUIRED_VARIABLES = (
    "ESEWA_MERCHANT_CODE",
    "ESEWA_SECRET_KEY",
    "ESEWA_PAYMENT_URL",
    "ESEWA_PAYMENT_STATUS_CHECK_URL",
    "FRONTEND_URL",
)


class Settings(BaseModel):
    """
    Validated runtime configuration.

    Attributes:
        merchant_code (str): Gateway product code of the merchant (e.g. 'EPAYTEST').
        secret_key (str): HMAC key shared with the gateway.
        payment_url (str): Gateway form endpoint.
        status_check_url (str): Gateway status-check endpoint.
        frontend_url (str): Storefront base URL, used for the redirect targets.
        database_url (str): SQLAlchemy URL of the payment/order/product database.
        redis_url (str): Redis URL of the cart store.
        connect_timeout (float): Gateway connect timeout in seconds.
        read_timeout (float): Gateway read timeout in seconds.
    """
    merchant_code: str = Field(..., min_length=1)
    secret_key: str = Field(..., min_length=1)
    payment_url: str = Field(..., min_length=1)
    status_check_url: str = Field(..., min_length=1)
    frontend_url: str = Field(..., min_length=1)
    database_url: str = "sqlite:///./checkout.db"
    redis_url: str = "redis://localhost:6379/0"
    connect_timeout: float = Field(5.0, gt=0)
    read_timeout: float = Field(8.0, gt=0)

    @property
    def success_url(self) -> str:
        return self.frontend_url.rstrip("/") + SUCCESS_PATH

    @property
    def failure_url(self) -> str:
        return self.frontend_url.rstrip("/") + FAILURE_PATH


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Builds Settings from the environment.

    Raises:
        ConfigurationError: If a required variable is missing or a value is invalid.
    """
    env = os.environ if environ is None else environ

    missing = [name for name in REQUIRED_VARIABLES if not env.get(name)]
    if missing:
        raise ConfigurationError(f"missing required environment variables: {', '.join(missing)}")

    values = {
        "merchant_code": env["ESEWA_MERCHANT_CODE"],
        "secret_key": env["ESEWA_SECRET_KEY"],
        "payment_url": env["ESEWA_PAYMENT_URL"],
        "status_check_url": env["ESEWA_PAYMENT_STATUS_CHECK_URL"],
        "frontend_url": env["FRONTEND_URL"],
    }
    optional = {
        "database_url": "DATABASE_URL",
        "redis_url": "REDIS_URL",
        "connect_timeout": "GATEWAY_CONNECT_TIMEOUT",
        "read_timeout": "GATEWAY_READ_TIMEOUT",
    }
    for field, name in optional.items():
        if env.get(name):
            values[field] = env[name]

    try:
        return Settings(**values)
    except ValueError as e:
        raise ConfigurationError(f"invalid configuration: {e}") from e
