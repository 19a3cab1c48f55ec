"""
This module provides the communication client for the eSewa payment gateway:
- Payment form submission (form-encoded POST, redirect to the hosted payment page)
- Transaction status check (GET, JSON)
Both calls run with a bounded timeout; transport and protocol failures are
raised as GatewayError.
"""

import logging
from typing import Optional
from urllib.parse import urlencode

import httpx
from pydantic import ValidationError

from .config import Settings
from .errors import GatewayError
from .models import GatewayPayload, StatusResponse

log = logging.getLogger(__name__)

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


class GatewayClient:
    """
    Client for the eSewa gateway (REST/form API).
    Handles payment initiation and status checks and their error responses.
    """
    def __init__(self, settings: Settings, transport: Optional[httpx.BaseTransport] = None):
        """
        Initializes the HTTP client with proper timeout configuration.
        Redirects are not followed: the redirect target is what the storefront needs.
        """
        self.payment_url = settings.payment_url
        self.status_check_url = settings.status_check_url
        timeout_config = httpx.Timeout(settings.connect_timeout, read=settings.read_timeout)
        self.client = httpx.Client(timeout=timeout_config, transport=transport, follow_redirects=False)

    def close(self):
        """Closes the HTTP client session."""
        self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def build_redirect_url(self, payload: GatewayPayload) -> str:
        """URL the storefront can open itself when the gateway answers without a redirect."""
        return f"{self.payment_url}?{urlencode(payload.form_fields())}"

    def initiate(self, payload: GatewayPayload) -> str:
        """
        Submits the signed payment form to the gateway.
        Args:
            payload (GatewayPayload): Signed form fields.
        Returns:
            str: The gateway redirect target, or a client-constructible equivalent URL.
        Raises:
            GatewayError: On transport failure, timeout or a non-2xx/3xx response.
        """
        log_prefix = f"[Txn: {payload.transaction_uuid}]"
        body = urlencode(payload.form_fields())
        try:
            response = self.client.post(
                self.payment_url,
                content=body,
                headers={"Content-Type": FORM_CONTENT_TYPE},
            )
        except httpx.TimeoutException as e:
            log.error(f"{log_prefix} Gateway Timeout beim Initiieren der Zahlung.")
            raise GatewayError("payment gateway timed out") from e
        except httpx.HTTPError as e:
            log.error(f"{log_prefix} Gateway nicht erreichbar: {e}")
            raise GatewayError(f"payment gateway unreachable: {e}") from e

        if response.is_redirect:
            location = response.headers.get("Location")
            if location:
                return str(response.url.join(location))

        if not response.is_success:
            log.error(f"{log_prefix} Gateway antwortete mit HTTP {response.status_code}.")
            raise GatewayError(
                f"payment gateway returned status {response.status_code}: {response.text}",
                gateway_status=response.status_code,
                body=response.text,
            )

        return self.build_redirect_url(payload)

    def check_status(self, transaction_uuid: str, product_code: str, total_amount: str) -> StatusResponse:
        """
        Queries the gateway's status-check endpoint.
        Returns:
            StatusResponse: The parsed gateway answer, unchanged.
        Raises:
            GatewayError: On transport failure, a non-2xx response or an undecodable body.
        """
        log_prefix = f"[Txn: {transaction_uuid}]"
        params = {
            "product_code": product_code,
            "total_amount": total_amount,
            "transaction_uuid": transaction_uuid,
        }
        try:
            response = self.client.get(self.status_check_url, params=params)
            response.raise_for_status()
            return StatusResponse.model_validate(response.json())
        except httpx.HTTPStatusError as e:
            log.error(f"{log_prefix} Statusabfrage fehlgeschlagen (HTTP {e.response.status_code}).")
            raise GatewayError(
                f"status check returned status {e.response.status_code}",
                gateway_status=e.response.status_code,
                body=e.response.text,
            ) from e
        except httpx.HTTPError as e:
            log.error(f"{log_prefix} Statusabfrage nicht möglich: {e}")
            raise GatewayError(f"failed to check payment status: {e}") from e
        except (ValueError, ValidationError) as e:
            log.error(f"{log_prefix} Antwort der Statusabfrage nicht lesbar: {e}")
            raise GatewayError(f"failed to parse status response: {e}") from e
