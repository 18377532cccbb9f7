"""
Paystack Payment Provider
=========================

Concrete implementation of GatewayInterface over the Paystack REST API.
"""

import hashlib
import hmac
import logging
from typing import Any, Dict, Optional

import requests
from django.conf import settings
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from utils.logging_utils import mask_value

from .interface import (
    ChargeInit,
    ChargeVerification,
    GatewayException,
    GatewayInterface,
    GatewayTimeout,
    RefundResult,
    TransferResult,
)

logger = logging.getLogger(__name__)


class PaystackProvider(GatewayInterface):
    """
    Paystack gateway implementation.

    Configuration (in settings.py):
        PAYSTACK_SECRET_KEY: Secret API key, also the webhook signing key
        PAYSTACK_BASE_URL: API base URL
        GATEWAY_TIMEOUT_SECONDS: Per-request timeout
    """

    def __init__(self, secret_key: Optional[str] = None, base_url: Optional[str] = None, timeout: Optional[int] = None):
        self.secret_key = (secret_key or getattr(settings, "PAYSTACK_SECRET_KEY", "")).strip()
        self.base_url = (base_url or getattr(settings, "PAYSTACK_BASE_URL", "https://api.paystack.co")).rstrip("/")
        self.timeout = timeout or getattr(settings, "GATEWAY_TIMEOUT_SECONDS", 20)
        self.session = requests.Session()

        if not self.secret_key:
            logger.warning("PAYSTACK_SECRET_KEY not configured")

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.secret_key}", "Content-Type": "application/json"}

    def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Issue one API call and return the ``data`` object of a successful envelope."""
        if not self.secret_key:
            raise GatewayException("PAYSTACK_SECRET_KEY not set")

        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, headers=self._headers(), json=payload, timeout=self.timeout)
        except requests.Timeout as e:
            raise GatewayTimeout(f"{method} {path} timed out after {self.timeout}s") from e
        except requests.RequestException as e:
            raise GatewayException(f"{method} {path} failed: {e}") from e

        try:
            body = response.json() if response.content else {}
        except ValueError:
            body = {}

        if 200 <= response.status_code < 300 and body.get("status") is True:
            return body.get("data") or {}
        raise GatewayException(body.get("message") or f"HTTP {response.status_code}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(GatewayTimeout),
        reraise=True,
    )
    def _get_with_retry(self, path: str) -> Dict[str, Any]:
        """Internal read with retries (safe: GETs have no side effects)."""
        return self._request("GET", path)

    def init_charge(
        self,
        amount_minor: int,
        currency: str,
        reference: str,
        email: str,
        metadata: Optional[Dict[str, Any]] = None,
        callback_url: Optional[str] = None,
    ) -> ChargeInit:
        payload = {
            "email": email,
            "amount": int(amount_minor),
            "currency": currency.upper(),
            "reference": reference,
            "metadata": metadata or {},
        }
        if callback_url:
            payload["callback_url"] = callback_url

        logger.info(f"Initializing charge {reference} for {mask_value(email)} ({amount_minor} {currency})")
        data = self._request("POST", "/transaction/initialize", payload)
        return ChargeInit(
            authorization_url=data.get("authorization_url", ""),
            reference=data.get("reference", reference),
            access_code=data.get("access_code", ""),
        )

    def verify_charge(self, reference: str) -> ChargeVerification:
        data = self._get_with_retry(f"/transaction/verify/{reference}")
        return ChargeVerification(
            reference=data.get("reference", reference),
            status=data.get("status", "unknown"),
            amount_minor=int(data.get("amount") or 0),
            currency=(data.get("currency") or "").upper(),
            raw=data,
        )

    def transfer(
        self,
        amount_minor: int,
        currency: str,
        recipient_id: str,
        reason: str,
        reference: Optional[str] = None,
    ) -> TransferResult:
        payload = {
            "source": "balance",
            "amount": int(amount_minor),
            "currency": currency.upper(),
            "recipient": recipient_id,
            "reason": reason,
        }
        if reference:
            payload["reference"] = reference

        try:
            data = self._request("POST", "/transfer", payload)
        except GatewayTimeout as e:
            logger.error(f"Transfer to {mask_value(recipient_id)} timed out: {e}")
            return TransferResult(success=False, error=str(e), timed_out=True)
        except GatewayException as e:
            logger.error(f"Transfer to {mask_value(recipient_id)} failed: {e}")
            return TransferResult(success=False, error=str(e))

        return TransferResult(
            success=True,
            transfer_reference=data.get("transfer_code") or data.get("reference") or reference or "",
        )

    def refund(self, payment_reference: str, amount_minor: int, reason: str) -> RefundResult:
        payload = {"transaction": payment_reference, "amount": int(amount_minor), "merchant_note": reason}
        try:
            data = self._request("POST", "/refund", payload)
        except GatewayTimeout as e:
            logger.error(f"Refund for {payment_reference} timed out: {e}")
            return RefundResult(success=False, error=str(e), timed_out=True)
        except GatewayException as e:
            logger.error(f"Refund for {payment_reference} failed: {e}")
            return RefundResult(success=False, error=str(e))

        return RefundResult(success=True, refund_reference=str(data.get("id") or data.get("reference") or ""))

    def verify_webhook_signature(self, payload: bytes, signature: Optional[str]) -> bool:
        if not self.secret_key or not signature:
            return False
        digest = hmac.new(self.secret_key.encode("utf-8"), payload, hashlib.sha512).hexdigest()
        return hmac.compare_digest(digest, signature.strip())
