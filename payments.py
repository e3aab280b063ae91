import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

import requests
from fastapi import HTTPException, Request

from database import utcnow

logger = logging.getLogger(__name__)


class PaymentGatewayError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TransactionNotFound(PaymentGatewayError):
    pass


class PaystackClient:
    """Minimal Paystack REST client, only what checkout needs."""

    def __init__(self, secret_key: str, base_url: str = "https://api.paystack.co",
                 timeout: float = 15, session: Optional[requests.Session] = None):
        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

    def verify_transaction(self, reference: str) -> Dict[str, Any]:
        try:
            response = self.session.get(
                f"{self.base_url}/transaction/verify/{reference}",
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise PaymentGatewayError(f"Payment gateway unreachable: {exc}") from exc

        if response.status_code == 404:
            raise TransactionNotFound("Transaction not found", 404)
        if response.status_code != 200:
            logger.error("Paystack verify failed (%s): %s", response.status_code, response.text[:200])
            raise PaymentGatewayError("Payment verification failed", response.status_code)
        return response.json().get("data") or {}

    def close(self) -> None:
        self.session.close()


def get_payment_gateway(request: Request):
    gateway = getattr(request.app.state, "payment_gateway", None)
    if gateway is None:
        logger.error("PAYSTACK_SECRET_KEY is not set")
        raise HTTPException(status_code=500, detail="Payment gateway configuration error")
    return gateway


def payment_data(data: Dict[str, Any]) -> Dict[str, Any]:
    authorization = data.get("authorization") or {}
    return {
        # Paystack amounts are in the minor unit (kobo)
        "amount": (data.get("amount") or 0) / 100,
        "currency": data.get("currency"),
        "channel": data.get("channel"),
        "cardType": authorization.get("card_type", ""),
        "bank": authorization.get("bank", ""),
        "last4": authorization.get("last4", ""),
    }


def build_download_links(files: List[Dict[str, Any]], expiration_hours: int = 24) -> List[Dict[str, Any]]:
    expires_at = utcnow() + timedelta(hours=expiration_hours)
    return [
        {
            "fileId": f.get("id"),
            "fileName": f.get("fileName"),
            "fileSize": f.get("fileSize"),
            "fileType": f.get("fileType"),
            "downloadUrl": f["fileUrl"],
            "expiresAt": expires_at,
        }
        for f in files
        if f.get("fileUrl")
    ]
