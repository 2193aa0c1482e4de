# backend/lmsdb/apps/payments/gateway.py

"""
Thin client for a PayMongo-compatible checkout API.

Only two calls are used: create a checkout session and read one back. The
responses are returned as plain dicts; the helpers at the bottom pull out
the few fields the payment workflow cares about.

One gateway is built when the application starts and kept on
`app.state.payment_gateway`; requests reach it through `get_payment_gateway`.
"""

from __future__ import annotations

import base64
import json
import logging
import os
import urllib.error
import urllib.request
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional

from fastapi import Request, status

from lmsdb import errors

logger = logging.getLogger(__name__)

PAYMONGO_SECRET_KEY = os.getenv("PAYMONGO_SECRET_KEY")
PAYMONGO_BASE_URL = os.getenv("PAYMONGO_BASE_URL", "https://api.paymongo.com/v1")
PUBLIC_APP_URL = os.getenv("PUBLIC_APP_URL")
PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "PHP")
GATEWAY_TIMEOUT_SEC = int(os.getenv("PAYMENT_GATEWAY_TIMEOUT_SEC", "15"))

PAYMENT_METHOD_TYPES = ["card", "gcash", "paymaya", "grab_pay"]


class GatewayNotConfiguredError(errors.DomainError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "Payment gateway is not configured on the server."


class GatewayError(errors.DomainError):
    """The gateway answered with an error or could not be reached."""

    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = "Payment gateway request failed."


def to_minor_units(amount: Decimal) -> int:
    """Gateway amounts are integers in the currency's minor unit (centavos)."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class PayMongoGateway:
    def __init__(
        self,
        secret_key: str,
        *,
        base_url: str = PAYMONGO_BASE_URL,
        app_url: Optional[str] = PUBLIC_APP_URL,
        currency: str = PAYMENT_CURRENCY,
        timeout: int = GATEWAY_TIMEOUT_SEC,
    ) -> None:
        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.app_url = (app_url or "").rstrip("/")
        self.currency = currency
        self.timeout = timeout

    def _auth_header(self) -> str:
        token = base64.b64encode(self.secret_key.encode("utf-8")).decode("ascii")
        return f"Basic {token}"

    def _request(self, method: str, path: str, payload: Optional[dict] = None) -> Dict[str, Any]:
        data = json.dumps(payload).encode("utf-8") if payload is not None else None
        req = urllib.request.Request(f"{self.base_url}{path}", data=data, method=method)
        req.add_header("Accept", "application/json")
        req.add_header("Authorization", self._auth_header())
        if data is not None:
            req.add_header("Content-Type", "application/json")

        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                body = json.loads(resp.read().decode("utf-8") or "{}")
        except urllib.error.HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace")[:500]
            logger.warning(
                "Payment gateway returned an error",
                extra={"path": path, "status": exc.code, "body": detail},
            )
            raise GatewayError()
        except (urllib.error.URLError, TimeoutError, ValueError) as exc:
            logger.warning("Payment gateway unreachable", extra={"path": path, "error": str(exc)})
            raise GatewayError()

        if body.get("errors"):
            logger.warning("Payment gateway reported errors", extra={"path": path, "errors": body["errors"]})
            raise GatewayError()
        return body

    def create_checkout_session(
        self,
        *,
        amount: Decimal,
        name: str,
        course_id: str,
        metadata: Dict[str, str],
    ) -> Dict[str, Any]:
        if not self.app_url:
            raise GatewayNotConfiguredError()
        payload = {
            "data": {
                "attributes": {
                    "line_items": [
                        {
                            "currency": self.currency,
                            "amount": to_minor_units(amount),
                            "name": name,
                            "quantity": 1,
                        }
                    ],
                    "payment_method_types": PAYMENT_METHOD_TYPES,
                    "success_url": (
                        f"{self.app_url}/courses/{course_id}/purchase-success"
                        "?session_id={CHECKOUT_SESSION_ID}"
                    ),
                    "cancel_url": f"{self.app_url}/courses/{course_id}",
                    "description": f"Payment for course: {name}",
                    "metadata": metadata,
                }
            }
        }
        return self._request("POST", "/checkout_sessions", payload)

    def get_checkout_session(self, session_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/checkout_sessions/{session_id}")


def build_payment_gateway(secret_key: Optional[str] = PAYMONGO_SECRET_KEY) -> Optional[PayMongoGateway]:
    """Called once at startup; None when no secret key is configured."""
    if not secret_key:
        return None
    return PayMongoGateway(secret_key)


def get_payment_gateway(request: Request) -> Optional[PayMongoGateway]:
    return getattr(request.app.state, "payment_gateway", None)


# ---------------------------------------------------------------------------
# Response helpers
# ---------------------------------------------------------------------------


def _attributes(session: Dict[str, Any]) -> Dict[str, Any]:
    attributes = (session.get("data") or {}).get("attributes")
    if not isinstance(attributes, dict):
        raise GatewayError("Invalid response structure from payment gateway.")
    return attributes


def session_id(session: Dict[str, Any]) -> str:
    value = (session.get("data") or {}).get("id")
    if not value:
        raise GatewayError("Invalid response structure from payment gateway.")
    return value


def checkout_url(session: Dict[str, Any]) -> str:
    url = _attributes(session).get("checkout_url")
    if not url:
        raise GatewayError("Invalid response structure from payment gateway.")
    return url


def _payment_status(payment: Dict[str, Any]) -> Optional[str]:
    # Embedded payments show up either flat or wrapped in a `data` envelope.
    attributes = payment.get("attributes") or (payment.get("data") or {}).get("attributes") or {}
    return attributes.get("status")


def has_paid_payment(session: Dict[str, Any]) -> bool:
    payments: List[Dict[str, Any]] = _attributes(session).get("payments") or []
    return any(_payment_status(payment) == "paid" for payment in payments)


def session_metadata(session: Dict[str, Any]) -> Dict[str, Any]:
    return _attributes(session).get("metadata") or {}
