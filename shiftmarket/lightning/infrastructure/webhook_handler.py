"""Wallet webhook handler for buyer payment notifications.

The wallet can push ``invoice.settled`` events::

    {"type": "invoice.settled", "data": {"payment_hash": "...", "settled_at": ...}}

Applying one marks the matching Payment paid, the same transition a status
check performs. Polling remains the canonical confirmation path; webhooks only
shorten the wait.
"""

import hashlib
import hmac
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from shiftmarket.exceptions import PaymentNotFoundError
from shiftmarket.utils.logging import get_logger

if TYPE_CHECKING:
    from shiftmarket.lightning.application.services.payment_service import (
        PaymentLifecycleManager,
    )

logger = get_logger(__name__)

SIGNATURE_HEADER = "X-Webhook-Signature"


def sign_payload(secret: str, body: bytes) -> str:
    """HMAC-SHA256 hex signature of a raw webhook body."""
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


class WalletWebhookHandler:
    """Handles wallet webhook notifications."""

    def __init__(
        self, payment_service: "PaymentLifecycleManager", webhook_secret: str | None = None
    ):
        """Initialize the webhook handler.

        Args:
            payment_service: Service that owns Payment transitions
            webhook_secret: Secret for signature verification (disabled if None)
        """
        self.payment_service = payment_service
        self.webhook_secret = webhook_secret

    async def handle_webhook(self, request: Request) -> JSONResponse:
        """Handle an incoming webhook request.

        Raises:
            HTTPException: 401 on a bad signature, 400 on an unreadable payload
        """
        body = await request.body()
        if self.webhook_secret:
            self._verify_signature(request.headers.get(SIGNATURE_HEADER), body)

        try:
            payload = await request.json()
        except ValueError as e:
            raise HTTPException(status_code=400, detail="Invalid JSON payload") from e

        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Webhook payload must be an object")

        processed = await self.process_event(payload)
        return JSONResponse(content={"received": True, "processed": processed}, status_code=200)

    def _verify_signature(self, signature: str | None, body: bytes) -> None:
        assert self.webhook_secret is not None

        if not signature:
            raise HTTPException(status_code=401, detail="Missing webhook signature")

        expected = sign_payload(self.webhook_secret, body)
        if not hmac.compare_digest(signature, expected):
            logger.warning("webhook_signature_invalid")
            raise HTTPException(status_code=401, detail="Invalid webhook signature")

    async def process_event(self, payload: dict[str, Any]) -> bool:
        """Apply one webhook event. Returns True if a Payment was updated."""
        event_type = payload.get("type") or payload.get("event_type")
        logger.info("webhook_received", event_type=event_type)

        if event_type != "invoice.settled":
            return False

        data = payload.get("data")
        payment_hash = data.get("payment_hash") if isinstance(data, dict) else None
        if not isinstance(payment_hash, str) or not payment_hash:
            logger.warning("webhook_missing_payment_hash", event_type=event_type)
            return False

        try:
            payment = await self.payment_service.confirm_paid(payment_hash)
        except PaymentNotFoundError:
            logger.warning("webhook_unknown_payment", payment_hash=payment_hash[:16])
            return False

        logger.info(
            "webhook_payment_confirmed",
            payment_hash=payment_hash[:16],
            status=payment.status.value,
        )
        return True

    async def health_check(self) -> dict[str, Any]:
        """Health status for the webhook endpoint."""
        return {
            "status": "healthy",
            "webhook_secret_configured": self.webhook_secret is not None,
            "timestamp": datetime.now(UTC).isoformat(),
        }


def create_webhook_router(handler: WalletWebhookHandler) -> APIRouter:
    """Create a FastAPI router exposing the webhook endpoint.

    Routes:
        POST /webhooks/wallet
        GET  /webhooks/health
    """
    router = APIRouter(prefix="/webhooks", tags=["webhooks"])

    @router.post("/wallet")
    async def wallet_webhook(request: Request) -> JSONResponse:
        return await handler.handle_webhook(request)

    @router.get("/health")
    async def webhook_health() -> dict[str, Any]:
        return await handler.health_check()

    return router
