from __future__ import annotations

import logging
import secrets
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional
from urllib.parse import quote

from app.core import clock, config

logger = logging.getLogger(__name__)

INTENT_PENDING = "pending"
INTENT_COMPLETED = "completed"
INTENT_FAILED = "failed"
INTENT_REFUNDED = "refunded"
INTENT_CANCELLED = "cancelled"


class PaymentGatewayError(Exception):
    pass


@dataclass
class PaymentIntent:
    id: str
    amount: int
    currency: str
    status: str
    method: str
    created_at: datetime
    expires_at: datetime | None = None
    client_secret: str | None = None
    pix_code: str | None = None
    pix_qr_code_url: str | None = None
    boleto_code: str | None = None
    boleto_url: str | None = None
    failure_reason: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def public_details(self) -> dict[str, Any]:
        """Fields the client needs to complete payment with this method."""
        details: dict[str, Any] = {
            "gateway_id": self.id,
            "client_secret": self.client_secret,
            "expires_at": self.expires_at,
        }
        if self.pix_code:
            details["pix_code"] = self.pix_code
            details["pix_qr_code_url"] = self.pix_qr_code_url
        if self.boleto_code:
            details["boleto_code"] = self.boleto_code
            details["boleto_url"] = self.boleto_url
        return details


class PaymentGateway(ABC):

    @abstractmethod
    def create_payment_intent(
        self,
        amount: int,
        method: str,
        customer_email: str,
        currency: str = "BRL",
        description: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> PaymentIntent:
        """
        Amount is in cents. Metadata is informational only: nothing read back
        from the gateway decides which plan gets activated.
        """
        pass

    @abstractmethod
    def confirm_payment(self, intent_id: str, payment_data: dict[str, Any] | None = None) -> PaymentIntent:
        """Returns the intent with status completed, processing or failed."""
        pass

    @abstractmethod
    def refund_payment(self, intent_id: str, amount: int | None = None) -> PaymentIntent:
        pass

    @abstractmethod
    def cancel_payment(self, intent_id: str) -> PaymentIntent:
        pass

    @abstractmethod
    def get_payment(self, intent_id: str) -> Optional[PaymentIntent]:
        pass


class MockPaymentGateway(PaymentGateway):
    """
    In-memory gateway for development and tests.

    Card payments are declined when the card number ends in "0002" and
    approved otherwise. PIX and boleto confirm immediately.
    """

    DECLINED_CARD_SUFFIX = "0002"
    INTENT_TTL = timedelta(minutes=30)
    BOLETO_TTL = timedelta(days=3)

    def __init__(self):
        self._intents: dict[str, PaymentIntent] = {}
        self._lock = threading.Lock()

    def create_payment_intent(
        self,
        amount: int,
        method: str,
        customer_email: str,
        currency: str = "BRL",
        description: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> PaymentIntent:
        now = clock.utcnow()
        intent_id = f"pi_{int(now.timestamp() * 1000)}_{secrets.token_hex(6)}"
        intent = PaymentIntent(
            id=intent_id,
            amount=amount,
            currency=currency,
            status=INTENT_PENDING,
            method=method,
            created_at=now,
            expires_at=now + self.INTENT_TTL,
            client_secret=f"{intent_id}_secret_{secrets.token_hex(8)}",
            metadata=dict(metadata or {}),
        )

        if method == "pix":
            intent.pix_code = self._generate_pix_code()
            intent.pix_qr_code_url = (
                "https://api.qrserver.com/v1/create-qr-code/?size=200x200&data=" + quote(intent.pix_code)
            )
        elif method == "boleto":
            intent.boleto_code = "".join(secrets.choice("0123456789") for _ in range(47))
            intent.boleto_url = f"https://example.com/boleto/{intent_id}"
            intent.expires_at = now + self.BOLETO_TTL

        with self._lock:
            self._intents[intent_id] = intent

        logger.info("mock_intent_created intent_id=%s method=%s amount=%s", intent_id, method, amount)
        return intent

    def confirm_payment(self, intent_id: str, payment_data: dict[str, Any] | None = None) -> PaymentIntent:
        with self._lock:
            intent = self._require(intent_id)
            if intent.status != INTENT_PENDING:
                raise PaymentGatewayError(f"Intent cannot be confirmed from status {intent.status}")

            if intent.expires_at and clock.utcnow() > intent.expires_at:
                intent.status = INTENT_FAILED
                intent.failure_reason = "intent_expired"
            elif intent.method == "credit_card":
                card_number = str((payment_data or {}).get("number") or "").replace(" ", "")
                if card_number.endswith(self.DECLINED_CARD_SUFFIX):
                    intent.status = INTENT_FAILED
                    intent.failure_reason = "card_declined"
                else:
                    intent.status = INTENT_COMPLETED
            else:
                intent.status = INTENT_COMPLETED

        logger.info("mock_intent_confirmed intent_id=%s status=%s", intent_id, intent.status)
        return intent

    def refund_payment(self, intent_id: str, amount: int | None = None) -> PaymentIntent:
        with self._lock:
            intent = self._require(intent_id)
            if intent.status != INTENT_COMPLETED:
                raise PaymentGatewayError("Only completed payments can be refunded")
            intent.status = INTENT_REFUNDED
        logger.info("mock_intent_refunded intent_id=%s", intent_id)
        return intent

    def cancel_payment(self, intent_id: str) -> PaymentIntent:
        with self._lock:
            intent = self._require(intent_id)
            if intent.status != INTENT_PENDING:
                raise PaymentGatewayError("Only pending payments can be cancelled")
            intent.status = INTENT_CANCELLED
        logger.info("mock_intent_cancelled intent_id=%s", intent_id)
        return intent

    def get_payment(self, intent_id: str) -> Optional[PaymentIntent]:
        return self._intents.get(intent_id)

    def _require(self, intent_id: str) -> PaymentIntent:
        intent = self._intents.get(intent_id)
        if intent is None:
            raise PaymentGatewayError("Payment intent not found")
        return intent

    @staticmethod
    def _generate_pix_code() -> str:
        alphabet = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
        key = "".join(secrets.choice(alphabet) for _ in range(36))
        return (
            "00020126580014BR.GOV.BCB.PIX0136"
            + key
            + "5204000053039865802BR5925ETERNAL GIFT6009SAO PAULO62070503***6304"
        )


_GATEWAYS: dict[str, type[PaymentGateway]] = {
    "mock": MockPaymentGateway,
}

_gateway_instance: PaymentGateway | None = None


def get_payment_gateway() -> PaymentGateway:
    """FastAPI dependency. Tests replace it through app.dependency_overrides."""
    global _gateway_instance
    if _gateway_instance is None:
        gateway_cls = _GATEWAYS.get(config.PAYMENT_GATEWAY)
        if gateway_cls is None:
            logger.warning("payment_gateway_unknown name=%s fallback=mock", config.PAYMENT_GATEWAY)
            gateway_cls = MockPaymentGateway
        _gateway_instance = gateway_cls()
    return _gateway_instance
