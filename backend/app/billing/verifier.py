"""Signature checks for payment gateway callbacks."""
from __future__ import annotations

import hashlib
import hmac
from typing import Optional

from ..entitlements.models import VerifiedPayment


def _signed_text(order_id: str, payment_id: str) -> bytes:
    return f"{order_id}|{payment_id}".encode("utf-8")


def compute_signature(order_id: str, payment_id: str, secret: str) -> str:
    """Hex HMAC-SHA256 of ``order_id|payment_id`` under ``secret``."""

    return hmac.new(secret.encode("utf-8"), _signed_text(order_id, payment_id), hashlib.sha256).hexdigest()


def verify_signature(
    order_id: Optional[str],
    payment_id: Optional[str],
    signature: Optional[str],
    secret: Optional[str],
) -> bool:
    """Return ``True`` only for the exact signature of ``order_id|payment_id``.

    Missing, empty or non-string inputs fail closed and return ``False``.
    """

    values = (order_id, payment_id, signature, secret)
    if not all(isinstance(value, str) and value for value in values):
        return False

    try:
        expected = compute_signature(order_id, payment_id, secret)
        provided = signature.encode("utf-8")
    except UnicodeEncodeError:
        return False
    return hmac.compare_digest(expected.encode("ascii"), provided)


class PaymentVerifier:
    """Validates gateway payment confirmations against the shared key secret."""

    def __init__(self, secret: Optional[str]) -> None:
        self._secret = secret or ""

    @property
    def configured(self) -> bool:
        return bool(self._secret)

    def sign(self, order_id: str, payment_id: str) -> str:
        if not self._secret:
            raise ValueError("secret must be provided")
        return compute_signature(order_id, payment_id, self._secret)

    def verify(
        self,
        order_id: Optional[str],
        payment_id: Optional[str],
        signature: Optional[str],
    ) -> bool:
        return verify_signature(order_id, payment_id, signature, self._secret)

    def confirm(
        self,
        order_id: Optional[str],
        payment_id: Optional[str],
        signature: Optional[str],
    ) -> Optional[VerifiedPayment]:
        """Return proof of a valid payment, or ``None`` when the signature does not match."""

        if not self.verify(order_id, payment_id, signature):
            return None
        return VerifiedPayment(order_id=order_id, payment_id=payment_id, signature=signature)


__all__ = ["PaymentVerifier", "compute_signature", "verify_signature"]
