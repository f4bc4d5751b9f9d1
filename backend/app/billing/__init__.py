"""Payment gateway integration: configuration, order creation and signature checks."""

from .config import PaymentConfig, load_payment_config
from .gateway import (
    GatewayOrder,
    PaymentGateway,
    RazorpayGateway,
    SandboxPaymentGateway,
    create_payment_gateway,
)
from .verifier import PaymentVerifier, compute_signature, verify_signature

__all__ = [
    "GatewayOrder",
    "PaymentConfig",
    "PaymentGateway",
    "PaymentVerifier",
    "RazorpayGateway",
    "SandboxPaymentGateway",
    "compute_signature",
    "create_payment_gateway",
    "load_payment_config",
    "verify_signature",
]
