# tokendrop/x402/__init__.py
"""
x402 Payment Protocol Integration Module.

This module implements the x402 payment protocol for the token gateway,
gating the single paid resource (/api/buy) behind a USDC payment.

Key components:
- receipt: Decoding of the X-PAYMENT header into a PaymentReceipt
- gate: Payee/resource checks performed before any facilitator call
- facilitator: HTTP client for the external verify/settle facilitator
- middleware: FastAPI middleware tying the above together
- audit: Transaction audit logging

Configuration is loaded from environment variables via tokendrop.core.config.
"""

__version__ = "0.2.0"
