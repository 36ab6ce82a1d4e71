# tokendrop/core/errors.py
"""
Error taxonomy for the token gateway.

Errors raised before payment verification are turned into synchronous HTTP
responses with a precise status. Errors raised during delivery never reach
the caller: the acknowledgement has already been sent by then.
"""
from typing import Any, Dict, Optional

from starlette.responses import JSONResponse, Response


class GatewayError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message}

    def to_response(self) -> Response:
        return JSONResponse(status_code=self.status_code, content=self.to_dict())


class ClientError(GatewayError):
    """Malformed request: bad payment header, missing payer address. No retry."""

    status_code = 400


class ForbiddenError(GatewayError):
    """Receipt is well-formed but addressed to another payee or resource."""

    status_code = 403


class VerificationFailure(GatewayError):
    """
    The facilitator rejected the receipt.

    The facilitator's status and body are passed through verbatim; this
    error never invents its own semantics.
    """

    def __init__(self, status_code: int, content: bytes, media_type: Optional[str] = None):
        super().__init__(f"Facilitator rejected payment with HTTP {status_code}")
        self.status_code = status_code
        self.content = content
        self.media_type = media_type or "application/json"

    def to_response(self) -> Response:
        return Response(
            content=self.content,
            status_code=self.status_code,
            media_type=self.media_type,
        )


class DeliveryStageFailure(Exception):
    """A delivery stage could not complete. Caught by the orchestrator, never surfaced."""

    def __init__(self, stage: str, reason: str):
        super().__init__(f"{stage}: {reason}")
        self.stage = stage
        self.reason = reason


class ConfigurationError(Exception):
    """A required setting is absent or invalid. Fatal at startup."""
