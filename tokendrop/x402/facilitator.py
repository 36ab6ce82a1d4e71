# tokendrop/x402/facilitator.py
"""
HTTP client for the external x402 facilitator.

The facilitator owns signature checking and settlement. This client only
forwards the payment envelope together with the payment requirements and
hands back what the facilitator answered, status and body included, so
rejections can be passed through to the caller verbatim.
"""
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
from x402.types import PaymentRequirements

logger = logging.getLogger(__name__)

X402_VERSION = 1


@dataclass(frozen=True)
class FacilitatorReply:
    """Raw reply of a facilitator endpoint."""
    status_code: int
    content: bytes
    media_type: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def json(self) -> Dict[str, Any]:
        """
        Parse the reply body.

        Returns:
            The JSON object, or an empty dict if the body is not a JSON object
        """
        try:
            data = json.loads(self.content)
        except (json.JSONDecodeError, UnicodeDecodeError):
            return {}
        return data if isinstance(data, dict) else {}


class FacilitatorClient:
    """
    Async client for the facilitator's /verify and /settle endpoints.

    Args:
        base_url: Facilitator root URL, e.g. http://localhost:8080
        timeout: Request timeout in seconds
        transport: Optional httpx transport (used by tests)
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            transport=transport,
        )

    async def verify(
        self,
        payment_payload: Dict[str, Any],
        payment_requirements: PaymentRequirements
    ) -> FacilitatorReply:
        """Ask the facilitator to verify a payment envelope."""
        return await self._post("verify", payment_payload, payment_requirements)

    async def settle(
        self,
        payment_payload: Dict[str, Any],
        payment_requirements: PaymentRequirements
    ) -> FacilitatorReply:
        """Ask the facilitator to settle a verified payment on-chain."""
        return await self._post("settle", payment_payload, payment_requirements)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post(
        self,
        operation: str,
        payment_payload: Dict[str, Any],
        payment_requirements: PaymentRequirements
    ) -> FacilitatorReply:
        """
        POST a verify/settle request.

        Raises:
            httpx.HTTPError: On connection errors and timeouts
        """
        url = f"{self.base_url}/{operation}"
        body = {
            "x402Version": X402_VERSION,
            "paymentPayload": payment_payload,
            "paymentRequirements": payment_requirements.model_dump(by_alias=True, exclude_none=True),
        }
        response = await self._client.post(url, json=body)
        media_type = response.headers.get("content-type", "application/json")
        logger.info(f"x402: Facilitator {operation} returned HTTP {response.status_code}")
        return FacilitatorReply(
            status_code=response.status_code,
            content=response.content,
            media_type=media_type,
        )
