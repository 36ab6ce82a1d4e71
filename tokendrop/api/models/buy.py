# tokendrop/api/models/buy.py
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class BuyAcknowledgement(BaseModel):
    """
    Response model for an accepted payment.

    Sent before delivery starts; it says nothing about the delivery outcome.
    """
    success: bool = Field(..., description="Payment accepted")
    message: str
    payer: str = Field(..., description="Address the token will be delivered to")


class ErrorResponse(BaseModel):
    error: str


class EndpointInfo(BaseModel):
    path: str
    method: str
    price: str
    network: str
    info: str


class ServiceDescriptor(BaseModel):
    """
    Response model for the root endpoint.
    """
    name: str
    version: str
    description: str
    facilitator: str
    endpoints: List[EndpointInfo]


class HealthResponse(BaseModel):
    status: str
    delivery_wallet: Optional[str] = None
    deliveries_in_flight: int = 0
    gas: Dict[str, Any]
    audit: Dict[str, Any] = Field(default_factory=dict, description="Audit log event and outcome counts")
