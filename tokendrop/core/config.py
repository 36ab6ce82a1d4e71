# tokendrop/core/config.py
from decimal import Decimal
from functools import lru_cache

from dotenv import load_dotenv
from pydantic import AnyHttpUrl, SecretStr, ValidationError, field_validator
from pydantic_settings import BaseSettings
from web3 import Web3

from tokendrop.core.errors import ConfigurationError

# Load .env file if it exists
load_dotenv()

# Path of the single paid resource served by this gateway
RESOURCE_PATH = "/api/buy"


class Settings(BaseSettings):
    PROJECT_NAME: str = "X402 Token Purchase API"
    PROJECT_VERSION: str = "2.0.0"
    PROJECT_DESCRIPTION: str = (
        "Mint 10k $ZORRO tokens with x402 payment protocol. Pay 2 USDC on Base mainnet. "
        "100% of proceeds go into LP. Pure meme token with no utility."
    )
    PORT: int = 4021
    LOG_LEVEL: str = "INFO"

    # Payee of the x402 payment
    WALLET_ADDRESS: str
    # Public origin the resource is advertised under, e.g. https://www.zorro.team
    PUBLIC_DOMAIN: AnyHttpUrl
    CANONICAL_HOST_REDIRECT: bool = False

    # Facilitator that verifies and settles payments
    FACILITATOR_URL: AnyHttpUrl = "http://localhost:8080"
    FACILITATOR_TIMEOUT_SECONDS: float = 30.0
    X402_NETWORK: str = "base"
    X402_AUDIT_LOG_PATH: str = "logs/x402_audit.jsonl"

    # Chain access for delivery
    RPC_URL: AnyHttpUrl
    PRIVATE_KEY: SecretStr
    USDC_ADDRESS: str
    CONTRACT_ADDRESS: str
    WETH_ADDRESS: str
    V3_SWAP_ROUTER02_ADDRESS: str
    TX_RECEIPT_TIMEOUT_SECONDS: float = 120.0
    AUTO_REFUND: bool = False

    # Gas balance thresholds for the delivery wallet (in ETH)
    GAS_WARN_THRESHOLD_ETH: Decimal = Decimal("0.005")
    GAS_CRITICAL_THRESHOLD_ETH: Decimal = Decimal("0.001")

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields from .env

    @field_validator(
        "WALLET_ADDRESS",
        "USDC_ADDRESS",
        "CONTRACT_ADDRESS",
        "WETH_ADDRESS",
        "V3_SWAP_ROUTER02_ADDRESS",
    )
    @classmethod
    def validate_address(cls, value: str) -> str:
        value = value.strip()
        if not Web3.is_address(value.lower()):
            raise ValueError(f"not a valid address: {value!r}")
        return Web3.to_checksum_address(value.lower())

    @property
    def public_origin(self) -> str:
        """PUBLIC_DOMAIN without its trailing slash."""
        return str(self.PUBLIC_DOMAIN).rstrip("/")

    @property
    def resource_url(self) -> str:
        """Canonical URL a payment receipt must name as its resource."""
        return self.public_origin + RESOURCE_PATH

    @property
    def canonical_host(self) -> str:
        return self.PUBLIC_DOMAIN.host.lower()


@lru_cache()  # Cache the settings object for performance
def get_settings() -> Settings:
    """
    Load settings from the environment.

    Raises:
        ConfigurationError: If a required setting is missing or invalid.
            The process must not start serving traffic in that case.
    """
    try:
        return Settings()
    except ValidationError as e:
        problems = []
        for error in e.errors():
            field = ".".join(str(part) for part in error["loc"])
            problems.append(f"{field} ({error['msg']})")
        raise ConfigurationError(f"Invalid configuration: {'; '.join(problems)}") from e
