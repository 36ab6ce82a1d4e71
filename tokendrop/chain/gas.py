# tokendrop/chain/gas.py
"""
ETH gas balance monitoring for the delivery wallet.

Every delivery stage submits at least one transaction from the server's
signing account, so the account must hold enough ETH for gas. This module
checks that balance against the warning and critical thresholds configured
in tokendrop/core/config.py. It is reported by the /health endpoint.
"""
import logging
import time
from typing import Any, Dict, Optional

import requests

from tokendrop.core.amounts import TokenAmount
from tokendrop.core.config import Settings

logger = logging.getLogger(__name__)

ETH_DECIMALS = 18

# Cache for balance checks (avoid hammering RPC endpoint)
_balance_cache: Dict[str, Any] = {
    "address": None,
    "balance_wei": None,
    "timestamp": 0,
}
CACHE_TTL_SECONDS = 60


def _get_eth_balance_from_rpc(rpc_url: str, address: str) -> int:
    """
    Fetch ETH balance with a raw eth_getBalance call.

    Returns:
        Balance in wei

    Raises:
        requests.RequestException: If the HTTP call fails
        ValueError: If the RPC answers with an error or no result
    """
    response = requests.post(
        rpc_url,
        json={
            "jsonrpc": "2.0",
            "method": "eth_getBalance",
            "params": [address, "latest"],
            "id": 1
        },
        timeout=10
    )
    response.raise_for_status()

    result = response.json()
    if "error" in result:
        raise ValueError(f"RPC error: {result['error']}")
    if "result" not in result:
        raise ValueError("Invalid RPC response: missing 'result' field")

    return int(result["result"], 16)


def _get_cached_balance(address: str) -> Optional[int]:
    """Cached balance for this address, or None if expired/empty."""
    if _balance_cache["balance_wei"] is None or _balance_cache["address"] != address:
        return None

    if time.time() - _balance_cache["timestamp"] > CACHE_TTL_SECONDS:
        return None

    return _balance_cache["balance_wei"]


def _update_cache(address: str, balance_wei: int) -> None:
    _balance_cache["address"] = address
    _balance_cache["balance_wei"] = balance_wei
    _balance_cache["timestamp"] = time.time()


def clear_balance_cache() -> None:
    """Clear the balance cache (useful for testing)."""
    _balance_cache["address"] = None
    _balance_cache["balance_wei"] = None
    _balance_cache["timestamp"] = 0


def check_gas_balance(address: Optional[str], settings: Settings) -> Dict[str, Any]:
    """
    Check the delivery wallet's ETH balance against configured thresholds.

    Args:
        address: Address of the signing account that pays for delivery gas
        settings: Application settings (RPC URL and thresholds)

    Returns:
        Dict containing:
        - ok: bool - whether balance is at or above the warning threshold
        - is_critical: bool - whether balance is below the critical threshold
        - balance_wei: int - raw balance in wei
        - balance_eth: str - balance in ETH (decimal string)
        - threshold_eth: str - warning threshold in ETH
        - critical_eth: str - critical threshold in ETH
        - address: str - wallet address being monitored
        - warning: str or None - warning message if below threshold
    """
    warn_threshold = settings.GAS_WARN_THRESHOLD_ETH
    critical_threshold = settings.GAS_CRITICAL_THRESHOLD_ETH

    result: Dict[str, Any] = {
        "ok": False,
        "is_critical": True,
        "balance_wei": 0,
        "balance_eth": "0",
        "threshold_eth": str(warn_threshold),
        "critical_eth": str(critical_threshold),
        "address": address or None,
        "warning": None,
    }

    if not address:
        logger.error("Delivery wallet address unknown - cannot check gas balance")
        result["warning"] = "Delivery wallet address not configured"
        return result

    try:
        balance_wei = _get_cached_balance(address)
        if balance_wei is None:
            balance_wei = _get_eth_balance_from_rpc(str(settings.RPC_URL), address)
            _update_cache(address, balance_wei)

        balance = TokenAmount(units=balance_wei, decimals=ETH_DECIMALS)
        balance_eth = balance.to_decimal()
        logger.debug(f"Delivery wallet gas balance: {balance} ETH")

        is_critical = balance_eth < critical_threshold
        ok = balance_eth >= warn_threshold

        warning = None
        if is_critical:
            warning = (
                f"Delivery wallet ETH critically low ({balance} ETH). "
                f"Below critical threshold ({critical_threshold} ETH). "
                f"Deliveries will fail. Top up immediately!"
            )
            logger.error(f"Gas check: {warning}")
        elif not ok:
            warning = (
                f"Delivery wallet ETH ({balance} ETH) is below warning threshold "
                f"({warn_threshold} ETH). Top up soon."
            )
            logger.warning(f"Gas check: {warning}")

        result.update({
            "ok": ok,
            "is_critical": is_critical,
            "balance_wei": balance_wei,
            "balance_eth": str(balance),
            "warning": warning,
        })
        return result

    except (requests.RequestException, ValueError) as e:
        logger.error(f"Failed to check delivery wallet gas balance: {e}")
        result["warning"] = f"Failed to fetch gas balance: {e}"
        return result
