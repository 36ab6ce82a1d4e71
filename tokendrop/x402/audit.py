# tokendrop/x402/audit.py
"""
Audit logging for x402 payments and token deliveries.

This module logs all payment and delivery events for:
- Dispute resolution (did the payer receive anything?)
- Financial reconciliation
- Out-of-band alerting on failed deliveries

Log format: JSON lines (one event per line)
Log location: Configured via X402_AUDIT_LOG_PATH

Events logged:
- 402 returned (price, asset, resource)
- Request rejected (decode failure, gate check or bad payer)
- Payment verified / settled / failed (facilitator verdicts)
- Delivery accepted (acknowledgement sent)
- Delivery stage failed (stage, reason)
- Delivery completed (terminal outcome, transactions)
- Manual intervention required (all stages exhausted)
- Error (type, context)
"""
import json
import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from tokendrop.core.config import get_settings

logger = logging.getLogger(__name__)


class AuditEventType(Enum):
    """Types of audit events that can be logged."""
    PAYMENT_REQUIRED_SENT = "payment_required_sent"
    ACCESS_REJECTED = "access_rejected"
    PAYMENT_VERIFIED = "payment_verified"
    PAYMENT_SETTLED = "payment_settled"
    PAYMENT_FAILED = "payment_failed"
    DELIVERY_ACCEPTED = "delivery_accepted"
    DELIVERY_STAGE_FAILED = "delivery_stage_failed"
    DELIVERY_COMPLETED = "delivery_completed"
    MANUAL_INTERVENTION_REQUIRED = "manual_intervention_required"
    ERROR = "error"


def generate_request_id() -> str:
    """Generate a unique request ID for tracking."""
    return str(uuid.uuid4())[:8]


# Set by create_app from the application's settings; None falls back to the
# environment.
_configured_log_path: Optional[Path] = None


def configure_audit_log(log_path: Optional[str]) -> None:
    """Pin the audit log location (None to read it from the environment again)."""
    global _configured_log_path
    _configured_log_path = Path(log_path) if log_path else None


def get_audit_log_path() -> Path:
    """Get the path to the audit log file."""
    if _configured_log_path is not None:
        return _configured_log_path
    return Path(get_settings().X402_AUDIT_LOG_PATH)


def ensure_audit_log_directory() -> bool:
    """
    Ensure the audit log directory exists.

    Returns:
        True if directory exists or was created, False on error
    """
    try:
        log_dir = get_audit_log_path().parent
        if not log_dir.exists():
            log_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created audit log directory: {log_dir}")
        return True
    except Exception as e:
        logger.error(f"Failed to create audit log directory: {e}")
        return False


def create_audit_event(
    event_type: AuditEventType,
    data: Dict[str, Any],
    client_ip: Optional[str] = None,
    wallet_address: Optional[str] = None,
    request_id: Optional[str] = None
) -> Dict[str, Any]:
    """
    Create an audit event dictionary.

    Args:
        event_type: Type of event to log
        data: Event-specific data
        client_ip: Client IP address (if available)
        wallet_address: Payer wallet address (if available)
        request_id: Unique request identifier (if available)

    Returns:
        A structured event ready to be written to the audit log
    """
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event_type": event_type.value,
        "request_id": request_id or generate_request_id(),
        "client_ip": client_ip,
        "wallet_address": wallet_address,
        "data": data
    }


def log_audit_event(
    event_type: AuditEventType,
    data: Dict[str, Any],
    client_ip: Optional[str] = None,
    wallet_address: Optional[str] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    """
    Log an audit event to the x402 audit log.

    Audit failures are logged and swallowed: they must never break the
    payment path or a delivery.

    Returns:
        The request_id used for this event, or None on error
    """
    event = create_audit_event(
        event_type=event_type,
        data=data,
        client_ip=client_ip,
        wallet_address=wallet_address,
        request_id=request_id
    )

    try:
        ensure_audit_log_directory()

        with open(get_audit_log_path(), "a") as f:
            f.write(json.dumps(event) + "\n")

        logger.debug(f"Audit event logged: {event_type.value} [{event['request_id']}]")
        return event["request_id"]

    except Exception as e:
        logger.error(f"Failed to write audit event: {e}")
        return None


# Convenience functions for specific event types

def log_payment_required_sent(
    client_ip: str,
    amount: str,
    asset: str,
    network: str,
    pay_to: str,
    resource: str,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a 402 Payment Required response event."""
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_REQUIRED_SENT,
        data={
            "amount": amount,
            "asset": asset,
            "network": network,
            "pay_to": pay_to,
            "resource": resource,
        },
        client_ip=client_ip,
        request_id=request_id
    )


def log_access_rejected(
    client_ip: str,
    status_code: int,
    reason: str,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a request rejected before settlement (400 or 403)."""
    return log_audit_event(
        event_type=AuditEventType.ACCESS_REJECTED,
        data={
            "status_code": status_code,
            "reason": reason,
        },
        client_ip=client_ip,
        request_id=request_id
    )


def log_payment_verified(
    client_ip: str,
    payer: Optional[str],
    is_valid: bool,
    invalid_reason: Optional[str] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a payment verification event."""
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_VERIFIED,
        data={
            "is_valid": is_valid,
            "invalid_reason": invalid_reason,
        },
        client_ip=client_ip,
        wallet_address=payer,
        request_id=request_id
    )


def log_payment_settled(
    client_ip: str,
    payer: Optional[str],
    transaction_hash: Optional[str],
    network: Optional[str],
    success: bool,
    error_reason: Optional[str] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a payment settlement event."""
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_SETTLED,
        data={
            "success": success,
            "transaction_hash": transaction_hash,
            "network": network,
            "error_reason": error_reason,
        },
        client_ip=client_ip,
        wallet_address=payer,
        request_id=request_id
    )


def log_payment_failed(
    client_ip: str,
    reason: str,
    stage: str,
    status_code: Optional[int] = None,
    wallet_address: Optional[str] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a payment failure event (facilitator rejection or outage)."""
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_FAILED,
        data={
            "reason": reason,
            "stage": stage,
            "status_code": status_code,
        },
        client_ip=client_ip,
        wallet_address=wallet_address,
        request_id=request_id
    )


def log_delivery_accepted(
    payer: str,
    client_ip: Optional[str] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log that the acknowledgement was sent and delivery was scheduled."""
    return log_audit_event(
        event_type=AuditEventType.DELIVERY_ACCEPTED,
        data={"scheduled": True},
        client_ip=client_ip,
        wallet_address=payer,
        request_id=request_id
    )


def log_delivery_stage_failed(
    payer: str,
    stage: str,
    reason: str,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a delivery stage that failed and fell through."""
    return log_audit_event(
        event_type=AuditEventType.DELIVERY_STAGE_FAILED,
        data={
            "stage": stage,
            "reason": reason,
        },
        wallet_address=payer,
        request_id=request_id
    )


def log_delivery_completed(
    payer: str,
    outcome: str,
    transaction_hashes: List[str],
    stages_attempted: List[str],
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log the terminal outcome of a delivery."""
    return log_audit_event(
        event_type=AuditEventType.DELIVERY_COMPLETED,
        data={
            "outcome": outcome,
            "transaction_hashes": transaction_hashes,
            "stages_attempted": stages_attempted,
        },
        wallet_address=payer,
        request_id=request_id
    )


def log_manual_intervention_required(
    payer: str,
    reason: str,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a paid request for which nothing could be delivered or refunded."""
    return log_audit_event(
        event_type=AuditEventType.MANUAL_INTERVENTION_REQUIRED,
        data={"reason": reason},
        wallet_address=payer,
        request_id=request_id
    )


def log_error(
    error_type: str,
    error_message: str,
    context: Optional[Dict[str, Any]] = None,
    client_ip: Optional[str] = None,
    wallet_address: Optional[str] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log an error event."""
    return log_audit_event(
        event_type=AuditEventType.ERROR,
        data={
            "error_type": error_type,
            "error_message": error_message,
            "context": context or {},
        },
        client_ip=client_ip,
        wallet_address=wallet_address,
        request_id=request_id
    )


def read_audit_log(
    max_entries: int = 100,
    event_type: Optional[AuditEventType] = None,
    wallet_address: Optional[str] = None
) -> list:
    """
    Read entries from the audit log.

    Args:
        max_entries: Maximum number of entries to return
        event_type: Filter by event type (optional)
        wallet_address: Filter by payer address, case-insensitive (optional)

    Returns:
        List of audit events (most recent first)
    """
    try:
        log_path = get_audit_log_path()
        if not log_path.exists():
            return []

        events = []
        with open(log_path, "r") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    event = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if event_type and event.get("event_type") != event_type.value:
                    continue
                if wallet_address and (event.get("wallet_address") or "").lower() != wallet_address.lower():
                    continue
                events.append(event)

        return list(reversed(events))[:max_entries]

    except Exception as e:
        logger.error(f"Failed to read audit log: {e}")
        return []


def get_audit_stats() -> Dict[str, Any]:
    """
    Get statistics from the audit log.

    Returns:
        Dict with event counts, delivery outcome counts and date range
    """
    try:
        log_path = get_audit_log_path()
        if not log_path.exists():
            return {
                "total_events": 0,
                "events_by_type": {},
                "outcomes": {},
                "log_path": str(log_path),
                "log_exists": False,
            }

        events_by_type: Dict[str, int] = {}
        outcomes: Dict[str, int] = {}
        total = 0
        first_timestamp = None
        last_timestamp = None

        with open(log_path, "r") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    event = json.loads(line)
                except json.JSONDecodeError:
                    continue
                total += 1
                event_type = event.get("event_type", "unknown")
                events_by_type[event_type] = events_by_type.get(event_type, 0) + 1

                if event_type == AuditEventType.DELIVERY_COMPLETED.value:
                    outcome = event.get("data", {}).get("outcome", "unknown")
                    outcomes[outcome] = outcomes.get(outcome, 0) + 1

                timestamp = event.get("timestamp")
                if timestamp:
                    if first_timestamp is None:
                        first_timestamp = timestamp
                    last_timestamp = timestamp

        return {
            "total_events": total,
            "events_by_type": events_by_type,
            "outcomes": outcomes,
            "first_event": first_timestamp,
            "last_event": last_timestamp,
            "log_path": str(log_path),
            "log_exists": True,
        }

    except Exception as e:
        logger.error(f"Failed to get audit stats: {e}")
        return {
            "total_events": 0,
            "events_by_type": {},
            "outcomes": {},
            "log_exists": False,
            "error": str(e),
        }
