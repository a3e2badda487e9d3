"""Append-only audit trail for invoices and the signing flow.

Writes never fail the caller: errors are logged and an empty id is returned.
Metadata must not carry signature images or OTP codes.
"""
from database import database
from models import AuditLog, AuditAction
from typing import Optional, Dict, Any, List
import logging

logger = logging.getLogger(__name__)


async def create_audit_log(
    action: AuditAction,
    actor_id: Optional[str] = None,
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None,
    correlation_id: Optional[str] = None,
) -> str:
    """Record one audit event and return its audit_id ("" if the write failed).

    actor_id is None for anonymous creators and public signers; for invoices
    resource_id is the public invoice id.
    """
    entry = AuditLog(
        action=action,
        actor_id=actor_id,
        resource_type=resource_type,
        resource_id=resource_id,
        metadata=metadata or None,
        ip_address=ip_address,
        correlation_id=correlation_id,
    )
    doc = entry.model_dump(mode="json")
    doc["timestamp"] = entry.timestamp
    try:
        await database.get_db().audit_logs.insert_one(doc)
    except Exception as e:
        logger.error(f"[{correlation_id or ''}] Failed to create audit log {action.value} for {resource_id}: {e}")
        return ""
    logger.debug(f"Audit log created: {action.value} resource={resource_id}")
    return entry.audit_id


async def get_audit_logs_for_resource(
    resource_type: str,
    resource_id: str,
    limit: int = 50
) -> List[Dict[str, Any]]:
    """Newest-first events for one resource; [] if the read fails."""
    try:
        cursor = database.get_db().audit_logs.find(
            {"resource_type": resource_type, "resource_id": resource_id},
            {"_id": 0}
        ).sort("timestamp", -1).limit(limit)
        return await cursor.to_list(length=limit)
    except Exception as e:
        logger.error(f"Failed to read audit logs for {resource_type}/{resource_id}: {e}")
        return []
