from motor.motor_asyncio import AsyncIOMotorDatabase
from datetime import datetime
from typing import Optional, Dict, Any
from pymongo.errors import PyMongoError
import logging

logger = logging.getLogger(__name__)

AUDITED_ENTITY_TYPES = [
    "PAYMENT",
    "PAYMENT_SPLIT",
    "INVOICE",
]


class AuditService:
    """Service for immutable audit logging"""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db.audit_logs

    async def log_action(
        self,
        user_id: str,
        module_name: str,
        entity_type: str,
        entity_id: str,
        action_type: str,
        old_value: Optional[Dict[str, Any]] = None,
        new_value: Optional[Dict[str, Any]] = None
    ) -> bool:
        """
        Log an action to audit trail (INSERT ONLY).

        Returns False instead of raising when the write fails, so the
        audited operation is never rolled back by its audit entry.
        """
        if entity_type not in AUDITED_ENTITY_TYPES:
            logger.warning(f"[AUDIT] Unknown entity type: {entity_type}")

        try:
            audit_entry = {
                "user_id": user_id,
                "module_name": module_name,
                "entity_type": entity_type,
                "entity_id": entity_id,
                "action_type": action_type,
                "old_value_json": old_value,
                "new_value_json": new_value,
                "timestamp": datetime.utcnow()
            }

            await self.collection.insert_one(audit_entry)
            logger.info(f"[AUDIT] {action_type} on {entity_type}:{entity_id} by user:{user_id}")
            return True
        except PyMongoError as e:
            logger.error(f"[AUDIT] Failed to create audit log: {str(e)}")
            return False

    async def get_audit_logs(
        self,
        user_id: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        limit: int = 100
    ):
        """Retrieve audit logs (READ ONLY)"""
        query = {"user_id": user_id}

        if entity_type:
            query["entity_type"] = entity_type
        if entity_id:
            query["entity_id"] = entity_id

        cursor = self.collection.find(query).sort("timestamp", -1).limit(limit)
        logs = await cursor.to_list(length=limit)

        for log in logs:
            log["audit_id"] = str(log.pop("_id"))

        return logs
