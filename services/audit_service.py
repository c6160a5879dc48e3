import logging
from datetime import datetime, timezone
from typing import Optional, List
import uuid

from db.config import get_mongo_db

logger = logging.getLogger(__name__)


class AuditService:
    COLLECTION_NAME = "audit_logs"

    def __init__(self, collection=None):
        if collection is None:
            collection = get_mongo_db()[self.COLLECTION_NAME]
        self.collection = collection

    def _generate_audit_id(self) -> str:
        return f"audit_{uuid.uuid4().hex[:12]}"

    def record(
        self,
        action: str,
        details: dict,
        user_id: Optional[str] = None,
        ip_address: Optional[str] = None
    ) -> Optional[dict]:
        entry = {
            "audit_id": self._generate_audit_id(),
            "user_id": user_id,
            "action": action,
            "details": details,
            "ip_address": ip_address,
            "created_at": datetime.now(timezone.utc).replace(tzinfo=None)
        }

        # The ledger change this entry describes is already committed.
        try:
            self.collection.insert_one(entry)
        except Exception:
            logger.exception(f"Failed to archive audit entry {action} for user {user_id}")
            return None

        entry.pop("_id", None)
        return entry

    def list_entries(
        self,
        user_id: Optional[str] = None,
        action: Optional[str] = None,
        limit: int = 100
    ) -> List[dict]:
        query = {}
        if user_id:
            query["user_id"] = user_id
        if action:
            query["action"] = action

        entries = list(self.collection.find(query).sort("created_at", -1).limit(limit))
        for entry in entries:
            entry.pop("_id", None)
        return entries


def get_audit_service() -> AuditService:
    return AuditService()
