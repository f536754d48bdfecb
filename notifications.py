import logging
from typing import Optional

from database import create_document, object_id, paginate, serialize
from errors import NotFound, ValidationFailed
from realtime import NEW_NOTIFICATION, Broadcaster, user_scope
from schemas import Notification

log = logging.getLogger("foodshare.notifications")

COLLECTION = "notification"


class NotificationService:
    """Per-user notices: persisted first, then pushed to the user's room."""

    def __init__(self, database, broadcaster: Broadcaster):
        self.db = database
        self.broadcaster = broadcaster

    def notify(
        self,
        user_id: str,
        title: str,
        message: str,
        notification_type: str,
        related_id: Optional[str] = None,
        priority: str = "medium",
    ) -> Optional[dict]:
        """Fire-and-forget: failures are logged, never raised to the caller."""
        try:
            record = Notification(
                user_id=user_id,
                title=title,
                message=message,
                type=notification_type,
                related_id=related_id,
                priority=priority,
            )
            new_id = create_document(COLLECTION, record, database=self.db)
            doc = serialize(self.db[COLLECTION].find_one({"_id": object_id(new_id)}))
        except Exception:
            log.exception("Could not store notification for %s", user_id)
            return None
        self.broadcaster.emit(user_scope(user_id), NEW_NOTIFICATION, doc)
        return doc

    def list_for_user(
        self,
        user_id: str,
        is_read: Optional[bool] = None,
        notification_type: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> dict:
        query = {"user_id": user_id}
        if is_read is not None:
            query["is_read"] = is_read
        if notification_type:
            query["type"] = notification_type
        collection = self.db[COLLECTION]
        items, pagination = paginate(collection, query, page, limit, sort=[("created_at", -1)])
        unread = collection.count_documents({"user_id": user_id, "is_read": False})
        return {"notifications": items, "unread_count": unread, "pagination": pagination}

    def mark_read(self, notification_id: str, user_id: str) -> dict:
        if not user_id:
            raise ValidationFailed("User ID is required")
        oid = object_id(notification_id)
        collection = self.db[COLLECTION]
        result = None
        if oid is not None:
            result = collection.update_one({"_id": oid, "user_id": user_id}, {"$set": {"is_read": True}})
        if result is None or result.matched_count == 0:
            raise NotFound("Notification not found")
        return serialize(collection.find_one({"_id": oid}))

    def mark_all_read(self, user_id: str) -> int:
        result = self.db[COLLECTION].update_many(
            {"user_id": user_id, "is_read": False}, {"$set": {"is_read": True}}
        )
        return result.modified_count
