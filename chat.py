import logging

from claims import ClaimLedger
from database import create_document, object_id, paginate, serialize
from errors import ValidationFailed
from identity import IdentityLookup
from listings import ListingStore
from notifications import NotificationService
from realtime import NEW_MESSAGE, Broadcaster, listing_scope
from schemas import ChatMessage

log = logging.getLogger("foodshare.chat")

COLLECTION = "chatmessage"
PREVIEW_LENGTH = 50


def preview(text: str) -> str:
    return text if len(text) <= PREVIEW_LENGTH else text[:PREVIEW_LENGTH] + "..."


class ChatChannel:
    """Message log per listing between its donor and recipients."""

    def __init__(
        self,
        database,
        identity: IdentityLookup,
        listings: ListingStore,
        claims: ClaimLedger,
        notifications: NotificationService,
        broadcaster: Broadcaster,
    ):
        self.db = database
        self.collection = database[COLLECTION]
        self.identity = identity
        self.listings = listings
        self.claims = claims
        self.notifications = notifications
        self.broadcaster = broadcaster

    def history(self, listing_id: str, page: int = 1, limit: int = 50) -> dict:
        messages, pagination = paginate(
            self.collection, {"listing_id": listing_id}, page, limit, sort=[("created_at", 1)]
        )
        return {"messages": messages, "pagination": pagination}

    def send(self, listing_id: str, user_id: str, message: str, message_type: str = "text") -> dict:
        if not user_id or not message:
            raise ValidationFailed("User ID and message are required")
        actor = self.identity.require(user_id)
        listing = self.listings.get(listing_id)

        # the role is derived from the listing, never taken from the client
        sender_type = "donor" if listing["donor_id"] == actor.user_id else "recipient"
        record = ChatMessage(
            listing_id=listing["_id"],
            sender_id=actor.user_id,
            sender_name=actor.name,
            sender_type=sender_type,
            message=message,
            message_type=message_type,
        )
        new_id = create_document(COLLECTION, record, database=self.db)
        doc = serialize(self.collection.find_one({"_id": object_id(new_id)}))
        self.broadcaster.emit(listing_scope(listing["_id"]), NEW_MESSAGE, doc)

        if sender_type == "donor":
            live = self.claims.find_live(listing["_id"])
            counterpart = live["claimed_by"] if live else None
        else:
            counterpart = listing["donor_id"]
        if counterpart and counterpart != actor.user_id:
            self.notifications.notify(
                counterpart,
                "New Message",
                f"{actor.name}: {preview(message)}",
                "message",
                listing["_id"],
            )
        return doc

    def mark_read(self, listing_id: str, user_id: str) -> int:
        """Flag every message in the listing not sent by ``user_id`` as read."""
        if not user_id:
            raise ValidationFailed("User ID is required")
        result = self.collection.update_many(
            {"listing_id": listing_id, "sender_id": {"$ne": user_id}, "is_read": False},
            {"$set": {"is_read": True}},
        )
        return result.modified_count
