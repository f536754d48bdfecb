"""Listing lifecycle: every mutation plus its broadcast and notification.

Each operation is an independent read-check-write against the store with
no locking or transaction. Two requests racing on the same listing can
both pass the status check; the later status write wins and the claim
ledger keeps both claims. Pickup is confirmed by people, which bounds the
damage, so this is left as is.
"""
import logging
from datetime import datetime
from typing import Optional

from claims import ClaimLedger
from database import as_utc
from errors import Conflict, Forbidden, NotFound, ValidationFailed
from identity import Actor, IdentityLookup
from listings import ListingStore, check_transition
from notifications import NotificationService
from realtime import (
    GLOBAL,
    LISTING_DELETED,
    LISTING_UPDATED,
    NEW_LISTING,
    STATUS_UPDATED,
    Broadcaster,
)
from schemas import FoodListing

log = logging.getLogger("foodshare.workflow")


class DonationWorkflow:
    def __init__(
        self,
        identity: IdentityLookup,
        listings: ListingStore,
        claims: ClaimLedger,
        notifications: NotificationService,
        broadcaster: Broadcaster,
    ):
        self.identity = identity
        self.listings = listings
        self.claims = claims
        self.notifications = notifications
        self.broadcaster = broadcaster

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _change_status(self, listing: dict, status: str, actor_id: Optional[str] = None) -> dict:
        updated = self.listings.set_status(listing["_id"], status)
        self.broadcaster.emit(
            GLOBAL,
            STATUS_UPDATED,
            {"listing_id": updated["_id"], "new_status": status, "listing": updated},
        )
        if actor_id and actor_id != updated["donor_id"]:
            self.notifications.notify(
                updated["donor_id"],
                "Food Status Updated",
                f'Your food listing "{updated["title"]}" is now {status}',
                "food-claimed",
                updated["_id"],
            )
        return updated

    @staticmethod
    def _require_owner(listing: dict, user_id: Optional[str], action: str) -> None:
        if not user_id:
            raise ValidationFailed("User ID is required")
        if listing["donor_id"] != user_id:
            raise Forbidden(f"Not authorized to {action} this listing")
        if not listing.get("is_active", True):
            raise Conflict("Food listing has been removed")

    # ------------------------------------------------------------------
    # Listing operations
    # ------------------------------------------------------------------
    def create_listing(self, user_id: str, data: dict) -> dict:
        actor: Actor = self.identity.require(user_id)
        data = dict(data)
        if data.get("exact_expiry_date") is not None:
            data["exact_expiry_date"] = as_utc(data["exact_expiry_date"])
        record = FoodListing(
            **data,
            donor=actor.name,
            donor_id=actor.user_id,
            donor_type=actor.role,
            status="available",
            is_active=True,
        )
        listing = self.listings.insert(record)
        self.broadcaster.emit(GLOBAL, NEW_LISTING, listing)
        return listing

    def update_listing(self, listing_id: str, user_id: str, changes: dict) -> dict:
        listing = self.listings.get(listing_id)
        self._require_owner(listing, user_id, "update")
        if changes.get("exact_expiry_date") is not None:
            changes = dict(changes, exact_expiry_date=as_utc(changes["exact_expiry_date"]))
        updated = self.listings.update_fields(listing["_id"], changes)
        self.broadcaster.emit(GLOBAL, LISTING_UPDATED, updated)
        return updated

    def delete_listing(self, listing_id: str, user_id: str) -> None:
        listing = self.listings.get(listing_id)
        self._require_owner(listing, user_id, "delete")
        self.listings.deactivate(listing["_id"])
        self.broadcaster.emit(GLOBAL, LISTING_DELETED, {"id": listing["_id"]})

    # ------------------------------------------------------------------
    # Claims
    # ------------------------------------------------------------------
    def reserve(
        self,
        listing_id: str,
        user_id: str,
        estimated_pickup_time: Optional[datetime] = None,
        notes: Optional[str] = None,
    ) -> dict:
        actor = self.identity.require(user_id)
        listing = self.listings.get(listing_id)
        check_transition(listing, "reserved")
        claim = self.claims.reserve(listing["_id"], actor, as_utc(estimated_pickup_time), notes)
        self._change_status(listing, "reserved", actor.user_id)
        return claim

    def claim(self, listing_id: str, user_id: str, notes: Optional[str] = None) -> dict:
        """Claim outright; a prior reservation by the same user is upgraded, not duplicated."""
        actor = self.identity.require(user_id)
        listing = self.listings.get(listing_id)
        check_transition(listing, "claimed")
        claim = self.claims.claim(listing["_id"], actor, notes)
        self._change_status(listing, "claimed", actor.user_id)
        return claim

    def unclaim(self, listing_id: str, user_id: str) -> dict:
        actor = self.identity.require(user_id)
        listing = self.listings.get(listing_id)
        if self.claims.find_live(listing["_id"], actor.user_id) is None:
            raise NotFound("No active claim found")
        if listing["status"] != "available":
            check_transition(listing, "available")
        elif not listing.get("is_active", True):
            raise Conflict("Food listing has been removed")
        claim = self.claims.cancel(listing["_id"], actor.user_id)
        # every unclaim is announced, including on an already available listing
        self._change_status(listing, "available", actor.user_id)
        return claim

    # ------------------------------------------------------------------
    # Expiry
    # ------------------------------------------------------------------
    def expire_overdue(self, now: Optional[datetime] = None) -> list:
        """Move overdue available/reserved listings to expired. Only runs when asked."""
        expired = []
        for listing in self.listings.overdue(as_utc(now)):
            updated = self._change_status(listing, "expired")
            self.notifications.notify(
                updated["donor_id"],
                "Food Listing Expired",
                f'Your food listing "{updated["title"]}" has expired',
                "food-expired",
                updated["_id"],
            )
            expired.append(updated)
        if expired:
            log.info("Expired %d overdue listings", len(expired))
        return expired
