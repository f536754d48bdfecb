"""Claim ledger: reservation and pickup records against listings.

There is no unique index on (listing, claimant). Instead every write path
first looks for that pair's live claim and updates it in place, so at most
one live claim per pair exists as long as requests do not interleave.
"""
import logging
from datetime import datetime
from typing import Optional

from pymongo import ReturnDocument

from database import create_document, object_id, paginate, serialize, utcnow
from errors import NotFound
from identity import Actor
from listings import COLLECTION as LISTING_COLLECTION
from schemas import LIVE_CLAIM_STATUSES, FoodClaim

log = logging.getLogger("foodshare.claims")

COLLECTION = "foodclaim"


class ClaimLedger:
    def __init__(self, database):
        self.db = database
        self.collection = database[COLLECTION]

    def _get(self, claim_id) -> dict:
        return serialize(self.collection.find_one({"_id": object_id(claim_id)}))

    def find_live(self, listing_id: str, claimant_id: Optional[str] = None) -> Optional[dict]:
        """Most recent live claim on a listing, optionally for one claimant."""
        query = {"listing_id": listing_id, "status": {"$in": list(LIVE_CLAIM_STATUSES)}}
        if claimant_id is not None:
            query["claimed_by"] = claimant_id
        docs = list(self.collection.find(query).sort("created_at", -1).limit(1))
        return serialize(docs[0]) if docs else None

    def reserve(
        self,
        listing_id: str,
        actor: Actor,
        estimated_pickup_time: Optional[datetime] = None,
        notes: Optional[str] = None,
    ) -> dict:
        live = self.find_live(listing_id, actor.user_id)
        if live:
            doc = self.collection.find_one_and_update(
                {"_id": object_id(live["_id"])},
                {"$set": {
                    "claim_type": "reserved",
                    "estimated_pickup_time": estimated_pickup_time,
                    "notes": notes,
                    "updated_at": utcnow(),
                }},
                return_document=ReturnDocument.AFTER,
            )
            return serialize(doc)
        claim = FoodClaim(
            listing_id=listing_id,
            claimed_by=actor.user_id,
            claimer_name=actor.name,
            claimer_type=actor.role,
            claim_type="reserved",
            estimated_pickup_time=estimated_pickup_time,
            notes=notes,
            status="pending",
        )
        new_id = create_document(COLLECTION, claim, database=self.db)
        log.info("Claim %s: %s reserved listing %s", new_id, actor.user_id, listing_id)
        return self._get(new_id)

    def claim(self, listing_id: str, actor: Actor, notes: Optional[str] = None) -> dict:
        """Upgrade the actor's live claim to picked-up, or record a new picked-up claim."""
        now = utcnow()
        live = self.find_live(listing_id, actor.user_id)
        if live:
            doc = self.collection.find_one_and_update(
                {"_id": object_id(live["_id"])},
                {"$set": {
                    "claim_type": "claimed",
                    "status": "picked-up",
                    "actual_pickup_time": now,
                    "notes": notes if notes is not None else live.get("notes"),
                    "updated_at": now,
                }},
                return_document=ReturnDocument.AFTER,
            )
            log.info("Claim %s upgraded to picked-up", live["_id"])
            return serialize(doc)
        claim = FoodClaim(
            listing_id=listing_id,
            claimed_by=actor.user_id,
            claimer_name=actor.name,
            claimer_type=actor.role,
            claim_type="claimed",
            actual_pickup_time=now,
            notes=notes,
            status="picked-up",
        )
        new_id = create_document(COLLECTION, claim, database=self.db)
        log.info("Claim %s: %s claimed listing %s", new_id, actor.user_id, listing_id)
        return self._get(new_id)

    def cancel(self, listing_id: str, claimant_id: str) -> dict:
        live = self.find_live(listing_id, claimant_id)
        if live is None:
            raise NotFound("No active claim found")
        doc = self.collection.find_one_and_update(
            {"_id": object_id(live["_id"])},
            {"$set": {"status": "cancelled", "updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        log.info("Claim %s cancelled by %s", live["_id"], claimant_id)
        return serialize(doc)

    def by_claimant(self, claimant_id: str, status: Optional[str] = None, page: int = 1, limit: int = 20) -> dict:
        query = {"claimed_by": claimant_id}
        if status:
            query["status"] = status
        claims, pagination = paginate(self.collection, query, page, limit, sort=[("created_at", -1)])
        listings = self.db[LISTING_COLLECTION]
        for claim in claims:
            oid = object_id(claim["listing_id"])
            claim["listing"] = serialize(listings.find_one({"_id": oid})) if oid else None
        return {"claims": claims, "pagination": pagination}

    def by_listing(self, listing_id: str) -> list:
        return [serialize(d) for d in self.collection.find({"listing_id": listing_id}).sort("created_at", -1)]
