"""Food listing records and their status rules.

Status moves only along these edges:

    available -> reserved -> claimed
    available | expired -> claimed
    reserved | claimed -> available      (claim cancelled)
    available | reserved -> expired      (expiry sweep)

A soft-deleted listing (``is_active`` false) accepts no further changes
but stays readable by id.
"""
import logging
import math
import re
from typing import Optional

from pymongo import ReturnDocument

from database import create_document, object_id, paginate, serialize, utcnow
from errors import Conflict, NotFound
from schemas import FoodListing

log = logging.getLogger("foodshare.listings")

COLLECTION = "foodlisting"
EARTH_RADIUS_KM = 6371.0

# target status -> statuses it may be entered from
TRANSITIONS = {
    "reserved": {"available"},
    "claimed": {"available", "reserved", "expired"},
    "available": {"reserved", "claimed"},
    "expired": {"available", "reserved"},
}

DIETARY_FLAGS = ("vegetarian", "vegan", "gluten_free", "nut_free")


# Helpers

def central_angle(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Angle in radians between two points on the sphere (haversine)."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    return 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    return EARTH_RADIUS_KM * central_angle(lat1, lon1, lat2, lon2)


def check_transition(listing: dict, target: str) -> None:
    if not listing.get("is_active", True):
        raise Conflict("Food listing has been removed")
    current = listing.get("status")
    if current not in TRANSITIONS[target]:
        if target == "reserved":
            raise Conflict("Food is no longer available")
        if target == "claimed":
            raise Conflict("Food has already been claimed")
        raise Conflict(f"Cannot change food status from {current} to {target}")


class ListingStore:
    def __init__(self, database):
        self.db = database
        self.collection = database[COLLECTION]

    # ------------------------------------------------------------------
    # Single records
    # ------------------------------------------------------------------
    def find(self, listing_id: str) -> Optional[dict]:
        oid = object_id(listing_id)
        if oid is None:
            return None
        return serialize(self.collection.find_one({"_id": oid}))

    def get(self, listing_id: str) -> dict:
        listing = self.find(listing_id)
        if listing is None:
            raise NotFound("Food listing not found")
        return listing

    def insert(self, listing: FoodListing) -> dict:
        new_id = create_document(COLLECTION, listing, database=self.db)
        log.info("Listing %s created by %s", new_id, listing.donor_id)
        return self.get(new_id)

    def set_status(self, listing_id: str, status: str) -> dict:
        """Write a new status. No version check: concurrent writers race and the last one wins."""
        doc = self.collection.find_one_and_update(
            {"_id": object_id(listing_id)},
            {"$set": {"status": status, "updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            raise NotFound("Food listing not found")
        log.info("Listing %s is now %s", listing_id, status)
        return serialize(doc)

    def update_fields(self, listing_id: str, changes: dict) -> dict:
        changes = {k: v for k, v in changes.items() if k not in ("status", "is_active", "donor_id", "_id")}
        changes["updated_at"] = utcnow()
        doc = self.collection.find_one_and_update(
            {"_id": object_id(listing_id)},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            raise NotFound("Food listing not found")
        return serialize(doc)

    def deactivate(self, listing_id: str) -> None:
        self.collection.update_one(
            {"_id": object_id(listing_id)},
            {"$set": {"is_active": False, "updated_at": utcnow()}},
        )
        log.info("Listing %s soft-deleted", listing_id)

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------
    def search(
        self,
        status: Optional[str] = None,
        food_type: Optional[str] = None,
        location: Optional[str] = None,
        priority: Optional[str] = None,
        search: Optional[str] = None,
        dietary: Optional[dict] = None,
        page: int = 1,
        limit: int = 20,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> dict:
        query = {"is_active": True}
        if status:
            query["status"] = status
        if food_type:
            query["food_type"] = food_type
        if location:
            query["location"] = {"$regex": re.escape(location), "$options": "i"}
        if priority:
            query["priority"] = priority
        for flag in DIETARY_FLAGS:
            if dietary and dietary.get(flag):
                query[f"dietary_info.{flag}"] = True
        if search:
            pattern = {"$regex": re.escape(search), "$options": "i"}
            query["$or"] = [
                {"title": pattern},
                {"description": pattern},
                {"donor": pattern},
                {"tags": pattern},
            ]
        direction = -1 if sort_order == "desc" else 1
        listings, pagination = paginate(
            self.collection, query, page, limit, sort=[(sort_by, direction)]
        )
        return {"listings": listings, "pagination": pagination}

    def nearby(self, latitude: float, longitude: float, radius_km: float = 10, limit: int = 20) -> list:
        """Available listings inside the spherical cap of ``radius_km`` around the centre."""
        max_angle = radius_km / EARTH_RADIUS_KM
        query = {
            "is_active": True,
            "status": "available",
            "coordinates": {"$ne": None},
            "coordinates.latitude": {"$ne": None},
            "coordinates.longitude": {"$ne": None},
        }
        results = []
        for doc in self.collection.find(query).sort("created_at", -1):
            coords = doc["coordinates"]
            angle = central_angle(latitude, longitude, coords["latitude"], coords["longitude"])
            if angle <= max_angle:
                item = serialize(doc)
                item["distance_km"] = round(angle * EARTH_RADIUS_KM, 2)
                results.append(item)
                if len(results) >= limit:
                    break
        return results

    def by_donor(self, donor_id: str, status: Optional[str] = None, page: int = 1, limit: int = 20) -> dict:
        query = {"donor_id": donor_id, "is_active": True}
        if status:
            query["status"] = status
        donations, pagination = paginate(self.collection, query, page, limit, sort=[("created_at", -1)])
        return {"donations": donations, "pagination": pagination}

    def all_listings(self, status: Optional[str] = None, page: int = 1, limit: int = 50) -> dict:
        """Admin view: includes soft-deleted listings."""
        query = {}
        if status:
            query["status"] = status
        listings, pagination = paginate(self.collection, query, page, limit, sort=[("created_at", -1)])
        return {"listings": listings, "pagination": pagination}

    def overdue(self, now=None) -> list:
        now = now or utcnow()
        query = {
            "is_active": True,
            "status": {"$in": sorted(TRANSITIONS["expired"])},
            "exact_expiry_date": {"$ne": None, "$lt": now},
        }
        return [serialize(d) for d in self.collection.find(query)]
