"""Identity lookup over the three profile collections.

An external identity string belongs to exactly one of Individual, NGO or
SocialWorker. Lookups search those collections in that fixed order and the
first hit wins.
"""
import logging
from dataclasses import dataclass, field
from typing import Optional

from pydantic import BaseModel
from pymongo.errors import DuplicateKeyError

from database import create_document, get_documents, serialize, utcnow
from errors import ActorNotFound, Conflict, NotFound, ValidationFailed
from schemas import NGO, Individual, SocialWorker

log = logging.getLogger("foodshare.identity")

# search order matters: an id present in several collections resolves to the first
ROLE_COLLECTIONS = {
    "individual": "individual",
    "ngo": "ngo",
    "social-worker": "socialworker",
}

PROFILE_MODELS = {
    "individual": Individual,
    "ngo": NGO,
    "social-worker": SocialWorker,
}


def display_name(profile: dict) -> str:
    return (
        profile.get("full_name")
        or profile.get("organization_name")
        or profile.get("contact_person")
        or ""
    )


@dataclass(frozen=True)
class Actor:
    user_id: str
    role: str
    name: str
    profile: dict = field(default_factory=dict, compare=False)


class IdentityLookup:
    def __init__(self, database):
        self.db = database

    def ensure_indexes(self) -> None:
        for collection in ROLE_COLLECTIONS.values():
            self.db[collection].create_index("user_id", unique=True)

    def resolve(self, user_id: Optional[str]) -> Optional[Actor]:
        if not user_id:
            return None
        for role, collection in ROLE_COLLECTIONS.items():
            doc = self.db[collection].find_one({"user_id": user_id})
            if doc:
                profile = serialize(doc)
                profile["user_type"] = role
                return Actor(user_id=user_id, role=role, name=display_name(profile), profile=profile)
        return None

    def require(self, user_id: Optional[str]) -> Actor:
        """Resolve the acting user or fail; every mutation goes through here first."""
        if not user_id:
            raise ValidationFailed("User ID is required")
        actor = self.resolve(user_id)
        if actor is None:
            raise ActorNotFound()
        return actor

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------
    def register(self, role: str, profile: BaseModel) -> dict:
        if role not in ROLE_COLLECTIONS:
            raise NotFound(f"Unknown user type '{role}'")
        if self.resolve(profile.user_id) is not None:
            raise Conflict("User already registered")
        collection = ROLE_COLLECTIONS[role]
        try:
            create_document(collection, profile, database=self.db)
        except DuplicateKeyError:
            # lost a race with a concurrent registration of the same id
            raise Conflict("User already registered")
        log.info("Registered %s profile for %s", role, profile.user_id)
        doc = serialize(self.db[collection].find_one({"user_id": profile.user_id}))
        doc["user_type"] = role
        return doc

    def update(self, role: str, user_id: str, changes: dict) -> dict:
        if role not in ROLE_COLLECTIONS:
            raise NotFound(f"Unknown user type '{role}'")
        if not user_id:
            raise ValidationFailed("User ID is required")
        allowed = set(PROFILE_MODELS[role].model_fields) - {"user_id"}
        update = {k: v for k, v in changes.items() if k in allowed}
        update["updated_at"] = utcnow()
        collection = self.db[ROLE_COLLECTIONS[role]]
        result = collection.update_one({"user_id": user_id}, {"$set": update})
        if result.matched_count == 0:
            raise NotFound("Profile not found")
        doc = serialize(collection.find_one({"user_id": user_id}))
        doc["user_type"] = role
        return doc

    def list_users(self) -> dict:
        users = []
        counts = {}
        for role, collection in ROLE_COLLECTIONS.items():
            docs = [serialize(d) for d in get_documents(collection, database=self.db)]
            for d in docs:
                d["user_type"] = role
            counts[role] = len(docs)
            users.extend(docs)
        return {
            "individuals": counts["individual"],
            "ngos": counts["ngo"],
            "social_workers": counts["social-worker"],
            "total": len(users),
            "users": users,
        }
