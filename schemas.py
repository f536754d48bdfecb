"""
Database Schemas for the food-sharing backend

Each Pydantic model maps to a MongoDB collection (lowercased class name):
- Individual / NGO / SocialWorker -> "individual" / "ngo" / "socialworker"
- FoodListing -> "foodlisting"
- FoodClaim -> "foodclaim"
- ChatMessage -> "chatmessage"
- Notification -> "notification"
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

Role = Literal["individual", "ngo", "social-worker"]
FoodType = Literal["fresh", "cooked", "packaged"]
ListingStatus = Literal["available", "reserved", "claimed", "expired"]
Priority = Literal["low", "medium", "high", "urgent"]
ClaimType = Literal["reserved", "claimed"]
ClaimStatus = Literal["pending", "confirmed", "picked-up", "cancelled"]
SenderType = Literal["donor", "recipient"]
MessageType = Literal["text", "image", "location"]
NotificationType = Literal["new-food", "food-claimed", "food-expired", "message", "system"]
NotificationPriority = Literal["low", "medium", "high"]

# claims still holding the listing for their claimant
LIVE_CLAIM_STATUSES = ("pending", "confirmed")


# -------- User profiles --------
class Individual(BaseModel):
    user_id: str = Field(..., description="External identity string")
    full_name: str
    phone_number: Optional[str] = None
    age: int = Field(..., ge=0, le=130)
    occupation: str
    location: str
    skills: Optional[str] = None
    interests: Optional[str] = None
    availability: Optional[str] = None
    preferred_causes: Optional[str] = None
    personal_motivation: Optional[str] = None
    languages: Optional[str] = None
    description: Optional[str] = None


class NGO(BaseModel):
    user_id: str = Field(..., description="External identity string")
    organization_name: str
    registration_number: str
    phone_number: Optional[str] = None
    founded_year: int = Field(..., ge=1800, le=2100)
    focus_areas: str
    location: str
    team_size: int = Field(..., ge=1)
    contact_person: str
    website: Optional[str] = None
    mission_statement: Optional[str] = None
    description: Optional[str] = None


class SocialWorker(BaseModel):
    user_id: str = Field(..., description="External identity string")
    full_name: str
    phone_number: Optional[str] = None
    experience: int = Field(..., ge=0, description="Years of experience")
    education: str
    specialization: str
    current_employer: Optional[str] = None
    license_certification: str
    working_areas: str
    languages: Optional[str] = None
    availability: Optional[str] = None
    description: Optional[str] = None


# -------- Food listings --------
class Coordinates(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class DietaryInfo(BaseModel):
    vegetarian: bool = False
    vegan: bool = False
    gluten_free: bool = False
    nut_free: bool = False


class ContactInfo(BaseModel):
    phone: Optional[str] = None
    email: Optional[EmailStr] = None
    preferred_contact: Literal["phone", "email", "chat"] = "chat"


class FoodListing(BaseModel):
    title: str = Field(..., description="Short title of the food on offer")
    description: str
    location: str = Field(..., description="Free-text pickup location")
    coordinates: Optional[Coordinates] = None
    donor: str = Field(..., description="Donor display name")
    donor_id: str
    donor_type: Role
    quantity: str = Field(..., description="Free text, e.g. '5 kg'")
    expiry_time: str = Field(..., description="Free text, e.g. '24 hours'")
    exact_expiry_date: Optional[datetime] = None
    food_type: FoodType
    dietary_info: DietaryInfo = Field(default_factory=DietaryInfo)
    status: ListingStatus = "available"
    images: List[str] = []
    contact_info: ContactInfo = Field(default_factory=ContactInfo)
    pickup_instructions: Optional[str] = None
    servings: Optional[int] = Field(None, ge=0)
    tags: List[str] = []
    priority: Priority = "medium"
    is_active: bool = True


class FoodClaim(BaseModel):
    listing_id: str = Field(..., description="FoodListing _id as string")
    claimed_by: str
    claimer_name: str
    claimer_type: Role
    claim_type: ClaimType
    estimated_pickup_time: Optional[datetime] = None
    actual_pickup_time: Optional[datetime] = None
    notes: Optional[str] = None
    status: ClaimStatus = "pending"


class ChatMessage(BaseModel):
    listing_id: str
    sender_id: str
    sender_name: str
    sender_type: SenderType
    message: str
    message_type: MessageType = "text"
    is_read: bool = False


class Notification(BaseModel):
    user_id: str = Field(..., description="Target user")
    title: str
    message: str
    type: NotificationType
    related_id: Optional[str] = None
    is_read: bool = False
    priority: NotificationPriority = "medium"
