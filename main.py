import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.routing import APIRoute
from pydantic import BaseModel, ConfigDict, Field
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

import database
from chat import ChatChannel
from claims import ClaimLedger
from config import Settings, load_settings
from errors import FoodShareError, ServiceUnavailable
from identity import IdentityLookup
from listings import ListingStore
from logging_config import setup_logging
from notifications import NotificationService
from realtime import (
    ERROR,
    LOCATION_SHARED,
    USER_TYPING,
    Connection,
    WebSocketBroadcaster,
    listing_scope,
    user_scope,
)
from schemas import (
    NGO,
    ContactInfo,
    Coordinates,
    DietaryInfo,
    FoodType,
    Individual,
    MessageType,
    Priority,
    SocialWorker,
)
from stats import listing_stats
from workflow import DonationWorkflow

log = logging.getLogger("foodshare.api")


@dataclass
class Services:
    db: object
    identity: IdentityLookup
    listings: ListingStore
    claims: ClaimLedger
    notifications: NotificationService
    chat: ChatChannel
    workflow: DonationWorkflow
    broadcaster: WebSocketBroadcaster


def build_services(db, broadcaster: WebSocketBroadcaster) -> Services:
    identity = IdentityLookup(db)
    identity.ensure_indexes()
    listings = ListingStore(db)
    claims = ClaimLedger(db)
    notifications = NotificationService(db, broadcaster)
    chat = ChatChannel(db, identity, listings, claims, notifications, broadcaster)
    workflow = DonationWorkflow(identity, listings, claims, notifications, broadcaster)
    return Services(db, identity, listings, claims, notifications, chat, workflow, broadcaster)


def get_services(request: Request) -> Services:
    services = request.app.state.services
    if services is None:
        raise ServiceUnavailable("Database not available")
    return services


def ok(data=None, message: Optional[str] = None) -> dict:
    body = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return body


router = APIRouter()


@router.get("/")
def root():
    return {
        "name": "FoodShare",
        "message": "Backend running",
        "features": ["User Management", "Food Donations", "Real-time Chat", "Notifications"],
    }


@router.get("/test")
def test_database(request: Request):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": [],
    }
    services = request.app.state.services
    if services is None:
        return response
    try:
        response["database_name"] = services.db.name
        response["connection_status"] = "Connected"
        response["collections"] = services.db.list_collection_names()
        response["database"] = "✅ Connected & Working"
    except Exception as e:
        log.warning("Database check failed: %s", e)
        response["database"] = f"⚠️ Connected but error: {str(e)[:80]}"
    return response


# -------- Users --------
class ProfileUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    user_id: str


@router.get("/api/user/{user_id}")
def get_user(user_id: str, services: Services = Depends(get_services)):
    actor = services.identity.require(user_id)
    return ok(actor.profile)


@router.post("/api/register/individual", status_code=201)
def register_individual(payload: Individual, services: Services = Depends(get_services)):
    return ok(services.identity.register("individual", payload), "Individual registered successfully")


@router.post("/api/register/ngo", status_code=201)
def register_ngo(payload: NGO, services: Services = Depends(get_services)):
    return ok(services.identity.register("ngo", payload), "NGO registered successfully")


@router.post("/api/register/social-worker", status_code=201)
def register_social_worker(payload: SocialWorker, services: Services = Depends(get_services)):
    return ok(services.identity.register("social-worker", payload), "Social Worker registered successfully")


@router.put("/api/update/{user_type}")
def update_profile(user_type: str, payload: ProfileUpdateRequest, services: Services = Depends(get_services)):
    profile = services.identity.update(user_type, payload.user_id, payload.model_extra or {})
    return ok(profile, "Profile updated successfully")


@router.get("/api/users")
def list_users(services: Services = Depends(get_services)):
    return ok(services.identity.list_users())


# -------- Listings --------
class CreateListingRequest(BaseModel):
    user_id: str
    title: str
    description: str
    location: str
    coordinates: Optional[Coordinates] = None
    quantity: str
    expiry_time: str
    exact_expiry_date: Optional[datetime] = None
    food_type: FoodType
    dietary_info: DietaryInfo = Field(default_factory=DietaryInfo)
    images: List[str] = []
    contact_info: ContactInfo = Field(default_factory=ContactInfo)
    pickup_instructions: Optional[str] = None
    servings: Optional[int] = Field(None, ge=0)
    tags: List[str] = []
    priority: Priority = "medium"


class UpdateListingRequest(BaseModel):
    user_id: str
    title: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    coordinates: Optional[Coordinates] = None
    quantity: Optional[str] = None
    expiry_time: Optional[str] = None
    exact_expiry_date: Optional[datetime] = None
    food_type: Optional[FoodType] = None
    dietary_info: Optional[DietaryInfo] = None
    images: Optional[List[str]] = None
    contact_info: Optional[ContactInfo] = None
    pickup_instructions: Optional[str] = None
    servings: Optional[int] = Field(None, ge=0)
    tags: Optional[List[str]] = None
    priority: Optional[Priority] = None


class ActorRequest(BaseModel):
    user_id: str


@router.get("/api/food/listings")
def search_listings(
    status: Optional[str] = None,
    food_type: Optional[str] = None,
    location: Optional[str] = None,
    priority: Optional[str] = None,
    search: Optional[str] = None,
    vegetarian: bool = False,
    vegan: bool = False,
    gluten_free: bool = False,
    nut_free: bool = False,
    limit: int = Query(20, ge=1, le=100),
    page: int = Query(1, ge=1),
    sort_by: str = "created_at",
    sort_order: Literal["asc", "desc"] = "desc",
    services: Services = Depends(get_services),
):
    result = services.listings.search(
        status=status,
        food_type=food_type,
        location=location,
        priority=priority,
        search=search,
        dietary={"vegetarian": vegetarian, "vegan": vegan, "gluten_free": gluten_free, "nut_free": nut_free},
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return ok(result)


@router.get("/api/food/listings/{listing_id}")
def get_listing(listing_id: str, services: Services = Depends(get_services)):
    return ok(services.listings.get(listing_id))


@router.post("/api/food/listings", status_code=201)
def create_listing(payload: CreateListingRequest, services: Services = Depends(get_services)):
    data = payload.model_dump(exclude={"user_id"})
    listing = services.workflow.create_listing(payload.user_id, data)
    return ok(listing, "Food listing created successfully")


@router.put("/api/food/listings/{listing_id}")
def update_listing(listing_id: str, payload: UpdateListingRequest, services: Services = Depends(get_services)):
    changes = payload.model_dump(exclude_unset=True, exclude={"user_id"})
    listing = services.workflow.update_listing(listing_id, payload.user_id, changes)
    return ok(listing, "Food listing updated successfully")


@router.delete("/api/food/listings/{listing_id}")
def delete_listing(listing_id: str, payload: ActorRequest, services: Services = Depends(get_services)):
    services.workflow.delete_listing(listing_id, payload.user_id)
    return ok(message="Food listing deleted successfully")


@router.get("/api/food/listings/{listing_id}/claims")
def listing_claims(listing_id: str, services: Services = Depends(get_services)):
    listing = services.listings.get(listing_id)
    return ok(services.claims.by_listing(listing["_id"]))


class NearbyRequest(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    radius_km: float = Field(10, gt=0)
    limit: int = Field(20, ge=1, le=100)


@router.post("/api/food/nearby")
def nearby_listings(req: NearbyRequest, services: Services = Depends(get_services)):
    items = services.listings.nearby(req.latitude, req.longitude, req.radius_km, req.limit)
    return ok({
        "listings": items,
        "center": {"latitude": req.latitude, "longitude": req.longitude},
        "radius": req.radius_km,
        "count": len(items),
    })


@router.get("/api/food/stats")
def food_stats(period: str = "30d", user_id: Optional[str] = None, services: Services = Depends(get_services)):
    return ok(listing_stats(services.db, period=period, user_id=user_id))


# -------- Claims --------
class ReserveRequest(BaseModel):
    user_id: str
    estimated_pickup_time: Optional[datetime] = None
    notes: Optional[str] = None


class ClaimRequest(BaseModel):
    user_id: str
    notes: Optional[str] = None


@router.post("/api/food/reserve/{listing_id}")
def reserve_listing(listing_id: str, payload: ReserveRequest, services: Services = Depends(get_services)):
    claim = services.workflow.reserve(listing_id, payload.user_id, payload.estimated_pickup_time, payload.notes)
    return ok(claim, "Food reserved successfully")


@router.post("/api/food/claim/{listing_id}")
def claim_listing(listing_id: str, payload: ClaimRequest, services: Services = Depends(get_services)):
    claim = services.workflow.claim(listing_id, payload.user_id, payload.notes)
    return ok(claim, "Food claimed successfully")


@router.delete("/api/food/unclaim/{listing_id}")
def unclaim_listing(listing_id: str, payload: ActorRequest, services: Services = Depends(get_services)):
    services.workflow.unclaim(listing_id, payload.user_id)
    return ok(message="Claim cancelled successfully")


@router.get("/api/food/my-donations/{user_id}")
def my_donations(
    user_id: str,
    status: Optional[str] = None,
    limit: int = Query(20, ge=1, le=100),
    page: int = Query(1, ge=1),
    services: Services = Depends(get_services),
):
    return ok(services.listings.by_donor(user_id, status=status, page=page, limit=limit))


@router.get("/api/food/my-claims/{user_id}")
def my_claims(
    user_id: str,
    status: Optional[str] = None,
    limit: int = Query(20, ge=1, le=100),
    page: int = Query(1, ge=1),
    services: Services = Depends(get_services),
):
    return ok(services.claims.by_claimant(user_id, status=status, page=page, limit=limit))


# -------- Chat --------
class SendMessageRequest(BaseModel):
    user_id: str
    message: str
    message_type: MessageType = "text"


@router.get("/api/chat/{listing_id}")
def chat_history(
    listing_id: str,
    limit: int = Query(50, ge=1, le=200),
    page: int = Query(1, ge=1),
    services: Services = Depends(get_services),
):
    return ok(services.chat.history(listing_id, page=page, limit=limit))


@router.post("/api/chat/{listing_id}", status_code=201)
def send_message(listing_id: str, payload: SendMessageRequest, services: Services = Depends(get_services)):
    msg = services.chat.send(listing_id, payload.user_id, payload.message, payload.message_type)
    return ok(msg, "Message sent successfully")


@router.put("/api/chat/{listing_id}/read")
def mark_chat_read(listing_id: str, payload: ActorRequest, services: Services = Depends(get_services)):
    updated = services.chat.mark_read(listing_id, payload.user_id)
    return ok({"updated": updated}, "Messages marked as read")


# -------- Notifications --------
@router.get("/api/notifications/{user_id}")
def list_notifications(
    user_id: str,
    is_read: Optional[bool] = None,
    notification_type: Optional[str] = Query(None, alias="type"),
    limit: int = Query(20, ge=1, le=100),
    page: int = Query(1, ge=1),
    services: Services = Depends(get_services),
):
    result = services.notifications.list_for_user(
        user_id, is_read=is_read, notification_type=notification_type, page=page, limit=limit
    )
    return ok(result)


@router.put("/api/notifications/{notification_id}/read")
def mark_notification_read(notification_id: str, payload: ActorRequest, services: Services = Depends(get_services)):
    return ok(services.notifications.mark_read(notification_id, payload.user_id), "Notification marked as read")


@router.put("/api/notifications/{user_id}/read-all")
def mark_all_notifications_read(user_id: str, services: Services = Depends(get_services)):
    updated = services.notifications.mark_all_read(user_id)
    return ok({"updated": updated}, "All notifications marked as read")


# -------- Admin --------
@router.get("/api/admin/food/listings")
def admin_listings(
    status: Optional[str] = None,
    limit: int = Query(50, ge=1, le=200),
    page: int = Query(1, ge=1),
    services: Services = Depends(get_services),
):
    return ok(services.listings.all_listings(status=status, page=page, limit=limit))


@router.post("/api/admin/food/expire")
def expire_listings(services: Services = Depends(get_services)):
    expired = services.workflow.expire_overdue()
    return ok({"expired": [l["_id"] for l in expired], "count": len(expired)})


# -------- Realtime WebSocket --------
async def handle_client_event(services: Services, conn: Connection, frame: dict) -> None:
    broadcaster = services.broadcaster
    event = frame.get("event")
    data = frame.get("data")

    if event == "join-user-room":
        # private rooms only for the identity verified at connect time
        if conn.user_id is None or data != conn.user_id:
            conn.push(ERROR, {"event": event, "message": "Not allowed to join this room"})
            return
        broadcaster.join(conn, user_scope(conn.user_id))
    elif event == "join-food-room":
        listing = await run_in_threadpool(services.listings.find, data)
        if listing is None:
            conn.push(ERROR, {"event": event, "message": "Food listing not found"})
            return
        broadcaster.join(conn, listing_scope(listing["_id"]))
    elif event in ("typing", "share-location"):
        data = data or {}
        if not isinstance(data, dict):
            conn.push(ERROR, {"event": event, "message": "Malformed event data"})
            return
        room = listing_scope(data.get("listing_id"))
        if conn.user_id is None or room not in conn.rooms:
            conn.push(ERROR, {"event": event, "message": "Join the food room first"})
            return
        sender = {"user_id": conn.user_id, "user_name": conn.name}
        if event == "typing":
            broadcaster.publish(room, USER_TYPING, {**sender, "is_typing": bool(data.get("is_typing"))}, exclude=conn)
        else:
            payload = {**sender, "latitude": data.get("latitude"), "longitude": data.get("longitude")}
            broadcaster.publish(room, LOCATION_SHARED, payload, exclude=conn)
    else:
        conn.push(ERROR, {"event": event, "message": "Unknown event"})


@router.websocket("/ws")
async def realtime_feed(websocket: WebSocket, user_id: Optional[str] = None):
    services = websocket.app.state.services
    await websocket.accept()
    if services is None:
        await websocket.close(code=1011)
        return
    actor = None
    if user_id:
        actor = await run_in_threadpool(services.identity.resolve, user_id)
        if actor is None:
            await websocket.close(code=1008)
            return
    conn = services.broadcaster.connect(
        websocket,
        user_id=actor.user_id if actor else None,
        name=actor.name if actor else None,
    )
    sender = asyncio.create_task(conn.pump())
    try:
        while True:
            try:
                frame = await websocket.receive_json()
            except ValueError:
                conn.push(ERROR, {"event": None, "message": "Frames must be JSON"})
                continue
            if not isinstance(frame, dict):
                conn.push(ERROR, {"event": None, "message": "Frames must be JSON objects"})
                continue
            await handle_client_event(services, conn, frame)
    except WebSocketDisconnect:
        pass
    finally:
        services.broadcaster.disconnect(conn)
        sender.cancel()


# -------- Errors --------
def route_manifest() -> List[str]:
    # app.routes may wrap included routers, so read the router itself
    routes = []
    for route in router.routes:
        if isinstance(route, APIRoute):
            for method in sorted(route.methods):
                routes.append(f"{method} {route.path}")
    return routes


def install_error_handlers(app: FastAPI, settings: Settings) -> None:
    @app.exception_handler(FoodShareError)
    async def domain_error(request: Request, exc: FoodShareError):
        return JSONResponse(status_code=exc.status_code, content={"success": False, "message": exc.message})

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"success": False, "message": "Invalid request", "errors": jsonable_encoder(exc.errors())},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        content = {"success": False, "message": exc.detail}
        if exc.status_code == 404:
            content["message"] = f"Route {request.method} {request.url.path} not found"
            content["available_routes"] = route_manifest()
        return JSONResponse(status_code=exc.status_code, content=content)

    @app.exception_handler(Exception)
    async def internal_error(request: Request, exc: Exception):
        log.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "message": "Internal Server Error",
                "error": str(exc) if settings.debug else "Something went wrong",
            },
        )


def create_app(db=None, broadcaster: Optional[WebSocketBroadcaster] = None, settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or load_settings()
    app = FastAPI(title="FoodShare Backend")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
    )

    broadcaster = broadcaster or WebSocketBroadcaster()
    app.state.services = build_services(db, broadcaster) if db is not None else None
    if db is None:
        log.warning("Database not configured; API will answer 503")
    app.include_router(router)
    install_error_handlers(app, settings)
    return app


settings = load_settings()
setup_logging(settings.log_level)
app = create_app(database.db, settings=settings)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
