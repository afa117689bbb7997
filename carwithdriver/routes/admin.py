# Admin Routes
from fastapi import APIRouter, HTTPException, Depends, BackgroundTasks
from pydantic import BaseModel
from typing import Optional
import uuid
import logging

from .shared import (
    db, get_current_admin, now_iso, to_iso, parse_datetime, normalize_day, clean_text, PRIVATE_USER_FIELDS,
    UserRole, DriverApprovalStatus, VehicleStatus, BookingStatus, OfferStatus, ConversationStatus,
    ReviewStatus, BriefStatus, INACTIVE_BOOKING_STATUSES
)
from .availability import count_trip_days, check_vehicle_availability, find_conflicting_booking
from .commission import (
    MAX_DISCOUNT_RATE, clamp_rate, apply_commission_rules, recalculate_bookings_for_range,
    recalculate_for_ranges, serialize_discount
)
from .reviews import validate_review_fields, ADMIN_NOTE_MAX
from .vehicles import VehicleUpdate, validate_vehicle_fields, serialize_vehicle
from .bookings import hydrate_bookings, TRIP_DETAIL_LIMITS
from .briefs import serialize_brief
from .chat_service import refresh_last_message
from ..email_templates import (
    send_driver_status_email, send_vehicle_status_email, send_driver_admin_message_email,
    send_booking_status_email
)

router = APIRouter(prefix="/admin", tags=["Admin"])

CONTACT_FIELDS = {"_id": 0, "id": 1, "name": 1, "email": 1, "contact_number": 1}
REVIEW_SORTS = {
    "recent": [("created_at", -1)],
    "oldest": [("created_at", 1)],
    "ratingDesc": [("rating", -1), ("created_at", -1)],
    "ratingAsc": [("rating", 1), ("created_at", -1)],
}


# ========== MODELS ==========
class StatusUpdate(BaseModel):
    status: str

class VehicleStatusUpdate(BaseModel):
    status: str
    rejected_reason: Optional[str] = None

class DriverMessage(BaseModel):
    subject: str
    message: str

class ReviewStatusUpdate(BaseModel):
    status: str
    admin_note: Optional[str] = None

class AdminReviewCreate(BaseModel):
    driver_id: str
    vehicle_id: Optional[str] = None
    rating: Optional[float] = None
    title: Optional[str] = None
    comment: Optional[str] = None
    traveler_name: Optional[str] = None
    visited_start_date: Optional[str] = None
    visited_end_date: Optional[str] = None
    status: Optional[str] = ReviewStatus.APPROVED.value

class AdminBookingUpdate(BaseModel):
    status: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    price_per_day: Optional[float] = None
    total_price: Optional[float] = None
    payment_note: Optional[str] = None
    start_point: Optional[str] = None
    end_point: Optional[str] = None
    special_requests: Optional[str] = None
    flight_number: Optional[str] = None
    arrival_time: Optional[str] = None
    departure_time: Optional[str] = None

class AdminBriefUpdate(BaseModel):
    status: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    start_location: Optional[str] = None
    end_location: Optional[str] = None
    message: Optional[str] = None
    country: Optional[str] = None

class DiscountCreate(BaseModel):
    name: str
    description: Optional[str] = None
    discount_percent: float
    start_date: str
    end_date: str
    active: bool = True

class DiscountUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    discount_percent: Optional[float] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    active: Optional[bool] = None


def require_status(value: str, enum_cls) -> str:
    allowed = [s.value for s in enum_cls]
    status = (value or "").strip().lower()
    if status not in allowed:
        raise HTTPException(status_code=400, detail=f"Status must be one of: {', '.join(allowed)}")
    return status


def discount_rate_from_percent(percent) -> float:
    return clamp_rate(percent / 100 if percent is not None else None, fallback=0.0, maximum=MAX_DISCOUNT_RATE)


async def users_by_id(ids, projection=CONTACT_FIELDS) -> dict:
    users = await db.users.find({"id": {"$in": list({i for i in ids if i})}}, projection).to_list(5000)
    return {u["id"]: u for u in users}


# ========== DRIVERS ==========
@router.get("/drivers")
async def list_driver_applications(status: Optional[str] = None, admin: dict = Depends(get_current_admin)):
    query = {"role": UserRole.DRIVER.value}
    if status:
        query["driver_status"] = require_status(status, DriverApprovalStatus)
    drivers = await db.users.find(query, PRIVATE_USER_FIELDS).sort("created_at", -1).to_list(1000)
    return {"drivers": drivers}


@router.patch("/drivers/{driver_id}/status")
async def update_driver_status(driver_id: str, data: StatusUpdate, background_tasks: BackgroundTasks,
                               admin: dict = Depends(get_current_admin)):
    status = require_status(data.status, DriverApprovalStatus)
    driver = await db.users.find_one_and_update(
        {"id": driver_id, "role": UserRole.DRIVER.value},
        {"$set": {
            "driver_status": status,
            "driver_reviewed_at": now_iso(),
            "driver_reviewed_by": admin["id"],
            "updated_at": now_iso(),
        }},
        projection=PRIVATE_USER_FIELDS,
        return_document=True
    )
    if not driver:
        raise HTTPException(status_code=404, detail="Driver application not found")

    logging.info(f"Admin {admin['id']} set driver {driver_id} to {status}")
    background_tasks.add_task(send_driver_status_email, driver, status)
    return {"driver": driver}


@router.post("/drivers/{driver_id}/email")
async def email_driver(driver_id: str, data: DriverMessage, background_tasks: BackgroundTasks,
                       admin: dict = Depends(get_current_admin)):
    subject = clean_text(data.subject)
    message = clean_text(data.message)
    if not 3 <= len(subject) <= 120:
        raise HTTPException(status_code=400, detail="Subject must be between 3 and 120 characters")
    if not 10 <= len(message) <= 2000:
        raise HTTPException(status_code=400, detail="Message must be between 10 and 2000 characters")

    driver = await db.users.find_one({"id": driver_id, "role": UserRole.DRIVER.value}, CONTACT_FIELDS)
    if not driver:
        raise HTTPException(status_code=404, detail="Driver not found")

    background_tasks.add_task(send_driver_admin_message_email, driver, subject, message, admin.get("name"))
    return {"message": "Email queued for delivery"}


# ========== VEHICLES ==========
@router.get("/vehicles")
async def list_vehicle_submissions(status: Optional[str] = None, admin: dict = Depends(get_current_admin)):
    query = {}
    if status:
        query["status"] = require_status(status, VehicleStatus)
    vehicles = await db.vehicles.find(query, {"_id": 0}).sort("created_at", -1).to_list(1000)
    drivers = await users_by_id(
        [v["driver_id"] for v in vehicles], {**CONTACT_FIELDS, "address": 1}
    )
    results = []
    for vehicle in vehicles:
        data = serialize_vehicle(vehicle)
        data["driver"] = drivers.get(vehicle["driver_id"])
        results.append(data)
    return {"vehicles": results}


@router.patch("/vehicles/{vehicle_id}/status")
async def update_vehicle_status(vehicle_id: str, data: VehicleStatusUpdate, background_tasks: BackgroundTasks,
                                admin: dict = Depends(get_current_admin)):
    status = require_status(data.status, VehicleStatus)
    reason = clean_text(data.rejected_reason, 500) if status == VehicleStatus.REJECTED.value else ""

    vehicle = await db.vehicles.find_one_and_update(
        {"id": vehicle_id},
        {"$set": {
            "status": status,
            "rejected_reason": reason or None,
            "reviewed_at": now_iso(),
            "reviewed_by": admin["id"],
            "updated_at": now_iso(),
        }},
        projection={"_id": 0},
        return_document=True
    )
    if not vehicle:
        raise HTTPException(status_code=404, detail="Vehicle submission not found")

    driver = await db.users.find_one({"id": vehicle["driver_id"]}, {**CONTACT_FIELDS, "address": 1})
    logging.info(f"Admin {admin['id']} set vehicle {vehicle_id} to {status}")
    background_tasks.add_task(send_vehicle_status_email, driver, vehicle, status, reason or None)

    result = serialize_vehicle(vehicle)
    result["driver"] = driver
    return {"vehicle": result}


@router.patch("/vehicles/{vehicle_id}")
async def update_vehicle_details(vehicle_id: str, data: VehicleUpdate, admin: dict = Depends(get_current_admin)):
    vehicle = await db.vehicles.find_one({"id": vehicle_id}, {"_id": 0, "id": 1})
    if not vehicle:
        raise HTTPException(status_code=404, detail="Vehicle submission not found")

    fields = validate_vehicle_fields(data.model_dump(exclude_unset=True))
    fields.update({"reviewed_at": now_iso(), "reviewed_by": admin["id"], "updated_at": now_iso()})
    updated = await db.vehicles.find_one_and_update(
        {"id": vehicle_id}, {"$set": fields}, projection={"_id": 0}, return_document=True
    )
    return {"vehicle": serialize_vehicle(updated)}


# ========== REVIEWS ==========
@router.get("/reviews")
async def list_reviews(status: Optional[str] = None, sort: str = "recent", admin: dict = Depends(get_current_admin)):
    query = {}
    if status:
        query["status"] = require_status(status, ReviewStatus)
    reviews = await db.reviews.find(query, {"_id": 0}).sort(REVIEW_SORTS.get(sort, REVIEW_SORTS["recent"])).to_list(1000)

    drivers = await users_by_id([r.get("driver_id") for r in reviews])
    vehicles = await db.vehicles.find(
        {"id": {"$in": list({r["vehicle_id"] for r in reviews if r.get("vehicle_id")})}},
        {"_id": 0, "id": 1, "model": 1}
    ).to_list(1000)
    vehicles_by_id = {v["id"]: v for v in vehicles}

    results = []
    for review in reviews:
        data = dict(review)
        data["driver"] = drivers.get(review.get("driver_id"))
        data["vehicle"] = vehicles_by_id.get(review.get("vehicle_id"))
        results.append(data)
    return {"reviews": results, "meta": {"total": len(results), "status": query.get("status", "all")}}


@router.post("/reviews", status_code=201)
async def create_admin_review(data: AdminReviewCreate, admin: dict = Depends(get_current_admin)):
    """Publish a review collected outside the platform"""
    fields = validate_review_fields(data.rating, data.title, data.comment)
    status = require_status(data.status or ReviewStatus.APPROVED.value, ReviewStatus)

    driver = await db.users.find_one({"id": data.driver_id, "role": UserRole.DRIVER.value}, {"_id": 0, "id": 1})
    if not driver:
        raise HTTPException(status_code=404, detail="Driver not found")
    if data.vehicle_id:
        vehicle = await db.vehicles.find_one({"id": data.vehicle_id, "driver_id": driver["id"]}, {"_id": 0, "id": 1})
        if not vehicle:
            raise HTTPException(status_code=404, detail="Vehicle not found for this driver")

    visited_start = parse_datetime(data.visited_start_date)
    visited_end = parse_datetime(data.visited_end_date)

    review = {
        "id": str(uuid.uuid4()),
        "booking_id": None,
        "vehicle_id": data.vehicle_id,
        "driver_id": driver["id"],
        "traveler_id": None,
        "traveler_name": clean_text(data.traveler_name, 120) or "Traveler",
        **fields,
        "status": status,
        "admin_note": "",
        "published_at": now_iso() if status == ReviewStatus.APPROVED.value else None,
        "trip_start_date": to_iso(visited_start) if visited_start else None,
        "trip_end_date": to_iso(visited_end) if visited_end else None,
        "created_by": admin["id"],
        "created_at": now_iso(),
        "updated_at": now_iso(),
    }
    await db.reviews.insert_one(review)
    review.pop("_id", None)
    return {"review": review}


@router.patch("/reviews/{review_id}/status")
async def update_review_status(review_id: str, data: ReviewStatusUpdate, admin: dict = Depends(get_current_admin)):
    status = require_status(data.status, ReviewStatus)
    if data.admin_note and len(data.admin_note) > ADMIN_NOTE_MAX:
        raise HTTPException(status_code=400, detail="Admin note must be under 500 characters.")

    review = await db.reviews.find_one_and_update(
        {"id": review_id},
        {"$set": {
            "status": status,
            "admin_note": clean_text(data.admin_note),
            "published_at": now_iso() if status == ReviewStatus.APPROVED.value else None,
            "updated_at": now_iso(),
        }},
        projection={"_id": 0},
        return_document=True
    )
    if not review:
        raise HTTPException(status_code=404, detail="Review not found.")

    messages = {
        ReviewStatus.APPROVED.value: "Review approved and published.",
        ReviewStatus.REJECTED.value: "Review rejected.",
    }
    return {"message": messages.get(status, "Review status updated."), "review": review}


# ========== BOOKINGS ==========
@router.get("/bookings")
async def list_bookings(admin: dict = Depends(get_current_admin)):
    bookings = await db.bookings.find({}, {"_id": 0}).sort("created_at", -1).to_list(1000)
    return {"bookings": await hydrate_bookings(bookings)}


@router.patch("/bookings/{booking_id}")
async def update_booking(booking_id: str, data: AdminBookingUpdate, background_tasks: BackgroundTasks,
                         admin: dict = Depends(get_current_admin)):
    booking = await db.bookings.find_one({"id": booking_id}, {"_id": 0})
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found.")

    provided = data.model_dump(exclude_unset=True)
    previous_status = booking.get("status")
    updates = {}

    if provided.get("status"):
        updates["status"] = require_status(provided["status"], BookingStatus)

    start = normalize_day(provided.get("start_date") or booking["start_date"])
    end = normalize_day(provided.get("end_date") or booking["end_date"])
    if start is None or end is None:
        raise HTTPException(status_code=400, detail="Start and end dates must be valid.")
    if end < start:
        raise HTTPException(status_code=400, detail="End date cannot be before start date.")
    total_days = count_trip_days(start, end)
    updates.update({"start_date": to_iso(start), "end_date": to_iso(end), "total_days": total_days})

    next_status = updates.get("status", previous_status)
    dates_changed = (to_iso(start), to_iso(end)) != (booking["start_date"], booking["end_date"])
    if next_status not in INACTIVE_BOOKING_STATUSES and (dates_changed or next_status != previous_status):
        vehicle = await db.vehicles.find_one({"id": booking["vehicle_id"]}, {"_id": 0})
        if vehicle:
            conflict = await check_vehicle_availability(vehicle, start, end, exclude_booking_id=booking_id)
        elif await find_conflicting_booking(booking["vehicle_id"], start, end, exclude_booking_id=booking_id):
            conflict = "Another booking already covers these dates."
        else:
            conflict = None
        if conflict:
            raise HTTPException(status_code=409, detail=conflict)

    if provided.get("price_per_day") is not None:
        if provided["price_per_day"] < 0:
            raise HTTPException(status_code=400, detail="Price per day must be a positive number.")
        updates["price_per_day"] = provided["price_per_day"]
    if provided.get("total_price") is not None:
        if provided["total_price"] < 0:
            raise HTTPException(status_code=400, detail="Total price must be a positive number.")
        updates["total_price"] = provided["total_price"]
    elif "price_per_day" in updates:
        updates["total_price"] = updates["price_per_day"] * total_days

    if "payment_note" in provided:
        updates["payment_note"] = clean_text(provided["payment_note"], 500)
    for field, limit in TRIP_DETAIL_LIMITS.items():
        if field in provided:
            updates[field] = clean_text(provided[field], limit)

    updates["updated_at"] = now_iso()
    await db.bookings.update_one({"id": booking_id}, {"$set": updates})
    booking.update(updates)
    await apply_commission_rules(booking)

    hydrated = (await hydrate_bookings([booking]))[0]
    if updates.get("status", previous_status) != previous_status:
        note = "An administrator updated this booking status."
        traveler = booking.get("traveler") or {}
        background_tasks.add_task(
            send_booking_status_email,
            {"name": traveler.get("full_name"), "email": traveler.get("email")},
            hydrated, hydrated.get("vehicle"), note
        )
        background_tasks.add_task(send_booking_status_email, hydrated.get("driver"), hydrated, hydrated.get("vehicle"), note)

    logging.info(f"Admin {admin['id']} updated booking {booking_id}")
    return {"booking": hydrated}


@router.delete("/bookings/{booking_id}")
async def delete_booking(booking_id: str, admin: dict = Depends(get_current_admin)):
    result = await db.bookings.delete_one({"id": booking_id})
    if result.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Booking not found.")
    await db.reviews.delete_many({"booking_id": booking_id})
    logging.info(f"Admin {admin['id']} deleted booking {booking_id}")
    return {"success": True}


# ========== BRIEFS ==========
@router.get("/briefs")
async def list_briefs(admin: dict = Depends(get_current_admin)):
    briefs = await db.tour_briefs.find({}, {"_id": 0}).sort("created_at", -1).to_list(1000)
    travelers = await users_by_id([b["traveler_id"] for b in briefs])
    return {
        "briefs": [
            serialize_brief(b, traveler=travelers.get(b["traveler_id"]), include_responses=True) for b in briefs
        ]
    }


@router.patch("/briefs/{brief_id}")
async def update_brief(brief_id: str, data: AdminBriefUpdate, admin: dict = Depends(get_current_admin)):
    brief = await db.tour_briefs.find_one({"id": brief_id}, {"_id": 0})
    if not brief:
        raise HTTPException(status_code=404, detail="Tour brief not found.")

    provided = data.model_dump(exclude_unset=True)
    updates = {}
    if provided.get("status"):
        updates["status"] = require_status(provided["status"], BriefStatus)
    for field, label in (("start_date", "start"), ("end_date", "end")):
        if provided.get(field):
            parsed = parse_datetime(provided[field])
            if parsed is None:
                raise HTTPException(status_code=400, detail=f"Invalid {label} date.")
            updates[field] = to_iso(parsed)
    if updates.get("end_date", brief["end_date"]) < updates.get("start_date", brief["start_date"]):
        raise HTTPException(status_code=400, detail="End date cannot be before start date.")
    for field in ("start_location", "end_location", "message", "country"):
        if field in provided:
            updates[field] = clean_text(provided[field])

    updates["updated_at"] = now_iso()
    brief = await db.tour_briefs.find_one_and_update(
        {"id": brief_id}, {"$set": updates}, projection={"_id": 0}, return_document=True
    )
    return {"brief": serialize_brief(brief, include_responses=True)}


@router.delete("/briefs/{brief_id}")
async def delete_brief(brief_id: str, admin: dict = Depends(get_current_admin)):
    result = await db.tour_briefs.delete_one({"id": brief_id})
    if result.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Tour brief not found.")
    return {"success": True}


# ========== OFFERS ==========
async def shape_offers(messages: list) -> list:
    conversations = await db.chat_conversations.find(
        {"id": {"$in": list({m["conversation_id"] for m in messages})}}, {"_id": 0}
    ).to_list(5000)
    conversations_by_id = {c["id"]: c for c in conversations}
    users = await users_by_id(
        [c["traveler_id"] for c in conversations] + [c["driver_id"] for c in conversations]
    )

    results = []
    for message in messages:
        offer = message.get("offer") or {}
        conversation = conversations_by_id.get(message["conversation_id"]) or {}
        results.append({
            "id": message["id"],
            **offer,
            "status": offer.get("status") or OfferStatus.PENDING.value,
            "conversation_id": message["conversation_id"],
            "body": message.get("body"),
            "warning": message.get("warning"),
            "driver": users.get(message.get("sender_id")),
            "traveler": users.get(conversation.get("traveler_id")),
            "created_at": message.get("created_at"),
            "updated_at": message.get("updated_at"),
        })
    return results


@router.get("/offers")
async def list_offers(admin: dict = Depends(get_current_admin)):
    messages = await db.chat_messages.find({"type": "offer"}, {"_id": 0}).sort("created_at", -1).to_list(1000)
    return {"offers": await shape_offers(messages)}


@router.patch("/offers/{offer_id}/status")
async def update_offer_status(offer_id: str, data: StatusUpdate, admin: dict = Depends(get_current_admin)):
    status = require_status(data.status, OfferStatus)
    message = await db.chat_messages.find_one_and_update(
        {"id": offer_id, "type": "offer"},
        {"$set": {"offer.status": status, "offer.responded_at": now_iso(), "updated_at": now_iso()}},
        projection={"_id": 0},
        return_document=True
    )
    if not message:
        raise HTTPException(status_code=404, detail="Offer not found.")
    return {"offer": (await shape_offers([message]))[0]}


@router.delete("/offers/{offer_id}")
async def delete_offer(offer_id: str, admin: dict = Depends(get_current_admin)):
    message = await db.chat_messages.find_one({"id": offer_id, "type": "offer"}, {"_id": 0})
    if not message:
        raise HTTPException(status_code=404, detail="Offer not found.")
    await db.chat_messages.delete_one({"id": offer_id})
    await db.bookings.update_many({"offer_id": offer_id}, {"$set": {"offer_id": None}})
    await refresh_last_message(message["conversation_id"])
    return {"success": True}


# ========== CONVERSATIONS ==========
@router.get("/conversations")
async def list_conversations(admin: dict = Depends(get_current_admin)):
    conversations = await db.chat_conversations.find({}, {"_id": 0}).sort("updated_at", -1).to_list(1000)
    users = await users_by_id(
        [c["traveler_id"] for c in conversations] + [c["driver_id"] for c in conversations]
    )
    messages = await db.chat_messages.find(
        {"id": {"$in": [c["last_message_id"] for c in conversations if c.get("last_message_id")]}},
        {"_id": 0, "id": 1, "body": 1, "type": 1, "created_at": 1}
    ).to_list(1000)
    messages_by_id = {m["id"]: m for m in messages}

    results = []
    for conversation in conversations:
        data = dict(conversation)
        data["traveler"] = users.get(conversation["traveler_id"])
        data["driver"] = users.get(conversation["driver_id"])
        data["last_message"] = messages_by_id.get(conversation.get("last_message_id"))
        results.append(data)
    return {"conversations": results}


@router.patch("/conversations/{conversation_id}/status")
async def update_conversation_status(conversation_id: str, data: StatusUpdate,
                                     admin: dict = Depends(get_current_admin)):
    status = require_status(data.status, ConversationStatus)
    updates = {"status": status, "updated_at": now_iso()}
    if status == ConversationStatus.CLOSED.value:
        updates.update({"traveler_unread": 0, "driver_unread": 0})

    conversation = await db.chat_conversations.find_one_and_update(
        {"id": conversation_id}, {"$set": updates}, projection={"_id": 0}, return_document=True
    )
    if not conversation:
        raise HTTPException(status_code=404, detail="Conversation not found.")
    return {"conversation": conversation}


@router.delete("/conversations/{conversation_id}")
async def delete_conversation(conversation_id: str, admin: dict = Depends(get_current_admin)):
    result = await db.chat_conversations.delete_one({"id": conversation_id})
    if result.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Conversation not found.")
    await db.chat_messages.delete_many({"conversation_id": conversation_id})
    return {"success": True}


# ========== COMMISSION DISCOUNTS ==========
@router.get("/commission-discounts")
async def list_discounts(admin: dict = Depends(get_current_admin)):
    discounts = await db.commission_discounts.find({}, {"_id": 0}).sort("start_date", -1).to_list(500)
    return {"discounts": [serialize_discount(d) for d in discounts]}


@router.post("/commission-discounts", status_code=201)
async def create_discount(data: DiscountCreate, admin: dict = Depends(get_current_admin)):
    """Create a discount and re-price the bookings it covers"""
    name = clean_text(data.name)
    if not name:
        raise HTTPException(status_code=400, detail="Discount name is required.")
    start = parse_datetime(data.start_date)
    end = parse_datetime(data.end_date)
    if start is None or end is None:
        raise HTTPException(status_code=400, detail="Start and end dates must be valid ISO dates.")
    if end < start:
        raise HTTPException(status_code=400, detail="End date must be on or after the start date.")

    discount = {
        "id": str(uuid.uuid4()),
        "name": name,
        "description": clean_text(data.description) or None,
        "discount_rate": discount_rate_from_percent(data.discount_percent),
        "start_date": to_iso(start),
        "end_date": to_iso(end),
        "active": bool(data.active),
        "created_by": admin["id"],
        "updated_by": admin["id"],
        "created_at": now_iso(),
        "updated_at": now_iso(),
    }
    await db.commission_discounts.insert_one(discount)
    recalculated = await recalculate_bookings_for_range(start, end)
    logging.info(f"Admin {admin['id']} created discount {discount['id']} ({discount['discount_rate']})")

    return {"discount": serialize_discount(discount), "recalculated_bookings": recalculated}


@router.patch("/commission-discounts/{discount_id}")
async def update_discount(discount_id: str, data: DiscountUpdate, admin: dict = Depends(get_current_admin)):
    discount = await db.commission_discounts.find_one({"id": discount_id}, {"_id": 0})
    if not discount:
        raise HTTPException(status_code=404, detail="Discount not found.")
    original_range = (discount["start_date"], discount["end_date"])

    provided = data.model_dump(exclude_unset=True)
    updates = {}
    if "name" in provided:
        updates["name"] = clean_text(provided["name"])
    if "description" in provided:
        updates["description"] = clean_text(provided["description"]) or None
    if "discount_percent" in provided:
        updates["discount_rate"] = discount_rate_from_percent(provided["discount_percent"])
    if "start_date" in provided:
        start = parse_datetime(provided["start_date"])
        if start is None:
            raise HTTPException(status_code=400, detail="Start date must be valid.")
        updates["start_date"] = to_iso(start)
    if "end_date" in provided:
        end = parse_datetime(provided["end_date"])
        if end is None:
            raise HTTPException(status_code=400, detail="End date must be valid.")
        updates["end_date"] = to_iso(end)
    if parse_datetime(updates.get("end_date", discount["end_date"])) < parse_datetime(updates.get("start_date", discount["start_date"])):
        raise HTTPException(status_code=400, detail="End date must be on or after the start date.")
    if provided.get("active") is not None:
        updates["active"] = bool(provided["active"])

    updates.update({"updated_by": admin["id"], "updated_at": now_iso()})
    discount = await db.commission_discounts.find_one_and_update(
        {"id": discount_id}, {"$set": updates}, projection={"_id": 0}, return_document=True
    )
    recalculated = await recalculate_for_ranges([original_range, (discount["start_date"], discount["end_date"])])

    return {"discount": serialize_discount(discount), "recalculated_bookings": recalculated}


@router.delete("/commission-discounts/{discount_id}")
async def delete_discount(discount_id: str, admin: dict = Depends(get_current_admin)):
    discount = await db.commission_discounts.find_one({"id": discount_id}, {"_id": 0})
    if not discount:
        raise HTTPException(status_code=404, detail="Discount not found.")
    await db.commission_discounts.delete_one({"id": discount_id})
    recalculated = await recalculate_bookings_for_range(discount["start_date"], discount["end_date"])
    logging.info(f"Admin {admin['id']} deleted discount {discount_id}")
    return {"success": True, "recalculated_bookings": recalculated}
