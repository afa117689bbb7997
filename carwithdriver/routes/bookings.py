# Booking Routes
from fastapi import APIRouter, HTTPException, Depends, BackgroundTasks
from pydantic import BaseModel, Field
from typing import List, Optional
import uuid
import logging

from .shared import (
    db, get_current_guest, get_current_driver, now_iso, now_utc, to_iso, parse_datetime,
    normalize_day, clean_text, BookingStatus, OfferStatus, ReviewStatus, INACTIVE_BOOKING_STATUSES
)
from .availability import (
    DateRangeError, parse_date_range, build_quote, count_trip_days, check_vehicle_availability,
    find_conflicting_booking, DEFAULT_PAYMENT_NOTE
)
from .commission import commission_for_booking, apply_commission_rules, DEFAULT_COMMISSION_RATE
from .reviews import validate_review_fields, booking_can_be_reviewed
from .vehicles import get_bookable_vehicle
from ..email_templates import send_booking_request_email, send_booking_alert_email, send_booking_status_email

router = APIRouter(tags=["Bookings"])

# Trip detail fields a traveller may edit, with their maximum lengths
TRIP_DETAIL_LIMITS = {
    "flight_number": 40,
    "arrival_time": 80,
    "departure_time": 80,
    "start_point": 200,
    "end_point": 200,
    "special_requests": 1000,
}


class BookingCreate(BaseModel):
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    full_name: Optional[str] = None
    email: Optional[str] = None
    phone_number: Optional[str] = None
    country: Optional[str] = None
    flight_number: Optional[str] = None
    arrival_time: Optional[str] = None
    departure_time: Optional[str] = None
    start_point: Optional[str] = None
    end_point: Optional[str] = None
    special_requests: Optional[str] = None
    offer_id: Optional[str] = None

class BookingUpdate(BaseModel):
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    flight_number: Optional[str] = None
    arrival_time: Optional[str] = None
    departure_time: Optional[str] = None
    start_point: Optional[str] = None
    end_point: Optional[str] = None
    special_requests: Optional[str] = None

class BookingResponse(BaseModel):
    action: str

class ReviewCreate(BaseModel):
    rating: Optional[float] = None
    title: Optional[str] = None
    comment: Optional[str] = None


def trip_details(fields: dict) -> dict:
    details = {}
    for field, limit in TRIP_DETAIL_LIMITS.items():
        if field in fields:
            details[field] = clean_text(fields[field], limit) or None
    return details


async def hydrate_bookings(bookings: List[dict]) -> List[dict]:
    """Attach vehicle, driver, review and offer details to booking documents"""
    if not bookings:
        return []
    vehicle_ids = list({b["vehicle_id"] for b in bookings})
    driver_ids = list({b["driver_id"] for b in bookings})
    booking_ids = [b["id"] for b in bookings]
    offer_ids = [b["offer_id"] for b in bookings if b.get("offer_id")]

    vehicles = await db.vehicles.find(
        {"id": {"$in": vehicle_ids}}, {"_id": 0, "id": 1, "model": 1, "price_per_day": 1, "images": 1}
    ).to_list(1000)
    drivers = await db.users.find(
        {"id": {"$in": driver_ids}}, {"_id": 0, "id": 1, "name": 1, "contact_number": 1, "email": 1}
    ).to_list(1000)
    reviews = await db.reviews.find({"booking_id": {"$in": booking_ids}}, {"_id": 0}).to_list(1000)
    offers = await db.chat_messages.find(
        {"id": {"$in": offer_ids}}, {"_id": 0, "id": 1, "offer": 1, "conversation_id": 1}
    ).to_list(1000)

    vehicles_by_id = {v["id"]: v for v in vehicles}
    drivers_by_id = {d["id"]: d for d in drivers}
    reviews_by_booking = {r["booking_id"]: r for r in reviews}
    offers_by_id = {o["id"]: o for o in offers}

    shaped = []
    for booking in bookings:
        review = reviews_by_booking.get(booking["id"])
        offer = offers_by_id.get(booking.get("offer_id"))
        data = {k: v for k, v in booking.items() if k != "_id"}
        data["vehicle"] = vehicles_by_id.get(booking["vehicle_id"])
        data["driver"] = drivers_by_id.get(booking["driver_id"])
        data["review"] = review
        data["can_review"] = booking_can_be_reviewed(booking, review)
        data["offer_status"] = (offer.get("offer") or {}).get("status") if offer else None
        if offer:
            data["conversation_id"] = offer.get("conversation_id")
        shaped.append(data)
    return shaped


async def set_offer_status(offer_id: Optional[str], status: OfferStatus, booking_id: Optional[str] = None):
    if not offer_id:
        return
    update = {"offer.status": status.value, "offer.responded_at": now_iso(), "updated_at": now_iso()}
    if booking_id:
        update["offer.booking_id"] = booking_id
    await db.chat_messages.update_one({"id": offer_id, "type": "offer"}, {"$set": update})


async def load_offer_for_booking(offer_id: str, traveler: dict, vehicle: dict) -> dict:
    """Validate that a chat offer can be turned into a booking for this vehicle"""
    message = await db.chat_messages.find_one({"id": offer_id, "type": "offer"}, {"_id": 0})
    if not message or not message.get("offer"):
        raise HTTPException(status_code=404, detail="Offer not found or unavailable")

    conversation = await db.chat_conversations.find_one({"id": message["conversation_id"]}, {"_id": 0})
    if not conversation:
        raise HTTPException(status_code=404, detail="Offer conversation could not be found")
    if conversation["traveler_id"] != traveler["id"]:
        raise HTTPException(status_code=403, detail="You are not authorized to use this offer.")
    if conversation["driver_id"] != vehicle["driver_id"]:
        raise HTTPException(status_code=400, detail="This offer was not issued by the selected vehicle driver.")

    offer = message["offer"]
    if offer.get("vehicle_id") != vehicle["id"]:
        raise HTTPException(status_code=400, detail="This offer applies to a different vehicle. Please refresh the page.")
    if offer.get("status") == OfferStatus.ACCEPTED.value:
        raise HTTPException(status_code=409, detail="This offer has already been accepted. Please request a new offer.")
    if offer.get("status") == OfferStatus.DECLINED.value:
        raise HTTPException(status_code=409, detail="This offer is no longer available.")

    message["conversation"] = conversation
    return message


async def get_traveler_booking(booking_id: str, user: dict) -> dict:
    booking = await db.bookings.find_one({"id": booking_id}, {"_id": 0})
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found.")
    if booking.get("traveler_id") != user["id"]:
        raise HTTPException(status_code=403, detail="You are not authorized to manage this booking.")
    return booking


async def _hydrate_one(booking_id: str) -> dict:
    booking = await db.bookings.find_one({"id": booking_id}, {"_id": 0})
    return (await hydrate_bookings([booking]))[0]


@router.post("/vehicles/{vehicle_id}/bookings", status_code=201)
async def create_vehicle_booking(vehicle_id: str, data: BookingCreate, background_tasks: BackgroundTasks,
                                 user: dict = Depends(get_current_guest)):
    """Book a vehicle directly or by accepting a driver's chat offer"""
    full_name = clean_text(data.full_name)
    email = clean_text(data.email).lower()
    phone = clean_text(data.phone_number)
    if not full_name or not email or not phone:
        raise HTTPException(status_code=400, detail="Full name, email, and phone number are required to confirm a booking")

    vehicle, driver = await get_bookable_vehicle(vehicle_id)

    offer_message = None
    if data.offer_id:
        offer_message = await load_offer_for_booking(data.offer_id, user, vehicle)
        start = normalize_day(offer_message["offer"].get("start_date"))
        end = normalize_day(offer_message["offer"].get("end_date"))
        if start is None or end is None or end < start:
            raise HTTPException(status_code=400, detail="Offer dates are invalid.")
    else:
        try:
            start, end = parse_date_range(data.start_date, data.end_date)
        except DateRangeError as e:
            raise HTTPException(status_code=400, detail=str(e))

    reason = await check_vehicle_availability(vehicle, start, end)
    if reason:
        raise HTTPException(status_code=409, detail=reason)

    quote = build_quote(vehicle, start, end)
    if offer_message:
        quote["total_price"] = offer_message["offer"]["total_price"]

    booking = {
        "id": str(uuid.uuid4()),
        "vehicle_id": vehicle["id"],
        "driver_id": driver["id"],
        "traveler_id": user["id"],
        "traveler": {
            "full_name": full_name,
            "email": email,
            "phone_number": phone,
            "country": clean_text(data.country) or None,
        },
        "start_date": quote["start_date"],
        "end_date": quote["end_date"],
        "total_days": quote["total_days"],
        "price_per_day": quote["price_per_day"],
        "total_price": quote["total_price"],
        "payment_note": DEFAULT_PAYMENT_NOTE,
        "status": BookingStatus.CONFIRMED.value if offer_message else BookingStatus.PENDING.value,
        "offer_id": offer_message["id"] if offer_message else None,
        "conversation_id": offer_message["conversation_id"] if offer_message else None,
        "commission_base_rate": DEFAULT_COMMISSION_RATE,
        "created_at": now_iso(),
        "updated_at": now_iso(),
    }
    booking.update(trip_details(data.model_dump()))
    booking.update(await commission_for_booking(booking))

    await db.bookings.insert_one(booking)
    booking.pop("_id", None)
    logging.info(f"Booking {booking['id']} created for vehicle {vehicle['id']} ({booking['status']})")

    if offer_message:
        await set_offer_status(offer_message["id"], OfferStatus.ACCEPTED, booking["id"])

    background_tasks.add_task(send_booking_request_email, booking, vehicle)
    background_tasks.add_task(send_booking_alert_email, driver, booking, vehicle)

    return {
        "booking": booking,
        "message": f"Booking request received for {vehicle.get('model')}.",
        "payment_note": booking["payment_note"],
    }


@router.get("/bookings/traveler")
async def list_traveler_bookings(user: dict = Depends(get_current_guest)):
    bookings = await db.bookings.find({"traveler_id": user["id"]}, {"_id": 0}).sort(
        [("start_date", 1), ("created_at", -1)]
    ).to_list(1000)
    return {"bookings": await hydrate_bookings(bookings)}


@router.get("/bookings/driver")
async def list_driver_bookings(driver: dict = Depends(get_current_driver)):
    bookings = await db.bookings.find({"driver_id": driver["id"]}, {"_id": 0}).sort(
        [("start_date", 1), ("created_at", -1)]
    ).to_list(1000)
    return {"bookings": await hydrate_bookings(bookings)}


@router.patch("/bookings/{booking_id}/status")
async def respond_to_booking(booking_id: str, data: BookingResponse, background_tasks: BackgroundTasks,
                             driver: dict = Depends(get_current_driver)):
    """Driver accepts or rejects a pending booking"""
    action = (data.action or "").strip().lower()
    if action not in ("accept", "reject"):
        raise HTTPException(status_code=400, detail="Specify whether you want to accept or reject the booking.")

    booking = await db.bookings.find_one({"id": booking_id}, {"_id": 0})
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found.")
    if booking["driver_id"] != driver["id"]:
        raise HTTPException(status_code=403, detail="You are not authorized to manage this booking.")
    if booking["status"] in INACTIVE_BOOKING_STATUSES:
        raise HTTPException(status_code=400, detail="This booking is no longer active.")

    if action == "accept":
        if booking["status"] == BookingStatus.CONFIRMED.value:
            return {"booking": await _hydrate_one(booking_id)}
        start = parse_datetime(booking["start_date"])
        end = parse_datetime(booking["end_date"])
        if await find_conflicting_booking(booking["vehicle_id"], start, end, exclude_booking_id=booking_id):
            raise HTTPException(status_code=409, detail="Another confirmed booking overlaps these dates. Please adjust availability.")
        new_status = BookingStatus.CONFIRMED
        note = "Your driver confirmed this booking request."
    else:
        if booking["status"] != BookingStatus.PENDING.value:
            raise HTTPException(status_code=400, detail="Only pending bookings can be rejected.")
        new_status = BookingStatus.REJECTED
        note = "Your driver declined this booking. Start a new chat to adjust plans."

    await db.bookings.update_one(
        {"id": booking_id},
        {"$set": {"status": new_status.value, "updated_at": now_iso()}}
    )
    await set_offer_status(
        booking.get("offer_id"),
        OfferStatus.ACCEPTED if new_status == BookingStatus.CONFIRMED else OfferStatus.DECLINED
    )
    logging.info(f"Driver {driver['id']} set booking {booking_id} to {new_status.value}")

    hydrated = await _hydrate_one(booking_id)
    traveler = booking.get("traveler") or {}
    background_tasks.add_task(
        send_booking_status_email,
        {"name": traveler.get("full_name"), "email": traveler.get("email")},
        hydrated, hydrated.get("vehicle"), note
    )
    return {"booking": hydrated}


@router.patch("/bookings/{booking_id}")
async def update_traveler_booking(booking_id: str, data: BookingUpdate, user: dict = Depends(get_current_guest)):
    booking = await get_traveler_booking(booking_id, user)
    if booking["status"] in INACTIVE_BOOKING_STATUSES:
        raise HTTPException(status_code=400, detail="This booking is no longer active.")

    current_start = parse_datetime(booking["start_date"])
    if current_start and current_start < now_utc():
        raise HTTPException(status_code=400, detail="Trips that have already started cannot be edited. Please contact your driver.")

    provided = data.model_dump(exclude_unset=True)
    next_start = current_start
    next_end = parse_datetime(booking["end_date"])
    if "start_date" in provided:
        next_start = normalize_day(provided["start_date"])
        if next_start is None:
            raise HTTPException(status_code=400, detail="Please provide a valid start date.")
    if "end_date" in provided:
        next_end = normalize_day(provided["end_date"])
        if next_end is None:
            raise HTTPException(status_code=400, detail="Please provide a valid end date.")
    if next_end < next_start:
        raise HTTPException(status_code=400, detail="End date must be on or after the start date.")

    updates = trip_details(provided)
    dates_changed = to_iso(next_start) != booking["start_date"] or to_iso(next_end) != booking["end_date"]

    if dates_changed:
        if booking.get("offer_id"):
            raise HTTPException(status_code=400, detail="Please coordinate with your driver via chat to adjust offer-based bookings.")
        vehicle = await db.vehicles.find_one({"id": booking["vehicle_id"]}, {"_id": 0})
        if await check_vehicle_availability(vehicle, next_start, next_end, exclude_booking_id=booking_id):
            raise HTTPException(status_code=409, detail="Those dates are no longer available. Please pick a different range.")

        total_days = count_trip_days(next_start, next_end)
        updates.update({
            "start_date": to_iso(next_start),
            "end_date": to_iso(next_end),
            "total_days": total_days,
            "total_price": (booking.get("price_per_day") or 0) * total_days,
        })
        if booking["status"] == BookingStatus.CONFIRMED.value:
            updates["status"] = BookingStatus.PENDING.value

    updates["updated_at"] = now_iso()
    await db.bookings.update_one({"id": booking_id}, {"$set": updates})

    if dates_changed:
        booking.update(updates)
        await apply_commission_rules(booking)

    return {"booking": await _hydrate_one(booking_id)}


@router.post("/bookings/{booking_id}/cancel")
async def cancel_traveler_booking(booking_id: str, background_tasks: BackgroundTasks,
                                  user: dict = Depends(get_current_guest)):
    booking = await get_traveler_booking(booking_id, user)
    if booking["status"] in INACTIVE_BOOKING_STATUSES:
        return {"booking": await _hydrate_one(booking_id)}

    await db.bookings.update_one(
        {"id": booking_id},
        {"$set": {"status": BookingStatus.CANCELLED.value, "updated_at": now_iso()}}
    )
    await set_offer_status(booking.get("offer_id"), OfferStatus.DECLINED)
    logging.info(f"Traveller {user['id']} cancelled booking {booking_id}")

    hydrated = await _hydrate_one(booking_id)
    traveler = booking.get("traveler") or {}
    background_tasks.add_task(
        send_booking_status_email,
        {"name": traveler.get("full_name"), "email": traveler.get("email")},
        hydrated, hydrated.get("vehicle"), "We cancelled this booking at your request."
    )
    background_tasks.add_task(
        send_booking_status_email, hydrated.get("driver"), hydrated, hydrated.get("vehicle"),
        "The traveller cancelled this booking."
    )
    return {"booking": hydrated}


@router.post("/bookings/{booking_id}/reviews", status_code=201)
async def create_booking_review(booking_id: str, data: ReviewCreate, user: dict = Depends(get_current_guest)):
    fields = validate_review_fields(data.rating, data.title, data.comment)

    booking = await db.bookings.find_one({"id": booking_id}, {"_id": 0})
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found.")
    if booking.get("traveler_id") != user["id"]:
        raise HTTPException(status_code=403, detail="You can only review your own bookings.")
    if booking["status"] in INACTIVE_BOOKING_STATUSES:
        raise HTTPException(status_code=400, detail="This booking was not completed and cannot receive a review.")
    end = parse_datetime(booking["end_date"])
    if end is None or end > now_utc():
        raise HTTPException(status_code=400, detail="You can only leave a review after your trip has finished.")
    if await db.reviews.find_one({"booking_id": booking_id}, {"_id": 0, "id": 1}):
        raise HTTPException(status_code=409, detail="You have already submitted a review for this booking.")

    review = {
        "id": str(uuid.uuid4()),
        "booking_id": booking_id,
        "vehicle_id": booking["vehicle_id"],
        "driver_id": booking["driver_id"],
        "traveler_id": user["id"],
        "traveler_name": (booking.get("traveler") or {}).get("full_name") or user.get("name"),
        **fields,
        "status": ReviewStatus.PENDING.value,
        "admin_note": "",
        "published_at": None,
        "trip_start_date": booking["start_date"],
        "trip_end_date": booking["end_date"],
        "created_at": now_iso(),
        "updated_at": now_iso(),
    }
    await db.reviews.insert_one(review)
    review.pop("_id", None)
    logging.info(f"Review {review['id']} submitted for booking {booking_id}")

    return {"message": "Thank you! Your review has been submitted for moderation.", "review": review}
