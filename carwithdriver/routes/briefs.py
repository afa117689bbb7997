# Tour Brief Routes
from fastapi import APIRouter, HTTPException, Depends, BackgroundTasks
from pydantic import BaseModel
from typing import Optional
import uuid
import logging

from .shared import (
    db, get_current_guest, get_current_driver, now_iso, to_iso, parse_datetime, normalize_day,
    clean_text, BriefStatus
)
from .chat_service import find_or_create_conversation, send_offer, ensure_open

router = APIRouter(prefix="/briefs", tags=["Tour Briefs"])

BRIEF_MESSAGE_MAX = 2000


class BriefCreate(BaseModel):
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    start_location: Optional[str] = ""
    end_location: Optional[str] = ""
    adults: Optional[int] = None
    children: Optional[int] = 0
    message: Optional[str] = ""
    country: Optional[str] = ""

class BriefRespond(BaseModel):
    vehicle_id: Optional[str] = None
    total_price: Optional[float] = None
    total_kms: Optional[float] = None
    price_per_extra_km: Optional[float] = 0
    note: Optional[str] = ""
    start_date: Optional[str] = None
    end_date: Optional[str] = None


def serialize_brief(brief: dict, user_id: Optional[str] = None, traveler: Optional[dict] = None,
                    include_responses: bool = False) -> dict:
    responses = brief.get("responses") or []
    data = {k: v for k, v in brief.items() if k not in ("_id", "responses")}
    data["offers_count"] = brief.get("offers_count", len(responses))
    data["has_responded"] = bool(user_id) and any(r.get("driver_id") == user_id for r in responses)
    data["is_owner"] = bool(user_id) and brief.get("traveler_id") == user_id
    if traveler is not None:
        data["traveler"] = traveler
    if include_responses:
        data["responses"] = responses
    return data


def guests_label(adults: int, children: int) -> str:
    label = f"{adults} adult{'' if adults == 1 else 's'}"
    if children > 0:
        label += f", {children} child{'' if children == 1 else 'ren'}"
    return label


async def find_conversation_for_brief(traveler_id: str, driver_id: str, vehicle_id: str) -> dict:
    """Reuse the vehicle conversation, then a generic one, before opening a new one"""
    existing = await db.chat_conversations.find_one(
        {"traveler_id": traveler_id, "driver_id": driver_id, "vehicle_id": vehicle_id}, {"_id": 0}
    )
    if existing:
        return existing
    existing = await db.chat_conversations.find_one(
        {"traveler_id": traveler_id, "driver_id": driver_id, "vehicle_id": None}, {"_id": 0}
    )
    if existing:
        return existing
    conversation, _ = await find_or_create_conversation(traveler_id, driver_id, vehicle_id)
    return conversation


@router.post("", status_code=201)
async def create_brief(data: BriefCreate, user: dict = Depends(get_current_guest)):
    start = normalize_day(data.start_date)
    end = normalize_day(data.end_date)
    if start is None or end is None or end < start:
        raise HTTPException(status_code=400, detail="Please provide a valid start and end date.")

    if data.adults is None or data.adults < 1:
        raise HTTPException(status_code=400, detail="Number of adults must be at least 1.")
    children = max(0, data.children or 0)

    start_location = clean_text(data.start_location)
    end_location = clean_text(data.end_location)
    message = clean_text(data.message, BRIEF_MESSAGE_MAX)
    country = clean_text(data.country)
    if not start_location or not end_location or not message or not country:
        raise HTTPException(status_code=400, detail="All fields are required.")

    brief = {
        "id": str(uuid.uuid4()),
        "traveler_id": user["id"],
        "start_date": to_iso(start),
        "end_date": to_iso(end),
        "start_location": start_location,
        "end_location": end_location,
        "adults": data.adults,
        "children": children,
        "message": message,
        "country": country,
        "status": BriefStatus.OPEN.value,
        "responses": [],
        "offers_count": 0,
        "last_response_at": None,
        "created_at": now_iso(),
        "updated_at": now_iso(),
    }
    await db.tour_briefs.insert_one(brief)
    logging.info(f"Traveller {user['id']} posted tour brief {brief['id']}")

    traveler = {"id": user["id"], "name": user.get("name"), "country": user.get("country")}
    return {"brief": serialize_brief(brief, user["id"], traveler)}


@router.get("/mine")
async def list_my_briefs(user: dict = Depends(get_current_guest)):
    briefs = await db.tour_briefs.find({"traveler_id": user["id"]}, {"_id": 0}).sort("created_at", -1).to_list(100)
    return {"briefs": [serialize_brief(b, user["id"], include_responses=True) for b in briefs]}


@router.get("")
async def list_open_briefs(driver: dict = Depends(get_current_driver)):
    briefs = await db.tour_briefs.find(
        {"status": BriefStatus.OPEN.value}, {"_id": 0}
    ).sort("created_at", -1).to_list(100)
    travelers = await db.users.find(
        {"id": {"$in": list({b["traveler_id"] for b in briefs})}}, {"_id": 0, "id": 1, "name": 1, "country": 1}
    ).to_list(1000)
    travelers_by_id = {t["id"]: t for t in travelers}
    return {
        "briefs": [serialize_brief(b, driver["id"], travelers_by_id.get(b["traveler_id"])) for b in briefs]
    }


@router.post("/{brief_id}/respond", status_code=201)
async def respond_to_brief(brief_id: str, data: BriefRespond, background_tasks: BackgroundTasks,
                           driver: dict = Depends(get_current_driver)):
    """Send an offer to the traveller who posted the brief"""
    if not data.vehicle_id:
        raise HTTPException(status_code=400, detail="Vehicle identifier is required.")
    if data.total_price is None or data.total_kms is None:
        raise HTTPException(status_code=400, detail="Offer pricing details are invalid.")

    override_start = parse_datetime(data.start_date)
    override_end = parse_datetime(data.end_date)
    if bool(override_start) != bool(override_end):
        raise HTTPException(status_code=400, detail="Provide both start and end dates if you override the schedule.")

    brief = await db.tour_briefs.find_one({"id": brief_id}, {"_id": 0})
    if not brief or brief.get("status") != BriefStatus.OPEN.value:
        raise HTTPException(status_code=404, detail="Tour brief not found or already closed.")
    if brief["traveler_id"] == driver["id"]:
        raise HTTPException(status_code=400, detail="You cannot respond to your own tour brief.")
    if any(r.get("driver_id") == driver["id"] for r in brief.get("responses") or []):
        raise HTTPException(status_code=409, detail="You already sent an offer for this brief.")

    vehicle = await db.vehicles.find_one({"id": data.vehicle_id, "driver_id": driver["id"]}, {"_id": 0})
    if not vehicle:
        raise HTTPException(status_code=404, detail="Vehicle not found in your fleet.")

    offer_start = normalize_day(override_start or brief["start_date"])
    offer_end = normalize_day(override_end or brief["end_date"])
    if offer_end < offer_start:
        raise HTTPException(status_code=400, detail="Offer dates are invalid.")

    summary = (
        f"Offer for your tour brief {brief['start_location']} → {brief['end_location']}\n"
        f"Dates: {offer_start.strftime('%a %b %d %Y')} - {offer_end.strftime('%a %b %d %Y')}\n"
        f"Guests: {guests_label(brief.get('adults') or 1, brief.get('children') or 0)}\n"
        f"Vehicle: {vehicle.get('model')}\n"
        f"Total: ${data.total_price:.0f} (includes {data.total_kms:g} km)"
    )

    conversation = await find_conversation_for_brief(brief["traveler_id"], driver["id"], vehicle["id"])
    ensure_open(conversation)
    message = await send_offer(
        conversation, driver, vehicle["id"], offer_start, offer_end, data.total_price, data.total_kms,
        data.price_per_extra_km, "USD", data.note, background_tasks, summary=summary
    )

    response = {
        "driver_id": driver["id"],
        "vehicle_id": vehicle["id"],
        "conversation_id": conversation["id"],
        "message_id": message["id"],
        "note": (message.get("offer") or {}).get("note") or "",
        "created_at": now_iso(),
    }
    brief = await db.tour_briefs.find_one_and_update(
        {"id": brief_id},
        {
            "$push": {"responses": response},
            "$inc": {"offers_count": 1},
            "$set": {"last_response_at": response["created_at"], "updated_at": now_iso()},
        },
        projection={"_id": 0},
        return_document=True
    )
    logging.info(f"Driver {driver['id']} responded to brief {brief_id}")

    return {
        "brief": serialize_brief(brief, driver["id"]),
        "conversation_id": conversation["id"],
        "message": message,
    }
