# Chat Routes
from fastapi import APIRouter, HTTPException, Depends, BackgroundTasks
from pydantic import BaseModel
from typing import Optional

from .shared import (
    db, get_current_user, get_current_guest, get_current_driver, parse_datetime, to_iso,
    UserRole, DriverApprovalStatus, VehicleStatus
)
from .chat_service import create_chat_message, find_or_create_conversation, send_offer, ensure_open
from .chat_sanitizer import sanitize_chat_content

router = APIRouter(prefix="/chat", tags=["Chat"])


class ConversationStart(BaseModel):
    driver_id: str
    vehicle_id: Optional[str] = None
    message: Optional[str] = None

class MessageCreate(BaseModel):
    body: Optional[str] = None

class OfferCreate(BaseModel):
    vehicle_id: str
    start_date: str
    end_date: str
    total_price: float
    total_kms: float
    price_per_extra_km: float = 0
    currency: Optional[str] = "USD"
    note: Optional[str] = None


def is_participant(conversation: dict, user: dict) -> bool:
    return user["id"] in (conversation.get("traveler_id"), conversation.get("driver_id"))


async def get_conversation_for_user(conversation_id: str, user: dict, allow_admin: bool = True) -> dict:
    conversation = await db.chat_conversations.find_one({"id": conversation_id}, {"_id": 0})
    if not conversation:
        raise HTTPException(status_code=404, detail="Conversation not found.")
    if is_participant(conversation, user):
        return conversation
    if allow_admin and user.get("role") == UserRole.ADMIN.value:
        return conversation
    raise HTTPException(status_code=403, detail="You do not have access to this conversation.")


async def mark_conversation_read(conversation: dict, user: dict):
    await db.chat_messages.update_many(
        {"conversation_id": conversation["id"], "read_by": {"$ne": user["id"]}},
        {"$addToSet": {"read_by": user["id"]}}
    )
    if user["id"] == conversation.get("traveler_id"):
        await db.chat_conversations.update_one({"id": conversation["id"]}, {"$set": {"traveler_unread": 0}})
    elif user["id"] == conversation.get("driver_id"):
        await db.chat_conversations.update_one({"id": conversation["id"]}, {"$set": {"driver_unread": 0}})


async def serialize_conversations(conversations: list, user: dict) -> list:
    user_ids = {c["traveler_id"] for c in conversations} | {c["driver_id"] for c in conversations}
    vehicle_ids = {c["vehicle_id"] for c in conversations if c.get("vehicle_id")}
    message_ids = [c["last_message_id"] for c in conversations if c.get("last_message_id")]

    users = await db.users.find(
        {"id": {"$in": list(user_ids)}},
        {"_id": 0, "id": 1, "name": 1, "role": 1, "profile_photo": 1}
    ).to_list(1000)
    vehicles = await db.vehicles.find(
        {"id": {"$in": list(vehicle_ids)}}, {"_id": 0, "id": 1, "model": 1, "images": 1}
    ).to_list(1000)
    messages = await db.chat_messages.find(
        {"id": {"$in": message_ids}}, {"_id": 0, "id": 1, "body": 1, "type": 1, "sender_id": 1, "created_at": 1}
    ).to_list(1000)
    users_by_id = {u["id"]: u for u in users}
    vehicles_by_id = {v["id"]: v for v in vehicles}
    messages_by_id = {m["id"]: m for m in messages}

    results = []
    for conversation in conversations:
        data = dict(conversation)
        data["traveler"] = users_by_id.get(conversation["traveler_id"])
        data["driver"] = users_by_id.get(conversation["driver_id"])
        data["vehicle"] = vehicles_by_id.get(conversation.get("vehicle_id"))
        data["last_message"] = messages_by_id.get(conversation.get("last_message_id"))
        if user["id"] == conversation["traveler_id"]:
            data["counterpart"] = data["driver"]
            data["unread_count"] = conversation.get("traveler_unread", 0)
        elif user["id"] == conversation["driver_id"]:
            data["counterpart"] = data["traveler"]
            data["unread_count"] = conversation.get("driver_unread", 0)
        else:
            data["counterpart"] = None
            data["unread_count"] = 0
        results.append(data)
    return results


@router.post("/conversations", status_code=201)
async def start_conversation(data: ConversationStart, background_tasks: BackgroundTasks,
                             user: dict = Depends(get_current_guest)):
    """Open (or reuse) a conversation between a traveller and a driver"""
    driver = await db.users.find_one(
        {"id": data.driver_id, "role": UserRole.DRIVER.value, "driver_status": DriverApprovalStatus.APPROVED.value},
        {"_id": 0, "id": 1, "name": 1}
    )
    if not driver:
        raise HTTPException(status_code=404, detail="Driver not found or unavailable.")

    if data.vehicle_id:
        vehicle = await db.vehicles.find_one(
            {"id": data.vehicle_id, "driver_id": driver["id"], "status": VehicleStatus.APPROVED.value},
            {"_id": 0, "id": 1}
        )
        if not vehicle:
            raise HTTPException(status_code=404, detail="Vehicle not found for this driver.")

    conversation, reused = await find_or_create_conversation(user["id"], driver["id"], data.vehicle_id)

    message = None
    if data.message and data.message.strip():
        ensure_open(conversation)
        if sanitize_chat_content(data.message).text:
            message = await create_chat_message(conversation, user, data.message, background_tasks=background_tasks)

    conversation = await db.chat_conversations.find_one({"id": conversation["id"]}, {"_id": 0})
    serialized = (await serialize_conversations([conversation], user))[0]
    return {"conversation": serialized, "message": message, "reuse": reused}


@router.get("/conversations")
async def list_conversations(user: dict = Depends(get_current_user)):
    if user.get("role") == UserRole.ADMIN.value:
        query = {}
    elif user.get("role") == UserRole.DRIVER.value:
        query = {"driver_id": user["id"]}
    else:
        query = {"traveler_id": user["id"]}
    conversations = await db.chat_conversations.find(query, {"_id": 0}).sort(
        [("last_message_at", -1), ("created_at", -1)]
    ).to_list(500)
    return {"conversations": await serialize_conversations(conversations, user)}


@router.get("/conversations/{conversation_id}/messages")
async def list_messages(conversation_id: str, limit: int = 50, before: Optional[str] = None,
                        user: dict = Depends(get_current_user)):
    conversation = await get_conversation_for_user(conversation_id, user)

    query = {"conversation_id": conversation_id}
    before_date = parse_datetime(before)
    if before_date:
        query["created_at"] = {"$lt": to_iso(before_date)}

    limit = max(1, min(limit, 100))
    messages = await db.chat_messages.find(query, {"_id": 0}).sort("created_at", -1).limit(limit).to_list(limit)
    messages.reverse()

    await mark_conversation_read(conversation, user)
    return {"messages": messages, "has_more": len(messages) == limit}


@router.post("/conversations/{conversation_id}/messages", status_code=201)
async def post_message(conversation_id: str, data: MessageCreate, background_tasks: BackgroundTasks,
                       user: dict = Depends(get_current_user)):
    conversation = await get_conversation_for_user(conversation_id, user, allow_admin=False)
    ensure_open(conversation)

    if not sanitize_chat_content(data.body).text:
        raise HTTPException(status_code=400, detail="Message cannot be empty.")

    message = await create_chat_message(conversation, user, data.body, background_tasks=background_tasks)
    return {"message": message}


@router.post("/conversations/{conversation_id}/offers", status_code=201)
async def post_offer(conversation_id: str, data: OfferCreate, background_tasks: BackgroundTasks,
                     driver: dict = Depends(get_current_driver)):
    conversation = await get_conversation_for_user(conversation_id, driver, allow_admin=False)
    if conversation["driver_id"] != driver["id"]:
        raise HTTPException(status_code=403, detail="Only the assigned driver can send offers.")
    ensure_open(conversation)

    message = await send_offer(
        conversation, driver, data.vehicle_id, data.start_date, data.end_date, data.total_price,
        data.total_kms, data.price_per_extra_km, data.currency, data.note, background_tasks
    )
    return {"message": message}


@router.post("/conversations/{conversation_id}/read")
async def mark_read(conversation_id: str, user: dict = Depends(get_current_user)):
    conversation = await get_conversation_for_user(conversation_id, user, allow_admin=False)
    await mark_conversation_read(conversation, user)
    return {"message": "Conversation marked as read"}


@router.get("/offers/{offer_id}")
async def get_offer(offer_id: str, user: dict = Depends(get_current_user)):
    message = await db.chat_messages.find_one({"id": offer_id, "type": "offer"}, {"_id": 0})
    if not message:
        raise HTTPException(status_code=404, detail="Offer not found.")
    conversation = await db.chat_conversations.find_one({"id": message["conversation_id"]}, {"_id": 0})
    if not conversation or not is_participant(conversation, user):
        raise HTTPException(status_code=403, detail="You do not have access to this offer.")

    vehicle = await db.vehicles.find_one(
        {"id": (message.get("offer") or {}).get("vehicle_id")},
        {"_id": 0, "id": 1, "model": 1, "images": 1, "price_per_day": 1, "seats": 1}
    )
    return {"offer": message, "conversation": conversation, "vehicle": vehicle}
