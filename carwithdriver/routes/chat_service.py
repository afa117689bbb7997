# Chat message creation shared by the chat and brief routes
from fastapi import BackgroundTasks, HTTPException
from datetime import datetime
from typing import Optional
import math
import uuid
import logging

from .shared import db, now_iso, to_iso, normalize_day, UserRole, ConversationStatus, OfferStatus
from .chat_sanitizer import sanitize_chat_content
from ..email_templates import send_conversation_notification_email


async def notify_conversation_participant(conversation: dict, sender_role: str, message: dict):
    """Email the other participant; failures are logged and dropped"""
    try:
        traveler = await db.users.find_one({"id": conversation["traveler_id"]}, {"_id": 0, "name": 1, "email": 1})
        driver = await db.users.find_one({"id": conversation["driver_id"]}, {"_id": 0, "name": 1, "email": 1})
        if not traveler or not driver:
            return
        if sender_role == UserRole.GUEST.value:
            recipient, sender = driver, traveler
        else:
            recipient, sender = traveler, driver
        send_conversation_notification_email(
            recipient, sender.get("name"), message.get("body") or "", message.get("type") == "offer"
        )
    except Exception as e:
        logging.warning(f"Conversation notification failed for {conversation.get('id')}: {e}")


def ensure_open(conversation: dict):
    if conversation.get("status") == ConversationStatus.CLOSED.value:
        raise HTTPException(status_code=409, detail="This conversation has been closed.")


async def create_chat_message(conversation: dict, sender: dict, content: str, message_type: str = "text",
                              offer: Optional[dict] = None,
                              background_tasks: Optional[BackgroundTasks] = None,
                              offer_violations=None, offer_warning: str = "") -> dict:
    """Store a message and keep the conversation's preview and unread counters in sync.

    Text messages are sanitized here. Offer summaries are generated by the server and
    stored as given; callers sanitize any free-text note themselves and pass
    its violations along.
    """
    sender_role = sender.get("role")
    if message_type == "offer":
        body, violations, warning = content, list(offer_violations or []), offer_warning
    else:
        body, violations, warning = sanitize_chat_content(content)

    message = {
        "id": str(uuid.uuid4()),
        "conversation_id": conversation["id"],
        "sender_id": sender["id"],
        "sender_role": sender_role,
        "type": message_type,
        "body": body,
        "warning": warning or None,
        "violations": violations,
        "offer": offer,
        "read_by": [sender["id"]],
        "created_at": now_iso(),
        "updated_at": now_iso(),
    }
    await db.chat_messages.insert_one(message)
    message.pop("_id", None)

    update = {"$set": {"last_message_id": message["id"], "last_message_at": message["created_at"], "updated_at": now_iso()}}
    if sender_role == UserRole.GUEST.value:
        update["$set"]["traveler_unread"] = 0
        update["$inc"] = {"driver_unread": 1}
    elif sender_role == UserRole.DRIVER.value:
        update["$set"]["driver_unread"] = 0
        update["$inc"] = {"traveler_unread": 1}
    await db.chat_conversations.update_one({"id": conversation["id"]}, update)

    if background_tasks is not None:
        background_tasks.add_task(notify_conversation_participant, conversation, sender_role, message)

    return message


async def refresh_last_message(conversation_id: str):
    """Point the conversation preview at its newest remaining message"""
    latest = await db.chat_messages.find(
        {"conversation_id": conversation_id}, {"_id": 0, "id": 1, "created_at": 1}
    ).sort("created_at", -1).limit(1).to_list(1)
    if latest:
        await db.chat_conversations.update_one(
            {"id": conversation_id},
            {"$set": {"last_message_id": latest[0]["id"], "last_message_at": latest[0]["created_at"]}}
        )
    else:
        await db.chat_conversations.update_one(
            {"id": conversation_id},
            {"$set": {"last_message_id": None, "last_message_at": None}}
        )


async def find_or_create_conversation(traveler_id: str, driver_id: str, vehicle_id: Optional[str] = None,
                                      brief_id: Optional[str] = None):
    """Return (conversation, reused)"""
    existing = await db.chat_conversations.find_one(
        {"traveler_id": traveler_id, "driver_id": driver_id, "vehicle_id": vehicle_id}, {"_id": 0}
    )
    if existing:
        return existing, True

    conversation = {
        "id": str(uuid.uuid4()),
        "traveler_id": traveler_id,
        "driver_id": driver_id,
        "vehicle_id": vehicle_id,
        "brief_id": brief_id,
        "status": ConversationStatus.OPEN.value,
        "last_message_id": None,
        "last_message_at": None,
        "traveler_unread": 0,
        "driver_unread": 0,
        "created_at": now_iso(),
        "updated_at": now_iso(),
    }
    await db.chat_conversations.insert_one(conversation)
    conversation.pop("_id", None)
    logging.info(f"Started conversation {conversation['id']} between {traveler_id} and {driver_id}")
    return conversation, False


def format_offer_summary(vehicle: dict, start: datetime, end: datetime, total_price: float) -> str:
    return (
        f"Offer: {vehicle.get('model') or 'Vehicle'} • {start.strftime('%a %b %d %Y')} - "
        f"{end.strftime('%a %b %d %Y')} • ${total_price:.0f} total"
    )


async def send_offer(conversation: dict, driver: dict, vehicle_id: Optional[str], start_date, end_date,
                     total_price, total_kms, price_per_extra_km=0, currency: Optional[str] = None,
                     note: Optional[str] = None, background_tasks: Optional[BackgroundTasks] = None,
                     summary: Optional[str] = None) -> dict:
    """Validate a driver quote and post it to the conversation as an offer message"""
    vehicle = await db.vehicles.find_one({"id": vehicle_id, "driver_id": driver["id"]}, {"_id": 0})
    if not vehicle:
        raise HTTPException(status_code=404, detail="Vehicle not found in your fleet.")

    start = normalize_day(start_date)
    end = normalize_day(end_date)
    if start is None or end is None:
        raise HTTPException(status_code=400, detail="Offer start and end dates are required.")
    if end < start:
        raise HTTPException(status_code=400, detail="Offer end date must be on or after the start date.")

    try:
        total_price = float(total_price)
        total_kms = float(total_kms)
        price_per_extra_km = float(price_per_extra_km or 0)
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail="Offer pricing details are invalid.")
    if not all(math.isfinite(v) for v in (total_price, total_kms, price_per_extra_km)) \
            or total_price <= 0 or total_kms <= 0 or price_per_extra_km < 0:
        raise HTTPException(status_code=400, detail="Offer pricing details are invalid.")

    clean_note, violations, warning = "", [], ""
    if note and note.strip():
        clean_note, violations, warning = sanitize_chat_content(note)

    body = summary or format_offer_summary(vehicle, start, end, total_price)
    if clean_note:
        body = f"{body}\n\nNotes: {clean_note}"

    offer = {
        "vehicle_id": vehicle["id"],
        "vehicle_model": vehicle.get("model"),
        "start_date": to_iso(start),
        "end_date": to_iso(end),
        "total_price": total_price,
        "total_kms": total_kms,
        "price_per_extra_km": price_per_extra_km,
        "currency": (currency or "USD").strip().upper() or "USD",
        "note": clean_note or None,
        "status": OfferStatus.PENDING.value,
        "booking_id": None,
        "responded_at": None,
    }
    message = await create_chat_message(
        conversation, driver, body, "offer", offer, background_tasks,
        offer_violations=violations, offer_warning=warning
    )
    logging.info(f"Driver {driver['id']} sent offer {message['id']} in conversation {conversation['id']}")
    return message
