# Support Routes
from fastapi import APIRouter, HTTPException, BackgroundTasks
from pydantic import BaseModel
from typing import Optional
import os
import logging

from .shared import clean_text
from .auth import normalize_email
from ..email_templates import send_support_request_email

router = APIRouter(prefix="/support", tags=["Support"])


class SupportRequest(BaseModel):
    name: Optional[str] = ""
    email: Optional[str] = ""
    category: Optional[str] = ""
    booking_id: Optional[str] = ""
    message: Optional[str] = ""


@router.post("/contact")
async def submit_support_request(data: SupportRequest, background_tasks: BackgroundTasks):
    """Forward a contact form submission to the support inbox"""
    name = clean_text(data.name)
    if not 2 <= len(name) <= 120:
        raise HTTPException(status_code=400, detail="Name is required.")
    email = normalize_email(data.email)
    message = clean_text(data.message)
    if not 10 <= len(message) <= 2000:
        raise HTTPException(status_code=400, detail="Message must be at least 10 characters.")

    request = {
        "name": name,
        "email": email,
        "category": clean_text(data.category, 160),
        "booking_id": clean_text(data.booking_id, 120),
        "message": message,
    }
    support_email = os.environ.get('SUPPORT_EMAIL') or os.environ.get('SMTP_FROM_EMAIL')
    background_tasks.add_task(send_support_request_email, support_email, request)
    logging.info(f"Support request received from {email} ({request['category'] or 'general'})")
    return {"success": True}
