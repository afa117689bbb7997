# Authentication & account routes
from fastapi import APIRouter, HTTPException, Depends, BackgroundTasks
from pydantic import BaseModel, Field
from typing import Optional
from datetime import timedelta
import os
import re
import uuid
import secrets
import logging
import httpx

from .shared import (
    db, hash_password, verify_password, hash_token, create_token, get_current_user,
    now_utc, now_iso, to_iso, clean_text, PRIVATE_USER_FIELDS, APP_URL,
    UserRole, DriverApprovalStatus
)
from ..email_templates import (
    send_verification_email, send_password_reset_email, send_password_changed_email
)

router = APIRouter(prefix="/auth", tags=["Authentication"])

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
VERIFICATION_TTL = timedelta(hours=24)
RESET_TTL = timedelta(minutes=60)
GOOGLE_TOKENINFO_URL = "https://oauth2.googleapis.com/tokeninfo"
DRIVER_REQUIRED_FIELDS = ("contact_number", "description", "address")


class RegisterRequest(BaseModel):
    name: str = Field(min_length=1)
    email: str
    password: str = Field(min_length=8)
    role: Optional[str] = None
    contact_number: Optional[str] = None
    description: Optional[str] = None
    address: Optional[str] = None
    trip_advisor: Optional[str] = None
    admin_code: Optional[str] = None

class LoginRequest(BaseModel):
    email: str
    password: str

class EmailRequest(BaseModel):
    email: str

class VerifyEmailRequest(BaseModel):
    token: str

class PasswordResetConfirm(BaseModel):
    token: str
    password: str = Field(min_length=8)

class GoogleLoginRequest(BaseModel):
    credential: str

class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    contact_number: Optional[str] = None
    description: Optional[str] = None
    trip_advisor: Optional[str] = None
    address: Optional[str] = None
    current_latitude: Optional[float] = None
    current_longitude: Optional[float] = None
    current_location_label: Optional[str] = None
    clear_location: Optional[bool] = None
    profile_photo: Optional[str] = None

class PasswordChange(BaseModel):
    current_password: str
    new_password: str = Field(min_length=8)


def normalize_email(value: str) -> str:
    email = (value or "").strip().lower()
    if not EMAIL_RE.match(email):
        raise HTTPException(status_code=400, detail="A valid email address is required")
    return email


def public_user(user: dict) -> dict:
    return {k: v for k, v in user.items() if k not in PRIVATE_USER_FIELDS}


def issue_verification_token():
    token = secrets.token_hex(48)
    return token, hash_token(token), to_iso(now_utc() + VERIFICATION_TTL)


def build_app_url(path: str, token: str) -> str:
    return f"{APP_URL}{path}?token={token}"


@router.post("/register", status_code=201)
async def register(data: RegisterRequest, background_tasks: BackgroundTasks):
    """Register a traveller, driver or admin account"""
    email = normalize_email(data.email)
    if await db.users.find_one({"email": email}, {"_id": 0, "id": 1}):
        raise HTTPException(status_code=409, detail="Email already in use")

    role = (data.role or UserRole.GUEST.value).lower()
    if role not in [r.value for r in UserRole]:
        raise HTTPException(status_code=400, detail="Invalid role provided")

    if role == UserRole.ADMIN.value:
        required_code = os.environ.get('ADMIN_SETUP_CODE')
        if not required_code or data.admin_code != required_code:
            raise HTTPException(status_code=403, detail="Invalid admin setup code")

    user = {
        "id": str(uuid.uuid4()),
        "name": data.name.strip(),
        "email": email,
        "password_hash": hash_password(data.password),
        "role": role,
        "is_verified": False,
        "contact_number": clean_text(data.contact_number),
        "address": clean_text(data.address),
        "created_at": now_iso(),
        "updated_at": now_iso(),
    }

    if role == UserRole.DRIVER.value:
        user["description"] = clean_text(data.description)
        user["trip_advisor"] = clean_text(data.trip_advisor)
        missing = [field for field in DRIVER_REQUIRED_FIELDS if not user.get(field)]
        if missing:
            suffix = "s" if len(missing) > 1 else ""
            raise HTTPException(status_code=400, detail=f"Missing required driver field{suffix}: {', '.join(missing)}")
        user["driver_status"] = DriverApprovalStatus.PENDING.value

    token, token_hash, expires = issue_verification_token()
    user["verification_token"] = token_hash
    user["verification_token_expires"] = expires

    await db.users.insert_one(user)
    logging.info(f"Registered {role} account {user['id']}")

    background_tasks.add_task(send_verification_email, email, user["name"], build_app_url("/verify-email", token))

    return {
        "message": "Registration successful. Check your email to verify your account.",
        "user": public_user(user),
    }


@router.post("/login")
async def login(data: LoginRequest):
    user = await db.users.find_one({"email": (data.email or "").strip().lower()}, {"_id": 0})
    if not user or not verify_password(data.password, user.get("password_hash")):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if not user.get("is_verified"):
        raise HTTPException(status_code=403, detail="Email verification required")

    return {"token": create_token(user), "user": public_user(user)}


async def _verify_email_token(token: Optional[str]):
    if not token:
        raise HTTPException(status_code=400, detail="Verification token missing")
    user = await db.users.find_one({
        "verification_token": hash_token(token),
        "verification_token_expires": {"$gt": now_iso()},
    }, {"_id": 0})
    if not user:
        raise HTTPException(status_code=400, detail="Token invalid or expired")

    await db.users.update_one(
        {"id": user["id"]},
        {
            "$set": {"is_verified": True, "updated_at": now_iso()},
            "$unset": {"verification_token": "", "verification_token_expires": ""},
        }
    )
    user["is_verified"] = True
    return {"message": "Email verified successfully", "token": create_token(user), "user": public_user(user)}


@router.get("/verify-email")
async def verify_email(token: Optional[str] = None):
    return await _verify_email_token(token)


@router.post("/verify-email")
async def verify_email_post(data: VerifyEmailRequest):
    return await _verify_email_token(data.token)


@router.post("/resend-verification")
async def resend_verification(data: EmailRequest, background_tasks: BackgroundTasks):
    user = await db.users.find_one({"email": (data.email or "").strip().lower()}, {"_id": 0})
    if not user:
        raise HTTPException(status_code=404, detail="Account not found")
    if user.get("is_verified"):
        raise HTTPException(status_code=400, detail="Account already verified")

    token, token_hash, expires = issue_verification_token()
    await db.users.update_one(
        {"id": user["id"]},
        {"$set": {"verification_token": token_hash, "verification_token_expires": expires}}
    )
    background_tasks.add_task(send_verification_email, user["email"], user.get("name"), build_app_url("/verify-email", token))
    return {"message": "Verification email sent"}


@router.post("/password/reset/request")
async def request_password_reset(data: EmailRequest, background_tasks: BackgroundTasks):
    """Always answers the same way so account existence is not revealed"""
    user = await db.users.find_one({"email": (data.email or "").strip().lower()}, {"_id": 0})
    if user:
        token = secrets.token_hex(32)
        await db.users.update_one(
            {"id": user["id"]},
            {"$set": {
                "password_reset_token": hash_token(token),
                "password_reset_expires": to_iso(now_utc() + RESET_TTL),
            }}
        )
        background_tasks.add_task(send_password_reset_email, user["email"], user.get("name"), build_app_url("/reset-password", token))
    else:
        logging.info("Password reset requested for unknown email")

    return {"message": "If an account exists for that email, a reset link has been sent."}


@router.post("/password/reset/confirm")
async def confirm_password_reset(data: PasswordResetConfirm, background_tasks: BackgroundTasks):
    if not data.token:
        raise HTTPException(status_code=400, detail="Reset token is required.")
    user = await db.users.find_one({
        "password_reset_token": hash_token(data.token),
        "password_reset_expires": {"$gt": now_iso()},
    }, {"_id": 0})
    if not user:
        raise HTTPException(status_code=400, detail="Reset link is invalid or has expired.")

    await db.users.update_one(
        {"id": user["id"]},
        {
            "$set": {
                "password_hash": hash_password(data.password),
                "updated_at": now_iso(),
            },
            "$unset": {"password_reset_token": "", "password_reset_expires": ""},
        }
    )
    background_tasks.add_task(send_password_changed_email, user["email"], user.get("name"))
    return {"message": "Password updated successfully. You can now sign in."}


async def verify_google_credential(credential: str) -> dict:
    client_id = os.environ.get('GOOGLE_CLIENT_ID')
    if not client_id:
        raise HTTPException(status_code=503, detail="Google sign-in is not configured")

    try:
        async with httpx.AsyncClient() as http_client:
            response = await http_client.get(GOOGLE_TOKENINFO_URL, params={"id_token": credential}, timeout=10.0)
    except httpx.HTTPError as e:
        logging.error(f"Google token verification failed: {e}")
        raise HTTPException(status_code=502, detail="Unable to reach Google right now")

    if response.status_code != 200:
        raise HTTPException(status_code=401, detail="Unable to verify Google token")
    payload = response.json()
    if payload.get("aud") != client_id or str(payload.get("email_verified")).lower() != "true":
        raise HTTPException(status_code=401, detail="Unable to verify Google token")
    return {
        "google_id": payload.get("sub"),
        "email": (payload.get("email") or "").lower(),
        "name": payload.get("name") or payload.get("email"),
        "picture": payload.get("picture"),
    }


@router.post("/google")
async def google_login(data: GoogleLoginRequest):
    """Sign in with a Google ID token, creating a traveller account on first use"""
    profile = await verify_google_credential(data.credential)
    user = await db.users.find_one(
        {"$or": [{"google_id": profile["google_id"]}, {"email": profile["email"]}]},
        {"_id": 0}
    )

    if user:
        updates = {"is_verified": True, "updated_at": now_iso()}
        if not user.get("google_id"):
            updates["google_id"] = profile["google_id"]
        await db.users.update_one({"id": user["id"]}, {"$set": updates})
        user.update(updates)
    else:
        user = {
            "id": str(uuid.uuid4()),
            "name": profile["name"],
            "email": profile["email"],
            "password_hash": hash_password(secrets.token_urlsafe(24)),
            "role": UserRole.GUEST.value,
            "is_verified": True,
            "google_id": profile["google_id"],
            "profile_photo": profile.get("picture"),
            "created_at": now_iso(),
            "updated_at": now_iso(),
        }
        await db.users.insert_one(user)
        logging.info(f"Created guest account {user['id']} from Google sign-in")

    return {"token": create_token(user), "user": public_user(user)}


@router.get("/me")
async def get_me(user: dict = Depends(get_current_user)):
    return {"user": user}


@router.put("/profile")
async def update_profile(data: ProfileUpdate, user: dict = Depends(get_current_user)):
    provided = data.model_dump(exclude_unset=True)
    updates = {}

    if "name" in provided:
        name = clean_text(provided["name"])
        if not name:
            raise HTTPException(status_code=400, detail="Name cannot be empty")
        updates["name"] = name

    for field in ("contact_number", "address", "profile_photo"):
        if field in provided:
            updates[field] = clean_text(provided[field])

    if user.get("role") == UserRole.DRIVER.value:
        for field in ("description", "trip_advisor"):
            if field in provided:
                updates[field] = clean_text(provided[field])

    unset = {}
    has_lat = provided.get("current_latitude") is not None
    has_lng = provided.get("current_longitude") is not None
    if provided.get("clear_location"):
        unset["driver_location"] = ""
    elif has_lat or has_lng or "current_location_label" in provided:
        if not has_lat or not has_lng:
            raise HTTPException(status_code=400, detail="Please provide both latitude and longitude for your location.")
        latitude = provided["current_latitude"]
        longitude = provided["current_longitude"]
        if not -90 <= latitude <= 90:
            raise HTTPException(status_code=400, detail="Latitude must be between -90 and 90.")
        if not -180 <= longitude <= 180:
            raise HTTPException(status_code=400, detail="Longitude must be between -180 and 180.")
        updates["driver_location"] = {
            "label": clean_text(provided.get("current_location_label"), 120) or None,
            "latitude": latitude,
            "longitude": longitude,
            "updated_at": now_iso(),
        }

    updates["updated_at"] = now_iso()
    operation = {"$set": updates}
    if unset:
        operation["$unset"] = unset
    await db.users.update_one({"id": user["id"]}, operation)

    refreshed = await db.users.find_one({"id": user["id"]}, PRIVATE_USER_FIELDS)
    return {"message": "Profile updated successfully.", "user": refreshed}


@router.put("/password")
async def change_password(data: PasswordChange, background_tasks: BackgroundTasks,
                          user: dict = Depends(get_current_user)):
    stored = await db.users.find_one({"id": user["id"]}, {"_id": 0, "password_hash": 1})
    if not stored or not verify_password(data.current_password, stored.get("password_hash")):
        raise HTTPException(status_code=400, detail="Current password is incorrect")

    await db.users.update_one(
        {"id": user["id"]},
        {"$set": {"password_hash": hash_password(data.new_password), "updated_at": now_iso()}}
    )
    background_tasks.add_task(send_password_changed_email, user["email"], user.get("name"))
    return {"message": "Password updated successfully."}
