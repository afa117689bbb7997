# Shared dependencies, enums, and utilities
from fastapi import HTTPException, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from enum import Enum
from datetime import datetime, timezone, timedelta
from typing import Optional
from motor.motor_asyncio import AsyncIOMotorClient
import os
import re
import hashlib
import secrets
import jwt
from pathlib import Path
from dotenv import load_dotenv

ROOT_DIR = Path(__file__).parent.parent
load_dotenv(ROOT_DIR / '.env')

# JWT Configuration
JWT_SECRET = os.environ.get('JWT_SECRET')
JWT_ALGORITHM = "HS256"
JWT_EXPIRES_IN = os.environ.get('JWT_EXPIRES_IN', '1h')

APP_URL = os.environ.get('APP_URL', 'http://localhost:5173').rstrip('/')

# MongoDB connection
mongo_url = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
client = AsyncIOMotorClient(mongo_url)
db = client[os.environ.get('DB_NAME', 'carwithdriver')]

# Security
security = HTTPBearer(auto_error=False)

# Fields never returned to API callers
PRIVATE_USER_FIELDS = {
    "_id": 0,
    "password_hash": 0,
    "verification_token": 0,
    "verification_token_expires": 0,
    "password_reset_token": 0,
    "password_reset_expires": 0,
}


# ========== ENUMS ==========
class UserRole(str, Enum):
    GUEST = "guest"
    DRIVER = "driver"
    ADMIN = "admin"

class DriverApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

class VehicleStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

class AvailabilityStatus(str, Enum):
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"

class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"

class OfferStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"

class ConversationStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"

class ReviewStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

class BriefStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"

class CommissionStatus(str, Enum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    APPROVED = "approved"


# Bookings in these states no longer hold the vehicle
INACTIVE_BOOKING_STATUSES = [BookingStatus.CANCELLED.value, BookingStatus.REJECTED.value]


# ========== HELPER FUNCTIONS ==========
def hash_password(password: str, salt: Optional[str] = None) -> str:
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), 120_000)
    return f"{salt}${digest.hex()}"

def verify_password(password: str, password_hash: Optional[str]) -> bool:
    if not password_hash or "$" not in password_hash:
        return False
    salt, _ = password_hash.split("$", 1)
    return secrets.compare_digest(hash_password(password, salt), password_hash)

def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()

def parse_expires_in(value: str) -> timedelta:
    """Parse durations such as '3600', '45m', '1h' or '7d'"""
    match = re.fullmatch(r"\s*(\d+)\s*([smhd]?)\s*", value or "")
    if not match:
        return timedelta(hours=1)
    amount, unit = int(match.group(1)), match.group(2) or "s"
    return {
        "s": timedelta(seconds=amount),
        "m": timedelta(minutes=amount),
        "h": timedelta(hours=amount),
        "d": timedelta(days=amount),
    }[unit]

def create_token(user: dict) -> str:
    payload = {
        "sub": user["id"],
        "role": user.get("role", UserRole.GUEST.value),
        "exp": datetime.now(timezone.utc) + parse_expires_in(JWT_EXPIRES_IN)
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)

def verify_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
        return payload
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


# ========== DATE HELPERS ==========
def now_utc() -> datetime:
    return datetime.now(timezone.utc)

def now_iso() -> str:
    return now_utc().isoformat()

def to_iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat()

def parse_datetime(value) -> Optional[datetime]:
    """Parse an ISO date or datetime; naive values are treated as UTC"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)

def normalize_day(value) -> Optional[datetime]:
    """Parse a date and truncate it to UTC midnight"""
    parsed = parse_datetime(value)
    if parsed is None:
        return None
    return parsed.replace(hour=0, minute=0, second=0, microsecond=0)

def clean_text(value, max_length: Optional[int] = None) -> str:
    if not isinstance(value, str):
        return ""
    text = value.strip()
    if max_length is not None:
        text = text[:max_length]
    return text


# ========== DEPENDENCY FUNCTIONS ==========
async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)):
    if not credentials:
        raise HTTPException(status_code=401, detail="Not authenticated")
    payload = verify_token(credentials.credentials)
    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")
    user = await db.users.find_one({"id": user_id}, PRIVATE_USER_FIELDS)
    if not user:
        raise HTTPException(status_code=401, detail="User not found or inactive")
    return user

async def get_current_guest(user: dict = Depends(get_current_user)):
    if user.get("role") != UserRole.GUEST.value:
        raise HTTPException(status_code=403, detail="Access denied")
    return user

async def get_current_driver(user: dict = Depends(get_current_user)):
    if user.get("role") != UserRole.DRIVER.value:
        raise HTTPException(status_code=403, detail="Driver role required")
    if user.get("driver_status") != DriverApprovalStatus.APPROVED.value:
        raise HTTPException(status_code=403, detail="Driver application pending approval")
    return user

async def get_current_admin(user: dict = Depends(get_current_user)):
    if user.get("role") != UserRole.ADMIN.value:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
