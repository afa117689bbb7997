# Car With Driver - Main Server
from fastapi import FastAPI, APIRouter, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
from starlette.middleware.cors import CORSMiddleware
import os
import uuid
import logging

from .routes import (
    db, client, hash_password, UserRole,
    auth_router, vehicles_router, bookings_router, drivers_router, chat_router,
    briefs_router, directory_router, support_router, admin_router
)
from .routes.shared import now_iso

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(title="Car With Driver API", version="1.0.0")
api_router = APIRouter(prefix="/api")

# Include modular routers
api_router.include_router(auth_router)
api_router.include_router(vehicles_router)
api_router.include_router(bookings_router)
api_router.include_router(drivers_router)
api_router.include_router(chat_router)
api_router.include_router(briefs_router)
api_router.include_router(directory_router)
api_router.include_router(support_router)
api_router.include_router(admin_router)


# ========== ROOT ENDPOINT ==========
@api_router.get("/")
async def root():
    return {
        "name": "Car With Driver API",
        "version": "1.0.0",
        "status": "operational"
    }


# ========== HEALTH CHECK ==========
@api_router.get("/health")
async def health_check():
    return {"status": "ok"}


app.include_router(api_router)

app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=os.environ.get('CORS_ORIGINS', '*').split(','),
    allow_methods=["*"],
    allow_headers=["*"],
)


# ========== ERROR HANDLERS ==========
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(status_code=exc.status_code, content={"message": exc.detail}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"message": "Invalid request data", "errors": jsonable_encoder(exc.errors())}
    )


@app.on_event("startup")
async def create_indexes():
    """Create the indexes the lookups rely on"""
    await db.users.create_index("email", unique=True)
    await db.users.create_index("id", unique=True)
    await db.vehicles.create_index("driver_id")
    await db.bookings.create_index([("vehicle_id", 1), ("start_date", 1)])
    await db.reviews.create_index("booking_id")
    await db.chat_messages.create_index([("conversation_id", 1), ("created_at", -1)])
    await db.driver_commissions.create_index([("driver_id", 1), ("year", 1), ("month", 1)], unique=True)


@app.on_event("startup")
async def create_default_admin():
    """Create the configured admin account if it does not exist yet"""
    email = (os.environ.get('DEFAULT_ADMIN_EMAIL') or "").strip().lower()
    password = os.environ.get('DEFAULT_ADMIN_PASSWORD')
    if not email or not password:
        return
    if await db.users.find_one({"email": email}, {"_id": 0, "id": 1}):
        return

    logger.info(f"Creating default admin user {email}")
    await db.users.insert_one({
        "id": str(uuid.uuid4()),
        "name": os.environ.get('DEFAULT_ADMIN_NAME', 'Administrator'),
        "email": email,
        "password_hash": hash_password(password),
        "role": UserRole.ADMIN.value,
        "is_verified": True,
        "created_at": now_iso(),
        "updated_at": now_iso(),
    })


@app.on_event("shutdown")
async def shutdown_db_client():
    client.close()
