# Vehicle Catalog Routes
from fastapi import APIRouter, HTTPException
from pydantic import BaseModel
from typing import List, Optional
import re

from .shared import (
    db, now_utc, to_iso, parse_datetime, clean_text, PRIVATE_USER_FIELDS,
    VehicleStatus, DriverApprovalStatus, ReviewStatus
)
from .availability import (
    DateRangeError, parse_date_range, build_quote, blocked_by_availability, find_conflicting_booking,
    check_vehicle_availability
)
from .reviews import build_review_summary_map, summarize_ratings, public_review

router = APIRouter(prefix="/vehicles", tags=["Vehicles"])

MIN_PRICE_PER_DAY = 35
MAX_PRICE_PER_DAY = 250
MIN_YEAR = 1990
FEATURE_FIELDS = (
    "english_speaking_driver",
    "meet_and_greet_at_airport",
    "fuel_and_insurance",
    "driver_meals_and_accommodation",
    "parking_fees_and_tolls",
    "all_taxes",
)
SORT_OPTIONS = {
    "priceAsc": [("price_per_day", 1), ("created_at", -1)],
    "priceDesc": [("price_per_day", -1), ("created_at", -1)],
    "seatsDesc": [("seats", -1), ("created_at", -1)],
    "yearDesc": [("year", -1), ("created_at", -1)],
    "recent": [("created_at", -1)],
}
REVIEW_SORT_OPTIONS = {
    "recent": [("published_at", -1), ("created_at", -1)],
    "oldest": [("published_at", 1), ("created_at", 1)],
    "ratingDesc": [("rating", -1), ("published_at", -1)],
    "ratingAsc": [("rating", 1), ("published_at", -1)],
}
PUBLIC_DRIVER_FIELDS = {
    "_id": 0, "id": 1, "name": 1, "description": 1, "contact_number": 1, "trip_advisor": 1,
    "address": 1, "created_at": 1, "profile_photo": 1, "driver_location": 1, "driver_status": 1,
}


# ========== MODELS ==========
class VehicleCreate(BaseModel):
    model: str
    year: int
    description: Optional[str] = None
    seats: Optional[int] = None
    price_per_day: float
    images: List[str] = []
    english_speaking_driver: bool = False
    meet_and_greet_at_airport: bool = False
    fuel_and_insurance: bool = False
    driver_meals_and_accommodation: bool = False
    parking_fees_and_tolls: bool = False
    all_taxes: bool = False

class VehicleUpdate(BaseModel):
    model: Optional[str] = None
    year: Optional[int] = None
    description: Optional[str] = None
    seats: Optional[int] = None
    price_per_day: Optional[float] = None
    images: Optional[List[str]] = None
    english_speaking_driver: Optional[bool] = None
    meet_and_greet_at_airport: Optional[bool] = None
    fuel_and_insurance: Optional[bool] = None
    driver_meals_and_accommodation: Optional[bool] = None
    parking_fees_and_tolls: Optional[bool] = None
    all_taxes: Optional[bool] = None

class AvailabilityCheck(BaseModel):
    start_date: Optional[str] = None
    end_date: Optional[str] = None


def validate_vehicle_fields(fields: dict) -> dict:
    """Validate the provided vehicle fields and return them cleaned"""
    cleaned = {}
    for key, value in fields.items():
        if value is None:
            continue
        if key == "model":
            value = clean_text(value)
            if not value:
                raise HTTPException(status_code=400, detail="Vehicle model is required")
        elif key == "description":
            value = clean_text(value)
        elif key == "year":
            max_year = now_utc().year + 1
            if not MIN_YEAR <= value <= max_year:
                raise HTTPException(status_code=400, detail=f"Year must be between {MIN_YEAR} and {max_year}")
        elif key == "seats":
            if value < 1:
                raise HTTPException(status_code=400, detail="Seats must be at least 1")
        elif key == "price_per_day":
            if not MIN_PRICE_PER_DAY <= value <= MAX_PRICE_PER_DAY:
                raise HTTPException(
                    status_code=400,
                    detail=f"Price per day must be between {MIN_PRICE_PER_DAY} and {MAX_PRICE_PER_DAY} USD"
                )
        elif key == "images":
            value = [clean_text(url) for url in value if clean_text(url)]
        cleaned[key] = value
    return cleaned


def public_driver(driver: Optional[dict]) -> Optional[dict]:
    if not driver:
        return None
    return {
        "id": driver["id"],
        "name": driver.get("name"),
        "description": driver.get("description"),
        "contact_number": driver.get("contact_number"),
        "trip_advisor": driver.get("trip_advisor"),
        "address": driver.get("address"),
        "created_at": driver.get("created_at"),
        "profile_photo": driver.get("profile_photo"),
        "location": driver.get("driver_location"),
    }


def serialize_vehicle(vehicle: dict, driver: Optional[dict] = None, review_summary: Optional[dict] = None) -> dict:
    data = {k: v for k, v in vehicle.items() if k != "_id"}
    data["availability"] = sorted(vehicle.get("availability") or [], key=lambda entry: entry.get("start_date") or "")
    data["features"] = {field: bool(vehicle.get(field)) for field in FEATURE_FIELDS}
    if driver is not None:
        data["driver"] = public_driver(driver)
    data["review_summary"] = review_summary or summarize_ratings([0, 0, 0, 0, 0])
    return data


async def get_bookable_vehicle(vehicle_id: str):
    """Approved vehicle of an approved driver, with the driver document"""
    vehicle = await db.vehicles.find_one(
        {"id": vehicle_id, "status": VehicleStatus.APPROVED.value}, {"_id": 0}
    )
    if not vehicle:
        raise HTTPException(status_code=404, detail="Vehicle not found")
    driver = await db.users.find_one(
        {"id": vehicle["driver_id"], "driver_status": DriverApprovalStatus.APPROVED.value},
        PRIVATE_USER_FIELDS
    )
    if not driver:
        raise HTTPException(status_code=404, detail="Vehicle not found")
    return vehicle, driver


@router.get("")
async def list_vehicles(search: Optional[str] = None, min_price: Optional[float] = None,
                        max_price: Optional[float] = None, min_seats: Optional[int] = None,
                        sort: Optional[str] = None, location: Optional[str] = None,
                        min_rating: Optional[float] = None, start_date: Optional[str] = None,
                        end_date: Optional[str] = None):
    """Public catalog of approved vehicles"""
    date_range = None
    if start_date or end_date:
        try:
            date_range = parse_date_range(start_date, end_date)
        except DateRangeError as e:
            raise HTTPException(status_code=400, detail=str(e))

    query = {"status": VehicleStatus.APPROVED.value}
    price_filter = {}
    if min_price is not None:
        price_filter["$gte"] = min_price
    if max_price is not None:
        price_filter["$lte"] = max_price
    if price_filter:
        query["price_per_day"] = price_filter
    if min_seats is not None:
        query["seats"] = {"$gte": min_seats}

    sort_key = sort if sort in SORT_OPTIONS else "recent"
    vehicles = await db.vehicles.find(query, {"_id": 0}).sort(SORT_OPTIONS[sort_key]).to_list(1000)

    driver_ids = list({v["driver_id"] for v in vehicles})
    drivers = await db.users.find(
        {"id": {"$in": driver_ids}, "driver_status": DriverApprovalStatus.APPROVED.value},
        PUBLIC_DRIVER_FIELDS
    ).to_list(1000)
    drivers_by_id = {d["id"]: d for d in drivers}
    vehicles = [v for v in vehicles if v["driver_id"] in drivers_by_id]

    if search and search.strip():
        pattern = re.compile(re.escape(search.strip()), re.IGNORECASE)
        vehicles = [
            v for v in vehicles
            if pattern.search(v.get("model") or "")
            or pattern.search(v.get("description") or "")
            or pattern.search(drivers_by_id[v["driver_id"]].get("name") or "")
        ]

    if location and location.strip():
        pattern = re.compile(re.escape(location.strip()), re.IGNORECASE)
        vehicles = [v for v in vehicles if pattern.search(drivers_by_id[v["driver_id"]].get("address") or "")]

    summaries = await build_review_summary_map("vehicle_id", [v["id"] for v in vehicles])

    if min_rating is not None:
        vehicles = [
            v for v in vehicles
            if (summaries.get(v["id"]) or {}).get("average_rating") is not None
            and summaries[v["id"]]["average_rating"] >= min_rating
        ]

    if date_range:
        start, end = date_range
        free = []
        for vehicle in vehicles:
            if blocked_by_availability(vehicle, start, end):
                continue
            if await find_conflicting_booking(vehicle["id"], start, end):
                continue
            free.append(vehicle)
        vehicles = free

    results = [
        serialize_vehicle(v, drivers_by_id[v["driver_id"]], summaries.get(v["id"]))
        for v in vehicles
    ]
    return {"vehicles": results, "meta": {"total": len(results), "sort": sort_key}}


@router.get("/{vehicle_id}")
async def get_vehicle(vehicle_id: str):
    vehicle, driver = await get_bookable_vehicle(vehicle_id)
    summaries = await build_review_summary_map("vehicle_id", [vehicle_id])
    return {"vehicle": serialize_vehicle(vehicle, driver, summaries.get(vehicle_id))}


@router.post("/{vehicle_id}/check-availability")
async def check_availability(vehicle_id: str, data: AvailabilityCheck):
    try:
        start, end = parse_date_range(data.start_date, data.end_date)
    except DateRangeError as e:
        raise HTTPException(status_code=400, detail=str(e))

    vehicle, _ = await get_bookable_vehicle(vehicle_id)

    reason = await check_vehicle_availability(vehicle, start, end)
    if reason:
        return {"available": False, "reason": reason}

    return {"available": True, "quote": build_quote(vehicle, start, end)}


@router.get("/{vehicle_id}/reviews")
async def list_vehicle_reviews(vehicle_id: str, min_rating: Optional[int] = None,
                               max_rating: Optional[int] = None, since: Optional[str] = None,
                               until: Optional[str] = None, sort: str = "recent", limit: int = 50):
    vehicle = await db.vehicles.find_one({"id": vehicle_id, "status": VehicleStatus.APPROVED.value}, {"_id": 0, "id": 1})
    if not vehicle:
        raise HTTPException(status_code=404, detail="Vehicle not found or unavailable.")

    query = {"vehicle_id": vehicle_id, "status": ReviewStatus.APPROVED.value}
    rating_filter = {}
    if min_rating is not None and 1 <= min_rating <= 5:
        rating_filter["$gte"] = min_rating
    if max_rating is not None and 1 <= max_rating <= 5:
        rating_filter["$lte"] = max_rating
    if rating_filter:
        query["rating"] = rating_filter

    published_filter = {}
    since_date = parse_datetime(since)
    until_date = parse_datetime(until)
    if since_date:
        published_filter["$gte"] = to_iso(since_date)
    if until_date:
        published_filter["$lte"] = to_iso(until_date)
    if published_filter:
        query["published_at"] = published_filter

    order = REVIEW_SORT_OPTIONS.get(sort, REVIEW_SORT_OPTIONS["recent"])
    reviews = await db.reviews.find(query, {"_id": 0}).sort(order).to_list(1000)

    counts = [0, 0, 0, 0, 0]
    for review in reviews:
        counts[min(max(int(review.get("rating") or 1), 1), 5) - 1] += 1
    summary = summarize_ratings(counts)

    limit = max(1, min(limit, 100))
    return {
        "reviews": [public_review(r) for r in reviews[:limit]],
        "meta": {
            "total": len(reviews),
            "average_rating": summary["average_rating"],
            "counts_by_rating": counts,
        },
    }
