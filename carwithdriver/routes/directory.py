# Public Driver Directory Routes
from fastapi import APIRouter, HTTPException
from typing import Optional
import re

from .shared import db, now_utc, parse_datetime, UserRole, DriverApprovalStatus, VehicleStatus, ReviewStatus
from .commission import find_active_discount, serialize_discount, round_currency
from .reviews import build_review_summary_map, summarize_ratings, public_review
from .vehicles import PUBLIC_DRIVER_FIELDS, public_driver

router = APIRouter(prefix="/drivers", tags=["Driver Directory"])

FEATURE_LABELS = (
    ("english_speaking_driver", "English speaking"),
    ("meet_and_greet_at_airport", "Airport meet & greet"),
    ("fuel_and_insurance", "Fuel & insurance included"),
    ("driver_meals_and_accommodation", "Meals & accommodation covered"),
    ("parking_fees_and_tolls", "Parking & tolls covered"),
    ("all_taxes", "All taxes included"),
)
RECENT_REVIEW_LIMIT = 6


def vehicle_card(vehicle: dict, discount: Optional[dict] = None) -> dict:
    """Vehicle summary with the per-day saving of the running discount"""
    price = vehicle.get("price_per_day") or 0
    discount_rate = max(discount.get("discount_rate") or 0, 0) if discount else 0
    saving = round_currency(price * discount_rate) if price > 0 else None
    discounted_price = max(price - saving, 0) if saving is not None else None

    card = {
        "id": vehicle["id"],
        "model": vehicle.get("model"),
        "year": vehicle.get("year"),
        "description": vehicle.get("description") or "",
        "price_per_day": price,
        "seats": vehicle.get("seats"),
        "image": (vehicle.get("images") or [None])[0],
        "features": [label for key, label in FEATURE_LABELS if vehicle.get(key)],
        "discounted_price_per_day": discounted_price,
        "active_discount": None,
    }
    if discount and discount_rate > 0:
        card["active_discount"] = {
            **serialize_discount(discount),
            "discount_amount_per_day": saving,
            "discounted_price_per_day": discounted_price,
        }
    return card


def driver_summary(driver: dict, vehicles: list, review_summary: Optional[dict],
                   discount: Optional[dict] = None) -> dict:
    cards = [vehicle_card(v, discount) for v in vehicles]
    prices = [v.get("price_per_day") or 0 for v in vehicles]

    joined = parse_datetime(driver.get("created_at"))
    experience_years = max(1, (now_utc() - joined).days // 365) if joined else 1

    summary = review_summary or summarize_ratings([0, 0, 0, 0, 0])
    data = public_driver(driver)
    data.update({
        "vehicle_count": len(vehicles),
        "average_price_per_day": round_currency(sum(prices) / len(prices)) if prices else None,
        "featured_vehicle": next((c for c in cards if c["image"]), cards[0] if cards else None),
        "badges": [label for key, label in FEATURE_LABELS if any(v.get(key) for v in vehicles)],
        "experience_years": experience_years,
        "has_english_driver": any(v.get("english_speaking_driver") for v in vehicles),
        "review_score": summary["average_rating"],
        "review_count": summary["total_reviews"],
        "active_discount": serialize_discount(discount),
    })
    return data


@router.get("")
async def list_public_drivers(search: Optional[str] = None, location: Optional[str] = None):
    """Approved drivers with their approved fleet"""
    drivers = await db.users.find(
        {"role": UserRole.DRIVER.value, "driver_status": DriverApprovalStatus.APPROVED.value},
        PUBLIC_DRIVER_FIELDS
    ).sort("created_at", -1).to_list(1000)

    if search and search.strip():
        pattern = re.compile(re.escape(search.strip()), re.IGNORECASE)
        drivers = [
            d for d in drivers
            if pattern.search(d.get("name") or "") or pattern.search(d.get("description") or "")
        ]
    if location and location.strip():
        pattern = re.compile(re.escape(location.strip()), re.IGNORECASE)
        drivers = [
            d for d in drivers
            if pattern.search(d.get("address") or "")
            or pattern.search((d.get("driver_location") or {}).get("label") or "")
        ]
    if not drivers:
        return {"drivers": []}

    driver_ids = [d["id"] for d in drivers]
    vehicles = await db.vehicles.find(
        {"driver_id": {"$in": driver_ids}, "status": VehicleStatus.APPROVED.value}, {"_id": 0, "availability": 0}
    ).to_list(5000)
    vehicles_by_driver = {}
    for vehicle in vehicles:
        vehicles_by_driver.setdefault(vehicle["driver_id"], []).append(vehicle)

    summaries = await build_review_summary_map("driver_id", driver_ids)
    discount = await find_active_discount(now_utc())

    return {
        "drivers": [
            driver_summary(d, vehicles_by_driver.get(d["id"], []), summaries.get(d["id"]), discount)
            for d in drivers
        ]
    }


@router.get("/{driver_id}")
async def get_public_driver(driver_id: str):
    driver = await db.users.find_one(
        {"id": driver_id, "role": UserRole.DRIVER.value, "driver_status": DriverApprovalStatus.APPROVED.value},
        PUBLIC_DRIVER_FIELDS
    )
    if not driver:
        raise HTTPException(status_code=404, detail="Driver not found.")

    vehicles = await db.vehicles.find(
        {"driver_id": driver_id, "status": VehicleStatus.APPROVED.value}, {"_id": 0}
    ).sort("price_per_day", 1).to_list(200)
    discount = await find_active_discount(now_utc())
    summaries = await build_review_summary_map("driver_id", [driver_id])

    cards = []
    for vehicle in vehicles:
        card = vehicle_card(vehicle, discount)
        card["availability"] = [
            {k: entry.get(k) for k in ("id", "start_date", "end_date", "status")}
            for entry in vehicle.get("availability") or []
        ]
        cards.append(card)

    reviews = await db.reviews.find(
        {"driver_id": driver_id, "status": ReviewStatus.APPROVED.value}, {"_id": 0}
    ).sort("published_at", -1).limit(RECENT_REVIEW_LIMIT).to_list(RECENT_REVIEW_LIMIT)

    return {
        "driver": driver_summary(driver, vehicles, summaries.get(driver_id), discount),
        "vehicles": cards,
        "reviews": [public_review(r) for r in reviews],
    }
