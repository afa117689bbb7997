# Booking availability checks and quotes
from datetime import datetime
from typing import Optional

from .shared import (
    db, normalize_day, parse_datetime, to_iso, AvailabilityStatus, INACTIVE_BOOKING_STATUSES
)

DEFAULT_PAYMENT_NOTE = "Payment will be collected by your driver on the first day of the trip."


class DateRangeError(ValueError):
    pass


def parse_date_range(start_value, end_value):
    """Normalize a requested trip to UTC midnights, raising DateRangeError when invalid"""
    start = normalize_day(start_value)
    end = normalize_day(end_value)
    if start is None or end is None:
        raise DateRangeError("Start and end dates are required")
    if end < start:
        raise DateRangeError("End date must be on or after the start date")
    return start, end


def ranges_overlap(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    return start_a <= end_b and start_b <= end_a


def count_trip_days(start: datetime, end: datetime) -> int:
    days = round((end - start).total_seconds() / 86400)
    return max(days + 1, 1)


def build_quote(vehicle: dict, start: datetime, end: datetime) -> dict:
    total_days = count_trip_days(start, end)
    price_per_day = vehicle.get("price_per_day") or 0
    return {
        "start_date": to_iso(start),
        "end_date": to_iso(end),
        "total_days": total_days,
        "price_per_day": price_per_day,
        "total_price": price_per_day * total_days,
        "payment_note": DEFAULT_PAYMENT_NOTE,
    }


def blocked_by_availability(vehicle: dict, start: datetime, end: datetime) -> Optional[dict]:
    for entry in vehicle.get("availability") or []:
        if entry.get("status") != AvailabilityStatus.UNAVAILABLE.value:
            continue
        entry_start = parse_datetime(entry.get("start_date"))
        entry_end = parse_datetime(entry.get("end_date"))
        if entry_start is None or entry_end is None:
            continue
        if ranges_overlap(start, end, entry_start, entry_end):
            return entry
    return None


async def find_conflicting_booking(vehicle_id: str, start: datetime, end: datetime,
                                   exclude_booking_id: Optional[str] = None) -> Optional[dict]:
    query = {
        "vehicle_id": vehicle_id,
        "status": {"$nin": INACTIVE_BOOKING_STATUSES},
        "start_date": {"$lte": to_iso(end)},
        "end_date": {"$gte": to_iso(start)},
    }
    if exclude_booking_id:
        query["id"] = {"$ne": exclude_booking_id}
    return await db.bookings.find_one(query, {"_id": 0})


async def check_vehicle_availability(vehicle: dict, start: datetime, end: datetime,
                                     exclude_booking_id: Optional[str] = None) -> Optional[str]:
    """Return the reason the vehicle cannot be booked, or None when it is free"""
    if blocked_by_availability(vehicle, start, end):
        return "This vehicle is marked as unavailable for the selected dates. Please pick a different range."
    if await find_conflicting_booking(vehicle["id"], start, end, exclude_booking_id):
        return "Another traveller has already booked this vehicle for the selected dates."
    return None
