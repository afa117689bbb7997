# Commission & discount engine
import math
import logging
from typing import Iterable, Optional, Tuple

from .shared import db, parse_datetime, to_iso, now_utc

DEFAULT_COMMISSION_RATE = 0.08
MAX_DISCOUNT_RATE = 0.08
RATE_EPSILON = 1e-6


def _is_finite(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def clamp_rate(value, fallback: float = DEFAULT_COMMISSION_RATE, maximum: float = 1.0) -> float:
    if not _is_finite(value):
        return fallback
    if value < 0:
        return 0.0
    if value > maximum:
        return maximum
    return float(value)


def round_currency(value) -> float:
    """Round half up to two decimals"""
    if not _is_finite(value):
        return 0.0
    return math.floor(value * 100 + 0.5) / 100


def round_rate(value) -> float:
    if not _is_finite(value):
        return 0.0
    return math.floor(value * 10000 + 0.5) / 10000


def compute_commission(gross, base_rate=None, discount: Optional[dict] = None) -> dict:
    """Return the commission fields for a gross booking amount.

    The discount (a commission_discounts document) lowers the platform rate but
    is capped by both MAX_DISCOUNT_RATE and the base rate itself.
    """
    base = clamp_rate(base_rate, fallback=DEFAULT_COMMISSION_RATE)
    gross = max(gross, 0) if _is_finite(gross) else 0

    discount_rate = 0.0
    label = None
    discount_id = None
    if discount:
        discount_rate = clamp_rate(
            discount.get("discount_rate"), fallback=0.0, maximum=min(MAX_DISCOUNT_RATE, base)
        )
        label = discount.get("name")
        discount_id = discount.get("id")

    effective_rate = clamp_rate(base - discount_rate, fallback=base, maximum=1.0)
    commission = round_currency(gross * effective_rate)
    return {
        "commission_base_rate": base,
        "commission_discount_rate": discount_rate,
        "commission_discount_label": label,
        "commission_discount_id": discount_id,
        "commission_rate": effective_rate,
        "commission_amount": commission,
        "driver_earnings": round_currency(gross - commission),
    }


def _differs(current, new) -> bool:
    if _is_finite(current) and _is_finite(new):
        return abs(current - new) > RATE_EPSILON
    return current != new


def diff_commission(booking: dict, fields: dict) -> dict:
    """Only the commission fields whose stored value differs"""
    return {key: value for key, value in fields.items() if _differs(booking.get(key), value)}


async def find_active_discount(on_date) -> Optional[dict]:
    """Highest-rate active discount whose window contains the given date"""
    moment = parse_datetime(on_date)
    if moment is None:
        return None
    stamp = to_iso(moment)
    discounts = await db.commission_discounts.find(
        {"active": True, "start_date": {"$lte": stamp}, "end_date": {"$gte": stamp}},
        {"_id": 0}
    ).sort([("discount_rate", -1), ("start_date", -1)]).limit(1).to_list(1)
    return discounts[0] if discounts else None


async def find_discount_for_period(period_start: str, period_end: str) -> Optional[dict]:
    discounts = await db.commission_discounts.find(
        {"active": True, "start_date": {"$lte": period_end}, "end_date": {"$gte": period_start}},
        {"_id": 0}
    ).sort([("discount_rate", -1), ("start_date", -1)]).limit(1).to_list(1)
    return discounts[0] if discounts else None


async def commission_for_booking(booking: dict) -> dict:
    discount = await find_active_discount(booking.get("start_date"))
    return compute_commission(
        booking.get("total_price"), booking.get("commission_base_rate"), discount
    )


async def apply_commission_rules(booking: dict) -> dict:
    """Recompute commission fields on a stored booking and persist any change.

    Returns the changed fields, empty when the booking was already up to date.
    """
    changes = diff_commission(booking, await commission_for_booking(booking))
    if changes:
        await db.bookings.update_one({"id": booking["id"]}, {"$set": changes})
        booking.update(changes)
    return changes


async def recalculate_bookings_for_range(start_date, end_date) -> int:
    start = parse_datetime(start_date)
    end = parse_datetime(end_date)
    if start is None or end is None:
        return 0

    bookings = await db.bookings.find(
        {"start_date": {"$gte": to_iso(start), "$lte": to_iso(end)}},
        {"_id": 0}
    ).to_list(5000)

    updated = 0
    for booking in bookings:
        if await apply_commission_rules(booking):
            updated += 1
    if updated:
        logging.info(f"Recalculated commission for {updated} bookings between {to_iso(start)} and {to_iso(end)}")
    return updated


async def recalculate_for_ranges(ranges: Iterable[Tuple]) -> int:
    seen = set()
    total = 0
    for start_date, end_date in ranges:
        start = parse_datetime(start_date)
        end = parse_datetime(end_date)
        if start is None or end is None:
            continue
        key = (to_iso(start), to_iso(end))
        if key in seen:
            continue
        seen.add(key)
        total += await recalculate_bookings_for_range(start, end)
    return total


def discount_status(discount: dict, now=None) -> str:
    if not discount.get("active"):
        return "disabled"
    now = now or now_utc()
    start = parse_datetime(discount.get("start_date"))
    end = parse_datetime(discount.get("end_date"))
    if start and start > now:
        return "scheduled"
    if end and end < now:
        return "expired"
    return "active"


def serialize_discount(discount: Optional[dict]) -> Optional[dict]:
    if not discount:
        return None
    data = {k: v for k, v in discount.items() if k != "_id"}
    data["status"] = discount_status(discount)
    data["discount_percent"] = round_currency((discount.get("discount_rate") or 0) * 100)
    return data
