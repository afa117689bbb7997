# Review validation and rating statistics
from fastapi import HTTPException
from typing import Dict, Iterable, Optional

from .shared import db, parse_datetime, now_utc, clean_text, ReviewStatus, INACTIVE_BOOKING_STATUSES

TITLE_MAX = 120
COMMENT_MIN = 10
COMMENT_MAX = 1200
ADMIN_NOTE_MAX = 500


def validate_review_fields(rating, title: Optional[str], comment: Optional[str]) -> dict:
    if isinstance(rating, bool) or not isinstance(rating, (int, float)) or rating != int(rating) or not 1 <= rating <= 5:
        raise HTTPException(status_code=400, detail="Rating must be a number between 1 and 5.")
    comment = clean_text(comment)
    if len(comment) < COMMENT_MIN:
        raise HTTPException(status_code=400, detail="Please share more details (minimum 10 characters) in your review.")
    if len(comment) > COMMENT_MAX:
        raise HTTPException(status_code=400, detail="Review comment must be under 1200 characters.")
    title = clean_text(title)
    if len(title) > TITLE_MAX:
        raise HTTPException(status_code=400, detail="Review title must be under 120 characters.")
    return {"rating": int(rating), "title": title, "comment": comment}


def booking_can_be_reviewed(booking: dict, existing_review: Optional[dict] = None, now=None) -> bool:
    if existing_review:
        return False
    if booking.get("status") in INACTIVE_BOOKING_STATUSES:
        return False
    end = parse_datetime(booking.get("end_date"))
    return end is not None and end <= (now or now_utc())


def public_review(review: dict) -> dict:
    return {
        "id": review["id"],
        "booking_id": review.get("booking_id"),
        "vehicle_id": review.get("vehicle_id"),
        "traveler_name": review.get("traveler_name") or "Traveler",
        "rating": review.get("rating"),
        "title": review.get("title") or "",
        "comment": review.get("comment"),
        "trip_start_date": review.get("trip_start_date"),
        "trip_end_date": review.get("trip_end_date"),
        "published_at": review.get("published_at") or review.get("updated_at") or review.get("created_at"),
        "created_at": review.get("created_at"),
    }


def summarize_ratings(counts: Iterable[int]) -> dict:
    """counts holds the number of 1..5 star reviews"""
    counts = list(counts)
    total = sum(counts)
    if not total:
        return {"average_rating": None, "total_reviews": 0, "counts_by_rating": counts}
    weighted = sum((index + 1) * count for index, count in enumerate(counts))
    return {
        "average_rating": round(weighted / total, 2),
        "total_reviews": total,
        "counts_by_rating": counts,
    }


async def build_review_summary_map(field: str, ids: Iterable[str]) -> Dict[str, dict]:
    """Approved review stats keyed by vehicle_id or driver_id"""
    ids = [i for i in ids if i]
    if not ids:
        return {}

    pipeline = [
        {"$match": {field: {"$in": ids}, "status": ReviewStatus.APPROVED.value}},
        {"$group": {"_id": {"key": f"${field}", "rating": "$rating"}, "count": {"$sum": 1}}},
    ]
    rows = await db.reviews.aggregate(pipeline).to_list(5000)

    counts = {}
    for row in rows:
        key = row["_id"]["key"]
        rating = row["_id"]["rating"]
        if isinstance(rating, int) and 1 <= rating <= 5:
            counts.setdefault(key, [0, 0, 0, 0, 0])[rating - 1] += row["count"]

    return {key: summarize_ratings(value) for key, value in counts.items()}
