# Driver Dashboard Routes
from fastapi import APIRouter, HTTPException, Depends
from fastapi.responses import StreamingResponse
from pydantic import BaseModel
from typing import Optional
from datetime import datetime, timezone
import calendar
import io
import os
import re
import uuid
import logging

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.units import mm
from reportlab.platypus import SimpleDocTemplate, Table, TableStyle, Paragraph, Spacer
from reportlab.lib.enums import TA_CENTER

from .shared import (
    db, get_current_driver, now_iso, now_utc, to_iso, parse_datetime, clean_text,
    BookingStatus, VehicleStatus, AvailabilityStatus, ReviewStatus, CommissionStatus
)
from .commission import (
    DEFAULT_COMMISSION_RATE, clamp_rate, round_currency, round_rate, find_discount_for_period,
    serialize_discount
)
from .vehicles import VehicleCreate, VehicleUpdate, validate_vehicle_fields, serialize_vehicle

router = APIRouter(prefix="/driver", tags=["Driver Dashboard"])

MAX_VEHICLE_IMAGES = 5

BANK_DETAILS = {
    "account_name": os.environ.get('PLATFORM_BANK_ACCOUNT_NAME', 'Car With Driver Operations'),
    "account_number": os.environ.get('PLATFORM_BANK_ACCOUNT_NUMBER', '0001234567'),
    "bank_name": os.environ.get('PLATFORM_BANK_NAME', 'National Bank of Sri Lanka'),
    "branch": os.environ.get('PLATFORM_BANK_BRANCH', 'Colombo HQ'),
    "swift_code": os.environ.get('PLATFORM_BANK_SWIFT', ''),
    "reference_note": os.environ.get(
        'PLATFORM_BANK_REFERENCE',
        'Use your Car With Driver ID and the commission month as the payment reference.'
    ),
}

MONTH_FORMAT_ERROR = "Month must be formatted as YYYY-MM"


class AvailabilityCreate(BaseModel):
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    status: Optional[str] = None
    note: Optional[str] = None

class AvailabilityUpdate(BaseModel):
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    status: Optional[str] = None
    note: Optional[str] = None

class PaymentSlip(BaseModel):
    payment_slip_url: str


# ========== HELPERS ==========
def sorted_availability(entries) -> list:
    return sorted(entries or [], key=lambda entry: entry.get("start_date") or "")


async def get_driver_vehicle(vehicle_id: str, driver: dict) -> dict:
    vehicle = await db.vehicles.find_one({"id": vehicle_id, "driver_id": driver["id"]}, {"_id": 0})
    if not vehicle:
        raise HTTPException(status_code=404, detail="Vehicle not found")
    return vehicle


def parse_month(value: Optional[str]):
    """Return (year, month); the current month when no value is given"""
    if not value:
        now = now_utc()
        return now.year, now.month
    if not re.fullmatch(r"\d{4}-\d{2}", value):
        raise HTTPException(status_code=400, detail=MONTH_FORMAT_ERROR)
    year, month = (int(part) for part in value.split("-"))
    if year < 2000 or not 1 <= month <= 12:
        raise HTTPException(status_code=400, detail=MONTH_FORMAT_ERROR)
    return year, month


def build_period_meta(year: int, month: int) -> dict:
    start = datetime(year, month, 1, tzinfo=timezone.utc)
    last_day = calendar.monthrange(year, month)[1]
    end = datetime(year, month, last_day, 23, 59, 59, 999000, tzinfo=timezone.utc)
    return {
        "value": f"{year}-{month:02d}",
        "label": f"{calendar.month_name[month]} {year}",
        "period_start": to_iso(start),
        "period_end": to_iso(end),
        "commission_due_date": to_iso(end),
    }


def summarize_booking(booking: dict) -> dict:
    gross = booking.get("total_price") or 0
    rate = clamp_rate(booking.get("commission_rate"))
    commission = booking.get("commission_amount")
    if commission is None or commission < 0:
        commission = round_currency(gross * rate)
    earnings = booking.get("driver_earnings")
    if earnings is None or earnings < 0:
        earnings = round_currency(gross - commission)
    traveler = booking.get("traveler") or {}
    return {
        "id": booking["id"],
        "start_date": booking.get("start_date"),
        "end_date": booking.get("end_date"),
        "status": booking.get("status"),
        "total_price": gross,
        "commission_base_rate": clamp_rate(booking.get("commission_base_rate")),
        "commission_rate": rate,
        "commission_discount_rate": booking.get("commission_discount_rate") or 0,
        "commission_discount_label": booking.get("commission_discount_label") or "",
        "commission_discount_id": booking.get("commission_discount_id"),
        "commission_amount": commission,
        "driver_earnings": earnings,
        "traveler_name": traveler.get("full_name") or traveler.get("email") or traveler.get("phone_number") or "Traveller",
    }


async def build_earnings_summary(driver: dict, year: int, month: int) -> dict:
    """Compute the month's totals and store them on the driver's commission record"""
    period = build_period_meta(year, month)
    bookings = await db.bookings.find(
        {
            "driver_id": driver["id"],
            "status": BookingStatus.CONFIRMED.value,
            "end_date": {"$gte": period["period_start"], "$lte": period["period_end"]},
        },
        {"_id": 0}
    ).sort("end_date", 1).to_list(1000)

    summaries = [summarize_booking(b) for b in bookings]
    total_gross = sum(max(s["total_price"], 0) for s in summaries)
    total_commission = sum(s["commission_amount"] for s in summaries)

    commission_due = round_currency(total_commission)
    driver_earnings = round_currency(total_gross - commission_due)
    effective_rate = round_rate(total_commission / total_gross) if total_gross > 0 else 0
    commission_rate = clamp_rate(effective_rate if total_gross > 0 else DEFAULT_COMMISSION_RATE)

    record = await db.driver_commissions.find_one_and_update(
        {"driver_id": driver["id"], "year": year, "month": month},
        {
            "$set": {
                "booking_count": len(summaries),
                "total_gross": round_currency(total_gross),
                "commission_rate": commission_rate,
                "commission_due": commission_due,
                "driver_earnings": driver_earnings,
                "last_recalculated_at": now_iso(),
                "updated_at": now_iso(),
            },
            "$setOnInsert": {
                "id": str(uuid.uuid4()),
                "status": CommissionStatus.PENDING.value,
                "payment_slip_url": None,
                "payment_slip_uploaded_at": None,
                "created_at": now_iso(),
            },
        },
        projection={"_id": 0},
        upsert=True,
        return_document=True
    )

    discount = await find_discount_for_period(period["period_start"], period["period_end"])

    return {
        "period": period,
        "totals": {
            "booking_count": len(summaries),
            "total_gross": round_currency(total_gross),
            "commission_due": commission_due,
            "commission_rate": commission_rate,
            "effective_commission_rate": effective_rate,
            "driver_earnings": driver_earnings,
        },
        "commission": record,
        "bookings": summaries,
        "discount": serialize_discount(discount),
        "bank_details": BANK_DETAILS,
    }


def generate_statement_pdf(driver: dict, summary: dict) -> bytes:
    """Render a monthly commission statement"""
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=A4,
                            leftMargin=20*mm, rightMargin=20*mm,
                            topMargin=15*mm, bottomMargin=15*mm)

    styles = getSampleStyleSheet()
    elements = []

    title_style = ParagraphStyle(
        'StatementTitle',
        parent=styles['Heading1'],
        fontSize=22,
        textColor=colors.HexColor('#0f766e'),
        alignment=TA_CENTER,
        spaceAfter=10
    )
    header_style = ParagraphStyle(
        'StatementHeader',
        parent=styles['Heading2'],
        fontSize=13,
        textColor=colors.HexColor('#0f766e'),
        spaceAfter=5
    )
    normal_style = ParagraphStyle(
        'StatementNormal',
        parent=styles['Normal'],
        fontSize=10,
        spaceAfter=3
    )

    period = summary["period"]
    totals = summary["totals"]

    elements.append(Paragraph("Car With Driver", title_style))
    elements.append(Paragraph(f"Commission Statement - {period['label']}", header_style))
    elements.append(Spacer(1, 8))

    info_data = [
        ['Driver:', driver.get('name') or '', 'Period:', period['value']],
        ['Email:', driver.get('email') or '', 'Due:', period['commission_due_date'][:10]],
    ]
    info_table = Table(info_data, colWidths=[55, 190, 50, 100])
    info_table.setStyle(TableStyle([
        ('FONTNAME', (0, 0), (-1, -1), 'Helvetica'),
        ('FONTSIZE', (0, 0), (-1, -1), 10),
        ('FONTNAME', (0, 0), (0, -1), 'Helvetica-Bold'),
        ('FONTNAME', (2, 0), (2, -1), 'Helvetica-Bold'),
        ('BOTTOMPADDING', (0, 0), (-1, -1), 5),
    ]))
    elements.append(info_table)
    elements.append(Spacer(1, 12))

    elements.append(Paragraph("Bookings", header_style))
    rows = [['Trip', 'Traveller', 'Gross (USD)', 'Rate', 'Commission', 'Earnings']]
    for booking in summary["bookings"]:
        rows.append([
            f"{(booking['start_date'] or '')[:10]} - {(booking['end_date'] or '')[:10]}",
            booking['traveler_name'],
            f"{booking['total_price']:.2f}",
            f"{booking['commission_rate'] * 100:.2f}%",
            f"{booking['commission_amount']:.2f}",
            f"{booking['driver_earnings']:.2f}",
        ])
    if len(rows) == 1:
        rows.append(['No confirmed trips this month', '', '', '', '', ''])
    bookings_table = Table(rows, colWidths=[120, 110, 65, 45, 65, 65])
    bookings_table.setStyle(TableStyle([
        ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
        ('FONTNAME', (0, 1), (-1, -1), 'Helvetica'),
        ('FONTSIZE', (0, 0), (-1, -1), 9),
        ('BACKGROUND', (0, 0), (-1, 0), colors.HexColor('#ccfbf1')),
        ('GRID', (0, 0), (-1, -1), 0.5, colors.HexColor('#94a3b8')),
        ('ALIGN', (2, 0), (-1, -1), 'RIGHT'),
    ]))
    elements.append(bookings_table)
    elements.append(Spacer(1, 12))

    totals_data = [
        ['Trips', str(totals['booking_count'])],
        ['Total gross', f"USD {totals['total_gross']:.2f}"],
        ['Commission due', f"USD {totals['commission_due']:.2f}"],
        ['Effective rate', f"{totals['effective_commission_rate'] * 100:.2f}%"],
        ['Driver earnings', f"USD {totals['driver_earnings']:.2f}"],
    ]
    totals_table = Table(totals_data, colWidths=[120, 120])
    totals_table.setStyle(TableStyle([
        ('FONTNAME', (0, 0), (0, -1), 'Helvetica-Bold'),
        ('FONTSIZE', (0, 0), (-1, -1), 10),
        ('BOTTOMPADDING', (0, 0), (-1, -1), 4),
    ]))
    elements.append(totals_table)
    elements.append(Spacer(1, 12))

    bank = summary["bank_details"]
    elements.append(Paragraph("Payment details", header_style))
    elements.append(Paragraph(f"{bank['account_name']} - {bank['bank_name']} ({bank['branch']})", normal_style))
    elements.append(Paragraph(f"Account number: {bank['account_number']}", normal_style))
    if bank.get("swift_code"):
        elements.append(Paragraph(f"SWIFT: {bank['swift_code']}", normal_style))
    elements.append(Paragraph(bank["reference_note"], normal_style))

    doc.build(elements)
    return buffer.getvalue()


# ========== OVERVIEW ==========
@router.get("/overview")
async def get_driver_overview(driver: dict = Depends(get_current_driver)):
    today = to_iso(now_utc())
    total_trips = await db.bookings.count_documents(
        {"driver_id": driver["id"], "status": BookingStatus.CONFIRMED.value}
    )
    upcoming_trips = await db.bookings.count_documents({
        "driver_id": driver["id"],
        "status": {"$in": [BookingStatus.PENDING.value, BookingStatus.CONFIRMED.value]},
        "start_date": {"$gte": today},
    })
    reviews = await db.reviews.find(
        {"driver_id": driver["id"], "status": ReviewStatus.APPROVED.value}, {"_id": 0, "rating": 1}
    ).to_list(1000)
    rating = round(sum(r["rating"] for r in reviews) / len(reviews), 2) if reviews else 0

    return {
        "profile": driver,
        "activity": {
            "total_trips": total_trips,
            "upcoming_trips": upcoming_trips,
            "rating": rating,
            "last_updated": now_iso(),
        },
    }


# ========== VEHICLES ==========
@router.get("/vehicles")
async def list_driver_vehicles(driver: dict = Depends(get_current_driver)):
    vehicles = await db.vehicles.find({"driver_id": driver["id"]}, {"_id": 0}).sort("created_at", -1).to_list(200)
    return {"vehicles": [serialize_vehicle(v) for v in vehicles]}


@router.post("/vehicles", status_code=201)
async def create_driver_vehicle(data: VehicleCreate, driver: dict = Depends(get_current_driver)):
    fields = validate_vehicle_fields(data.model_dump())
    fields["images"] = fields.get("images", [])[:MAX_VEHICLE_IMAGES]

    vehicle = {
        "id": str(uuid.uuid4()),
        "driver_id": driver["id"],
        **fields,
        "status": VehicleStatus.PENDING.value,
        "rejected_reason": None,
        "availability": [],
        "created_at": now_iso(),
        "updated_at": now_iso(),
    }
    await db.vehicles.insert_one(vehicle)
    logging.info(f"Driver {driver['id']} submitted vehicle {vehicle['id']} for review")
    return {"vehicle": serialize_vehicle(vehicle)}


@router.patch("/vehicles/{vehicle_id}")
async def update_driver_vehicle(vehicle_id: str, data: VehicleUpdate, driver: dict = Depends(get_current_driver)):
    """Edit a vehicle; any change sends it back for approval"""
    vehicle = await get_driver_vehicle(vehicle_id, driver)
    fields = validate_vehicle_fields(data.model_dump(exclude_unset=True))
    if "images" in fields:
        fields["images"] = fields["images"][:MAX_VEHICLE_IMAGES]

    fields.update({
        "status": VehicleStatus.PENDING.value,
        "rejected_reason": None,
        "reviewed_at": None,
        "reviewed_by": None,
        "updated_at": now_iso(),
    })
    await db.vehicles.update_one({"id": vehicle["id"]}, {"$set": fields})
    updated = await db.vehicles.find_one({"id": vehicle["id"]}, {"_id": 0})
    return {"vehicle": serialize_vehicle(updated)}


# ========== AVAILABILITY ==========
@router.get("/vehicles/{vehicle_id}/availability")
async def get_vehicle_availability(vehicle_id: str, driver: dict = Depends(get_current_driver)):
    vehicle = await get_driver_vehicle(vehicle_id, driver)
    return {"availability": sorted_availability(vehicle.get("availability"))}


@router.post("/vehicles/{vehicle_id}/availability", status_code=201)
async def create_vehicle_availability(vehicle_id: str, data: AvailabilityCreate,
                                      driver: dict = Depends(get_current_driver)):
    start = parse_datetime(data.start_date)
    end = parse_datetime(data.end_date)
    if start is None or end is None:
        raise HTTPException(status_code=400, detail="Start and end dates are required")
    if start > end:
        raise HTTPException(status_code=400, detail="Start date must be before end date")

    statuses = [s.value for s in AvailabilityStatus]
    status = data.status if data.status in statuses else AvailabilityStatus.AVAILABLE.value

    vehicle = await get_driver_vehicle(vehicle_id, driver)
    entry = {
        "id": str(uuid.uuid4()),
        "start_date": to_iso(start),
        "end_date": to_iso(end),
        "status": status,
        "note": clean_text(data.note) or None,
        "created_at": now_iso(),
        "updated_at": now_iso(),
    }
    entries = (vehicle.get("availability") or []) + [entry]
    await db.vehicles.update_one({"id": vehicle["id"]}, {"$set": {"availability": entries}})
    return {"availability": sorted_availability(entries)}


@router.patch("/vehicles/{vehicle_id}/availability/{entry_id}")
async def update_vehicle_availability(vehicle_id: str, entry_id: str, data: AvailabilityUpdate,
                                      driver: dict = Depends(get_current_driver)):
    provided = data.model_dump(exclude_unset=True)
    vehicle = await get_driver_vehicle(vehicle_id, driver)
    entries = vehicle.get("availability") or []
    entry = next((e for e in entries if e.get("id") == entry_id), None)
    if not entry:
        raise HTTPException(status_code=404, detail="Availability entry not found")

    if "start_date" in provided:
        start = parse_datetime(provided["start_date"])
        if start is None:
            raise HTTPException(status_code=400, detail="Start date must be a valid ISO date")
        entry["start_date"] = to_iso(start)
    if "end_date" in provided:
        end = parse_datetime(provided["end_date"])
        if end is None:
            raise HTTPException(status_code=400, detail="End date must be a valid ISO date")
        entry["end_date"] = to_iso(end)
    if provided.get("status"):
        if provided["status"] not in [s.value for s in AvailabilityStatus]:
            raise HTTPException(status_code=400, detail="Invalid availability status")
        entry["status"] = provided["status"]
    if "note" in provided:
        entry["note"] = clean_text(provided["note"]) or None

    if parse_datetime(entry["start_date"]) > parse_datetime(entry["end_date"]):
        raise HTTPException(status_code=400, detail="Start date must be before end date")

    entry["updated_at"] = now_iso()
    await db.vehicles.update_one({"id": vehicle["id"]}, {"$set": {"availability": entries}})
    return {"availability": sorted_availability(entries)}


@router.delete("/vehicles/{vehicle_id}/availability/{entry_id}")
async def delete_vehicle_availability(vehicle_id: str, entry_id: str, driver: dict = Depends(get_current_driver)):
    vehicle = await get_driver_vehicle(vehicle_id, driver)
    entries = vehicle.get("availability") or []
    remaining = [e for e in entries if e.get("id") != entry_id]
    if len(remaining) == len(entries):
        raise HTTPException(status_code=404, detail="Availability entry not found")
    await db.vehicles.update_one({"id": vehicle["id"]}, {"$set": {"availability": remaining}})
    return {"availability": sorted_availability(remaining)}


# ========== EARNINGS ==========
@router.get("/earnings/summary")
async def get_earnings_summary(month: Optional[str] = None, driver: dict = Depends(get_current_driver)):
    year, month_number = parse_month(month)
    return await build_earnings_summary(driver, year, month_number)


@router.get("/earnings/history")
async def get_earnings_history(driver: dict = Depends(get_current_driver)):
    records = await db.driver_commissions.find(
        {"driver_id": driver["id"]}, {"_id": 0}
    ).sort([("year", -1), ("month", -1)]).limit(24).to_list(24)

    history = []
    for record in records:
        rate = record.get("commission_rate", DEFAULT_COMMISSION_RATE)
        history.append({
            "id": record["id"],
            "period": build_period_meta(record["year"], record["month"]),
            "totals": {
                "booking_count": record.get("booking_count", 0),
                "total_gross": record.get("total_gross", 0),
                "commission_due": record.get("commission_due", 0),
                "commission_rate": rate,
                "effective_commission_rate": rate,
                "driver_earnings": record.get("driver_earnings", 0),
            },
            "status": record.get("status"),
            "payment_slip_url": record.get("payment_slip_url") or "",
            "payment_slip_uploaded_at": record.get("payment_slip_uploaded_at"),
            "updated_at": record.get("updated_at"),
        })
    return {"history": history}


@router.post("/earnings/{commission_id}/payment-slip")
async def submit_payment_slip(commission_id: str, data: PaymentSlip, driver: dict = Depends(get_current_driver)):
    slip_url = clean_text(data.payment_slip_url)
    if not slip_url:
        raise HTTPException(status_code=400, detail="Payment slip not provided.")

    record = await db.driver_commissions.find_one_and_update(
        {"id": commission_id, "driver_id": driver["id"]},
        {"$set": {
            "payment_slip_url": slip_url,
            "payment_slip_uploaded_at": now_iso(),
            "status": CommissionStatus.SUBMITTED.value,
            "updated_at": now_iso(),
        }},
        projection={"_id": 0},
        return_document=True
    )
    if not record:
        raise HTTPException(status_code=404, detail="Commission record not found.")

    logging.info(f"Driver {driver['id']} submitted payment slip for commission {commission_id}")
    return {"message": "Payment slip uploaded successfully.", "commission": record}


@router.get("/earnings/statement.pdf")
async def download_earnings_statement(month: Optional[str] = None, driver: dict = Depends(get_current_driver)):
    year, month_number = parse_month(month)
    summary = await build_earnings_summary(driver, year, month_number)
    pdf_bytes = generate_statement_pdf(driver, summary)

    filename = f"commission-statement-{summary['period']['value']}.pdf"
    return StreamingResponse(
        io.BytesIO(pdf_bytes),
        media_type="application/pdf",
        headers={"Content-Disposition": f"attachment; filename={filename}"}
    )
