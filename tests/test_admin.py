"""
Test suite for the admin console
Covers:
- Admin-only access
- Driver application and vehicle approval
- Review moderation and admin-authored reviews
- Booking edits with commission recalculation
- Commission discounts re-pricing existing bookings
- Offer and conversation moderation
"""

import pytest

from carwithdriver.routes.shared import db
from conftest import run, day


@pytest.fixture
def booked(client, make_user, make_vehicle, traveler_details):
    driver, driver_headers = make_user("driver", name="Nimal Perera")
    traveler, traveler_headers = make_user("guest")
    vehicle = make_vehicle(driver)
    response = client.post(f"/api/vehicles/{vehicle['id']}/bookings", headers=traveler_headers, json={
        "start_date": day(30), "end_date": day(32), **traveler_details,
    })
    assert response.status_code == 201, response.text
    return {
        "driver": driver, "driver_headers": driver_headers,
        "traveler": traveler, "traveler_headers": traveler_headers,
        "vehicle": vehicle, "booking": response.json()["booking"],
    }


def stored_booking(booking_id):
    return run(db.bookings.find_one({"id": booking_id}, {"_id": 0}))


class TestAccess:
    """Admin role check"""

    def test_non_admin_rejected(self, client, make_user):
        _, headers = make_user("driver")
        response = client.get("/api/admin/drivers", headers=headers)
        assert response.status_code == 403
        assert response.json()["message"] == "Admin access required"


class TestApprovals:
    """Drivers and vehicles awaiting review"""

    def test_approve_driver(self, client, admin_headers, make_user):
        driver, driver_headers = make_user("driver", driver_status="pending")
        pending = client.get("/api/admin/drivers", headers=admin_headers, params={"status": "pending"}).json()["drivers"]
        assert [d["id"] for d in pending] == [driver["id"]]
        assert "password_hash" not in pending[0]

        response = client.patch(f"/api/admin/drivers/{driver['id']}/status", headers=admin_headers, json={"status": "approved"})
        assert response.status_code == 200
        assert response.json()["driver"]["driver_status"] == "approved"
        assert client.get("/api/driver/overview", headers=driver_headers).status_code == 200
        print("✓ Driver approved and gains portal access")

    def test_invalid_status(self, client, admin_headers, make_user):
        driver, _ = make_user("driver", driver_status="pending")
        response = client.patch(f"/api/admin/drivers/{driver['id']}/status", headers=admin_headers, json={"status": "maybe"})
        assert response.status_code == 400
        assert response.json()["message"] == "Status must be one of: pending, approved, rejected"

    def test_email_driver(self, client, admin_headers, make_user):
        driver, _ = make_user("driver")
        response = client.post(f"/api/admin/drivers/{driver['id']}/email", headers=admin_headers, json={
            "subject": "Documents", "message": "Please upload your revenue licence.",
        })
        assert response.status_code == 200
        short = client.post(f"/api/admin/drivers/{driver['id']}/email", headers=admin_headers, json={
            "subject": "Hi", "message": "Please upload your revenue licence.",
        })
        assert short.status_code == 400

    def test_vehicle_approval(self, client, admin_headers, make_user, make_vehicle):
        driver, _ = make_user("driver")
        vehicle = make_vehicle(driver, status="pending")
        assert client.get(f"/api/vehicles/{vehicle['id']}").status_code == 404

        response = client.patch(f"/api/admin/vehicles/{vehicle['id']}/status", headers=admin_headers, json={
            "status": "rejected", "rejected_reason": "Photos are blurry",
        })
        assert response.json()["vehicle"]["rejected_reason"] == "Photos are blurry"

        response = client.patch(f"/api/admin/vehicles/{vehicle['id']}/status", headers=admin_headers, json={"status": "approved"})
        assert response.status_code == 200
        assert response.json()["vehicle"]["rejected_reason"] is None
        assert client.get(f"/api/vehicles/{vehicle['id']}").status_code == 200
        print("✓ Vehicle rejected then approved")


class TestReviews:
    """Review moderation"""

    def test_admin_review_published(self, client, admin_headers, make_user, make_vehicle):
        driver, _ = make_user("driver")
        vehicle = make_vehicle(driver)
        response = client.post("/api/admin/reviews", headers=admin_headers, json={
            "driver_id": driver["id"], "vehicle_id": vehicle["id"], "rating": 4,
            "comment": "Collected from our guest book in Galle.", "traveler_name": "Sam",
        })
        assert response.status_code == 201, response.text
        review = response.json()["review"]
        assert review["status"] == "approved"
        assert review["booking_id"] is None
        assert review["published_at"]

        listing = client.get(f"/api/vehicles/{vehicle['id']}/reviews").json()
        assert listing["meta"]["total"] == 1
        assert listing["reviews"][0]["traveler_name"] == "Sam"
        print("✓ Admin review published")

    def test_admin_review_vehicle_must_match_driver(self, client, admin_headers, make_user, make_vehicle):
        driver, _ = make_user("driver")
        other, _ = make_user("driver")
        vehicle = make_vehicle(other)
        response = client.post("/api/admin/reviews", headers=admin_headers, json={
            "driver_id": driver["id"], "vehicle_id": vehicle["id"], "rating": 4,
            "comment": "Collected from our guest book in Galle.",
        })
        assert response.status_code == 404

    def test_reject_review(self, client, admin_headers, make_user):
        driver, _ = make_user("driver")
        review = client.post("/api/admin/reviews", headers=admin_headers, json={
            "driver_id": driver["id"], "rating": 2, "comment": "Driver arrived late twice.", "status": "pending",
        }).json()["review"]
        assert review["published_at"] is None

        response = client.patch(f"/api/admin/reviews/{review['id']}/status", headers=admin_headers, json={
            "status": "rejected", "admin_note": "Could not verify",
        })
        assert response.json()["review"]["status"] == "rejected"
        assert response.json()["message"] == "Review rejected."
        rejected = client.get("/api/admin/reviews", headers=admin_headers, params={"status": "rejected"}).json()
        assert rejected["meta"]["total"] == 1


class TestBookings:
    """Admin booking edits"""

    def test_update_booking_recalculates(self, client, admin_headers, booked):
        booking = booked["booking"]
        response = client.patch(f"/api/admin/bookings/{booking['id']}", headers=admin_headers, json={
            "price_per_day": 100, "status": "confirmed",
        })
        assert response.status_code == 200, response.text
        updated = response.json()["booking"]
        assert updated["status"] == "confirmed"
        assert updated["total_price"] == 300
        assert updated["commission_amount"] == 24.0
        assert updated["driver_earnings"] == 276.0
        assert updated["driver"]["name"] == "Nimal Perera"
        print("✓ Admin price change re-runs commission")

    def test_update_booking_bad_dates(self, client, admin_headers, booked):
        response = client.patch(f"/api/admin/bookings/{booked['booking']['id']}", headers=admin_headers, json={
            "end_date": day(10),
        })
        assert response.status_code == 400

    def test_reactivating_cancelled_booking_checks_overlap(self, client, admin_headers, booked, traveler_details):
        booking_id = booked["booking"]["id"]
        cancel = client.post(f"/api/bookings/{booking_id}/cancel", headers=booked["traveler_headers"])
        assert cancel.status_code == 200
        other = client.post(f"/api/vehicles/{booked['vehicle']['id']}/bookings", headers=booked["traveler_headers"], json={
            "start_date": day(31), "end_date": day(33), **traveler_details,
        })
        assert other.status_code == 201, other.text

        response = client.patch(f"/api/admin/bookings/{booking_id}", headers=admin_headers, json={"status": "confirmed"})
        assert response.status_code == 409, f"Expected 409, got {response.status_code}: {response.text}"
        assert stored_booking(booking_id)["status"] == "cancelled"
        print("✓ Reactivating a booking cannot double-book the vehicle")

    def test_moving_booking_onto_taken_dates(self, client, admin_headers, booked, traveler_details):
        other = client.post(f"/api/vehicles/{booked['vehicle']['id']}/bookings", headers=booked["traveler_headers"], json={
            "start_date": day(40), "end_date": day(42), **traveler_details,
        })
        assert other.status_code == 201, other.text

        response = client.patch(f"/api/admin/bookings/{booked['booking']['id']}", headers=admin_headers, json={
            "start_date": day(39), "end_date": day(41),
        })
        assert response.status_code == 409
        assert stored_booking(booked["booking"]["id"])["start_date"] == f"{day(30)}T00:00:00+00:00"

    def test_edited_dates_stored_at_midnight(self, client, admin_headers, booked, traveler_details):
        booking_id = booked["booking"]["id"]
        response = client.patch(f"/api/admin/bookings/{booking_id}", headers=admin_headers, json={
            "start_date": f"{day(40)}T15:00:00Z", "end_date": f"{day(42)}T09:30:00Z",
        })
        assert response.status_code == 200, response.text
        stored = stored_booking(booking_id)
        assert stored["start_date"] == f"{day(40)}T00:00:00+00:00", f"Unexpected start {stored['start_date']}"
        assert stored["end_date"] == f"{day(42)}T00:00:00+00:00"
        assert stored["total_days"] == 3

        same_day = client.post(f"/api/vehicles/{booked['vehicle']['id']}/bookings", headers=booked["traveler_headers"], json={
            "start_date": day(38), "end_date": day(40), **traveler_details,
        })
        assert same_day.status_code == 409, "A trip ending on the edited start day must conflict"
        print("✓ Admin date edits are normalised to UTC midnight")

    def test_delete_booking(self, client, admin_headers, booked):
        booking_id = booked["booking"]["id"]
        assert client.delete(f"/api/admin/bookings/{booking_id}", headers=admin_headers).status_code == 200
        assert stored_booking(booking_id) is None
        assert client.delete(f"/api/admin/bookings/{booking_id}", headers=admin_headers).status_code == 404


class TestCommissionDiscounts:
    """Discount windows re-price the bookings they cover"""

    def test_discount_lifecycle(self, client, admin_headers, booked):
        booking_id = booked["booking"]["id"]
        response = client.post("/api/admin/commission-discounts", headers=admin_headers, json={
            "name": "Monsoon promo", "discount_percent": 3, "start_date": day(0), "end_date": day(60),
        })
        assert response.status_code == 201, response.text
        data = response.json()
        discount = data["discount"]
        assert data["recalculated_bookings"] == 1
        assert discount["discount_rate"] == 0.03
        assert discount["discount_percent"] == 3

        stored = stored_booking(booking_id)
        assert stored["commission_amount"] == 7.5
        assert stored["driver_earnings"] == 142.5
        assert stored["commission_discount_label"] == "Monsoon promo"

        response = client.patch(f"/api/admin/commission-discounts/{discount['id']}", headers=admin_headers, json={
            "active": False,
        })
        assert response.json()["discount"]["status"] == "disabled"
        assert response.json()["recalculated_bookings"] == 1
        assert stored_booking(booking_id)["commission_amount"] == 12.0

        response = client.patch(f"/api/admin/commission-discounts/{discount['id']}", headers=admin_headers, json={
            "active": True, "discount_percent": 20,
        })
        assert response.json()["discount"]["discount_rate"] == 0.08
        assert stored_booking(booking_id)["commission_amount"] == 0.0

        response = client.delete(f"/api/admin/commission-discounts/{discount['id']}", headers=admin_headers)
        assert response.json() == {"success": True, "recalculated_bookings": 1}
        restored = stored_booking(booking_id)
        assert restored["commission_amount"] == 12.0
        assert restored["commission_discount_id"] is None
        print("✓ Discount created, disabled, capped and removed with bookings re-priced")

    def test_discount_outside_booking(self, client, admin_headers, booked):
        response = client.post("/api/admin/commission-discounts", headers=admin_headers, json={
            "name": "Next year", "discount_percent": 2, "start_date": day(200), "end_date": day(230),
        })
        assert response.json()["recalculated_bookings"] == 0
        assert response.json()["discount"]["status"] == "scheduled"
        assert stored_booking(booked["booking"]["id"])["commission_amount"] == 12.0

    def test_discount_validation(self, client, admin_headers):
        response = client.post("/api/admin/commission-discounts", headers=admin_headers, json={
            "name": "Backwards", "discount_percent": 2, "start_date": day(10), "end_date": day(5),
        })
        assert response.status_code == 400
        listing = client.get("/api/admin/commission-discounts", headers=admin_headers).json()
        assert listing["discounts"] == []


class TestChatModeration:
    """Offers and conversations"""

    def test_offer_and_conversation_moderation(self, client, admin_headers, make_user, make_vehicle):
        driver, driver_headers = make_user("driver")
        _, traveler_headers = make_user("guest")
        vehicle = make_vehicle(driver)
        conversation = client.post("/api/chat/conversations", headers=traveler_headers, json={
            "driver_id": driver["id"], "vehicle_id": vehicle["id"], "message": "Hi there, quick question",
        }).json()["conversation"]
        offer = client.post(f"/api/chat/conversations/{conversation['id']}/offers", headers=driver_headers, json={
            "vehicle_id": vehicle["id"], "start_date": day(30), "end_date": day(31), "total_price": 120, "total_kms": 200,
        }).json()["message"]

        offers = client.get("/api/admin/offers", headers=admin_headers).json()["offers"]
        assert [o["id"] for o in offers] == [offer["id"]]
        assert offers[0]["driver"]["id"] == driver["id"]

        response = client.patch(f"/api/admin/offers/{offer['id']}/status", headers=admin_headers, json={"status": "declined"})
        assert response.json()["offer"]["status"] == "declined"

        assert client.delete(f"/api/admin/offers/{offer['id']}", headers=admin_headers).status_code == 200
        listing = client.get("/api/admin/conversations", headers=admin_headers).json()["conversations"]
        assert listing[0]["last_message"]["body"] == "Hi there, quick question"

        # admins may read but not post
        assert client.get(f"/api/chat/conversations/{conversation['id']}/messages", headers=admin_headers).status_code == 200
        response = client.post(
            f"/api/chat/conversations/{conversation['id']}/messages", headers=admin_headers, json={"body": "hello"}
        )
        assert response.status_code == 403

        assert client.delete(f"/api/admin/conversations/{conversation['id']}", headers=admin_headers).status_code == 200
        assert client.get("/api/chat/conversations", headers=traveler_headers).json()["conversations"] == []
        print("✓ Offers and conversations moderated")
