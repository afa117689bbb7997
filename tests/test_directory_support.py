"""
Test suite for the public driver directory, support form and service endpoints
Covers:
- Listing approved drivers with fleet badges and review stats
- Search and location filters
- Driver profile with vehicles, availability and recent reviews
- Active discount shown as a per-day saving
- Support contact form validation
- Root and health endpoints
"""

from datetime import datetime, timedelta, timezone

from carwithdriver.routes.shared import db, now_iso
from conftest import run


def approved_review(driver, vehicle, rating):
    run(db.reviews.insert_one({
        "id": f"review-{rating}-{vehicle['id']}",
        "booking_id": None,
        "vehicle_id": vehicle["id"],
        "driver_id": driver["id"],
        "traveler_name": "Sam",
        "rating": rating,
        "title": "",
        "comment": "A lovely trip around the island.",
        "status": "approved",
        "published_at": now_iso(),
        "created_at": now_iso(),
    }))


class TestDirectory:
    """GET /api/drivers"""

    def test_lists_approved_drivers(self, client, make_user, make_vehicle):
        driver, _ = make_user("driver", name="Nimal Perera", address="Kandy")
        make_user("driver", name="Pending Driver", driver_status="pending")
        vehicle = make_vehicle(driver, meet_and_greet_at_airport=True)
        make_vehicle(driver, model="Toyota HiAce", price_per_day=90, status="pending")
        approved_review(driver, vehicle, 5)
        approved_review(driver, make_vehicle(driver, model="Suzuki Wagon R", price_per_day=40), 4)

        response = client.get("/api/drivers")
        assert response.status_code == 200
        drivers = response.json()["drivers"]
        assert [d["name"] for d in drivers] == ["Nimal Perera"]
        summary = drivers[0]
        assert summary["vehicle_count"] == 2
        assert summary["average_price_per_day"] == 45
        assert "Airport meet & greet" in summary["badges"]
        assert summary["has_english_driver"] is True
        assert summary["review_score"] == 4.5
        assert summary["review_count"] == 2
        assert summary["active_discount"] is None
        print(f"✓ Directory lists {summary['name']} with {summary['review_count']} reviews")

    def test_driver_without_reviews(self, client, make_user, make_vehicle):
        driver, _ = make_user("driver")
        make_vehicle(driver)
        summary = client.get("/api/drivers").json()["drivers"][0]
        assert summary["review_score"] is None
        assert summary["review_count"] == 0

    def test_search_and_location(self, client, make_user):
        make_user("driver", name="Nimal Perera", address="Kandy")
        make_user("driver", name="Kasun Silva", address="Galle Fort", driver_location={"label": "Unawatuna"})

        names = [d["name"] for d in client.get("/api/drivers", params={"search": "kasun"}).json()["drivers"]]
        assert names == ["Kasun Silva"]
        names = [d["name"] for d in client.get("/api/drivers", params={"location": "kandy"}).json()["drivers"]]
        assert names == ["Nimal Perera"]
        names = [d["name"] for d in client.get("/api/drivers", params={"location": "unawatuna"}).json()["drivers"]]
        assert names == ["Kasun Silva"]
        assert client.get("/api/drivers", params={"search": "nobody"}).json() == {"drivers": []}
        print("✓ Directory search and location filters")

    def test_discount_saving(self, client, make_user, make_vehicle):
        driver, _ = make_user("driver")
        make_vehicle(driver, price_per_day=100)
        now = datetime.now(timezone.utc)
        run(db.commission_discounts.insert_one({
            "id": "promo", "name": "Promo", "discount_rate": 0.05, "active": True,
            "start_date": (now - timedelta(days=1)).isoformat(), "end_date": (now + timedelta(days=1)).isoformat(),
        }))

        summary = client.get("/api/drivers").json()["drivers"][0]
        assert summary["active_discount"]["status"] == "active"
        card = summary["featured_vehicle"]
        assert card["discounted_price_per_day"] == 95
        assert card["active_discount"]["discount_amount_per_day"] == 5

    def test_driver_profile(self, client, make_user, make_vehicle):
        driver, _ = make_user("driver", name="Nimal Perera")
        vehicle = make_vehicle(driver, availability=[{
            "id": "a1", "status": "unavailable", "note": "private",
            "start_date": "2030-01-01T00:00:00+00:00", "end_date": "2030-01-03T00:00:00+00:00",
        }])
        approved_review(driver, vehicle, 5)

        response = client.get(f"/api/drivers/{driver['id']}")
        assert response.status_code == 200
        data = response.json()
        assert data["driver"]["name"] == "Nimal Perera"
        assert "email" not in data["driver"]
        assert data["vehicles"][0]["availability"] == [{
            "id": "a1", "start_date": "2030-01-01T00:00:00+00:00",
            "end_date": "2030-01-03T00:00:00+00:00", "status": "unavailable",
        }]
        assert len(data["reviews"]) == 1
        assert data["reviews"][0]["rating"] == 5
        print("✓ Driver profile with fleet and reviews")

    def test_unknown_or_pending_driver(self, client, make_user):
        pending, _ = make_user("driver", driver_status="pending")
        assert client.get(f"/api/drivers/{pending['id']}").status_code == 404
        response = client.get("/api/drivers/missing")
        assert response.status_code == 404
        assert response.json()["message"] == "Driver not found."


class TestSupport:
    """POST /api/support/contact"""

    def test_contact(self, client):
        response = client.post("/api/support/contact", json={
            "name": "Ada", "email": "ada@example.com", "category": "Booking",
            "message": "I need to change my pickup time for next week.",
        })
        assert response.status_code == 200
        assert response.json() == {"success": True}
        print("✓ Support request accepted")

    def test_contact_validation(self, client):
        short = client.post("/api/support/contact", json={
            "name": "Ada", "email": "ada@example.com", "message": "Help",
        })
        assert short.status_code == 400
        assert short.json()["message"] == "Message must be at least 10 characters."

        no_name = client.post("/api/support/contact", json={
            "name": "A", "email": "ada@example.com", "message": "I need to change my pickup time.",
        })
        assert no_name.json()["message"] == "Name is required."

        bad_email = client.post("/api/support/contact", json={
            "name": "Ada", "email": "not-an-email", "message": "I need to change my pickup time.",
        })
        assert bad_email.status_code == 400


class TestService:
    """Root and health endpoints"""

    def test_root(self, client):
        response = client.get("/api/")
        assert response.status_code == 200
        assert response.json()["status"] == "operational"

    def test_health(self, client):
        assert client.get("/api/health").json() == {"status": "ok"}
