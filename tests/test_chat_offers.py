"""
Test suite for traveller/driver chat and driver offers
Covers:
- Starting and reusing conversations
- Contact details masked in messages
- Unread counters and read receipts
- Driver offers with validation
- Booking from an offer confirms it and consumes the offer
- Closed conversations reject new messages
"""

import pytest

from conftest import day


@pytest.fixture
def chat(client, make_user, make_vehicle):
    driver, driver_headers = make_user("driver", name="Nimal Perera")
    traveler, traveler_headers = make_user("guest", name="Ada Traveller")
    vehicle = make_vehicle(driver)
    response = client.post("/api/chat/conversations", headers=traveler_headers, json={
        "driver_id": driver["id"], "vehicle_id": vehicle["id"], "message": "Hello! Are you free in March?",
    })
    assert response.status_code == 201, f"Could not start chat: {response.text}"
    return {
        "driver": driver, "driver_headers": driver_headers,
        "traveler": traveler, "traveler_headers": traveler_headers,
        "vehicle": vehicle, "conversation": response.json()["conversation"],
    }


def send_offer(client, chat, **overrides):
    payload = {
        "vehicle_id": chat["vehicle"]["id"],
        "start_date": day(30),
        "end_date": day(33),
        "total_price": 420,
        "total_kms": 600,
        "price_per_extra_km": 0.5,
        "note": "Includes a stop at Sigiriya",
    }
    payload.update(overrides)
    return client.post(
        f"/api/chat/conversations/{chat['conversation']['id']}/offers",
        headers=chat["driver_headers"], json=payload,
    )


class TestConversations:
    """Conversation lifecycle"""

    def test_start_conversation(self, client, chat):
        conversation = chat["conversation"]
        assert conversation["driver_unread"] == 1
        assert conversation["counterpart"]["name"] == "Nimal Perera"
        assert conversation["last_message"]["body"] == "Hello! Are you free in March?"
        print(f"✓ Conversation {conversation['id']} started")

    def test_reuse_conversation(self, client, chat):
        response = client.post("/api/chat/conversations", headers=chat["traveler_headers"], json={
            "driver_id": chat["driver"]["id"], "vehicle_id": chat["vehicle"]["id"],
        })
        assert response.status_code == 201
        data = response.json()
        assert data["reuse"] is True
        assert data["conversation"]["id"] == chat["conversation"]["id"]
        assert data["message"] is None
        print("✓ Existing conversation reused")

    def test_unknown_driver(self, client, make_user):
        _, headers = make_user("guest")
        response = client.post("/api/chat/conversations", headers=headers, json={"driver_id": "missing"})
        assert response.status_code == 404
        assert response.json()["message"] == "Driver not found or unavailable."

    def test_contact_details_masked(self, client, chat):
        response = client.post(
            f"/api/chat/conversations/{chat['conversation']['id']}/messages",
            headers=chat["driver_headers"], json={"body": "WhatsApp me on +94 77 123 4567"},
        )
        assert response.status_code == 201
        message = response.json()["message"]
        assert "4567" not in message["body"]
        assert message["violations"] == ["phone"]
        assert message["warning"]
        print("✓ Phone number hidden in chat")

    def test_empty_message(self, client, chat):
        response = client.post(
            f"/api/chat/conversations/{chat['conversation']['id']}/messages",
            headers=chat["traveler_headers"], json={"body": "   "},
        )
        assert response.status_code == 400
        assert response.json()["message"] == "Message cannot be empty."

    def test_outsider_forbidden(self, client, chat, make_user):
        _, headers = make_user("guest")
        response = client.get(f"/api/chat/conversations/{chat['conversation']['id']}/messages", headers=headers)
        assert response.status_code == 403

    def test_reading_clears_unread(self, client, chat):
        listing = client.get("/api/chat/conversations", headers=chat["driver_headers"]).json()["conversations"]
        assert listing[0]["unread_count"] == 1

        response = client.get(f"/api/chat/conversations/{chat['conversation']['id']}/messages", headers=chat["driver_headers"])
        assert response.status_code == 200
        data = response.json()
        assert len(data["messages"]) == 1
        assert data["has_more"] is False
        assert chat["driver"]["id"] in client.get(
            f"/api/chat/conversations/{chat['conversation']['id']}/messages", headers=chat["traveler_headers"]
        ).json()["messages"][0]["read_by"]

        listing = client.get("/api/chat/conversations", headers=chat["driver_headers"]).json()["conversations"]
        assert listing[0]["unread_count"] == 0
        print("✓ Reading messages clears the unread counter")

    def test_closed_conversation(self, client, chat, admin_headers):
        response = client.patch(
            f"/api/admin/conversations/{chat['conversation']['id']}/status",
            headers=admin_headers, json={"status": "closed"},
        )
        assert response.status_code == 200
        assert response.json()["conversation"]["driver_unread"] == 0

        response = client.post(
            f"/api/chat/conversations/{chat['conversation']['id']}/messages",
            headers=chat["traveler_headers"], json={"body": "Still there?"},
        )
        assert response.status_code == 409
        assert response.json()["message"] == "This conversation has been closed."
        print("✓ Closed conversation rejects messages")


class TestOffers:
    """Driver offers and booking from an offer"""

    def test_send_offer(self, client, chat):
        response = send_offer(client, chat)
        assert response.status_code == 201, response.text
        message = response.json()["message"]
        assert message["type"] == "offer"
        offer = message["offer"]
        assert offer["status"] == "pending"
        assert offer["total_price"] == 420
        assert offer["vehicle_model"] == "Toyota Prius"
        assert message["body"].startswith("Offer: Toyota Prius")
        assert "Sigiriya" in message["body"]
        print(f"✓ Offer sent: {message['body'].splitlines()[0]}")

    def test_offer_validation(self, client, chat, make_vehicle, make_user):
        assert send_offer(client, chat, total_price=0).status_code == 400
        assert send_offer(client, chat, end_date=day(20)).status_code == 400

        other_driver, _ = make_user("driver")
        foreign = make_vehicle(other_driver)
        response = send_offer(client, chat, vehicle_id=foreign["id"])
        assert response.status_code == 404
        assert response.json()["message"] == "Vehicle not found in your fleet."

    def test_only_assigned_driver_offers(self, client, chat, make_user):
        _, other_headers = make_user("driver")
        response = client.post(
            f"/api/chat/conversations/{chat['conversation']['id']}/offers", headers=other_headers, json={
                "vehicle_id": chat["vehicle"]["id"], "start_date": day(30), "end_date": day(31),
                "total_price": 100, "total_kms": 100,
            },
        )
        assert response.status_code == 403

    def test_book_from_offer(self, client, chat, traveler_details):
        offer_id = send_offer(client, chat).json()["message"]["id"]

        fetched = client.get(f"/api/chat/offers/{offer_id}", headers=chat["traveler_headers"])
        assert fetched.status_code == 200
        assert fetched.json()["vehicle"]["model"] == "Toyota Prius"

        response = client.post(
            f"/api/vehicles/{chat['vehicle']['id']}/bookings", headers=chat["traveler_headers"],
            json={"offer_id": offer_id, **traveler_details},
        )
        assert response.status_code == 201, response.text
        booking = response.json()["booking"]
        assert booking["status"] == "confirmed"
        assert booking["total_price"] == 420
        assert booking["total_days"] == 4
        assert booking["commission_amount"] == 33.6
        assert booking["offer_id"] == offer_id
        assert booking["conversation_id"] == chat["conversation"]["id"]

        offer = client.get(f"/api/chat/offers/{offer_id}", headers=chat["traveler_headers"]).json()["offer"]["offer"]
        assert offer["status"] == "accepted"
        assert offer["booking_id"] == booking["id"]

        again = client.post(
            f"/api/vehicles/{chat['vehicle']['id']}/bookings", headers=chat["traveler_headers"],
            json={"offer_id": offer_id, **traveler_details},
        )
        assert again.status_code == 409
        print("✓ Offer turned into a confirmed booking once")

    def test_offer_belongs_to_traveler(self, client, chat, make_user, traveler_details):
        offer_id = send_offer(client, chat).json()["message"]["id"]
        _, other_headers = make_user("guest")
        response = client.post(
            f"/api/vehicles/{chat['vehicle']['id']}/bookings", headers=other_headers,
            json={"offer_id": offer_id, **traveler_details},
        )
        assert response.status_code == 403

    def test_cancel_declines_offer(self, client, chat, traveler_details):
        offer_id = send_offer(client, chat).json()["message"]["id"]
        booking = client.post(
            f"/api/vehicles/{chat['vehicle']['id']}/bookings", headers=chat["traveler_headers"],
            json={"offer_id": offer_id, **traveler_details},
        ).json()["booking"]

        client.post(f"/api/bookings/{booking['id']}/cancel", headers=chat["traveler_headers"])
        offer = client.get(f"/api/chat/offers/{offer_id}", headers=chat["driver_headers"]).json()["offer"]["offer"]
        assert offer["status"] == "declined"

        bookings = client.get("/api/bookings/traveler", headers=chat["traveler_headers"]).json()["bookings"]
        assert bookings[0]["offer_status"] == "declined"
        print("✓ Cancelling an offer booking declines the offer")
