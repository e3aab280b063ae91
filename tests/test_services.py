from bson import ObjectId

SCHEDULE = {"vendorId": "vendor-1", "scheduledDate": "2026-11-02", "scheduledTime": "10:00", "duration": 90,
            "location": "customer_address", "address": "12 Marina Rd"}


def test_booking_lists(client, make_booking):
    make_booking()
    make_booking(customerId="customer-2", vendorId="vendor-2")

    vendor = client.get("/api/vendor/services", params={"vendorId": "vendor-1"}).json()["bookings"]
    assert len(vendor) == 1
    customer = client.get("/api/customer/services", params={"customerId": "customer-2"}).json()["bookings"]
    assert customer[0]["vendorId"] == "vendor-2"
    assert client.get("/api/vendor/services").status_code == 400


def test_schedule_then_progress_to_completion(client, db, make_booking):
    booking_id = make_booking()

    response = client.post(f"/api/vendor/services/{booking_id}/schedule", json=SCHEDULE)
    assert response.status_code == 200
    booking = db["serviceBookings"].find_one({"_id": ObjectId(booking_id)})
    assert booking["status"] == "scheduled"
    assert booking["scheduledDate"] == "2026-11-02"
    assert db["notifications"].count_documents({"userId": "customer-1", "type": "service_scheduled"}) == 1

    url = f"/api/vendor/services/{booking_id}/status"
    assert client.put(url, json={"vendorId": "vendor-1", "status": "in_progress"}).status_code == 200
    response = client.put(url, json={"vendorId": "vendor-1", "status": "completed", "notes": "All done"})
    assert response.status_code == 200

    booking = db["serviceBookings"].find_one({"_id": ObjectId(booking_id)})
    assert booking["status"] == "completed"
    assert booking["completedAt"] is not None
    assert booking["vendorNotes"] == "All done"
    assert db["notifications"].count_documents({"userId": "customer-1", "type": "service_status_changed"}) == 1
    assert db["notifications"].count_documents({"userId": "customer-1", "type": "service_completed"}) == 1


def test_schedule_by_other_vendor(client, make_booking):
    booking_id = make_booking()
    response = client.post(f"/api/vendor/services/{booking_id}/schedule", json=dict(SCHEDULE, vendorId="vendor-9"))
    assert response.status_code == 403


def test_booking_status_rules(client, make_booking):
    booking_id = make_booking()
    url = f"/api/vendor/services/{booking_id}/status"

    response = client.put(url, json={"vendorId": "vendor-1", "status": "finished"})
    assert response.status_code == 400
    assert response.json()["error"] == "Invalid status"

    response = client.put(url, json={"vendorId": "vendor-1", "status": "completed"})
    assert response.status_code == 400
    assert response.json()["error"] == "Invalid status transition from pending_schedule to completed"

    assert client.put(url, json={"vendorId": "vendor-1", "status": "cancelled"}).status_code == 200
    assert client.put(url, json={"vendorId": "vendor-1", "status": "scheduled"}).status_code == 400


def test_booking_messages(client, db, make_booking):
    booking_id = make_booking()
    url = f"/api/services/{booking_id}/messages"

    response = client.post(url, json={"senderId": "customer-1", "senderName": "Ada", "senderType": "customer",
                                      "message": "  Gate code is 1234  "})
    assert response.status_code == 200
    assert response.json()["messageId"].startswith("msg_")

    assert client.post(url, json={"senderId": "customer-1", "senderType": "vendor",
                                  "message": "Spoofed"}).status_code == 403
    assert client.post(url, json={"senderId": "customer-1", "senderType": "robot",
                                  "message": "Beep"}).status_code == 400

    messages = db["serviceBookings"].find_one({"_id": ObjectId(booking_id)})["messages"]
    assert len(messages) == 1
    assert messages[0]["message"] == "Gate code is 1234"
    assert messages[0]["senderType"] == "customer"
