from bson import ObjectId

CONVERSATION = {
    "vendorId": "vendor-1",
    "vendorName": "Acme",
    "customerId": "customer-1",
    "customerName": "Ada",
    "customerEmail": "ada@example.com",
    "subject": "Delivery date",
}


def _start(client, **overrides):
    response = client.post("/api/customer/conversations", json=dict(CONVERSATION, **overrides))
    assert response.status_code == 200
    return response.json()["conversationId"]


def _send(client, conversation_id, role="customer", content="Hello there", **overrides):
    payload = {
        "conversationId": conversation_id,
        "senderId": "customer-1" if role == "customer" else "vendor-1",
        "senderName": "Ada" if role == "customer" else "Acme",
        "senderRole": role,
        "content": content,
    }
    payload.update(overrides)
    return client.post("/api/vendor/messages/send", json=payload)


def test_open_conversation_is_reused(client, db):
    first = _start(client)
    second = client.post("/api/customer/conversations", json=CONVERSATION).json()
    assert second["conversationId"] == first
    assert second["message"] == "Using existing conversation"
    assert db["conversations"].count_documents({}) == 1

    db["conversations"].update_one({"_id": ObjectId(first)}, {"$set": {"status": "closed"}})
    assert _start(client) != first


def test_invalid_sender_role_writes_nothing(client, db):
    conversation_id = _start(client)
    response = _send(client, conversation_id, role="admin", senderId="admin-1")
    assert response.status_code == 400
    assert response.json()["error"] == "Invalid sender role"
    assert db["messages"].count_documents({}) == 0


def test_blank_message_is_rejected(client, db):
    conversation_id = _start(client)
    response = _send(client, conversation_id, content="   ")
    assert response.status_code == 400
    assert db["messages"].count_documents({}) == 0


def test_non_participant_cannot_send(client):
    conversation_id = _start(client)
    response = _send(client, conversation_id, senderId="customer-2")
    assert response.status_code == 403


def test_unread_counts_and_mark_read(client, db):
    conversation_id = _start(client)
    assert _send(client, conversation_id, content="  Is it in stock?  ").status_code == 200
    _send(client, conversation_id, content="Any update?")

    stored = db["messages"].find_one({"conversationId": conversation_id})
    assert stored["content"] == "Is it in stock?"
    assert stored["read"] is False

    conversations = client.get("/api/vendor/messages", params={"vendorId": "vendor-1"}).json()["conversations"]
    assert conversations[0]["unreadCount"] == 2
    assert conversations[0]["lastMessage"] is not None

    response = client.put(f"/api/vendor/messages/{conversation_id}/read", json={"vendorId": "vendor-1"})
    assert response.json()["message"] == "Marked 2 messages as read"
    conversations = client.get("/api/vendor/messages", params={"vendorId": "vendor-1"}).json()["conversations"]
    assert conversations[0]["unreadCount"] == 0
    assert db["notifications"].count_documents({"userId": "vendor-1", "type": "new_message"}) == 2


def test_customer_reading_thread_marks_vendor_messages(client, db):
    conversation_id = _start(client)
    _send(client, conversation_id, role="vendor", content="Ships tomorrow")

    response = client.get(f"/api/customer/messages/{conversation_id}", params={"customerId": "customer-1"})
    assert response.status_code == 200
    assert [m["content"] for m in response.json()["messages"]] == ["Ships tomorrow"]
    assert db["messages"].count_documents({"read": False}) == 0

    response = client.get(f"/api/customer/messages/{conversation_id}", params={"customerId": "customer-2"})
    assert response.status_code == 403


def test_new_message_reopens_closed_conversation(client, db):
    conversation_id = _start(client)
    response = client.put(f"/api/vendor/messages/{conversation_id}/status", json={"status": "closed"})
    assert response.status_code == 200
    assert db["conversations"].find_one({"_id": ObjectId(conversation_id)})["status"] == "closed"

    _send(client, conversation_id)
    assert db["conversations"].find_one({"_id": ObjectId(conversation_id)})["status"] == "open"


def test_conversation_status_uses_transition_table(client):
    conversation_id = _start(client)
    url = f"/api/vendor/messages/{conversation_id}/status"

    response = client.put(url, json={"status": "archived"})
    assert response.status_code == 400
    assert response.json()["error"] == "Invalid conversation status: archived"

    client.put(url, json={"status": "closed"})
    response = client.put(url, json={"status": "pending"})
    assert response.status_code == 400
    assert response.json()["error"] == "Invalid status transition from closed to pending"


def test_message_to_conversation_in_unknown_state_is_not_stored(client, db):
    conversation_id = _start(client)
    db["conversations"].update_one({"_id": ObjectId(conversation_id)}, {"$set": {"status": "archived"}})

    response = _send(client, conversation_id)
    assert response.status_code == 400
    assert response.json()["error"] == "Invalid status transition from archived to open"
    assert db["messages"].count_documents({"conversationId": conversation_id}) == 0
