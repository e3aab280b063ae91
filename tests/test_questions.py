from bson import ObjectId

QUESTION = {"userId": "customer-1", "userName": "Ada", "question": "Does it ship flat-packed?",
            "vendorId": "vendor-1", "productName": "Walnut Desk"}


def _ask(client, product_id):
    response = client.post(f"/api/products/{product_id}/questions", json=QUESTION)
    assert response.status_code == 201
    return response.json()["questionId"]


def test_questions_are_listed_after_approval(client, make_product, admin_headers):
    product_id = make_product()
    question_id = _ask(client, product_id)
    assert client.get(f"/api/products/{product_id}/questions").json()["questions"] == []

    response = client.patch(f"/api/admin/questions/{question_id}", json={"status": "approved"},
                            headers=admin_headers)
    assert response.status_code == 200
    questions = client.get(f"/api/products/{product_id}/questions").json()["questions"]
    assert [q["id"] for q in questions] == [question_id]
    assert questions[0]["helpful"] == 0


def test_helpful_once_per_user(client, db, make_product):
    product_id = make_product()
    question_id = _ask(client, product_id)
    url = f"/api/products/{product_id}/questions/{question_id}/helpful"

    response = client.post(url, json={"userId": "reader"})
    assert response.status_code == 200
    assert response.json()["helpfulCount"] == 1

    response = client.post(url, json={"userId": "reader"})
    assert response.status_code == 400
    assert response.json()["error"] == "You have already marked this as helpful"
    assert db["questions"].find_one({"_id": ObjectId(question_id)})["helpful"] == 1


def test_helpful_on_missing_question(client, db, make_product):
    product_id = make_product()
    response = client.post(f"/api/products/{product_id}/questions/{ObjectId()}/helpful", json={"userId": "reader"})
    assert response.status_code == 404
    assert db["questionHelpful"].count_documents({}) == 0


def test_vendor_reply_answers_question(client, db, make_product):
    product_id = make_product()
    question_id = _ask(client, product_id)
    url = f"/api/products/{product_id}/questions/{question_id}/replies"

    client.post(url, json={"userId": "customer-2", "userName": "Bo", "message": "Mine did."})
    client.post(url, json={"userId": "vendor-1", "userName": "Acme", "message": "Yes, flat-packed.",
                           "isVendor": True})

    replies = client.get(url).json()["replies"]
    assert [r["message"] for r in replies] == ["Mine did.", "Yes, flat-packed."]
    question = db["questions"].find_one({"_id": ObjectId(question_id)})
    assert question["answer"] == "Yes, flat-packed."
    assert db["notifications"].count_documents({"userId": "customer-1", "type": "question_answered"}) == 1

    vendor_view = client.get("/api/vendor/questions", params={"vendorId": "vendor-1"}).json()["questions"]
    assert len(vendor_view[0]["replies"]) == 2
