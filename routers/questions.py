from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, get_db, get_documents, serialize, to_obj_id, utcnow
from notifications import notify
from schemas import HelpfulRequest, QuestionCreate, ReplyCreate

router = APIRouter()


def _question(db: Database, question_id: str) -> dict:
    doc = db["questions"].find_one({"_id": to_obj_id(question_id)})
    if not doc:
        raise HTTPException(status_code=404, detail="Question not found")
    return doc


@router.get("/api/products/{product_id}/questions")
def product_questions(product_id: str, db: Database = Depends(get_db)):
    docs = get_documents(db, "questions", {"productId": product_id, "status": "approved"},
                         sort=[("createdAt", -1)])
    return {"success": True, "questions": [serialize(d) for d in docs]}


@router.post("/api/products/{product_id}/questions", status_code=201)
def ask_question(product_id: str, payload: QuestionCreate, db: Database = Depends(get_db)):
    question_id = create_document(db, "questions", {
        "productId": product_id,
        "productName": payload.product_name,
        "vendorId": payload.vendor_id,
        "userId": payload.user_id,
        "userName": payload.user_name,
        "userEmail": payload.user_email,
        "question": payload.question.strip(),
        "answer": None,
        "answeredAt": None,
        "helpful": 0,
        "status": "pending",
    })
    notify(db, payload.vendor_id, "new_question", {"productName": payload.product_name})
    return {"success": True, "questionId": question_id, "message": "Question submitted for review"}


@router.post("/api/products/{product_id}/questions/{question_id}/helpful")
def mark_question_helpful(product_id: str, question_id: str, payload: HelpfulRequest,
                          db: Database = Depends(get_db)):
    question = _question(db, question_id)
    try:
        db["questionHelpful"].insert_one({"questionId": question_id, "userId": payload.user_id,
                                          "createdAt": utcnow()})
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="You have already marked this as helpful")

    doc = db["questions"].find_one_and_update(
        {"_id": question["_id"]},
        {"$inc": {"helpful": 1}, "$set": {"updatedAt": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    return {"success": True, "helpfulCount": doc["helpful"], "message": "Marked as helpful successfully"}


@router.get("/api/products/{product_id}/questions/{question_id}/replies")
def question_replies(product_id: str, question_id: str, db: Database = Depends(get_db)):
    docs = get_documents(db, "questionReplies", {"questionId": question_id}, sort=[("createdAt", 1)])
    return {"success": True, "replies": [serialize(d) for d in docs]}


@router.post("/api/products/{product_id}/questions/{question_id}/replies", status_code=201)
def reply_to_question(product_id: str, question_id: str, payload: ReplyCreate, db: Database = Depends(get_db)):
    question = _question(db, question_id)
    reply_id = create_document(db, "questionReplies", {
        "questionId": question_id,
        "productId": product_id,
        "userId": payload.user_id,
        "userName": payload.user_name,
        "message": payload.message.strip(),
        "isVendor": payload.is_vendor,
    })
    if payload.is_vendor and not question.get("answer"):
        db["questions"].update_one(
            {"_id": question["_id"]},
            {"$set": {"answer": payload.message.strip(), "answeredAt": utcnow(), "answeredBy": payload.user_id}},
        )
        notify(db, question.get("userId"), "question_answered", {"productName": question.get("productName")})
    return {"success": True, "replyId": reply_id}


@router.get("/api/vendor/questions")
def vendor_questions(vendor_id: Optional[str] = Query(None, alias="vendorId"), db: Database = Depends(get_db)):
    if not vendor_id:
        raise HTTPException(status_code=400, detail="Vendor ID is required")
    questions = [serialize(d) for d in get_documents(db, "questions", {"vendorId": vendor_id},
                                                     sort=[("createdAt", -1)])]
    replies = {}
    ids = [q["id"] for q in questions]
    for reply in get_documents(db, "questionReplies", {"questionId": {"$in": ids}}, sort=[("createdAt", 1)]):
        replies.setdefault(reply["questionId"], []).append(serialize(reply))
    for q in questions:
        q["replies"] = replies.get(q["id"], [])
    return {"success": True, "questions": questions}
