import logging
from typing import Optional

from pymongo.errors import DuplicateKeyError

from database import create_document, to_object_id
from errors import ForbiddenError, NotFoundError, ValidationError
from schemas import OrderStatus, Review as ReviewSchema

logger = logging.getLogger(__name__)


def _get_product(db, product_id: str):
    product = db["product"].find_one({"_id": to_object_id(product_id, "product id")})
    if not product:
        raise NotFoundError("Product not found")
    return product


def find_completed_order(db, buyer_id: str, product_id: str):
    """Return the buyer's first completed order containing product_id, if any."""
    order_ids = [
        str(o["_id"])
        for o in db["order"].find({"buyer_id": buyer_id, "status": OrderStatus.completed.value}).sort("_id", 1)
    ]
    if not order_ids:
        return None
    item = db["orderitem"].find_one(
        {"order_id": {"$in": order_ids}, "product_id": product_id},
        sort=[("_id", 1)],
    )
    if not item:
        return None
    return db["order"].find_one({"_id": to_object_id(item["order_id"])})


def create_review(db, buyer_id: str, product_id: str, rating: int, comment: Optional[str] = None) -> dict:
    if isinstance(rating, bool) or not isinstance(rating, int) or not 0 <= rating <= 5:
        raise ValidationError("Rating must be a whole number between 0 and 5")
    product_id = str(_get_product(db, product_id)["_id"])

    order = find_completed_order(db, buyer_id, product_id)
    if not order:
        raise ForbiddenError("You can only review products you have ordered.")
    if db["review"].find_one({"buyer_id": buyer_id, "product_id": product_id}):
        raise ForbiddenError("You have already reviewed this product")

    review = ReviewSchema(
        product_id=product_id,
        order_id=str(order["_id"]),
        buyer_id=buyer_id,
        rating=rating,
        comment=comment,
    )
    try:
        review_id = create_document(db, "review", review)
    except DuplicateKeyError:
        raise ForbiddenError("You have already reviewed this product")
    logger.info("Review %s created by %s for product %s", review_id, buyer_id, product_id)
    return {"id": review_id, **review.model_dump()}


def retrieve_reviews(db, product_id: str) -> dict:
    product = _get_product(db, product_id)
    product_id = str(product["_id"])
    reviews = list(db["review"].find({"product_id": product_id}).sort([("created_at", -1), ("_id", -1)]))
    buyer_ids = [to_object_id(r["buyer_id"]) for r in reviews]
    names = {str(u["_id"]): u.get("name") for u in db["user"].find({"_id": {"$in": buyer_ids}})}
    return {
        "productId": product_id,
        "productName": product.get("product_name"),
        "reviews": [
            {"reviewer": names.get(r["buyer_id"]), "rating": r["rating"], "comment": r.get("comment")}
            for r in reviews
        ],
    }
