"""Reviews embedded in product documents.

Reviews are appended and removed with single atomic updates so that
concurrent submissions never lose an entry. The aggregate rating is then
recomputed from the document the update returned and written back only if no
other writer has touched the reviews in between. Every append or removal bumps
``reviews_version``, which only ever grows, so the writer that saw the latest
version leaves the final aggregate.
"""
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Optional

from bson import ObjectId
from flask import current_app
from pymongo import ReturnDocument

from .catalog import fetch_product
from .documents import isoformat, parse_object_id, stringify_id, utcnow
from .errors import BadRequest, NotFound
from .schemas import PageQuery, ReviewCreate

AGGREGATE_PROJECTION = {
    "reviews": 1,
    "ratings_count": 1,
    "average_rating": 1,
    "reviews_version": 1,
}


def average_rating(ratings: List[int]) -> float:
    """Mean of ``ratings`` rounded half-up to one decimal, 0 when empty."""
    if not ratings:
        return 0.0
    mean = Decimal(sum(ratings)) / Decimal(len(ratings))
    return float(mean.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def serialize_review(review: Dict) -> Dict:
    return {
        "id": stringify_id(review.get("_id")),
        "rating": review.get("rating"),
        "comment": review.get("comment"),
        "name": review.get("name"),
        "userId": stringify_id(review.get("user_id")),
        "createdAt": isoformat(review.get("created_at")),
    }


def _store_aggregate(db, product_document) -> Dict[str, object]:
    reviews = product_document.get("reviews") or []
    aggregate = {
        "average_rating": average_rating([review.get("rating", 0) for review in reviews]),
        "ratings_count": len(reviews),
    }
    db.products.update_one(
        {
            "_id": product_document["_id"],
            "reviews_version": product_document.get("reviews_version"),
        },
        {"$set": aggregate},
    )
    return {
        "averageRating": aggregate["average_rating"],
        "ratingsCount": aggregate["ratings_count"],
    }


def add_review(db, product_id, payload: ReviewCreate, user_id: Optional[str] = None) -> Dict:
    object_id = parse_object_id(product_id)
    author_id = parse_object_id(user_id, "user") if user_id else None

    display_name = payload.name
    if author_id is not None and not display_name:
        author = db.users.find_one({"_id": author_id}, {"name": 1})
        display_name = author.get("name") if author else None

    review = {
        "_id": ObjectId(),
        "rating": payload.rating,
        "comment": payload.comment,
        "name": display_name,
        "user_id": author_id,
        "created_at": utcnow(),
    }

    guard: Dict = {"_id": object_id}
    if author_id is not None:
        guard["reviews.user_id"] = {"$ne": author_id}

    updated_product = db.products.find_one_and_update(
        guard,
        {"$push": {"reviews": review}, "$inc": {"ratings_count": 1, "reviews_version": 1}},
        projection=AGGREGATE_PROJECTION,
        return_document=ReturnDocument.AFTER,
    )
    if updated_product is None:
        if db.products.find_one({"_id": object_id}, {"_id": 1}) is None:
            raise NotFound("Product not found.")
        raise BadRequest("You have already reviewed this product.")

    aggregate = _store_aggregate(db, updated_product)
    current_app.logger.info(
        "Added review %s to product %s (rating %d)", review["_id"], object_id, review["rating"]
    )
    return {"review": serialize_review(review), **aggregate}


def remove_review(db, product_id, review_id) -> Dict[str, object]:
    object_id = parse_object_id(product_id)
    review_object_id = parse_object_id(review_id, "review")

    updated_product = db.products.find_one_and_update(
        {"_id": object_id, "reviews._id": review_object_id},
        {
            "$pull": {"reviews": {"_id": review_object_id}},
            "$inc": {"ratings_count": -1, "reviews_version": 1},
        },
        projection=AGGREGATE_PROJECTION,
        return_document=ReturnDocument.AFTER,
    )
    if updated_product is None:
        if db.products.find_one({"_id": object_id}, {"_id": 1}) is None:
            raise NotFound("Product not found.")
        raise NotFound("Review not found.")

    current_app.logger.info("Removed review %s from product %s", review_object_id, object_id)
    return _store_aggregate(db, updated_product)


def list_reviews(db, product_id, query: PageQuery) -> Dict:
    product_document = fetch_product(db, product_id, AGGREGATE_PROJECTION)
    reviews = list(product_document.get("reviews") or [])
    ordered = [
        review
        for _, review in sorted(
            enumerate(reviews),
            key=lambda entry: (entry[1].get("created_at") or datetime.min, entry[0]),
            reverse=True,
        )
    ]
    page_items = ordered[query.skip:query.skip + query.limit]
    return {
        "page": query.page,
        "limit": query.limit,
        "total": len(reviews),
        "items": [serialize_review(review) for review in page_items],
        "averageRating": float(product_document.get("average_rating", 0) or 0),
        "ratingsCount": int(product_document.get("ratings_count", 0) or 0),
    }
