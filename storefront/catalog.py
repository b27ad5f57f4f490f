"""Product catalog: listing, search, popularity, sales and image management."""
import math
import re
from dataclasses import dataclass
from typing import Dict, List, Optional

from flask import current_app
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from . import images as product_images
from .documents import isoformat, parse_object_id, utcnow
from .errors import Conflict, NotFound
from .schemas import ListQuery, ProductCreate, ProductUpdate

NEWEST_FIRST = [("created_at", -1), ("_id", -1)]
MAX_SALE_QUANTITY = 10_000


@dataclass
class CatalogFilter:
    """Catalog filter that knows how to render itself as a Mongo query.

    ``search`` is a literal, case-insensitive substring matched against the
    name or the description.
    """

    search: Optional[str] = None
    active: Optional[bool] = None
    popular: Optional[bool] = None

    def to_mongo(self) -> Dict:
        query: Dict = {}
        text = (self.search or "").strip()
        if text:
            pattern = re.escape(text)
            query["$or"] = [
                {"name": {"$regex": pattern, "$options": "i"}},
                {"description": {"$regex": pattern, "$options": "i"}},
            ]
        if self.active is not None:
            query["is_active"] = self.active
        if self.popular is not None:
            query["is_popular"] = self.popular
        return query


def serialize_image(image: Dict) -> Dict:
    return {
        "url": image.get("url"),
        "storageKey": image.get("storage_key"),
        "isPrimary": bool(image.get("is_primary")),
    }


def primary_image_url(images: List[Dict]) -> Optional[str]:
    for image in images:
        if image.get("is_primary"):
            return image.get("url")
    return images[0].get("url") if images else None


def serialize_product(product_document) -> Dict:
    raw_images = product_document.get("images")
    images = raw_images if isinstance(raw_images, list) else []
    price = product_document.get("price")

    return {
        "id": str(product_document.get("_id")),
        "name": product_document.get("name", ""),
        "description": product_document.get("description"),
        "price": float(price) if price is not None else None,
        "images": [serialize_image(image) for image in images],
        "imageUrl": primary_image_url(images),
        "salesCount": int(product_document.get("sales_count", 0) or 0),
        "isActive": bool(product_document.get("is_active", True)),
        "isPopular": bool(product_document.get("is_popular", False)),
        "averageRating": float(product_document.get("average_rating", 0) or 0),
        "ratingsCount": int(product_document.get("ratings_count", 0) or 0),
        "createdAt": isoformat(product_document.get("created_at")),
        "updatedAt": isoformat(product_document.get("updated_at")),
    }


def fetch_product(db, product_id, projection=None):
    object_id = parse_object_id(product_id)
    product_document = db.products.find_one({"_id": object_id}, projection)
    if not product_document:
        raise NotFound("Product not found.")
    return product_document


def list_products(db, query: ListQuery) -> Dict:
    mongo_filter = CatalogFilter(search=query.search).to_mongo()
    cursor = (
        db.products.find(mongo_filter, {"reviews": 0})
        .sort(NEWEST_FIRST)
        .skip(query.skip)
        .limit(query.limit)
    )
    items = [serialize_product(document) for document in cursor]
    total = db.products.count_documents(mongo_filter)
    return {"page": query.page, "limit": query.limit, "total": total, "items": items}


def list_popular_products(db) -> List[Dict]:
    mongo_filter = CatalogFilter(active=True, popular=True).to_mongo()
    cursor = db.products.find(mongo_filter, {"reviews": 0}).sort(NEWEST_FIRST)
    return [serialize_product(document) for document in cursor]


def ensure_unique_name(db, name: str, exclude_id=None) -> None:
    if not current_app.config.get("PRODUCT_NAME_UNIQUE"):
        return
    name_filter: Dict = {"name": name}
    if exclude_id is not None:
        name_filter["_id"] = {"$ne": exclude_id}
    if db.products.find_one(name_filter, {"_id": 1}):
        raise Conflict("A product with this name already exists.")


def create_product(db, storage, payload: ProductCreate, files) -> Dict:
    config = current_app.config
    uploads = product_images.collect_uploads(files, config["PRODUCT_ALLOWED_EXTENSIONS"])
    product_images.check_capacity(len(uploads), config["PRODUCT_MAX_IMAGES"])
    ensure_unique_name(db, payload.name)

    stored_images = product_images.assign_primary(
        product_images.upload_images(storage, uploads)
    )
    timestamp = utcnow()
    product_document = {
        "name": payload.name,
        "description": payload.description,
        "price": payload.price,
        "images": stored_images,
        "sales_count": 0,
        "is_active": True,
        "is_popular": bool(payload.is_popular),
        "reviews": [],
        "average_rating": 0.0,
        "ratings_count": 0,
        "reviews_version": 0,
        "created_at": timestamp,
        "updated_at": timestamp,
    }

    try:
        result = db.products.insert_one(product_document)
    except DuplicateKeyError:
        product_images.delete_blobs(storage, product_images.image_keys(stored_images))
        raise Conflict("A product with this name already exists.")

    current_app.logger.info("Created product %s (%s)", result.inserted_id, payload.name)
    product_document["_id"] = result.inserted_id
    return product_document


def update_product(db, storage, product_id, payload: ProductUpdate, files) -> Dict:
    config = current_app.config
    product_document = fetch_product(db, product_id, {"reviews": 0})
    uploads = product_images.collect_uploads(files, config["PRODUCT_ALLOWED_EXTENSIONS"])

    existing_images = list(product_document.get("images") or [])
    append = payload.image_mode == "append"
    if uploads:
        resulting_count = len(uploads) + (len(existing_images) if append else 0)
        product_images.check_capacity(resulting_count, config["PRODUCT_MAX_IMAGES"])

    updates: Dict = {}
    for field in ("name", "description", "price", "is_active", "is_popular"):
        if field in payload.model_fields_set:
            updates[field] = getattr(payload, field)
    for flag in ("is_active", "is_popular"):
        if updates.get(flag) is None:
            updates.pop(flag, None)
    if updates.get("name") is None:
        updates.pop("name", None)
    else:
        ensure_unique_name(db, updates["name"], exclude_id=product_document["_id"])

    replaced_keys: List[str] = []
    stored_images: List[Dict] = []
    if uploads:
        stored_images = product_images.upload_images(storage, uploads)
        if append:
            updates["images"] = product_images.assign_primary(existing_images + stored_images)
        else:
            updates["images"] = product_images.assign_primary(stored_images)
            replaced_keys = product_images.image_keys(existing_images)

    updates["updated_at"] = utcnow()
    try:
        updated_product = db.products.find_one_and_update(
            {"_id": product_document["_id"]},
            {"$set": updates},
            projection={"reviews": 0},
            return_document=ReturnDocument.AFTER,
        )
    except DuplicateKeyError:
        product_images.delete_blobs(storage, product_images.image_keys(stored_images))
        raise Conflict("A product with this name already exists.")
    except PyMongoError:
        current_app.logger.exception("Failed to update product %s", product_document["_id"])
        product_images.delete_blobs(storage, product_images.image_keys(stored_images))
        raise
    if updated_product is None:
        product_images.delete_blobs(storage, product_images.image_keys(stored_images))
        raise NotFound("Product not found.")

    if replaced_keys:
        product_images.delete_blobs(storage, replaced_keys)

    current_app.logger.info("Updated product %s", product_document["_id"])
    return updated_product


def toggle_popular(db, product_id) -> Dict:
    product_document = fetch_product(db, product_id, {"reviews": 0})
    is_popular = not bool(product_document.get("is_popular", False))
    updated_product = db.products.find_one_and_update(
        {"_id": product_document["_id"]},
        {"$set": {"is_popular": is_popular, "updated_at": utcnow()}},
        projection={"reviews": 0},
        return_document=ReturnDocument.AFTER,
    )
    if updated_product is None:
        raise NotFound("Product not found.")
    return updated_product


def parse_sale_quantity(raw_value) -> int:
    """Quantities are floored and clamped to ``1..MAX_SALE_QUANTITY``; junk counts as one."""
    try:
        quantity = float(raw_value)
    except (TypeError, ValueError):
        return 1
    if not math.isfinite(quantity):
        return 1
    return min(MAX_SALE_QUANTITY, max(1, math.floor(quantity)))


def record_sale(db, product_id, raw_quantity) -> Dict:
    object_id = parse_object_id(product_id)
    quantity = parse_sale_quantity(raw_quantity)
    updated_product = db.products.find_one_and_update(
        {"_id": object_id},
        {"$inc": {"sales_count": quantity}, "$set": {"updated_at": utcnow()}},
        projection={"reviews": 0},
        return_document=ReturnDocument.AFTER,
    )
    if updated_product is None:
        raise NotFound("Product not found.")
    current_app.logger.info("Recorded %d sale(s) for product %s", quantity, object_id)
    return updated_product


def delete_product(db, storage, product_id) -> None:
    product_document = fetch_product(db, product_id, {"images": 1, "name": 1})
    keys = product_images.image_keys(product_document.get("images"))
    failures = product_images.delete_blobs(storage, keys)
    if failures:
        current_app.logger.warning(
            "%d of %d image(s) could not be removed for product %s",
            failures,
            len(keys),
            product_document["_id"],
        )
    db.products.delete_one({"_id": product_document["_id"]})
    current_app.logger.info(
        "Deleted product %s (%s)", product_document["_id"], product_document.get("name", "")
    )


def _replace_images(db, product_document, new_images: List[Dict]) -> Dict:
    updated_product = db.products.find_one_and_update(
        {"_id": product_document["_id"]},
        {"$set": {"images": new_images, "updated_at": utcnow()}},
        projection={"reviews": 0},
        return_document=ReturnDocument.AFTER,
    )
    if updated_product is None:
        raise NotFound("Product not found.")
    return updated_product


def delete_image(db, storage, product_id, index: int) -> Dict:
    product_document = fetch_product(db, product_id, {"images": 1})
    remaining, removed = product_images.remove_image(
        list(product_document.get("images") or []), index
    )
    updated_product = _replace_images(db, product_document, remaining)
    product_images.delete_blobs(storage, product_images.image_keys([removed]))
    return updated_product


def set_primary_image(db, product_id, index: int) -> Dict:
    product_document = fetch_product(db, product_id, {"images": 1})
    reordered = product_images.set_primary(list(product_document.get("images") or []), index)
    return _replace_images(db, product_document, reordered)
