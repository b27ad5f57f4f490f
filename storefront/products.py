from flask import Blueprint, jsonify, request

from . import catalog, reviews
from .auth import request_payload
from .extensions import get_db, get_storage
from .schemas import (
    ListQuery,
    PageQuery,
    ProductCreate,
    ProductUpdate,
    ReviewCreate,
    parse_request,
)
from .security import optional_identity, require_role

bp = Blueprint("products", __name__, url_prefix="/api/products")


def uploaded_files():
    # Any file field is accepted; the image cap is enforced by the catalog.
    return [image_file for _, image_file in request.files.items(multi=True)]


@bp.route("", methods=["GET"])
def list_products():
    query = parse_request(ListQuery, request.args.to_dict())
    return jsonify(catalog.list_products(get_db(), query))


@bp.route("/popular", methods=["GET"])
def popular_products():
    return jsonify({"items": catalog.list_popular_products(get_db())})


@bp.route("/<product_id>", methods=["GET"])
def get_product(product_id: str):
    product_document = catalog.fetch_product(get_db(), product_id, {"reviews": 0})
    return jsonify({"product": catalog.serialize_product(product_document)})


@bp.route("", methods=["POST"])
@require_role("admin")
def create_product():
    data = parse_request(ProductCreate, request_payload())
    product_document = catalog.create_product(get_db(), get_storage(), data, uploaded_files())
    return jsonify({"product": catalog.serialize_product(product_document)}), 201


@bp.route("/<product_id>", methods=["PATCH"])
@require_role("admin")
def update_product(product_id: str):
    data = parse_request(ProductUpdate, request_payload())
    product_document = catalog.update_product(
        get_db(), get_storage(), product_id, data, uploaded_files()
    )
    return jsonify({"product": catalog.serialize_product(product_document)})


@bp.route("/<product_id>/toggle-popular", methods=["PATCH"])
@require_role("admin")
def toggle_popular(product_id: str):
    product_document = catalog.toggle_popular(get_db(), product_id)
    state = "popular" if product_document.get("is_popular") else "not popular"
    return jsonify(
        {
            "product": catalog.serialize_product(product_document),
            "message": f"Product marked as {state}",
        }
    )


@bp.route("/<product_id>", methods=["DELETE"])
@require_role("admin")
def delete_product(product_id: str):
    catalog.delete_product(get_db(), get_storage(), product_id)
    return jsonify({"ok": True})


@bp.route("/<product_id>/sell", methods=["POST"])
@require_role("admin")
def add_sale(product_id: str):
    product_document = catalog.record_sale(get_db(), product_id, request.args.get("qty"))
    return jsonify({"product": catalog.serialize_product(product_document)})


@bp.route("/<product_id>/images/<int:image_index>", methods=["DELETE"])
@require_role("admin")
def delete_image(product_id: str, image_index: int):
    product_document = catalog.delete_image(get_db(), get_storage(), product_id, image_index)
    return jsonify({"product": catalog.serialize_product(product_document)})


@bp.route("/<product_id>/images/<int:image_index>/set-primary", methods=["PATCH"])
@require_role("admin")
def set_primary_image(product_id: str, image_index: int):
    product_document = catalog.set_primary_image(get_db(), product_id, image_index)
    return jsonify({"product": catalog.serialize_product(product_document)})


# Reviews


@bp.route("/<product_id>/reviews", methods=["POST"])
def add_review(product_id: str):
    data = parse_request(ReviewCreate, request_payload())
    result = reviews.add_review(get_db(), product_id, data, user_id=optional_identity())
    return jsonify(result), 201


@bp.route("/<product_id>/reviews", methods=["GET"])
def list_reviews(product_id: str):
    query = parse_request(PageQuery, request.args.to_dict())
    return jsonify(reviews.list_reviews(get_db(), product_id, query))


@bp.route("/<product_id>/reviews/<review_id>", methods=["DELETE"])
@require_role("admin")
def delete_review(product_id: str, review_id: str):
    aggregate = reviews.remove_review(get_db(), product_id, review_id)
    return jsonify({"ok": True, **aggregate})
