import math
from typing import Dict, Optional

from flask import Blueprint, jsonify, request

from .audit import record_activity
from .errors import ConflictError, NotFoundError, ValidationError
from .guards import admin_or_owner_required, current_user
from .store import get_db, isoformat, parse_object_id, utcnow

products_bp = Blueprint("products", __name__, url_prefix="/api/products")
categories_bp = Blueprint("categories", __name__, url_prefix="/api/admin/categories")

CATEGORY_NAME_MAX_LENGTH = 60
PRODUCT_TITLE_MAX_LENGTH = 120
PRODUCT_DESCRIPTION_MAX_LENGTH = 2000
PRODUCT_IMAGE_MAX_LENGTH = 2048
PRODUCT_FIELDS = ("title", "image", "description", "price", "preparationTime", "category")


def normalize_category_name(value: Optional[str]) -> str:
    if value is None:
        return ""
    return " ".join(str(value).split())


def parse_non_negative(value, field: str) -> float:
    if isinstance(value, bool):
        raise ValidationError(f"Invalid {field}")
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {field}")
    if not math.isfinite(numeric) or numeric < 0:
        raise ValidationError(f"Invalid {field}")
    return numeric


def parse_preparation_time(value) -> Optional[float]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return parse_non_negative(value, "preparationTime")


def require_text(payload: Dict, field: str, max_length: int) -> str:
    value = payload.get(field)
    text = value.strip() if isinstance(value, str) else ""
    if not text:
        raise ValidationError(f"{field} is required")
    if len(text) > max_length:
        raise ValidationError(f"{field} must contain at most {max_length} characters")
    return text


def load_category(category_id):
    object_id = parse_object_id(category_id)
    if object_id is None:
        raise ValidationError("Invalid category id")
    category = get_db().categories.find_one({"_id": object_id})
    if not category:
        raise NotFoundError("Category not found")
    return category


def build_category_product_counts() -> Dict:
    counts: Dict = {}
    pipeline = [{"$group": {"_id": "$category", "count": {"$sum": 1}}}]
    for entry in get_db().products.aggregate(pipeline):
        if entry.get("_id") is not None:
            counts[entry["_id"]] = int(entry.get("count", 0) or 0)
    return counts


def serialize_category(category_document, product_counts=None) -> Dict[str, object]:
    serialized = {
        "id": str(category_document.get("_id")),
        "name": category_document.get("name", ""),
        "createdAt": isoformat(category_document.get("created_at")),
    }
    if product_counts is not None:
        serialized["productCount"] = product_counts.get(category_document.get("_id"), 0)
    return serialized


def fetch_categories_by_ids(category_ids) -> Dict:
    ids = [value for value in set(category_ids) if value is not None]
    if not ids:
        return {}
    return {
        document["_id"]: document
        for document in get_db().categories.find({"_id": {"$in": ids}})
    }


def serialize_product(product_document, category_map=None) -> Dict[str, object]:
    category_id = product_document.get("category")
    category = (category_map or {}).get(category_id)
    return {
        "id": str(product_document.get("_id")),
        "title": product_document.get("title", ""),
        "image": product_document.get("image", ""),
        "description": product_document.get("description", ""),
        "preparationTime": product_document.get("preparation_time"),
        "price": product_document.get("price", 0),
        "category": (
            {"id": str(category["_id"]), "name": category.get("name", "")}
            if category
            else (str(category_id) if category_id is not None else None)
        ),
        "createdAt": isoformat(product_document.get("created_at")),
    }


def serialize_products(product_documents):
    category_map = fetch_categories_by_ids(
        document.get("category") for document in product_documents
    )
    return [serialize_product(document, category_map) for document in product_documents]


# Public catalog


@products_bp.route("", methods=["GET"])
@products_bp.route("/", methods=["GET"])
def list_products():
    query: Dict[str, object] = {}
    category_param = request.args.get("category")
    if category_param:
        category_id = parse_object_id(category_param)
        if category_id is None:
            raise ValidationError("Invalid category id")
        query["category"] = category_id

    documents = list(
        get_db().products.find(query).sort([("created_at", -1), ("_id", -1)])
    )
    return jsonify({"products": serialize_products(documents)})


@products_bp.route("/categories", methods=["GET"])
def list_product_categories():
    documents = get_db().categories.find().sort("name", 1)
    return jsonify({"categories": [serialize_category(document) for document in documents]})


@products_bp.route("/<product_id>", methods=["GET"])
def get_product(product_id: str):
    object_id = parse_object_id(product_id)
    if object_id is None:
        raise ValidationError("Invalid product id")

    product = get_db().products.find_one({"_id": object_id})
    if not product:
        raise NotFoundError("Product not found")

    return jsonify({"product": serialize_products([product])[0]})


@products_bp.route("", methods=["POST"])
@products_bp.route("/", methods=["POST"])
@admin_or_owner_required
def create_product():
    payload = request.get_json(silent=True) or {}
    price_value = payload.get("price")
    missing_price = price_value is None or (
        isinstance(price_value, str) and not price_value.strip()
    )
    if (
        not payload.get("title")
        or not payload.get("image")
        or not payload.get("description")
        or missing_price
        or not payload.get("category")
    ):
        raise ValidationError("title, image, description, price and category are required")

    category = load_category(payload.get("category"))
    document = {
        "title": require_text(payload, "title", PRODUCT_TITLE_MAX_LENGTH),
        "image": require_text(payload, "image", PRODUCT_IMAGE_MAX_LENGTH),
        "description": require_text(payload, "description", PRODUCT_DESCRIPTION_MAX_LENGTH),
        "price": parse_non_negative(price_value, "price"),
        "preparation_time": parse_preparation_time(payload.get("preparationTime")),
        "category": category["_id"],
        "created_at": utcnow(),
    }

    insert_result = get_db().products.insert_one(document)
    document["_id"] = insert_result.inserted_id

    actor = current_user()
    record_activity(
        actor,
        "CREATED_PRODUCT",
        "product",
        document["_id"],
        document["title"],
        f"{actor.get('username')} created product {document['title']}",
    )

    return (
        jsonify(
            {
                "message": "Product created",
                "product": serialize_product(document, {category["_id"]: category}),
            }
        ),
        201,
    )


@products_bp.route("/<product_id>", methods=["PUT"])
@admin_or_owner_required
def update_product(product_id: str):
    object_id = parse_object_id(product_id)
    if object_id is None:
        raise ValidationError("Invalid product id")

    payload = request.get_json(silent=True) or {}
    provided = {field: payload[field] for field in PRODUCT_FIELDS if field in payload}
    if not provided:
        raise ValidationError("Provide at least one field to update")

    updates: Dict[str, object] = {}
    if "category" in provided:
        updates["category"] = load_category(provided["category"])["_id"]
    if "title" in provided:
        updates["title"] = require_text(provided, "title", PRODUCT_TITLE_MAX_LENGTH)
    if "image" in provided:
        updates["image"] = require_text(provided, "image", PRODUCT_IMAGE_MAX_LENGTH)
    if "description" in provided:
        updates["description"] = require_text(
            provided, "description", PRODUCT_DESCRIPTION_MAX_LENGTH
        )
    if "price" in provided:
        updates["price"] = parse_non_negative(provided["price"], "price")
    if "preparationTime" in provided:
        updates["preparation_time"] = parse_preparation_time(provided["preparationTime"])

    products = get_db().products
    result = products.update_one({"_id": object_id}, {"$set": updates})
    if result.matched_count == 0:
        raise NotFoundError("Product not found")
    product = products.find_one({"_id": object_id})

    actor = current_user()
    record_activity(
        actor,
        "UPDATED_PRODUCT",
        "product",
        product["_id"],
        product.get("title", ""),
        f"{actor.get('username')} updated product {product.get('title', '')}",
    )

    return jsonify({"message": "Product updated", "product": serialize_products([product])[0]})


@products_bp.route("/<product_id>", methods=["DELETE"])
@admin_or_owner_required
def delete_product(product_id: str):
    object_id = parse_object_id(product_id)
    if object_id is None:
        raise ValidationError("Invalid product id")

    product = get_db().products.find_one_and_delete({"_id": object_id})
    if not product:
        raise NotFoundError("Product not found")

    actor = current_user()
    record_activity(
        actor,
        "DELETED_PRODUCT",
        "product",
        product["_id"],
        product.get("title", ""),
        f"{actor.get('username')} deleted product {product.get('title', '')}",
    )

    return jsonify({"message": "Product deleted"})


# Category administration


@categories_bp.route("", methods=["GET"])
@categories_bp.route("/", methods=["GET"])
@admin_or_owner_required
def list_categories():
    documents = list(get_db().categories.find().sort([("created_at", -1), ("_id", -1)]))
    product_counts = build_category_product_counts()
    return jsonify(
        {
            "categories": [
                serialize_category(document, product_counts) for document in documents
            ]
        }
    )


def read_category_name(payload: Dict) -> str:
    name = normalize_category_name(payload.get("name"))
    if not name:
        raise ValidationError("Category name is required")
    if len(name) > CATEGORY_NAME_MAX_LENGTH:
        raise ValidationError(
            f"Category name must contain at most {CATEGORY_NAME_MAX_LENGTH} characters"
        )
    return name


@categories_bp.route("", methods=["POST"])
@categories_bp.route("/", methods=["POST"])
@admin_or_owner_required
def create_category():
    payload = request.get_json(silent=True) or {}
    name = read_category_name(payload)

    categories = get_db().categories
    if categories.find_one({"name": name}):
        raise ConflictError("Category already exists")

    document = {"name": name, "created_at": utcnow()}
    insert_result = categories.insert_one(document)
    document["_id"] = insert_result.inserted_id

    actor = current_user()
    record_activity(
        actor,
        "CREATED_CATEGORY",
        "category",
        document["_id"],
        name,
        f"{actor.get('username')} created category {name}",
    )

    return jsonify({"message": "Category created", "category": serialize_category(document)}), 201


@categories_bp.route("/<category_id>", methods=["PUT"])
@admin_or_owner_required
def update_category(category_id: str):
    object_id = parse_object_id(category_id)
    if object_id is None:
        raise ValidationError("Invalid category id")

    payload = request.get_json(silent=True) or {}
    name = read_category_name(payload)

    categories = get_db().categories
    if categories.find_one({"name": name, "_id": {"$ne": object_id}}):
        raise ConflictError("Category name already in use")

    result = categories.update_one({"_id": object_id}, {"$set": {"name": name}})
    if result.matched_count == 0:
        raise NotFoundError("Category not found")
    category = categories.find_one({"_id": object_id})

    actor = current_user()
    record_activity(
        actor,
        "UPDATED_CATEGORY",
        "category",
        object_id,
        name,
        f"{actor.get('username')} updated category {name}",
    )

    return jsonify({"message": "Category updated", "category": serialize_category(category)})


@categories_bp.route("/<category_id>", methods=["DELETE"])
@admin_or_owner_required
def delete_category(category_id: str):
    object_id = parse_object_id(category_id)
    if object_id is None:
        raise ValidationError("Invalid category id")

    db = get_db()
    if db.products.find_one({"category": object_id}, {"_id": 1}):
        raise ValidationError("Cannot delete category used by products")

    category = db.categories.find_one_and_delete({"_id": object_id})
    if not category:
        raise NotFoundError("Category not found")

    actor = current_user()
    record_activity(
        actor,
        "DELETED_CATEGORY",
        "category",
        object_id,
        category.get("name", ""),
        f"{actor.get('username')} deleted category {category.get('name', '')}",
    )

    return jsonify({"message": "Category deleted"})
