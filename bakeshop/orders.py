"""
Order workflow: checkout, customer order history, staff status updates,
customer cancellation and the clean-up of abandoned pending orders.

Unit prices are copied from the catalog when the order is created and the
stored ``total_amount`` is never recomputed from live product prices.
"""

from datetime import timedelta
from enum import Enum
from typing import Dict, List, Optional, Tuple

from flask import Blueprint, current_app, jsonify, request
from pymongo import ReturnDocument

from .audit import record_activity
from .errors import NotFoundError, UpstreamError, ValidationError
from .guards import admin_or_owner_required, current_user, login_required
from .payments import get_payments, to_minor_units
from .store import get_db, isoformat, parse_object_id, parse_object_ids, utcnow

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")

LINE_DESCRIPTION_MAX_LENGTH = 255
REMAINING_TIME_MAX_LENGTH = 80
ADMIN_COMMENT_MAX_LENGTH = 500
MAX_LINE_QUANTITY = 1000
DEFAULT_CLIENT_URL = "http://localhost:5173"


class OrderStatus(str, Enum):
    PENDING = "Pending"
    IN_PREPARATION = "In preparation"
    COMPLETED = "Completed"
    CONCLUDED = "Concluded"

    @property
    def rank(self) -> int:
        return list(OrderStatus).index(self)

    @classmethod
    def parse(cls, value) -> Optional["OrderStatus"]:
        for status in cls:
            if status.value == value:
                return status
        return None


class PaymentStatus(str, Enum):
    PENDING = "pending"
    SESSION_CREATED = "session_created"
    SESSION_FAILED = "session_failed"
    PAID = "paid"


STAFF_STATUSES = frozenset(OrderStatus)


def parse_quantity(value) -> Optional[int]:
    """Return a whole quantity within 1..MAX_LINE_QUANTITY, or None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, float):
        if not value.is_integer():
            return None
        value = int(value)
    elif isinstance(value, str):
        text = value.strip()
        if not text.isdecimal():
            return None
        try:
            value = int(text)
        except ValueError:
            return None
    elif not isinstance(value, int):
        return None

    if value < 1 or value > MAX_LINE_QUANTITY:
        return None
    return value


def is_absolute_url(value) -> bool:
    return isinstance(value, str) and value.startswith(("http://", "https://"))


def snapshot_cart(items: List) -> Tuple[List[Dict], List[Dict], float]:
    """
    Resolve every cart line against the catalog in one lookup.

    Returns the order lines, the payment line items and the total. Any invalid
    line rejects the whole cart.
    """
    product_ids = parse_object_ids(
        item.get("productId") for item in items if isinstance(item, dict)
    )
    products = {}
    if product_ids:
        products = {
            document["_id"]: document
            for document in get_db().products.find({"_id": {"$in": product_ids}})
        }

    currency = current_app.config.get("PAYMENT_CURRENCY", "eur")
    order_lines: List[Dict] = []
    line_items: List[Dict] = []
    total = 0.0

    for item in items:
        if not isinstance(item, dict):
            raise ValidationError("Invalid cart items")
        product = products.get(parse_object_id(item.get("productId")))
        quantity = parse_quantity(item.get("quantity"))
        if not product or quantity is None:
            raise ValidationError("Invalid cart items")

        unit_price = float(product.get("price", 0) or 0)
        total += unit_price * quantity
        order_lines.append(
            {"product": product["_id"], "quantity": quantity, "unit_price": unit_price}
        )

        product_data: Dict[str, object] = {"name": product.get("title", "")}
        description = str(product.get("description") or "")[:LINE_DESCRIPTION_MAX_LENGTH]
        if description:
            product_data["description"] = description
        if is_absolute_url(product.get("image")):
            product_data["images"] = [product["image"]]

        line_items.append(
            {
                "price_data": {
                    "currency": currency,
                    "product_data": product_data,
                    "unit_amount": to_minor_units(unit_price),
                },
                "quantity": quantity,
            }
        )

    return order_lines, line_items, round(total, 2)


def resolve_client_base_url() -> str:
    origin = (request.headers.get("Origin") or "").strip().rstrip("/")
    if origin and origin in current_app.config.get("CORS_ORIGINS", []):
        return origin
    return (current_app.config.get("CLIENT_URL") or DEFAULT_CLIENT_URL).rstrip("/")


def mark_payment_status(order_id, payment_status: PaymentStatus, **fields) -> None:
    get_db().orders.update_one(
        {"_id": order_id},
        {"$set": {"payment_status": payment_status.value, "updated_at": utcnow(), **fields}},
    )


def fetch_by_ids(collection, ids, projection) -> Dict:
    unique_ids = [value for value in set(ids) if value is not None]
    if not unique_ids:
        return {}
    return {
        document["_id"]: document
        for document in collection.find({"_id": {"$in": unique_ids}}, projection)
    }


def serialize_order(order_document, users=None, products=None) -> Dict[str, object]:
    lines = []
    for line in order_document.get("products", []):
        product_id = line.get("product")
        product = (products or {}).get(product_id)
        if product:
            product_summary = {"id": str(product_id)}
            for field in ("title", "image", "price"):
                if field in product:
                    product_summary[field] = product[field]
        else:
            product_summary = str(product_id) if product_id is not None else None
        lines.append(
            {
                "product": product_summary,
                "quantity": line.get("quantity", 0),
                "unitPrice": line.get("unit_price", 0),
            }
        )

    user_id = order_document.get("user")
    user = (users or {}).get(user_id)
    return {
        "id": str(order_document.get("_id")),
        "user": (
            {
                "id": str(user_id),
                "username": user.get("username", ""),
                "email": user.get("email", ""),
            }
            if user
            else (str(user_id) if user_id is not None else None)
        ),
        "products": lines,
        "totalAmount": order_document.get("total_amount", 0),
        "status": order_document.get("status", OrderStatus.PENDING.value),
        "remainingTime": order_document.get("remaining_time", ""),
        "adminComment": order_document.get("admin_comment", ""),
        "paymentStatus": order_document.get("payment_status", ""),
        "checkoutSessionId": order_document.get("checkout_session_id"),
        "createdAt": isoformat(order_document.get("created_at")),
        "updatedAt": isoformat(order_document.get("updated_at")),
    }


def populate_orders(order_documents, *, with_users: bool, product_fields) -> List[Dict]:
    db = get_db()
    users = (
        fetch_by_ids(
            db.users,
            (document.get("user") for document in order_documents),
            {"username": 1, "email": 1},
        )
        if with_users
        else None
    )
    products = fetch_by_ids(
        db.products,
        (
            line.get("product")
            for document in order_documents
            for line in document.get("products", [])
        ),
        {field: 1 for field in product_fields},
    )
    return [serialize_order(document, users, products) for document in order_documents]


def read_staff_text(payload: Dict, field: str, max_length: int) -> str:
    value = payload.get(field)
    text = "" if value is None else str(value).strip()
    if len(text) > max_length:
        raise ValidationError(f"{field} must contain at most {max_length} characters")
    return text


@orders_bp.route("/checkout-session", methods=["POST"])
@login_required
def create_checkout_session():
    payments = get_payments()
    payments.ensure_configured()

    payload = request.get_json(silent=True) or {}
    items = payload.get("items")
    if not isinstance(items, list) or not items:
        raise ValidationError("Cart items are required")

    order_lines, line_items, total_amount = snapshot_cart(items)

    user = current_user()
    now = utcnow()
    order_document = {
        "user": user["_id"],
        "products": order_lines,
        "total_amount": total_amount,
        "status": OrderStatus.PENDING.value,
        "remaining_time": "",
        "admin_comment": "",
        "payment_status": PaymentStatus.PENDING.value,
        "checkout_session_id": None,
        "created_at": now,
        "updated_at": now,
    }
    # Persisted before the provider call so a failed session still leaves a record.
    order_id = get_db().orders.insert_one(order_document).inserted_id

    base_url = resolve_client_base_url()
    session_params = {
        "mode": "payment",
        "payment_method_types": ["card"],
        "line_items": line_items,
        "success_url": f"{base_url}/checkout?success=true&orderId={order_id}",
        "cancel_url": f"{base_url}/checkout?canceled=true&orderId={order_id}",
        "metadata": {"orderId": str(order_id), "userId": str(user["_id"])},
    }

    try:
        session = payments.create_checkout_session(
            session_params, idempotency_key=str(order_id)
        )
    except UpstreamError:
        mark_payment_status(order_id, PaymentStatus.SESSION_FAILED)
        raise

    session_id = session.get("id")
    checkout_url = session.get("url")
    if not session_id or not checkout_url:
        mark_payment_status(order_id, PaymentStatus.SESSION_FAILED)
        raise UpstreamError("Payment provider returned an incomplete session")

    mark_payment_status(
        order_id, PaymentStatus.SESSION_CREATED, checkout_session_id=session_id
    )
    current_app.logger.info(
        "Created checkout session %s for order %s (%s items)",
        session_id,
        order_id,
        len(order_lines),
    )

    return (
        jsonify(
            {"checkoutUrl": checkout_url, "sessionId": session_id, "orderId": str(order_id)}
        ),
        201,
    )


@orders_bp.route("/my-orders", methods=["GET"])
@login_required
def list_my_orders():
    documents = list(
        get_db()
        .orders.find({"user": current_user()["_id"]})
        .sort([("created_at", -1), ("_id", -1)])
    )
    orders = populate_orders(documents, with_users=False, product_fields=("title", "image"))
    return jsonify({"orders": orders})


@orders_bp.route("/staff", methods=["GET"])
@admin_or_owner_required
def list_orders_for_staff():
    documents = list(get_db().orders.find().sort([("created_at", -1), ("_id", -1)]))
    orders = populate_orders(
        documents, with_users=True, product_fields=("title", "image", "price")
    )
    return jsonify({"orders": orders})


@orders_bp.route("/staff/<order_id>", methods=["PUT"])
@admin_or_owner_required
def update_order_for_staff(order_id: str):
    object_id = parse_object_id(order_id)
    if object_id is None:
        raise ValidationError("Invalid order id")

    payload = request.get_json(silent=True) or {}
    status = OrderStatus.parse(payload.get("status"))
    if status is None or status not in STAFF_STATUSES:
        raise ValidationError("Invalid status")

    remaining_time = read_staff_text(payload, "remainingTime", REMAINING_TIME_MAX_LENGTH)
    admin_comment = read_staff_text(payload, "adminComment", ADMIN_COMMENT_MAX_LENGTH)

    orders = get_db().orders
    # The status filter makes the forward-only rule hold against concurrent
    # staff updates and customer cancellations.
    reachable_from = [candidate.value for candidate in OrderStatus if candidate.rank <= status.rank]
    updated = orders.find_one_and_update(
        {"_id": object_id, "status": {"$in": reachable_from}},
        {
            "$set": {
                "status": status.value,
                "remaining_time": remaining_time,
                "admin_comment": admin_comment,
                "updated_at": utcnow(),
            }
        },
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        order = orders.find_one({"_id": object_id}, {"status": 1})
        if not order:
            raise NotFoundError("Order not found")
        raise ValidationError(
            f"Order cannot move back from {order.get('status')} to {status.value}"
        )

    actor = current_user()
    customer = get_db().users.find_one({"_id": updated.get("user")}, {"username": 1})
    customer_name = customer.get("username") if customer else "user"
    record_activity(
        actor,
        "UPDATED_ORDER",
        "order",
        object_id,
        f"Order {object_id}",
        f"{actor.get('username')} updated order {object_id} for {customer_name}",
    )

    populated = populate_orders(
        [updated], with_users=True, product_fields=("title", "image", "price")
    )[0]
    return jsonify({"message": "Order updated", "order": populated})


@orders_bp.route("/cancel-pending/<order_id>", methods=["DELETE"])
@login_required
def cancel_pending_order(order_id: str):
    object_id = parse_object_id(order_id)
    if object_id is None:
        raise ValidationError("Invalid order id")

    orders = get_db().orders
    order = orders.find_one({"_id": object_id, "user": current_user()["_id"]})
    if not order:
        raise NotFoundError("Order not found")

    in_progress = {"message": "Order already in progress and cannot be canceled"}
    if order.get("status") != OrderStatus.PENDING.value:
        return jsonify(in_progress)

    # Staff may have moved the order on since it was read.
    result = orders.delete_one({"_id": object_id, "status": OrderStatus.PENDING.value})
    if result.deleted_count == 0:
        return jsonify(in_progress)

    return jsonify({"message": "Pending order canceled"})


def expire_abandoned_orders(max_age: timedelta) -> Dict[str, int]:
    """
    Remove pending orders whose checkout never completed.

    Orders older than ``max_age`` without a checkout session are deleted. For
    orders with a session the provider is asked for its state: expired sessions
    delete the order, paid sessions mark it paid, anything else is left alone.
    """
    orders = get_db().orders
    payments = get_payments()
    cutoff = utcnow() - max_age
    summary = {"expired": 0, "paid": 0, "kept": 0, "failed": 0}

    candidates = orders.find(
        {
            "status": OrderStatus.PENDING.value,
            "payment_status": {"$ne": PaymentStatus.PAID.value},
            "created_at": {"$lt": cutoff},
        }
    )
    for order in list(candidates):
        session_id = order.get("checkout_session_id")
        if not session_id:
            orders.delete_one({"_id": order["_id"], "status": OrderStatus.PENDING.value})
            summary["expired"] += 1
            continue

        try:
            session = payments.retrieve_checkout_session(session_id)
        except UpstreamError as exc:
            current_app.logger.warning(
                "Could not check checkout session %s for order %s: %s",
                session_id,
                order["_id"],
                exc,
            )
            summary["failed"] += 1
            continue

        if session.get("payment_status") == "paid":
            mark_payment_status(order["_id"], PaymentStatus.PAID)
            summary["paid"] += 1
        elif session.get("status") == "expired":
            orders.delete_one({"_id": order["_id"], "status": OrderStatus.PENDING.value})
            summary["expired"] += 1
        else:
            summary["kept"] += 1

    current_app.logger.info("Pending order reconciliation finished: %s", summary)
    return summary
