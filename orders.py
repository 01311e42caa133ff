"""
Order placement, listing and status changes.

place_order is the only operation that touches several collections at once.
Everything it writes goes through one transaction, so a failure on any line
item leaves no order, no line items and no stock change behind.
"""
import logging
from datetime import datetime, timezone
from typing import Iterable, Optional

from database import create_document, to_object_id, transaction
from errors import (
    ForbiddenError,
    InsufficientStockError,
    NoChangeError,
    NotFoundError,
    NotificationError,
    ValidationError,
)
from notifications import Mailer, send_status_email
from schemas import Order as OrderSchema, OrderItem as OrderItemSchema, OrderStatus, Role

logger = logging.getLogger(__name__)

NEWEST_FIRST = [("created_at", -1), ("_id", -1)]


def _line(item) -> dict:
    if hasattr(item, "model_dump"):
        item = item.model_dump()
    return {"product_id": item["product_id"], "quantity": item["quantity"], "unit_price": item["unit_price"]}


def place_order(db, buyer_id: str, items: Iterable) -> dict:
    """Create an order for buyer_id and take its line items out of stock.

    items holds {product_id, quantity, unit_price} entries. The unit price
    is the one the caller sent and is what gets stored on the line item.
    """
    lines = [_line(i) for i in items]
    if not lines:
        raise ValidationError("An order needs at least one product")
    product_oids = [to_object_id(line["product_id"], "product id") for line in lines]
    for line, product_oid in zip(lines, product_oids):
        # canonical hex so later string lookups match str(ObjectId)
        line["product_id"] = str(product_oid)

    try:
        with transaction(db) as session:
            buyer = db["user"].find_one({"_id": to_object_id(buyer_id, "user id")}, session=session)
            if not buyer:
                raise NotFoundError("User Account not found")

            total_amount = sum(line["quantity"] * line["unit_price"] for line in lines)
            order_id = create_document(
                db, "order", OrderSchema(buyer_id=buyer_id, total_amount=total_amount), session=session
            )

            for line, product_oid in zip(lines, product_oids):
                product = db["product"].find_one({"_id": product_oid}, session=session)
                if not product or product.get("stock_quantity", 0) < line["quantity"]:
                    raise InsufficientStockError(line["product_id"])

                create_document(
                    db,
                    "orderitem",
                    OrderItemSchema(order_id=order_id, **line),
                    session=session,
                )
                result = db["product"].update_one(
                    {"_id": product_oid, "stock_quantity": {"$gte": line["quantity"]}},
                    {"$inc": {"stock_quantity": -line["quantity"]},
                     "$set": {"updated_at": datetime.now(timezone.utc)}},
                    session=session,
                )
                if result.modified_count != 1:
                    raise InsufficientStockError(line["product_id"])
    except InsufficientStockError as e:
        logger.warning("Order for buyer %s rolled back: %s", buyer_id, e.message)
        raise

    logger.info("Order %s placed by %s, total %.2f", order_id, buyer_id, total_amount)
    return {"orderId": order_id, "totalAmount": total_amount}


def _scope(caller_id: str, caller_role) -> dict:
    return {} if Role(caller_role) == Role.admin else {"buyer_id": caller_id}


def _order_date(order):
    created = order.get("created_at")
    return created.isoformat() if created else None


def retrieve_orders(db, caller_id: str, caller_role) -> list:
    cursor = db["order"].find(_scope(caller_id, caller_role)).sort(NEWEST_FIRST)
    return [
        {
            "orderId": str(o["_id"]),
            "status": o["status"],
            "totalAmount": o["total_amount"],
            "orderDate": _order_date(o),
        }
        for o in cursor
    ]


def _items_for(db, order_id: str) -> list:
    items = list(db["orderitem"].find({"order_id": order_id}).sort("_id", 1))
    product_ids = [to_object_id(i["product_id"]) for i in items]
    names = {str(p["_id"]): p.get("product_name") for p in db["product"].find({"_id": {"$in": product_ids}})}
    return [
        {
            "productId": i["product_id"],
            "productName": names.get(i["product_id"]),
            "quantity": i["quantity"],
            "unitPrice": i["unit_price"],
            "lineTotal": i["quantity"] * i["unit_price"],
        }
        for i in items
    ]


def _load_order(db, order_id: str):
    order = db["order"].find_one({"_id": to_object_id(order_id, "order id")})
    if not order:
        raise NotFoundError("Order not found")
    return order


def order_details(db, order_id: str, caller_id: str, caller_role) -> dict:
    order = _load_order(db, order_id)
    if Role(caller_role) != Role.admin and order["buyer_id"] != caller_id:
        raise ForbiddenError("You are not allowed to view this order")

    items = _items_for(db, str(order["_id"]))
    return {
        "orderId": str(order["_id"]),
        "buyerId": order["buyer_id"],
        "status": order["status"],
        "orderDate": _order_date(order),
        "items": items,
        # from the stored snapshots, never the live catalog price
        "totalAmount": sum(i["lineTotal"] for i in items),
    }


def normalize_status(value) -> OrderStatus:
    if not isinstance(value, str):
        raise ValidationError("newStatus is required")
    try:
        return OrderStatus(value.strip().lower())
    except ValueError:
        allowed = ", ".join(s.value for s in OrderStatus)
        raise ValidationError(f"Invalid status '{value}'. Allowed values: {allowed}")


def update_order_status(db, mailer: Optional[Mailer], order_id: str, new_status, caller_role) -> dict:
    """Set the order status and tell the buyer.

    Any status may follow any other; only re-applying the current status is
    refused. The email goes out after the update is stored and a delivery
    failure is reported in the result without touching the order again.
    """
    if Role(caller_role) != Role.admin:
        raise ForbiddenError("Only admins can change order status")
    status = normalize_status(new_status)
    order = _load_order(db, order_id)
    if order["status"] == status.value:
        raise NoChangeError(f"No changes made, order is already '{status.value}'")

    db["order"].update_one(
        {"_id": order["_id"]},
        {"$set": {"status": status.value, "updated_at": datetime.now(timezone.utc)}},
    )
    logger.info("Order %s status changed from %s to %s", order_id, order["status"], status.value)

    notification_sent = False
    buyer = db["user"].find_one({"_id": to_object_id(order["buyer_id"])})
    if not buyer:
        logger.warning("Order %s has no buyer on record, status email skipped", order_id)
    elif mailer is not None:
        try:
            send_status_email(mailer, buyer["email"], buyer.get("name", ""), order_id, status.value)
            notification_sent = True
        except NotificationError as e:
            logger.warning("Status email for order %s failed: %s", order_id, e)

    return {
        "orderId": order_id,
        "previousStatus": order["status"],
        "status": status.value,
        "notificationSent": notification_sent,
    }


def view_order_history(db, caller_id: str, caller_role) -> list:
    history = []
    for order in db["order"].find(_scope(caller_id, caller_role)).sort(NEWEST_FIRST):
        items = _items_for(db, str(order["_id"]))
        history.append({
            "orderId": str(order["_id"]),
            "orderDate": _order_date(order),
            "status": order["status"],
            "itemCount": len(items),
            "products": ", ".join(i["productName"] or i["productId"] for i in items),
            "totalAmount": sum(i["lineTotal"] for i in items),
        })
    return history
