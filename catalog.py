"""
Categories and products.

Name uniqueness is checked before writing so callers get a clear message;
the unique indexes in database.py stay as the last line of defence.
"""
import logging
import re
from datetime import datetime, timezone
from typing import Optional

from database import create_document, serialize_doc, to_object_id
from errors import ConflictError, NotFoundError, ValidationError
from schemas import Category as CategorySchema, Product as ProductSchema

logger = logging.getLogger(__name__)


def _exact_ci(value: str) -> dict:
    return {"$regex": f"^{re.escape(value)}$", "$options": "i"}


# Categories

def create_category(db, name, description: Optional[str] = None) -> dict:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("Valid Category name is required")
    name = name.strip()
    if db["category"].find_one({"name": _exact_ci(name)}):
        raise ConflictError("Category already exists")
    category_id = create_document(db, "category", CategorySchema(name=name, description=description))
    logger.info("Category %s created: %s", category_id, name)
    return serialize_doc(db["category"].find_one({"_id": to_object_id(category_id)}))


def list_categories(db) -> list:
    return [serialize_doc(c) for c in db["category"].find({}).sort("name", 1)]


def _require_category(db, category_id: str):
    try:
        oid = to_object_id(category_id, "category id")
    except ValidationError:
        raise ValidationError("The specified product category ID does not exist.")
    category = db["category"].find_one({"_id": oid})
    if not category:
        raise ValidationError("The specified product category ID does not exist.")
    return category


def _get_product_doc(db, product_id: str):
    product = db["product"].find_one({"_id": to_object_id(product_id, "product id")})
    if not product:
        raise NotFoundError("Product not found.")
    return product


# Products

def create_product(db, product_name: str, price: float, stock_quantity: int, category_id: str,
                   description: Optional[str] = None) -> dict:
    product_name = product_name.strip()
    if not product_name:
        raise ValidationError("A valid product name is required.")
    if db["product"].find_one({"product_name": product_name}):
        raise ConflictError("A product with this name already exists.")
    _require_category(db, category_id)

    product = ProductSchema(
        product_name=product_name,
        description=description,
        price=price,
        stock_quantity=stock_quantity,
        category_id=category_id,
    )
    product_id = create_document(db, "product", product)
    logger.info("Product %s created: %s", product_id, product_name)
    return serialize_doc(db["product"].find_one({"_id": to_object_id(product_id)}))


def update_product(db, product_id: str, changes: dict) -> dict:
    product = _get_product_doc(db, product_id)
    changes = {k: v for k, v in changes.items() if v is not None}
    if not changes:
        raise ValidationError("No product fields to update.")

    if "product_name" in changes:
        changes["product_name"] = changes["product_name"].strip()
        if not changes["product_name"]:
            raise ValidationError("A valid product name is required.")
        if changes["product_name"] != product["product_name"] and db["product"].find_one(
            {"product_name": changes["product_name"]}
        ):
            raise ConflictError("A product with this name already exists.")
    if "category_id" in changes:
        _require_category(db, changes["category_id"])

    changes["updated_at"] = datetime.now(timezone.utc)
    db["product"].update_one({"_id": product["_id"]}, {"$set": changes})
    logger.info("Product %s updated", product_id)
    return serialize_doc(db["product"].find_one({"_id": product["_id"]}))


def set_featured(db, product_id: str, featured: bool) -> dict:
    product = _get_product_doc(db, product_id)
    db["product"].update_one(
        {"_id": product["_id"]},
        {"$set": {"is_featured": featured, "updated_at": datetime.now(timezone.utc)}},
    )
    logger.info("Product %s %s", product_id, "featured" if featured else "unfeatured")
    return serialize_doc(db["product"].find_one({"_id": product["_id"]}))


def get_product(db, product_id: str) -> dict:
    return serialize_doc(_get_product_doc(db, product_id))


def list_products(db) -> list:
    return [serialize_doc(p) for p in db["product"].find({}).sort("product_name", 1)]


def list_featured_products(db) -> list:
    return [serialize_doc(p) for p in db["product"].find({"is_featured": True}).sort("product_name", 1)]


def list_products_by_category(db, category_id: str) -> list:
    category = db["category"].find_one({"_id": to_object_id(category_id, "category id")})
    if not category:
        raise NotFoundError("Category not found")
    cursor = db["product"].find({"category_id": str(category["_id"])}).sort("product_name", 1)
    return [serialize_doc(p) for p in cursor]


def search_products(db, name: Optional[str] = None, min_price: Optional[float] = None,
                    max_price: Optional[float] = None, category: Optional[str] = None) -> list:
    if min_price is not None and max_price is not None and min_price > max_price:
        raise ValidationError("minPrice cannot be greater than maxPrice")

    filter_q = {}
    if name:
        filter_q["product_name"] = {"$regex": re.escape(name.strip()), "$options": "i"}
    if min_price is not None or max_price is not None:
        price_filter = {}
        if min_price is not None:
            price_filter["$gte"] = min_price
        if max_price is not None:
            price_filter["$lte"] = max_price
        filter_q["price"] = price_filter
    if category:
        ids = [str(c["_id"]) for c in db["category"].find({"name": _exact_ci(category.strip())})]
        filter_q["category_id"] = {"$in": ids}

    return [serialize_doc(p) for p in db["product"].find(filter_q).sort("product_name", 1)]
