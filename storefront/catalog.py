import csv
import io
import math
import re

from flask import current_app

from storefront import db
from storefront.errors import NotFoundError, ValidationError
from storefront.validation import (
    product_id_query,
    sanitize_int,
    sanitize_number,
    validate_product,
)

PRODUCTS = "products"
DEFAULT_LIMIT = 20
MAX_LIMIT = 100
SORTABLE_FIELDS = {"slNumber", "disp_order", "price", "selling_price", "mrp", "title", "createdAt"}
DEFAULT_SORT = [("disp_order", 1), ("slNumber", 1), ("createdAt", -1)]


def _parse_price(raw, field):
    if raw in (None, ""):
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        value = math.nan
    if not math.isfinite(value):
        raise ValidationError("Invalid price values provided. Please enter numbers only.", field=field)
    if value < 0:
        raise ValidationError("Price filters cannot be negative.", field=field)
    return value


def _contains(text):
    return {"$regex": re.escape(text), "$options": "i"}


def build_product_query(args):
    """
    Turns query-string parameters into a Mongo filter plus paging and sort options.

    Returns (query, page, limit, sort).
    """
    query = {}

    search = (args.get("search") or "").strip()
    if search:
        query["$or"] = [
            {"title": _contains(search)},
            {"description": _contains(search)},
            {"features": _contains(search)},
        ]

    min_price = _parse_price(args.get("minPrice"), "minPrice")
    max_price = _parse_price(args.get("maxPrice"), "maxPrice")
    if min_price is not None and max_price is not None and min_price > max_price:
        raise ValidationError("Minimum price cannot be greater than maximum price.", field="minPrice")

    price_query = {}
    if min_price is not None:
        price_query["$gte"] = min_price
    if max_price is not None:
        price_query["$lte"] = max_price
    if price_query:
        query["price"] = price_query

    for attribute in ("color", "size", "storage"):
        value = (args.get(attribute) or "").strip()
        if value:
            query[attribute] = _contains(value)

    page = max(1, sanitize_int(args.get("page"), 1))
    limit = min(MAX_LIMIT, max(1, sanitize_int(args.get("limit"), DEFAULT_LIMIT)))

    sort_by = args.get("sortBy")
    if sort_by in SORTABLE_FIELDS:
        direction = -1 if args.get("sortOrder") == "desc" else 1
        sort = [(sort_by, direction)]
    else:
        sort = list(DEFAULT_SORT)

    return query, page, limit, sort


def list_products(args):
    query, page, limit, sort = build_product_query(args)
    total = db.count_documents(PRODUCTS, query)
    items = db.find_many(PRODUCTS, query, sort=sort, skip=(page - 1) * limit, limit=limit)
    pages = math.ceil(total / limit) if total else 0

    pagination = {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": pages,
        "hasNext": page < pages,
        "hasPrev": page > 1,
    }
    return [normalize_product(p) for p in items], pagination


def all_products():
    """Every product in display order, as the admin table shows them."""
    products = db.find_many(PRODUCTS, {}, sort=DEFAULT_SORT)
    return sorted(
        (normalize_product(p) for p in products),
        key=lambda p: p.get("disp_order") or p.get("slNumber") or 0,
    )


def normalize_product(product):
    # Older imports stored the title under "Title".
    legacy_title = product.pop("Title", None)
    if not product.get("title"):
        product["title"] = legacy_title or ""
    return product


def get_product(product_id):
    product = db.find_one(PRODUCTS, product_id_query(product_id))
    if product is None:
        raise NotFoundError("Product not found")
    return normalize_product(product)


def _next_sl_number():
    last = db.get_db()[PRODUCTS].find_one({}, sort=[("slNumber", -1)])
    return (last.get("slNumber") or 0) + 1 if last else 1


def create_product(data):
    product = validate_product(data)
    if not product["slNumber"]:
        product["slNumber"] = _next_sl_number()
    if not product["disp_order"]:
        product["disp_order"] = product["slNumber"]

    created = db.insert_one(PRODUCTS, product)
    current_app.logger.info("Product %s created (slNumber %s)", created["_id"], product["slNumber"])
    return created


def update_product(product_id, data):
    query = product_id_query(product_id)
    existing = db.get_db()[PRODUCTS].find_one(query)
    if existing is None:
        raise NotFoundError("Product not found")

    merged = normalize_product(dict(existing))
    merged.update({k: v for k, v in data.items() if k not in ("_id", "id")})
    product = validate_product(merged)
    if not product["slNumber"]:
        product["slNumber"] = existing.get("slNumber") or 0
    if not product["disp_order"]:
        product["disp_order"] = existing.get("disp_order") or product["slNumber"]

    update = {"$set": product}
    if "Title" in existing:
        update["$unset"] = {"Title": ""}
    return db.update_one(PRODUCTS, query, update)


def delete_product(product_id):
    result = db.delete_one(PRODUCTS, product_id_query(product_id))
    if result.deleted_count == 0:
        raise NotFoundError("Product not found")
    current_app.logger.info("Product %s deleted", product_id)
    return result.deleted_count


def move_product(product_id, direction):
    """
    Swaps the product's display order with its neighbour above or below.

    Returns False when the product is already first (up) or last (down).
    """
    if direction not in ("up", "down"):
        raise ValidationError("Direction must be 'up' or 'down'", field="direction")

    products = all_products()
    index = next(
        (i for i, p in enumerate(products) if str(p["_id"]) == str(product_id)), None
    )
    if index is None:
        raise NotFoundError("Product not found")

    if (direction == "up" and index == 0) or (direction == "down" and index == len(products) - 1):
        return False

    target_index = index - 1 if direction == "up" else index + 1
    current, target = products[index], products[target_index]
    current_order = current.get("disp_order") or index + 1
    target_order = target.get("disp_order") or target_index + 1

    db.update_one(PRODUCTS, {"_id": current["_id"]}, {"$set": {"disp_order": target_order}})
    try:
        db.update_one(PRODUCTS, {"_id": target["_id"]}, {"$set": {"disp_order": current_order}})
    except Exception:
        current_app.logger.exception(
            "Reorder of %s failed half-way; restoring disp_order %s", current["_id"], current_order
        )
        db.update_one(PRODUCTS, {"_id": current["_id"]}, {"$set": {"disp_order": current_order}})
        raise
    return True


def _split_list(value):
    if not value:
        return []
    return [part.strip() for part in str(value).split(",") if part.strip()]


def product_from_csv_row(row, sl_number):
    images = _split_list(row.get("images"))
    for column in ("images1", "images2", "images3", "images4"):
        if row.get(column):
            images.append(row[column].strip())

    title = (row.get("title") or row.get("Title") or "").strip()
    price = sanitize_number(row.get("price") or row.get("selling_price"))
    text = row.get("description") or row.get("features") or ""
    return {
        "title": title,
        "mrp": sanitize_number(row.get("mrp")),
        "price": price,
        "selling_price": price,
        "color": row.get("color") or "",
        "size": row.get("size") or "",
        "storage": row.get("storage") or "",
        "image": row.get("image") or (images[0] if images else ""),
        "images": images,
        "extraImages": _split_list(row.get("extraImages")),
        "description": text,
        "features": text,
        "disp_order": sanitize_int(row.get("disp_order")) or sl_number,
        "slNumber": sl_number,
    }


def import_products_csv(stream):
    """Bulk-inserts products from an uploaded CSV file and returns how many were added."""
    raw = stream.read()
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8-sig")

    sl_number = _next_sl_number() - 1
    products = []
    try:
        reader = csv.DictReader(io.StringIO(raw))
        if not reader.fieldnames:
            raise ValidationError("Error parsing CSV", field="csvFile")
        reader.fieldnames = [name.strip() for name in reader.fieldnames]

        for row in reader:
            if not (row.get("title") or row.get("Title") or "").strip():
                continue
            sl_number += 1
            products.append(product_from_csv_row(row, sl_number))
    except csv.Error as e:
        current_app.logger.warning("Rejected CSV upload: %s", e)
        raise ValidationError("Error parsing CSV", field="csvFile")

    if not products:
        raise ValidationError("No valid products found in CSV", field="csvFile")

    inserted = db.insert_many(PRODUCTS, products)
    current_app.logger.info("CSV import added %d products", len(inserted))
    return len(inserted)
