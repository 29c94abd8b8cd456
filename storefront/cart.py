"""
Cart, "buy now" product and delivery address, all held in the client's
signed session cookie. Nothing here touches the database: cart items are
snapshots of the product taken when they were added.
"""
import time
from collections import namedtuple

from flask import session

from storefront.errors import NotFoundError

CartTotals = namedtuple("CartTotals", "total_mrp total_selling total_discount total_items")

SNAPSHOT_FIELDS = ("title", "price", "selling_price", "mrp", "image", "color", "size", "storage")


def _quantity(item):
    try:
        return int(item.get("quantity")) or 1
    except (TypeError, ValueError):
        return 1


def unit_price(item):
    return float(item.get("selling_price") or item.get("price") or 0)


def product_snapshot(product):
    snapshot = {field: product.get(field) for field in SNAPSHOT_FIELDS}
    snapshot["id"] = str(product.get("_id") or product.get("id"))
    if not snapshot["image"] and product.get("images"):
        snapshot["image"] = product["images"][0]
    return snapshot


def get_cart():
    return list(session.get("cart", []))


def _save_cart(items):
    session["cart"] = items


def cart_count():
    return len(session.get("cart", []))


def add_item(product, selected_size="", quantity=1):
    """Adds a product; the same product in the same size just gains quantity."""
    items = get_cart()
    snapshot = product_snapshot(product)

    for item in items:
        if item["id"] == snapshot["id"] and item.get("selectedSize", "") == selected_size:
            item["quantity"] = _quantity(item) + quantity
            break
    else:
        snapshot.update(selectedSize=selected_size, quantity=quantity, addedAt=int(time.time() * 1000))
        items.append(snapshot)

    _save_cart(items)
    return items


def update_quantity(index, quantity):
    """Sets an item's quantity. Quantities below 1 are ignored; use remove_item."""
    items = get_cart()
    if not 0 <= index < len(items):
        raise NotFoundError("Item not found in cart")
    if quantity < 1:
        return False
    items[index]["quantity"] = quantity
    _save_cart(items)
    return True


def remove_item(index):
    items = get_cart()
    if not 0 <= index < len(items):
        raise NotFoundError("Item not found in cart")
    removed = items.pop(index)
    _save_cart(items)
    return removed


def clear_cart():
    _save_cart([])


def cart_totals(items):
    total_mrp = 0.0
    total_selling = 0.0
    for item in items:
        quantity = _quantity(item)
        total_mrp += float(item.get("mrp") or 0) * quantity
        total_selling += unit_price(item) * quantity

    return CartTotals(
        total_mrp=total_mrp,
        total_selling=total_selling,
        total_discount=total_mrp - total_selling,
        total_items=sum(_quantity(item) for item in items),
    )


def select_product(product):
    session["selected_product"] = product_snapshot(product)


def get_selected_product():
    return session.get("selected_product")


def save_address(values):
    house = values["house"].strip()
    city = values["city"].strip()
    state = values["state"].strip()
    pincode = values["pincode"].strip()

    session["user"] = {
        "name": values["fname"].strip(),
        "phone": values["mobile"].strip(),
        "address": f"{house}, {city}, {state} - {pincode}",
        "city": city,
        "state": state,
        "pincode": pincode,
    }
    return session["user"]


def get_address():
    return session.get("user")
