from flask import Blueprint, current_app, flash, redirect, render_template, request, session, url_for

from storefront import cart, catalog, payments, settings_store, tracking
from storefront.errors import NotFoundError, ValidationError
from storefront.validation import sanitize_int, validate_address

bp = Blueprint("shop", __name__)

# Purchase ids remembered in the session cookie to avoid double tracking.
TRACKED_TRANSACTIONS_KEPT = 10

INDIAN_STATES = [
    "Andaman and Nicobar Islands", "Andhra Pradesh", "Arunachal Pradesh", "Assam", "Bihar",
    "Chandigarh", "Chhattisgarh", "Dadra and Nagar Haveli and Daman and Diu", "Delhi", "Goa",
    "Gujarat", "Haryana", "Himachal Pradesh", "Jammu and Kashmir", "Jharkhand", "Karnataka",
    "Kerala", "Ladakh", "Lakshadweep", "Madhya Pradesh", "Maharashtra", "Manipur", "Meghalaya",
    "Mizoram", "Nagaland", "Odisha", "Puducherry", "Punjab", "Rajasthan", "Sikkim", "Tamil Nadu",
    "Telangana", "Tripura", "Uttar Pradesh", "Uttarakhand", "West Bengal",
]


# --- Client-side Pixel events ---
def queue_pixel_event(name, params=None, event_id=None):
    """Queues a browser Pixel event; the next rendered page fires it."""
    events = session.get("pixel_events", [])
    events.append({"name": name, "params": params or {}, "event_id": event_id})
    session["pixel_events"] = events


@bp.app_context_processor
def inject_shop_globals():
    events = session.pop("pixel_events", []) if "pixel_events" in session else []
    return {"cart_count": cart.cart_count(), "pixel_events": events}


def checkout_items():
    """The items being paid for: the cart, or the "buy now" product when the cart is empty."""
    items = cart.get_cart()
    if items:
        return items
    selected = cart.get_selected_product()
    if selected:
        return [dict(selected, quantity=1, selectedSize=selected.get("selectedSize", ""))]
    return []


def _pixel_contents(items):
    return [
        {"id": item["id"], "quantity": int(item.get("quantity") or 1), "item_price": cart.unit_price(item)}
        for item in items
    ]


def _purchase_user_data(address):
    address = address or {}
    first_name, _, last_name = (address.get("name") or "").partition(" ")
    return {
        "phone": address.get("phone"),
        "first_name": first_name,
        "last_name": last_name,
        "city": address.get("city"),
        "state": address.get("state"),
        "zip": address.get("pincode"),
        "country": "in",
        "client_ip_address": request.headers.get("X-Forwarded-For", request.remote_addr or "").split(",")[0].strip(),
        "client_user_agent": request.headers.get("User-Agent"),
        "fbp": request.cookies.get("_fbp"),
        "fbc": request.cookies.get("_fbc"),
    }


# --- Catalog ---
@bp.route("/")
def home():
    """
    Displays the product catalog.
    Supports search, price/colour/size/storage filters and pagination.
    """
    try:
        products, pagination = catalog.list_products(request.args)
    except ValidationError as e:
        flash(e.message, "error")
        products, pagination = catalog.list_products({"page": request.args.get("page")})

    def page_url(page):
        args = request.args.to_dict()
        args["page"] = page
        return url_for("shop.home", **args)

    return render_template(
        "shop/index.html",
        products=products,
        pagination=pagination,
        filters=request.args,
        prev_url=page_url(pagination["page"] - 1) if pagination["hasPrev"] else None,
        next_url=page_url(pagination["page"] + 1) if pagination["hasNext"] else None,
    )


@bp.route("/product/<product_id>")
def product_detail(product_id):
    """Displays details for a specific product."""
    try:
        product = catalog.get_product(product_id)
    except NotFoundError:
        flash("Product not found!", "error")
        return redirect(url_for("shop.home"))

    queue_pixel_event(
        "ViewContent",
        {
            "content_ids": [str(product["_id"])],
            "content_name": product.get("title"),
            "content_type": "product",
            "value": cart.unit_price(product),
            "currency": "INR",
        },
    )
    sizes = [s.strip() for s in (product.get("size") or "").split(",") if s.strip()]
    return render_template("shop/product_detail.html", product=product, sizes=sizes)


# --- Cart ---
@bp.route("/cart/add/<product_id>", methods=["POST"])
def add_to_cart(product_id):
    try:
        product = catalog.get_product(product_id)
    except NotFoundError:
        flash("Product not found!", "error")
        return redirect(url_for("shop.home"))

    quantity = max(1, sanitize_int(request.form.get("quantity"), 1))
    cart.add_item(product, request.form.get("size", ""), quantity)
    queue_pixel_event(
        "AddToCart",
        {
            "content_ids": [str(product["_id"])],
            "content_name": product.get("title"),
            "content_type": "product",
            "value": cart.unit_price(product) * quantity,
            "currency": "INR",
        },
    )
    flash(f"'{product.get('title')}' added to cart!", "success")
    return redirect(url_for("shop.view_cart"))


@bp.route("/buy-now/<product_id>", methods=["POST"])
def buy_now(product_id):
    """Adds the product to the cart and jumps straight to the address step."""
    try:
        product = catalog.get_product(product_id)
    except NotFoundError:
        flash("Product not found!", "error")
        return redirect(url_for("shop.home"))

    cart.add_item(product, request.form.get("size", ""))
    cart.select_product(product)
    queue_pixel_event(
        "AddToCart",
        {"content_ids": [str(product["_id"])], "value": cart.unit_price(product), "currency": "INR"},
    )
    return redirect(url_for("shop.address"))


@bp.route("/cart")
def view_cart():
    items = cart.get_cart()
    return render_template("shop/cart.html", items=items, totals=cart.cart_totals(items))


@bp.route("/cart/update/<int:index>", methods=["POST"])
def update_cart_quantity(index):
    items = cart.get_cart()
    action = request.form.get("action")
    try:
        current = int(items[index].get("quantity") or 1) if 0 <= index < len(items) else 0
        if action == "increase":
            quantity = current + 1
        elif action == "decrease":
            quantity = current - 1
        else:
            quantity = sanitize_int(request.form.get("quantity"), current)

        if not cart.update_quantity(index, quantity):
            flash("Quantity must be at least 1. Use Remove to delete the item.", "warning")
    except NotFoundError as e:
        flash(e.message, "error")
    return redirect(url_for("shop.view_cart"))


@bp.route("/cart/remove/<int:index>", methods=["POST"])
def remove_from_cart(index):
    try:
        removed = cart.remove_item(index)
        flash(f"'{removed.get('title')}' removed from cart.", "info")
    except NotFoundError as e:
        flash(e.message, "error")
    return redirect(url_for("shop.view_cart"))


@bp.route("/cart/clear", methods=["POST"])
def clear_cart():
    cart.clear_cart()
    flash("Your cart has been cleared.", "success")
    return redirect(url_for("shop.view_cart"))


@bp.route("/checkout", methods=["POST"])
def checkout():
    """Starts checkout for the whole cart."""
    items = cart.get_cart()
    if not items:
        flash("Your cart is empty. Start adding some products!", "info")
        return redirect(url_for("shop.view_cart"))

    totals = cart.cart_totals(items)
    session.pop("selected_product", None)
    queue_pixel_event(
        "InitiateCheckout",
        {
            "content_ids": [item["id"] for item in items],
            "contents": _pixel_contents(items),
            "num_items": totals.total_items,
            "value": totals.total_selling,
            "currency": "INR",
        },
    )
    return redirect(url_for("shop.address"))


# --- Checkout ---
@bp.route("/address", methods=["GET", "POST"])
def address():
    """Collects the delivery address."""
    if not checkout_items():
        flash("Your cart is empty. Start adding some products!", "info")
        return redirect(url_for("shop.view_cart"))

    if request.method == "POST":
        errors = validate_address(request.form)
        if errors:
            for message in errors.values():
                flash(message, "error")
            return render_template(
                "shop/address.html", form_data=request.form, errors=errors, states=INDIAN_STATES
            )
        cart.save_address(request.form)
        return redirect(url_for("shop.order_summary"))

    return render_template("shop/address.html", form_data={}, errors={}, states=INDIAN_STATES)


@bp.route("/order-summary")
def order_summary():
    items = checkout_items()
    if not items:
        flash("Your cart is empty. Start adding some products!", "info")
        return redirect(url_for("shop.view_cart"))
    user = cart.get_address()
    if not user:
        flash("Please add a delivery address first.", "info")
        return redirect(url_for("shop.address"))

    return render_template(
        "shop/order_summary.html", items=items, totals=cart.cart_totals(items), user=user
    )


@bp.route("/payment")
def payment():
    """Shows the UPI payment options with a countdown."""
    items = checkout_items()
    if not items:
        flash("Your cart is empty. Start adding some products!", "info")
        return redirect(url_for("shop.view_cart"))
    if not cart.get_address():
        flash("Please add a delivery address first.", "info")
        return redirect(url_for("shop.address"))

    totals = cart.cart_totals(items)
    settings = settings_store.get_upi_settings() or {}
    upi_id = payments.upi_id_from_settings(settings)
    payee = current_app.config["PAYEE_NAME"]

    apps = [
        {"key": key, "label": label, "url": payments.app_payment_url(key, upi_id, totals.total_selling, payee)}
        for key, label in payments.enabled_apps(settings)
    ]
    session.setdefault("transaction_id", payments.new_transaction_id())

    return render_template(
        "shop/payment.html",
        totals=totals,
        upi_id=upi_id,
        apps=apps,
        active_app=payments.default_app(settings),
        fallback_url=payments.app_payment_url(None, upi_id, totals.total_selling, payee),
        window_seconds=current_app.config["PAYMENT_WINDOW_SECONDS"],
        contents=_pixel_contents(items),
    )


@bp.route("/payment/qr")
def payment_qr():
    """Shows a scannable UPI QR code for the amount due."""
    items = checkout_items()
    if not items:
        flash("Your cart is empty. Start adding some products!", "info")
        return redirect(url_for("shop.view_cart"))

    settings = settings_store.get_upi_settings() or {}
    upi_id = payments.upi_id_from_settings(settings)
    if not upi_id:
        flash("Online payment is not available right now. Please try again later.", "warning")
        return redirect(url_for("shop.payment"))

    totals = cart.cart_totals(items)
    transaction_id = session.setdefault("transaction_id", payments.new_transaction_id())
    upi_url = payments.generate_upi_payment_url(
        upi_id,
        payee_name=settings.get("upiName") or current_app.config["PAYEE_NAME"],
        amount=totals.total_selling,
        transaction_note=f"Order {transaction_id}",
        merchant_code=settings.get("merchantCode"),
        transaction_id=transaction_id,
    )
    return render_template(
        "shop/payment_qr.html",
        totals=totals,
        upi_id=upi_id,
        upi_url=upi_url,
        qr_code=payments.upi_qr_data_uri(upi_url),
        window_seconds=current_app.config["PAYMENT_WINDOW_SECONDS"],
    )


def _complete_order(items, totals, method):
    transaction_id = session.get("transaction_id") or payments.new_transaction_id()
    tracked = session.get("tracked_transactions", [])
    contents = _pixel_contents(items)

    if transaction_id not in tracked:
        tracking.track_purchase_server_side(
            transaction_id,
            totals.total_selling,
            contents,
            _purchase_user_data(cart.get_address()),
            event_source_url=request.url_root,
        )
        queue_pixel_event(
            "Purchase",
            {
                "content_ids": [c["id"] for c in contents],
                "contents": contents,
                "num_items": totals.total_items,
                "value": totals.total_selling,
                "currency": "INR",
            },
            event_id=transaction_id,
        )
        session["tracked_transactions"] = (tracked + [transaction_id])[-TRACKED_TRANSACTIONS_KEPT:]

    session["last_order"] = {
        "transaction_id": transaction_id,
        "items": items,
        "total": totals.total_selling,
        "method": method,
        "address": cart.get_address(),
    }
    cart.clear_cart()
    session.pop("selected_product", None)
    session.pop("transaction_id", None)
    current_app.logger.info("Order %s paid via %s for %.2f", transaction_id, method, totals.total_selling)


@bp.route("/payment/verify", methods=["GET", "POST"])
def verify_payment():
    """Lets the shopper confirm payment by pasting the bank SMS or entering the UTR."""
    items = checkout_items()
    if not items:
        flash("Your cart is empty. Start adding some products!", "info")
        return redirect(url_for("shop.view_cart"))

    totals = cart.cart_totals(items)
    if request.method == "GET":
        return render_template("shop/verify_payment.html", totals=totals, result=None)

    method = request.form.get("method", "sms")
    if method == "utr":
        if not payments.verify_utr(request.form.get("utr")):
            flash(f"Please enter a valid UTR number (at least {payments.MIN_UTR_LENGTH} characters).", "error")
            return render_template("shop/verify_payment.html", totals=totals, result=None)
        result = {"status": "success", "message": "UTR received. Your payment will be confirmed shortly."}
    else:
        result = payments.verify_sms_payment(
            request.form.get("sms", ""), totals.total_selling, current_app.config["SMS_AMOUNT_TOLERANCE"]
        )

    if result["status"] != "success":
        flash(result["message"], "error" if result["status"] == "failed" else "warning")
        return render_template("shop/verify_payment.html", totals=totals, result=result)

    _complete_order(items, totals, method)
    flash(result["message"], "success")
    return redirect(url_for("shop.order_confirmation"))


@bp.route("/order/confirmation")
def order_confirmation():
    order = session.get("last_order")
    if not order:
        return redirect(url_for("shop.home"))
    return render_template("shop/order_confirmation.html", order=order)
