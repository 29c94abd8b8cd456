"""
JSON API.

Reads are public. Anything that changes the catalog or the store settings needs
an admin bearer token (see `admin_api_required`).
"""
from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import jwt_required
from pymongo.errors import DuplicateKeyError
from werkzeug.exceptions import HTTPException, InternalServerError

from storefront import auth, catalog, payments, settings_store, tracking
from storefront.db import serialize_doc
from storefront.errors import StoreError, ValidationError
from storefront.validation import sanitize_number

bp = Blueprint("api", __name__, url_prefix="/api")


def _body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _event_fields(data):
    """Checks the client-supplied parts of a tracking event."""
    for field in ("user_data", "custom_data"):
        if data.get(field) is not None and not isinstance(data[field], dict):
            raise ValidationError(f"{field} must be an object", field=field)

    event_time = data.get("event_time")
    if event_time not in (None, ""):
        if isinstance(event_time, bool) or sanitize_number(event_time, None) is None:
            raise ValidationError("event_time must be a Unix timestamp", field="event_time")
        event_time = sanitize_number(event_time)
    return {
        "user_data": _client_user_data(data.get("user_data")),
        "custom_data": data.get("custom_data"),
        "event_id": data.get("event_id"),
        "event_time": event_time or None,
    }


def _ok(message="Success", status=200, **extra):
    payload = {"status": 1, "message": message}
    payload.update(extra)
    return jsonify(payload), status


def _client_user_data(user_data):
    """Adds the caller's IP and user agent unless the client sent its own."""
    user_data = dict(user_data or {})
    forwarded = request.headers.get("X-Forwarded-For", "")
    user_data.setdefault("client_ip_address", forwarded.split(",")[0].strip() or request.remote_addr)
    user_data.setdefault("client_user_agent", request.headers.get("User-Agent"))
    return user_data


def _public_pixel(doc):
    if not doc:
        return {"FacebookPixel": None}
    data = serialize_doc(doc)
    data["hasAccessToken"] = bool(data.pop("accessToken", None))
    return data


# --- Error handlers ---
@bp.errorhandler(StoreError)
def handle_store_error(error):
    if error.status_code >= 500:
        current_app.logger.error("%s: %s", error.code, error.message)
    return jsonify(error.to_dict()), error.status_code


@bp.errorhandler(DuplicateKeyError)
def handle_duplicate(error):
    current_app.logger.warning("Duplicate key: %s", error.details)
    return jsonify({"status": 0, "message": "Duplicate entry found", "code": "DUPLICATE_ERROR"}), 409


@bp.errorhandler(InternalServerError)
def handle_server_error(error):
    current_app.logger.exception("Unhandled API error", exc_info=error.original_exception or error)
    return jsonify({"status": 0, "message": "Internal server error", "code": "SERVER_ERROR"}), 500


@bp.errorhandler(HTTPException)
def handle_http_error(error):
    code = (error.name or "error").upper().replace(" ", "_")
    return jsonify({"status": 0, "message": error.description, "code": code}), error.code


# --- Products ---
@bp.route("/products", methods=["GET"])
def list_products():
    items, pagination = catalog.list_products(request.args)
    pixel = settings_store.get_pixel_settings()
    return jsonify(
        {
            "status": 1,
            "data": serialize_doc(items),
            "pagination": pagination,
            "pixelId": (pixel or {}).get("FacebookPixel"),
        }
    )


@bp.route("/products", methods=["POST"])
@auth.admin_api_required
def create_product():
    product = catalog.create_product(_body())
    return _ok("Product created successfully", 201, data=serialize_doc(product))


@bp.route("/products/<product_id>", methods=["GET"])
def get_product(product_id):
    return _ok(data=serialize_doc(catalog.get_product(product_id)))


@bp.route("/products/<product_id>", methods=["PUT"])
@auth.admin_api_required
def update_product(product_id):
    product = catalog.update_product(product_id, _body())
    return _ok("Product updated successfully", data=serialize_doc(product))


@bp.route("/products/<product_id>", methods=["DELETE"])
@auth.admin_api_required
def delete_product(product_id):
    catalog.delete_product(product_id)
    return _ok("Product deleted successfully")


@bp.route("/products/<product_id>/move", methods=["POST"])
@auth.admin_api_required
def move_product(product_id):
    direction = _body().get("direction") or request.args.get("direction")
    moved = catalog.move_product(product_id, direction)
    message = "Product moved" if moved else f"Product is already at the {'top' if direction == 'up' else 'bottom'}"
    return _ok(message, moved=moved)


@bp.route("/csvupload", methods=["POST"])
@auth.admin_api_required
def csv_upload():
    upload = request.files.get("csvFile")
    if upload is None or not upload.filename:
        raise ValidationError("No file uploaded", field="csvFile")
    count = catalog.import_products_csv(upload.stream)
    return _ok(f"{count} products uploaded successfully", count=count)


# --- Accounts ---
@bp.route("/register", methods=["POST"])
def register():
    data = _body()
    user = auth.register_user(data.get("email"), data.get("password"), data.get("name"), data.get("phone"))
    return _ok("User registered successfully", 201, user=auth.public_user(user), **auth.issue_tokens(user))


@bp.route("/login", methods=["POST"])
def login():
    data = _body()
    user = auth.authenticate(data.get("email"), data.get("password"))
    current_app.logger.info("User %s logged in", user["email"])
    return _ok("Login successful", user=auth.public_user(user), **auth.issue_tokens(user))


@bp.route("/token/refresh", methods=["POST"])
@jwt_required(refresh=True)
def refresh_token():
    return _ok("Token refreshed", token=auth.refresh_access_token())


# --- Store settings ---
@bp.route("/upichange", methods=["GET"])
def get_upi():
    upi = settings_store.get_upi_settings()
    pixel = settings_store.get_pixel_settings()
    return jsonify(
        {
            "status": 1,
            "data": serialize_doc(upi) if upi else None,
            "pixelId": (pixel or {}).get("FacebookPixel"),
        }
    )


@bp.route("/upichange", methods=["POST", "PUT"])
@auth.admin_api_required
def save_upi():
    doc, created = settings_store.save_upi_settings(_body())
    message = "UPI settings created successfully" if created else "UPI settings updated successfully"
    return _ok(message, 201 if created else 200, data=serialize_doc(doc))


@bp.route("/facebookPixel", methods=["GET"])
def get_pixel():
    return _ok(data=_public_pixel(settings_store.get_pixel_settings()))


@bp.route("/facebookPixel", methods=["POST", "PUT"])
@auth.admin_api_required
def save_pixel():
    data = _body()
    doc, created = settings_store.save_pixel_settings(
        data.get("FacebookPixel") or data.get("pixelId"),
        data.get("accessToken"),
        data.get("testEventCode"),
    )
    message = "Pixel created successfully" if created else "Pixel updated successfully"
    return _ok(message, 201 if created else 200, data=_public_pixel(doc))


@bp.route("/facebookPixel", methods=["DELETE"])
@auth.admin_api_required
def delete_pixel():
    deleted = settings_store.delete_pixel_settings()
    return _ok("Pixel deleted successfully", deleted=deleted)


# --- Tracking ---
@bp.route("/facebook-conversion", methods=["POST"])
def facebook_conversion():
    data = _body()
    if not data.get("event_name") or not isinstance(data["event_name"], str):
        raise ValidationError("event_name is required", field="event_name")

    event = tracking.build_event(
        data["event_name"],
        event_source_url=data.get("event_source_url") or request.referrer,
        **_event_fields(data),
    )
    result = tracking.send_events([event], test_event_code=data.get("test_event_code"))
    return _ok(
        "Event sent to Facebook successfully",
        event_id=event["event_id"],
        events_received=result.get("events_received", 0),
    )


@bp.route("/track-purchase", methods=["POST"])
def track_purchase():
    data = _body()
    event = tracking.build_event(
        data.get("event_name") or "Purchase",
        event_source_url=request.referrer,
        **_event_fields(data),
    )
    result = tracking.send_events([event])
    return _ok(
        "Purchase tracked",
        event_id=event["event_id"],
        events_received=result.get("events_received", 0),
    )


# --- Payments ---
@bp.route("/upi/providers", methods=["GET"])
def upi_providers():
    return _ok(data=payments.upi_providers())


@bp.route("/payment/verify-sms", methods=["POST"])
def verify_sms():
    data = _body()
    if not data.get("sms"):
        raise ValidationError("SMS text is required", field="sms")
    amount = sanitize_number(data.get("amount"), None)
    if amount is None:
        raise ValidationError("A numeric amount is required", field="amount")

    result = payments.verify_sms_payment(
        data["sms"], amount, current_app.config["SMS_AMOUNT_TOLERANCE"]
    )
    return _ok(result["message"], data=result)
