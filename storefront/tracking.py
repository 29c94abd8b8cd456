"""
Server-side relay to the Facebook Conversion API.

Personal data is SHA-256 hashed before it leaves the server. Credentials come
from the stored Pixel settings first and fall back to the app config.
"""
import hashlib
import random
import string
import time

import requests
from flask import current_app

from storefront import settings_store
from storefront.errors import ConfigurationError, ConversionAPIError, StoreError

GRAPH_URL = "https://graph.facebook.com/{version}/{pixel_id}/events"
REQUEST_TIMEOUT = 10

HASHED_FIELDS = (
    ("email", "em"),
    ("phone", "ph"),
    ("first_name", "fn"),
    ("last_name", "ln"),
    ("city", "ct"),
    ("state", "st"),
    ("zip", "zp"),
    ("country", "country"),
)
PASSTHROUGH_FIELDS = ("client_ip_address", "client_user_agent", "fbc", "fbp")


def hash_data(value):
    if not value:
        return None
    return hashlib.sha256(str(value).lower().strip().encode("utf-8")).hexdigest()


def normalize_phone(phone):
    if not phone:
        return None
    return "".join(ch for ch in str(phone) if ch.isdigit())


def build_user_data(user_data):
    user_data = user_data or {}
    out = {}
    for source, target in HASHED_FIELDS:
        value = user_data.get(source)
        if source == "phone":
            value = normalize_phone(value)
        hashed = hash_data(value)
        if hashed:
            out[target] = hashed
    for field in PASSTHROUGH_FIELDS:
        if user_data.get(field):
            out[field] = user_data[field]
    return out


def new_event_id():
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"{int(time.time() * 1000)}_{suffix}"


def build_event(
    event_name, user_data=None, custom_data=None, event_id=None, event_time=None, event_source_url=None
):
    custom = {
        "value": None,
        "currency": "INR",
        "content_ids": [],
        "content_type": "product",
        "contents": [],
        "num_items": 1,
    }
    custom.update({k: v for k, v in (custom_data or {}).items() if v not in (None, "")})
    return {
        "event_name": event_name,
        "event_time": int(event_time or time.time()),
        "event_id": event_id or new_event_id(),
        "event_source_url": event_source_url or current_app.config.get("PUBLIC_BASE_URL") or None,
        "action_source": "website",
        "user_data": build_user_data(user_data),
        "custom_data": custom,
    }


def resolve_credentials():
    """Returns (pixel_id, access_token, test_event_code)."""
    settings = settings_store.get_pixel_settings() or {}
    config = current_app.config
    pixel_id = settings.get("FacebookPixel") or config.get("FACEBOOK_PIXEL_ID")
    access_token = settings.get("accessToken") or config.get("FACEBOOK_ACCESS_TOKEN")
    test_event_code = settings.get("testEventCode") or config.get("FACEBOOK_TEST_EVENT_CODE")

    if not pixel_id or not access_token:
        raise ConfigurationError("Facebook Pixel not configured")
    return pixel_id, access_token, test_event_code or None


def send_events(events, test_event_code=None):
    pixel_id, access_token, configured_test_code = resolve_credentials()
    url = GRAPH_URL.format(version=current_app.config["FACEBOOK_GRAPH_VERSION"], pixel_id=pixel_id)

    payload = {"data": events, "access_token": access_token}
    code = test_event_code or configured_test_code
    if code:
        payload["test_event_code"] = code

    try:
        response = requests.post(url, json=payload, timeout=REQUEST_TIMEOUT)
    except requests.RequestException as exc:
        current_app.logger.error("Conversion API request failed: %s", exc)
        raise ConversionAPIError("Failed to reach Facebook", status_code=502)

    try:
        result = response.json()
    except ValueError:
        result = {"raw": response.text}

    if not response.ok:
        current_app.logger.error("Conversion API error %s: %s", response.status_code, result)
        raise ConversionAPIError(
            "Failed to send event to Facebook", status_code=response.status_code, details=result
        )

    current_app.logger.info(
        "Conversion API accepted %s event(s): %s",
        result.get("events_received", 0),
        ", ".join(f"{e['event_name']}/{e['event_id']}" for e in events),
    )
    return result


def track_purchase_server_side(transaction_id, value, contents, user_data, event_source_url=None):
    """
    Relays a Purchase event for a completed checkout.

    Tracking must never break the shopper's flow, so failures are logged and
    reported as None instead of raised.
    """
    event = build_event(
        "Purchase",
        user_data=user_data,
        custom_data={
            "value": value,
            "content_ids": [c["id"] for c in contents],
            "contents": contents,
            "num_items": sum(c.get("quantity", 1) for c in contents) or 1,
        },
        event_id=transaction_id,
        event_source_url=event_source_url,
    )
    try:
        return send_events([event])
    except StoreError as exc:
        current_app.logger.warning("Server-side purchase %s not tracked: %s", transaction_id, exc.message)
        return None
