"""Singleton UPI and Pixel settings documents. The newest document wins."""
from flask import current_app

from storefront import db
from storefront.errors import ValidationError
from storefront.validation import sanitize_upi_data, validate_pixel_id

UPI_SETTINGS = "upichanges"
PIXEL_SETTINGS = "facebookpixels"
NEWEST_FIRST = [("_id", -1)]


def get_upi_settings():
    return db.find_one(UPI_SETTINGS, {}, sort=NEWEST_FIRST)


def get_pixel_settings():
    return db.find_one(PIXEL_SETTINGS, {}, sort=NEWEST_FIRST)


def _upsert(collection_name, values):
    existing = db.get_db()[collection_name].find_one({}, sort=NEWEST_FIRST)
    if existing:
        return db.update_one(collection_name, {"_id": existing["_id"]}, {"$set": values}), False
    return db.insert_one(collection_name, values), True


def save_upi_settings(payload):
    """Overwrites the stored UPI settings. Returns (document, created)."""
    values = sanitize_upi_data(payload or {})
    if not values:
        raise ValidationError("No UPI settings provided", field="upi")

    doc, created = _upsert(UPI_SETTINGS, values)
    current_app.logger.info("UPI settings %s", "created" if created else "updated")
    return doc, created


def save_pixel_settings(pixel_id, access_token=None, test_event_code=None):
    if not pixel_id:
        raise ValidationError("Pixel ID is required", field="pixelId")

    values = {"FacebookPixel": validate_pixel_id(pixel_id)}
    if access_token:
        values["accessToken"] = access_token.strip()
    if test_event_code:
        values["testEventCode"] = test_event_code.strip()

    doc, created = _upsert(PIXEL_SETTINGS, values)
    current_app.logger.info("Pixel %s %s", values["FacebookPixel"], "created" if created else "updated")
    return doc, created


def delete_pixel_settings():
    result = db.delete_many(PIXEL_SETTINGS, {})
    return result.deleted_count
