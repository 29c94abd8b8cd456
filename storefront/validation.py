"""Input validation and sanitization for products, accounts, settings and addresses."""
import math
import re

from bson.objectid import ObjectId

from storefront.errors import ValidationError

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_RE = re.compile(r"^[+]?[(]?[0-9]{1,4}[)]?[-\s.]?[(]?[0-9]{1,4}[)]?[-\s.]?[0-9]{1,9}$")
UPI_RE = re.compile(r"^[a-z0-9.\-_]{3,}@[a-z]{3,}$", re.IGNORECASE)
IFSC_RE = re.compile(r"^[A-Z]{4}0[A-Z0-9]{6}$")
ACCOUNT_RE = re.compile(r"^[0-9]{9,18}$")
MOBILE_RE = re.compile(r"^[6-9]\d{9}$")
PINCODE_RE = re.compile(r"^\d{6}$")


def validate_email(email):
    if not email or not EMAIL_RE.match(str(email).strip()):
        raise ValidationError("Invalid email format", field="email")
    return str(email).strip().lower()


def validate_password(password, min_length=6):
    if not password or len(password) < min_length:
        raise ValidationError(
            f"Password must be at least {min_length} characters", field="password"
        )
    return password


def validate_phone(phone):
    if not phone:
        return None
    phone = str(phone).strip()
    if not PHONE_RE.match(phone):
        raise ValidationError("Invalid phone number format", field="phone")
    return phone


def validate_object_id(value):
    if not ObjectId.is_valid(value):
        raise ValidationError("Invalid ID format", field="id")
    return ObjectId(value)


def product_id_query(product_id):
    """Products imported from older data may carry plain string ids."""
    if not product_id:
        raise ValidationError("Product ID is required", field="id")
    try:
        return {"_id": validate_object_id(product_id)}
    except ValidationError:
        return {"_id": product_id}


def sanitize_string(value, max_length=1000):
    if not isinstance(value, str):
        return ""
    value = value.strip()[:max_length]
    value = re.sub(r"[<>]", "", value)
    value = re.sub(r"javascript:", "", value, flags=re.IGNORECASE)
    return re.sub(r"on\w+=", "", value, flags=re.IGNORECASE)


def sanitize_number(value, default=0.0):
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number if math.isfinite(number) else default


def sanitize_int(value, default=0):
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return default


def sanitize_array(value, max_length=100):
    if not isinstance(value, list):
        return []
    items = [item for item in value if item is not None]
    items = [item.strip() if isinstance(item, str) else item for item in items]
    return [item for item in items if item != ""][:max_length]


def validate_product(data):
    """
    Validates product input and returns the sanitized document.

    Raises ValidationError with a field -> message map when the title is
    missing, a price is not positive, or the selling price exceeds the MRP.
    """
    errors = {}
    title = data.get("title")
    price = sanitize_number(data.get("price"))
    mrp = sanitize_number(data.get("mrp"))

    if not isinstance(title, str) or not title.strip():
        errors["title"] = "Title is required"
    if price <= 0:
        errors["price"] = "Valid price is required"
    if mrp <= 0:
        errors["mrp"] = "Valid MRP is required"
    if price > 0 and mrp > 0 and price > mrp:
        errors["price"] = "Price cannot be greater than MRP"

    if errors:
        raise ValidationError("Validation failed", errors=errors)

    selling_price = sanitize_number(data.get("selling_price")) or price
    return {
        "title": sanitize_string(title, 200),
        "description": sanitize_string(data.get("description"), 5000),
        "features": sanitize_string(data.get("features"), 5000),
        "mrp": mrp,
        "price": price,
        "selling_price": selling_price,
        "color": sanitize_string(data.get("color"), 50),
        "size": sanitize_string(data.get("size"), 50),
        "storage": sanitize_string(data.get("storage"), 50),
        "image": sanitize_string(data.get("image"), 500),
        "images": sanitize_array(data.get("images"), 20),
        "extraImages": sanitize_array(data.get("extraImages"), 20),
        "slNumber": sanitize_int(data.get("slNumber")),
        "disp_order": sanitize_int(data.get("disp_order")),
    }


def validate_upi_id(upi_id, field="upiId"):
    if not upi_id or not isinstance(upi_id, str):
        raise ValidationError("UPI ID is required", field=field)

    upi_id = upi_id.strip().lower()
    if not UPI_RE.match(upi_id):
        raise ValidationError(
            "Invalid UPI ID format. Example: user@paytm or 9876543210@paytm", field=field
        )
    return upi_id


def validate_ifsc(ifsc):
    if not ifsc:
        return None
    ifsc = ifsc.strip().upper()
    if not IFSC_RE.match(ifsc):
        raise ValidationError("Invalid IFSC code format. Example: SBIN0001234", field="ifscCode")
    return ifsc


def validate_account_number(account_number):
    if not account_number:
        return None
    account_number = account_number.strip()
    if not ACCOUNT_RE.match(account_number):
        raise ValidationError(
            "Invalid account number. Should be 9-18 digits", field="accountNumber"
        )
    return account_number


def validate_pixel_id(pixel_id):
    pixel_id = str(pixel_id or "").strip()
    if not pixel_id.isdigit():
        raise ValidationError("Invalid Pixel ID format", field="pixelId")
    return pixel_id


def sanitize_upi_data(data):
    sanitized = {}

    for field in ("upi", "upi2"):
        if data.get(field):
            sanitized[field] = validate_upi_id(data[field], field=field)

    for field in ("Gpay", "Phonepe", "Paytm", "Bhim", "WPay"):
        if field in data:
            value = data[field]
            if isinstance(value, str):
                value = value.strip().lower() in ("1", "true", "on", "yes")
            sanitized[field] = bool(value)

    if data.get("upiName"):
        sanitized["upiName"] = data["upiName"].strip()[:100]
    if data.get("merchantCode"):
        sanitized["merchantCode"] = data["merchantCode"].strip().upper()[:50]
    if data.get("merchantName"):
        sanitized["merchantName"] = data["merchantName"].strip()[:100]
    if data.get("ifscCode"):
        sanitized["ifscCode"] = validate_ifsc(data["ifscCode"])
    if data.get("accountNumber"):
        sanitized["accountNumber"] = validate_account_number(data["accountNumber"])
    if data.get("bankName"):
        sanitized["bankName"] = data["bankName"].strip()[:100]

    qr_code = data.get("qrCode")
    if qr_code:
        if qr_code.startswith("data:image/"):
            sanitized["qrCode"] = qr_code[:500000]
        elif qr_code.startswith("http"):
            sanitized["qrCode"] = qr_code[:2000]
        elif qr_code.startswith("upi://"):
            sanitized["qrCode"] = qr_code[:500]

    if "isActive" in data:
        sanitized["isActive"] = bool(data["isActive"])

    return sanitized


def validate_address(values):
    """Returns a field -> message map; empty when the address form is valid."""
    errors = {}
    name = (values.get("fname") or "").strip()
    mobile = (values.get("mobile") or "").strip()
    pincode = (values.get("pincode") or "").strip()

    if not name:
        errors["fname"] = "Full name is required"
    elif len(name) < 3:
        errors["fname"] = "Name must be at least 3 characters"

    if not mobile:
        errors["mobile"] = "Mobile number is required"
    elif not MOBILE_RE.match(mobile):
        errors["mobile"] = "Enter valid 10-digit mobile number"

    if not pincode:
        errors["pincode"] = "Pincode is required"
    elif not PINCODE_RE.match(pincode):
        errors["pincode"] = "Enter valid 6-digit pincode"

    if not (values.get("city") or "").strip():
        errors["city"] = "City is required"
    if not values.get("state"):
        errors["state"] = "Please select a state"
    if not (values.get("house") or "").strip():
        errors["house"] = "House/Building details required"

    return errors
