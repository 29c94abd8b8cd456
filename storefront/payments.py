"""
Simulated UPI payment: deep links into payment apps, the generic upi://
payment URL, and the manual checks a shopper can use to confirm they paid
(pasting the bank SMS or entering the UTR).
"""
import base64
import random
import re
import string
import time
from io import BytesIO
from urllib.parse import parse_qs, quote, urlencode, urlparse

import qrcode

from storefront.errors import ValidationError

PAYMENT_APPS = {
    "gpay": "tez://upi/pay",
    "phonepe": "phonepe://pay",
    "paytm": "paytmmp://pay",
    "bhim": "bhim://upi/pay",
}
GENERIC_UPI = "upi://pay"

# Settings toggle -> app key, in the order the payment page offers them.
APP_TOGGLES = (
    ("Gpay", "gpay", "Google Pay"),
    ("Phonepe", "phonepe", "PhonePe"),
    ("Paytm", "paytm", "Paytm"),
    ("Bhim", "bhim", "BHIM UPI"),
    ("WPay", "wpay", "W-Pay"),
)

SMS_AMOUNT_PATTERNS = (
    re.compile(r"(?:Rs\.?|INR)\s*(\d+(?:,\d+)*(?:\.\d{2})?)", re.IGNORECASE),
    re.compile(r"Amount\s*:?\s*(?:Rs\.?|INR)\s*(\d+(?:,\d+)*(?:\.\d{2})?)", re.IGNORECASE),
    re.compile(r"debited\s*(?:by\s*)?(?:Rs\.?|INR)\s*(\d+(?:,\d+)*(?:\.\d{2})?)", re.IGNORECASE),
)

MIN_UTR_LENGTH = 12

UPI_PROVIDERS = (
    ("paytm", "Paytm"),
    ("phonepe", "PhonePe"),
    ("gpay", "Google Pay"),
    ("amazonpay", "Amazon Pay"),
    ("bhim", "BHIM"),
    ("ybl", "Yes Bank"),
    ("axisbank", "Axis Bank"),
    ("sbi", "State Bank of India"),
    ("icici", "ICICI Bank"),
    ("hdfc", "HDFC Bank"),
    ("okaxis", "Axis Bank (OK)"),
    ("oksbi", "SBI (OK)"),
    ("okicici", "ICICI (OK)"),
    ("okhdfc", "HDFC (OK)"),
    ("ibl", "IndusInd Bank"),
    ("federal", "Federal Bank"),
)


def format_amount(amount):
    amount = float(amount)
    return str(int(amount)) if amount.is_integer() else f"{amount:.2f}"


def app_payment_url(app, upi_id, amount, payee_name="Shopping"):
    """Deep link that opens `app` with the payment prefilled; unknown apps get the UPI chooser."""
    base = PAYMENT_APPS.get(app, GENERIC_UPI)
    params = urlencode(
        [("pa", upi_id or ""), ("pn", payee_name), ("am", format_amount(amount)), ("cu", "INR")],
        quote_via=quote,
    )
    return f"{base}?{params}"


def enabled_apps(settings):
    settings = settings or {}
    return [(key, label) for toggle, key, label in APP_TOGGLES if settings.get(toggle)]


def default_app(settings):
    for key, _label in enabled_apps(settings):
        if key in PAYMENT_APPS:
            return key
    return None


def generate_upi_payment_url(
    upi_id, payee_name=None, amount=None, transaction_note=None, merchant_code=None, transaction_id=None
):
    if not upi_id:
        raise ValidationError("UPI ID is required for payment URL", field="upiId")

    params = [("pa", upi_id)]
    if payee_name:
        params.append(("pn", payee_name))
    if merchant_code:
        params.append(("mc", merchant_code))
    if transaction_id:
        params.append(("tr", transaction_id))
    if transaction_note:
        params.append(("tn", transaction_note))
    if amount:
        params.append(("am", format_amount(amount)))
        params.append(("cu", "INR"))
    return f"{GENERIC_UPI}?{urlencode(params, quote_via=quote)}"


def upi_qr_data_uri(upi_url):
    """Renders a UPI payment URL as a PNG QR code, returned as a data: URI."""
    qr = qrcode.QRCode(
        version=1,
        error_correction=qrcode.constants.ERROR_CORRECT_H,
        box_size=10,
        border=4,
    )
    qr.add_data(upi_url)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")

    buffer = BytesIO()
    img.save(buffer, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode()


def upi_id_from_settings(settings):
    """The payee UPI id: the configured one, else the one inside a saved upi:// QR code."""
    if settings.get("upi"):
        return settings["upi"]
    qr_code = settings.get("qrCode") or ""
    if qr_code.startswith(GENERIC_UPI + "?"):
        return parse_upi_qr(qr_code)["upiId"] or ""
    return ""


def parse_upi_qr(data):
    if not data or not data.startswith(GENERIC_UPI + "?"):
        raise ValidationError("Invalid UPI QR code format", field="qrCode")

    params = parse_qs(urlparse(data).query)

    def first(name):
        values = params.get(name)
        return values[0] if values else None

    return {
        "upiId": first("pa"),
        "payeeName": first("pn"),
        "merchantCode": first("mc"),
        "transactionId": first("tr"),
        "transactionNote": first("tn"),
        "amount": first("am"),
        "currency": first("cu") or "INR",
    }


def extract_sms_amount(text):
    """Finds the rupee amount in a pasted bank SMS, or None."""
    for pattern in SMS_AMOUNT_PATTERNS:
        match = pattern.search(text or "")
        if match:
            return float(match.group(1).replace(",", ""))
    return None


def verify_sms_payment(text, expected_amount, tolerance=5):
    found = extract_sms_amount(text)
    if found is None:
        return {
            "status": "pending",
            "amount": None,
            "message": "Could not find amount in SMS. Please check the message.",
        }
    if abs(found - float(expected_amount)) <= tolerance:
        return {"status": "success", "amount": found, "message": f"Payment verified! Amount: ₹{found:g}"}
    return {
        "status": "failed",
        "amount": found,
        "message": f"Amount mismatch! Expected: ₹{float(expected_amount):g}, Found: ₹{found:g}",
    }


def verify_utr(utr):
    return len((utr or "").strip()) >= MIN_UTR_LENGTH


def new_transaction_id():
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"ORD_{int(time.time() * 1000)}_{suffix}"


def upi_providers():
    return [{"code": code, "name": name} for code, name in UPI_PROVIDERS]
