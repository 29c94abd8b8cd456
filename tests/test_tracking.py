import hashlib

import pytest
import requests

from storefront import settings_store, tracking
from storefront.errors import ConfigurationError, ConversionAPIError


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self.ok = status_code < 400
        self._payload = payload if payload is not None else {"events_received": 1}
        self.text = str(self._payload)

    def json(self):
        return self._payload


class PostRecorder(list):
    response = None


@pytest.fixture
def posted(monkeypatch):
    calls = PostRecorder()

    def fake_post(url, json=None, timeout=None):
        calls.append({"url": url, "json": json, "timeout": timeout})
        return calls.response

    calls.response = FakeResponse()
    monkeypatch.setattr(tracking.requests, "post", fake_post)
    return calls


@pytest.fixture
def configured(app):
    app.config.update(FACEBOOK_PIXEL_ID="111", FACEBOOK_ACCESS_TOKEN="env-token")
    return app


def sha(value):
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def test_hash_data_normalises_case_and_whitespace():
    assert tracking.hash_data("  Shopper@Example.com ") == sha("shopper@example.com")
    assert tracking.hash_data("") is None


def test_build_user_data_hashes_pii_and_passes_client_fields():
    data = tracking.build_user_data(
        {
            "email": "a@b.com",
            "phone": "+91 98765-43210",
            "city": "Pune",
            "client_ip_address": "1.2.3.4",
            "fbp": "fb.1.123",
            "last_name": "",
        }
    )
    assert data == {
        "em": sha("a@b.com"),
        "ph": sha("919876543210"),
        "ct": sha("pune"),
        "client_ip_address": "1.2.3.4",
        "fbp": "fb.1.123",
    }


def test_build_event_defaults(ctx):
    event = tracking.build_event("ViewContent", custom_data={"value": 10, "content_name": "Shirt"})
    assert event["action_source"] == "website"
    assert event["event_id"]
    assert event["custom_data"]["currency"] == "INR"
    assert event["custom_data"]["content_type"] == "product"
    assert event["custom_data"]["num_items"] == 1
    assert event["custom_data"]["content_name"] == "Shirt"


def test_missing_credentials(ctx):
    with pytest.raises(ConfigurationError):
        tracking.resolve_credentials()


def test_stored_pixel_settings_win_over_config(configured, posted):
    with configured.test_request_context():
        settings_store.save_pixel_settings("222", "db-token", "TEST42")
        tracking.send_events([tracking.build_event("Purchase", event_id="e1")])

    call = posted[0]
    assert call["url"] == "https://graph.facebook.com/v18.0/222/events"
    assert call["json"]["access_token"] == "db-token"
    assert call["json"]["test_event_code"] == "TEST42"
    assert call["json"]["data"][0]["event_id"] == "e1"
    assert call["timeout"] == tracking.REQUEST_TIMEOUT


def test_send_events_raises_on_api_error(configured, posted):
    posted.response = FakeResponse(400, {"error": {"message": "Invalid parameter"}})
    with configured.test_request_context():
        with pytest.raises(ConversionAPIError) as exc:
            tracking.send_events([tracking.build_event("Purchase")])
    assert exc.value.status_code == 400
    assert exc.value.details == {"error": {"message": "Invalid parameter"}}


def test_send_events_wraps_network_errors(configured, monkeypatch):
    def boom(*args, **kwargs):
        raise requests.ConnectionError("down")

    monkeypatch.setattr(tracking.requests, "post", boom)
    with configured.test_request_context():
        with pytest.raises(ConversionAPIError) as exc:
            tracking.send_events([tracking.build_event("Purchase")])
    assert exc.value.status_code == 502


def test_track_purchase_server_side(configured, posted):
    contents = [{"id": "p1", "quantity": 2, "item_price": 100.0}]
    with configured.test_request_context():
        result = tracking.track_purchase_server_side("ORD_1", 200.0, contents, {"phone": "9876543210"})

    assert result == {"events_received": 1}
    event = posted[0]["json"]["data"][0]
    assert event["event_name"] == "Purchase"
    assert event["event_id"] == "ORD_1"
    assert event["custom_data"]["num_items"] == 2
    assert event["custom_data"]["content_ids"] == ["p1"]


def test_track_purchase_server_side_swallows_failures(ctx, posted):
    assert tracking.track_purchase_server_side("ORD_2", 10, [], {}) is None
    assert posted == []
