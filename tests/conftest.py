import mongomock
import pytest

from storefront import auth, create_app, db
from storefront.catalog import PRODUCTS

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "adminpass"


@pytest.fixture
def app():
    app = create_app(
        {
            "TESTING": True,
            "SECRET_KEY": "test-secret",
            "JWT_SECRET_KEY": "test-jwt-secret-key-that-is-long-enough-for-hs256",
            "FACEBOOK_PIXEL_ID": "",
            "FACEBOOK_ACCESS_TOKEN": "",
            "ADMIN_EMAIL": ADMIN_EMAIL,
            "ADMIN_PASSWORD": ADMIN_PASSWORD,
        },
        db=mongomock.MongoClient().db,
    )
    auth.login_limiter.reset()
    auth.api_limiter.reset()
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def ctx(app):
    with app.test_request_context():
        yield app


@pytest.fixture
def admin_user(app):
    with app.app_context():
        auth.ensure_admin(ADMIN_EMAIL, ADMIN_PASSWORD)
    return ADMIN_EMAIL, ADMIN_PASSWORD


@pytest.fixture
def admin_headers(client, admin_user):
    email, password = admin_user
    response = client.post("/api/login", json={"email": email, "password": password})
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.get_json()['token']}"}


@pytest.fixture
def admin_session(client, admin_user):
    email, password = admin_user
    client.post("/admin/login", data={"email": email, "password": password})
    return client


@pytest.fixture
def make_product(app):
    """Inserts products straight into the database."""

    def _make(**fields):
        doc = {
            "title": "Cotton Shirt",
            "description": "A plain cotton shirt",
            "features": "Breathable",
            "mrp": 999.0,
            "price": 499.0,
            "selling_price": 499.0,
            "color": "Blue",
            "size": "M,L",
            "storage": "",
            "image": "https://img.example.com/shirt.jpg",
            "images": [],
            "extraImages": [],
        }
        doc.update(fields)
        with app.app_context():
            return db.insert_one(PRODUCTS, doc)

    return _make
