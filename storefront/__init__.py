import os
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask
from flask_cors import CORS

from storefront.auth import jwt
from storefront.commands import register_commands
from storefront.db import TTLCache, mongo
from storefront import settings_store


def create_app(config=None, db=None):
    """
    Build the storefront application.

    `config` overrides values read from the environment and `db` replaces the
    Flask-PyMongo database (the test suite passes a mongomock database here).
    """
    # Load environment variables from .env file
    load_dotenv()

    app = Flask(__name__)

    # --- Configuration ---
    app.config["SECRET_KEY"] = os.getenv("SECRET_KEY", "change-me-storefront-secret")
    app.config["MONGO_URI"] = os.getenv("MONGO_URI", "mongodb://localhost:27017/storefront")
    app.config["JWT_SECRET_KEY"] = os.getenv("JWT_SECRET_KEY", "change-me-in-production")
    app.config["JWT_ACCESS_TOKEN_EXPIRES"] = timedelta(hours=24)
    app.config["JWT_REFRESH_TOKEN_EXPIRES"] = timedelta(days=7)
    app.config["CACHE_TTL"] = float(os.getenv("CACHE_TTL", "60"))
    app.config["CORS_ORIGINS"] = os.getenv("CORS_ORIGINS", "*")
    app.config["FACEBOOK_PIXEL_ID"] = os.getenv("FACEBOOK_PIXEL_ID", "")
    app.config["FACEBOOK_ACCESS_TOKEN"] = os.getenv("FACEBOOK_ACCESS_TOKEN", "")
    app.config["FACEBOOK_TEST_EVENT_CODE"] = os.getenv("FACEBOOK_TEST_EVENT_CODE", "")
    app.config["FACEBOOK_GRAPH_VERSION"] = os.getenv("FACEBOOK_GRAPH_VERSION", "v18.0")
    app.config["PUBLIC_BASE_URL"] = os.getenv("PUBLIC_BASE_URL", "")
    app.config["PAYEE_NAME"] = os.getenv("PAYEE_NAME", "Shopping")
    app.config["PAYMENT_WINDOW_SECONDS"] = int(os.getenv("PAYMENT_WINDOW_SECONDS", "240"))
    app.config["SMS_AMOUNT_TOLERANCE"] = float(os.getenv("SMS_AMOUNT_TOLERANCE", "5"))
    app.config["ADMIN_EMAIL"] = os.getenv("ADMIN_EMAIL", "admin@example.com")
    app.config["ADMIN_PASSWORD"] = os.getenv("ADMIN_PASSWORD", "adminpass")

    if config:
        app.config.update(config)

    # --- Initialize extensions ---
    if db is None:
        mongo.init_app(app)
        db = mongo.db
    app.extensions["storefront_db"] = db
    app.extensions["storefront_cache"] = TTLCache(ttl=app.config["CACHE_TTL"])

    origins = [o.strip() for o in app.config["CORS_ORIGINS"].split(",") if o.strip()]
    CORS(app, resources={r"/api/*": {"origins": origins or "*"}})
    jwt.init_app(app)

    from storefront.views import admin, api, shop

    app.register_blueprint(shop.bp)
    app.register_blueprint(admin.bp)
    app.register_blueprint(api.bp)

    register_commands(app)

    @app.context_processor
    def inject_pixel():
        """Makes the configured Pixel id available to every template."""
        pixel = settings_store.get_pixel_settings()
        pixel_id = (pixel or {}).get("FacebookPixel") or app.config["FACEBOOK_PIXEL_ID"]
        return {"pixel_id": pixel_id}

    return app
