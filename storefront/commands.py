import click
from flask import current_app
from pymongo import ASCENDING, DESCENDING, TEXT

from storefront import db
from storefront.auth import USERS, ensure_admin
from storefront.catalog import PRODUCTS
from storefront.settings_store import PIXEL_SETTINGS, UPI_SETTINGS


def create_indexes():
    """Creates the indexes the storefront queries rely on. Safe to run repeatedly."""
    database = db.get_db()

    products = database[PRODUCTS]
    products.create_index([("slNumber", ASCENDING)], unique=True)
    products.create_index(
        [("title", TEXT), ("description", TEXT), ("features", TEXT)], name="product_text_search"
    )
    products.create_index([("price", ASCENDING)])
    products.create_index([("createdAt", DESCENDING)])
    products.create_index([("disp_order", ASCENDING)])

    users = database[USERS]
    users.create_index([("email", ASCENDING)], unique=True)
    users.create_index([("createdAt", DESCENDING)])

    for name in (UPI_SETTINGS, PIXEL_SETTINGS):
        database[name].create_index([("createdAt", DESCENDING)])


def register_commands(app):
    @app.cli.command("setup-db")
    def setup_db_command():
        """Create MongoDB indexes."""
        create_indexes()
        current_app.logger.info("Database indexes created")
        click.echo("Database indexes created.")

    @app.cli.command("create-admin")
    @click.option("--email", default=None, help="Defaults to ADMIN_EMAIL.")
    @click.option("--password", default=None, help="Defaults to ADMIN_PASSWORD.")
    def create_admin_command(email, password):
        """Create the default admin user if it does not exist yet."""
        email = email or current_app.config["ADMIN_EMAIL"]
        password = password or current_app.config["ADMIN_PASSWORD"]
        if ensure_admin(email, password):
            click.echo(f"Admin user '{email}' created.")
        else:
            click.echo(f"Admin user '{email}' already exists.")
