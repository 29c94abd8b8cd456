from flask import Blueprint, current_app, flash, redirect, render_template, request, session, url_for

from storefront import auth, catalog, settings_store
from storefront.errors import NotFoundError, StoreError, ValidationError

bp = Blueprint("admin", __name__, url_prefix="/admin")

PRODUCT_FIELDS = (
    "title", "description", "features", "mrp", "price", "selling_price",
    "color", "size", "storage", "image", "slNumber", "disp_order",
)


def _lines(value):
    """Splits a textarea of URLs on newlines or commas."""
    return [part.strip() for part in (value or "").replace(",", "\n").splitlines() if part.strip()]


def product_from_form(form):
    data = {field: form.get(field, "") for field in PRODUCT_FIELDS}
    data["images"] = _lines(form.get("images"))
    data["extraImages"] = _lines(form.get("extraImages"))
    return data


def _flash_validation(error):
    if error.errors:
        for message in error.errors.values():
            flash(message, "error")
    else:
        flash(error.message, "error")


@bp.route("/login", methods=["GET", "POST"])
def login():
    """Handles admin login."""
    if session.get("admin_id"):
        flash("You are already logged in.", "info")
        return redirect(url_for("admin.products"))

    if request.method == "POST":
        email = request.form.get("email", "").strip()
        password = request.form.get("password", "")
        try:
            user = auth.login_admin_session(email, password)
        except StoreError as e:
            flash(e.message, "error")
            return render_template("admin/login.html", form_data=request.form)

        current_app.logger.info("Admin %s logged in", user["email"])
        flash("Welcome back!", "success")
        return redirect(url_for("admin.products"))

    return render_template("admin/login.html", form_data={})


@bp.route("/logout")
def logout():
    auth.logout_admin_session()
    flash("You have been logged out.", "info")
    return redirect(url_for("admin.login"))


@bp.route("/products")
@auth.admin_required
def products():
    """Product table in display order."""
    return render_template("admin/products.html", products=catalog.all_products())


@bp.route("/products/<product_id>/move", methods=["POST"])
@auth.admin_required
def move_product(product_id):
    direction = request.form.get("direction")
    try:
        if not catalog.move_product(product_id, direction):
            flash(f"Product is already at the {'top' if direction == 'up' else 'bottom'}.", "info")
    except StoreError as e:
        flash(e.message, "error")
    return redirect(url_for("admin.products"))


@bp.route("/products/<product_id>/delete", methods=["POST"])
@auth.admin_required
def delete_product(product_id):
    try:
        catalog.delete_product(product_id)
        flash("Product deleted successfully.", "success")
    except NotFoundError as e:
        flash(e.message, "error")
    return redirect(url_for("admin.products"))


@bp.route("/products/upload", methods=["POST"])
@auth.admin_required
def upload_csv():
    """Bulk-imports products from a CSV file."""
    upload = request.files.get("csvFile")
    if upload is None or not upload.filename:
        flash("Please choose a CSV file to upload.", "error")
        return redirect(url_for("admin.products"))

    try:
        count = catalog.import_products_csv(upload.stream)
        flash(f"{count} products uploaded successfully!", "success")
    except ValidationError as e:
        flash(e.message, "error")
    except UnicodeDecodeError:
        flash("The CSV file must be UTF-8 encoded.", "error")
    return redirect(url_for("admin.products"))


@bp.route("/products/new", methods=["GET", "POST"])
@auth.admin_required
def add_product():
    """Allows admin users to add new products."""
    if request.method == "POST":
        try:
            product = catalog.create_product(product_from_form(request.form))
        except ValidationError as e:
            _flash_validation(e)
            return render_template("admin/product_form.html", form_data=request.form, product=None)

        flash(f"Product '{product['title']}' added successfully!", "success")
        return redirect(url_for("admin.products"))

    return render_template("admin/product_form.html", form_data={}, product=None)


@bp.route("/products/<product_id>/edit", methods=["GET", "POST"])
@auth.admin_required
def edit_product(product_id):
    try:
        product = catalog.get_product(product_id)
    except NotFoundError:
        flash("Product not found!", "error")
        return redirect(url_for("admin.products"))

    if request.method == "POST":
        try:
            catalog.update_product(product_id, product_from_form(request.form))
        except ValidationError as e:
            _flash_validation(e)
            return render_template("admin/product_form.html", form_data=request.form, product=product)

        flash("Product updated successfully!", "success")
        return redirect(url_for("admin.products"))

    form_data = dict(product)
    form_data["images"] = "\n".join(product.get("images") or [])
    form_data["extraImages"] = "\n".join(product.get("extraImages") or [])
    return render_template("admin/product_form.html", form_data=form_data, product=product)


@bp.route("/settings", methods=["GET", "POST"])
@auth.admin_required
def settings():
    """UPI payment settings and the Facebook Pixel."""
    if request.method == "POST":
        section = request.form.get("section")
        try:
            if section == "pixel":
                settings_store.save_pixel_settings(
                    request.form.get("FacebookPixel"),
                    request.form.get("accessToken"),
                    request.form.get("testEventCode"),
                )
                flash("Pixel settings saved.", "success")
            else:
                form = request.form.to_dict()
                for toggle in ("Gpay", "Phonepe", "Paytm", "Bhim", "WPay"):
                    form[toggle] = toggle in request.form
                settings_store.save_upi_settings(form)
                flash("UPI settings saved.", "success")
        except ValidationError as e:
            _flash_validation(e)
        return redirect(url_for("admin.settings"))

    return render_template(
        "admin/settings.html",
        upi=settings_store.get_upi_settings() or {},
        pixel=settings_store.get_pixel_settings() or {},
    )


@bp.route("/settings/pixel/delete", methods=["POST"])
@auth.admin_required
def delete_pixel():
    settings_store.delete_pixel_settings()
    flash("Pixel removed.", "info")
    return redirect(url_for("admin.settings"))
