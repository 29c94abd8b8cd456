import io

import pytest
from werkzeug.datastructures import MultiDict

from storefront import catalog, db
from storefront.errors import NotFoundError, ValidationError


def test_build_query_defaults():
    query, page, limit, sort = catalog.build_product_query(MultiDict())
    assert query == {}
    assert (page, limit) == (1, 20)
    assert sort == catalog.DEFAULT_SORT


def test_build_query_escapes_search_and_bounds_paging():
    query, page, limit, sort = catalog.build_product_query(
        MultiDict({"search": "a+b", "page": "0", "limit": "500", "sortBy": "price", "sortOrder": "desc"})
    )
    assert query["$or"][0] == {"title": {"$regex": r"a\+b", "$options": "i"}}
    assert page == 1
    assert limit == 100
    assert sort == [("price", -1)]


def test_build_query_ignores_unknown_sort_field():
    _, _, _, sort = catalog.build_product_query(MultiDict({"sortBy": "$where"}))
    assert sort == catalog.DEFAULT_SORT


def test_build_query_price_range():
    query, *_ = catalog.build_product_query(MultiDict({"minPrice": "100", "maxPrice": "500"}))
    assert query["price"] == {"$gte": 100.0, "$lte": 500.0}


@pytest.mark.parametrize(
    "args",
    [{"minPrice": "cheap"}, {"maxPrice": "-1"}, {"minPrice": "500", "maxPrice": "100"}],
)
def test_build_query_rejects_bad_prices(args):
    with pytest.raises(ValidationError):
        catalog.build_product_query(MultiDict(args))


def test_list_products_filters_and_paginates(ctx, make_product):
    for i in range(5):
        make_product(title=f"Shirt {i}", price=100 + i, mrp=500, disp_order=i + 1)
    make_product(title="Red Dress", description="Evening wear", color="Red", price=300, mrp=600, disp_order=6)

    items, pagination = catalog.list_products(MultiDict({"search": "shirt", "limit": "2", "page": "2"}))
    assert [p["title"] for p in items] == ["Shirt 2", "Shirt 3"]
    assert pagination == {"page": 2, "limit": 2, "total": 5, "pages": 3, "hasNext": True, "hasPrev": True}

    items, _ = catalog.list_products(MultiDict({"color": "red"}))
    assert [p["title"] for p in items] == ["Red Dress"]


def test_create_product_assigns_serial_and_order(ctx):
    first = catalog.create_product({"title": "One", "price": 10, "mrp": 20})
    second = catalog.create_product({"title": "Two", "price": 10, "mrp": 20})
    assert (first["slNumber"], first["disp_order"]) == (1, 1)
    assert (second["slNumber"], second["disp_order"]) == (2, 2)
    assert second["selling_price"] == 10


def test_get_product_normalises_legacy_title(ctx):
    doc = db.insert_one(catalog.PRODUCTS, {"Title": "Old Phone", "price": 5, "mrp": 10})
    product = catalog.get_product(str(doc["_id"]))
    assert product["title"] == "Old Phone"
    assert "Title" not in product


def test_get_product_missing(ctx):
    with pytest.raises(NotFoundError):
        catalog.get_product("5f1d7f3e9b1e8a3d4c2b1a00")


def test_update_product_merges_and_revalidates(ctx, make_product):
    product = make_product(Title="Legacy", title="", slNumber=7, disp_order=3)
    updated = catalog.update_product(str(product["_id"]), {"title": "Renamed", "price": 450})

    assert updated["title"] == "Renamed"
    assert updated["price"] == 450
    assert updated["mrp"] == 999
    assert updated["slNumber"] == 7
    assert updated["disp_order"] == 3
    assert "Title" not in updated

    with pytest.raises(ValidationError):
        catalog.update_product(str(product["_id"]), {"price": 5000})


def test_delete_product(ctx, make_product):
    product = make_product()
    catalog.delete_product(str(product["_id"]))
    with pytest.raises(NotFoundError):
        catalog.delete_product(str(product["_id"]))


def test_move_product_swaps_with_neighbour(ctx, make_product):
    a = make_product(title="A", slNumber=1, disp_order=1)
    b = make_product(title="B", slNumber=2, disp_order=2)
    c = make_product(title="C", slNumber=3, disp_order=3)

    assert catalog.move_product(str(c["_id"]), "up") is True
    assert [p["title"] for p in catalog.all_products()] == ["A", "C", "B"]

    assert catalog.move_product(str(a["_id"]), "down") is True
    assert [p["title"] for p in catalog.all_products()] == ["C", "A", "B"]
    assert b["_id"] == catalog.all_products()[-1]["_id"]


def test_move_product_is_noop_at_the_ends(ctx, make_product):
    first = make_product(title="A", slNumber=1, disp_order=1)
    last = make_product(title="B", slNumber=2, disp_order=2)
    assert catalog.move_product(str(first["_id"]), "up") is False
    assert catalog.move_product(str(last["_id"]), "down") is False
    assert [p["title"] for p in catalog.all_products()] == ["A", "B"]


def test_move_product_rejects_bad_direction(ctx, make_product):
    product = make_product()
    with pytest.raises(ValidationError):
        catalog.move_product(str(product["_id"]), "sideways")


CSV_TEXT = (
    "\ufefftitle , price,mrp,images,images1,extraImages,description\n"
    "Kurta,399,999,\"a.jpg, b.jpg\",c.jpg,x.jpg,Soft cotton\n"
    ",100,200,,,,skipped\n"
    "Saree,,1500,,,,\n"
)


def test_import_products_csv(ctx, make_product):
    make_product(title="Existing", slNumber=4)
    count = catalog.import_products_csv(io.BytesIO(CSV_TEXT.encode("utf-8")))
    assert count == 2

    kurta = db.get_db()[catalog.PRODUCTS].find_one({"title": "Kurta"})
    assert kurta["slNumber"] == 5
    assert kurta["images"] == ["a.jpg", "b.jpg", "c.jpg"]
    assert kurta["image"] == "a.jpg"
    assert kurta["features"] == "Soft cotton"
    assert kurta["selling_price"] == 399

    saree = db.get_db()[catalog.PRODUCTS].find_one({"title": "Saree"})
    assert saree["slNumber"] == 6
    assert saree["disp_order"] == 6


def test_import_products_csv_without_titles(ctx):
    with pytest.raises(ValidationError) as exc:
        catalog.import_products_csv(io.BytesIO(b"title,price\n,10\n"))
    assert exc.value.message == "No valid products found in CSV"


@pytest.mark.parametrize("value", ["nan", "inf", "-inf"])
def test_build_query_rejects_non_finite_prices(value):
    with pytest.raises(ValidationError):
        catalog.build_product_query(MultiDict({"minPrice": value}))


def test_build_query_falls_back_on_overflowing_paging():
    _, page, limit, _ = catalog.build_product_query(MultiDict({"page": "inf", "limit": "1e999"}))
    assert (page, limit) == (1, catalog.DEFAULT_LIMIT)


def test_move_product_restores_order_when_second_write_fails(ctx, make_product, monkeypatch):
    a = make_product(title="A", slNumber=1, disp_order=1)
    b = make_product(title="B", slNumber=2, disp_order=2)

    real_update_one = db.update_one
    calls = []

    def flaky_update_one(collection_name, query, update):
        calls.append(query)
        if len(calls) == 2:
            raise RuntimeError("connection reset")
        return real_update_one(collection_name, query, update)

    monkeypatch.setattr(db, "update_one", flaky_update_one)
    with pytest.raises(RuntimeError):
        catalog.move_product(str(b["_id"]), "up")

    products = db.get_db()[catalog.PRODUCTS]
    assert products.find_one({"_id": a["_id"]})["disp_order"] == 1
    assert products.find_one({"_id": b["_id"]})["disp_order"] == 2
    assert len(calls) == 3


def test_import_products_csv_rejects_malformed_file(ctx):
    oversized_field = b"x" * 200000
    with pytest.raises(ValidationError) as exc:
        catalog.import_products_csv(io.BytesIO(b"title,price\n" + oversized_field + b",10\n"))
    assert exc.value.message == "Error parsing CSV"
    assert db.get_db()[catalog.PRODUCTS].count_documents({}) == 0
