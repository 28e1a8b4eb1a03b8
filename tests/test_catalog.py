import pytest

from catalog import ProductCreateBody, ProductFilter, ProductUpdateBody
from errors import Forbidden, InsufficientStock, ProductNotFound


@pytest.fixture
def shelf(make_product):
    return [
        make_product(name="iPhone 12", brand="Apple", price=18000, category="Smartphones", condition="Good"),
        make_product(name="Galaxy S21", brand="Samsung", price=15000, category="Smartphones", condition="Excellent",
                     description="Flagship with great camera"),
        make_product(name="MacBook Air", brand="Apple", price=40000, category="Laptops", condition="Like New"),
        make_product(name="Old Walkman", brand="Sony", price=900, category="Audio", condition="Fair", is_active=False),
    ]


def names(products):
    return sorted(p.name for p in products)


def test_list_hides_inactive_products(catalog, shelf):
    assert names(catalog.list()) == ["Galaxy S21", "MacBook Air", "iPhone 12"]
    assert len(catalog.list(ProductFilter(include_inactive=True))) == 4


def test_filter_by_category_brand_and_condition(catalog, shelf):
    assert names(catalog.list(ProductFilter(category="Smartphones"))) == ["Galaxy S21", "iPhone 12"]
    assert names(catalog.list(ProductFilter(brand="apple"))) == ["MacBook Air", "iPhone 12"]
    assert names(catalog.list(ProductFilter(condition="Like New"))) == ["MacBook Air"]


def test_search_is_case_insensitive_over_name_description_and_brand(catalog, shelf):
    assert names(catalog.list(ProductFilter(search="MACBOOK"))) == ["MacBook Air"]
    assert names(catalog.list(ProductFilter(search="camera"))) == ["Galaxy S21"]
    assert names(catalog.list(ProductFilter(search="samsung"))) == ["Galaxy S21"]


def test_price_range(catalog, shelf):
    assert names(catalog.list(ProductFilter(min_price=15000, max_price=20000))) == ["Galaxy S21", "iPhone 12"]


def test_sort_and_paginate(catalog, shelf):
    filt = ProductFilter(sort_by="price", sort_order="asc", limit=2, page=1)
    page = catalog.paginate(filt)
    assert [p.name for p in page["products"]] == ["Galaxy S21", "iPhone 12"]
    assert page["pagination"].total_products == 3
    assert page["pagination"].total_pages == 2
    assert page["pagination"].has_next is True

    page2 = catalog.paginate(ProductFilter(sort_by="price", sort_order="asc", limit=2, page=2))
    assert [p.name for p in page2["products"]] == ["MacBook Air"]
    assert page2["pagination"].has_next is False
    assert page2["pagination"].has_prev is True


def test_get_missing_product(catalog):
    with pytest.raises(ProductNotFound):
        catalog.get("000000000000000000000000")


def test_view_counts_visits(catalog, make_product):
    product = make_product()
    catalog.view(product.id)
    assert catalog.view(product.id).views == 2


def test_create_requires_seller_or_admin(catalog, buyer, seller):
    body = ProductCreateBody(name="Pixel 7", brand="Google", price=20000, category="Smartphones", condition="Good")
    with pytest.raises(Forbidden):
        catalog.create(body, buyer)

    product = catalog.create(body, seller)
    assert product.seller_id == seller.id
    assert product.is_active is True


def test_update_and_delete_restricted_to_owner_or_admin(catalog, make_product, buyer, admin):
    product = make_product()
    with pytest.raises(Forbidden):
        catalog.update(product.id, ProductUpdateBody(price=1), buyer)

    updated = catalog.update(product.id, ProductUpdateBody(price=899, stock=2), admin)
    assert updated.price == 899
    assert updated.stock == 2
    assert updated.name == product.name

    catalog.delete(product.id, admin)
    with pytest.raises(ProductNotFound):
        catalog.get(product.id)


def test_reserve_and_release_stock(catalog, make_product):
    product = make_product(stock=2)
    assert catalog.reserve(product.id, 2).stock == 0
    with pytest.raises(InsufficientStock):
        catalog.reserve(product.id, 1)

    catalog.release(product.id, 1)
    assert catalog.get(product.id).stock == 1
