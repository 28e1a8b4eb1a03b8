import pytest

from errors import CartItemNotFound, InsufficientStock, ProductNotFound, ProductUnavailable


def test_add_item_snapshots_product(cart, buyer, make_product):
    product = make_product(price=999, stock=5)
    lines = cart.add_item(buyer.id, product.id, 2)

    assert len(lines) == 1
    line = lines[0]
    assert line.product_id == product.id
    assert line.quantity == 2
    assert line.price == 999
    assert line.name == product.name
    assert line.image == product.images[0]
    assert line.stock == 5


def test_adding_same_product_merges_quantity(cart, buyer, make_product):
    product = make_product(stock=5)
    cart.add_item(buyer.id, product.id, 1)
    lines = cart.add_item(buyer.id, product.id, 2)

    assert len(lines) == 1
    assert lines[0].quantity == 3


def test_add_missing_product_fails(cart, buyer):
    with pytest.raises(ProductNotFound):
        cart.add_item(buyer.id, "000000000000000000000000", 1)
    assert cart.get_lines(buyer.id) == []


def test_add_inactive_product_fails(cart, buyer, make_product):
    product = make_product(is_active=False)
    with pytest.raises(ProductUnavailable):
        cart.add_item(buyer.id, product.id)


def test_add_beyond_stock_fails(cart, buyer, make_product):
    product = make_product(stock=2)
    cart.add_item(buyer.id, product.id, 2)
    with pytest.raises(InsufficientStock):
        cart.add_item(buyer.id, product.id, 1)
    assert cart.get_item_count(buyer.id) == 2


def test_total_and_count(cart, buyer, make_product):
    phone = make_product(price=999, stock=5)
    charger = make_product(name="Charger", price=250.5, stock=5)
    cart.add_item(buyer.id, phone.id, 2)
    cart.add_item(buyer.id, charger.id, 1)

    assert cart.get_total(buyer.id) == 999 * 2 + 250.5
    assert cart.get_item_count(buyer.id) == 3


def test_update_quantity_overwrites_without_stock_check(cart, buyer, make_product):
    product = make_product(stock=2)
    line = cart.add_item(buyer.id, product.id, 1)[0]

    lines = cart.update_quantity(buyer.id, line.id, 4)
    assert lines[0].quantity == 4


def test_update_quantity_to_zero_removes_and_is_idempotent(cart, buyer, make_product):
    product = make_product()
    line = cart.add_item(buyer.id, product.id, 1)[0]

    assert cart.update_quantity(buyer.id, line.id, 0) == []
    assert cart.update_quantity(buyer.id, line.id, 0) == []


def test_update_missing_line_with_positive_quantity_fails(cart, buyer):
    with pytest.raises(CartItemNotFound):
        cart.update_quantity(buyer.id, "000000000000000000000000", 2)


def test_carts_are_isolated_per_buyer(cart, buyer, new_user, make_product):
    other = new_user("other@example.com")
    product = make_product()
    line = cart.add_item(buyer.id, product.id, 1)[0]

    assert cart.get_lines(other.id) == []
    with pytest.raises(CartItemNotFound):
        cart.remove_item(other.id, line.id)


def test_remove_and_clear(cart, buyer, make_product):
    first = make_product(name="A")
    second = make_product(name="B")
    line = cart.add_item(buyer.id, first.id)[0]
    cart.add_item(buyer.id, second.id)

    assert [l.name for l in cart.remove_item(buyer.id, line.id)] == ["B"]
    assert cart.clear(buyer.id) == 1
    assert cart.get_lines(buyer.id) == []
